#!/usr/bin/env python3
"""
Decoder for the Receita Federal municipality table.

The source is a loosely structured ``;``-delimited text file:

    TOM;IBGE;NomeTOM;NomeIBGE;UF
    0001;3550308;SAO PAULO;São Paulo;SP

Functions:
- decode_bytes: bytes -> records (encoding fallback, header skip, line filtering).
- decode: same, reading from a path.
- decode_json: read back the indented JSON artifact written by export_uf.

CLI:
  python scripts/parse_municipios.py dados_receita/municipios_base.csv
"""
from __future__ import annotations

import argparse
import json
import re
from collections import Counter
from pathlib import Path
from typing import List, Optional

from municipio import Municipio

PRIMARY_ENCODING = "utf-8-sig"
FALLBACK_ENCODING = "latin-1"  # maps every byte, never fails
DELIMITER = ";"
MIN_FIELDS = 5
HEADER_TOKENS = ("IBGE", "UF")
REPLACEMENT_CHAR = "\ufffd"

# Only CR/LF count as line breaks; str.splitlines() would also split on
# \x85, \x0b, \x0c etc. which appear in Latin-1 decoded text.
LINE_RE = re.compile(r"\r\n|\r|\n")


def _split_lines(text: str) -> List[str]:
    lines = LINE_RE.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def decode_text(raw: bytes) -> str:
    """Decode as UTF-8; fall back to Latin-1 when the first line looks wrong."""
    text = raw.decode(PRIMARY_ENCODING, errors="replace")
    first = LINE_RE.split(text, maxsplit=1)[0]
    if REPLACEMENT_CHAR in first:
        return raw.decode(FALLBACK_ENCODING)
    return text


def is_header(line: str) -> bool:
    upper = line.upper()
    return any(tok in upper for tok in HEADER_TOKENS)


def decode_bytes(raw: bytes) -> List[Municipio]:
    lines = _split_lines(decode_text(raw))
    start = 1 if lines and is_header(lines[0]) else 0

    out: List[Municipio] = []
    for line in lines[start:]:
        line = line.strip()
        if not line:
            continue
        parts = line.split(DELIMITER)
        if len(parts) < MIN_FIELDS:
            continue
        out.append(Municipio.from_fields(parts))
    return out


def decode(path: Path) -> List[Municipio]:
    """Read and parse a municipality file. Raises OSError when unreadable."""
    return decode_bytes(Path(path).read_bytes())


def decode_json(path: Path) -> List[Municipio]:
    with Path(path).open("r", encoding="utf-8") as fh:
        items = json.load(fh)
    if not isinstance(items, list):
        raise ValueError(f"expected a JSON list of municipalities: {path}")
    return [Municipio.from_dict(it) for it in items if isinstance(it, dict)]


def summarize(records: List[Municipio]) -> dict:
    by_uf = Counter(m.uf for m in records)
    return {
        "records": len(records),
        "ufs": len(by_uf),
        "by_uf": dict(sorted(by_uf.items())),
    }


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Parse a municipality table and print a JSON summary")
    p.add_argument("input", type=Path, help="Path to the ;-delimited municipality file")
    args = p.parse_args(argv)

    records = decode(args.input)
    summary = {"path": str(args.input), **summarize(records)}
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
