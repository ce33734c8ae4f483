#!/usr/bin/env python3
"""
Per-UF export of the municipality table.

For every state code XX (the reserved code EX is skipped) three files are
written to the output directory:

- municipios_XX.csv   header TOM;IBGE;NomeTOM;NomeIBGE;UF, one `;`-joined row per record
- municipios_XX.json  indented list of objects
- municipios_XX.bin   int32 LE count, then 5 length-prefixed UTF-8 strings per record

Binary strings use a 7-bit encoded length prefix (same layout as .NET
BinaryWriter.Write(string)), fields in order tom, ibge, nome_tom, nome_ibge, uf.
"""
from __future__ import annotations

import argparse
import io
import json
import struct
import sys
from collections import defaultdict
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from municipio import COLUMNS, Municipio
from parse_municipios import decode

RESERVED_UF = "EX"  # exterior: not a Brazilian state
UNSAFE_UF_CHARS = "/\\:\0"


def valid_records(records: Iterable[Municipio]) -> Iterator[Municipio]:
    for m in records:
        if m.uf.upper() != RESERVED_UF:
            yield m


def partition_by_uf(records: Iterable[Municipio]) -> List[Tuple[str, List[Municipio]]]:
    """Group valid records by UF, ordered by UF then by preferred name (case-insensitive)."""
    groups: Dict[str, List[Municipio]] = defaultdict(list)
    for m in valid_records(records):
        groups[m.uf.upper()].append(m)
    out: List[Tuple[str, List[Municipio]]] = []
    for uf in sorted(groups):
        rows = sorted(groups[uf], key=lambda m: m.nome_preferido.upper())
        out.append((uf, rows))
    return out


def check_uf(uf: str) -> None:
    """Reject UF values that cannot be used inside an artifact file name."""
    if any(ch in uf for ch in UNSAFE_UF_CHARS):
        raise ValueError(f"invalid UF for file name: {uf!r}")


def artifact_paths(out_dir: Path, uf: str) -> Dict[str, Path]:
    stem = f"municipios_{uf}"
    return {
        "csv": out_dir / f"{stem}.csv",
        "json": out_dir / f"{stem}.json",
        "bin": out_dir / f"{stem}.bin",
    }


def write_csv(path: Path, rows: List[Municipio]) -> None:
    with path.open("w", encoding="utf-8", newline="") as fh:
        fh.write(";".join(COLUMNS) + "\n")
        for m in rows:
            fh.write(";".join(m.to_row()) + "\n")


def write_json(path: Path, rows: List[Municipio]) -> None:
    with path.open("w", encoding="utf-8") as fh:
        json.dump([m.to_dict() for m in rows], fh, ensure_ascii=False, indent=2)


# ---------- Binary codec ----------


def _write_7bit(fh: BinaryIO, value: int) -> None:
    while value >= 0x80:
        fh.write(bytes([(value & 0x7F) | 0x80]))
        value >>= 7
    fh.write(bytes([value]))


def _read_7bit(fh: BinaryIO) -> int:
    value = 0
    shift = 0
    while True:
        b = fh.read(1)
        if not b:
            raise EOFError("truncated length prefix")
        byte = b[0]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value
        shift += 7
        if shift > 28:
            raise ValueError("invalid 7-bit encoded length")


def _write_string(fh: BinaryIO, text: str) -> None:
    data = (text or "").encode("utf-8")
    _write_7bit(fh, len(data))
    fh.write(data)


def _read_string(fh: BinaryIO) -> str:
    size = _read_7bit(fh)
    data = fh.read(size)
    if len(data) != size:
        raise EOFError("truncated string")
    return data.decode("utf-8")


def write_bin(path: Path, rows: List[Municipio]) -> None:
    with path.open("wb") as fh:
        fh.write(struct.pack("<i", len(rows)))
        for m in rows:
            for value in m.to_row():
                _write_string(fh, value)


def read_bin(path: Path) -> List[Municipio]:
    data = Path(path).read_bytes()
    fh = io.BytesIO(data)
    head = fh.read(4)
    if len(head) != 4:
        raise EOFError(f"missing record count: {path}")
    (count,) = struct.unpack("<i", head)
    out: List[Municipio] = []
    for _ in range(count):
        fields = [_read_string(fh) for _ in range(5)]
        out.append(Municipio.from_fields(fields))
    return out


# ---------- Export ----------


def write_partition(out_dir: Path, uf: str, rows: List[Municipio]) -> Dict[str, Path]:
    paths = artifact_paths(out_dir, uf)
    write_csv(paths["csv"], rows)
    write_json(paths["json"], rows)
    write_bin(paths["bin"], rows)
    return paths


def export_partitions(
    records: Iterable[Municipio],
    out_dir: Path,
    report: Optional[Callable[[str, int], None]] = None,
) -> int:
    """Write the three artifacts for every UF and return the number of UFs written.

    Files are overwritten. UF values unusable as file names raise ValueError
    before anything is written. The first I/O error propagates; partitions
    already written are left in place.
    """
    groups = partition_by_uf(records)
    for uf, _ in groups:
        check_uf(uf)

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    count = 0
    for uf, rows in groups:
        if report is not None:
            report(uf, len(rows))
        write_partition(out_dir, uf, rows)
        count += 1
    return count


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Split a municipality file into per-UF CSV/JSON/BIN files")
    p.add_argument("input", type=Path, help="Path to the ;-delimited municipality file")
    p.add_argument("-o", "--out", type=Path, default=Path("mun_por_uf"), help="Output directory (default: mun_por_uf/)")
    args = p.parse_args(argv)

    try:
        records = decode(args.input)
        n = export_partitions(records, args.out, report=lambda uf, k: print(f"UF {uf}: {k} municípios"))
    except (OSError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    print(json.dumps({"ok": True, "ufs": n, "out": str(args.out)}, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
