#!/usr/bin/env python3
"""
Keyed comparison of two municipality snapshots.

Records are correlated by `Municipio.key` (IBGE code, or TOM code when the
IBGE code is blank). Within one snapshot the first record seen for a key wins;
later duplicates are dropped without being reported.

CLI:
  python scripts/diff_municipios.py base.csv novo.csv --out diffs/diff.csv
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from municipio import Municipio
from parse_municipios import decode

DIFF_HEADER = ["Tipo", "TOM", "IBGE", "NomeTOM", "NomeIBGE", "UF", "Obs"]
ADDITION = "ADDITION"
REMOVAL = "REMOVAL"
CHANGE = "CHANGE"


@dataclass(frozen=True)
class Change:
    old: Municipio
    new: Municipio

    @property
    def summary(self) -> str:
        return self.old.diff_fields(self.new)


@dataclass
class DiffResult:
    added: List[Municipio] = field(default_factory=list)
    removed: List[Municipio] = field(default_factory=list)
    changed: List[Change] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    def counts(self) -> Dict[str, int]:
        return {"added": len(self.added), "removed": len(self.removed), "changed": len(self.changed)}


def index_by_key(records: Iterable[Municipio]) -> Dict[str, Municipio]:
    index: Dict[str, Municipio] = {}
    for m in records:
        index.setdefault(m.key, m)
    return index


def diff(old: Iterable[Municipio], new: Iterable[Municipio]) -> DiffResult:
    old_map = index_by_key(old)
    new_map = index_by_key(new)
    result = DiffResult()

    for key, cur in new_map.items():
        prev = old_map.get(key)
        if prev is None:
            result.added.append(cur)
        elif not prev.same_fields(cur):
            result.changed.append(Change(prev, cur))

    for key, prev in old_map.items():
        if key not in new_map:
            result.removed.append(prev)
    return result


def compare_files(old_path: Path, new_path: Path) -> DiffResult:
    return diff(decode(old_path), decode(new_path))


def diff_rows(result: DiffResult) -> List[List[str]]:
    rows: List[List[str]] = []
    for m in result.added:
        rows.append([ADDITION, *m.to_row(), ""])
    for m in result.removed:
        rows.append([REMOVAL, *m.to_row(), ""])
    for ch in result.changed:
        rows.append([CHANGE, *ch.new.to_row(), ch.summary])
    return rows


def write_diff_csv(path: Path, result: DiffResult) -> Path:
    """Write the diff report (`;`-joined, UTF-8 without BOM), overwriting `path`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as fh:
        fh.write(";".join(DIFF_HEADER) + "\n")
        for row in diff_rows(result):
            fh.write(";".join(row) + "\n")
    return path


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Compare two municipality files by IBGE/TOM code")
    p.add_argument("old", type=Path, help="Baseline file")
    p.add_argument("new", type=Path, help="New snapshot")
    p.add_argument("--out", type=Path, help="Optional diff CSV output path")
    args = p.parse_args(argv)

    try:
        result = compare_files(args.old, args.new)
        payload: Dict[str, object] = dict(result.counts())
        if args.out and not result.is_empty:
            payload["diff_file"] = str(write_diff_csv(args.out, result))
    except OSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
