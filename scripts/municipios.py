#!/usr/bin/env python3
from __future__ import annotations

import argparse
import datetime
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.request import Request, urlopen

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

from diff_municipios import compare_files, write_diff_csv  # type: ignore
from export_uf import export_partitions, valid_records  # type: ignore
from municipio import Municipio  # type: ignore
from parse_municipios import decode  # type: ignore
from query_municipios import HELP_LINES, QueryResult, format_rows, parse_command, query  # type: ignore

CSV_URL = "https://www.gov.br/receitafederal/dados/municipios.csv"
DATA_DIR_NAME = "dados_receita"
OUT_DIR_NAME = "mun_por_uf"
DIFF_DIR_NAME = "diffs"
BASE_CSV_NAME = "municipios_base.csv"
TEMP_CSV_NAME = "municipios_tmp.csv"
QUIT_COMMAND = "sair"


@dataclass(frozen=True)
class WorkDirs:
    data_dir: Path
    out_dir: Path
    diff_dir: Path

    @classmethod
    def from_base(
        cls,
        base: Path,
        data_dir: Optional[Path] = None,
        out_dir: Optional[Path] = None,
        diff_dir: Optional[Path] = None,
    ) -> "WorkDirs":
        base = Path(base).resolve()
        return cls(
            data_dir=Path(data_dir).resolve() if data_dir else base / DATA_DIR_NAME,
            out_dir=Path(out_dir).resolve() if out_dir else base / OUT_DIR_NAME,
            diff_dir=Path(diff_dir).resolve() if diff_dir else base / DIFF_DIR_NAME,
        )

    @property
    def baseline(self) -> Path:
        return self.data_dir / BASE_CSV_NAME

    @property
    def temp(self) -> Path:
        return self.data_dir / TEMP_CSV_NAME

    def ensure(self) -> None:
        for d in (self.data_dir, self.out_dir, self.diff_dir):
            d.mkdir(parents=True, exist_ok=True)


def _print(msg: str, quiet: bool = False) -> None:
    if not quiet:
        print(msg)


def _stamp(now: Optional[datetime.datetime] = None) -> str:
    return (now or datetime.datetime.now()).strftime("%Y%m%d_%H%M%S")


def _fmt_elapsed(seconds: float) -> str:
    ms = int(round(seconds * 1000))
    minutes, ms = divmod(ms, 60_000)
    secs, ms = divmod(ms, 1000)
    return f"{minutes:02d}:{secs:02d}.{ms:03d}"


def _download(url: str, destination: Path, *, quiet: bool = False) -> Path:
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    _print(f"Downloading {url} -> {destination}", quiet=quiet)
    req = Request(url, headers={"User-Agent": "municipios-cli/1.0"})
    tmp = destination.with_name(destination.name + ".tmp")
    try:
        with urlopen(req, timeout=120) as resp, tmp.open("wb") as fh:
            while True:
                chunk = resp.read(1024 * 1024)
                if not chunk:
                    break
                fh.write(chunk)
        tmp.replace(destination)
    except Exception:
        if tmp.exists():
            tmp.unlink()
        raise
    _print(f"Saved {destination}", quiet=quiet)
    return destination


def _remove_temp(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        print(f"WARNING: could not remove {path}: {exc}", file=sys.stderr)


def sync_baseline(
    dirs: WorkDirs,
    url: str = CSV_URL,
    *,
    update_base: bool = False,
    now: Optional[datetime.datetime] = None,
    quiet: bool = False,
) -> Dict[str, object]:
    """Fetch the source table and compare it to the saved baseline.

    Without a baseline the download becomes the baseline. Otherwise the new
    snapshot goes to a temporary file, differences are written to
    diffs/diff_<stamp>.csv and the temporary file is removed.
    """
    dirs.ensure()
    payload: Dict[str, object] = {"url": url, "baseline": str(dirs.baseline)}

    if not dirs.baseline.exists():
        _print("Base local não encontrada. Baixando e salvando como base...", quiet=quiet)
        _download(url, dirs.baseline, quiet=quiet)
        payload["status"] = "baseline_created"
        return payload

    _print("Base local encontrada. Baixando CSV temporário para comparar com a base...", quiet=quiet)
    _download(url, dirs.temp, quiet=quiet)
    try:
        _print("Comparando arquivos (base x temporário)...", quiet=quiet)
        result = compare_files(dirs.baseline, dirs.temp)
        payload.update(result.counts())
        if result.is_empty:
            _print("Nenhuma diferença detectada. Mantendo base atual.", quiet=quiet)
            payload["status"] = "unchanged"
            return payload

        diff_path = write_diff_csv(dirs.diff_dir / f"diff_{_stamp(now)}.csv", result)
        _print(f"Diferenças encontradas. Arquivo gerado: {diff_path}", quiet=quiet)
        payload["status"] = "changed"
        payload["diff_file"] = str(diff_path)
        if update_base:
            dirs.temp.replace(dirs.baseline)
            payload["baseline_updated"] = True
        return payload
    finally:
        _remove_temp(dirs.temp)


def _load(path: Path, quiet: bool = False) -> List[Municipio]:
    _print(f"Lendo e parseando {path}...", quiet=quiet)
    records = decode(path)
    _print(f"Registros lidos: {len(records)}", quiet=quiet)
    return records


def _print_result(res: QueryResult) -> None:
    if not res.rows:
        print("Nenhum resultado.")
        return
    for line in format_rows(res.rows):
        print(line)
    if res.truncated:
        print(f"(exibindo apenas os {len(res.rows)} primeiros)")


def _run_shell(records: Sequence[Municipio]) -> None:
    valid = list(valid_records(records))
    print("\n== Pesquisa ==")
    print("Comandos:")
    for line in HELP_LINES:
        print(line)
    while True:
        try:
            line = input("\n> ").strip()
        except EOFError:
            return
        if line.lower() == QUIT_COMMAND:
            return
        if not line:
            continue
        verb, arg = parse_command(line)
        res = query(verb, arg, valid)
        if res.ok:
            _print_result(res)
        else:
            print(res.error)


def _dirs_from_args(args: argparse.Namespace) -> WorkDirs:
    return WorkDirs.from_base(
        Path(args.base_dir),
        data_dir=args.data_dir,
        out_dir=args.out_dir,
        diff_dir=args.diff_dir,
    )


def _input_path(args: argparse.Namespace, dirs: WorkDirs) -> Path:
    return Path(args.input) if getattr(args, "input", None) else dirs.baseline


# ---------- Commands ----------


def cmd_sync(args: argparse.Namespace) -> int:
    dirs = _dirs_from_args(args)
    try:
        payload = sync_baseline(dirs, args.url, update_base=args.update_base, quiet=args.quiet)
    except Exception as exc:
        print(f"ERROR: sync failed: {exc}", file=sys.stderr)
        return 2
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    try:
        result = compare_files(Path(args.old), Path(args.new))
        payload: Dict[str, object] = dict(result.counts())
        if args.out and not result.is_empty:
            payload["diff_file"] = str(write_diff_csv(Path(args.out), result))
    except OSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _export(records: Sequence[Municipio], dirs: WorkDirs, quiet: bool = False) -> int:
    _print("\nGerando saídas por UF (BIN/CSV/JSON)...", quiet=quiet)
    return export_partitions(
        records,
        dirs.out_dir,
        report=lambda uf, n: _print(f"UF {uf}: {n} municípios", quiet=quiet),
    )


def cmd_export(args: argparse.Namespace) -> int:
    dirs = _dirs_from_args(args)
    try:
        records = _load(_input_path(args, dirs), quiet=args.quiet)
        n = _export(records, dirs, quiet=args.quiet)
    except (OSError, ValueError) as exc:
        print(f"ERROR: export failed: {exc}", file=sys.stderr)
        return 2
    print(json.dumps({"records": len(records), "ufs": n, "out_dir": str(dirs.out_dir)}, ensure_ascii=False, indent=2))
    return 0


def cmd_query(args: argparse.Namespace) -> int:
    dirs = _dirs_from_args(args)
    try:
        records = decode(_input_path(args, dirs))
    except OSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    res = query(args.verb, args.argument, records)
    if not res.ok:
        print(f"ERROR: {res.error}", file=sys.stderr)
        return 2

    if args.format == "json":
        payload = {"rows": [m.to_dict() for m in res.rows], "truncated": res.truncated}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        _print_result(res)
    return 0


def cmd_shell(args: argparse.Namespace) -> int:
    dirs = _dirs_from_args(args)
    try:
        records = _load(_input_path(args, dirs), quiet=True)
    except OSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    _run_shell(records)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    dirs = _dirs_from_args(args)

    print("== Verificação de arquivo base ==")
    try:
        sync_baseline(dirs, args.url, update_base=args.update_base)
    except Exception as exc:
        print(f"ERROR: sync failed: {exc}", file=sys.stderr)
        return 2

    try:
        records = _load(dirs.baseline)
        n = _export(records, dirs)
    except (OSError, ValueError) as exc:
        print(f"ERROR: export failed: {exc}", file=sys.stderr)
        return 2

    print("\n===== RESUMO =====")
    print(f"UFs geradas: {n}")
    print(f"Pasta base de dados: {dirs.data_dir}")
    print(f"Pasta de saída: {dirs.out_dir}")
    print(f"Pasta de diffs: {dirs.diff_dir}")
    print(f"Tempo total: {_fmt_elapsed(time.perf_counter() - started)}")

    if not args.no_shell:
        _run_shell(records)
    return 0


def _add_dir_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-dir", default=".", help="Base directory for the working folders (default: .)")
    p.add_argument("--data-dir", type=Path, help=f"Baseline folder (default: <base>/{DATA_DIR_NAME})")
    p.add_argument("--out-dir", type=Path, help=f"Per-UF output folder (default: <base>/{OUT_DIR_NAME})")
    p.add_argument("--diff-dir", type=Path, help=f"Diff reports folder (default: <base>/{DIFF_DIR_NAME})")


def build_parser() -> argparse.ArgumentParser:
    description = (
        "Receita Federal municipality table: keep a local baseline, report changes, "
        "split by UF into CSV/JSON/BIN and look records up."
    )
    epilog = """Examples:
  municipios run
  municipios sync --update-base
  municipios diff dados_receita/municipios_base.csv novo.csv --out diffs/manual.csv
  municipios export --out-dir mun_por_uf
  municipios query uf SP
  municipios query nome "sao jose" --format json
  municipios shell
"""
    p = argparse.ArgumentParser(
        prog="municipios",
        description=description,
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = p.add_subparsers(dest="cmd")

    prun = sub.add_parser("run", help="Sync, export per UF, print a summary and open the search shell")
    _add_dir_args(prun)
    prun.add_argument("--url", default=CSV_URL, help="Source CSV URL")
    prun.add_argument("--update-base", action="store_true", help="Replace the baseline when differences are found")
    prun.add_argument("--no-shell", action="store_true", help="Do not open the interactive search")
    prun.set_defaults(func=cmd_run)

    psync = sub.add_parser("sync", help="Download the source table and compare it with the local baseline")
    _add_dir_args(psync)
    psync.add_argument("--url", default=CSV_URL, help="Source CSV URL")
    psync.add_argument("--update-base", action="store_true", help="Replace the baseline when differences are found")
    psync.add_argument("--quiet", action="store_true", help="Reduce command output")
    psync.set_defaults(func=cmd_sync)

    pdiff = sub.add_parser("diff", help="Compare two local municipality files")
    pdiff.add_argument("old", help="Baseline file")
    pdiff.add_argument("new", help="New snapshot")
    pdiff.add_argument("--out", help="Diff CSV output path (written only when differences exist)")
    pdiff.set_defaults(func=cmd_diff)

    pexp = sub.add_parser("export", help="Write municipios_<UF>.csv/.json/.bin for every UF")
    _add_dir_args(pexp)
    pexp.add_argument("--input", help="Source file (default: the baseline)")
    pexp.add_argument("--quiet", action="store_true", help="Reduce command output")
    pexp.set_defaults(func=cmd_export)

    pq = sub.add_parser("query", help="One-shot lookup: uf <UF> | nome <parte> | cod <IBGE|TOM>")
    _add_dir_args(pq)
    pq.add_argument("verb", help="uf, nome or cod")
    pq.add_argument("argument", nargs="?", default="", help="UF, name fragment or code")
    pq.add_argument("--input", help="Source file (default: the baseline)")
    pq.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    pq.set_defaults(func=cmd_query)

    psh = sub.add_parser("shell", help="Interactive search over the baseline")
    _add_dir_args(psh)
    psh.add_argument("--input", help="Source file (default: the baseline)")
    psh.set_defaults(func=cmd_shell)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    return int(args.func(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
