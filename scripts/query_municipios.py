#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import dataclass, field
from itertools import islice
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from export_uf import valid_records
from municipio import Municipio

MAX_RESULTS = 200

VERB_ALIASES = {
    "uf": "uf",
    "state": "uf",
    "nome": "nome",
    "name": "nome",
    "cod": "cod",
    "code": "cod",
}

HELP_LINES = [
    "  uf SP                -> lista todos da UF",
    "  nome <parte>         -> busca por parte do nome (TOM/IBGE)",
    "  cod <IBGE|TOM>       -> busca por código exato (ex: 3550308)",
    "  sair                 -> encerra",
]


@dataclass
class QueryResult:
    rows: List[Municipio] = field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _by_uf(arg: str) -> Optional[Callable[[Municipio], bool]]:
    if len(arg) != 2:
        return None
    want = arg.upper()
    return lambda m: m.uf.upper() == want


def _by_nome(arg: str) -> Optional[Callable[[Municipio], bool]]:
    if not arg:
        return None
    want = arg.upper()
    return lambda m: want in m.nome_tom.upper() or want in m.nome_ibge.upper()


def _by_cod(arg: str) -> Optional[Callable[[Municipio], bool]]:
    if not arg:
        return None
    want = arg.upper()
    return lambda m: m.ibge.upper() == want or m.tom.upper() == want


PREDICATES: Dict[str, Callable[[str], Optional[Callable[[Municipio], bool]]]] = {
    "uf": _by_uf,
    "nome": _by_nome,
    "cod": _by_cod,
}


def query(verb: str, argument: str, records: Iterable[Municipio], limit: int = MAX_RESULTS) -> QueryResult:
    """Filter valid records (reserved UF excluded) keeping source order.

    Invalid verbs or arguments give an empty result with `error` set.
    `truncated` is true when more than `limit` records match.
    """
    name = VERB_ALIASES.get((verb or "").strip().lower())
    if name is None:
        return QueryResult(error=f"Comando inválido: {verb}")
    arg = (argument or "").strip()
    pred = PREDICATES[name](arg)
    if pred is None:
        return QueryResult(error=f"Argumento inválido para '{name}': {arg!r}")

    matches: Iterator[Municipio] = (m for m in valid_records(records) if pred(m))
    rows = list(islice(matches, limit + 1))
    truncated = len(rows) > limit
    return QueryResult(rows=rows[:limit], truncated=truncated)


def format_rows(rows: Iterable[Municipio]) -> List[str]:
    return [f"{m.uf:<2} | {m.ibge:<7} | {m.tom:<6} | {m.nome_preferido}" for m in rows]


def parse_command(line: str) -> tuple[str, str]:
    """Split `verb argument...` on the first run of whitespace."""
    parts = line.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0].lower(), (parts[1].strip() if len(parts) > 1 else "")
