#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

# Column labels used in CSV headers and change summaries
COLUMNS = ["TOM", "IBGE", "NomeTOM", "NomeIBGE", "UF"]


def _san(value: Optional[str]) -> str:
    return (value or "").strip()


def _same(a: str, b: str) -> bool:
    # Ordinal, case-insensitive: "São" and "Sao" are different names.
    return a.upper() == b.upper()


@dataclass(frozen=True)
class Municipio:
    tom: str = ""
    ibge: str = ""
    nome_tom: str = ""
    nome_ibge: str = ""
    uf: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tom", _san(self.tom))
        object.__setattr__(self, "ibge", _san(self.ibge))
        object.__setattr__(self, "nome_tom", _san(self.nome_tom))
        object.__setattr__(self, "nome_ibge", _san(self.nome_ibge))
        object.__setattr__(self, "uf", _san(self.uf).upper())

    @classmethod
    def from_fields(cls, fields: List[str]) -> "Municipio":
        """Build from the first five fields of a split line (extra fields ignored)."""
        tom, ibge, nome_tom, nome_ibge, uf = fields[:5]
        return cls(tom, ibge, nome_tom, nome_ibge, uf)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Municipio":
        def get(name: str) -> str:
            value = data.get(name)
            return "" if value is None else str(value)

        return cls(get("tom"), get("ibge"), get("nome_tom"), get("nome_ibge"), get("uf"))

    @property
    def nome_preferido(self) -> str:
        if self.nome_ibge:
            return self.nome_ibge
        if self.nome_tom:
            return self.nome_tom
        return ""

    @property
    def key(self) -> str:
        """Identity used to correlate the same municipality across snapshots."""
        if self.ibge:
            return f"I:{self.ibge}"
        return f"T:{self.tom}"

    def same_fields(self, other: "Municipio") -> bool:
        """Compare names and UF, ignoring codes (already matched through `key`)."""
        return (
            _same(self.nome_tom, other.nome_tom)
            and _same(self.nome_ibge, other.nome_ibge)
            and _same(self.uf, other.uf)
        )

    def diff_fields(self, other: "Municipio") -> str:
        parts: List[str] = []
        for label, old, new in (
            ("NomeTOM", self.nome_tom, other.nome_tom),
            ("NomeIBGE", self.nome_ibge, other.nome_ibge),
            ("UF", self.uf, other.uf),
        ):
            if not _same(old, new):
                parts.append(f"{label}: '{old}' -> '{new}'")
        return " | ".join(parts)

    def to_row(self) -> List[str]:
        return [self.tom, self.ibge, self.nome_tom, self.nome_ibge, self.uf]

    def to_dict(self) -> Dict[str, str]:
        return {
            "tom": self.tom,
            "ibge": self.ibge,
            "nome_tom": self.nome_tom,
            "nome_ibge": self.nome_ibge,
            "uf": self.uf,
            "nome_preferido": self.nome_preferido,
        }
