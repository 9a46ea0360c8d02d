"""Header alias table and column resolution for tabular RIF exports.

CSV and spreadsheet exports name their columns differently depending on the
bank. Every logical field has an explicit list of recognized aliases; the
resolver tags each header with at most one field and produces a ``ColumnMap``
that the row parsers index into.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Sequence

from src.core.errors import MissingColumnError

logger = logging.getLogger(__name__)

# Resolution order matters: a header is claimed by the first field whose
# aliases match it, so more specific fields come first ("Documento Titular"
# must not become the counterparty document, "Contraparte" must not become
# the account).
HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "holder_document": (r"(cpf|cnpj|documento|doc)\W*(do\s*)?titular", r"holder\W*document"),
    "counterparty_document": (r"documento", r"\bcpf\b", r"\bcnpj\b", r"\bdoc\b", r"document"),
    "date": (r"data", r"date"),
    "amount": (r"valor", r"amount", r"quantia"),
    "type": (r"tipo", r"type", r"natureza", r"\bd/c\b"),
    "counterparty": (
        r"contraparte", r"counterparty", r"benefici[aá]rio", r"favorecido",
        r"remetente", r"\bnome\b", r"\bname\b",
    ),
    "description": (r"descri[cç][aã]o", r"description", r"hist[oó]rico"),
    "method": (r"m[eé]todo", r"method", r"modalidade", r"forma"),
    "bank": (r"banco", r"bank"),
    "agency": (r"ag[eê]ncia", r"agency", r"branch"),
    "account": (r"conta", r"account"),
    "channel": (r"canal", r"channel"),
    "country": (r"pa[ií]s", r"country"),
    "currency": (r"moeda", r"currency"),
}

REQUIRED_FIELDS: tuple[str, ...] = ("date", "type", "amount")

_PATTERNS: dict[str, re.Pattern[str]] = {
    name: re.compile("|".join(aliases), re.IGNORECASE)
    for name, aliases in HEADER_ALIASES.items()
}


@dataclass(frozen=True)
class ColumnMap:
    """Logical field → column index. Required fields are always present."""

    date: int
    type: int
    amount: int
    counterparty: int | None = None
    counterparty_document: int | None = None
    holder_document: int | None = None
    description: int | None = None
    method: int | None = None
    bank: int | None = None
    agency: int | None = None
    account: int | None = None
    channel: int | None = None
    country: int | None = None
    currency: int | None = None

    def value(self, row: Sequence[Any], field_name: str) -> Any:
        """Cell of ``row`` for a logical field, or None when absent."""
        index = getattr(self, field_name)
        if index is None or index >= len(row):
            return None
        return row[index]

    def as_dict(self) -> dict[str, int]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def match_header(header: str) -> str | None:
    """Logical field a single header would resolve to, ignoring claims."""
    for name, pattern in _PATTERNS.items():
        if pattern.search(header):
            return name
    return None


def resolve_columns(headers: Sequence[Any]) -> ColumnMap:
    """Build the ColumnMap for a header row.

    Raises:
        MissingColumnError: when date, type or amount cannot be matched.
    """
    cleaned = [str(h if h is not None else "").strip() for h in headers]
    claimed: set[int] = set()
    mapping: dict[str, int] = {}

    for name, pattern in _PATTERNS.items():
        for index, header in enumerate(cleaned):
            if index in claimed or not header:
                continue
            if pattern.search(header):
                mapping[name] = index
                claimed.add(index)
                break

    missing = [name for name in REQUIRED_FIELDS if name not in mapping]
    if missing:
        raise MissingColumnError(missing, cleaned)

    logger.debug("Resolved columns %s from headers %s", mapping, cleaned)
    return ColumnMap(**mapping)
