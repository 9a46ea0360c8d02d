"""Field normalizers shared by every RIF input format.

Each function either returns a normalized value or raises ``RowParseError``;
the parsers catch it, drop the row and keep going.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from src.core.errors import RowParseError
from src.core.models import TransactionType

# Tried in order; the first format that consumes the whole string wins.
DATE_FORMATS: tuple[str, ...] = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%d-%m-%Y",
)

CREDIT_PATTERN = re.compile(r"cr[eé]dito|entrada|recebimento|positivo|\+", re.IGNORECASE)
DEBIT_PATTERN = re.compile(r"d[eé]bito|sa[íi]da|pagamento|negativo|-", re.IGNORECASE)

_CURRENCY_SYMBOLS = re.compile(r"R\$|US\$|\$|€|£|BRL|USD", re.IGNORECASE)
_NON_NUMERIC = re.compile(r"[^\d.\-]")
_NON_DIGIT = re.compile(r"\D")

# CPF (000.000.000-00) and CNPJ (00.000.000/0000-00) as printed in descriptions.
_CPF_IN_TEXT = re.compile(r"\d{3}\.\d{3}\.\d{3}-\d{2}")
_CNPJ_IN_TEXT = re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}")


def normalize_date(value: object) -> datetime:
    """Resolve a cell to a concrete timestamp, never defaulting to now."""
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    cleaned = str(value or "").strip()
    if not cleaned:
        raise RowParseError("invalid_date", "empty date")

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue

    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return _naive_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        raise RowParseError("invalid_date", f"unparseable date: {cleaned!r}") from None


def _naive_utc(value: datetime) -> datetime:
    """The ledger holds naive timestamps only; offsets are folded into UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_amount(value: object) -> Decimal:
    """Parse a monetary cell into a non-negative, non-zero Decimal.

    Strings follow the Brazilian convention: ``.`` groups thousands and ``,``
    separates decimals, so ``"R$ 1.500,00"`` becomes ``Decimal("1500.00")``.
    Native numbers (spreadsheet cells) are taken as they are.
    """
    if isinstance(value, bool):
        raise RowParseError("invalid_amount", f"not an amount: {value!r}")

    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise RowParseError("invalid_amount", f"unparseable amount: {value!r}") from None
    else:
        raw = str(value or "").strip()
        cleaned = _CURRENCY_SYMBOLS.sub("", raw)
        cleaned = re.sub(r"\s", "", cleaned)
        cleaned = cleaned.replace(".", "")
        cleaned = cleaned.replace(",", ".", 1)
        cleaned = _NON_NUMERIC.sub("", cleaned)
        if not cleaned or cleaned in {"-", "."}:
            raise RowParseError("invalid_amount", f"unparseable amount: {raw!r}")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise RowParseError("invalid_amount", f"unparseable amount: {raw!r}") from None

    if not amount.is_finite():
        raise RowParseError("invalid_amount", f"unparseable amount: {value!r}")
    if amount.is_zero():
        raise RowParseError("zero_amount", f"zero amount: {value!r}")
    return abs(amount)


def normalize_type(value: object) -> TransactionType:
    """Map a credit/debit marker to the enum. Unknown markers are never guessed."""
    cleaned = str(value or "").strip()
    if CREDIT_PATTERN.search(cleaned):
        return TransactionType.CREDIT
    if DEBIT_PATTERN.search(cleaned):
        return TransactionType.DEBIT
    raise RowParseError("invalid_type", f"unrecognized transaction type: {cleaned!r}")


def normalize_document(value: object) -> str | None:
    """Keep only the digits of a CPF/CNPJ; empty results become None."""
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    return digits or None


def extract_document(text: str | None) -> str | None:
    """Find the first CPF or CNPJ printed inside free text."""
    if not text:
        return None
    match = _CPF_IN_TEXT.search(text) or _CNPJ_IN_TEXT.search(text)
    return normalize_document(match.group(0)) if match else None


def clean_text(value: object) -> str | None:
    """Strip a free-text cell; blanks become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
