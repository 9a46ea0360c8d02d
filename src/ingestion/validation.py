"""Validation Layer — advisory screening of a normalized ledger.

Never drops or mutates rows. ``valid`` is False whenever a warning fired, but
callers keep processing: this is a soft gate.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Sequence

from src.core.models import Transaction, ValidationResult
from src.ingestion.parsers import ParseReport

logger = logging.getLogger(__name__)

_DROP_REASON_LABELS: dict[str, str] = {
    "invalid_date": "unparseable date",
    "invalid_amount": "unparseable amount",
    "zero_amount": "zero amount",
    "invalid_type": "unrecognized transaction type",
    "too_few_fields": "too few fields",
}


def validate(
    transactions: Sequence[Transaction],
    report: ParseReport | None = None,
    now: datetime | None = None,
) -> ValidationResult:
    """Screen a parsed ledger and return human-readable warnings."""
    warnings: list[str] = []

    if not transactions:
        warnings.append("No valid transactions were parsed")

    future = _count_future(transactions, now)
    if future:
        warnings.append(f"{future} transaction(s) dated in the future")

    zero = sum(1 for t in transactions if t.amount.is_zero())
    if zero:
        warnings.append(f"{zero} transaction(s) with zero amount")

    duplicates = _count_duplicates(transactions)
    if duplicates:
        warnings.append(f"{duplicates} possible duplicate transaction(s) (not removed)")

    if report is not None:
        for reason, count in sorted(report.counts_by_reason().items()):
            label = _DROP_REASON_LABELS.get(reason, reason)
            warnings.append(f"{count} row(s) dropped from {report.source}: {label}")

    if warnings:
        logger.warning("Validation warnings: %s", "; ".join(warnings))

    return ValidationResult(valid=not warnings, warnings=warnings)


def _count_future(transactions: Sequence[Transaction], now: datetime | None) -> int:
    count = 0
    for t in transactions:
        reference = now or datetime.now(t.date.tzinfo)
        date = t.date
        if (date.tzinfo is None) != (reference.tzinfo is None):
            date = date.replace(tzinfo=reference.tzinfo)
        if date > reference:
            count += 1
    return count


def _count_duplicates(transactions: Sequence[Transaction]) -> int:
    """Rows beyond the first with identical date, direction, amount and counterparty."""
    keys = Counter(
        (t.date, t.type, t.amount, t.counterparty_key) for t in transactions
    )
    return sum(n - 1 for n in keys.values() if n > 1)
