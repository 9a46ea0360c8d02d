"""Helpers shared by the red-flag rules."""

from __future__ import annotations

import hashlib
from datetime import timedelta
from decimal import Decimal
from typing import Any, Iterable, Iterator, Sequence

from src.core.models import RedFlagAlert, Severity, Transaction, TransactionType

ZERO = Decimal("0")


def chronological(txn: Transaction) -> tuple:
    return (txn.date, txn.id)


def direction_label(txn_type: TransactionType) -> str:
    return "in" if txn_type is TransactionType.CREDIT else "out"


def window_end(txns: Sequence[Transaction], start: int, days: int) -> int:
    """Exclusive end index of the ``days``-long window anchored at ``txns[start]``.

    ``txns`` must be in chronological order.
    """
    limit = txns[start].date + timedelta(days=days)
    end = start
    while end < len(txns) and txns[end].date <= limit:
        end += 1
    return end


def greedy_windows(
    txns: Sequence[Transaction], days: int, qualifies
) -> Iterator[Sequence[Transaction]]:
    """Yield non-overlapping windows for which ``qualifies(window)`` holds.

    Windows are anchored at each transaction in turn; once one qualifies the
    scan resumes after its last transaction.
    """
    start = 0
    while start < len(txns):
        end = window_end(txns, start, days)
        window = txns[start:end]
        if qualifies(window):
            yield window
            start = end
        else:
            start += 1


def total(txns: Iterable[Transaction]) -> Decimal:
    return sum((t.amount for t in txns), ZERO)


def format_brl(amount: Decimal) -> str:
    """R$ 1.234,56"""
    text = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {text}"


def build_alert(
    rule: str,
    severity: Severity,
    subject: str,
    description: str,
    evidence: Iterable[Transaction],
    parameters: dict[str, Any],
    score: int | float,
) -> RedFlagAlert:
    ids = tuple(sorted({t.id for t in evidence}))
    digest = hashlib.sha1(f"{rule}|{subject}|{','.join(ids)}".encode("utf-8")).hexdigest()
    return RedFlagAlert(
        id=f"{rule}-{digest[:12]}",
        type=rule,
        severity=severity,
        subject=subject,
        description=description,
        score=max(0, min(100, int(score))),
        evidence_transaction_ids=ids,
        parameters=parameters,
    )
