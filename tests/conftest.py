"""Shared fixtures: a compact factory for normalized transactions."""

from __future__ import annotations

import itertools
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

import pytest

from src.core.models import Transaction, TransactionType

_ids = itertools.count(1)


def make_txn(
    date: str | datetime,
    amount: str | int,
    type: str = "debit",
    counterparty: str = "Contraparte",
    **extra: Any,
) -> Transaction:
    """Build a Transaction from terse literals (``date`` as ``YYYY-MM-DD[ HH:MM]``)."""
    if isinstance(date, str):
        fmt = "%Y-%m-%d %H:%M" if " " in date else "%Y-%m-%d"
        date = datetime.strptime(date, fmt)
    return Transaction(
        id=extra.pop("id", f"T{next(_ids):05d}"),
        date=date,
        amount=Decimal(str(amount)),
        type=TransactionType(type),
        counterparty=counterparty,
        **extra,
    )


@pytest.fixture
def txn() -> Callable[..., Transaction]:
    return make_txn
