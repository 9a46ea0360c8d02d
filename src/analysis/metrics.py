"""Metrics Aggregator — dashboard statistics over a filtered ledger window.

Pure functions. Every monetary sum is a ``Decimal``; the only rounding is the
average ticket, quantized to cents for display.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from src.config import get_settings
from src.core.models import (
    CounterpartyRank,
    FinancialMetrics,
    HeatmapCell,
    MethodShare,
    MetricsFilters,
    PeriodPoint,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
UNSPECIFIED_METHOD = "Não informado"

TIME_RANGE_DAYS: dict[str, int] = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


def apply_filters(
    transactions: Iterable[Transaction], filters: MetricsFilters | None = None
) -> list[Transaction]:
    """Return the transactions that fall inside the filter window.

    ``time_range`` is anchored at the latest transaction of the ledger rather
    than at the wall clock, so the same ledger always yields the same window.
    """
    txns = list(transactions)
    if filters is None:
        return txns

    start, end = filters.start, filters.end
    if filters.time_range and filters.time_range != "all" and txns:
        anchor = max(t.date for t in txns)
        range_start = anchor - timedelta(days=TIME_RANGE_DAYS[filters.time_range])
        start = max(start, range_start) if start else range_start

    return [t for t in txns if matches(t, filters, start, end)]


def matches(
    txn: Transaction,
    filters: MetricsFilters,
    start: datetime | None = None,
    end: datetime | None = None,
) -> bool:
    """Filter predicate shared with the storage layer."""
    start = start if start is not None else filters.start
    end = end if end is not None else filters.end
    if start is not None and txn.date < start:
        return False
    if end is not None and txn.date > end:
        return False
    if filters.min_amount is not None and txn.amount < filters.min_amount:
        return False
    if filters.method and (txn.method or "").casefold() != filters.method.casefold():
        return False
    if filters.counterparty:
        needle = filters.counterparty.casefold()
        haystack = f"{txn.counterparty} {txn.counterparty_document or ''}".casefold()
        if needle not in haystack:
            return False
    return True


def aggregate(
    transactions: Iterable[Transaction],
    filters: MetricsFilters | None = None,
    top_limit: int | None = None,
) -> FinancialMetrics:
    """Compute totals, balance, series and rankings for the filtered window."""
    filters = filters or MetricsFilters()
    top_limit = top_limit if top_limit is not None else get_settings().top_counterparties_limit
    txns = apply_filters(transactions, filters)

    if not txns:
        return FinancialMetrics()

    total_credits = sum((t.amount for t in txns if t.type is TransactionType.CREDIT), ZERO)
    total_debits = sum((t.amount for t in txns if t.type is TransactionType.DEBIT), ZERO)
    count = len(txns)

    metrics = FinancialMetrics(
        total_credits=total_credits,
        total_debits=total_debits,
        balance=total_credits - total_debits,
        transaction_count=count,
        average_ticket=((total_credits + total_debits) / count).quantize(CENT, ROUND_HALF_UP),
        first_date=min(t.date for t in txns),
        last_date=max(t.date for t in txns),
        period_series=period_series(txns, filters.granularity),
        method_distribution=method_distribution(txns),
        top_counterparties=top_counterparties(txns, top_limit),
        time_heatmap=time_heatmap(txns),
    )
    logger.info(
        "Aggregated %d transactions: credits=%s debits=%s balance=%s",
        count, metrics.total_credits, metrics.total_debits, metrics.balance,
    )
    return metrics


def period_series(txns: Iterable[Transaction], granularity: str = "day") -> list[PeriodPoint]:
    fmt = "%Y-%m" if granularity == "month" else "%Y-%m-%d"
    points: dict[str, PeriodPoint] = {}
    for t in txns:
        key = t.date.strftime(fmt)
        point = points.setdefault(key, PeriodPoint(period=key))
        if t.type is TransactionType.CREDIT:
            point.credits += t.amount
        else:
            point.debits += t.amount
    return [points[k] for k in sorted(points)]


def method_distribution(txns: Iterable[Transaction]) -> list[MethodShare]:
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: Counter[str] = Counter()
    for t in txns:
        method = t.method or UNSPECIFIED_METHOD
        amounts[method] += t.amount
        counts[method] += 1
    shares = [MethodShare(method=m, amount=amounts[m], count=counts[m]) for m in amounts]
    return sorted(shares, key=lambda s: (-s.amount, s.method))


def top_counterparties(txns: Iterable[Transaction], limit: int = 10) -> list[CounterpartyRank]:
    """Counterparties ranked by number of transactions, then by volume."""
    ranks: dict[str, CounterpartyRank] = {}
    for t in txns:
        rank = ranks.get(t.counterparty_key)
        if rank is None:
            rank = ranks[t.counterparty_key] = CounterpartyRank(
                name=t.counterparty, document=t.counterparty_document, amount=ZERO, count=0
            )
        rank.amount += t.amount
        rank.count += 1
    ordered = sorted(ranks.values(), key=lambda r: (-r.count, -r.amount, r.name))
    return ordered[:limit]


def time_heatmap(txns: Iterable[Transaction]) -> list[HeatmapCell]:
    cells = Counter((t.date.weekday(), t.date.hour) for t in txns)
    return [
        HeatmapCell(weekday=weekday, hour=hour, count=n)
        for (weekday, hour), n in sorted(cells.items())
    ]
