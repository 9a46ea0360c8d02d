"""Additional COAF indicator patterns.

- cash-intensive: cash movements above a limit inside a rolling window
- atypical-value: single transactions far above usual retail amounts
- same-day-transfers: several TED/wire transfers by one holder on one day
- round-value: exact round amounts (50k, 100k, 200k, 500k, 1M)
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from decimal import Decimal
from typing import Sequence

from src.analysis.red_flags.common import (
    build_alert,
    chronological,
    direction_label,
    format_brl,
    greedy_windows,
    total,
)
from src.core.models import DetectionThresholds, RedFlagAlert, Severity, Transaction

logger = logging.getLogger(__name__)

CASH_PATTERN = re.compile(r"esp[eé]cie|dinheiro|saque|numer[aá]rio|\bcash\b", re.IGNORECASE)
TRANSFER_PATTERN = re.compile(r"\bted\b|\bdoc\b|transfer[eê]ncia|\bwire\b", re.IGNORECASE)
ROUND_VALUES: tuple[Decimal, ...] = tuple(
    Decimal(v) for v in ("50000", "100000", "200000", "500000", "1000000")
)


def _mentions(pattern: re.Pattern[str], txn: Transaction) -> bool:
    text = " ".join(filter(None, (txn.method, txn.channel, txn.description)))
    return bool(pattern.search(text))


def detect_cash_intensive(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    limit = thresholds.cash_threshold
    sides: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for t in transactions:
        if _mentions(CASH_PATTERN, t):
            sides[(t.holder_key, t.type.value)].append(t)

    alerts: list[RedFlagAlert] = []
    for (holder, _), txns in sorted(sides.items()):
        txns.sort(key=chronological)
        for window in greedy_windows(txns, window_days, lambda w: total(w) > limit):
            amount = total(window)
            alerts.append(build_alert(
                "cash-intensive",
                Severity.HIGH if amount >= 2 * limit else Severity.MEDIUM,
                subject=holder,
                description=(
                    f"Cash {direction_label(window[0].type)} of {format_brl(amount)} by "
                    f"{holder} in {len(window)} transaction(s) within {window_days} days"
                ),
                evidence=window,
                parameters={"cash_threshold": str(limit), "window_days": window_days},
                score=50 * (amount / limit),
            ))
    return alerts


def detect_atypical_value(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    limit = thresholds.atypical_threshold
    return [
        build_alert(
            "atypical-value",
            Severity.HIGH,
            subject=t.counterparty,
            description=f"Transaction of {format_brl(t.amount)} with '{t.counterparty}' "
                        f"on {t.date:%d/%m/%Y} is far above the usual pattern",
            evidence=[t],
            parameters={"atypical_threshold": str(limit)},
            score=50 * (t.amount / limit),
        )
        for t in sorted(transactions, key=chronological)
        if t.amount > limit
    ]


def detect_same_day_transfers(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    minimum = thresholds.same_day_transfer_min
    days: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for t in transactions:
        if _mentions(TRANSFER_PATTERN, t):
            days[(t.holder_key, t.date.date().isoformat())].append(t)

    alerts: list[RedFlagAlert] = []
    for (holder, day), txns in sorted(days.items()):
        if len(txns) < minimum:
            continue
        alerts.append(build_alert(
            "same-day-transfers",
            Severity.MEDIUM,
            subject=holder,
            description=f"{len(txns)} transfers by {holder} on {day} "
                        f"totalling {format_brl(total(txns))}",
            evidence=txns,
            parameters={"same_day_transfer_min": minimum},
            score=40 * len(txns) / minimum,
        ))
    return alerts


def detect_round_values(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    candidates = {v for v in ROUND_VALUES if v >= thresholds.round_value_min}
    return [
        build_alert(
            "round-value",
            Severity.LOW,
            subject=t.counterparty,
            description=f"Exact round amount {format_brl(t.amount)} with '{t.counterparty}' "
                        f"on {t.date:%d/%m/%Y}",
            evidence=[t],
            parameters={"round_value_min": str(thresholds.round_value_min)},
            score=30,
        )
        for t in sorted(transactions, key=chronological)
        if t.amount in candidates
    ]
