"""Fan-in / fan-out — an account receiving from, or paying, too many parties.

Inbound (credit) and outbound (debit) sides are evaluated separately, so an
account that crosses both thresholds raises two alerts.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Sequence

from src.analysis.red_flags.common import (
    build_alert,
    chronological,
    format_brl,
    greedy_windows,
    total,
)
from src.core.models import (
    DetectionThresholds,
    RedFlagAlert,
    Severity,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

RULE = "fan-in-out"


def _distinct_counterparties(window: Sequence[Transaction]) -> int:
    return len({t.counterparty_key for t in window})


def detect_fan_in_out(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    limit = thresholds.fan_in_out_threshold

    sides: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for t in transactions:
        sides[(t.holder_key, t.type.value)].append(t)

    def qualifies(window: Sequence[Transaction]) -> bool:
        return _distinct_counterparties(window) > limit

    alerts: list[RedFlagAlert] = []
    for (holder, direction), txns in sorted(sides.items()):
        txns.sort(key=chronological)
        label = "fan-in" if direction == TransactionType.CREDIT.value else "fan-out"
        for window in greedy_windows(txns, window_days, qualifies):
            distinct = _distinct_counterparties(window)
            alerts.append(build_alert(
                RULE,
                Severity.HIGH if distinct > 2 * limit else Severity.MEDIUM,
                subject=f"{holder} ({label})",
                description=(
                    f"{label}: account {holder} "
                    f"{'received from' if label == 'fan-in' else 'paid'} {distinct} distinct "
                    f"counterparties between {window[0].date:%d/%m/%Y} and "
                    f"{window[-1].date:%d/%m/%Y} ({format_brl(total(window))})"
                ),
                evidence=window,
                parameters={
                    "fan_in_out_threshold": limit,
                    "window_days": window_days,
                    "direction": "in" if label == "fan-in" else "out",
                },
                score=50 + 50 * (distinct - limit) / max(limit, 1),
            ))
            logger.debug("Fan-in/out: %s %s %d counterparties", holder, label, distinct)

    return alerts
