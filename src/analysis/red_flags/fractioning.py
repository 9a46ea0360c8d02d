"""Fractioning (structuring) — splitting a reportable amount into smaller ones.

For every counterparty and direction, sub-threshold transactions that fall in
the same rolling window and together reach the reporting threshold form a
cluster. A transaction at or above the threshold is never part of a cluster:
on its own it already triggers standard reporting.
"""

from __future__ import annotations

import logging
from collections import defaultdict
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

RULE = "fractioning"


def detect_fractioning(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    limit = thresholds.fractioning_threshold
    min_count = max(2, thresholds.fractioning_min_transactions)

    groups: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for t in transactions:
        if t.amount < limit:
            groups[(t.counterparty_key, t.type.value)].append(t)

    def qualifies(window: Sequence[Transaction]) -> bool:
        return len(window) >= min_count and total(window) >= limit

    alerts: list[RedFlagAlert] = []
    for (counterparty, _), txns in sorted(groups.items()):
        txns.sort(key=chronological)
        clusters = list(greedy_windows(txns, window_days, qualifies))
        if not clusters:
            continue

        evidence = [t for cluster in clusters for t in cluster]
        largest = max(total(c) for c in clusters)
        severity = (
            Severity.HIGH if len(clusters) >= 3
            else Severity.MEDIUM if len(clusters) == 2
            else Severity.LOW
        )
        name = txns[0].counterparty
        alerts.append(build_alert(
            RULE,
            severity,
            subject=name,
            description=(
                f"{len(clusters)} cluster(s) of transactions below {format_brl(limit)} "
                f"with '{name}' ({direction_label(txns[0].type)}) adding up to "
                f"{format_brl(total(evidence))} within {window_days} days"
            ),
            evidence=evidence,
            parameters={
                "fractioning_threshold": str(limit),
                "fractioning_min_transactions": min_count,
                "window_days": window_days,
            },
            score=40 * len(clusters) + 10 * (largest / limit),
        ))
        logger.debug("Fractioning: %s -> %d cluster(s)", counterparty, len(clusters))

    return alerts
