"""Incompatible profile — amounts far outside an account's own history.

The baseline of a transaction is the average amount of the earlier
transactions of the same holder in the same direction. Once at least
``profile_min_history`` of them exist, a transaction above
``baseline × incompatible_profile_multiplier`` is flagged.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Sequence

from src.analysis.red_flags.common import (
    ZERO,
    build_alert,
    chronological,
    direction_label,
    format_brl,
)
from src.core.models import DetectionThresholds, RedFlagAlert, Severity, Transaction

logger = logging.getLogger(__name__)

RULE = "incompatible-profile"


def detect_incompatible_profile(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    multiplier = thresholds.incompatible_profile_multiplier
    min_history = max(1, thresholds.profile_min_history)

    sides: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for t in transactions:
        sides[(t.holder_key, t.type.value)].append(t)

    alerts: list[RedFlagAlert] = []
    for (holder, _), txns in sorted(sides.items()):
        txns.sort(key=chronological)
        running = ZERO
        flagged: list[tuple[Transaction, Decimal]] = []
        for index, t in enumerate(txns):
            if index >= min_history:
                baseline = running / index
                if baseline > 0 and t.amount > baseline * multiplier:
                    flagged.append((t, t.amount / baseline))
            running += t.amount

        if not flagged:
            continue

        worst = max(ratio for _, ratio in flagged)
        alerts.append(build_alert(
            RULE,
            Severity.HIGH if worst >= 2 * multiplier else Severity.MEDIUM,
            subject=holder,
            description=(
                f"{len(flagged)} {direction_label(txns[0].type)} transaction(s) of account "
                f"{holder} exceed {multiplier}x its historical average; largest "
                f"{format_brl(max(t.amount for t, _ in flagged))} "
                f"({worst.quantize(Decimal('0.1'))}x the baseline)"
            ),
            evidence=[t for t, _ in flagged],
            parameters={
                "incompatible_profile_multiplier": str(multiplier),
                "profile_min_history": min_history,
            },
            score=40 + 10 * (worst / multiplier),
        ))
        logger.debug("Incompatible profile: %s -> %d transaction(s)", holder, len(flagged))

    return alerts
