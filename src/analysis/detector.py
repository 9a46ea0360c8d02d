"""Red-Flag Detector — runs the COAF rule battery over a case ledger.

``detect`` is a pure function: the same transactions, thresholds and window
always produce the same alerts, in the same canonical order, so a regulator
re-running an analysis gets an identical result.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from src.analysis.red_flags.circularity import detect_circularity
from src.analysis.red_flags.coaf_patterns import (
    detect_atypical_value,
    detect_cash_intensive,
    detect_round_values,
    detect_same_day_transfers,
)
from src.analysis.red_flags.common import chronological
from src.analysis.red_flags.fan_in_out import detect_fan_in_out
from src.analysis.red_flags.fractioning import detect_fractioning
from src.analysis.red_flags.incompatible_profile import detect_incompatible_profile
from src.config import get_settings
from src.core.models import DetectionThresholds, RedFlagAlert, Transaction

logger = logging.getLogger(__name__)

Rule = Callable[[Sequence[Transaction], DetectionThresholds, int], list[RedFlagAlert]]

# Registry mapping rule names to detectors. Order is part of the canonical
# alert ordering.
RULE_REGISTRY: dict[str, Rule] = {
    "fractioning": detect_fractioning,
    "fan-in-out": detect_fan_in_out,
    "circularity": detect_circularity,
    "incompatible-profile": detect_incompatible_profile,
    "cash-intensive": detect_cash_intensive,
    "atypical-value": detect_atypical_value,
    "same-day-transfers": detect_same_day_transfers,
    "round-value": detect_round_values,
}

_RULE_ORDER = {name: index for index, name in enumerate(RULE_REGISTRY)}


def canonical_order(alert: RedFlagAlert) -> tuple:
    return (
        -alert.severity.rank,
        _RULE_ORDER.get(alert.type, len(_RULE_ORDER)),
        alert.subject,
        alert.evidence_transaction_ids,
        alert.id,
    )


def detect(
    transactions: Iterable[Transaction],
    thresholds: DetectionThresholds | None = None,
    window_days: int | None = None,
) -> list[RedFlagAlert]:
    """Run every enabled rule and return the alerts in canonical order.

    An empty ledger yields an empty list.
    """
    thresholds = thresholds or DetectionThresholds.from_settings()
    window_days = window_days if window_days is not None else get_settings().default_window_days
    if window_days <= 0:
        raise ValueError(f"window_days must be positive, got {window_days}")

    txns = sorted(transactions, key=chronological)
    logger.info(
        "Red-flag detection: %d transactions, window=%d days", len(txns), window_days
    )
    if not txns:
        return []

    alerts: list[RedFlagAlert] = []
    for name, rule in RULE_REGISTRY.items():
        if not thresholds.is_enabled(name):
            logger.info("Rule %s disabled, skipped", name)
            continue
        found = rule(txns, thresholds, window_days)
        logger.info("Rule %s: %d alert(s)", name, len(found))
        alerts.extend(found)

    alerts.sort(key=canonical_order)
    logger.info("Red-flag detection complete: %d alert(s)", len(alerts))
    return alerts
