"""Circularity — funds that travel A → B → … → A inside a short window.

Every material transaction becomes a directed edge: a debit flows from the
holder to the counterparty, a credit from the counterparty to the holder.
Parties are identified by tax document when known, so ledgers covering more
than one holder link up into longer chains. A chain must move forward in
time, fit inside ``circularity_window`` days and have between 2 and
``circularity_max_hops`` legs.
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence

from src.analysis.red_flags.common import build_alert, chronological, format_brl, total
from src.core.models import (
    DetectionThresholds,
    RedFlagAlert,
    Severity,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

RULE = "circularity"


@dataclass(frozen=True)
class _Edge:
    source: str
    target: str
    txn: Transaction


def _edge(txn: Transaction) -> _Edge:
    if txn.type is TransactionType.DEBIT:
        return _Edge(txn.holder_key, txn.counterparty_key, txn)
    return _Edge(txn.counterparty_key, txn.holder_key, txn)


def detect_circularity(
    transactions: Sequence[Transaction],
    thresholds: DetectionThresholds,
    window_days: int,
) -> list[RedFlagAlert]:
    floor = thresholds.circularity_min_amount
    max_hops = max(2, thresholds.circularity_max_hops)
    span = timedelta(days=thresholds.circularity_window)

    edges = [
        e for e in (_edge(t) for t in sorted(transactions, key=chronological))
        if e.txn.amount >= floor and e.source != e.target
    ]
    outgoing: dict[str, list[_Edge]] = defaultdict(list)
    names: dict[str, str] = {}
    for e in edges:
        outgoing[e.source].append(e)
        names.update(_names(e))
    out_dates = {node: [e.txn.date for e in lst] for node, lst in outgoing.items()}

    def find_cycle(path: list[_Edge], visited: set[str]) -> list[_Edge] | None:
        last = path[-1]
        origin = path[0].source
        deadline = path[0].txn.date + span
        candidates = outgoing.get(last.target, [])
        start = bisect.bisect_left(out_dates.get(last.target, []), last.txn.date)
        for nxt in candidates[start:]:
            if nxt.txn.date > deadline:
                break
            if any(nxt.txn.id == e.txn.id for e in path):
                continue
            if nxt.target == origin:
                return path + [nxt]
            if len(path) + 1 < max_hops and nxt.target not in visited:
                found = find_cycle(path + [nxt], visited | {nxt.target})
                if found:
                    return found
        return None

    seen: set[frozenset[str]] = set()
    alerts: list[RedFlagAlert] = []
    for first in edges:
        cycle = find_cycle([first], {first.source, first.target})
        if not cycle:
            continue
        key = frozenset(e.txn.id for e in cycle)
        if key in seen:
            continue
        seen.add(key)

        hops = len(cycle)
        route = " -> ".join([names[cycle[0].source]] + [names[e.target] for e in cycle])
        evidence = [e.txn for e in cycle]
        alerts.append(build_alert(
            RULE,
            Severity.HIGH if hops >= 3 else Severity.MEDIUM,
            subject=cycle[0].source,
            description=(
                f"Funds returned to their origin in {hops} legs within "
                f"{(cycle[-1].txn.date - cycle[0].txn.date).days} days: {route} "
                f"({format_brl(total(evidence))} moved)"
            ),
            evidence=evidence,
            parameters={
                "circularity_window": thresholds.circularity_window,
                "circularity_min_amount": str(floor),
                "circularity_max_hops": max_hops,
            },
            score=50 + 15 * (hops - 2),
        ))

    logger.debug("Circularity: %d cycle(s) over %d edges", len(alerts), len(edges))
    return alerts


def _names(edge: _Edge) -> dict[str, str]:
    """Readable labels for both ends of an edge."""
    txn = edge.txn
    if txn.type is TransactionType.DEBIT:
        return {edge.source: edge.source, edge.target: txn.counterparty}
    return {edge.source: txn.counterparty, edge.target: edge.target}
