"""AnalysisState — LangGraph state schema for the report pipeline.

Every node reads from and writes to this shared state.
"""

from __future__ import annotations

from typing import Any, TypedDict

from src.core.models import (
    CaseMetadata,
    DetectionThresholds,
    FinancialMetrics,
    MetricsFilters,
    RedFlagAlert,
    ReportDocument,
    Transaction,
)


class AnalysisState(TypedDict, total=False):
    """Global state flowing through the report graph."""

    # ── Input ──
    case_id: str
    case: CaseMetadata
    transactions: list[Transaction]
    filters: MetricsFilters | None
    thresholds: DetectionThresholds | None
    window_days: int | None
    run_detection: bool
    request_narrative: bool

    # ── Metrics / detection ──
    metrics: FinancialMetrics
    alerts: list[RedFlagAlert]

    # ── Narrative ──
    narrative: str | None
    narrative_error: str | None

    # ── Output ──
    report: ReportDocument
    errors: list[dict[str, Any]]
