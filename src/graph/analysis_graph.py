"""Report pipeline graph.

Graph flow: metrics → [detection_router] → red_flags → narrative → compile → END
                                         ↘ narrative (alerts supplied by the caller)

Detection only runs inside the pipeline when the caller asks for it; otherwise
the alerts of the latest stored run are passed in through the state.
"""

from __future__ import annotations

import logging
from typing import Any

from langgraph.graph import END, StateGraph

from src.analysis.detector import detect
from src.analysis.metrics import aggregate
from src.config import get_settings
from src.core.errors import NarrativeUnavailableError
from src.core.state import AnalysisState
from src.graph.routing import detection_router
from src.reporting.compiler import build_summary, compile_report
from src.reporting.narrative import generate_narrative

logger = logging.getLogger(__name__)


# ── Nodes ──


def metrics_node(state: AnalysisState) -> dict[str, Any]:
    """Aggregate dashboard metrics over the (already filtered) ledger."""
    txns = state.get("transactions", [])
    metrics = aggregate(
        txns, state.get("filters"), top_limit=get_settings().top_counterparties_limit
    )
    logger.info("Metrics node: %d transaction(s) aggregated", metrics.transaction_count)
    return {"metrics": metrics}


def red_flags_node(state: AnalysisState) -> dict[str, Any]:
    alerts = detect(
        state.get("transactions", []),
        thresholds=state.get("thresholds"),
        window_days=state.get("window_days"),
    )
    return {"alerts": alerts}


def narrative_node(state: AnalysisState) -> dict[str, Any]:
    """Best-effort prose; a collaborator failure is recorded, never raised."""
    if not state.get("request_narrative", True):
        return {"narrative": None, "narrative_error": None}

    summary = build_summary(state["metrics"], state.get("alerts", []), state["case"])
    try:
        narrative = generate_narrative(summary)
    except NarrativeUnavailableError as e:
        logger.error("Narrative node failed: %s", e)
        return {
            "narrative": None,
            "narrative_error": str(e),
            "errors": state.get("errors", []) + [{"node": "narrative", "error": str(e)}],
        }
    return {"narrative": narrative, "narrative_error": None}


def compile_node(state: AnalysisState) -> dict[str, Any]:
    narrative = state.get("narrative")
    error = state.get("narrative_error")

    def provider(_summary: dict[str, Any]) -> str:
        if error:
            raise NarrativeUnavailableError(error)
        return narrative or ""

    report = compile_report(
        state["metrics"],
        state.get("alerts", []),
        state["case"],
        transactions=state.get("transactions", []),
        narrative_provider=provider if (narrative or error) else None,
    )
    return {"report": report}


# ── Graph ──


def build_analysis_graph(checkpointer: Any | None = None) -> Any:
    """Build and compile the report graph.

    Each report is a one-shot run, so no checkpointer is attached unless the
    caller passes one (e.g. ``MemorySaver`` for step-by-step inspection).

    Returns:
        Compiled LangGraph application.
    """
    graph = StateGraph(AnalysisState)

    # ── Register nodes ──
    graph.add_node("metrics", metrics_node)
    graph.add_node("red_flags", red_flags_node)
    graph.add_node("narrative", narrative_node)
    graph.add_node("compile", compile_node)

    # ── Edges ──
    graph.set_entry_point("metrics")
    graph.add_conditional_edges(
        "metrics",
        detection_router,
        {"red_flags": "red_flags", "narrative": "narrative"},
    )
    graph.add_edge("red_flags", "narrative")
    graph.add_edge("narrative", "compile")
    graph.add_edge("compile", END)

    # ── Compile ──
    compiled = graph.compile(checkpointer=checkpointer)

    logger.info("Analysis graph compiled: metrics → red_flags? → narrative → compile → END")
    return compiled
