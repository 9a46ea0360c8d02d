"""Routing functions for LangGraph conditional edges."""

from __future__ import annotations

from typing import Literal

from src.core.state import AnalysisState


def detection_router(
    state: AnalysisState,
) -> Literal["red_flags", "narrative"]:
    """Decide whether the detector runs inside the pipeline.

    Returns:
        "red_flags" — run detection over the filtered ledger
        "narrative" — reuse the alerts already in state (latest stored run)
    """
    if state.get("run_detection", False):
        return "red_flags"
    return "narrative"
