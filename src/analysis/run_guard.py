"""Per-case run-state flag for the red-flag detector.

Alerts are not idempotently keyed, so two overlapping runs on the same case
could persist alert sets computed with different parameters. Only one run per
case may be active at a time.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from src.core.errors import AnalysisAlreadyRunningError

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Tracks which cases have a detector run in flight.

    Meant for a single event loop: the check and the transition to RUNNING
    happen without an intervening await.
    """

    def __init__(self) -> None:
        self._states: dict[str, RunState] = {}

    def state(self, case_id: str) -> RunState:
        return self._states.get(case_id, RunState.IDLE)

    @contextmanager
    def hold(self, case_id: str) -> Iterator[None]:
        if self.state(case_id) is RunState.RUNNING:
            raise AnalysisAlreadyRunningError(case_id)
        self._states[case_id] = RunState.RUNNING
        logger.info("Case %s: detector run started", case_id)
        try:
            yield
        finally:
            self._states[case_id] = RunState.IDLE
            logger.info("Case %s: detector run finished", case_id)
