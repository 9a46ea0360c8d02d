"""Financial analysis service — async entry points used by the UI/CLI glue.

Blocking work (spreadsheet parsing, detection, PDF rendering) runs through
``asyncio.to_thread`` so the event loop stays responsive. Red-flag detection
is explicit and user-triggered: at most one run per case at a time.

Known limitation: concurrent uploads to the same case may interleave; the
ledger is append-only and single-writer in the common flow.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from src.analysis.detector import detect
from src.analysis.metrics import aggregate
from src.analysis.run_guard import RunGuard
from src.config import get_settings
from src.core.models import (
    AnalysisRun,
    CaseMetadata,
    DetectionThresholds,
    FinancialMetrics,
    MetricsFilters,
    ReportDocument,
    UploadResult,
)
from src.core.state import AnalysisState
from src.graph.analysis_graph import build_analysis_graph
from src.infrastructure.storage.case_store import CaseStore, get_case_store
from src.ingestion.parsers import ParseReport, parse
from src.ingestion.validation import validate
from src.reporting.exporters import export_transactions_csv, export_workbook, render_pdf

logger = logging.getLogger(__name__)

STORED_ALERTS_NOTE = (
    "Alerts come from the latest stored run over the whole case ledger; "
    "filters apply to metrics and transaction tables only."
)

ExportFormat = Literal["csv", "xlsx", "pdf"]


class FinancialAnalysisService:
    def __init__(self, store: CaseStore | None = None, guard: RunGuard | None = None) -> None:
        self.store = store if store is not None else get_case_store()
        self.guard = guard if guard is not None else RunGuard()
        self._graph = build_analysis_graph()

    # ── Upload ──

    async def upload(self, case_id: str, filename: str, content: bytes) -> UploadResult:
        """Parse, validate and persist one file.

        File-level errors (``IngestionError``) abort this file only; nothing
        from it is stored.
        """
        report = ParseReport(source=filename)
        transactions = await asyncio.to_thread(lambda: list(parse(filename, content, report)))
        validation = validate(transactions, report)

        await asyncio.to_thread(self.store.save_file, case_id, filename, content)
        await asyncio.to_thread(self.store.append_transactions, case_id, transactions)

        logger.info(
            "Case %s: %s uploaded, %d transaction(s), %d dropped, %d warning(s)",
            case_id, filename, len(transactions), len(report.dropped), len(validation.warnings),
        )
        return UploadResult(
            case_id=case_id,
            filename=filename,
            transaction_count=len(transactions),
            dropped_rows=len(report.dropped),
            validation=validation,
        )

    # ── Red flags ──

    async def run_red_flag_analysis(
        self,
        case_id: str,
        thresholds: DetectionThresholds | None = None,
        window_days: int | None = None,
    ) -> AnalysisRun:
        """Run the detector over the whole case ledger; the result supersedes earlier runs.

        Raises:
            AnalysisAlreadyRunningError: a run for this case is still in flight.
        """
        thresholds = thresholds or DetectionThresholds.from_settings()
        window_days = window_days if window_days is not None else get_settings().default_window_days

        with self.guard.hold(case_id):
            started = datetime.now(timezone.utc)
            transactions = await asyncio.to_thread(self.store.query_transactions, case_id)
            alerts = await asyncio.to_thread(detect, transactions, thresholds, window_days)
            run = AnalysisRun(
                run_id=uuid.uuid4().hex,
                case_id=case_id,
                started_at=started,
                finished_at=datetime.now(timezone.utc),
                window_days=window_days,
                thresholds=thresholds,
                transaction_count=len(transactions),
                alerts=alerts,
            )
            await asyncio.to_thread(self.store.replace_alerts, case_id, run)

        logger.info("Case %s: run %s produced %d alert(s)", case_id, run.run_id, len(alerts))
        return run

    # ── Metrics ──

    async def get_metrics(
        self, case_id: str, filters: MetricsFilters | None = None
    ) -> FinancialMetrics:
        transactions = await asyncio.to_thread(self.store.query_transactions, case_id)
        return aggregate(transactions, filters)

    # ── Reports ──

    async def generate_report(
        self,
        case_id: str,
        metadata: CaseMetadata | None = None,
        filters: MetricsFilters | None = None,
        run_detection: bool = False,
        request_narrative: bool = True,
    ) -> ReportDocument:
        """Compile the case report through the analysis graph.

        Without ``run_detection`` the alerts of the latest stored run are used.
        Those cover the whole ledger, so a filtered report says so in its notes.
        """
        transactions = await asyncio.to_thread(self.store.query_transactions, case_id, filters)
        alerts = [] if run_detection else await asyncio.to_thread(self.store.list_alerts, case_id)

        initial_state: AnalysisState = {
            "case_id": case_id,
            "case": metadata or CaseMetadata(case_id=case_id),
            "transactions": transactions,
            "filters": filters,
            "alerts": alerts,
            "run_detection": run_detection,
            "request_narrative": request_narrative,
            "errors": [],
        }
        final_state: dict[str, Any] = await self._graph.ainvoke(initial_state)
        report: ReportDocument = final_state["report"]
        if filters is not None and not run_detection:
            report.notes.append(STORED_ALERTS_NOTE)
        return report

    async def export(
        self,
        case_id: str,
        fmt: ExportFormat,
        filters: MetricsFilters | None = None,
        metadata: CaseMetadata | None = None,
    ) -> bytes:
        """Export the (filtered) case as CSV, XLSX or PDF bytes."""
        if fmt == "pdf":
            document = await self.generate_report(case_id, metadata, filters)
            return await asyncio.to_thread(render_pdf, document)

        transactions = await asyncio.to_thread(self.store.query_transactions, case_id, filters)
        if fmt == "csv":
            return export_transactions_csv(transactions).encode("utf-8")
        if fmt == "xlsx":
            metrics = aggregate(transactions, filters)
            return await asyncio.to_thread(export_workbook, transactions, metrics)
        raise ValueError(f"Unsupported export format: {fmt!r}")
