"""CLI Runner — drive the RIF analysis service from the command line.

Usage:
    # Ingest one or more RIF exports into a case:
    python -m src.runner upload --case CASE-001 data/rif/extrato.csv data/rif/rif.txt

    # Explicit red-flag run (supersedes earlier alerts):
    python -m src.runner analyze --case CASE-001 --window 30 --fractioning 10000

    # Dashboard metrics for a window:
    python -m src.runner metrics --case CASE-001 --range 90d --granularity month

    # Report PDF, with or without narrative:
    python -m src.runner report --case CASE-001 --title "Operação X" --output out/report.pdf

    # Ledger export:
    python -m src.runner export --case CASE-001 --format xlsx --output out/ledger.xlsx
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Ensure project root on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.analysis.detector import RULE_REGISTRY  # noqa: E402
from src.core.errors import RIFAnalysisError  # noqa: E402
from src.core.models import CaseMetadata, DetectionThresholds, MetricsFilters  # noqa: E402
from src.infrastructure.storage.case_store import LocalCaseStore  # noqa: E402
from src.reporting.exporters import render_pdf  # noqa: E402
from src.services.financial_service import FinancialAnalysisService  # noqa: E402


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _filters(args: argparse.Namespace) -> MetricsFilters | None:
    values = {
        "time_range": getattr(args, "range", None),
        "min_amount": Decimal(args.min_amount) if getattr(args, "min_amount", None) else None,
        "method": getattr(args, "method", None),
        "counterparty": getattr(args, "counterparty", None),
    }
    if getattr(args, "granularity", None):
        values["granularity"] = args.granularity
    values = {k: v for k, v in values.items() if v is not None}
    return MetricsFilters(**values) if values else None


def _write(path: str, payload: bytes) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(payload)
    print(f"[OK] Saved {len(payload)} bytes to {p}")


# ── Commands ──


async def cmd_upload(service: FinancialAnalysisService, args: argparse.Namespace) -> int:
    failures = 0
    for name in args.files:
        path = Path(name)
        try:
            result = await service.upload(args.case, path.name, path.read_bytes())
        except (OSError, RIFAnalysisError) as e:
            print(f"[ERROR] {path.name}: {e}")
            failures += 1
            continue
        print(f"[OK] {path.name}: {result.transaction_count} transaction(s), "
              f"{result.dropped_rows} dropped")
        for warning in result.validation.warnings:
            print(f"   ⚠️  {warning}")
    return 1 if failures else 0


async def cmd_analyze(service: FinancialAnalysisService, args: argparse.Namespace) -> int:
    overrides = {}
    if args.fractioning is not None:
        overrides["fractioning_threshold"] = Decimal(args.fractioning)
    if args.fan is not None:
        overrides["fan_in_out_threshold"] = args.fan
    if args.rules:
        unknown = sorted(set(args.rules) - set(RULE_REGISTRY))
        if unknown:
            raise ValueError(
                f"Unknown rule(s): {', '.join(unknown)}; available: {', '.join(RULE_REGISTRY)}"
            )
        overrides["enabled_rules"] = tuple(args.rules)
    # Re-validate so CLI values obey the same bounds as the settings.
    thresholds = DetectionThresholds.model_validate(
        {**DetectionThresholds.from_settings().model_dump(), **overrides}
    )

    run = await service.run_red_flag_analysis(args.case, thresholds, args.window)
    print(f"\n⚠️  Red flags ({len(run.alerts)}) over {run.transaction_count} transaction(s):")
    for alert in run.alerts:
        print(f"   [{alert.severity.value.upper()}] {alert.type} | {alert.subject} | score={alert.score}")
        print(f"     {alert.description}")
    return 0


async def cmd_metrics(service: FinancialAnalysisService, args: argparse.Namespace) -> int:
    m = await service.get_metrics(args.case, _filters(args))
    print(f"\n📊 Metrics for {args.case}:")
    print(f"   Credits: {m.total_credits}  Debits: {m.total_debits}  Balance: {m.balance}")
    print(f"   Transactions: {m.transaction_count}  Average ticket: {m.average_ticket}")
    for c in m.top_counterparties:
        print(f"   • {c.name} ({c.document or '-'}): {c.amount} in {c.count} transaction(s)")
    return 0


async def cmd_report(service: FinancialAnalysisService, args: argparse.Namespace) -> int:
    metadata = CaseMetadata(
        case_id=args.case, title=args.title or "", investigator=args.investigator
    )
    document = await service.generate_report(
        args.case,
        metadata,
        _filters(args),
        run_detection=args.detect,
        request_narrative=not args.no_narrative,
    )
    for note in document.notes:
        print(f"[INFO] {note}")
    _write(args.output, await asyncio.to_thread(render_pdf, document))
    return 0


async def cmd_export(service: FinancialAnalysisService, args: argparse.Namespace) -> int:
    payload = await service.export(args.case, args.format, _filters(args))
    _write(args.output, payload)
    return 0


COMMANDS = {
    "upload": cmd_upload,
    "analyze": cmd_analyze,
    "metrics": cmd_metrics,
    "report": cmd_report,
    "export": cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RIF/COAF Financial Red-Flag Analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--store", help="Case store directory (defaults to settings.store_dir)")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_case(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--case", required=True, help="Case identifier")
        return p

    def with_filters(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--range", choices=["7d", "30d", "90d", "1y", "all"])
        p.add_argument("--min-amount", dest="min_amount")
        p.add_argument("--method")
        p.add_argument("--counterparty")
        p.add_argument("--granularity", choices=["day", "month"])
        return p

    upload = with_case(sub.add_parser("upload", help="Ingest RIF export files"))
    upload.add_argument("files", nargs="+", help="TXT, CSV or XLSX files")

    analyze = with_case(sub.add_parser("analyze", help="Run the red-flag detector"))
    analyze.add_argument("--window", type=int, help="Rolling window in days")
    analyze.add_argument("--fractioning", help="Fractioning reporting threshold")
    analyze.add_argument("--fan", type=int, help="Fan-in/fan-out counterparty threshold")
    analyze.add_argument("--rules", nargs="+", help="Only run these rules")

    with_filters(with_case(sub.add_parser("metrics", help="Show dashboard metrics")))

    report = with_filters(with_case(sub.add_parser("report", help="Render the case report PDF")))
    report.add_argument("--title")
    report.add_argument("--investigator")
    report.add_argument("--detect", action="store_true", help="Run detection inside the pipeline")
    report.add_argument("--no-narrative", action="store_true", help="Skip the text collaborator")
    report.add_argument("--output", required=True)

    export = with_filters(with_case(sub.add_parser("export", help="Export the ledger")))
    export.add_argument("--format", choices=["csv", "xlsx", "pdf"], default="csv")
    export.add_argument("--output", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    store = LocalCaseStore(Path(args.store)) if args.store else None
    service = FinancialAnalysisService(store=store)
    try:
        code = asyncio.run(COMMANDS[args.command](service, args))
    except (RIFAnalysisError, ValueError, InvalidOperation) as e:
        # pydantic ValidationError is a ValueError
        print(f"[ERROR] {e}")
        return 1

    print("[DONE]")
    return code


if __name__ == "__main__":
    sys.exit(main())
