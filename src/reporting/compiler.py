"""Report Compiler — assembles metrics and alerts into a structured document.

The document is format-agnostic; ``exporters.render_pdf`` turns it into a
downloadable artifact. Prose comes from an optional narrative provider and is
strictly best-effort: a collaborator failure leaves the numeric and tabular
sections intact.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

from src.analysis.red_flags.common import format_brl
from src.core.errors import CollaboratorError
from src.core.models import (
    CaseMetadata,
    FinancialMetrics,
    RedFlagAlert,
    ReportDocument,
    ReportSection,
    Severity,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

NarrativeProvider = Callable[[dict[str, Any]], str]

SEVERITY_SECTIONS: tuple[tuple[Severity, str], ...] = (
    (Severity.HIGH, "Alertas de severidade alta"),
    (Severity.MEDIUM, "Alertas de severidade média"),
    (Severity.LOW, "Alertas de severidade baixa"),
)
ALERT_COLUMNS = ["Regra", "Sujeito", "Descrição", "Score", "Evidências"]
TRANSACTION_COLUMNS = ["Data", "Tipo", "Valor", "Contraparte", "Documento", "Método", "Descrição"]
TYPE_LABELS = {TransactionType.CREDIT: "Crédito", TransactionType.DEBIT: "Débito"}


def build_summary(
    metrics: FinancialMetrics,
    alerts: Sequence[RedFlagAlert],
    case: CaseMetadata,
) -> dict[str, Any]:
    """JSON-ready payload handed to the narrative collaborator."""
    return {
        "case": case.model_dump(mode="json"),
        "metrics": metrics.model_dump(
            mode="json", exclude={"time_heatmap", "period_series"}
        ),
        "alerts": [
            {
                "type": a.type,
                "severity": a.severity.value,
                "subject": a.subject,
                "description": a.description,
                "score": a.score,
                "evidence_count": len(a.evidence_transaction_ids),
            }
            for a in alerts
        ],
    }


def compile_report(
    metrics: FinancialMetrics,
    alerts: Sequence[RedFlagAlert],
    case: CaseMetadata,
    transactions: Iterable[Transaction] = (),
    narrative_provider: NarrativeProvider | None = None,
    generated_at: datetime | None = None,
) -> ReportDocument:
    """Build the report document: summary, metrics, alerts by severity, ledger table."""
    txns = list(transactions)
    document = ReportDocument(
        case=case,
        generated_at=generated_at or datetime.now(timezone.utc),
    )
    logger.info(
        "Compiling report for case %s: %d alert(s), %d transaction(s)",
        case.case_id, len(alerts), len(txns),
    )

    document.sections.append(_upload_summary(case, metrics, txns))
    document.sections.extend(_metric_sections(metrics))
    document.sections.extend(_alert_sections(alerts))
    document.sections.append(ReportSection(
        key="transactions",
        title="Transações",
        columns=TRANSACTION_COLUMNS,
        rows=[_transaction_row(t) for t in sorted(txns, key=lambda t: (t.date, t.id))],
    ))

    if narrative_provider is None:
        document.notes.append("Narrative not requested.")
        return document

    try:
        narrative = narrative_provider(build_summary(metrics, alerts, case))
    except CollaboratorError as e:
        logger.warning("Report for case %s compiled without narrative: %s", case.case_id, e)
        document.notes.append(f"Narrative unavailable: {e}")
        return document

    document.sections.insert(1, ReportSection(key="narrative", title="Análise", text=narrative))
    document.narrative_available = True
    return document


def _upload_summary(
    case: CaseMetadata, metrics: FinancialMetrics, txns: Sequence[Transaction]
) -> ReportSection:
    period = "-"
    if metrics.first_date and metrics.last_date:
        period = f"{metrics.first_date:%d/%m/%Y} a {metrics.last_date:%d/%m/%Y}"
    sources = sorted({t.source for t in txns if t.source})
    return ReportSection(
        key="upload_summary",
        title="Resumo do caso",
        items=[
            ("Caso", case.case_id),
            ("Título", case.title or "-"),
            ("Responsável", case.investigator or "-"),
            ("Unidade", case.unit or "-"),
            ("Arquivos", ", ".join(sources) or "-"),
            ("Período analisado", period),
            ("Transações", str(metrics.transaction_count)),
        ],
        text=case.description,
    )


def _metric_sections(metrics: FinancialMetrics) -> list[ReportSection]:
    return [
        ReportSection(
            key="metrics",
            title="Métricas",
            items=[
                ("Total de créditos", format_brl(metrics.total_credits)),
                ("Total de débitos", format_brl(metrics.total_debits)),
                ("Saldo", format_brl(metrics.balance)),
                ("Ticket médio", format_brl(metrics.average_ticket)),
                ("Quantidade de transações", str(metrics.transaction_count)),
            ],
        ),
        ReportSection(
            key="period_series",
            title="Evolução no período",
            columns=["Período", "Créditos", "Débitos"],
            rows=[[p.period, str(p.credits), str(p.debits)] for p in metrics.period_series],
        ),
        ReportSection(
            key="methods",
            title="Distribuição por método",
            columns=["Método", "Valor", "Quantidade"],
            rows=[[m.method, format_brl(m.amount), str(m.count)] for m in metrics.method_distribution],
        ),
        ReportSection(
            key="top_counterparties",
            title="Principais contrapartes",
            columns=["Contraparte", "Documento", "Valor", "Quantidade"],
            rows=[
                [c.name, c.document or "-", format_brl(c.amount), str(c.count)]
                for c in metrics.top_counterparties
            ],
        ),
    ]


def _alert_sections(alerts: Sequence[RedFlagAlert]) -> list[ReportSection]:
    sections = []
    for severity, title in SEVERITY_SECTIONS:
        group = [a for a in alerts if a.severity is severity]
        sections.append(ReportSection(
            key=f"alerts_{severity.value}",
            title=f"{title} ({len(group)})",
            columns=ALERT_COLUMNS,
            rows=[
                [a.type, a.subject, a.description, str(a.score), str(len(a.evidence_transaction_ids))]
                for a in group
            ],
        ))
    return sections


def _transaction_row(t: Transaction) -> list[str]:
    return [
        t.date.strftime("%d/%m/%Y %H:%M") if (t.date.hour or t.date.minute) else t.date.strftime("%d/%m/%Y"),
        TYPE_LABELS[t.type],
        format_brl(t.amount),
        t.counterparty,
        t.counterparty_document or "-",
        t.method or "-",
        t.description or "-",
    ]
