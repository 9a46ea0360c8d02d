"""Export renderers: CSV and XLSX ledgers, PDF report."""

from __future__ import annotations

import csv
import io
import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from openpyxl import Workbook
from openpyxl.styles import Font

from src.core.models import FinancialMetrics, ReportDocument, ReportSection, Transaction

logger = logging.getLogger(__name__)

EXPORT_COLUMNS: tuple[str, ...] = (
    "id", "date", "type", "amount", "counterparty", "counterparty_document",
    "holder_document", "description", "method", "bank", "agency", "account",
    "channel", "country", "currency", "source", "source_line",
)
BOLD = Font(bold=True)
MONEY_FORMAT = '"R$" #,##0.00'


def _export_row(t: Transaction) -> list[object]:
    data = t.model_dump()
    data["type"] = t.type.value
    return [data[c] for c in EXPORT_COLUMNS]


# ── CSV ──


def export_transactions_csv(transactions: Iterable[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    count = 0
    for t in transactions:
        row = _export_row(t)
        row[EXPORT_COLUMNS.index("date")] = t.date.isoformat()
        row[EXPORT_COLUMNS.index("amount")] = str(t.amount)
        writer.writerow(["" if v is None else v for v in row])
        count += 1
    logger.info("CSV export: %d transaction(s)", count)
    return buffer.getvalue()


# ── XLSX ──


def export_workbook(transactions: Iterable[Transaction], metrics: FinancialMetrics) -> bytes:
    """Two sheets: the normalized ledger and the computed metrics."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Transações"
    ws.append(list(EXPORT_COLUMNS))
    for c in range(1, len(EXPORT_COLUMNS) + 1):
        ws.cell(row=1, column=c).font = BOLD

    amount_col = EXPORT_COLUMNS.index("amount") + 1
    for t in transactions:
        ws.append(_export_row(t))
        ws.cell(row=ws.max_row, column=amount_col).number_format = MONEY_FORMAT

    ms = wb.create_sheet("Métricas")
    for label, value in (
        ("Total de créditos", metrics.total_credits),
        ("Total de débitos", metrics.total_debits),
        ("Saldo", metrics.balance),
        ("Ticket médio", metrics.average_ticket),
    ):
        ms.append([label, value])
        ms.cell(row=ms.max_row, column=2).number_format = MONEY_FORMAT
    ms.append(["Quantidade de transações", metrics.transaction_count])
    for r in range(1, ms.max_row + 1):
        ms.cell(row=r, column=1).font = BOLD

    ms.append([])
    ms.append(["Período", "Créditos", "Débitos"])
    for p in metrics.period_series:
        ms.append([p.period, p.credits, p.debits])

    ms.append([])
    ms.append(["Método", "Valor", "Quantidade"])
    for m in metrics.method_distribution:
        ms.append([m.method, m.amount, m.count])

    ms.append([])
    ms.append(["Contraparte", "Documento", "Valor", "Quantidade"])
    for c in metrics.top_counterparties:
        ms.append([c.name, c.document or "", c.amount, c.count])

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# ── PDF ──


def _latin1(text: str) -> str:
    """Core PDF fonts only cover Latin-1."""
    return text.encode("latin-1", "replace").decode("latin-1")


class RIFReportPDF(FPDF):
    def header(self):
        self.set_font("Helvetica", "B", 14)
        self.cell(0, 10, "Relatório de Análise Financeira - RIF/COAF", align="C",
                  new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.cell(0, 10, f"Página {self.page_no()}", align="C")
        self.set_x(self.l_margin)
        self.cell(0, 10, "RESERVADO - USO EXCLUSIVO DA INVESTIGAÇÃO", align="R")

    def chapter_title(self, label: str) -> None:
        self.set_font("Helvetica", "B", 12)
        self.set_fill_color(200, 220, 255)
        self.cell(0, 7, _latin1(label), fill=True, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)

    def chapter_body(self, text: str) -> None:
        self.set_font("Helvetica", "", 10)
        self.multi_cell(0, 5, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)

    def key_value_pair(self, key: str, value: str) -> None:
        self.set_font("Helvetica", "B", 10)
        self.cell(55, 6, _latin1(f"{key}:"))
        self.set_font("Helvetica", "", 10)
        self.multi_cell(0, 6, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def table(self, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        if not rows:
            self.chapter_body("Nenhum registro.")
            return
        width = self.epw / len(columns)
        self.set_font("Helvetica", "B", 8)
        for col in columns:
            self.cell(width, 6, self._fit(col, width), border=1)
        self.ln()
        self.set_font("Helvetica", "", 8)
        for row in rows:
            for value in row:
                self.cell(width, 5, self._fit(value, width), border=1)
            self.ln()
        self.ln(3)

    def bar_chart(self, section: ReportSection, height: float = 45) -> None:
        """Paired credit/debit bars per period."""
        points = []
        for period, credits, debits in section.rows:
            points.append((period, _to_decimal(credits), _to_decimal(debits)))
        if not points:
            return
        peak = max(max(c, d) for _, c, d in points) or Decimal("1")
        if self.get_y() + height + 10 > self.page_break_trigger:
            self.add_page()
        x0, y0 = self.l_margin, self.get_y()
        slot = self.epw / len(points)
        bar = max(slot / 2 - 0.5, 0.2)
        for i, (period, credits, debits) in enumerate(points):
            x = x0 + i * slot
            for offset, value, colour in ((0, credits, (46, 134, 87)), (bar, debits, (192, 57, 43))):
                h = float(value / peak) * height
                self.set_fill_color(*colour)
                self.rect(x + offset, y0 + height - h, bar, h, style="F")
        self.set_y(y0 + height + 2)
        self.set_font("Helvetica", "", 7)
        self.cell(0, 4, _latin1(f"{points[0][0]}  ...  {points[-1][0]}   (verde: créditos, vermelho: débitos)"),
                  new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(3)

    def _fit(self, text: str, width: float) -> str:
        text = _latin1(str(text))
        if self.get_string_width(text) <= width - 2:
            return text
        while text and self.get_string_width(text + "...") > width - 2:
            text = text[:-1]
        return text + "..."


def _to_decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        return Decimal("0")


def render_pdf(document: ReportDocument) -> bytes:
    """Render a compiled report to PDF bytes."""
    pdf = RIFReportPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    for index, section in enumerate(document.sections, start=1):
        pdf.chapter_title(f"{index}. {section.title}")
        for key, value in section.items:
            pdf.key_value_pair(key, value)
        if section.text:
            pdf.chapter_body(section.text.replace("**", "").replace("##", ""))
        if section.key == "period_series":
            pdf.bar_chart(section)
        elif section.key.startswith("alerts_"):
            _alert_blocks(pdf, section)
        elif section.columns:
            pdf.table(section.columns, section.rows)
        pdf.ln(2)

    if document.notes:
        pdf.chapter_title("Observações")
        pdf.chapter_body("\n".join(document.notes))

    logger.info("PDF rendered for case %s (%d pages)", document.case.case_id, pdf.page_no())
    return bytes(pdf.output())


def _alert_blocks(pdf: RIFReportPDF, section: ReportSection) -> None:
    if not section.rows:
        pdf.chapter_body("Nenhum alerta.")
        return
    for rule, subject, description, score, evidence in section.rows:
        pdf.set_font("Helvetica", "B", 9)
        pdf.cell(0, 5, _latin1(f"{rule} - {subject} (score {score}, {evidence} transações)"),
                 new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", "", 9)
        pdf.multi_cell(0, 5, _latin1(description), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(1)
