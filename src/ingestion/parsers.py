"""Ledger Normalizer — turns uploaded RIF exports into canonical transactions.

Supported inputs:
- ``.txt``  pipe-delimited, fixed order ``date|type|amount|counterparty|document|description|method``
- ``.csv``  header row resolved through the alias table in ``columns``
- ``.xlsx`` / ``.xls``  first sheet, first row is the header (``.xls`` BIFF read through xlrd)

File-level problems (unsupported extension, missing required column, empty
sheet) raise before any row is produced. Row-level problems drop the row,
log a warning and are recorded on the ``ParseReport``.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from src.core.errors import EmptySheetError, IngestionError, RowParseError, UnsupportedFormatError
from src.core.models import UNKNOWN_COUNTERPARTY, Transaction
from src.ingestion.columns import ColumnMap, resolve_columns
from src.ingestion.normalizers import (
    clean_text,
    extract_document,
    normalize_amount,
    normalize_date,
    normalize_document,
    normalize_type,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({"txt", "csv", "xlsx", "xls"})
TXT_MIN_FIELDS = 4
TXT_FIELDS: tuple[str, ...] = (
    "date", "type", "amount", "counterparty", "counterparty_document", "description", "method",
)


@dataclass(frozen=True)
class DroppedRow:
    line: int
    reason: str
    message: str


@dataclass
class ParseReport:
    """Per-file bookkeeping of what was kept and what was dropped."""

    source: str
    parsed: int = 0
    dropped: list[DroppedRow] = field(default_factory=list)

    def record_drop(self, line: int, reason: str, message: str) -> None:
        self.dropped.append(DroppedRow(line, reason, message))
        logger.warning("Skipping %s line %d: %s", self.source, line, message)

    def counts_by_reason(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for row in self.dropped:
            counts[row.reason] = counts.get(row.reason, 0) + 1
        return counts


def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


def parse(
    filename: str,
    content: bytes | str,
    report: ParseReport | None = None,
) -> Iterator[Transaction]:
    """Parse one uploaded file into a lazy sequence of transactions.

    Raises:
        UnsupportedFormatError: extension is not txt/csv/xlsx/xls.
        MissingColumnError: CSV/XLSX header lacks date, type or amount.
        EmptySheetError: spreadsheet has fewer than two rows.
        IngestionError: file cannot be decoded as the declared format.
    """
    extension = file_extension(filename)
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError(extension)

    report = report if report is not None else ParseReport(source=filename)
    logger.info("Parsing %s as %s", filename, extension.upper())

    if extension == "txt":
        return parse_txt(decode_text(content), report)
    if extension == "csv":
        return parse_csv(decode_text(content), report)
    if isinstance(content, str):
        raise IngestionError(f"{filename}: spreadsheet content must be bytes")
    if extension == "xls" and not content.startswith(b"PK"):
        return parse_xls(content, report)
    return parse_xlsx(content, report)


def decode_text(content: bytes | str) -> str:
    """Decode an upload. RIF exports arrive as UTF-8 or Windows-1252."""
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("Content is not UTF-8, falling back to cp1252")
        return content.decode("cp1252", errors="replace")


# ── TXT ──


def parse_txt(text: str, report: ParseReport) -> Iterator[Transaction]:
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < TXT_MIN_FIELDS:
            report.record_drop(
                line_no,
                "too_few_fields",
                f"expected at least {TXT_MIN_FIELDS} pipe-separated fields, got {len(parts)}",
            )
            continue
        values = dict(zip(TXT_FIELDS, parts))
        txn = _build_transaction(values.get, report, line_no)
        if txn is not None:
            yield txn


# ── CSV ──


def parse_csv(text: str, report: ParseReport) -> Iterator[Transaction]:
    reader = csv.reader(io.StringIO(text), dialect=_sniff_dialect(text))
    header = next(reader, None)
    if not header:
        raise EmptySheetError(f"{report.source}: CSV has no header row")
    columns = resolve_columns(header)
    logger.info("%s columns: %s", report.source, columns.as_dict())
    return _iter_csv_rows(reader, columns, report)


def _sniff_dialect(text: str) -> type[csv.Dialect] | csv.Dialect:
    sample = "\n".join(text.splitlines()[:20])
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t")
    except csv.Error:
        return csv.excel


def _iter_csv_rows(
    reader: Iterable[list[str]], columns: ColumnMap, report: ParseReport
) -> Iterator[Transaction]:
    for row in reader:
        line_no = getattr(reader, "line_num", 0)
        if not any(cell.strip() for cell in row):
            continue
        txn = _build_transaction(_column_getter(row, columns), report, line_no)
        if txn is not None:
            yield txn


# ── XLSX ──


def parse_xlsx(content: bytes, report: ParseReport) -> Iterator[Transaction]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise IngestionError(f"{report.source}: cannot read workbook ({e})") from e

    sheet = workbook.worksheets[0]
    if len(workbook.worksheets) > 1:
        logger.warning(
            "%s has %d sheets; only '%s' is processed",
            report.source, len(workbook.worksheets), sheet.title,
        )

    rows = sheet.iter_rows(values_only=True)
    header = next(rows, None)
    first = next(rows, None)
    if header is None or first is None:
        workbook.close()
        raise EmptySheetError(f"{report.source}: sheet '{sheet.title}' is empty or has no data rows")

    try:
        columns = resolve_columns(header)
    except Exception:
        workbook.close()
        raise
    logger.info("%s columns: %s", report.source, columns.as_dict())
    return _iter_sheet_rows(workbook, first, rows, columns, report)


def _iter_sheet_rows(
    workbook: Any,
    first: Sequence[Any],
    rest: Iterable[Sequence[Any]],
    columns: ColumnMap,
    report: ParseReport,
) -> Iterator[Transaction]:
    try:
        line_no = 1
        for row in _chain_one(first, rest):
            line_no += 1
            if not row or all(cell is None or str(cell).strip() == "" for cell in row):
                continue
            txn = _build_transaction(_column_getter(row, columns), report, line_no)
            if txn is not None:
                yield txn
    finally:
        workbook.close()


def _chain_one(first: Sequence[Any], rest: Iterable[Sequence[Any]]) -> Iterator[Sequence[Any]]:
    yield first
    yield from rest


# ── XLS (BIFF) ──


def parse_xls(content: bytes, report: ParseReport) -> Iterator[Transaction]:
    """Legacy Excel 97-2003 workbooks; same layout rules as XLSX."""
    try:
        book = xlrd.open_workbook(file_contents=content)
    except (xlrd.XLRDError, CompDocError, OSError, EOFError) as e:
        raise IngestionError(f"{report.source}: cannot read workbook ({e})") from e

    sheet = book.sheet_by_index(0)
    if book.nsheets > 1:
        logger.warning(
            "%s has %d sheets; only '%s' is processed", report.source, book.nsheets, sheet.name
        )
    if sheet.nrows < 2:
        raise EmptySheetError(f"{report.source}: sheet '{sheet.name}' is empty or has no data rows")

    columns = resolve_columns([_xls_value(book, cell) for cell in sheet.row(0)])
    logger.info("%s columns: %s", report.source, columns.as_dict())
    return _iter_xls_rows(book, sheet, columns, report)


def _iter_xls_rows(
    book: Any, sheet: Any, columns: ColumnMap, report: ParseReport
) -> Iterator[Transaction]:
    for index in range(1, sheet.nrows):
        row = [_xls_value(book, cell) for cell in sheet.row(index)]
        if all(cell is None or str(cell).strip() == "" for cell in row):
            continue
        txn = _build_transaction(_column_getter(row, columns), report, index + 1)
        if txn is not None:
            yield txn


def _xls_value(book: Any, cell: Any) -> Any:
    """BIFF stores dates as serial floats; the cell type says which ones."""
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate_as_datetime(cell.value, book.datemode)
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    return cell.value


# ── Row assembly ──


def _column_getter(row: Sequence[Any], columns: ColumnMap):
    def get(name: str) -> Any:
        return columns.value(row, name)
    return get


def _build_transaction(get, report: ParseReport, line_no: int) -> Transaction | None:
    """Normalize one row; on a row-level error record it and return None."""
    try:
        date = normalize_date(get("date"))
        txn_type = normalize_type(get("type"))
        amount = normalize_amount(get("amount"))
    except RowParseError as e:
        report.record_drop(line_no, e.reason, str(e))
        return None

    counterparty = clean_text(get("counterparty")) or UNKNOWN_COUNTERPARTY
    description = clean_text(get("description"))
    # Descriptions such as "PIX para CPF ..." print the other party's document.
    counterparty_document = (
        normalize_document(get("counterparty_document")) or extract_document(description)
    )
    holder_document = normalize_document(get("holder_document"))

    txn = Transaction(
        id=transaction_id(report.source, line_no, date.isoformat(), txn_type.value,
                          str(amount), counterparty, counterparty_document or ""),
        date=date,
        amount=amount,
        type=txn_type,
        counterparty=counterparty,
        counterparty_document=counterparty_document,
        holder_document=holder_document,
        description=description,
        method=clean_text(get("method")),
        bank=clean_text(get("bank")),
        agency=clean_text(get("agency")),
        account=clean_text(get("account")),
        channel=clean_text(get("channel")),
        country=clean_text(get("country")),
        currency=clean_text(get("currency")),
        source=report.source,
        source_line=line_no,
    )
    report.parsed += 1
    return txn


def transaction_id(*parts: str | int) -> str:
    """Deterministic reference: the same row of the same file keeps its id."""
    digest = hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8"))
    return digest.hexdigest()[:16]
