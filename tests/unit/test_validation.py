"""Unit tests for the Validation Layer."""

from __future__ import annotations

from datetime import datetime

from src.ingestion.parsers import ParseReport, parse
from src.ingestion.validation import validate

NOW = datetime(2024, 6, 1)


class TestValidate:
    def test_clean_ledger_is_valid(self, txn) -> None:
        result = validate([txn("2024-01-10", 100), txn("2024-01-11", 200)], now=NOW)
        assert result.valid is True
        assert result.warnings == []

    def test_empty_ledger_warns(self) -> None:
        result = validate([], now=NOW)
        assert result.valid is False
        assert result.warnings == ["No valid transactions were parsed"]

    def test_future_dates_flagged_but_kept(self, txn) -> None:
        ledger = [txn("2024-01-10", 100), txn("2030-01-01", 100)]
        result = validate(ledger, now=NOW)
        assert result.valid is False
        assert "1 transaction(s) dated in the future" in result.warnings
        assert len(ledger) == 2

    def test_possible_duplicates(self, txn) -> None:
        ledger = [
            txn("2024-01-10", 100, counterparty="Ana"),
            txn("2024-01-10", 100, counterparty="ana"),
            txn("2024-01-10", 100, counterparty="Bruno"),
        ]
        result = validate(ledger, now=NOW)
        assert any("1 possible duplicate" in w for w in result.warnings)

    def test_dropped_rows_reported(self) -> None:
        content = "15/01/2024|credito|10,00|Ana\n16/01/2024|debito|0,00|Bruno\n"
        report = ParseReport(source="rif.txt")
        txns = list(parse("rif.txt", content, report))
        result = validate(txns, report, now=NOW)
        assert result.valid is False
        assert result.warnings == ["1 row(s) dropped from rif.txt: zero amount"]
