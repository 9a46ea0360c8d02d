"""Unit tests for the Metrics Aggregator."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from src.analysis.metrics import UNSPECIFIED_METHOD, aggregate, apply_filters
from src.core.models import FinancialMetrics, MetricsFilters


@pytest.fixture
def ledger(txn) -> list:
    return [
        txn("2024-01-01 09:00", "1000.00", "credit", "Empresa A", method="PIX"),
        txn("2024-01-15 14:00", "250.50", "debit", "Mercado", method="Cartão"),
        txn("2024-02-10 09:30", "3000.00", "credit", "Empresa A", method="TED"),
        txn("2024-02-20 18:00", "100.25", "debit", "Padaria"),
        txn("2024-03-01 10:00", "500.00", "debit", "Mercado", method="PIX"),
    ]


class TestAggregate:
    def test_balance_identity(self, ledger) -> None:
        m = aggregate(ledger)
        assert m.total_credits == Decimal("4000.00")
        assert m.total_debits == Decimal("850.75")
        assert m.balance == m.total_credits - m.total_debits
        assert isinstance(m.balance, Decimal)

    def test_average_ticket_rounded_to_cents(self, ledger) -> None:
        m = aggregate(ledger)
        assert m.transaction_count == 5
        assert m.average_ticket == Decimal("970.15")

    def test_date_span(self, ledger) -> None:
        m = aggregate(ledger)
        assert m.first_date == datetime(2024, 1, 1, 9, 0)
        assert m.last_date == datetime(2024, 3, 1, 10, 0)

    def test_empty_ledger(self) -> None:
        assert aggregate([]) == FinancialMetrics()

    def test_monthly_series(self, ledger) -> None:
        m = aggregate(ledger, MetricsFilters(granularity="month"))
        assert [(p.period, p.credits, p.debits) for p in m.period_series] == [
            ("2024-01", Decimal("1000.00"), Decimal("250.50")),
            ("2024-02", Decimal("3000.00"), Decimal("100.25")),
            ("2024-03", Decimal("0"), Decimal("500.00")),
        ]

    def test_method_distribution(self, ledger) -> None:
        m = aggregate(ledger)
        shares = {s.method: (s.amount, s.count) for s in m.method_distribution}
        assert shares["PIX"] == (Decimal("1500.00"), 2)
        assert shares[UNSPECIFIED_METHOD] == (Decimal("100.25"), 1)
        assert m.method_distribution[0].method == "TED"

    def test_top_counterparties_by_count_then_amount(self, ledger) -> None:
        m = aggregate(ledger, top_limit=2)
        assert [(c.name, c.count) for c in m.top_counterparties] == [
            ("Empresa A", 2), ("Mercado", 2),
        ]

    def test_heatmap(self, ledger) -> None:
        m = aggregate(ledger)
        assert sum(c.count for c in m.time_heatmap) == 5
        cell = next(c for c in m.time_heatmap if c.hour == 9 and c.weekday == 0)
        assert cell.count == 1


class TestFilters:
    def test_min_amount(self, ledger) -> None:
        m = aggregate(ledger, MetricsFilters(min_amount=Decimal("500")))
        assert m.transaction_count == 3

    def test_method_filter_case_insensitive(self, ledger) -> None:
        assert len(apply_filters(ledger, MetricsFilters(method="pix"))) == 2

    def test_counterparty_substring(self, ledger) -> None:
        assert len(apply_filters(ledger, MetricsFilters(counterparty="merc"))) == 2

    def test_time_range_anchored_at_latest_transaction(self, ledger) -> None:
        result = apply_filters(ledger, MetricsFilters(time_range="30d"))
        assert [t.date.month for t in result] == [2, 2, 3]

    def test_explicit_window(self, ledger) -> None:
        result = apply_filters(
            ledger, MetricsFilters(start=datetime(2024, 1, 10), end=datetime(2024, 2, 15))
        )
        assert len(result) == 2
