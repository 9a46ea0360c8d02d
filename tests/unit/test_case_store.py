"""Unit tests for the local case store."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.core.errors import StorageError
from src.core.models import AnalysisRun, DetectionThresholds, MetricsFilters, RedFlagAlert, Severity
from src.infrastructure.storage.case_store import LocalCaseStore


@pytest.fixture
def store(tmp_path) -> LocalCaseStore:
    return LocalCaseStore(tmp_path / "cases")


def _run(case_id: str, alert_ids: list[str]) -> AnalysisRun:
    return AnalysisRun(
        run_id=f"run-{len(alert_ids)}",
        case_id=case_id,
        started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        window_days=30,
        thresholds=DetectionThresholds(),
        alerts=[
            RedFlagAlert(
                id=a, type="round-value", severity=Severity.LOW, subject="X",
                description="d", score=30, evidence_transaction_ids=("T1",),
            )
            for a in alert_ids
        ],
    )


class TestFiles:
    def test_save_list_delete(self, store) -> None:
        store.save_file("CASE-1", "rif.txt", b"data")
        store.save_file("CASE-1", "extrato.csv", b"data")
        assert store.list_files("CASE-1") == ["extrato.csv", "rif.txt"]
        store.delete_file("CASE-1", "rif.txt")
        assert store.list_files("CASE-1") == ["extrato.csv"]

    def test_unknown_case_has_no_files(self, store) -> None:
        assert store.list_files("NOPE") == []

    def test_path_components_sanitized(self, store, tmp_path) -> None:
        store.save_file("CASE-1", "../../escape.txt", b"x")
        assert store.list_files("CASE-1") == ["escape.txt"]
        assert not (tmp_path / "escape.txt").exists()

    def test_os_error_becomes_storage_error(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            LocalCaseStore(blocker).save_file("CASE-1", "rif.txt", b"x")


class TestLedger:
    def test_round_trip_keeps_decimals(self, store, txn) -> None:
        t = txn("2024-01-01", "1500.10", source="rif.txt")
        assert store.append_transactions("CASE-1", [t]) == 1
        loaded = store.query_transactions("CASE-1")
        assert loaded == [t]
        assert loaded[0].amount == Decimal("1500.10")

    def test_append_skips_known_ids(self, store, txn) -> None:
        t = txn("2024-01-01", 100)
        store.append_transactions("CASE-1", [t])
        assert store.append_transactions("CASE-1", [t]) == 0
        assert len(store.query_transactions("CASE-1")) == 1

    def test_query_applies_filters(self, store, txn) -> None:
        store.append_transactions("CASE-1", [txn("2024-01-01", 100), txn("2024-01-02", 900)])
        result = store.query_transactions("CASE-1", MetricsFilters(min_amount=Decimal("500")))
        assert [t.amount for t in result] == [Decimal("900")]

    def test_delete_file_removes_its_transactions(self, store, txn) -> None:
        store.save_file("CASE-1", "a.txt", b"")
        store.append_transactions(
            "CASE-1", [txn("2024-01-01", 1, source="a.txt"), txn("2024-01-01", 2, source="b.txt")]
        )
        store.delete_file("CASE-1", "a.txt")
        assert [t.source for t in store.query_transactions("CASE-1")] == ["b.txt"]


class TestAlerts:
    def test_no_run_yet(self, store) -> None:
        assert store.latest_run("CASE-1") is None
        assert store.list_alerts("CASE-1") == []

    def test_new_run_supersedes_previous(self, store) -> None:
        store.replace_alerts("CASE-1", _run("CASE-1", ["a1", "a2"]))
        store.replace_alerts("CASE-1", _run("CASE-1", ["b1"]))
        assert [a.id for a in store.list_alerts("CASE-1")] == ["b1"]
        assert store.latest_run("CASE-1").run_id == "run-1"
