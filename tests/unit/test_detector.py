"""Unit tests for the Red-Flag Detector orchestration."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

import pytest

from src.analysis.detector import RULE_REGISTRY, detect
from src.analysis.metrics import aggregate
from src.core.models import DetectionThresholds
from src.ingestion.parsers import parse


@pytest.fixture
def suspicious_ledger(txn) -> list:
    start = datetime(2024, 1, 1)
    ledger = [
        txn(start + timedelta(days=i), 500, counterparty=f"Beneficiário {i}") for i in range(12)
    ]
    ledger += [
        txn("2024-01-10", 4000, counterparty="Laranja"),
        txn("2024-01-11", 4000, counterparty="Laranja"),
        txn("2024-01-12", 4000, counterparty="Laranja"),
        txn("2024-01-15", 100000, counterparty="Imobiliária"),
        txn("2024-01-16", 60000, "credit", "Imobiliária"),
    ]
    return ledger


class TestDetect:
    def test_empty_ledger_yields_no_alerts(self) -> None:
        assert detect([], DetectionThresholds(), 30) == []

    def test_non_positive_window_rejected(self, txn) -> None:
        with pytest.raises(ValueError):
            detect([txn("2024-01-01", 100)], DetectionThresholds(), 0)

    def test_deterministic_across_runs_and_input_order(self, suspicious_ledger) -> None:
        first = detect(suspicious_ledger, DetectionThresholds(), 30)
        shuffled = list(suspicious_ledger)
        random.Random(7).shuffle(shuffled)
        second = detect(shuffled, DetectionThresholds(), 30)
        assert first
        assert first == second

    def test_canonical_order_by_severity(self, suspicious_ledger) -> None:
        alerts = detect(suspicious_ledger, DetectionThresholds(), 30)
        ranks = [a.severity.rank for a in alerts]
        assert ranks == sorted(ranks, reverse=True)

    def test_expected_rules_fire(self, suspicious_ledger) -> None:
        types = {a.type for a in detect(suspicious_ledger, DetectionThresholds(), 30)}
        assert {"fractioning", "fan-in-out", "circularity", "round-value"} <= types

    def test_every_alert_has_evidence(self, suspicious_ledger) -> None:
        ids = {t.id for t in suspicious_ledger}
        for alert in detect(suspicious_ledger, DetectionThresholds(), 30):
            assert alert.evidence_transaction_ids
            assert set(alert.evidence_transaction_ids) <= ids

    def test_enabled_rules_restrict_battery(self, suspicious_ledger) -> None:
        thresholds = DetectionThresholds(enabled_rules=("fractioning",))
        alerts = detect(suspicious_ledger, thresholds, 30)
        assert alerts
        assert {a.type for a in alerts} == {"fractioning"}

    def test_parameters_recorded(self, suspicious_ledger) -> None:
        thresholds = DetectionThresholds(fractioning_threshold=12000)
        alerts = detect(suspicious_ledger, thresholds, 30)
        fractioning = [a for a in alerts if a.type == "fractioning"]
        assert fractioning[0].parameters["fractioning_threshold"] == "12000"

    def test_registry_order(self) -> None:
        assert list(RULE_REGISTRY)[:4] == [
            "fractioning", "fan-in-out", "circularity", "incompatible-profile",
        ]


class TestParsedLedgers:
    def test_mixed_date_formats_detect_and_aggregate(self) -> None:
        content = (
            "date,type,amount,counterparty\n"
            "2024-01-15T10:00:00+00:00,credito,100,Ana\n"
            "16/01/2024,debito,50,Bruno\n"
            "2024-01-17T09:00:00Z,debito,20,Carla\n"
        )
        ledger = list(parse("export.csv", content))
        assert detect(ledger, DetectionThresholds(), 30) == []
        metrics = aggregate(ledger)
        assert metrics.transaction_count == 3
        assert metrics.first_date == datetime(2024, 1, 15, 10, 0)
        assert metrics.last_date == datetime(2024, 1, 17, 9, 0)

    def test_fan_out_from_txt_descriptions(self) -> None:
        content = "\n".join(
            f"{day:02d}/01/2024|debito|500,00|Beneficiario {day}||"
            f"PIX para CPF 123.456.789-{day:02d}|PIX"
            for day in range(1, 16)
        )
        ledger = list(parse("rif.txt", content))
        alerts = detect(ledger, DetectionThresholds(), 30)
        fan = [a for a in alerts if a.type == "fan-in-out"]
        assert len(fan) == 1
        assert fan[0].parameters["direction"] == "out"
        assert len(fan[0].evidence_transaction_ids) == 15
