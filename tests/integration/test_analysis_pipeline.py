"""Integration tests: upload → detection → report through the service and graph.

The text-generation collaborator is stubbed with monkeypatch; no network
access is needed.
"""

from __future__ import annotations

import asyncio

import pytest

from src.core.errors import AnalysisAlreadyRunningError, MissingColumnError, NarrativeUnavailableError
from src.core.models import CaseMetadata, DetectionThresholds, MetricsFilters
from src.graph.analysis_graph import build_analysis_graph
from src.infrastructure.storage.case_store import LocalCaseStore
from src.reporting import narrative as narrative_module
from src.services.financial_service import STORED_ALERTS_NOTE, FinancialAnalysisService

RIF_TXT = "\n".join([
    "10/01/2024|debito|4000,00|Laranja Um|11111111111|Depósito fracionado|PIX",
    "11/01/2024|debito|4000,00|Laranja Um|11111111111|Depósito fracionado|PIX",
    "12/01/2024|debito|4000,00|Laranja Um|11111111111|Depósito fracionado|PIX",
    "15/01/2024|debito|100000,00|Imobiliária Central|22222222000122|Sinal imóvel|TED",
    "20/01/2024|credito|95000,00|Imobiliária Central|22222222000122|Devolução sinal|TED",
    "21/01/2024|credito|0,00|Ninguém|||PIX",
])


@pytest.fixture
def service(tmp_path) -> FinancialAnalysisService:
    return FinancialAnalysisService(store=LocalCaseStore(tmp_path / "cases"))


@pytest.fixture
def stub_narrative(monkeypatch):
    calls = []

    def fake(summary):
        calls.append(summary)
        return "## Resumo executivo\nMovimentação incompatível."

    monkeypatch.setattr("src.graph.analysis_graph.generate_narrative", fake)
    return calls


class TestFinancialAnalysisService:
    def test_upload_parses_validates_and_stores(self, service) -> None:
        result = asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        assert result.transaction_count == 5
        assert result.dropped_rows == 1
        assert result.validation.valid is False
        assert service.store.list_files("CASE-1") == ["rif.txt"]
        assert len(service.store.query_transactions("CASE-1")) == 5

    def test_reupload_does_not_duplicate_ledger(self, service) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        assert len(service.store.query_transactions("CASE-1")) == 5

    def test_rejected_file_stores_nothing(self, service) -> None:
        with pytest.raises(MissingColumnError):
            asyncio.run(service.upload("CASE-1", "x.csv", b"nome,valor\nA,1\n"))
        assert service.store.list_files("CASE-1") == []

    def test_red_flag_run_persists_and_supersedes(self, service) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        run = asyncio.run(service.run_red_flag_analysis("CASE-1", DetectionThresholds(), 30))
        types = {a.type for a in run.alerts}
        assert {"fractioning", "circularity"} <= types
        assert run.transaction_count == 5
        assert service.store.latest_run("CASE-1").run_id == run.run_id

        only = DetectionThresholds(enabled_rules=("fractioning",))
        second = asyncio.run(service.run_red_flag_analysis("CASE-1", only, 30))
        assert {a.type for a in service.store.list_alerts("CASE-1")} == {"fractioning"}
        assert service.store.latest_run("CASE-1").run_id == second.run_id

    def test_concurrent_runs_same_case_rejected(self, service) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))

        async def both():
            return await asyncio.gather(
                service.run_red_flag_analysis("CASE-1"),
                service.run_red_flag_analysis("CASE-1"),
                return_exceptions=True,
            )

        first, second = asyncio.run(both())
        assert not isinstance(first, Exception)
        assert isinstance(second, AnalysisAlreadyRunningError)

    def test_metrics(self, service) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        metrics = asyncio.run(service.get_metrics("CASE-1", MetricsFilters(method="TED")))
        assert metrics.transaction_count == 2
        assert metrics.balance == metrics.total_credits - metrics.total_debits

    def test_report_with_stored_alerts(self, service, stub_narrative) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        run = asyncio.run(service.run_red_flag_analysis("CASE-1"))
        doc = asyncio.run(service.generate_report("CASE-1", CaseMetadata(case_id="CASE-1")))
        assert doc.narrative_available is True
        assert len(stub_narrative) == 1
        assert len(stub_narrative[0]["alerts"]) == len(run.alerts)
        assert STORED_ALERTS_NOTE not in doc.notes

    def test_filtered_report_notes_whole_ledger_alerts(self, service, stub_narrative) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        run = asyncio.run(service.run_red_flag_analysis("CASE-1"))
        doc = asyncio.run(service.generate_report(
            "CASE-1", CaseMetadata(case_id="CASE-1"), MetricsFilters(method="TED")
        ))
        assert STORED_ALERTS_NOTE in doc.notes
        assert len(stub_narrative[0]["alerts"]) == len(run.alerts)

        detected = asyncio.run(service.generate_report(
            "CASE-1", filters=MetricsFilters(method="TED"), run_detection=True
        ))
        assert STORED_ALERTS_NOTE not in detected.notes

    def test_exports(self, service, stub_narrative) -> None:
        asyncio.run(service.upload("CASE-1", "rif.txt", RIF_TXT.encode("utf-8")))
        csv_bytes = asyncio.run(service.export("CASE-1", "csv"))
        assert csv_bytes.decode("utf-8").count("\n") == 6
        assert asyncio.run(service.export("CASE-1", "xlsx"))[:2] == b"PK"
        assert asyncio.run(service.export("CASE-1", "pdf")).startswith(b"%PDF")

    def test_unknown_export_format(self, service) -> None:
        with pytest.raises(ValueError):
            asyncio.run(service.export("CASE-1", "docx"))


class TestAnalysisGraph:
    def _state(self, txns, **extra):
        state = {
            "case_id": "CASE-G",
            "case": CaseMetadata(case_id="CASE-G"),
            "transactions": txns,
            "alerts": [],
            "errors": [],
        }
        state.update(extra)
        return state

    def test_detection_inside_pipeline(self, txn, stub_narrative) -> None:
        txns = [txn(f"2024-01-1{d}", 4000, counterparty="Laranja") for d in range(3)]
        result = build_analysis_graph().invoke(self._state(txns, run_detection=True))
        assert [a.type for a in result["alerts"]] == ["fractioning"]
        assert result["report"].section("alerts_low").rows

    def test_skip_detection_keeps_supplied_alerts(self, txn, stub_narrative) -> None:
        txns = [txn(f"2024-01-1{d}", 4000, counterparty="Laranja") for d in range(3)]
        result = build_analysis_graph().invoke(self._state(txns, run_detection=False))
        assert result["alerts"] == []

    def test_narrative_failure_still_compiles(self, txn, monkeypatch) -> None:
        def broken(summary):
            raise NarrativeUnavailableError("collaborator timed out")

        monkeypatch.setattr("src.graph.analysis_graph.generate_narrative", broken)
        result = build_analysis_graph().invoke(self._state([txn("2024-01-01", 100)]))
        report = result["report"]
        assert report.narrative_available is False
        assert report.section("metrics") is not None
        assert report.notes == ["Narrative unavailable: collaborator timed out"]
        assert result["errors"][0]["node"] == "narrative"

    def test_narrative_not_requested(self, txn) -> None:
        result = build_analysis_graph().invoke(
            self._state([txn("2024-01-01", 100)], request_narrative=False)
        )
        assert result["report"].notes == ["Narrative not requested."]


class TestNarrativeCollaborator:
    def test_client_error_surfaces_as_typed_failure(self, monkeypatch) -> None:
        class Failing:
            def invoke(self, messages):
                raise TimeoutError("read timed out")

        monkeypatch.setattr(narrative_module, "get_llm", lambda role="default": Failing())
        with pytest.raises(NarrativeUnavailableError):
            narrative_module.generate_narrative({"case": {"case_id": "X"}})

    def test_empty_answer_is_unavailable(self, monkeypatch) -> None:
        class Blank:
            def invoke(self, messages):
                return type("Msg", (), {"content": "  "})()

        monkeypatch.setattr(narrative_module, "get_llm", lambda role="default": Blank())
        with pytest.raises(NarrativeUnavailableError):
            narrative_module.generate_narrative({"case": {"case_id": "X"}})

    def test_list_content_flattened(self, monkeypatch) -> None:
        class Parts:
            def invoke(self, messages):
                return type("Msg", (), {"content": [{"text": "Parte 1"}, "Parte 2"]})()

        monkeypatch.setattr(narrative_module, "get_llm", lambda role="default": Parts())
        assert narrative_module.generate_narrative({}) == "Parte 1\nParte 2"
