"""Unit tests for the command-line runner."""

from __future__ import annotations

import pytest

from src.runner import build_parser, main

RIF_TXT = "15/01/2024|credito|1500,00|João Silva|12345678900|Pagamento|PIX\n"


class TestRunner:
    def test_parser_requires_case(self) -> None:
        args = build_parser().parse_args(["metrics", "--case", "C1", "--range", "30d"])
        assert args.command == "metrics"
        assert args.range == "30d"

    def test_upload_analyze_export(self, tmp_path, capsys) -> None:
        rif = tmp_path / "rif.txt"
        rif.write_text(RIF_TXT, encoding="utf-8")
        store = str(tmp_path / "cases")
        out = tmp_path / "out" / "ledger.csv"

        assert main(["--store", store, "upload", "--case", "C1", str(rif)]) == 0
        assert main(["--store", store, "analyze", "--case", "C1"]) == 0
        assert main(["--store", store, "export", "--case", "C1", "--output", str(out)]) == 0
        assert "João Silva" in out.read_text(encoding="utf-8")
        assert "[OK] rif.txt: 1 transaction(s), 0 dropped" in capsys.readouterr().out

    def test_rejected_file_returns_error_code(self, tmp_path, capsys) -> None:
        bad = tmp_path / "rif.pdf"
        bad.write_bytes(b"%PDF")
        assert main(["--store", str(tmp_path / "cases"), "upload", "--case", "C1", str(bad)]) == 1
        assert "[ERROR] rif.pdf" in capsys.readouterr().out

    def test_report_without_narrative(self, tmp_path) -> None:
        rif = tmp_path / "rif.txt"
        rif.write_text(RIF_TXT, encoding="utf-8")
        store = str(tmp_path / "cases")
        pdf = tmp_path / "report.pdf"
        main(["--store", store, "upload", "--case", "C1", str(rif)])
        assert main([
            "--store", store, "report", "--case", "C1", "--no-narrative", "--output", str(pdf),
        ]) == 0
        assert pdf.read_bytes().startswith(b"%PDF")


class TestAnalyzeArguments:
    @pytest.fixture
    def store(self, tmp_path) -> str:
        rif = tmp_path / "rif.txt"
        rif.write_text(RIF_TXT, encoding="utf-8")
        store = str(tmp_path / "cases")
        assert main(["--store", store, "upload", "--case", "C1", str(rif)]) == 0
        return store

    def test_unknown_rule_rejected(self, store, capsys) -> None:
        code = main(["--store", store, "analyze", "--case", "C1", "--rules", "fractionin"])
        assert code == 1
        out = capsys.readouterr().out
        assert "[ERROR] Unknown rule(s): fractionin" in out
        assert "[DONE]" not in out.splitlines()[-1]

    def test_known_rules_accepted(self, store) -> None:
        args = ["--store", store, "analyze", "--case", "C1", "--rules", "fractioning", "round-value"]
        assert main(args) == 0

    def test_zero_window_reported(self, store, capsys) -> None:
        assert main(["--store", store, "analyze", "--case", "C1", "--window", "0"]) == 1
        assert "[ERROR]" in capsys.readouterr().out

    @pytest.mark.parametrize("option", [["--fan", "0"], ["--fractioning", "0"], ["--fractioning", "-5"]])
    def test_non_positive_thresholds_reported(self, store, capsys, option) -> None:
        assert main(["--store", store, "analyze", "--case", "C1", *option]) == 1
        assert "[ERROR]" in capsys.readouterr().out

    def test_malformed_threshold_reported(self, store, capsys) -> None:
        assert main(["--store", store, "analyze", "--case", "C1", "--fractioning", "dez mil"]) == 1
        assert "[ERROR]" in capsys.readouterr().out
