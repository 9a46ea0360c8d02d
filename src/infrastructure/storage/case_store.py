"""Case Store — persistence for uploaded files, normalized ledgers and alert runs.

Layout under ``settings.store_dir``::

    <case_id>/files/<filename>      raw upload blobs
    <case_id>/transactions.jsonl    append-only normalized ledger
    <case_id>/run.json              latest detector run (alerts included)

MVP: local JSON files. Any backend honouring ``CaseStore`` can replace it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Protocol

from src.analysis.metrics import apply_filters
from src.config import get_settings
from src.core.errors import StorageError
from src.core.models import AnalysisRun, MetricsFilters, RedFlagAlert, Transaction

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^\w.\-]+")


class CaseStore(Protocol):
    def save_file(self, case_id: str, filename: str, content: bytes) -> None: ...

    def list_files(self, case_id: str) -> list[str]: ...

    def delete_file(self, case_id: str, filename: str) -> None: ...

    def append_transactions(self, case_id: str, transactions: Iterable[Transaction]) -> int: ...

    def query_transactions(
        self, case_id: str, filters: MetricsFilters | None = None
    ) -> list[Transaction]: ...

    def replace_alerts(self, case_id: str, run: AnalysisRun) -> None: ...

    def list_alerts(self, case_id: str) -> list[RedFlagAlert]: ...

    def latest_run(self, case_id: str) -> AnalysisRun | None: ...


def _safe(name: str) -> str:
    cleaned = _SAFE_NAME.sub("_", Path(name).name).strip("._")
    if not cleaned:
        raise StorageError(f"Invalid name: {name!r}")
    return cleaned


class LocalCaseStore:
    """Filesystem-backed ``CaseStore``. ``OSError`` surfaces as ``StorageError``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else get_settings().store_dir

    def _case_dir(self, case_id: str) -> Path:
        return self.root / _safe(case_id)

    def _ledger_path(self, case_id: str) -> Path:
        return self._case_dir(case_id) / "transactions.jsonl"

    def _run_path(self, case_id: str) -> Path:
        return self._case_dir(case_id) / "run.json"

    # ── Files ──

    def save_file(self, case_id: str, filename: str, content: bytes) -> None:
        target = self._case_dir(case_id) / "files" / _safe(filename)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Could not store {filename} for case {case_id}: {e}") from e
        logger.info("Case %s: stored file %s (%d bytes)", case_id, target.name, len(content))

    def list_files(self, case_id: str) -> list[str]:
        files_dir = self._case_dir(case_id) / "files"
        if not files_dir.exists():
            return []
        try:
            return sorted(p.name for p in files_dir.iterdir() if p.is_file())
        except OSError as e:
            raise StorageError(f"Could not list files of case {case_id}: {e}") from e

    def delete_file(self, case_id: str, filename: str) -> None:
        """Remove an uploaded file and the transactions parsed from it."""
        target = self._case_dir(case_id) / "files" / _safe(filename)
        kept = [t for t in self._read_ledger(case_id) if t.source != filename]
        try:
            target.unlink(missing_ok=True)
            self._write_ledger(case_id, kept)
        except OSError as e:
            raise StorageError(f"Could not delete {filename} from case {case_id}: {e}") from e
        logger.info("Case %s: deleted file %s", case_id, filename)

    # ── Ledger ──

    def append_transactions(self, case_id: str, transactions: Iterable[Transaction]) -> int:
        """Append new transactions; ids already in the ledger are skipped."""
        known = {t.id for t in self._read_ledger(case_id)}
        fresh = []
        for t in transactions:
            if t.id not in known:
                known.add(t.id)
                fresh.append(t)
        path = self._ledger_path(case_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                for t in fresh:
                    fh.write(t.model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(f"Could not append transactions to case {case_id}: {e}") from e
        logger.info("Case %s: appended %d transaction(s)", case_id, len(fresh))
        return len(fresh)

    def query_transactions(
        self, case_id: str, filters: MetricsFilters | None = None
    ) -> list[Transaction]:
        return apply_filters(self._read_ledger(case_id), filters)

    def _read_ledger(self, case_id: str) -> list[Transaction]:
        path = self._ledger_path(case_id)
        if not path.exists():
            return []
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StorageError(f"Could not read ledger of case {case_id}: {e}") from e
        return [Transaction.model_validate_json(line) for line in lines if line.strip()]

    def _write_ledger(self, case_id: str, transactions: list[Transaction]) -> None:
        path = self._ledger_path(case_id)
        if not path.exists():
            return
        tmp = path.with_suffix(".jsonl.tmp")
        tmp.write_text("".join(t.model_dump_json() + "\n" for t in transactions), encoding="utf-8")
        tmp.replace(path)

    # ── Alerts ──

    def replace_alerts(self, case_id: str, run: AnalysisRun) -> None:
        """Persist ``run`` as the latest one; earlier alerts are superseded."""
        path = self._run_path(case_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(run.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StorageError(f"Could not store alerts of case {case_id}: {e}") from e
        logger.info("Case %s: run %s stored with %d alert(s)", case_id, run.run_id, len(run.alerts))

    def latest_run(self, case_id: str) -> AnalysisRun | None:
        path = self._run_path(case_id)
        if not path.exists():
            return None
        try:
            return AnalysisRun.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Could not read alerts of case {case_id}: {e}") from e

    def list_alerts(self, case_id: str) -> list[RedFlagAlert]:
        run = self.latest_run(case_id)
        return list(run.alerts) if run else []


# Singleton instance
_case_store: LocalCaseStore | None = None


def get_case_store() -> LocalCaseStore:
    """Return the singleton LocalCaseStore instance."""
    global _case_store
    if _case_store is None:
        _case_store = LocalCaseStore()
    return _case_store
