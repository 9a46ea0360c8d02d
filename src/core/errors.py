"""Error taxonomy for the RIF analysis core.

File-level errors abort the ingestion of one file. Row-level errors are raised
by the normalizers and caught by the parsers, which drop the row and keep
going. Collaborator errors come from storage or the text-generation service
and are never confused with data-quality problems.
"""

from __future__ import annotations


class RIFAnalysisError(Exception):
    """Base class for every error raised by this package."""


# ── File-level ──


class IngestionError(RIFAnalysisError):
    """The whole file was rejected; no transaction from it is kept."""


class UnsupportedFormatError(IngestionError):
    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file format: '{extension or '<none>'}'")


class MissingColumnError(IngestionError):
    def __init__(self, missing: list[str], headers: list[str]) -> None:
        self.missing = missing
        self.headers = headers
        super().__init__(
            f"Missing required field(s) {', '.join(missing)}; headers found: {headers}"
        )


class EmptySheetError(IngestionError):
    """Spreadsheet has no header row or no data rows."""


# ── Row-level ──


class RowParseError(RIFAnalysisError):
    """A single field could not be normalized. The row is dropped."""

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


# ── Collaborators ──


class CollaboratorError(RIFAnalysisError):
    """An external service (storage, text generation) failed or timed out."""


class StorageError(CollaboratorError):
    pass


class NarrativeUnavailableError(CollaboratorError):
    pass


# ── Concurrency ──


class AnalysisAlreadyRunningError(RIFAnalysisError):
    def __init__(self, case_id: str) -> None:
        self.case_id = case_id
        super().__init__(f"A red-flag analysis is already running for case {case_id}")
