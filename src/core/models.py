"""Pydantic data models for the normalized ledger, alerts, metrics and reports."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config import Settings, get_settings


UNKNOWN_COUNTERPARTY = "Desconhecido"
# Entity key used when a ledger row carries neither holder document nor account.
LEDGER_HOLDER = "titular"


# ── Ledger ──


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class Transaction(BaseModel):
    """One normalized ledger row. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    date: datetime
    amount: Decimal = Field(ge=0)
    type: TransactionType
    counterparty: str = UNKNOWN_COUNTERPARTY
    counterparty_document: str | None = None
    holder_document: str | None = None
    description: str | None = None
    method: str | None = None
    bank: str | None = None
    agency: str | None = None
    account: str | None = None
    channel: str | None = None
    country: str | None = None
    currency: str | None = None
    source: str | None = None
    source_line: int | None = None

    @field_validator("counterparty")
    @classmethod
    def _counterparty_not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        return value or UNKNOWN_COUNTERPARTY

    @property
    def holder_key(self) -> str:
        """The account owner this row belongs to."""
        return self.holder_document or self.account or LEDGER_HOLDER

    @property
    def counterparty_key(self) -> str:
        """Stable identity of the other party: tax id when known, else the name."""
        return self.counterparty_document or self.counterparty.strip().casefold()


# ── Alerts ──


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


class RedFlagAlert(BaseModel):
    """A detector finding. Derived data: recomputed on every analysis run."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    severity: Severity
    subject: str
    description: str
    score: int = Field(ge=0, le=100)
    evidence_transaction_ids: tuple[str, ...]
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("evidence_transaction_ids")
    @classmethod
    def _evidence_not_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("an alert needs at least one evidence transaction")
        return tuple(sorted(set(value)))


class DetectionThresholds(BaseModel):
    """Numeric knobs of the red-flag rules, recorded on every alert."""

    model_config = ConfigDict(frozen=True)

    # Amounts and multipliers divide alert scores and must stay positive.
    fractioning_threshold: Decimal = Field(default=Decimal("10000"), gt=0)
    fractioning_min_transactions: int = Field(default=2, ge=2)
    fan_in_out_threshold: int = Field(default=10, ge=1)
    circularity_window: int = Field(default=30, ge=1)
    circularity_min_amount: Decimal = Field(default=Decimal("1000"), gt=0)
    circularity_max_hops: int = Field(default=4, ge=2)
    incompatible_profile_multiplier: Decimal = Field(default=Decimal("5"), gt=0)
    profile_min_history: int = Field(default=3, ge=1)
    cash_threshold: Decimal = Field(default=Decimal("50000"), gt=0)
    atypical_threshold: Decimal = Field(default=Decimal("1000000"), gt=0)
    same_day_transfer_min: int = Field(default=3, ge=1)
    round_value_min: Decimal = Field(default=Decimal("50000"), gt=0)
    # None enables every registered rule.
    enabled_rules: tuple[str, ...] | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DetectionThresholds:
        settings = settings or get_settings()
        return cls(
            fractioning_threshold=settings.fractioning_threshold,
            fan_in_out_threshold=settings.fan_in_out_threshold,
            circularity_window=settings.circularity_window,
            incompatible_profile_multiplier=settings.incompatible_profile_multiplier,
        )

    def is_enabled(self, rule: str) -> bool:
        return self.enabled_rules is None or rule in self.enabled_rules


class AnalysisRun(BaseModel):
    """One explicit detector run over a case ledger."""

    run_id: str
    case_id: str
    started_at: datetime
    finished_at: datetime | None = None
    window_days: int
    thresholds: DetectionThresholds
    transaction_count: int = 0
    alerts: list[RedFlagAlert] = Field(default_factory=list)


# ── Validation ──


class ValidationResult(BaseModel):
    valid: bool
    warnings: list[str] = Field(default_factory=list)


class UploadResult(BaseModel):
    case_id: str
    filename: str
    transaction_count: int
    dropped_rows: int
    validation: ValidationResult


# ── Metrics ──


class MetricsFilters(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    time_range: Literal["7d", "30d", "90d", "1y", "all"] | None = None
    min_amount: Decimal | None = None
    method: str | None = None
    counterparty: str | None = None
    granularity: Literal["day", "month"] = "day"


class PeriodPoint(BaseModel):
    period: str
    credits: Decimal = Decimal("0")
    debits: Decimal = Decimal("0")


class MethodShare(BaseModel):
    method: str
    amount: Decimal
    count: int


class CounterpartyRank(BaseModel):
    name: str
    document: str | None = None
    amount: Decimal
    count: int


class HeatmapCell(BaseModel):
    weekday: int  # Monday == 0
    hour: int
    count: int


class FinancialMetrics(BaseModel):
    total_credits: Decimal = Decimal("0")
    total_debits: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    transaction_count: int = 0
    average_ticket: Decimal = Decimal("0")
    first_date: datetime | None = None
    last_date: datetime | None = None
    period_series: list[PeriodPoint] = Field(default_factory=list)
    method_distribution: list[MethodShare] = Field(default_factory=list)
    top_counterparties: list[CounterpartyRank] = Field(default_factory=list)
    time_heatmap: list[HeatmapCell] = Field(default_factory=list)


# ── Reports ──


class CaseMetadata(BaseModel):
    case_id: str
    title: str = ""
    investigator: str | None = None
    unit: str | None = None
    description: str | None = None


class ReportSection(BaseModel):
    key: str
    title: str
    items: list[tuple[str, str]] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    text: str | None = None


class ReportDocument(BaseModel):
    """Structured report, ready to be rendered to PDF or any other artifact."""

    case: CaseMetadata
    generated_at: datetime
    sections: list[ReportSection] = Field(default_factory=list)
    narrative_available: bool = False
    notes: list[str] = Field(default_factory=list)

    def section(self, key: str) -> ReportSection | None:
        return next((s for s in self.sections if s.key == key), None)
