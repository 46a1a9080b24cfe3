from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Indicator(StrEnum):
    PUE = "PUE"
    WUE = "WUE"
    CUE = "CUE"


class Comparator(StrEnum):
    LE = "<="
    LT = "<"
    GE = ">="
    GT = ">"


class Severity(StrEnum):
    OK = "OK"
    WARN = "WARN"
    CRIT = "CRIT"


class AlertSeverity(StrEnum):
    WARN = "WARN"
    CRIT = "CRIT"


class AlertStatus(StrEnum):
    OPEN = "OPEN"
    CLEARED = "CLEARED"


class AlertAction(StrEnum):
    NOOP = "NOOP"
    OPENED = "OPENED"
    ESCALATED = "ESCALATED"
    DEESCALATED = "DEESCALATED"
    UPDATED = "UPDATED"
    HOLDING = "HOLDING"
    CLEARED = "CLEARED"
    IGNORED_STALE = "IGNORED_STALE"


class PueMode(StrEnum):
    STATIC = "STATIC"
    LOAD_AWARE = "LOAD_AWARE"


class SiteComplianceStatus(StrEnum):
    COMPLIANT = "compliant"
    WARNING = "warning"
    ALERT = "alert"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    tenant_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Site(SQLModel, table=True):
    __tablename__ = "sites"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_sites_tenant_name"),)

    site_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    name: str = Field(index=True)
    country: str = Field(index=True)
    timezone: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Framework(SQLModel, table=True):
    __tablename__ = "frameworks"

    framework_code: str = Field(primary_key=True)
    name: str
    version: str
    jurisdiction: str = Field(index=True)
    notes: str | None = None


class SiteFrameworkAssignment(SQLModel, table=True):
    __tablename__ = "site_frameworks"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "site_id",
            "framework_code",
            name="uq_site_frameworks_tenant_site_framework",
        ),
        Index("ix_site_frameworks_tenant_site", "tenant_id", "site_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    framework_code: str = Field(foreign_key="frameworks.framework_code", index=True)
    is_active: bool = Field(default=True, index=True)
    precedence: int = Field(default=100)
    updated_by: str | None = Field(default=None)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ThresholdSetRecord(SQLModel, table=True):
    __tablename__ = "threshold_sets"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "site_id",
            "framework_code",
            name="uq_threshold_sets_tenant_site_framework",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    framework_code: str = Field(foreign_key="frameworks.framework_code", index=True)
    rules: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    pue_mode: PueMode | None = Field(default=None)
    version: int = Field(default=1)
    updated_by: str | None = Field(default=None)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class MeasurementRecord(SQLModel, table=True):
    __tablename__ = "measurements"
    __table_args__ = (
        Index("ix_measurements_tenant_site_measured_at", "tenant_id", "site_id", "measured_at"),
        UniqueConstraint("tenant_id", "site_id", "indicator", "measured_at", name="uq_measurements_reading"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    indicator: Indicator = Field(index=True)
    value: float
    it_load_pct: int | None = Field(default=None)
    measured_at: datetime = Field(index=True)
    ingested_at: datetime = Field(default_factory=now_utc)


class AlertRecord(SQLModel, table=True):
    __tablename__ = "alerts"
    __table_args__ = (
        Index(
            "uq_alerts_open_key",
            "tenant_id",
            "site_id",
            "framework_code",
            "indicator",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
        Index("ix_alerts_tenant_site_framework", "tenant_id", "site_id", "framework_code"),
    )

    alert_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    framework_code: str = Field(index=True)
    indicator: Indicator = Field(index=True)
    severity: AlertSeverity = Field(index=True)
    comparator: Comparator
    threshold_value: float
    observed_value: float
    load_band: int | None = Field(default=None)
    status: AlertStatus = Field(default=AlertStatus.OPEN, index=True)
    raised_at: datetime = Field(index=True)
    cleared_at: datetime | None = Field(default=None, index=True)
    ok_streak: int = Field(default=0)
    last_measured_at: datetime
    revision: int = Field(default=0)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    tenant_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ThresholdRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator: Indicator
    comparator: Comparator
    value: float
    severity: AlertSeverity
    load_band: int | None = PydanticField(default=None, ge=1, le=100)

    @field_validator("value")
    @classmethod
    def _finite_value(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("threshold value must be finite")
        return value


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SiteCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    country: str = PydanticField(min_length=2, max_length=8)
    timezone: str = "UTC"


class SiteRead(ORMReadModel):
    site_id: str
    name: str
    country: str
    timezone: str
    created_at: datetime


class FrameworkRead(ORMReadModel):
    framework_code: str
    name: str
    version: str
    jurisdiction: str
    notes: str | None


class FrameworkPresetRead(BaseModel):
    framework_code: str
    display_name: str | None
    description: str | None
    default_pue_mode: PueMode
    supports_load_aware: bool
    pue_mode: PueMode
    rules: list[ThresholdRule]


class SiteFrameworkAssignmentWrite(BaseModel):
    framework_code: str = PydanticField(min_length=1)
    is_active: bool = True
    precedence: int = 100

    @field_validator("framework_code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("framework_code is required")
        return stripped


class SiteFrameworksWrite(BaseModel):
    assignments: list[SiteFrameworkAssignmentWrite]


class SiteFrameworkAssignmentRead(BaseModel):
    framework_code: str
    framework_name: str
    is_active: bool
    precedence: int


class SiteFrameworksRead(BaseModel):
    site_id: str
    frameworks: list[SiteFrameworkAssignmentRead]
    primary_framework_code: str | None


class ThresholdSetWrite(BaseModel):
    site_id: str = PydanticField(min_length=1)
    framework_code: str = PydanticField(min_length=1)
    rules: list[ThresholdRule] = PydanticField(min_length=1)
    pue_mode: PueMode | None = None


class PresetApplyRequest(BaseModel):
    site_id: str = PydanticField(min_length=1)
    framework_code: str = PydanticField(min_length=1)
    pue_mode: PueMode | None = None


class ThresholdSetRead(BaseModel):
    site_id: str
    framework_code: str
    rules: list[ThresholdRule]
    pue_mode: PueMode | None = None
    version: int | None = None
    is_preset: bool = False
    updated_at: datetime | None = None


class MeasurementReading(BaseModel):
    indicator: Indicator
    value: float

    @field_validator("value", mode="before")
    @classmethod
    def _numeric_value(cls, value: object) -> object:
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValueError("value must be numeric")
        return value

    @field_validator("value")
    @classmethod
    def _finite_value(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("value must be finite")
        return value


class MeasurementIngest(BaseModel):
    site_id: str
    measured_at: datetime | None = None
    it_load_pct: int | None = PydanticField(default=None, ge=0, le=100)
    measurements: list[MeasurementReading] = PydanticField(min_length=1)

    @field_validator("site_id")
    @classmethod
    def _strip_site_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("site_id is required")
        return stripped

    @field_validator("measurements")
    @classmethod
    def _one_reading_per_indicator(cls, value: list[MeasurementReading]) -> list[MeasurementReading]:
        indicators = [item.indicator for item in value]
        if len(set(indicators)) != len(indicators):
            raise ValueError("each indicator may appear once per measurement")
        return value


class AlertTransitionRead(BaseModel):
    framework_code: str
    indicator: Indicator
    severity: Severity
    action: AlertAction
    alert_id: str | None = None


class IngestResult(BaseModel):
    site_id: str
    ingested: int
    measured_at: datetime
    transitions: list[AlertTransitionRead]


class LatestReading(BaseModel):
    indicator: Indicator
    value: float
    it_load_pct: int | None = None
    measured_at: datetime


class LatestReadingsRead(BaseModel):
    site_id: str
    readings: list[LatestReading]


class AlertRead(ORMReadModel):
    alert_id: str
    site_id: str
    framework_code: str
    indicator: Indicator
    severity: AlertSeverity
    comparator: Comparator
    threshold_value: float
    observed_value: float
    load_band: int | None
    status: AlertStatus
    raised_at: datetime
    cleared_at: datetime | None


class IndicatorSummary(BaseModel):
    samples: int
    ok: int
    warn: int
    crit: int
    ok_pct: float | None
    warn_pct: float | None
    crit_pct: float | None
    avg: float | None
    min: float | None
    max: float | None


class ReportPeriod(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_ts: datetime = PydanticField(alias="from")
    to_ts: datetime = PydanticField(alias="to")


class ReportSummaryRead(BaseModel):
    site_id: str
    framework_code: str
    period: ReportPeriod
    indicators: dict[Indicator, IndicatorSummary]


class SiteStatusRead(BaseModel):
    site_id: str
    framework_code: str | None
    status: SiteComplianceStatus
    summary: ReportSummaryRead | None = None
