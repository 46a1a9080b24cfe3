from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlmodel import Session, col, select

from sustainwatch.domain.evaluator import Sample, evaluate
from sustainwatch.domain.models import (
    Indicator,
    IndicatorSummary,
    MeasurementRecord,
    ReportPeriod,
    ReportSummaryRead,
    Severity,
    SiteComplianceStatus,
    SiteStatusRead,
    ThresholdRule,
    as_utc,
    now_utc,
)
from sustainwatch.infra.db import get_engine
from sustainwatch.services.framework_service import FrameworkService
from sustainwatch.services.site_service import get_scoped_site
from sustainwatch.services.threshold_service import ThresholdService

REPORT_DEFAULT_WINDOW_DAYS = int(os.getenv("REPORT_DEFAULT_WINDOW_DAYS", "7"))

logger = logging.getLogger(__name__)


class ReportingError(Exception):
    pass


class NotFoundError(ReportingError):
    pass


class ValidationError(ReportingError):
    pass


def _pct(count: int, samples: int) -> float:
    return round(count / samples * 100, 2)


def summarize_indicator(
    indicator: Indicator,
    samples: Sequence[MeasurementRecord],
    rules: Sequence[ThresholdRule],
) -> IndicatorSummary:
    if not samples:
        return IndicatorSummary(
            samples=0,
            ok=0,
            warn=0,
            crit=0,
            ok_pct=None,
            warn_pct=None,
            crit_pct=None,
            avg=None,
            min=None,
            max=None,
        )

    counts = {Severity.OK: 0, Severity.WARN: 0, Severity.CRIT: 0}
    for row in samples:
        result = evaluate(Sample(indicator=indicator, value=row.value, it_load_pct=row.it_load_pct), rules)
        counts[result.severity] += 1

    values = [row.value for row in samples]
    total = len(values)
    return IndicatorSummary(
        samples=total,
        ok=counts[Severity.OK],
        warn=counts[Severity.WARN],
        crit=counts[Severity.CRIT],
        ok_pct=_pct(counts[Severity.OK], total),
        warn_pct=_pct(counts[Severity.WARN], total),
        crit_pct=_pct(counts[Severity.CRIT], total),
        avg=round(sum(values) / total, 6),
        min=round(min(values), 6),
        max=round(max(values), 6),
    )


def status_from_summary(summary: ReportSummaryRead | None) -> SiteComplianceStatus:
    if summary is None:
        return SiteComplianceStatus.COMPLIANT
    indicators = summary.indicators.values()
    if any(item.crit > 0 for item in indicators):
        return SiteComplianceStatus.ALERT
    if any(item.warn > 0 for item in indicators):
        return SiteComplianceStatus.WARNING
    return SiteComplianceStatus.COMPLIANT


class ReportingService:
    def __init__(
        self,
        *,
        framework_service: FrameworkService | None = None,
        threshold_service: ThresholdService | None = None,
    ) -> None:
        self._framework_service = framework_service or FrameworkService()
        self._threshold_service = threshold_service or ThresholdService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @staticmethod
    def _resolve_window(from_ts: datetime | None, to_ts: datetime | None) -> tuple[datetime, datetime]:
        end = as_utc(to_ts) if to_ts is not None else now_utc()
        start = as_utc(from_ts) if from_ts is not None else end - timedelta(days=REPORT_DEFAULT_WINDOW_DAYS)
        if start > end:
            raise ValidationError("from must not be after to")
        return start, end

    def summarize(
        self,
        tenant_id: str,
        site_id: str,
        framework_code: str,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
    ) -> ReportSummaryRead:
        start, end = self._resolve_window(from_ts, to_ts)
        with self._session() as session:
            if get_scoped_site(session, tenant_id, site_id) is None:
                raise NotFoundError("site not found")
            # One statement so the window is read from a single snapshot.
            rows = list(
                session.exec(
                    select(MeasurementRecord)
                    .where(MeasurementRecord.tenant_id == tenant_id)
                    .where(MeasurementRecord.site_id == site_id)
                    .where(MeasurementRecord.measured_at >= start)
                    .where(MeasurementRecord.measured_at <= end)
                    .order_by(col(MeasurementRecord.measured_at))
                ).all()
            )

        rules = self._threshold_service.resolve_rules(tenant_id, site_id, framework_code)
        grouped: dict[Indicator, list[MeasurementRecord]] = {indicator: [] for indicator in Indicator}
        for row in rows:
            grouped[row.indicator].append(row)

        logger.debug(
            "summarizing %d samples for site %s framework %s",
            len(rows),
            site_id,
            framework_code,
        )
        return ReportSummaryRead(
            site_id=site_id,
            framework_code=framework_code,
            period=ReportPeriod(from_ts=start, to_ts=end),
            indicators={
                indicator: summarize_indicator(indicator, samples, rules)
                for indicator, samples in grouped.items()
            },
        )

    def site_status(
        self,
        tenant_id: str,
        site_id: str,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
    ) -> SiteStatusRead:
        primary = self._framework_service.primary_framework(tenant_id, site_id)
        if primary is None:
            with self._session() as session:
                if get_scoped_site(session, tenant_id, site_id) is None:
                    raise NotFoundError("site not found")
            return SiteStatusRead(
                site_id=site_id,
                framework_code=None,
                status=SiteComplianceStatus.COMPLIANT,
            )
        summary = self.summarize(tenant_id, site_id, primary.framework_code, from_ts, to_ts)
        return SiteStatusRead(
            site_id=site_id,
            framework_code=primary.framework_code,
            status=status_from_summary(summary),
            summary=summary,
        )
