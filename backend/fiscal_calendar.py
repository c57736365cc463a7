"""
Time Bucketing & Fiscal Calendar

Builds the chart timeline from observed month keys and groups it into
month, quarter, calendar-year or fiscal-year buckets.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from blueprint_schema import Blueprint, FiscalYearConfig, clamp_int
from financial_math import (
    MonthRecord, format_month_key, month_start, months_between, parse_month_key,
    sort_month_keys, sum_for_period
)
from financials_config import MAX_TIMELINE_MONTHS
from financials_models import ViewMode
from initiative_schema import Initiative

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class ReportingPeriod:
    """The "current" month the dashboards must always be able to chart"""
    period_month: int
    period_year: int

    @property
    def month_key(self) -> str:
        return format_month_key(self.period_year, self.period_month)

    @classmethod
    def from_values(cls, period_month: Any, period_year: Any) -> Optional["ReportingPeriod"]:
        """Clamped period, or None when either part is missing"""
        if period_month is None or period_year is None:
            return None
        today = date.today()
        month = clamp_int(period_month, 1, 12, today.month)
        year = clamp_int(period_year, 2000, 9999, today.year)
        return cls(period_month=month, period_year=year)

    @classmethod
    def current(cls) -> "ReportingPeriod":
        today = date.today()
        return cls(period_month=today.month, period_year=today.year)

    def to_dict(self) -> Dict[str, int]:
        return {"periodMonth": self.period_month, "periodYear": self.period_year}


@dataclass
class ChartBucket:
    """A group of consecutive month keys summed together for charting"""
    key: str
    label: str
    year: int
    index: int
    month_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "year": self.year,
            "index": self.index,
            "month_keys": list(self.month_keys),
        }


# =============================================================================
# FISCAL YEAR
# =============================================================================

def fiscal_year_of(year: int, month: int, config: Optional[FiscalYearConfig] = None) -> int:
    """
    Fiscal year a calendar month belongs to.

    With "end" naming a year starting in July 2024 is FY2025; with "start"
    naming it is FY2024. A January start makes both equal the calendar year.
    """
    config = config or FiscalYearConfig()
    start = config.start_month
    if config.naming == "start":
        return year if month >= start else year - 1
    if start > 1 and month >= start:
        return year + 1
    return year


def fiscal_year_month_keys(month_keys: Iterable[str], fiscal_year: int,
                           config: Optional[FiscalYearConfig] = None) -> List[str]:
    keys = []
    for key in month_keys:
        parsed = parse_month_key(key)
        if parsed and fiscal_year_of(parsed[0], parsed[1], config) == fiscal_year:
            keys.append(key)
    return keys


# =============================================================================
# TIMELINE
# =============================================================================

def collect_observed_month_keys(blueprint: Optional[Blueprint], initiatives: Iterable[Initiative]) -> List[str]:
    """Month keys present in blueprint manual values or initiative data, sorted"""
    keys = set()
    if blueprint is not None:
        for line in blueprint.lines:
            if line.is_manual:
                keys.update(line.months.keys())
    for initiative in initiatives:
        stage = initiative.stage
        if stage is None:
            continue
        for entry in stage.iter_entries():
            keys.update(entry.distribution.keys())
            keys.update(entry.actuals.keys())
        for kpi in stage.kpis:
            keys.update(kpi.distribution.keys())
            keys.update(kpi.actuals.keys())
    return sort_month_keys(keys)


def build_timeline(observed_keys: Iterable[str], period: Optional[ReportingPeriod] = None) -> List[str]:
    """
    Contiguous timeline from the first observed month to the later of the
    last observed month and the reporting period.

    Gaps between observed months are filled. The run is capped at
    MAX_TIMELINE_MONTHS months, keeping the most recent ones so the run
    still ends at the reporting period.
    """
    ordered = sort_month_keys(observed_keys)
    if not ordered:
        return [period.month_key] if period is not None else []

    start = month_start(ordered[0])
    end = month_start(ordered[-1])
    if period is not None:
        target = date(period.period_year, period.period_month, 1)
        if target > end:
            end = target

    timeline = months_between(start, end)
    if len(timeline) > MAX_TIMELINE_MONTHS:
        logger.warning(
            f"Timeline {timeline[0]}..{timeline[-1]} truncated to the last {MAX_TIMELINE_MONTHS} months"
        )
        timeline = timeline[-MAX_TIMELINE_MONTHS:]
    return timeline


# =============================================================================
# BUCKETING
# =============================================================================

def build_buckets(month_keys: List[str], view_mode: ViewMode,
                  fiscal_config: Optional[FiscalYearConfig] = None) -> List[ChartBucket]:
    """Partition a chronological timeline into chart buckets for a view"""
    parsed = [(key, parse_month_key(key)) for key in month_keys]
    parsed = [(key, ym) for key, ym in parsed if ym]

    if view_mode == ViewMode.MONTHS:
        return [
            ChartBucket(key=key, label=date(year, month, 1).strftime("%b"), year=year, index=index,
                        month_keys=[key])
            for index, (key, (year, month)) in enumerate(parsed)
        ]

    if view_mode == ViewMode.QUARTERS:
        groups: Dict[tuple, List[str]] = {}
        for key, (year, month) in parsed:
            groups.setdefault((year, (month - 1) // 3 + 1), []).append(key)
        return [
            ChartBucket(key=f"{year}-Q{quarter}", label=f"Q{quarter}", year=year, index=index,
                        month_keys=keys)
            for index, ((year, quarter), keys) in enumerate(sorted(groups.items()))
        ]

    year_groups: Dict[int, List[str]] = {}
    for key, (year, month) in parsed:
        if view_mode == ViewMode.CALENDAR:
            group_year = year
        else:
            group_year = fiscal_year_of(year, month, fiscal_config)
        year_groups.setdefault(group_year, []).append(key)

    label = "CY" if view_mode == ViewMode.CALENDAR else "FY"
    return [
        ChartBucket(key=f"{view_mode.value}-{year}", label=label, year=year, index=index, month_keys=keys)
        for index, (year, keys) in enumerate(sorted(year_groups.items()))
    ]


def bucket_totals(record: Optional[MonthRecord], buckets: List[ChartBucket]) -> Dict[str, Decimal]:
    """Sum a monthly record into each bucket"""
    return {bucket.key: sum_for_period(record, bucket.month_keys) for bucket in buckets}


def calendar_year_totals(record: Optional[MonthRecord]) -> Dict[int, Decimal]:
    totals: Dict[int, Decimal] = {}
    for key, value in (record or {}).items():
        parsed = parse_month_key(key)
        if parsed:
            totals[parsed[0]] = totals.get(parsed[0], Decimal("0")) + value
    return totals
