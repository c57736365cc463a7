"""
Deterministic Financial Dynamics Engine

Produces the financial dynamics view from a blueprint and an initiative set:
resolved base/plan/actual values, bucketed chart stacks, run rates, KPI
series, ratio summaries, guardrails and per-initiative breakdowns.
Key invariant: same inputs = same outputs (reproducible, no I/O).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import hashlib
import json
import logging

from blueprint_hierarchy import build_hierarchy
from blueprint_schema import Blueprint, LineItem
from breakdown_engine import BreakdownResult, BreakdownRow, build_breakdown
from contribution_overlay import (
    ContributionOverlay, KpiAggregate, build_contribution_overlay, build_kpi_aggregates, filter_initiatives
)
from financial_math import (
    ZERO, MonthRecord, build_month_horizon, combine_records, empty_record, record_to_dict, sum_for_period
)
from financials_models import BaseMode, LineNature, OverlayKind, SortMode
from fiscal_calendar import (
    ChartBucket, ReportingPeriod, build_buckets, build_timeline, collect_observed_month_keys
)
from dynamics_preferences import DynamicsSettings
from guardrails import QualityReport, build_quality_report
from initiative_schema import Initiative
from ratio_engine import RatioSummary, calculate_run_rate, compute_ratio_summaries
from value_resolution import ValueMap, ValueResolver, build_manual_value_map

logger = logging.getLogger(__name__)


class UnknownLineError(ValueError):
    """Breakdown requested for a line that is not in the blueprint"""


class UnknownBucketError(ValueError):
    """Breakdown requested for a bucket that is not in the current view"""


def display_value(line: LineItem, value: Decimal) -> Decimal:
    """Cost lines are shown as positive magnitudes"""
    if not value:
        return ZERO
    return -value if line.nature == LineNature.COST else value


# =============================================================================
# OUTPUT DATA STRUCTURES
# =============================================================================

@dataclass
class ChartSegment:
    """One coloured block of a stacked bar"""
    kind: str  # "base", "initiatives", "other"
    label: str
    raw_value: Decimal

    @property
    def value(self) -> Decimal:
        return abs(self.raw_value)

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "label": self.label,
            "value": str(self.value),
            "raw_value": str(self.raw_value),
        }


@dataclass
class ChartMonthStack:
    """Positive and negative segments of one bucket"""
    key: str
    positive_segments: List[ChartSegment] = field(default_factory=list)
    negative_segments: List[ChartSegment] = field(default_factory=list)

    @classmethod
    def from_segments(cls, key: str, segments: List[ChartSegment]) -> "ChartMonthStack":
        return cls(
            key=key,
            positive_segments=[s for s in segments if s.raw_value >= 0],
            negative_segments=[s for s in segments if s.raw_value < 0],
        )

    @property
    def positive_total(self) -> Decimal:
        return sum((s.value for s in self.positive_segments), ZERO)

    @property
    def negative_total(self) -> Decimal:
        return sum((s.value for s in self.negative_segments), ZERO)

    @property
    def net(self) -> Decimal:
        return self.positive_total - self.negative_total

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "positive_segments": [s.to_dict() for s in self.positive_segments],
            "negative_segments": [s.to_dict() for s in self.negative_segments],
            "positive_total": str(self.positive_total),
            "negative_total": str(self.negative_total),
        }


def _max_abs_net(*stack_lists: List[ChartMonthStack]) -> Decimal:
    return max((abs(stack.net) for stacks in stack_lists for stack in stacks), default=ZERO)


@dataclass
class LineSeries:
    """Chart series for one blueprint line"""
    line: LineItem
    plan: List[ChartMonthStack]
    actual: List[ChartMonthStack]
    plan_run_rate: Decimal = ZERO    # display sign
    actual_run_rate: Decimal = ZERO  # display sign
    delta: Decimal = ZERO            # actual - plan, raw sign
    max_abs: Decimal = ZERO

    @property
    def sort_name(self) -> str:
        return self.line.name.lower()

    def matches(self, query: str) -> bool:
        return query in self.line.name.lower() or query in self.line.code.lower()

    def to_dict(self) -> Dict:
        return {
            "line_id": self.line.id,
            "code": self.line.code,
            "name": self.line.name,
            "nature": self.line.nature.value,
            "computation": self.line.computation.value,
            "indent": self.line.indent,
            "plan": [s.to_dict() for s in self.plan],
            "actual": [s.to_dict() for s in self.actual],
            "plan_run_rate": str(self.plan_run_rate),
            "actual_run_rate": str(self.actual_run_rate),
            "delta": str(self.delta),
            "max_abs": str(self.max_abs),
        }


@dataclass
class KpiSeries:
    """Chart series for one aggregated stage KPI"""
    key: str
    name: str
    unit: str
    baseline: Decimal
    plan: List[ChartMonthStack]
    actual: List[ChartMonthStack]
    plan_run_rate: Decimal = ZERO
    actual_run_rate: Decimal = ZERO
    delta: Decimal = ZERO
    max_abs: Decimal = ZERO

    @property
    def sort_name(self) -> str:
        return self.name.lower()

    def matches(self, query: str) -> bool:
        return query in self.name.lower() or query in self.unit.lower()

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "name": self.name,
            "unit": self.unit,
            "baseline": str(self.baseline),
            "plan": [s.to_dict() for s in self.plan],
            "actual": [s.to_dict() for s in self.actual],
            "plan_run_rate": str(self.plan_run_rate),
            "actual_run_rate": str(self.actual_run_rate),
            "delta": str(self.delta),
            "max_abs": str(self.max_abs),
        }


@dataclass
class ResolvedOverlays:
    """The three independent resolved value maps over one line/month grid"""
    month_keys: List[str]
    base: ValueMap
    plan: ValueMap
    actual: ValueMap

    def combined(self, overlay: ValueMap) -> ValueMap:
        """base + overlay, line by line; neither input is modified"""
        return {
            line_id: combine_records(self.month_keys, record, overlay.get(line_id))
            for line_id, record in self.base.items()
        }

    def to_dict(self) -> Dict:
        return {
            name: {line_id: record_to_dict(record) for line_id, record in values.items()}
            for name, values in (("base", self.base), ("plan", self.plan), ("actual", self.actual))
        }


@dataclass
class BreakdownView:
    """Breakdown table for a clicked (line, bucket, overlay) selection"""
    line_id: str
    line_name: str
    bucket_key: str
    bucket_label: str
    overlay: OverlayKind
    result: BreakdownResult

    def to_dict(self) -> Dict:
        return {
            "line_id": self.line_id,
            "line_name": self.line_name,
            "bucket_key": self.bucket_key,
            "bucket_label": self.bucket_label,
            "mode": self.overlay.value,
            **self.result.to_dict(),
        }


@dataclass
class DynamicsOutput:
    """Complete financial dynamics view"""
    settings: DynamicsSettings
    period: Optional[ReportingPeriod]
    month_keys: List[str]
    buckets: List[ChartBucket]
    lines: List[LineSeries]
    kpis: List[KpiSeries]
    ratios_with_plan: List[RatioSummary]
    ratios_base: List[RatioSummary]
    values: ResolvedOverlays
    quality: QualityReport
    initiative_count: int = 0

    # Metadata
    input_fingerprint: str = ""
    computed_at: datetime = field(default_factory=datetime.utcnow)
    compute_time_ms: int = 0
    output_hash: str = ""

    def to_dict(self) -> Dict:
        return {
            "settings": self.settings.to_dict(),
            "period": self.period.to_dict() if self.period else None,
            "month_keys": list(self.month_keys),
            "buckets": [b.to_dict() for b in self.buckets],
            "lines": [s.to_dict() for s in self.lines],
            "kpis": [s.to_dict() for s in self.kpis],
            "ratios": {
                "base_plus_plan": [r.to_dict() for r in self.ratios_with_plan],
                "base": [r.to_dict() for r in self.ratios_base],
            },
            "values": self.values.to_dict(),
            "quality": self.quality.to_dict(),
            "initiative_count": self.initiative_count,
            "input_fingerprint": self.input_fingerprint,
            "computed_at": self.computed_at.isoformat(),
            "compute_time_ms": self.compute_time_ms,
            "output_hash": self.output_hash,
        }


# =============================================================================
# COMPUTE ENGINE
# =============================================================================

class FinancialDynamicsEngine:
    """
    Deterministic financial dynamics engine.

    One instance covers one (blueprint, initiatives, settings, period)
    input. Intermediate results are computed once on first use and never
    mutated afterwards.
    """

    def __init__(
        self,
        blueprint: Blueprint,
        initiatives: List[Initiative],
        settings: Optional[DynamicsSettings] = None,
        period: Optional[ReportingPeriod] = None,
    ):
        self.blueprint = blueprint
        self.initiatives = list(initiatives)
        self.settings = settings or DynamicsSettings()
        self.period = period
        self._prepared = False

    def _prepare(self) -> None:
        if self._prepared:
            return
        lines = self.blueprint.lines

        self.selected = filter_initiatives(
            self.initiatives, self.settings.stage_keys, self.settings.workstream_ids
        )
        observed = collect_observed_month_keys(self.blueprint, self.selected)
        self.month_keys = build_timeline(observed, self.period)
        self.buckets = build_buckets(self.month_keys, self.settings.view_mode, self.blueprint.fiscal_year)

        self.hierarchy = build_hierarchy(lines)
        line_by_code = self.blueprint.line_by_code()
        self.plan_overlay = build_contribution_overlay(self.selected, line_by_code, self.month_keys, OverlayKind.PLAN)
        self.actual_overlay = build_contribution_overlay(
            self.selected, line_by_code, self.month_keys, OverlayKind.ACTUAL
        )

        resolver = ValueResolver(lines, self.month_keys, self.hierarchy.children_of)
        self.values = ResolvedOverlays(
            month_keys=self.month_keys,
            base=resolver.resolve(build_manual_value_map(lines, self.month_keys)),
            plan=resolver.resolve(self.plan_overlay.aggregate),
            actual=resolver.resolve(self.actual_overlay.aggregate),
        )
        logger.debug(
            f"Resolved base/plan/actual for {len(lines)} lines, {len(self.selected)} initiatives, "
            f"{len(self.month_keys)} months"
        )
        self._prepared = True

    def overlay(self, kind: OverlayKind) -> ContributionOverlay:
        self._prepare()
        return self.actual_overlay if kind == OverlayKind.ACTUAL else self.plan_overlay

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def compute(self) -> DynamicsOutput:
        """
        Compute the complete dynamics view.

        1. Filter initiatives and build the timeline
        2. Resolve base, plan and actual values
        3. Build line and KPI chart series
        4. Evaluate ratios and guardrails
        """
        start_time = datetime.utcnow()
        self._prepare()

        line_series = self.filter_and_sort(self.compute_line_series())
        kpi_series = self.filter_and_sort(self.compute_kpi_series())

        line_by_code = self.blueprint.line_by_code()
        ratios_with_plan = compute_ratio_summaries(
            self.blueprint.ratios, self.values.combined(self.values.plan), line_by_code,
            self.month_keys, self.blueprint.fiscal_year, self.period,
        )
        ratios_base = compute_ratio_summaries(
            self.blueprint.ratios, self.values.base, line_by_code,
            self.month_keys, self.blueprint.fiscal_year, self.period,
        )

        quality = build_quality_report(self.blueprint.lines, self.plan_overlay, self.hierarchy)

        compute_time_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        output = DynamicsOutput(
            settings=self.settings,
            period=self.period,
            month_keys=self.month_keys,
            buckets=self.buckets,
            lines=line_series,
            kpis=kpi_series,
            ratios_with_plan=ratios_with_plan,
            ratios_base=ratios_base,
            values=self.values,
            quality=quality,
            initiative_count=len(self.selected),
            input_fingerprint=self.input_fingerprint(),
            computed_at=datetime.utcnow(),
            compute_time_ms=compute_time_ms,
        )
        output.output_hash = self._compute_output_hash(output)

        logger.info(
            f"Financial dynamics computed for {len(self.blueprint.lines)} lines over "
            f"{len(self.month_keys)} months in {compute_time_ms}ms"
        )
        return output

    # -------------------------------------------------------------------------
    # Series
    # -------------------------------------------------------------------------

    def compute_line_series(self) -> List[LineSeries]:
        self._prepare()
        if not self.buckets:
            return []
        with_base = self.settings.base_mode == BaseMode.BASELINE
        series = []

        for line in self.blueprint.lines:
            base_record = self.values.base.get(line.id) or empty_record(self.month_keys)
            plan_record = self.values.plan.get(line.id) or empty_record(self.month_keys)
            actual_record = self.values.actual.get(line.id) or empty_record(self.month_keys)

            def build_stack(bucket: ChartBucket, overlay_value: Decimal, label: str) -> ChartMonthStack:
                segments = []
                if with_base:
                    base_display = display_value(line, sum_for_period(base_record, bucket.month_keys))
                    if base_display:
                        segments.append(ChartSegment("base", "Base P&L", base_display))
                overlay_display = display_value(line, overlay_value)
                if overlay_display:
                    segments.append(ChartSegment("initiatives", label, overlay_display))
                return ChartMonthStack.from_segments(bucket.key, segments)

            plan_stacks = [
                build_stack(b, sum_for_period(plan_record, b.month_keys), "Plan initiatives") for b in self.buckets
            ]
            actual_stacks = [
                build_stack(b, sum_for_period(actual_record, b.month_keys), "Actual initiatives") for b in self.buckets
            ]

            base_for_totals = base_record if with_base else None
            plan_run_rate = calculate_run_rate(
                self.month_keys, combine_records(self.month_keys, plan_record, base_for_totals)
            )
            actual_run_rate = calculate_run_rate(
                self.month_keys, combine_records(self.month_keys, actual_record, base_for_totals)
            )

            series.append(LineSeries(
                line=line,
                plan=plan_stacks,
                actual=actual_stacks,
                plan_run_rate=display_value(line, plan_run_rate),
                actual_run_rate=display_value(line, actual_run_rate),
                delta=actual_run_rate - plan_run_rate,
                max_abs=_max_abs_net(plan_stacks, actual_stacks),
            ))

        return series

    def compute_kpi_series(self) -> List[KpiSeries]:
        self._prepare()
        if not self.buckets:
            return []
        aggregates = sorted(build_kpi_aggregates(self.selected, self.month_keys), key=lambda a: a.key)
        return [self._kpi_series(aggregate) for aggregate in aggregates]

    def _kpi_series(self, kpi: KpiAggregate) -> KpiSeries:
        with_base = self.settings.base_mode == BaseMode.BASELINE
        baseline = kpi.baseline if with_base else ZERO

        def build_stack(bucket: ChartBucket, value: Decimal, label: str) -> ChartMonthStack:
            segments = []
            if with_base and baseline:
                segments.append(ChartSegment("base", "Baseline", baseline))
            if value:
                segments.append(ChartSegment("other", label, value))
            return ChartMonthStack.from_segments(bucket.key, segments)

        def with_baseline(record: MonthRecord) -> MonthRecord:
            return {key: record.get(key, ZERO) + baseline for key in self.month_keys}

        plan_stacks = [build_stack(b, sum_for_period(kpi.plan, b.month_keys), "Plan KPI") for b in self.buckets]
        actual_stacks = [build_stack(b, sum_for_period(kpi.actual, b.month_keys), "Actual KPI") for b in self.buckets]
        plan_run_rate = calculate_run_rate(self.month_keys, with_baseline(kpi.plan))
        actual_run_rate = calculate_run_rate(self.month_keys, with_baseline(kpi.actual))

        return KpiSeries(
            key=kpi.key,
            name=kpi.name,
            unit=kpi.unit,
            baseline=kpi.baseline,
            plan=plan_stacks,
            actual=actual_stacks,
            plan_run_rate=plan_run_rate,
            actual_run_rate=actual_run_rate,
            delta=actual_run_rate - plan_run_rate,
            max_abs=_max_abs_net(plan_stacks, actual_stacks),
        )

    def filter_and_sort(self, series: List[Any]) -> List[Any]:
        """Apply the query and hide-zeros filters, then the sort mode"""
        query = self.settings.query.strip().lower()
        visible = [
            entry for entry in series
            if (not query or entry.matches(query))
            and not (self.settings.hide_zeros and entry.max_abs == ZERO)
        ]

        mode = self.settings.sort_mode
        if mode == SortMode.NAME:
            return sorted(visible, key=lambda e: e.sort_name)
        if mode == SortMode.DELTA:
            return sorted(visible, key=lambda e: abs(e.delta), reverse=True)
        if mode == SortMode.IMPACT_ASC:
            return sorted(visible, key=lambda e: abs(e.actual_run_rate))
        return sorted(visible, key=lambda e: abs(e.actual_run_rate), reverse=True)

    # -------------------------------------------------------------------------
    # Breakdown
    # -------------------------------------------------------------------------

    def breakdown(self, line_id: str, bucket_key: str, overlay: OverlayKind) -> BreakdownView:
        """
        Per-initiative breakdown of one line within one bucket.

        Values of cost lines are reported as magnitudes; shares are unchanged.
        """
        self._prepare()
        line = self.blueprint.line_by_id().get(line_id)
        if line is None:
            raise UnknownLineError(f"Line {line_id} not found")
        bucket = next((b for b in self.buckets if b.key == bucket_key), None)
        if bucket is None:
            raise UnknownBucketError(f"Bucket {bucket_key} not found in {self.settings.view_mode.value} view")

        names = {initiative.id: initiative.display_name for initiative in self.initiatives}
        result = build_breakdown(self.overlay(overlay).attribution, line.id, bucket.month_keys, names)

        if line.nature == LineNature.COST:
            result = BreakdownResult(
                total=abs(result.total),
                rows=[BreakdownRow(r.initiative_id, r.name, abs(r.value), r.share) for r in result.rows],
            )

        return BreakdownView(
            line_id=line.id,
            line_name=line.name,
            bucket_key=bucket.key,
            bucket_label=f"{bucket.label} {bucket.year}",
            overlay=overlay,
            result=result,
        )

    # -------------------------------------------------------------------------
    # Hashing
    # -------------------------------------------------------------------------

    def input_fingerprint(self) -> str:
        """SHA256 over canonical inputs; usable as a cache key"""
        payload = {
            "blueprint": self.blueprint.to_dict(),
            "initiatives": [asdict(i) for i in sorted(self.initiatives, key=lambda i: i.id)],
            "settings": self.settings.to_dict(),
            "period": self.period.to_dict() if self.period else None,
        }
        payload_json = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(payload_json.encode()).hexdigest()

    def _compute_output_hash(self, output: DynamicsOutput) -> str:
        """Compute SHA256 hash of output, excluding run metadata"""
        payload = output.to_dict()
        for key in ("computed_at", "compute_time_ms", "output_hash"):
            payload.pop(key, None)
        output_json = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(output_json.encode()).hexdigest()


def compute_horizon_ratios(blueprint: Blueprint, period: Optional[ReportingPeriod] = None) -> List[RatioSummary]:
    """Ratio summaries of the base P&L over the blueprint's own horizon"""
    month_keys = build_month_horizon(blueprint.start_month, blueprint.month_count)
    hierarchy = build_hierarchy(blueprint.lines)
    resolver = ValueResolver(blueprint.lines, month_keys, hierarchy.children_of)
    base = resolver.resolve(build_manual_value_map(blueprint.lines, month_keys))
    return compute_ratio_summaries(
        blueprint.ratios, base, blueprint.line_by_code(), month_keys, blueprint.fiscal_year, period
    )
