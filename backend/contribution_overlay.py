"""
Contribution Overlay Builder

Maps initiative financial entries (joined to blueprint lines by code) into
per-line monthly manual value sources for the plan and actual overlays, and
keeps per-initiative attribution for drill-down.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from blueprint_schema import LineItem
from financial_math import ZERO, MonthRecord, empty_record
from financials_models import ComputationMode, OverlayKind
from initiative_schema import Initiative, InitiativeFinancialEntry
from value_resolution import ValueMap, apply_sign

logger = logging.getLogger(__name__)

# {line_id: {YYYY-MM: {initiative_id: Decimal}}}
AttributionMap = Dict[str, Dict[str, Dict[str, Decimal]]]


@dataclass
class UnlinkedEntry:
    """A financial entry whose line code matches no blueprint line"""
    initiative_id: str
    entry_id: str
    line_code: Optional[str]


@dataclass
class ContributionOverlay:
    """Result of folding one overlay kind across an initiative set"""
    kind: OverlayKind
    aggregate: ValueMap = field(default_factory=dict)          # manual value source for the resolver
    attribution: AttributionMap = field(default_factory=dict)  # drill-down only, never summed away
    unlinked: List[UnlinkedEntry] = field(default_factory=list)
    computed_line_links: Set[str] = field(default_factory=set)  # non-manual line ids that received entries


def select_entry_values(entry: InitiativeFinancialEntry, kind: OverlayKind) -> Dict[str, Decimal]:
    if kind == OverlayKind.ACTUAL:
        return entry.actuals or {}
    return entry.distribution or {}


def filter_initiatives(
    initiatives: Iterable[Initiative],
    stage_keys: Optional[Iterable[str]] = None,
    workstream_ids: Optional[Iterable[str]] = None,
) -> List[Initiative]:
    """
    Initiatives in scope for a dashboard.

    An empty stage filter selects nothing; an empty workstream filter
    selects every workstream. `None` disables a filter.
    """
    stage_filter = set(stage_keys) if stage_keys is not None else None
    workstream_filter = set(workstream_ids or [])
    selected = []
    for initiative in initiatives:
        if stage_filter is not None and initiative.active_stage not in stage_filter:
            continue
        if workstream_filter and initiative.workstream_id not in workstream_filter:
            continue
        selected.append(initiative)
    return selected


def build_contribution_overlay(
    initiatives: Iterable[Initiative],
    line_by_code: Dict[str, LineItem],
    month_keys: List[str],
    kind: OverlayKind,
) -> ContributionOverlay:
    """
    Accumulate `amount * sign(line)` per line and month for every active-stage
    entry of every initiative.

    Months outside the horizon and non-finite amounts are ignored. Entries
    with an unknown code are skipped and recorded as unlinked.
    """
    overlay = ContributionOverlay(kind=kind)
    month_set = set(month_keys)
    attribution: Dict[str, Dict[str, Dict[str, Decimal]]] = defaultdict(lambda: defaultdict(dict))

    for initiative in initiatives:
        stage = initiative.stage
        if stage is None:
            continue
        for entry in stage.iter_entries():
            code = entry.normalized_code
            line = line_by_code.get(code) if code else None
            if line is None:
                overlay.unlinked.append(UnlinkedEntry(initiative.id, entry.id, entry.line_code))
                continue
            if line.computation != ComputationMode.MANUAL:
                overlay.computed_line_links.add(line.id)

            record = overlay.aggregate.get(line.id)
            if record is None:
                record = overlay.aggregate[line.id] = empty_record(month_keys)

            for month_key, amount in select_entry_values(entry, kind).items():
                if month_key not in month_set:
                    continue
                signed = apply_sign(line, amount)
                record[month_key] = record[month_key] + signed
                if signed:
                    per_initiative = attribution[line.id][month_key]
                    per_initiative[initiative.id] = per_initiative.get(initiative.id, ZERO) + signed

    overlay.attribution = {
        line_id: {month: dict(values) for month, values in months.items()}
        for line_id, months in attribution.items()
    }

    if overlay.unlinked:
        logger.debug(f"{kind.value} overlay skipped {len(overlay.unlinked)} unlinked entries")
    return overlay


def attributed_total(attribution: AttributionMap, line_id: str, month_keys: Iterable[str]) -> Dict[str, Decimal]:
    """Per-initiative sums for one line over a set of months"""
    totals: Dict[str, Decimal] = {}
    line_map = attribution.get(line_id) or {}
    for key in month_keys:
        for initiative_id, value in (line_map.get(key) or {}).items():
            totals[initiative_id] = totals.get(initiative_id, ZERO) + value
    return totals


# =============================================================================
# KPI AGGREGATION
# =============================================================================

@dataclass
class KpiAggregate:
    """Stage KPIs summed across initiatives by (name, unit)"""
    key: str
    name: str
    unit: str
    baseline: Decimal = ZERO
    plan: MonthRecord = field(default_factory=dict)
    actual: MonthRecord = field(default_factory=dict)


def build_kpi_aggregates(initiatives: Iterable[Initiative], month_keys: List[str]) -> List[KpiAggregate]:
    month_set = set(month_keys)
    aggregates: Dict[str, KpiAggregate] = {}

    for initiative in initiatives:
        stage = initiative.stage
        if stage is None:
            continue
        for kpi in stage.kpis:
            aggregate = aggregates.get(kpi.aggregate_key)
            if aggregate is None:
                aggregate = aggregates[kpi.aggregate_key] = KpiAggregate(
                    key=kpi.aggregate_key,
                    name=kpi.name or "KPI",
                    unit=kpi.unit or "Unitless",
                    plan=empty_record(month_keys),
                    actual=empty_record(month_keys),
                )
            aggregate.baseline += kpi.baseline
            for month_key, value in kpi.distribution.items():
                if month_key in month_set:
                    aggregate.plan[month_key] += value
            for month_key, value in kpi.actuals.items():
                if month_key in month_set:
                    aggregate.actual[month_key] += value

    return list(aggregates.values())
