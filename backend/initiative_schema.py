"""
Initiative Schema

Read-only view of initiative records consumed by the aggregation engine.
Initiatives are owned by the initiative workflow; only the active stage's
financial entries and KPIs are read here.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from financial_math import MONTH_KEY_PATTERN, to_amount
from financials_models import INITIATIVE_FINANCIAL_KINDS, INITIATIVE_STAGE_KEYS


def _parse_month_values(raw: Any) -> Dict[str, Decimal]:
    if not isinstance(raw, dict):
        return {}
    return {
        key: to_amount(value)
        for key, value in raw.items()
        if isinstance(key, str) and MONTH_KEY_PATTERN.match(key)
    }


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class InitiativeFinancialEntry:
    """One financial row of an initiative stage, linked to a P&L line by code"""
    id: str
    label: str = ""
    category: str = ""
    line_code: Optional[str] = None
    distribution: Dict[str, Decimal] = field(default_factory=dict)  # planned
    actuals: Dict[str, Decimal] = field(default_factory=dict)       # realized

    @property
    def normalized_code(self) -> str:
        return (self.line_code or "").strip().upper()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitiativeFinancialEntry":
        line_code = data.get("lineCode", data.get("line_code"))
        return cls(
            id=_text(data.get("id")),
            label=_text(data.get("label")),
            category=_text(data.get("category")),
            line_code=line_code.strip() if isinstance(line_code, str) and line_code.strip() else None,
            distribution=_parse_month_values(data.get("distribution")),
            actuals=_parse_month_values(data.get("actuals")),
        )


@dataclass
class InitiativeStageKPI:
    id: str
    name: str = ""
    unit: str = ""
    baseline: Decimal = Decimal("0")
    distribution: Dict[str, Decimal] = field(default_factory=dict)
    actuals: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def aggregate_key(self) -> str:
        """KPIs with the same name and unit are aggregated together"""
        name = self.name.lower() or "kpi"
        unit = self.unit.lower() or "unitless"
        return f"{name}|{unit}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitiativeStageKPI":
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            unit=_text(data.get("unit")),
            baseline=to_amount(data.get("baseline")),
            distribution=_parse_month_values(data.get("distribution")),
            actuals=_parse_month_values(data.get("actuals")),
        )


@dataclass
class InitiativeStage:
    financials: Dict[str, List[InitiativeFinancialEntry]] = field(default_factory=dict)
    kpis: List[InitiativeStageKPI] = field(default_factory=list)

    def iter_entries(self):
        """Entries across every financial kind, in kind order"""
        for kind in INITIATIVE_FINANCIAL_KINDS:
            for entry in self.financials.get(kind, []):
                yield entry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitiativeStage":
        raw_financials = data.get("financials") if isinstance(data.get("financials"), dict) else {}
        financials = {
            kind: [
                InitiativeFinancialEntry.from_dict(entry)
                for entry in (raw_financials.get(kind) or [])
                if isinstance(entry, dict)
            ]
            for kind in INITIATIVE_FINANCIAL_KINDS
        }
        kpis = [
            InitiativeStageKPI.from_dict(kpi)
            for kpi in (data.get("kpis") or [])
            if isinstance(kpi, dict)
        ]
        return cls(financials=financials, kpis=kpis)


@dataclass
class Initiative:
    id: str
    name: str = ""
    workstream_id: str = ""
    active_stage: str = "l0"
    stages: Dict[str, InitiativeStage] = field(default_factory=dict)

    @property
    def stage(self) -> Optional[InitiativeStage]:
        """The active stage, the only one the engine reads"""
        return self.stages.get(self.active_stage)

    @property
    def display_name(self) -> str:
        return self.name or "Untitled initiative"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Initiative":
        if not isinstance(data, dict):
            raise ValueError("Initiative record must be a mapping")
        initiative_id = _text(data.get("id"))
        if not initiative_id:
            raise ValueError("Initiative record has no id")
        active_stage = _text(data.get("activeStage", data.get("active_stage"))).lower()
        raw_stages = data.get("stages") if isinstance(data.get("stages"), dict) else {}
        stages = {
            key: InitiativeStage.from_dict(raw_stages[key])
            for key in INITIATIVE_STAGE_KEYS
            if isinstance(raw_stages.get(key), dict)
        }
        return cls(
            id=initiative_id,
            name=_text(data.get("name")),
            workstream_id=_text(data.get("workstreamId", data.get("workstream_id"))),
            active_stage=active_stage if active_stage in INITIATIVE_STAGE_KEYS else "l0",
            stages=stages,
        )
