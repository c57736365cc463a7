"""
Financial Blueprint Schema

Dataclasses for the P&L blueprint document, lenient parsing from stored
JSON, and strict sanitization applied before a blueprint is saved.

Line order is load-bearing: it defines both the indent hierarchy and the
scope of cumulative subtotals, so every conversion preserves it verbatim.
"""

import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from financial_math import MONTH_KEY_PATTERN, parse_month_key, record_to_dict, to_amount
from financials_config import (
    DEFAULT_FISCAL_YEAR_START_MONTH,
    DEFAULT_MONTH_COUNT,
    FISCAL_YEAR_NAMING,
    MAX_INDENT_LEVEL,
    MAX_MONTH_COUNT,
    MIN_MONTH_COUNT,
)
from financials_models import ComputationMode, LineNature, RatioFormat


class InvalidBlueprintError(ValueError):
    """Blueprint payload cannot be interpreted at all"""


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class LineItem:
    """A single row of the P&L blueprint"""
    id: str
    code: str
    name: str
    indent: int = 0
    nature: LineNature = LineNature.REVENUE
    computation: ComputationMode = ComputationMode.MANUAL
    months: Dict[str, Decimal] = field(default_factory=dict)  # {YYYY-MM: amount}, manual only

    def __post_init__(self):
        # Aggregates have no intrinsic sign and no entered values
        if self.computation != ComputationMode.MANUAL:
            self.nature = LineNature.SUMMARY
            self.months = {}

    @property
    def is_manual(self) -> bool:
        return self.computation == ComputationMode.MANUAL

    @property
    def sign_effect(self) -> int:
        return -1 if self.nature == LineNature.COST else 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        computation = _normalize_computation(data.get("computation", data.get("computationMode")))
        return cls(
            id=str(data.get("id") or "").strip(),
            code=str(data.get("code") or "").strip(),
            name=str(data.get("name") or "").strip(),
            indent=_to_indent(data.get("indent")),
            nature=_normalize_nature(data.get("nature")),
            computation=computation,
            months=_parse_months(data.get("months")) if computation == ComputationMode.MANUAL else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "indent": self.indent,
            "nature": self.nature.value,
            "computation": self.computation.value,
            "months": record_to_dict(self.months),
        }


@dataclass
class RatioDefinition:
    """Numerator/denominator ratio between two line codes"""
    id: str
    label: str
    numerator_code: str
    denominator_code: str
    format: RatioFormat = RatioFormat.PERCENTAGE
    precision: int = 1
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RatioDefinition":
        return cls(
            id=str(data.get("id") or "").strip(),
            label=str(data.get("label") or "").strip(),
            numerator_code=str(data.get("numeratorCode", data.get("numerator_code")) or "").strip().upper(),
            denominator_code=str(data.get("denominatorCode", data.get("denominator_code")) or "").strip().upper(),
            format=RatioFormat.MULTIPLE if data.get("format") == "multiple" else RatioFormat.PERCENTAGE,
            precision=clamp_int(data.get("precision"), 0, 4, 1),
            description=data.get("description") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "label": self.label,
            "numeratorCode": self.numerator_code,
            "denominatorCode": self.denominator_code,
            "format": self.format.value,
            "precision": self.precision,
        }
        if self.description:
            result["description"] = self.description
        return result


@dataclass
class FiscalYearConfig:
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
    label: Optional[str] = None
    naming: str = FISCAL_YEAR_NAMING  # "end" | "start"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FiscalYearConfig":
        data = data if isinstance(data, dict) else {}
        naming = data.get("naming")
        return cls(
            start_month=clamp_int(data.get("startMonth", data.get("start_month")), 1, 12,
                                   DEFAULT_FISCAL_YEAR_START_MONTH),
            label=data.get("label") or None,
            naming=naming if naming in ("end", "start") else FISCAL_YEAR_NAMING,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {"startMonth": self.start_month, "naming": self.naming}
        if self.label:
            result["label"] = self.label
        return result


@dataclass
class Blueprint:
    """The P&L blueprint document"""
    start_month: str
    month_count: int
    lines: List[LineItem]
    fiscal_year: FiscalYearConfig = field(default_factory=FiscalYearConfig)
    ratios: List[RatioDefinition] = field(default_factory=list)

    def line_by_id(self) -> Dict[str, LineItem]:
        return {line.id: line for line in self.lines}

    def line_by_code(self) -> Dict[str, LineItem]:
        """
        Code index used to join initiative entries.

        With duplicate codes the first line in document order wins; the
        ambiguity itself is reported by the guardrails.
        """
        index: Dict[str, LineItem] = {}
        for line in self.lines:
            code = line.code.strip().upper()
            if code and code not in index:
                index[code] = line
        return index

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Blueprint":
        if not isinstance(data, dict):
            raise InvalidBlueprintError("Blueprint document must be a mapping")
        start_month = data.get("startMonth", data.get("start_month"))
        if not isinstance(start_month, str) or not parse_month_key(start_month):
            start_month = _current_month_key()
        lines = [
            LineItem.from_dict(item)
            for item in (data.get("lines") or [])
            if isinstance(item, dict)
        ]
        ratios = [
            RatioDefinition.from_dict(item)
            for item in (data.get("ratios") or [])
            if isinstance(item, dict)
        ]
        return cls(
            start_month=start_month,
            month_count=clamp_int(data.get("monthCount", data.get("month_count")),
                                   1, MAX_MONTH_COUNT, DEFAULT_MONTH_COUNT),
            lines=lines,
            fiscal_year=FiscalYearConfig.from_dict(data.get("fiscalYear", data.get("fiscal_year"))),
            ratios=ratios,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startMonth": self.start_month,
            "monthCount": self.month_count,
            "fiscalYear": self.fiscal_year.to_dict(),
            "ratios": [r.to_dict() for r in self.ratios],
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass
class BlueprintRecord:
    """A stored blueprint with its version metadata"""
    id: str
    version: int
    blueprint: Blueprint
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            **self.blueprint.to_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# PARSING HELPERS
# =============================================================================

def _current_month_key() -> str:
    return date.today().strftime("%Y-%m")


def _normalize_nature(value: Any) -> LineNature:
    if value in ("cost", "summary"):
        return LineNature(value)
    return LineNature.REVENUE


def _normalize_computation(value: Any) -> ComputationMode:
    if value in ("children", "cumulative"):
        return ComputationMode(value)
    return ComputationMode.MANUAL


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_int(value: Any, low: int, high: int, default: int) -> int:
    number = _to_number(value)
    if number is None:
        return default
    return max(low, min(high, int(math.floor(number))))


def _to_indent(value: Any) -> int:
    number = _to_number(value)
    if number is None:
        return 0
    return max(0, int(math.floor(number)))


def _parse_months(raw: Any) -> Dict[str, Decimal]:
    """Keep valid month keys; non-finite or blank cells become zero"""
    if not isinstance(raw, dict):
        return {}
    return {
        key: to_amount(value)
        for key, value in raw.items()
        if isinstance(key, str) and MONTH_KEY_PATTERN.match(key)
    }


# =============================================================================
# SANITIZATION (save path)
# =============================================================================

def slugify_code(value: str) -> str:
    normalized = re.sub(r"[^A-Z0-9]+", "_", value.strip().upper()).strip("_")
    return normalized or f"LINE_{uuid.uuid4().hex[:4].upper()}"


def sanitize_lines(raw_lines: Any) -> List[LineItem]:
    """
    Normalize a raw line list for storage.

    Unnamed lines are dropped, ids are filled in, codes are slugified and
    made unique, indents are clamped to the supported depth.
    """
    if not isinstance(raw_lines, list):
        return []
    used_codes: Set[str] = set()
    lines: List[LineItem] = []
    for candidate in raw_lines:
        if not isinstance(candidate, dict):
            continue
        name = candidate.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            continue
        raw_id = candidate.get("id")
        line_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else str(uuid.uuid4())
        raw_code = candidate.get("code")
        base_code = slugify_code(raw_code if isinstance(raw_code, str) and raw_code.strip() else name)
        code = base_code
        suffix = 2
        while code in used_codes:
            code = f"{base_code}_{suffix}"
            suffix += 1
        used_codes.add(code)

        line = LineItem.from_dict({**candidate, "id": line_id, "code": code, "name": name})
        line.indent = min(MAX_INDENT_LEVEL, line.indent)
        lines.append(line)
    return lines


def sanitize_ratios(raw_ratios: Any) -> List[RatioDefinition]:
    if not isinstance(raw_ratios, list):
        return []
    ratios = []
    for candidate in raw_ratios:
        if not isinstance(candidate, dict):
            continue
        ratio = RatioDefinition.from_dict(candidate)
        if not ratio.label or not ratio.numerator_code or not ratio.denominator_code:
            continue
        ratio.id = ratio.id or str(uuid.uuid4())
        ratios.append(ratio)
    return ratios


def sanitize_blueprint(payload: Any) -> Blueprint:
    """Strict normalization applied before a blueprint is stored"""
    if not isinstance(payload, dict):
        raise InvalidBlueprintError("Blueprint payload must be an object")

    start_month = payload.get("startMonth")
    if not isinstance(start_month, str) or not parse_month_key(start_month):
        start_month = _current_month_key()

    month_count = clamp_int(payload.get("monthCount"), MIN_MONTH_COUNT, MAX_MONTH_COUNT,
                             DEFAULT_MONTH_COUNT)

    lines = sanitize_lines(payload.get("lines"))
    if not lines:
        lines = create_default_blueprint().lines

    return Blueprint(
        start_month=start_month,
        month_count=month_count,
        lines=lines,
        fiscal_year=FiscalYearConfig.from_dict(payload.get("fiscalYear")),
        ratios=sanitize_ratios(payload.get("ratios")),
    )


# =============================================================================
# DEFAULT BLUEPRINT
# =============================================================================

_DEFAULT_LINES = [
    # (id, code, name, indent, nature, computation)
    ("rev-total", "REV_TOTAL", "Total revenue", 0, "summary", "children"),
    ("rev-subscription", "REV_SUBSCRIPTION", "Subscription / recurring revenue", 1, "revenue", "manual"),
    ("rev-services", "REV_SERVICES", "Services & implementation", 1, "revenue", "manual"),
    ("rev-oneoff", "REV_ONEOFF", "One-off / project revenue", 1, "revenue", "manual"),
    ("cogs-total", "COGS_TOTAL", "Cost of goods sold", 0, "summary", "children"),
    ("cogs-personnel", "COGS_PERSONNEL", "Delivery personnel", 1, "cost", "manual"),
    ("cogs-other", "COGS_OTHER", "Vendors & delivery partners", 1, "cost", "manual"),
    ("gross-profit", "GROSS_PROFIT", "Gross profit", 0, "summary", "cumulative"),
    ("opex-total", "OPEX_TOTAL", "Operating expenses", 0, "summary", "children"),
    ("opex-personnel", "OPEX_PERSONNEL", "Personnel costs", 1, "summary", "children"),
    ("opex-sales", "OPEX_SALES", "Commercial & sales teams", 2, "cost", "manual"),
    ("opex-product", "OPEX_PRODUCT", "Product & engineering", 2, "cost", "manual"),
    ("opex-ga", "OPEX_GA", "G&A / corporate", 2, "cost", "manual"),
    ("opex-rent", "OPEX_RENT", "Rent & infrastructure", 1, "cost", "manual"),
    ("opex-marketing", "OPEX_MARKETING", "Marketing programs", 1, "cost", "manual"),
    ("opex-it", "OPEX_IT", "IT & tooling", 1, "cost", "manual"),
    ("ebitda", "EBITDA", "EBITDA", 0, "summary", "cumulative"),
    ("depreciation", "DEPRECIATION", "Depreciation & amortization", 0, "cost", "manual"),
    ("ebit", "EBIT", "EBIT", 0, "summary", "cumulative"),
    ("interest", "INTEREST_TAXES", "Interest & taxes", 0, "cost", "manual"),
    ("net-income", "NET_PROFIT", "Net profit", 0, "summary", "cumulative"),
]

_DEFAULT_RATIOS = [
    ("gross-margin", "Gross margin", "GROSS_PROFIT", "REV_TOTAL"),
    ("ebitda-margin", "EBITDA margin", "EBITDA", "REV_TOTAL"),
    ("net-margin", "Net margin", "NET_PROFIT", "REV_TOTAL"),
]


def create_default_blueprint() -> Blueprint:
    """Standard P&L skeleton starting at the current month"""
    lines = [
        LineItem(
            id=line_id,
            code=code,
            name=name,
            indent=indent,
            nature=LineNature(nature),
            computation=ComputationMode(computation),
        )
        for line_id, code, name, indent, nature, computation in _DEFAULT_LINES
    ]
    ratios = [
        RatioDefinition(id=ratio_id, label=label, numerator_code=num, denominator_code=den)
        for ratio_id, label, num, den in _DEFAULT_RATIOS
    ]
    return Blueprint(
        start_month=_current_month_key(),
        month_count=DEFAULT_MONTH_COUNT,
        lines=lines,
        fiscal_year=FiscalYearConfig(),
        ratios=ratios,
    )
