"""
Ratio Engine

Evaluates blueprint ratio definitions (numerator/denominator line codes)
over three windows: last month, trailing twelve months and the fiscal year
of the anchor month. An undefined ratio is reported as None ("unavailable")
rather than raised.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from blueprint_schema import FiscalYearConfig, LineItem, RatioDefinition
from financial_math import ZERO, MonthRecord, parse_month_key, sum_for_period
from financials_config import RUN_RATE_WINDOW
from financials_models import RatioFormat
from fiscal_calendar import ReportingPeriod, fiscal_year_month_keys, fiscal_year_of
from value_resolution import ValueMap

logger = logging.getLogger(__name__)

TRAILING_WINDOW = 12
UNAVAILABLE = "n/a"


@dataclass
class RatioWindows:
    """Month keys covered by each ratio window"""
    anchor: Optional[str]
    last_month: List[str]
    trailing_12: List[str]
    fiscal_year: List[str]
    fiscal_year_label: Optional[int] = None


@dataclass
class RatioSummary:
    """One ratio evaluated over every window"""
    ratio: RatioDefinition
    last_month: Optional[Decimal]
    trailing_12: Optional[Decimal]
    fiscal_year: Optional[Decimal]
    fiscal_year_label: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        def window(value: Optional[Decimal]) -> Dict[str, Any]:
            return {
                "value": str(value) if value is not None else None,
                "display": format_ratio_value(value, self.ratio),
                "available": value is not None,
            }

        return {
            "ratio": self.ratio.to_dict(),
            "last_month": window(self.last_month),
            "trailing_12": window(self.trailing_12),
            "fiscal_year": window(self.fiscal_year),
            "fiscal_year_label": self.fiscal_year_label,
        }


# =============================================================================
# WINDOWS
# =============================================================================

def resolve_windows(
    month_keys: List[str],
    fiscal_config: Optional[FiscalYearConfig] = None,
    period: Optional[ReportingPeriod] = None,
) -> RatioWindows:
    """
    Anchor on the reporting period when it lies inside the horizon, else on
    the last month of the horizon.
    """
    if not month_keys:
        return RatioWindows(anchor=None, last_month=[], trailing_12=[], fiscal_year=[])

    anchor_index = len(month_keys) - 1
    if period is not None and period.month_key in month_keys:
        anchor_index = month_keys.index(period.month_key)
    anchor = month_keys[anchor_index]

    year, month = parse_month_key(anchor)
    fiscal_year = fiscal_year_of(year, month, fiscal_config)

    return RatioWindows(
        anchor=anchor,
        last_month=[anchor],
        trailing_12=month_keys[max(0, anchor_index - TRAILING_WINDOW + 1):anchor_index + 1],
        fiscal_year=fiscal_year_month_keys(month_keys, fiscal_year, fiscal_config),
        fiscal_year_label=fiscal_year,
    )


def evaluate_ratio(
    numerator: Optional[MonthRecord],
    denominator: Optional[MonthRecord],
    window: List[str],
) -> Optional[Decimal]:
    if numerator is None or denominator is None or not window:
        return None
    denominator_total = sum_for_period(denominator, window)
    if denominator_total == ZERO:
        return None
    return sum_for_period(numerator, window) / denominator_total


def compute_ratio_summaries(
    ratios: List[RatioDefinition],
    values: ValueMap,
    line_by_code: Dict[str, LineItem],
    month_keys: List[str],
    fiscal_config: Optional[FiscalYearConfig] = None,
    period: Optional[ReportingPeriod] = None,
) -> List[RatioSummary]:
    """Evaluate every ratio; a missing code only blanks that ratio"""
    windows = resolve_windows(month_keys, fiscal_config, period)
    summaries = []

    for ratio in ratios:
        numerator_line = line_by_code.get(ratio.numerator_code)
        denominator_line = line_by_code.get(ratio.denominator_code)
        if numerator_line is None or denominator_line is None:
            logger.debug(f"Ratio {ratio.id} references an unknown code; reported as unavailable")
        numerator = values.get(numerator_line.id) if numerator_line else None
        denominator = values.get(denominator_line.id) if denominator_line else None

        summaries.append(RatioSummary(
            ratio=ratio,
            last_month=evaluate_ratio(numerator, denominator, windows.last_month),
            trailing_12=evaluate_ratio(numerator, denominator, windows.trailing_12),
            fiscal_year=evaluate_ratio(numerator, denominator, windows.fiscal_year),
            fiscal_year_label=windows.fiscal_year_label,
        ))

    return summaries


def format_ratio_value(value: Optional[Decimal], ratio: RatioDefinition) -> str:
    """Presentation only: percentage as x100 with "%", multiple with "x" """
    if value is None:
        return UNAVAILABLE
    quantum = Decimal(1).scaleb(-ratio.precision)
    if ratio.format == RatioFormat.MULTIPLE:
        return f"{value.quantize(quantum, rounding=ROUND_HALF_UP)}x"
    return f"{(value * 100).quantize(quantum, rounding=ROUND_HALF_UP)}%"


# =============================================================================
# RUN RATE
# =============================================================================

def calculate_run_rate(month_keys: List[str], record: Optional[MonthRecord],
                       window: int = RUN_RATE_WINDOW) -> Decimal:
    """Sum of the trailing `window` months, or of the whole horizon when shorter"""
    if not month_keys or window <= 0:
        return ZERO
    return sum_for_period(record, month_keys[-window:])
