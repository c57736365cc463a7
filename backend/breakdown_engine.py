"""
Breakdown / Attribution Engine

Ranks the initiatives contributing to one line within one chart bucket and
summarizes them as top-N rows plus an "Others" row. Shares are one-decimal
percentages of the total absolute contribution; the Others share is derived
from 100 so rounding error does not compound.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional

from contribution_overlay import AttributionMap, attributed_total
from financial_math import ZERO
from financials_config import BREAKDOWN_TOP_N

HUNDRED = Decimal("100")
OTHERS_LABEL = "Others"


@dataclass
class BreakdownRow:
    initiative_id: Optional[str]  # None for the Others row
    name: str
    value: Decimal
    share: Decimal  # percent, one decimal

    @property
    def is_others(self) -> bool:
        return self.initiative_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initiative_id": self.initiative_id,
            "name": self.name,
            "value": str(self.value),
            "share": str(self.share),
        }


@dataclass
class BreakdownResult:
    total: Decimal = ZERO
    rows: List[BreakdownRow] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": str(self.total),
            "rows": [row.to_dict() for row in self.rows],
        }


def _round_share(value: Decimal) -> Decimal:
    """round(value * 10) / 10, half up"""
    return ((value * 10).quantize(Decimal("1"), rounding=ROUND_HALF_UP) / 10).quantize(Decimal("0.1"))


def rank_contributions(
    totals: Mapping[str, Decimal],
    names: Optional[Mapping[str, str]] = None,
    top_n: int = BREAKDOWN_TOP_N,
) -> BreakdownResult:
    """
    Top-N breakdown of per-initiative totals.

    Zero contributors are dropped. Ties on absolute value are ordered by
    initiative id so the result does not depend on input order.
    """
    names = names or {}
    entries = sorted(
        ((initiative_id, value) for initiative_id, value in totals.items() if value != ZERO),
        key=lambda item: (-abs(item[1]), item[0]),
    )
    total_abs = sum((abs(value) for _, value in entries), ZERO)
    if total_abs == ZERO:
        return BreakdownResult()

    rows = [
        BreakdownRow(
            initiative_id=initiative_id,
            name=names.get(initiative_id) or "Initiative",
            value=value,
            share=_round_share(abs(value) / total_abs * HUNDRED),
        )
        for initiative_id, value in entries[:top_n]
    ]

    remainder = entries[top_n:]
    if remainder:
        used_share = sum((row.share for row in rows), ZERO)
        rows.append(BreakdownRow(
            initiative_id=None,
            name=OTHERS_LABEL,
            value=sum((value for _, value in remainder), ZERO),
            share=max(Decimal("0.0"), _round_share(HUNDRED - used_share)),
        ))

    return BreakdownResult(total=sum((value for _, value in entries), ZERO), rows=rows)


def build_breakdown(
    attribution: AttributionMap,
    line_id: str,
    bucket_month_keys: Iterable[str],
    names: Optional[Mapping[str, str]] = None,
    top_n: int = BREAKDOWN_TOP_N,
) -> BreakdownResult:
    """Breakdown for one (line, bucket) pair of an overlay's attribution"""
    totals = attributed_total(attribution, line_id, bucket_month_keys)
    return rank_contributions(totals, names, top_n)
