"""
Value Resolution Engine

Resolves every blueprint line to a monthly value record under its
computation mode, given a swappable manual value source:

- manual:     values taken from the source (already sign-adjusted)
- children:   sum of the resolved values of direct children (post-order)
- cumulative: running total, in document order, of manual lines up to and
              including the line's position; aggregates are excluded

The same resolver is run once per source (base P&L, plan overlay, actual
overlay). Results never share mutable state with the source or each other.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from blueprint_schema import LineItem
from financial_math import MonthRecord, ZERO, add_to_record, empty_record, to_amount
from financials_models import ComputationMode

logger = logging.getLogger(__name__)

# {line_id: {YYYY-MM: Decimal}}
ValueMap = Dict[str, MonthRecord]
ManualValueSource = Mapping[str, Mapping[str, object]]


def apply_sign(line: LineItem, amount: Decimal) -> Decimal:
    """Stored magnitude for revenue, its negation for cost"""
    if not amount:
        return ZERO
    return -amount if line.sign_effect < 0 else amount


def build_manual_value_map(lines: List[LineItem], month_keys: List[str]) -> ValueMap:
    """
    Base P&L source: the blueprint's own manual values with the sign applied.

    Revenue keeps its magnitude, cost is negated. This is the only place the
    sign is applied for blueprint values.
    """
    source: ValueMap = {}
    for line in lines:
        if line.computation != ComputationMode.MANUAL:
            continue
        source[line.id] = {
            key: apply_sign(line, to_amount(line.months.get(key)))
            for key in month_keys
        }
    return source


class ValueResolver:
    """
    Memoized resolver over one line list and one month horizon.

    Children always follow their parent in document order, so walking the
    list backwards is a valid post-order and keeps recursion shallow.
    """

    def __init__(self, lines: List[LineItem], month_keys: List[str], children_of: Dict[str, List[str]]):
        self.lines = lines
        self.month_keys = list(month_keys)
        self.children_of = children_of
        self._by_id = {line.id: line for line in lines}

    def resolve(self, manual_source: ManualValueSource) -> ValueMap:
        """Resolve every line against `manual_source`; output is in document order"""
        memo: ValueMap = {}
        cumulative = self._cumulative_lookup(manual_source, memo)

        for line in reversed(self.lines):
            self._resolve_line(line, manual_source, cumulative, memo)

        logger.debug(f"Resolved {len(self.lines)} lines over {len(self.month_keys)} months")
        return {line.id: memo[line.id] for line in self.lines}

    def _manual_record(self, line: LineItem, manual_source: ManualValueSource) -> MonthRecord:
        supplied = manual_source.get(line.id) or {}
        return {key: to_amount(supplied.get(key)) for key in self.month_keys}

    def _cumulative_lookup(self, manual_source: ManualValueSource, memo: ValueMap) -> ValueMap:
        running = empty_record(self.month_keys)
        lookup: ValueMap = {}
        for line in self.lines:
            if line.computation == ComputationMode.MANUAL:
                if line.id not in memo:
                    memo[line.id] = self._manual_record(line, manual_source)
                add_to_record(running, memo[line.id])
            elif line.computation == ComputationMode.CUMULATIVE:
                lookup[line.id] = dict(running)
        return lookup

    def _resolve_line(
        self,
        line: LineItem,
        manual_source: ManualValueSource,
        cumulative: ValueMap,
        memo: ValueMap,
    ) -> MonthRecord:
        if line.id in memo:
            return memo[line.id]

        if line.computation == ComputationMode.MANUAL:
            computed = self._manual_record(line, manual_source)
        elif line.computation == ComputationMode.CHILDREN:
            computed = empty_record(self.month_keys)
            for child_id in self.children_of.get(line.id, []):
                child = self._by_id.get(child_id)
                if child is None:
                    continue
                add_to_record(computed, self._resolve_line(child, manual_source, cumulative, memo))
        else:
            computed = cumulative.get(line.id) or empty_record(self.month_keys)

        memo[line.id] = computed
        return computed


def resolve_values(
    lines: List[LineItem],
    month_keys: List[str],
    children_of: Dict[str, List[str]],
    manual_source: Optional[ManualValueSource] = None,
) -> ValueMap:
    """Convenience wrapper: resolve one source over a horizon"""
    resolver = ValueResolver(lines, month_keys, children_of)
    return resolver.resolve(manual_source or {})
