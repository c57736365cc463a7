"""
Financial Tree View

Per-year tree of the P&L rooted at the net-profit subtotal. Each node
carries the base value, the initiative plan value and their total for the
selected calendar year.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Set

from blueprint_hierarchy import build_hierarchy, build_tree_parent_map
from blueprint_schema import Blueprint, LineItem
from contribution_overlay import build_contribution_overlay, filter_initiatives
from financial_math import ZERO, build_month_horizon, parse_month_key
from financials_models import ComputationMode, INITIATIVE_STAGE_KEYS, OverlayKind
from fiscal_calendar import calendar_year_totals, collect_observed_month_keys
from initiative_schema import Initiative
from value_resolution import ValueResolver, build_manual_value_map

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    line: LineItem
    base_value: Decimal = ZERO
    initiative_value: Decimal = ZERO
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return self.base_value + self.initiative_value

    def to_dict(self) -> Dict:
        return {
            "line_id": self.line.id,
            "code": self.line.code,
            "name": self.line.name,
            "computation": self.line.computation.value,
            "base_value": str(self.base_value),
            "initiative_value": str(self.initiative_value),
            "total_value": str(self.total_value),
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class FinancialTree:
    year: int
    available_years: List[int]
    root: Optional[TreeNode]

    def to_dict(self) -> Dict:
        return {
            "year": self.year,
            "available_years": list(self.available_years),
            "root": self.root.to_dict() if self.root else None,
        }


def select_year(available_years: List[int], requested: Optional[int] = None,
                today: Optional[date] = None) -> int:
    """Requested year, else the first available year from now on, else the first one"""
    if requested is not None:
        return requested
    current_year = (today or date.today()).year
    for year in available_years:
        if year >= current_year:
            return year
    return available_years[0] if available_years else current_year


def build_financial_tree(
    blueprint: Blueprint,
    initiatives: List[Initiative],
    year: Optional[int] = None,
    stage_keys: Optional[List[str]] = None,
) -> FinancialTree:
    """
    Assemble the tree for one calendar year.

    Months come from the blueprint's entered values, or its horizon when it
    has none. Initiative values come from the plan overlay; entries linked
    to computed lines do not contribute. An empty stage filter means all.
    """
    lines = blueprint.lines
    month_keys = collect_observed_month_keys(blueprint, [])
    if not month_keys:
        month_keys = build_month_horizon(blueprint.start_month, blueprint.month_count)
    available_years = sorted({parse_month_key(key)[0] for key in month_keys})
    selected_year = select_year(available_years, year)

    hierarchy = build_hierarchy(lines)
    resolver = ValueResolver(lines, month_keys, hierarchy.children_of)
    base = resolver.resolve(build_manual_value_map(lines, month_keys))

    selected = filter_initiatives(initiatives, stage_keys or INITIATIVE_STAGE_KEYS, None)
    overlay = build_contribution_overlay(selected, blueprint.line_by_code(), month_keys, OverlayKind.PLAN)
    plan = resolver.resolve(overlay.aggregate)

    nodes = {
        line.id: TreeNode(
            line=line,
            base_value=calendar_year_totals(base.get(line.id)).get(selected_year, ZERO),
            initiative_value=calendar_year_totals(plan.get(line.id)).get(selected_year, ZERO),
        )
        for line in lines
    }

    parents = build_tree_parent_map(lines, hierarchy)
    children_of: Dict[str, List[str]] = {line.id: [] for line in lines}
    for line in lines:
        parent_id = parents.get(line.id)
        if parent_id in children_of:
            children_of[parent_id].append(line.id)

    roots = [line for line in lines if not parents.get(line.id)]
    root_line = next(
        (line for line in roots
         if line.computation == ComputationMode.CUMULATIVE and "NET" in line.code.upper()),
        roots[0] if roots else None,
    )
    if root_line is None:
        logger.warning("Financial tree has no root line")
        return FinancialTree(year=selected_year, available_years=available_years, root=None)

    visited: Set[str] = set()

    def attach(line_id: str) -> TreeNode:
        visited.add(line_id)
        node = nodes[line_id]
        node.children = [attach(child_id) for child_id in children_of[line_id] if child_id not in visited]
        return node

    return FinancialTree(year=selected_year, available_years=available_years, root=attach(root_line.id))
