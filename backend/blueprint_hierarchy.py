"""
Blueprint Hierarchy Resolver

Derives parent/child relationships from the ordered, indent-annotated line
list. The hierarchy is never stored; rebuild it whenever the list changes.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from blueprint_schema import LineItem
from financials_models import ComputationMode


@dataclass
class Hierarchy:
    """Outline nesting of a blueprint"""
    parent_of: Dict[str, Optional[str]] = field(default_factory=dict)
    children_of: Dict[str, List[str]] = field(default_factory=dict)  # insertion order preserved


def build_hierarchy(lines: List[LineItem]) -> Hierarchy:
    """
    One linear pass with a monotonic stack.

    The parent of a line is the nearest preceding line with a strictly
    smaller indent. Skipped indent levels are not clamped.
    """
    hierarchy = Hierarchy()
    stack: List[LineItem] = []

    for line in lines:
        hierarchy.children_of.setdefault(line.id, [])
        while stack and stack[-1].indent >= line.indent:
            stack.pop()
        parent_id = stack[-1].id if stack else None
        hierarchy.parent_of[line.id] = parent_id
        if parent_id is not None:
            hierarchy.children_of[parent_id].append(line.id)
        stack.append(line)

    return hierarchy


def build_next_cumulative_map(lines: List[LineItem]) -> Dict[str, Optional[str]]:
    """For each line, the first cumulative line strictly below it in document order"""
    next_map: Dict[str, Optional[str]] = {}
    next_cumulative: Optional[str] = None
    for line in reversed(lines):
        next_map[line.id] = next_cumulative
        if line.computation == ComputationMode.CUMULATIVE:
            next_cumulative = line.id
    return next_map


def build_tree_parent_map(lines: List[LineItem], hierarchy: Optional[Hierarchy] = None) -> Dict[str, Optional[str]]:
    """
    Parent map for the P&L tree view.

    Starts from the indent hierarchy, then hangs every cumulative subtotal,
    and every otherwise parentless line, under the next cumulative subtotal
    that follows it. The last subtotal (usually net profit) becomes the root.
    """
    hierarchy = hierarchy or build_hierarchy(lines)
    next_cumulative = build_next_cumulative_map(lines)
    parents = dict(hierarchy.parent_of)

    for line in lines:
        fallback = next_cumulative.get(line.id)
        if line.computation == ComputationMode.CUMULATIVE:
            if fallback:
                parents[line.id] = fallback
        elif parents.get(line.id) is None and fallback:
            parents[line.id] = fallback

    return parents
