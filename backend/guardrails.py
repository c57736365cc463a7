"""
Data-Quality Guardrails

Inconsistent blueprint structure or initiative links never abort a
computation. They are collected here as warnings for the quality surface.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from blueprint_hierarchy import Hierarchy, build_hierarchy
from blueprint_schema import LineItem
from contribution_overlay import ContributionOverlay
from financials_models import ComputationMode

logger = logging.getLogger(__name__)


class GuardrailCode:
    ORPHAN_ROLLUP = "orphan-rollup"
    DUPLICATE_CODE = "duplicate-code"
    INDENT_SKIP = "indent-skip"
    UNLINKED_ENTRY = "unlinked-entry"
    COMPUTED_LINE_LINK = "computed-line-link"


@dataclass
class GuardrailWarning:
    code: str
    message: str
    severity: str = "warning"
    line_id: Optional[str] = None
    line_code: Optional[str] = None
    count: int = 1
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "line_id": self.line_id,
            "line_code": self.line_code,
            "count": self.count,
            "details": list(self.details),
        }


@dataclass
class QualityReport:
    warnings: List[GuardrailWarning] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings

    def by_code(self, code: str) -> List[GuardrailWarning]:
        return [w for w in self.warnings if w.code == code]

    def unlinked_entry_count(self) -> int:
        return sum(w.count for w in self.by_code(GuardrailCode.UNLINKED_ENTRY))

    def extend(self, warnings: List[GuardrailWarning]) -> None:
        self.warnings.extend(warnings)

    def to_dict(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for warning in self.warnings:
            counts[warning.code] = counts.get(warning.code, 0) + 1
        return {
            "clean": self.is_clean,
            "counts": counts,
            "unlinked_entries": self.unlinked_entry_count(),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _emit(warnings: List[GuardrailWarning], warning: GuardrailWarning) -> None:
    logger.warning(f"Guardrail {warning.code}: {warning.message}")
    warnings.append(warning)


def collect_blueprint_guardrails(lines: List[LineItem], hierarchy: Optional[Hierarchy] = None) -> List[GuardrailWarning]:
    """Structural warnings: orphan roll-ups, duplicate codes, skipped indent levels"""
    hierarchy = hierarchy or build_hierarchy(lines)
    warnings: List[GuardrailWarning] = []

    for line in lines:
        if line.computation == ComputationMode.CHILDREN and not hierarchy.children_of.get(line.id):
            _emit(warnings, GuardrailWarning(
                code=GuardrailCode.ORPHAN_ROLLUP,
                message=f"Roll-up line '{line.name}' has no children and resolves to zero",
                line_id=line.id,
                line_code=line.code,
            ))

    seen: Dict[str, List[LineItem]] = {}
    for line in lines:
        code = line.code.strip().upper()
        if code:
            seen.setdefault(code, []).append(line)
    for code, matches in seen.items():
        if len(matches) > 1:
            _emit(warnings, GuardrailWarning(
                code=GuardrailCode.DUPLICATE_CODE,
                message=f"Code {code} is used by {len(matches)} lines; initiative links resolve to the first",
                line_id=matches[0].id,
                line_code=code,
                count=len(matches),
                details=[m.id for m in matches],
            ))

    for previous, line in zip(lines, lines[1:]):
        if line.indent - previous.indent > 1:
            _emit(warnings, GuardrailWarning(
                code=GuardrailCode.INDENT_SKIP,
                message=f"Line '{line.name}' is indented {line.indent - previous.indent} levels below '{previous.name}'",
                line_id=line.id,
                line_code=line.code,
            ))

    return warnings


def collect_overlay_guardrails(overlay: ContributionOverlay, lines: List[LineItem]) -> List[GuardrailWarning]:
    """Link warnings for one overlay: unlinked entries and links to computed lines"""
    warnings: List[GuardrailWarning] = []

    if overlay.unlinked:
        codes = sorted({entry.line_code or "" for entry in overlay.unlinked})
        _emit(warnings, GuardrailWarning(
            code=GuardrailCode.UNLINKED_ENTRY,
            message=f"{len(overlay.unlinked)} initiative financial entries do not match any line code",
            count=len(overlay.unlinked),
            details=codes,
        ))

    by_id = {line.id: line for line in lines}
    for line_id in sorted(overlay.computed_line_links):
        line = by_id.get(line_id)
        if line is None:
            continue
        _emit(warnings, GuardrailWarning(
            code=GuardrailCode.COMPUTED_LINE_LINK,
            message=f"Initiative entries link to computed line '{line.name}'; they are attributed but not resolved",
            line_id=line.id,
            line_code=line.code,
        ))

    return warnings


def build_quality_report(lines: List[LineItem], overlay: Optional[ContributionOverlay] = None,
                         hierarchy: Optional[Hierarchy] = None) -> QualityReport:
    report = QualityReport()
    report.extend(collect_blueprint_guardrails(lines, hierarchy))
    if overlay is not None:
        report.extend(collect_overlay_guardrails(overlay, lines))
    return report
