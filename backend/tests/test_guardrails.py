"""
Guardrail Tests

Structural and link warnings are reported, never raised.
"""

import pytest

from contribution_overlay import build_contribution_overlay
from financials_models import OverlayKind
from guardrails import GuardrailCode, build_quality_report, collect_blueprint_guardrails


@pytest.mark.unit
class TestBlueprintGuardrails:

    def test_clean_blueprint(self, sample_lines):
        assert collect_blueprint_guardrails(sample_lines) == []

    def test_orphan_roll_up_gives_exactly_one_warning(self, make_line):
        lines = [make_line("orphan", computation="children"), make_line("a", months={"2025-01": 1})]
        warnings = collect_blueprint_guardrails(lines)

        assert len(warnings) == 1
        assert warnings[0].code == GuardrailCode.ORPHAN_ROLLUP
        assert warnings[0].line_id == "orphan"

    def test_duplicate_codes(self, make_line):
        lines = [make_line("a", code="X"), make_line("b", code="x"), make_line("c", code="X")]
        warnings = collect_blueprint_guardrails(lines)

        assert len(warnings) == 1
        assert warnings[0].code == GuardrailCode.DUPLICATE_CODE
        assert warnings[0].count == 3
        assert warnings[0].details == ["a", "b", "c"]

    def test_indent_skip_between_adjacent_lines(self, make_line):
        lines = [make_line("a"), make_line("b", indent=2), make_line("c", indent=3), make_line("d")]
        warnings = collect_blueprint_guardrails(lines)

        assert [(w.code, w.line_id) for w in warnings] == [(GuardrailCode.INDENT_SKIP, "b")]

    def test_warnings_are_logged(self, make_line, caplog):
        with caplog.at_level("WARNING", logger="guardrails"):
            collect_blueprint_guardrails([make_line("orphan", computation="children")])
        assert "orphan-rollup" in caplog.text


@pytest.mark.unit
class TestQualityReport:

    def test_overlay_links_are_reported(self, sample_blueprint, make_initiative, month_keys):
        initiatives = [
            make_initiative("i1", [("NOPE", {"2025-01": 1}, None), ("GROSS", {"2025-01": 1}, None)]),
            make_initiative("i2", [("ALSO_NOPE", {"2025-01": 1}, None)]),
        ]
        overlay = build_contribution_overlay(
            initiatives, sample_blueprint.line_by_code(), month_keys, OverlayKind.PLAN
        )
        report = build_quality_report(sample_blueprint.lines, overlay)

        assert report.unlinked_entry_count() == 2
        unlinked = report.by_code(GuardrailCode.UNLINKED_ENTRY)[0]
        assert unlinked.details == ["ALSO_NOPE", "NOPE"]
        assert [w.line_id for w in report.by_code(GuardrailCode.COMPUTED_LINE_LINK)] == ["gross"]

    def test_to_dict_counts(self, make_line):
        report = build_quality_report([
            make_line("o1", computation="children"), make_line("o2", computation="children"),
        ])
        payload = report.to_dict()

        assert payload["clean"] is False
        assert payload["counts"] == {GuardrailCode.ORPHAN_ROLLUP: 2}
        assert payload["unlinked_entries"] == 0
