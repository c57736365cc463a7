"""
Financial Dynamics Engine Tests

End-to-end computation over the sample blueprint: stacks, run rates,
filters, ratios, breakdowns and output hashing.
"""

import json
from decimal import Decimal

import pytest

from dynamics_preferences import DynamicsSettings
from financial_dynamics_engine import (
    ChartMonthStack, ChartSegment, FinancialDynamicsEngine, UnknownBucketError, UnknownLineError,
    compute_horizon_ratios, display_value
)
from financials_models import BaseMode, OverlayKind, SortMode, ViewMode
from fiscal_calendar import ReportingPeriod


@pytest.fixture
def initiatives(make_initiative):
    return [
        make_initiative("i1", [("REV_A", {"2025-01": 10}, {"2025-01": 7})], name="Pricing"),
        make_initiative("i2", [("COST_A", {"2025-02": 5}, None)], name="Vendor consolidation"),
    ]


def _series_by_id(series):
    return {entry.line.id: entry for entry in series}


@pytest.mark.unit
class TestDisplay:

    def test_display_value(self, make_line):
        cost = make_line("c", nature="cost")
        revenue = make_line("r")

        assert display_value(cost, Decimal("-30")) == Decimal("30")
        assert display_value(revenue, Decimal("-30")) == Decimal("-30")
        assert str(display_value(cost, Decimal("0"))) == "0"

    def test_stack_splits_by_sign(self):
        stack = ChartMonthStack.from_segments("2025-01", [
            ChartSegment("base", "Base P&L", Decimal("100")),
            ChartSegment("initiatives", "Plan initiatives", Decimal("-20")),
        ])

        assert stack.positive_total == Decimal("100")
        assert stack.negative_total == Decimal("20")
        assert stack.net == Decimal("80")


@pytest.mark.unit
class TestLineSeries:

    def test_timeline_covers_observed_months(self, sample_blueprint, initiatives):
        engine = FinancialDynamicsEngine(sample_blueprint, initiatives)
        output = engine.compute()

        assert output.month_keys == ["2025-01", "2025-02"]
        assert [b.key for b in output.buckets] == ["2025-01", "2025-02"]
        assert output.initiative_count == 2

    def test_plan_stack_has_base_and_initiative_segments(self, sample_blueprint, initiatives):
        series = _series_by_id(FinancialDynamicsEngine(sample_blueprint, initiatives).compute_line_series())
        january = series["rev-a"].plan[0]

        assert [(s.kind, s.value) for s in january.positive_segments] == [
            ("base", Decimal("100")), ("initiatives", Decimal("10"))
        ]
        assert january.positive_total == Decimal("110")

    def test_run_rates_and_delta(self, sample_blueprint, initiatives):
        series = _series_by_id(FinancialDynamicsEngine(sample_blueprint, initiatives).compute_line_series())

        revenue = series["rev-a"]
        assert revenue.plan_run_rate == Decimal("220")
        assert revenue.actual_run_rate == Decimal("217")
        assert revenue.delta == Decimal("-3")

        cost = series["cost-a"]
        assert cost.plan_run_rate == Decimal("75")
        assert cost.actual_run_rate == Decimal("70")
        assert cost.delta == Decimal("5")

    def test_initiatives_roll_into_aggregates(self, sample_blueprint, initiatives):
        engine = FinancialDynamicsEngine(sample_blueprint, initiatives)
        engine.compute()

        assert engine.values.plan["gross"] == {"2025-01": Decimal("10"), "2025-02": Decimal("-5")}
        assert engine.values.base["gross"] == {"2025-01": Decimal("120"), "2025-02": Decimal("70")}

    def test_zero_base_mode_charts_initiatives_only(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(base_mode=BaseMode.ZERO)
        series = _series_by_id(
            FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute_line_series()
        )

        assert [s.kind for s in series["rev-a"].plan[0].positive_segments] == ["initiatives"]
        assert series["rev-a"].plan_run_rate == Decimal("10")
        assert series["tax"].max_abs == Decimal("0")

    def test_quarter_view(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(view_mode=ViewMode.QUARTERS)
        series = _series_by_id(
            FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute_line_series()
        )

        assert len(series["rev-a"].plan) == 1
        assert series["rev-a"].plan[0].positive_total == Decimal("220")

    def test_stage_filter_excludes_initiatives(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(stage_keys=["l3"])
        output = FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute()

        assert output.initiative_count == 0
        assert output.values.plan["rev-a"] == {"2025-01": Decimal("0"), "2025-02": Decimal("0")}

    def test_reporting_period_extends_timeline(self, sample_blueprint, initiatives):
        engine = FinancialDynamicsEngine(
            sample_blueprint, initiatives, period=ReportingPeriod(period_month=4, period_year=2025)
        )
        output = engine.compute()

        assert output.month_keys[-1] == "2025-04"
        assert output.values.base["rev-a"]["2025-04"] == Decimal("0")


@pytest.mark.unit
class TestFilterAndSort:

    def test_query_matches_name_or_code(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(query="cost")
        output = FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute()
        assert {s.line.id for s in output.lines} == {"cost", "cost-a"}

    def test_hide_zeros(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(base_mode=BaseMode.ZERO, hide_zeros=True)
        output = FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute()
        ids = {s.line.id for s in output.lines}

        assert "tax" not in ids
        assert "rev-b" not in ids
        assert {"rev-a", "cost-a", "gross", "net"} <= ids

    def test_sort_by_name(self, sample_blueprint, initiatives):
        settings = DynamicsSettings(sort_mode=SortMode.NAME)
        output = FinancialDynamicsEngine(sample_blueprint, initiatives, settings).compute()
        names = [s.line.name.lower() for s in output.lines]
        assert names == sorted(names)

    def test_sort_by_impact(self, sample_blueprint, initiatives):
        output = FinancialDynamicsEngine(sample_blueprint, initiatives).compute()
        impacts = [abs(s.actual_run_rate) for s in output.lines]
        assert impacts == sorted(impacts, reverse=True)


@pytest.mark.unit
class TestKpiSeries:

    def test_baseline_and_plan_segments(self, sample_blueprint, make_initiative):
        initiative = make_initiative("i1", [("REV_A", {"2025-01": 1}, None)], kpis=[{
            "id": "k", "name": "Customers", "unit": "count", "baseline": 10,
            "distribution": {"2025-01": 2},
        }])
        kpis = FinancialDynamicsEngine(sample_blueprint, [initiative]).compute_kpi_series()

        assert len(kpis) == 1
        kpi = kpis[0]
        assert [(s.kind, s.value) for s in kpi.plan[0].positive_segments] == [
            ("base", Decimal("10")), ("other", Decimal("2"))
        ]
        assert kpi.plan_run_rate == Decimal("22")
        assert kpi.actual_run_rate == Decimal("20")


@pytest.mark.unit
class TestRatios:

    def test_base_and_plan_ratio_sets(self, sample_blueprint, initiatives):
        output = FinancialDynamicsEngine(sample_blueprint, initiatives).compute()

        base_gm = output.ratios_base[0]
        plan_gm = output.ratios_with_plan[0]
        assert base_gm.last_month == Decimal("70") / Decimal("110")
        assert plan_gm.last_month == Decimal("65") / Decimal("110")

    def test_horizon_ratios(self, sample_blueprint):
        summaries = compute_horizon_ratios(sample_blueprint)

        assert summaries[0].last_month is None
        assert summaries[0].trailing_12 == Decimal("190") / Decimal("260")


@pytest.mark.unit
class TestBreakdown:

    def test_cost_breakdown_reports_magnitudes(self, sample_blueprint, initiatives):
        engine = FinancialDynamicsEngine(sample_blueprint, initiatives)
        view = engine.breakdown("cost-a", "2025-02", OverlayKind.PLAN)

        assert view.result.total == Decimal("5")
        assert [(r.initiative_id, r.name, r.value, r.share) for r in view.result.rows] == [
            ("i2", "Vendor consolidation", Decimal("5"), Decimal("100.0"))
        ]
        assert view.to_dict()["mode"] == "plan"
        assert view.bucket_label == "Feb 2025"

    def test_actual_breakdown(self, sample_blueprint, initiatives):
        view = FinancialDynamicsEngine(sample_blueprint, initiatives).breakdown(
            "rev-a", "2025-01", OverlayKind.ACTUAL
        )
        assert view.result.total == Decimal("7")

    def test_unknown_line_and_bucket(self, sample_blueprint, initiatives):
        engine = FinancialDynamicsEngine(sample_blueprint, initiatives)

        with pytest.raises(UnknownLineError):
            engine.breakdown("missing", "2025-01", OverlayKind.PLAN)
        with pytest.raises(UnknownBucketError):
            engine.breakdown("rev-a", "2030-01", OverlayKind.PLAN)


@pytest.mark.unit
class TestOutput:

    def test_output_is_json_serializable(self, sample_blueprint, initiatives):
        payload = FinancialDynamicsEngine(sample_blueprint, initiatives).compute().to_dict()

        json.dumps(payload)
        assert payload["ratios"].keys() == {"base_plus_plan", "base"}
        assert payload["quality"]["clean"] is True

    def test_same_inputs_same_hash(self, sample_blueprint, initiatives):
        first = FinancialDynamicsEngine(sample_blueprint, initiatives).compute()
        second = FinancialDynamicsEngine(sample_blueprint, initiatives).compute()

        assert first.output_hash == second.output_hash
        assert first.input_fingerprint == second.input_fingerprint

    def test_different_settings_change_fingerprint(self, sample_blueprint, initiatives):
        first = FinancialDynamicsEngine(sample_blueprint, initiatives).input_fingerprint()
        second = FinancialDynamicsEngine(
            sample_blueprint, initiatives, DynamicsSettings(view_mode=ViewMode.FISCAL)
        ).input_fingerprint()
        assert first != second

    def test_compute_does_not_mutate_inputs(self, sample_blueprint, initiatives):
        before = sample_blueprint.to_dict()
        FinancialDynamicsEngine(sample_blueprint, initiatives).compute()
        assert sample_blueprint.to_dict() == before
