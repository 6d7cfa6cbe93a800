"""
Comparison Resolver Tests (Unit)
================================

WHAT: Baselines for every comparison mode, and variance sign handling.
WHY: A flipped sign turns an expense saving into a red badge; a wrong
     averaging divisor makes every prior-year comparison look great.
"""

import pytest
from pydantic import ValidationError

from dealermetrics.comparison import build_baselines, compute_variance, target_baselines
from dealermetrics.model import TargetDirection
from dealermetrics.refs import PlainRef, SubRef
from dealermetrics.schema import ComparisonMode, ComputeRequest, TargetEntry


def month_request(month="2025-03", **kwargs):
    return ComputeRequest(period={"type": "month", "month": month}, **kwargs)


class TestComputeVariance:
    def test_above_direction(self):
        assert compute_variance(120.0, 100.0) == pytest.approx(20.0)

    def test_below_direction_flips_sign(self):
        """80 against 100 is -20% raw, an improvement when lower is better."""
        assert compute_variance(80.0, 100.0, TargetDirection.BELOW) == pytest.approx(20.0)
        assert compute_variance(80.0, 100.0, TargetDirection.ABOVE) == pytest.approx(-20.0)

    def test_negative_baseline_uses_absolute_value(self):
        assert compute_variance(-50.0, -100.0) == pytest.approx(50.0)

    @pytest.mark.parametrize("current,baseline", [(10.0, 0.0), (None, 100.0), (10.0, None)])
    def test_undefined_variance_is_none(self, current, baseline):
        assert compute_variance(current, baseline) is None


class TestTargetBaselines:
    def test_filtered_by_quarter_and_year_of_reference_month(self):
        targets = [
            TargetEntry(department_id="d1", metric_name="sales", quarter=2, year=2025, target_value=500.0),
            TargetEntry(department_id="d1", metric_name="cost", quarter=1, year=2025, target_value=1.0),
            TargetEntry(department_id="d1", metric_name="investment", quarter=2, year=2024, target_value=1.0),
        ]

        baselines = target_baselines(targets, "2025-05")

        assert list(baselines) == [("d1", PlainRef("sales"))]
        assert baselines[("d1", PlainRef("sales"))].value == 500.0

    def test_target_direction_is_carried(self):
        targets = [
            TargetEntry(
                department_id="d1", metric_name="cost", quarter=1, year=2025,
                target_value=80.0, target_direction=TargetDirection.BELOW,
            ),
        ]

        baseline = target_baselines(targets, "2025-01")[("d1", PlainRef("cost"))]

        assert baseline.direction == TargetDirection.BELOW

    def test_sub_metric_targets(self):
        targets = [
            TargetEntry(department_id="d1", metric_name="sub:sales_expense:004:Ads", quarter=1, year=2025, target_value=9.0),
        ]

        baselines = target_baselines(targets, "2025-02")

        assert baselines[("d1", SubRef("sales_expense", "Ads"))].value == 9.0

    def test_malformed_target_keys_are_skipped(self):
        targets = [TargetEntry(department_id="d1", metric_name="sub:x", quarter=1, year=2025, target_value=1.0)]

        assert target_baselines(targets, "2025-01") == {}

    def test_full_year_uses_december(self, simple_catalog):
        targets = [TargetEntry(department_id="d1", metric_name="sales", quarter=4, year=2025, target_value=3.0)]
        request = ComputeRequest(period={"type": "full_year", "year": 2025}, comparison_mode="targets", targets=targets)

        assert build_baselines(request, simple_catalog)[("d1", PlainRef("sales"))].value == 3.0


class TestDataBaselines:
    def test_none_mode_has_no_baselines(self, simple_catalog):
        assert build_baselines(month_request(), simple_catalog) == {}

    def test_year_over_year_shifts_months_back(self, entry, simple_catalog):
        request = month_request(
            comparison_mode=ComparisonMode.YEAR_OVER_YEAR,
            comparison_entries=[
                entry("sales", 800.0, "2024-03"),
                entry("sales", 900.0, "2024-04"),
                entry("cost", 300.0, "2024-03"),
            ],
        )

        baselines = build_baselines(request, simple_catalog)

        assert baselines[("d1", PlainRef("sales"))].value == 800.0
        assert baselines[("d1", PlainRef("gross_profit"))].value == 500.0
        assert baselines[("d1", PlainRef("sales"))].direction is None

    def test_year_over_year_full_year(self, entry, simple_catalog):
        prior = [entry("sales", 10.0, f"2024-{m:02d}") for m in range(1, 13)]
        request = ComputeRequest(
            period={"type": "full_year", "year": 2025},
            comparison_mode="year_over_year",
            comparison_entries=prior,
        )

        assert build_baselines(request, simple_catalog)[("d1", PlainRef("sales"))].value == 120.0

    def test_prev_year_avg_divides_by_twelve(self, entry, simple_catalog):
        prior = [entry("sales", 100.0, f"2024-{m:02d}") for m in range(1, 13)]
        prior += [entry("cost", 600.0, "2024-01")]

        baselines = build_baselines(
            month_request(comparison_mode="prev_year_avg", comparison_entries=prior), simple_catalog
        )

        assert baselines[("d1", PlainRef("sales"))].value == pytest.approx(100.0)
        assert baselines[("d1", PlainRef("cost"))].value == pytest.approx(50.0)
        # Derived from averaged inputs
        assert baselines[("d1", PlainRef("gross_profit"))].value == pytest.approx(50.0)

    def test_prev_year_avg_averages_percentage_items_by_months_with_data(self, entry, gmc_catalog):
        prior = [
            entry("sub:gp_percent:Unapplied", 10.0, "2024-01"),
            entry("sub:gp_percent:Unapplied", 30.0, "2024-07"),
        ]

        baselines = build_baselines(
            month_request(comparison_mode="prev_year_avg", comparison_entries=prior), gmc_catalog
        )

        assert baselines[("d1", SubRef("gp_percent", "Unapplied"))].value == pytest.approx(20.0)

    def test_prev_year_quarter(self, entry, simple_catalog):
        prior = [entry("sales", 300.0, m) for m in ("2024-04", "2024-05", "2024-06")]
        prior += [entry("sales", 999.0, "2024-01")]
        request = month_request(
            comparison_mode="prev_year_quarter", comparison_quarter=2, comparison_entries=prior
        )

        assert build_baselines(request, simple_catalog)[("d1", PlainRef("sales"))].value == pytest.approx(300.0)

    def test_prev_year_quarter_requires_quarter(self):
        with pytest.raises(ValidationError):
            month_request(comparison_mode="prev_year_quarter")

    def test_current_year_avg_counts_only_months_with_data(self, entry, simple_catalog):
        current_year = [entry("sales", 100.0, "2025-01"), entry("sales", 300.0, "2025-02")]
        current_year += [entry("sales", 5000.0, "2024-12")]

        baselines = build_baselines(
            month_request(comparison_mode="current_year_avg", comparison_entries=current_year), simple_catalog
        )

        assert baselines[("d1", PlainRef("sales"))].value == pytest.approx(200.0)
