"""
Temporal Aggregator Tests (Unit)
================================

WHAT: Roll-up of monthly entries into per-cell values.
WHY: Summing a percentage or averaging a dollar figure silently produces
     plausible but wrong statements.
"""

import logging

import pytest

from dealermetrics.aggregator import (
    GroupKey,
    aggregate_entries,
    average_snapshot,
    collect_groups,
)
from dealermetrics.refs import PlainRef, SubRef
from dealermetrics.schema import CustomRangePeriod, FullYearPeriod, MonthPeriod

D1 = GroupKey("s1", "d1")


class TestMonthPeriod:
    def test_values_pass_through_for_the_month_only(self, entry, simple_catalog):
        entries = [entry("sales", 100.0, "2025-01"), entry("sales", 250.0, "2025-02")]

        snapshot = aggregate_entries(entries, MonthPeriod(month="2025-02"), simple_catalog)

        assert snapshot.cells(D1) == {PlainRef("sales"): 250.0}
        assert not snapshot.is_multi_month

    def test_stored_percentage_kept_for_single_month(self, entry, gmc_catalog):
        snapshot = aggregate_entries([entry("gp_percent", 25.0)], MonthPeriod(month="2025-01"), gmc_catalog)

        assert snapshot.cells(D1)[PlainRef("gp_percent")] == 25.0


class TestMultiMonthPeriods:
    def test_dollars_are_summed(self, entry, simple_catalog):
        entries = [entry("sales", 100.0, f"2025-{m:02d}") for m in range(1, 13)]

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), simple_catalog)

        assert snapshot.cells(D1)[PlainRef("sales")] == 1200.0
        assert snapshot.counts(D1)[PlainRef("sales")] == 12

    def test_custom_range_is_inclusive(self, entry, simple_catalog):
        entries = [entry("sales", 1.0, f"2024-{m:02d}") for m in range(1, 13)]
        period = CustomRangePeriod(start_month="2024-03", end_month="2024-05")

        snapshot = aggregate_entries(entries, period, simple_catalog)

        assert snapshot.cells(D1)[PlainRef("sales")] == 3.0

    def test_percentage_sub_metrics_are_averaged(self, entry, gmc_catalog):
        entries = [
            entry("sub:gp_percent:Labor", 10.0, "2025-01"),
            entry("sub:gp_percent:Labor", 20.0, "2025-02"),
            entry("sub:gp_percent:Labor", 30.0, "2025-03"),
        ]

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), gmc_catalog)

        assert snapshot.cells(D1)[SubRef("gp_percent", "Labor")] == pytest.approx(20.0)

    def test_dollar_sub_metrics_are_summed(self, entry, gmc_catalog):
        entries = [
            entry("sub:gp_net:001:Labor", 10.0, "2025-01"),
            entry("sub:gp_net:002:Labor", 20.0, "2025-02"),
        ]

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), gmc_catalog)

        assert snapshot.cells(D1) == {SubRef("gp_net", "Labor"): 30.0}

    def test_stored_ratios_are_dropped_for_recompute(self, entry, gmc_catalog):
        entries = [entry("gp_percent", 25.0, "2025-01"), entry("gp_percent", 35.0, "2025-02")]

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), gmc_catalog)

        assert PlainRef("gp_percent") not in snapshot.cells(D1)

    def test_months_without_data_do_not_dilute_averages(self, entry, gmc_catalog):
        entries = [
            entry("sub:gp_percent:Labor", 10.0, "2025-01"),
            entry("sub:gp_percent:Labor", None, "2025-02"),
            entry("sub:gp_percent:Labor", 30.0, "2025-03"),
        ]

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), gmc_catalog)

        assert snapshot.cells(D1)[SubRef("gp_percent", "Labor")] == pytest.approx(20.0)


class TestGroupsAndIrregularData:
    def test_group_without_values_is_still_present(self, entry, simple_catalog):
        entries = [entry("sales", None, store_id="s2")]

        snapshot = aggregate_entries(entries, MonthPeriod(month="2025-01"), simple_catalog)

        assert [g.key for g in snapshot.groups] == [GroupKey("s2", "d1")]
        assert snapshot.cells(GroupKey("s2", "d1")) == {}

    def test_group_outside_period_is_still_present(self, entry, simple_catalog):
        entries = [entry("sales", 5.0, "2023-06")]

        snapshot = aggregate_entries(entries, MonthPeriod(month="2025-01"), simple_catalog)

        assert len(snapshot.groups) == 1
        assert snapshot.cells(D1) == {}

    def test_malformed_keys_are_skipped(self, entry, simple_catalog, caplog):
        entries = [entry("sub:broken", 1.0), entry("sales", 2.0)]

        with caplog.at_level(logging.WARNING):
            snapshot = aggregate_entries(entries, MonthPeriod(month="2025-01"), simple_catalog)

        assert snapshot.cells(D1) == {PlainRef("sales"): 2.0}
        assert "[AGGREGATOR]" in caplog.text

    def test_snapshot_is_read_only(self, entry, simple_catalog):
        snapshot = aggregate_entries([entry("sales", 2.0)], MonthPeriod(month="2025-01"), simple_catalog)

        with pytest.raises(TypeError):
            snapshot.cells(D1)[PlainRef("sales")] = 3.0

    def test_collect_groups_takes_first_non_empty_context(self, entry):
        entries = [
            entry("sales", 1.0),
            entry("sales", 1.0, store_name="North", department_name="Service", brand="Ford"),
            entry("sales", 1.0, store_name="Other", brand="Nissan"),
        ]

        (group,) = collect_groups(entries)

        assert group.store_name == "North"
        assert group.department_name == "Service"
        assert group.brand == "Ford"

    def test_resolver_picks_catalog_per_group(self, entry, simple_catalog, gmc_catalog):
        entries = [
            entry("gp_percent", 20.0, "2025-01", store_id="gm"),
            entry("gp_percent", 20.0, "2025-02", store_id="gm"),
            entry("gp_percent", 20.0, "2025-01", store_id="plain"),
            entry("gp_percent", 20.0, "2025-02", store_id="plain"),
        ]

        def resolve(group):
            return gmc_catalog if group.key.store_id == "gm" else simple_catalog

        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), resolve)

        # Unknown to the simple catalog, so treated as a summed dollar cell
        assert snapshot.cells(GroupKey("plain", "d1"))[PlainRef("gp_percent")] == 40.0
        assert PlainRef("gp_percent") not in snapshot.cells(GroupKey("gm", "d1"))


class TestAverageSnapshot:
    def test_fixed_divisor(self, entry, simple_catalog):
        entries = [entry("sales", 100.0, f"2024-{m:02d}") for m in range(1, 13)]
        snapshot = aggregate_entries(entries, FullYearPeriod(year=2024), simple_catalog)

        averaged = average_snapshot(snapshot, simple_catalog, months=12)

        assert averaged.cells(D1)[PlainRef("sales")] == pytest.approx(100.0)

    def test_observed_divisor_uses_months_with_data(self, entry, simple_catalog):
        entries = [entry("sales", 100.0, "2025-01"), entry("sales", 300.0, "2025-02")]
        snapshot = aggregate_entries(entries, FullYearPeriod(year=2025), simple_catalog)

        averaged = average_snapshot(snapshot, simple_catalog)

        assert averaged.cells(D1)[PlainRef("sales")] == pytest.approx(200.0)

    def test_percentages_are_not_divided_again(self, entry, gmc_catalog):
        entries = [entry("sub:gp_percent:Labor", 10.0, "2024-01"), entry("sub:gp_percent:Labor", 30.0, "2024-02")]
        snapshot = aggregate_entries(entries, FullYearPeriod(year=2024), gmc_catalog)

        averaged = average_snapshot(snapshot, gmc_catalog, months=12)

        assert averaged.cells(D1)[SubRef("gp_percent", "Labor")] == pytest.approx(20.0)
