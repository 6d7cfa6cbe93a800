"""
Window Pipeline
===============

Runs the pure stages for one time window:

    aggregate -> [combine fixed] -> [average] -> backfill -> derive

Used by the engine for the current period and by the comparison resolver
for data-driven baselines, so both sides of a variance are computed by
exactly the same rules.
"""

from contextlib import nullcontext
from typing import Iterable, Optional, Union

from dealermetrics.aggregator import CatalogResolver, Period, Snapshot, aggregate_entries, average_snapshot
from dealermetrics.backfill import backfill_parents
from dealermetrics.catalog import MetricCatalog
from dealermetrics.combine import combine_fixed_departments
from dealermetrics.formulas import derive_snapshot
from dealermetrics.schema import RawEntry

# Averaging divisor meaning "each cell's own count of months with data"
OBSERVED_MONTHS = "observed"


def evaluate_window(
    entries: Iterable[RawEntry],
    period: Period,
    catalog: Union[MetricCatalog, CatalogResolver],
    average_over: Union[int, str, None] = None,
    combine_fixed: bool = False,
    context=None,
) -> Snapshot:
    """
    Compute every metric for one window.

    PARAMETERS:
        entries: Raw entries (filtered to the period here)
        period: Window to aggregate
        catalog: One catalog, or a per-group resolver
        average_over: None for totals, a month count for a fixed divisor,
                      or OBSERVED_MONTHS for per-cell month counts
        combine_fixed: Merge Parts/Service into Fixed Combined
        context: Optional ComputationContext; stages are timed when given

    RETURNS:
        Derived snapshot
    """
    def stage(name: str):
        return context.track_stage(name) if context is not None else nullcontext()

    with stage("aggregate"):
        snapshot = aggregate_entries(entries, period, catalog)
        if combine_fixed:
            snapshot = combine_fixed_departments(snapshot, catalog)
        if average_over is not None:
            months: Optional[int] = None if average_over == OBSERVED_MONTHS else int(average_over)
            snapshot = average_snapshot(snapshot, catalog, months)

    with stage("backfill"):
        snapshot = backfill_parents(snapshot, catalog)

    with stage("derive"):
        snapshot = derive_snapshot(snapshot, catalog)

    return snapshot
