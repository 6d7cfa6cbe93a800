"""
Comparison Resolver
===================

Builds the baseline each current value is measured against, and the
signed variance between them.

WHY THIS FILE EXISTS
--------------------
Every comparison page answers "compared to what?" differently:

    targets            stored quarterly targets (quarter/year of the period's
                       reference month), with their own direction
    year_over_year     the same months one year earlier
    prev_year_avg      an average month of the previous calendar year (/12)
    prev_year_quarter  an average month of one previous-year quarter (/3)
    current_year_avg   an average month of the period's year, over the
                       months that actually have data

Data-driven baselines run through the same pipeline as the current
values (pipeline.evaluate_window), so derived baselines are recomputed
from baseline inputs rather than averaged percentages.

VARIANCE
--------
    variance = (current - baseline) / |baseline| * 100

flipped when lower is better (direction BELOW). None when either side is
missing or the baseline is 0.

RELATED FILES
-------------
- dealermetrics/pipeline.py: Computes data-driven baselines
- dealermetrics/engine.py: Looks baselines up per result row
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from dealermetrics.aggregator import CatalogResolver, Snapshot
from dealermetrics.catalog import MetricCatalog
from dealermetrics.errors import ComparisonConfigError, MetricRefError
from dealermetrics.model import TargetDirection
from dealermetrics.pipeline import OBSERVED_MONTHS, evaluate_window
from dealermetrics.refs import MetricRef, parse_metric_ref
from dealermetrics.schema import (
    ComparisonMode,
    ComputeRequest,
    CustomRangePeriod,
    FullYearPeriod,
    TargetEntry,
    parse_month,
    quarter_months,
    quarter_of,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Baseline:
    """
    Comparison value for one (group, metric).

    direction is set for stored targets and overrides the metric's own
    direction; None means "use the metric's".
    """
    value: float
    direction: Optional[TargetDirection] = None


# (GroupKey.comparison_id, MetricRef) -> Baseline
BaselineMap = Dict[Tuple[str, MetricRef], Baseline]


# =============================================================================
# VARIANCE
# =============================================================================

def compute_variance(
    current: Optional[float],
    baseline: Optional[float],
    direction: TargetDirection = TargetDirection.ABOVE,
) -> Optional[float]:
    """
    Signed percentage difference from baseline (positive = improvement).

    EXAMPLES:
        >>> compute_variance(120.0, 100.0)
        20.0
        >>> compute_variance(80.0, 100.0, TargetDirection.BELOW)
        20.0
        >>> compute_variance(50.0, 0.0) is None
        True
    """
    if current is None or baseline is None or baseline == 0:
        return None
    variance = (current - baseline) / abs(baseline) * 100
    if direction == TargetDirection.BELOW:
        variance = -variance
    return variance


# =============================================================================
# BASELINE BUILDERS
# =============================================================================

def target_baselines(targets: Iterable[TargetEntry], reference_month: str) -> BaselineMap:
    """
    Stored targets for the quarter and year of `reference_month`.

    Targets whose metric name is a `sub:` key resolve to that line item.
    Malformed keys are logged and skipped.
    """
    year, _ = parse_month(reference_month)
    quarter = quarter_of(reference_month)
    baselines: BaselineMap = {}
    for target in targets:
        if target.quarter != quarter or target.year != year:
            continue
        try:
            ref = parse_metric_ref(target.metric_name)
        except MetricRefError as e:
            logger.warning(f"[COMPARISON] Skipping target with malformed metric key: {e}")
            continue
        baselines[(target.department_id, ref)] = Baseline(target.target_value, target.target_direction)
    return baselines


def snapshot_baselines(snapshot: Snapshot) -> BaselineMap:
    """Every cell of a derived snapshot as a baseline."""
    baselines: BaselineMap = {}
    for group in snapshot.groups:
        for ref, value in snapshot.cells(group.key).items():
            baselines[(group.key.comparison_id, ref)] = Baseline(value)
    return baselines


def build_baselines(
    request: ComputeRequest,
    catalog: Union[MetricCatalog, CatalogResolver],
) -> BaselineMap:
    """
    Baseline map for a request's comparison mode.

    WHAT: Dispatches on request.comparison_mode. Data-driven modes read
    request.comparison_entries and run the same aggregate/backfill/derive
    pipeline as the current period, applying Fixed Combined when the
    request does.

    PARAMETERS:
        request: The computation request
        catalog: One catalog, or a per-group resolver

    RETURNS:
        (comparison_id, MetricRef) -> Baseline; empty for NONE

    RAISES:
        ComparisonConfigError: PREV_YEAR_QUARTER without a quarter

    EXAMPLES:
        >>> request = ComputeRequest(period={"type": "month", "month": "2025-03"},
        ...                          comparison_mode="prev_year_avg", comparison_entries=prior)
        >>> build_baselines(request, catalog)[("d1", PlainRef("total_sales"))].value
        100000.0
    """
    mode = request.comparison_mode
    period = request.period

    if mode == ComparisonMode.NONE:
        return {}

    if mode == ComparisonMode.TARGETS:
        baselines = target_baselines(request.targets, period.reference_month)
        logger.debug(f"[COMPARISON] {len(baselines)} target baseline(s) for {period.reference_month}")
        return baselines

    year, _ = parse_month(period.reference_month)

    if mode == ComparisonMode.YEAR_OVER_YEAR:
        window = period.shifted(-1)
        average_over = None
    elif mode == ComparisonMode.PREV_YEAR_AVG:
        window = FullYearPeriod(year=year - 1)
        average_over = 12
    elif mode == ComparisonMode.PREV_YEAR_QUARTER:
        if request.comparison_quarter is None:
            raise ComparisonConfigError("prev_year_quarter comparison requires comparison_quarter")
        months = quarter_months(year - 1, request.comparison_quarter)
        window = CustomRangePeriod(start_month=months[0], end_month=months[-1])
        average_over = 3
    elif mode == ComparisonMode.CURRENT_YEAR_AVG:
        window = FullYearPeriod(year=year)
        average_over = OBSERVED_MONTHS
    else:
        raise ComparisonConfigError(f"Unsupported comparison mode: {mode!r}")

    snapshot = evaluate_window(
        request.comparison_entries,
        window,
        catalog,
        average_over=average_over,
        combine_fixed=request.combine_fixed,
    )
    baselines = snapshot_baselines(snapshot)
    logger.debug(f"[COMPARISON] {len(baselines)} {mode.value} baseline(s) from {window.months()[0]}..{window.months()[-1]}")
    return baselines
