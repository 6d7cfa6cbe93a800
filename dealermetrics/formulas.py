"""
Formula Evaluator
=================

Computes derived metrics (ratios, subtractions, complex formulas) from a
group's aggregated values.

WHY THIS FILE EXISTS
--------------------
Derived metrics build on each other:

    department_profit = gp_net - sales_expense - semi_fixed_expense - total_fixed_expense
    return_on_gross   = department_profit / gp_net * 100

so they must be evaluated in dependency order, with each result written
back before its dependents run. MetricCatalog verifies the formulas are
acyclic and precomputes that order once; this module walks it in a single
pass.

MISSING DATA
------------
Nothing here raises for missing data:
- Ratio with a missing input       -> metric omitted
- Ratio with a zero denominator    -> 0
- Subtract/Complex missing base    -> metric omitted
- Missing deductions/additions     -> treated as 0

PERCENTAGE LINE ITEMS
---------------------
A line item under a percentage ratio parent ("GP % / Labor") is computed
from the numerator's line item over the denominator TOTAL:

    sub:gp_percent:Labor = sub:gp_net:Labor / total_sales * 100

When the numerator has no such line item, a directly stored (and, for
multi-month windows, averaged) percentage value is kept.

RELATED FILES
-------------
- dealermetrics/catalog.py: Evaluation order and cycle check
- dealermetrics/backfill.py: Runs before this, filling parent totals
"""

import logging
from typing import Dict, Mapping, Optional, Union

from dealermetrics.aggregator import CatalogResolver, GroupKey, Snapshot, as_resolver
from dealermetrics.catalog import MetricCatalog
from dealermetrics.model import Complex, MetricDefinition, Ratio, Subtract
from dealermetrics.refs import MetricRef, PlainRef, SubRef

logger = logging.getLogger(__name__)


def ratio_value(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 for a zero denominator."""
    if denominator == 0:
        return 0.0
    return numerator / denominator * 100


def calculate_metric_value(metric: MetricDefinition, values: Mapping[MetricRef, float]) -> Optional[float]:
    """
    Evaluate one metric against a value map.

    PARAMETERS:
        metric: Catalog definition
        values: Values already available for the group

    RETURNS:
        The computed value, the stored value for non-derived metrics,
        or None when a required input is missing

    EXAMPLES:
        >>> calculate_metric_value(gp_percent, {PlainRef("gp_net"): 100.0, PlainRef("total_sales"): 0.0})
        0.0
    """
    calc = metric.calculation
    if calc is None:
        return values.get(PlainRef(metric.key))

    if isinstance(calc, Ratio):
        numerator = values.get(PlainRef(calc.numerator))
        denominator = values.get(PlainRef(calc.denominator))
        if numerator is None or denominator is None:
            return None
        return ratio_value(numerator, denominator)

    base = values.get(PlainRef(calc.base))
    if base is None:
        return None
    value = base - sum(values.get(PlainRef(k), 0.0) for k in calc.deductions)
    if isinstance(calc, Complex):
        value += sum(values.get(PlainRef(k), 0.0) for k in calc.additions)
    elif not isinstance(calc, Subtract):
        raise TypeError(f"Unsupported calculation: {calc!r}")
    return value


def percentage_sub_values(values: Mapping[MetricRef, float], catalog: MetricCatalog) -> Dict[SubRef, float]:
    """Line items of percentage ratio parents computed from numerator line items."""
    computed: Dict[SubRef, float] = {}
    for metric in catalog:
        if not metric.is_percentage_ratio:
            continue
        denominator = values.get(PlainRef(metric.calculation.denominator))
        if denominator is None:
            continue
        for ref, value in values.items():
            if isinstance(ref, SubRef) and ref.parent_key == metric.calculation.numerator:
                computed[ref.under(metric.key)] = ratio_value(value, denominator)
    return computed


def evaluate_derived(values: Mapping[MetricRef, float], catalog: MetricCatalog) -> Dict[MetricRef, float]:
    """
    Evaluate every derived metric for one group.

    WHAT: Walks catalog.evaluation_order once. Stored values win over
    formulas; computed values are written back immediately so later
    metrics see them.

    PARAMETERS:
        values: Aggregated (and backfilled) values for one group
        catalog: The group's brand catalog

    RETURNS:
        New value map including derived metrics and percentage line items

    EXAMPLES:
        >>> out = evaluate_derived({PlainRef("sales"): 1000.0, PlainRef("cost"): 600.0,
        ...                         PlainRef("investment"): 200.0}, catalog)
        >>> out[PlainRef("gross_profit")], out[PlainRef("return_on_gross")]
        (400.0, 200.0)
    """
    result: Dict[MetricRef, float] = dict(values)
    for metric in catalog.evaluation_order:
        ref = PlainRef(metric.key)
        if not metric.is_derived or ref in result:
            continue
        value = calculate_metric_value(metric, result)
        if value is not None:
            result[ref] = value

    result.update(percentage_sub_values(result, catalog))
    return result


def derive_snapshot(snapshot: Snapshot, catalog: Union[MetricCatalog, CatalogResolver]) -> Snapshot:
    """Apply evaluate_derived to every group of a snapshot."""
    resolve = as_resolver(catalog)
    derived: Dict[GroupKey, Dict[MetricRef, float]] = {}
    for group in snapshot.groups:
        derived[group.key] = evaluate_derived(snapshot.cells(group.key), resolve(group))

    logger.debug(f"[FORMULAS] Derived metrics for {len(derived)} group(s)")
    return snapshot.replace_values(derived)
