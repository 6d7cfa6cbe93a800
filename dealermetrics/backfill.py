"""
Parent Backfill
===============

Reconstructs missing catalog totals from the sum of their line items.

Some statement imports only supply line items (`sub:sales_expense:...`)
and never the declared parent (`sales_expense`). Without a parent value,
every formula that reads it (Net Selling Gross, Department Profit, the
expense percentages) would be omitted. Backfill sets the parent to the
sum of its dollar line items.

Rules:
- A stored parent value always wins; backfill only fills gaps
- Percentage parents are never backfilled (summing percentages is wrong;
  they are recomputed by formulas.py instead)
- Runs after aggregation, so multi-month sums are summed line items
"""

import logging
from typing import Dict, Union

from dealermetrics.aggregator import CatalogResolver, GroupKey, Snapshot, as_resolver
from dealermetrics.catalog import MetricCatalog
from dealermetrics.refs import MetricRef, PlainRef, SubRef

logger = logging.getLogger(__name__)


def backfill_values(values: Dict[MetricRef, float], catalog: MetricCatalog) -> Dict[MetricRef, float]:
    """
    Fill missing dollar parents in one group's values.

    RETURNS:
        New dict; `values` is not modified

    EXAMPLES:
        >>> backfill_values({SubRef("sales_expense", "A"): 100.0,
        ...                  SubRef("sales_expense", "B"): 200.0}, catalog)[PlainRef("sales_expense")]
        300.0
    """
    sub_totals: Dict[str, float] = {}
    for ref, value in values.items():
        if isinstance(ref, SubRef):
            sub_totals[ref.parent_key] = sub_totals.get(ref.parent_key, 0.0) + value

    filled = dict(values)
    for metric in catalog:
        ref = PlainRef(metric.key)
        if ref in filled or metric.is_percentage:
            continue
        if metric.key in sub_totals:
            filled[ref] = sub_totals[metric.key]
    return filled


def backfill_parents(snapshot: Snapshot, catalog: Union[MetricCatalog, CatalogResolver]) -> Snapshot:
    """Apply backfill_values to every group of a snapshot."""
    resolve = as_resolver(catalog)
    filled: Dict[GroupKey, Dict[MetricRef, float]] = {}
    backfilled = 0
    for group in snapshot.groups:
        before = snapshot.cells(group.key)
        after = backfill_values(dict(before), resolve(group))
        backfilled += len(after) - len(before)
        filled[group.key] = after

    if backfilled:
        logger.debug(f"[BACKFILL] Filled {backfilled} parent value(s) from line items")
    return snapshot.replace_values(filled)
