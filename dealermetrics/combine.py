"""
Fixed Combined
==============

Merges each store's Parts and Service departments into one
"Fixed Combined" group.

Fixed operations are often reviewed as a single unit. Only raw dollar
cells are merged (stored catalog dollars and dollar line items); derived
metrics and percentages are dropped from the merge and recomputed from
the combined dollars by backfill and formulas, exactly as for any other
group.

The merged group has department_id None, so stored department targets
never match it.
"""

import logging
import re
from typing import Dict, List, Union

from dealermetrics.aggregator import (
    CatalogResolver,
    GroupInfo,
    GroupKey,
    Snapshot,
    as_resolver,
    is_percentage_cell,
)
from dealermetrics.catalog import MetricCatalog
from dealermetrics.refs import MetricRef, PlainRef

logger = logging.getLogger(__name__)

FIXED_COMBINED_NAME = "Fixed Combined"

_FIXED_DEPARTMENT = re.compile(r"parts|service", re.IGNORECASE)


def is_fixed_department(department_name: str) -> bool:
    return bool(department_name) and bool(_FIXED_DEPARTMENT.search(department_name))


def _is_raw_dollar(ref: MetricRef, catalog: MetricCatalog) -> bool:
    if is_percentage_cell(ref, catalog):
        return False
    if isinstance(ref, PlainRef):
        metric = catalog.get(ref.key)
        return metric is None or not metric.is_derived
    return True


def combine_fixed_departments(snapshot: Snapshot, catalog: Union[MetricCatalog, CatalogResolver]) -> Snapshot:
    """
    Replace a snapshot's Parts/Service groups with one Fixed Combined group
    per store.

    WHAT: Sums raw dollar cells of every Parts or Service department of a
    store. Other departments are not part of the combined view and are
    left out.

    PARAMETERS:
        snapshot: Aggregated snapshot (before backfill and derivation)
        catalog: One catalog, or a resolver returning each group's catalog

    RETURNS:
        Snapshot with one group per store that has a fixed department
    """
    resolve = as_resolver(catalog)
    combined_groups: Dict[str, GroupInfo] = {}
    combined_values: Dict[GroupKey, Dict[MetricRef, float]] = {}
    combined_counts: Dict[GroupKey, Dict[MetricRef, int]] = {}
    merged_departments: List[str] = []

    for group in snapshot.groups:
        if not is_fixed_department(group.department_name):
            continue
        store_id = group.key.store_id
        key = GroupKey(store_id, None)
        if store_id not in combined_groups:
            combined_groups[store_id] = GroupInfo(
                key=key,
                store_name=group.store_name,
                department_name=FIXED_COMBINED_NAME,
                brand=group.brand,
            )
        merged_departments.append(group.department_name)

        group_catalog = resolve(group)
        values = combined_values.setdefault(key, {})
        counts = combined_counts.setdefault(key, {})
        group_counts = snapshot.counts(group.key)
        for ref, value in snapshot.cells(group.key).items():
            if not _is_raw_dollar(ref, group_catalog):
                continue
            values[ref] = values.get(ref, 0.0) + value
            counts[ref] = max(counts.get(ref, 0), group_counts.get(ref, 0))

    logger.debug(
        f"[COMBINE] Merged {len(merged_departments)} department(s) into "
        f"{len(combined_groups)} {FIXED_COMBINED_NAME} group(s)"
    )
    return Snapshot.build(
        combined_groups.values(),
        combined_values,
        combined_counts,
        snapshot.is_multi_month,
    )
