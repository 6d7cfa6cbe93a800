"""
Sub-Metric Discovery
====================

Finds dynamically named line items (sub-metrics) in stored entries and
places them under their catalog parent.

WHY THIS FILE EXISTS
--------------------
Statement imports store line items next to the catalog totals:

    sales_expense                          <- catalog metric
    sub:sales_expense:001:Salaries         <- line items
    sub:sales_expense:002:Advertising

These names are not known ahead of time and differ per dealer, so the
selectable metric list is discovered from the data itself. Discovery must
see every month available for the departments, not just the current
window, so a line item stays selectable when the date range changes.

PERCENTAGE PARENTS
------------------
A percentage parent such as GP % (= GP Net / Total Sales) has no dollar
line items of its own. Its line items are the NUMERATOR's line items:
"GP % / Labor" is `sub:gp_net:...:Labor` divided by the Total Sales total.
Discovery therefore mirrors the numerator's line items under the
percentage parent, recording the numerator as the value source.

RELATED FILES
-------------
- dealermetrics/refs.py: Parses the sub: keys
- dealermetrics/aggregator.py: Averages percentage-typed sub-metrics
- dealermetrics/formulas.py: Computes mirrored percentage line items
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from dealermetrics.catalog import MetricCatalog
from dealermetrics.errors import MetricRefError
from dealermetrics.model import MetricDefinition, ValueType
from dealermetrics.refs import MetricRef, PlainRef, SubRef, format_metric_ref, is_sub_key, parse_metric_ref

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubMetricDefinition:
    """
    Transient catalog entry for a discovered line item.

    PARAMETERS:
        ref: SubRef keyed by (parent_key, name)
        parent: Catalog metric the line item is displayed under
        source_parent_key: Parent key the raw values are stored under
                           (the numerator for percentage ratio parents)
    """
    ref: SubRef
    parent: MetricDefinition
    source_parent_key: str

    @property
    def value_type(self) -> ValueType:
        return self.parent.value_type

    @property
    def display_name(self) -> str:
        return self.ref.display_name

    @property
    def selection_id(self) -> str:
        return format_metric_ref(self.ref)

    @property
    def is_mirrored(self) -> bool:
        """True when values come from the numerator's line items."""
        return self.source_parent_key != self.ref.parent_key


def _collect(keys: Iterable[str]) -> Dict[str, Dict[str, SubRef]]:
    """parent_key -> {name: SubRef}, keeping the lowest order index seen."""
    by_parent: Dict[str, Dict[str, SubRef]] = {}
    for raw in keys:
        if not is_sub_key(raw):
            continue
        try:
            ref = parse_metric_ref(raw)
        except MetricRefError as e:
            logger.warning(f"[SUBMETRICS] Skipping malformed sub-metric key: {e}")
            continue

        names = by_parent.setdefault(ref.parent_key, {})
        existing = names.get(ref.name)
        if existing is None or ref.sort_index < existing.sort_index:
            names[ref.name] = ref
    return by_parent


def _sorted_refs(refs: Iterable[SubRef]) -> List[SubRef]:
    return sorted(refs, key=lambda r: (r.sort_index, r.name))


def discover_sub_metrics(keys: Iterable[str], catalog: MetricCatalog) -> List[SubMetricDefinition]:
    """
    Discover sub-metrics from stored metric keys.

    WHAT: Groups `sub:` keys by parent and builds one SubMetricDefinition
    per (parent, name), ordered by catalog order, then order index, then name.

    PARAMETERS:
        keys: Metric keys of every stored entry for the departments
              (any months; plain keys are ignored)
        catalog: Brand catalog providing parents

    RETURNS:
        Sub-metric definitions in display order

    NOTES:
        Line items whose parent is not in the catalog are skipped.
        A name under two parents yields two definitions.

    EXAMPLES:
        >>> subs = discover_sub_metrics(["sub:gp_net:001:Labor", "sub:total_sales:Labor"], catalog)
        >>> [s.selection_id for s in subs]
        ['sub:total_sales:Labor', 'sub:gp_net:001:Labor', 'sub:gp_percent:001:Labor']
    """
    by_parent = _collect(keys)
    discovered: List[SubMetricDefinition] = []

    for metric in catalog:
        own = by_parent.get(metric.key, {})
        mirrored: Dict[str, SubRef] = {}
        if metric.is_percentage_ratio:
            numerator = metric.calculation.numerator
            mirrored = {
                name: ref.under(metric.key)
                for name, ref in by_parent.get(numerator, {}).items()
            }

        merged: Dict[str, SubRef] = dict(own)
        for name, ref in mirrored.items():
            if name not in merged or ref.sort_index < merged[name].sort_index:
                merged[name] = ref

        for ref in _sorted_refs(merged.values()):
            source = metric.key
            if ref.name in mirrored:
                source = metric.calculation.numerator
            discovered.append(SubMetricDefinition(ref=ref, parent=metric, source_parent_key=source))

    orphans = set(by_parent) - set(catalog.keys())
    if orphans:
        logger.debug(f"[SUBMETRICS] Ignoring line items under unknown parents: {sorted(orphans)}")

    return discovered


def display_order(catalog: MetricCatalog, sub_metrics: Iterable[SubMetricDefinition]) -> List[MetricRef]:
    """Catalog metrics in display order, each followed by its sub-metrics."""
    by_parent: Dict[str, List[SubRef]] = {}
    for sub in sub_metrics:
        by_parent.setdefault(sub.ref.parent_key, []).append(sub.ref)

    ordered: List[MetricRef] = []
    for metric in catalog:
        ordered.append(PlainRef(metric.key))
        ordered.extend(_sorted_refs(by_parent.get(metric.key, [])))
    return ordered


def sub_value_type(ref: SubRef, catalog: MetricCatalog) -> ValueType:
    """A sub-metric shares its parent's value type; unknown parents are dollars."""
    parent = catalog.get(ref.parent_key)
    return parent.value_type if parent else ValueType.DOLLAR


def _parse_selection(selection_id: str) -> Optional[SubRef]:
    if not is_sub_key(selection_id):
        return None
    try:
        ref = parse_metric_ref(selection_id)
    except MetricRefError as e:
        logger.warning(f"[SUBMETRICS] Unparseable selection: {e}")
        return None
    return ref


def sort_selections_with_sub_metrics(selection_ids: List[str], catalog: MetricCatalog) -> List[str]:
    """
    Sort selection ids so sub-metrics sit directly below their parent.

    WHAT: Walks the catalog in display order; each selected parent (by key
    or display name) is followed by its selected sub-metrics, indexed ones
    by order index, un-indexed ones after them by name. Selections that
    match nothing in the catalog keep their relative order at the end.

    EXAMPLES:
        >>> sort_selections_with_sub_metrics(
        ...     ["sub:gp_net:002:B", "GP Net", "Total Sales", "sub:gp_net:001:A"], catalog)
        ['Total Sales', 'GP Net', 'sub:gp_net:001:A', 'sub:gp_net:002:B']
    """
    if not selection_ids:
        return []

    subs_by_parent: Dict[str, List[tuple]] = {}
    for selection_id in selection_ids:
        ref = _parse_selection(selection_id)
        if ref is not None:
            subs_by_parent.setdefault(ref.parent_key, []).append((ref, selection_id))

    ordered: List[str] = []
    placed: Set[str] = set()

    for metric in catalog:
        for selection_id in selection_ids:
            if selection_id in placed or is_sub_key(selection_id):
                continue
            if selection_id in (metric.key, metric.name):
                ordered.append(selection_id)
                placed.add(selection_id)

        subs = subs_by_parent.get(metric.key, [])
        subs = sorted(
            subs,
            key=lambda item: (
                item[0].order_index is None,
                item[0].order_index if item[0].order_index is not None else 0,
                item[1],
            ),
        )
        for _, selection_id in subs:
            if selection_id not in placed:
                ordered.append(selection_id)
                placed.add(selection_id)

    ordered.extend(s for s in selection_ids if s not in placed)
    return ordered


def parent_selection_ids(selection_ids: List[str], catalog: MetricCatalog) -> Set[str]:
    """
    Selected parents that also have at least one selected sub-metric.

    Used by the presentation layer to render parents as expandable rows.
    """
    selected = set(selection_ids)
    sub_parents = {
        ref.parent_key
        for ref in (_parse_selection(s) for s in selection_ids)
        if ref is not None
    }

    parents: Set[str] = set()
    for metric in catalog:
        if metric.key not in sub_parents:
            continue
        for candidate in (metric.key, metric.name):
            if candidate in selected:
                parents.add(candidate)
    return parents
