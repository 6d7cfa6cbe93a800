"""
Temporal Aggregator
===================

Rolls raw monthly entries up into one value per (store, department, metric)
cell for a PeriodSpec.

WHY THIS FILE EXISTS
--------------------
Statement pages show a single month, a full year, or an arbitrary range.
The same stored entries feed all three, but the roll-up rules differ by
value type:

    Month                 values pass through unchanged
    FullYear/CustomRange  dollar cells are SUMMED across months
                          percentage cells are AVERAGED (sum / months with data)
                          percentage ratio metrics are DROPPED, to be
                          recomputed from the summed dollars by formulas.py

Summing percentages would turn a 20% margin into 240% for a year; averaging
ratio metrics would weight a slow month like a busy one. Recomputing ratios
from summed dollars is the only correct year-to-date percentage.

SNAPSHOTS
---------
The aggregator produces a Snapshot: an immutable map of
GroupKey(store_id, department_id) -> {MetricRef: value}. Later stages
(backfill, formulas, comparison) take a Snapshot and return a new one;
none of them mutate their input.

RELATED FILES
-------------
- dealermetrics/backfill.py: Fills missing parents from sub-metric sums
- dealermetrics/formulas.py: Evaluates derived metrics
- dealermetrics/pipeline.py: Chains the stages for one time window
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from dealermetrics.catalog import MetricCatalog
from dealermetrics.errors import MetricRefError
from dealermetrics.refs import MetricRef, PlainRef, SubRef, parse_metric_ref
from dealermetrics.schema import CustomRangePeriod, FullYearPeriod, MonthPeriod, RawEntry

logger = logging.getLogger(__name__)

Period = Union[MonthPeriod, FullYearPeriod, CustomRangePeriod]


# =============================================================================
# SNAPSHOT TYPES
# =============================================================================

@dataclass(frozen=True)
class GroupKey:
    """
    Identity of one result group.

    department_id is None for merged groups such as Fixed Combined.
    """
    store_id: str
    department_id: Optional[str]

    @property
    def comparison_id(self) -> str:
        """Key used to match baselines to this group."""
        if self.department_id is not None:
            return self.department_id
        return f"combined:{self.store_id}"


@dataclass(frozen=True)
class GroupInfo:
    """Display and catalog context for a group, taken from its entries."""
    key: GroupKey
    store_name: str = ""
    department_name: str = ""
    brand: Optional[str] = None


CellValues = Mapping[MetricRef, float]


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable per-group cell values for one time window.

    PARAMETERS:
        groups: Groups in first-appearance order
        values: GroupKey -> {MetricRef: value}
        month_counts: GroupKey -> {MetricRef: months with data}
        is_multi_month: Whether the window spans more than one month
    """
    groups: Tuple[GroupInfo, ...]
    values: Mapping[GroupKey, CellValues]
    month_counts: Mapping[GroupKey, Mapping[MetricRef, int]]
    is_multi_month: bool = False

    @classmethod
    def build(
        cls,
        groups: Iterable[GroupInfo],
        values: Mapping[GroupKey, Mapping[MetricRef, float]],
        month_counts: Optional[Mapping[GroupKey, Mapping[MetricRef, int]]] = None,
        is_multi_month: bool = False,
    ) -> "Snapshot":
        """Freeze plain dicts into a Snapshot."""
        return cls(
            groups=tuple(groups),
            values=MappingProxyType({k: MappingProxyType(dict(v)) for k, v in values.items()}),
            month_counts=MappingProxyType(
                {k: MappingProxyType(dict(v)) for k, v in (month_counts or {}).items()}
            ),
            is_multi_month=is_multi_month,
        )

    def cells(self, key: GroupKey) -> CellValues:
        return self.values.get(key, MappingProxyType({}))

    def counts(self, key: GroupKey) -> Mapping[MetricRef, int]:
        return self.month_counts.get(key, MappingProxyType({}))

    def replace_values(self, values: Mapping[GroupKey, Mapping[MetricRef, float]]) -> "Snapshot":
        """New snapshot with the same groups and counts but different values."""
        return Snapshot.build(self.groups, values, self.month_counts, self.is_multi_month)


CatalogResolver = Callable[[GroupInfo], MetricCatalog]


def as_resolver(catalog: Union[MetricCatalog, CatalogResolver]) -> CatalogResolver:
    """Accept either one catalog for every group or a per-group resolver."""
    if isinstance(catalog, MetricCatalog):
        return lambda group: catalog
    return catalog


# =============================================================================
# CELL CLASSIFICATION
# =============================================================================

def is_percentage_cell(ref: MetricRef, catalog: MetricCatalog) -> bool:
    """Percentage metrics and line items under percentage parents."""
    key = ref.parent_key if isinstance(ref, SubRef) else ref.key
    return catalog.is_percentage(key)


def is_recomputed_ratio(ref: MetricRef, catalog: MetricCatalog) -> bool:
    """Catalog percentage ratios, which are rebuilt from summed dollars."""
    if not isinstance(ref, PlainRef):
        return False
    metric = catalog.get(ref.key)
    return metric is not None and metric.is_percentage_ratio


# =============================================================================
# AGGREGATION
# =============================================================================

def collect_groups(entries: Iterable[RawEntry]) -> List[GroupInfo]:
    """
    Every (store, department) pair present in the entries, in order of
    first appearance, with the first non-empty names and brand seen.
    """
    found: Dict[GroupKey, Dict[str, Optional[str]]] = {}
    for entry in entries:
        key = GroupKey(entry.store_id, entry.department_id)
        info = found.setdefault(key, {"store_name": "", "department_name": "", "brand": None})
        if not info["store_name"] and entry.store_name:
            info["store_name"] = entry.store_name
        if not info["department_name"] and entry.department_name:
            info["department_name"] = entry.department_name
        if info["brand"] is None and entry.brand:
            info["brand"] = entry.brand
    return [GroupInfo(key=key, **info) for key, info in found.items()]


def aggregate_entries(
    entries: Iterable[RawEntry],
    period: Period,
    catalog: Union[MetricCatalog, CatalogResolver],
) -> Snapshot:
    """
    Aggregate raw entries over a period.

    WHAT: Filters entries to the period's months, parses each metric key
    once, and rolls values up per cell.

    WHY: First stage of the pipeline; everything downstream works on
    typed MetricRefs and one value per cell.

    PARAMETERS:
        entries: Raw entries; may span more months than the period
        period: Month, FullYear or CustomRange
        catalog: One catalog, or a resolver returning each group's catalog

    RETURNS:
        Snapshot with one GroupInfo per (store, department) in `entries`,
        including groups with no values inside the period

    NOTES:
        Null values are skipped, so a cell exists only if at least one
        month supplied a number. Within a single month a repeated cell
        keeps the last value. Malformed `sub:` keys are logged and skipped.

    EXAMPLES:
        >>> snap = aggregate_entries(entries, FullYearPeriod(year=2025), catalog)
        >>> snap.cells(GroupKey("s1", "d1"))[PlainRef("total_sales")]
        1200000.0
    """
    entries = list(entries)
    resolve = as_resolver(catalog)
    groups = collect_groups(entries)
    catalogs = {group.key: resolve(group) for group in groups}
    months = set(period.months())
    multi_month = period.is_multi_month

    sums: Dict[GroupKey, Dict[MetricRef, float]] = {}
    counts: Dict[GroupKey, Dict[MetricRef, int]] = {}
    skipped = 0

    for entry in entries:
        if entry.month not in months or entry.value is None:
            continue
        try:
            ref = parse_metric_ref(entry.metric_name)
        except MetricRefError as e:
            logger.warning(f"[AGGREGATOR] Skipping entry with malformed metric key: {e}")
            skipped += 1
            continue

        key = GroupKey(entry.store_id, entry.department_id)
        group_sums = sums.setdefault(key, {})
        group_counts = counts.setdefault(key, {})
        if multi_month:
            group_sums[ref] = group_sums.get(ref, 0.0) + entry.value
            group_counts[ref] = group_counts.get(ref, 0) + 1
        else:
            group_sums[ref] = entry.value
            group_counts[ref] = 1

    values: Dict[GroupKey, Dict[MetricRef, float]] = {}
    for key, group_sums in sums.items():
        group_catalog = catalogs[key]
        cells: Dict[MetricRef, float] = {}
        for ref, total in group_sums.items():
            if multi_month and is_recomputed_ratio(ref, group_catalog):
                continue
            if multi_month and is_percentage_cell(ref, group_catalog):
                cells[ref] = total / counts[key][ref]
            else:
                cells[ref] = total
        values[key] = cells

    logger.debug(
        f"[AGGREGATOR] Aggregated {len(entries)} entries into {len(groups)} groups "
        f"over {len(months)} month(s), skipped={skipped}"
    )
    return Snapshot.build(groups, values, counts, multi_month)


def average_snapshot(snapshot: Snapshot, catalog: Union[MetricCatalog, CatalogResolver], months: Optional[int] = None) -> Snapshot:
    """
    Turn summed dollar cells into monthly averages.

    WHAT: Divides every dollar cell by `months`, or by the cell's own count
    of months with data when `months` is None. Percentage cells are
    already averages and stay unchanged.

    WHY: Baselines for the averaging comparison modes are "an average
    month", which must be built before backfill and derivation so derived
    metrics are computed from averaged inputs.
    """
    resolve = as_resolver(catalog)
    averaged: Dict[GroupKey, Dict[MetricRef, float]] = {}
    for group in snapshot.groups:
        group_catalog = resolve(group)
        counts = snapshot.counts(group.key)
        cells: Dict[MetricRef, float] = {}
        for ref, value in snapshot.cells(group.key).items():
            if is_percentage_cell(ref, group_catalog):
                cells[ref] = value
                continue
            divisor = months if months is not None else counts.get(ref, 0)
            if divisor:
                cells[ref] = value / divisor
        averaged[group.key] = cells
    return snapshot.replace_values(averaged)
