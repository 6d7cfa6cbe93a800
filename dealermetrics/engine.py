"""
Metric Engine
=============

Entry point of the library: turns a ComputeRequest into gap-filled
ResultRows.

PIPELINE
--------
    raw entries + PeriodSpec
        -> aggregate    (aggregator.py, combine.py)
        -> backfill     (backfill.py)
        -> derive       (formulas.py)
        -> compare      (comparison.py)
        -> assemble     one row per (group, selection)

Every stage is a pure function over an immutable Snapshot. The engine
holds no per-request state, so one MetricEngine can serve concurrent
requests.

GAP-FILL
--------
Every (store, department) pair present in the entries gets a row for
every selection known to any group's catalog, with value None when there
is no data (or the group's own brand lacks the metric), so the
presentation layer can render "No data" instead of dropping the row.
Only selections no catalog in play defines are skipped.

USAGE
-----
```python
from dealermetrics import ComputeRequest, MetricEngine

engine = MetricEngine()
rows = engine.compute(ComputeRequest(
    entries=entries,
    period={"type": "full_year", "year": 2025},
    selections=["total_sales", "GP %", "sub:sales_expense:001:Salaries"],
    comparison_mode="year_over_year",
    comparison_entries=prior_year_entries,
))
```
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from dealermetrics.aggregator import CatalogResolver, GroupInfo, Snapshot
from dealermetrics.catalog import CatalogProvider, MetricCatalog, default_catalog_provider
from dealermetrics.comparison import BaselineMap, build_baselines, compute_variance
from dealermetrics.errors import MetricRefError
from dealermetrics.model import TargetDirection
from dealermetrics.pipeline import evaluate_window
from dealermetrics.refs import MetricRef, PlainRef, format_metric_ref, is_sub_key, parse_metric_ref
from dealermetrics.schema import ComputeRequest, RawEntry, ResultRow
from dealermetrics.submetrics import SubMetricDefinition, discover_sub_metrics, display_order
from dealermetrics.telemetry import TelemetryCollector, get_telemetry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """A selection id resolved against one catalog."""
    selection_id: str
    ref: MetricRef
    metric_name: str
    direction: TargetDirection


def resolve_selection(selection_id: str, catalog: MetricCatalog) -> Optional[Selection]:
    """
    Resolve a selection id (catalog key, display name or sub-metric key).

    Sub-metric selections are always accepted, since the line item may
    simply have no data in this window. Unknown plain selections and
    malformed sub-metric keys return None.
    """
    if is_sub_key(selection_id):
        try:
            ref = parse_metric_ref(selection_id)
        except MetricRefError as e:
            logger.warning(f"[ENGINE] Ignoring malformed sub-metric selection: {e}")
            return None
        parent = catalog.get(ref.parent_key)
        direction = parent.target_direction if parent else TargetDirection.ABOVE
        return Selection(selection_id, ref, ref.display_name, direction)

    metric = catalog.resolve(selection_id)
    if metric is None:
        return None
    return Selection(selection_id, PlainRef(metric.key), metric.name, metric.target_direction)


def _resolve_in_any(selection_id: str, catalogs: List[MetricCatalog]) -> Optional[Selection]:
    """First resolution of a selection across several catalogs, or None."""
    for catalog in catalogs:
        selection = resolve_selection(selection_id, catalog)
        if selection is not None:
            return selection
    return None


class MetricEngine:
    """
    Computes financial statement metrics for stores and departments.

    WHAT: Runs aggregate -> backfill -> derive -> compare -> assemble for a
    ComputeRequest and returns one ResultRow per (group, selection).

    WHY: A single, tested implementation of the roll-up rules that every
    statement and comparison view shares.

    PARAMETERS:
        provider: CatalogProvider (brand -> catalog); the settings-configured
                  StaticCatalogProvider when omitted
        telemetry: TelemetryCollector; the process default when omitted

    EXAMPLES:
        >>> engine = MetricEngine(provider=StaticCatalogProvider({"test": METRICS}, default_brand="test"))
        >>> rows = engine.compute(request)
    """

    def __init__(
        self,
        provider: Optional[CatalogProvider] = None,
        telemetry: Optional[TelemetryCollector] = None,
    ):
        self.provider = provider or default_catalog_provider()
        self.telemetry = telemetry or get_telemetry()

    def catalog_resolver(self, default_brand: Optional[str] = None) -> CatalogResolver:
        """Resolver using each group's own brand, else `default_brand`."""
        cache: Dict[Optional[str], MetricCatalog] = {}

        def resolve(group: GroupInfo) -> MetricCatalog:
            brand = group.brand or default_brand
            if brand not in cache:
                cache[brand] = self.provider.lookup(brand)
            return cache[brand]

        return resolve

    def discover_sub_metrics(
        self,
        entries: Iterable[RawEntry],
        brand: Optional[str] = None,
    ) -> List[SubMetricDefinition]:
        """
        Sub-metrics available in `entries` for a brand's catalog.

        Pass entries for every month of the departments, not just the
        current window, so selections survive date range changes.
        """
        catalog = self.provider.lookup(brand)
        return discover_sub_metrics((e.metric_name for e in entries), catalog)

    def available_selections(
        self,
        entries: Iterable[RawEntry],
        brand: Optional[str] = None,
    ) -> List[str]:
        """Selectable ids in display order: each catalog key, then its line items."""
        catalog = self.provider.lookup(brand)
        subs = discover_sub_metrics((e.metric_name for e in entries), catalog)
        return [format_metric_ref(ref) for ref in display_order(catalog, subs)]

    def compute(self, request: ComputeRequest) -> List[ResultRow]:
        """
        Compute result rows for a request.

        WHAT: Evaluates the current window, builds baselines for the
        comparison mode and assembles gap-filled rows in group order, then
        selection order.

        PARAMETERS:
            request: Entries, period, selections and comparison settings

        RETURNS:
            List of ResultRow; empty when the request has no entries

        RAISES:
            UnknownBrandError: unknown brand under the strict fallback policy
            ComparisonConfigError: comparison mode missing required input
        """
        resolve = self.catalog_resolver(request.brand)

        with self.telemetry.track_computation(request) as ctx:
            snapshot = evaluate_window(
                request.entries,
                request.period,
                resolve,
                combine_fixed=request.combine_fixed,
                context=ctx,
            )

            with ctx.track_stage("compare"):
                baselines = build_baselines(request, resolve)

            with ctx.track_stage("assemble"):
                rows = self._assemble(request.selections, snapshot, baselines, resolve)

            ctx.set_result(row_count=len(rows), group_count=len(snapshot.groups))

        return rows

    def _assemble(
        self,
        selections: List[str],
        snapshot: Snapshot,
        baselines: BaselineMap,
        resolve: CatalogResolver,
    ) -> List[ResultRow]:
        rows: List[ResultRow] = []
        unknown: List[str] = []

        # Catalogs of every group, in group order
        catalogs: List[MetricCatalog] = []
        for group in snapshot.groups:
            catalog = resolve(group)
            if not any(c is catalog for c in catalogs):
                catalogs.append(catalog)

        for group in snapshot.groups:
            catalog = resolve(group)
            cells = snapshot.cells(group.key)

            for selection_id in selections:
                selection = resolve_selection(selection_id, catalog)
                in_own_catalog = selection is not None
                if selection is None:
                    # Defined by another store's brand: still a row, with no value
                    selection = _resolve_in_any(selection_id, catalogs)
                if selection is None:
                    if selection_id not in unknown:
                        unknown.append(selection_id)
                    continue

                value = cells.get(selection.ref) if in_own_catalog else None
                baseline = baselines.get((group.key.comparison_id, selection.ref))
                target = baseline.value if baseline is not None else None
                direction = selection.direction
                if baseline is not None and baseline.direction is not None:
                    direction = baseline.direction

                rows.append(ResultRow(
                    store_id=group.key.store_id,
                    store_name=group.store_name,
                    department_id=group.key.department_id,
                    department_name=group.department_name,
                    metric_name=selection.metric_name,
                    selection_id=selection.selection_id,
                    value=value,
                    target=target,
                    variance=compute_variance(value, target, direction),
                ))

        if unknown:
            logger.warning(f"[ENGINE] Skipping unknown selections: {unknown}")
        return rows


def compute_metrics(
    request: ComputeRequest,
    provider: Optional[CatalogProvider] = None,
) -> List[ResultRow]:
    """One-shot convenience wrapper around MetricEngine.compute."""
    return MetricEngine(provider=provider).compute(request)
