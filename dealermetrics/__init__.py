"""
Dealer Metrics Engine
=====================

Financial statement metric engine for dealership departments.

Given raw monthly entries per (store, department, metric) and a brand's
declarative metric catalog, the engine rolls values up over a month, a
full year or a custom range, derives ratios and profit figures in
dependency order, backfills parent totals from their line items, and
compares the result against targets or prior-period baselines.

ARCHITECTURE OVERVIEW
---------------------
```
RawEntry[] + PeriodSpec
    |
    v
Temporal Aggregator (aggregator.py)      sum dollars, average percentages
    |   [Fixed Combined (combine.py)]
    v
Parent Backfill (backfill.py)            parents from line item sums
    |
    v
Formula Evaluator (formulas.py)          ratios / subtract / complex, topological order
    |
    v
Comparison Resolver (comparison.py)      targets, YoY, prior-year averages
    |
    v
ResultRow[]  (engine.py, gap-filled)
```

The engine owns no I/O: callers fetch entries and targets and pass them
in. It keeps no state between calls.

COMPONENTS
----------
- model.py: Metric definitions and calculation types
- refs.py: PlainRef / SubRef and the `sub:` key encoding
- catalog.py: Brand catalogs, CatalogProvider, fallback policy
- schema.py: Request/response models and PeriodSpec
- submetrics.py: Line item discovery and selection ordering
- aggregator.py / backfill.py / formulas.py / combine.py: Pipeline stages
- pipeline.py: Stage chaining for one time window
- comparison.py: Baselines and variance
- engine.py: MetricEngine
- telemetry.py: Stage timing and structured events
- errors.py: Contract violation errors
- settings.py: Environment configuration

USAGE
-----
```python
from dealermetrics import ComputeRequest, MetricEngine

rows = MetricEngine().compute(ComputeRequest(
    entries=entries,
    period={"type": "month", "month": "2025-03"},
    selections=["total_sales", "gp_percent"],
    comparison_mode="targets",
    targets=targets,
))
```
"""

from dealermetrics.catalog import (
    BRAND_CATALOGS,
    DEFAULT_BRAND_ID,
    CatalogProvider,
    FallbackPolicy,
    MetricCatalog,
    StaticCatalogProvider,
    get_metrics_for_brand,
)
from dealermetrics.comparison import Baseline, build_baselines, compute_variance
from dealermetrics.engine import MetricEngine, compute_metrics
from dealermetrics.errors import (
    CatalogCycleError,
    ComparisonConfigError,
    DuplicateMetricKeyError,
    ErrorCode,
    InvalidPeriodError,
    MetricEngineError,
    MetricRefError,
    UnknownBrandError,
)
from dealermetrics.model import Complex, MetricDefinition, Ratio, Subtract, TargetDirection, ValueType
from dealermetrics.refs import MetricRef, PlainRef, SubRef, format_metric_ref, parse_metric_ref
from dealermetrics.schema import (
    ComparisonMode,
    ComputeRequest,
    CustomRangePeriod,
    FullYearPeriod,
    MonthPeriod,
    PeriodSpec,
    RawEntry,
    ResultRow,
    TargetEntry,
    parse_period,
)
from dealermetrics.submetrics import (
    SubMetricDefinition,
    discover_sub_metrics,
    parent_selection_ids,
    sort_selections_with_sub_metrics,
)
from dealermetrics.telemetry import TelemetryCollector, get_telemetry

__all__ = [
    # Model
    "MetricDefinition",
    "ValueType",
    "TargetDirection",
    "Ratio",
    "Subtract",
    "Complex",
    # References
    "MetricRef",
    "PlainRef",
    "SubRef",
    "parse_metric_ref",
    "format_metric_ref",
    # Catalog
    "MetricCatalog",
    "CatalogProvider",
    "StaticCatalogProvider",
    "FallbackPolicy",
    "BRAND_CATALOGS",
    "DEFAULT_BRAND_ID",
    "get_metrics_for_brand",
    # Schema
    "RawEntry",
    "TargetEntry",
    "MonthPeriod",
    "FullYearPeriod",
    "CustomRangePeriod",
    "PeriodSpec",
    "parse_period",
    "ComparisonMode",
    "ComputeRequest",
    "ResultRow",
    # Sub-metrics
    "SubMetricDefinition",
    "discover_sub_metrics",
    "sort_selections_with_sub_metrics",
    "parent_selection_ids",
    # Comparison
    "Baseline",
    "build_baselines",
    "compute_variance",
    # Engine
    "MetricEngine",
    "compute_metrics",
    # Telemetry
    "TelemetryCollector",
    "get_telemetry",
    # Errors
    "ErrorCode",
    "MetricEngineError",
    "InvalidPeriodError",
    "MetricRefError",
    "ComparisonConfigError",
    "CatalogCycleError",
    "DuplicateMetricKeyError",
    "UnknownBrandError",
]

__version__ = "0.1.0"
