"""
Metric Catalog
==============

Brand-scoped registry of financial metric definitions.

WHY THIS FILE EXISTS
--------------------
Each manufacturer's financial statement has a slightly different shape:
- Ford reports Dealer Salary and derives Parts Transfer
- Nissan derives Semi Fixed Expense from Total Direct Expenses
- Mazda has no Parts Transfer / Net Operating Profit
- GMC/Chevrolet is the default layout

Catalogs list these metrics in display order. Formulas reference each
other (Return on Gross depends on Department Profit, which depends on
GP Net...), so every catalog is also a dependency graph.

DEPENDENCY ORDER
----------------
A MetricCatalog validates its graph when it is built:
- Duplicate keys are rejected
- Cycles are rejected (CatalogCycleError), so evaluation never needs a
  "calculate twice for safety" pass
- `evaluation_order` is a topological order (Kahn's algorithm) that keeps
  the declared order wherever dependencies allow

BRAND LOOKUP
------------
Catalogs are obtained through a CatalogProvider rather than module
globals, so tests and callers can inject fixed catalogs. The unknown-brand
behaviour is an explicit FallbackPolicy:
- DEFAULT: substitute the default catalog and log a warning
- STRICT: raise UnknownBrandError

RELATED FILES
-------------
- dealermetrics/model.py: MetricDefinition and calculation types
- dealermetrics/formulas.py: Walks evaluation_order
- dealermetrics/settings.py: BRAND_FALLBACK / DEFAULT_BRAND defaults
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from functools import lru_cache
from typing import Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple

from dealermetrics.errors import CatalogCycleError, DuplicateMetricKeyError, UnknownBrandError
from dealermetrics.model import (
    Complex,
    MetricDefinition,
    Ratio,
    Subtract,
    TargetDirection,
    ValueType,
)

logger = logging.getLogger(__name__)

DOLLAR = ValueType.DOLLAR
PERCENT = ValueType.PERCENTAGE
ABOVE = TargetDirection.ABOVE
BELOW = TargetDirection.BELOW


# =============================================================================
# CATALOG
# =============================================================================

class MetricCatalog:
    """
    Ordered, validated collection of metric definitions for one brand.

    WHAT: Immutable lookup structure over a brand's metrics.

    WHY: Gives every stage O(1) access by key or display name and a
    precomputed, verified evaluation order.

    PARAMETERS:
        brand_id: Identifier of the catalog (e.g., "ford")
        metrics: Definitions in display order

    RAISES:
        DuplicateMetricKeyError: two definitions share a key
        CatalogCycleError: formulas reference each other in a cycle

    EXAMPLES:
        >>> catalog = MetricCatalog("ford", FORD_METRICS)
        >>> catalog.get("gp_percent").calculation
        Ratio(numerator='gp_net', denominator='total_sales')
        >>> [m.key for m in catalog.evaluation_order][:3]
        ['total_sales', 'gp_net', 'gp_percent']
    """

    def __init__(self, brand_id: str, metrics: Sequence[MetricDefinition]):
        self.brand_id = brand_id
        self._metrics: Tuple[MetricDefinition, ...] = tuple(metrics)
        self._by_key: Dict[str, MetricDefinition] = {}
        self._by_name: Dict[str, MetricDefinition] = {}

        for metric in self._metrics:
            if metric.key in self._by_key:
                raise DuplicateMetricKeyError(metric.key)
            self._by_key[metric.key] = metric
            self._by_name.setdefault(metric.name, metric)

        self._evaluation_order = self._topological_order()

    def __iter__(self) -> Iterator[MetricDefinition]:
        return iter(self._metrics)

    def __len__(self) -> int:
        return len(self._metrics)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __repr__(self) -> str:
        return f"MetricCatalog({self.brand_id!r}, {len(self._metrics)} metrics)"

    @property
    def metrics(self) -> Tuple[MetricDefinition, ...]:
        """Definitions in declared (display) order."""
        return self._metrics

    @property
    def evaluation_order(self) -> Tuple[MetricDefinition, ...]:
        """Definitions in dependency-safe order."""
        return self._evaluation_order

    def get(self, key: str) -> Optional[MetricDefinition]:
        return self._by_key.get(key)

    def by_name(self, name: str) -> Optional[MetricDefinition]:
        return self._by_name.get(name)

    def resolve(self, key_or_name: str) -> Optional[MetricDefinition]:
        """Find a metric by key first, then by display name."""
        return self._by_key.get(key_or_name) or self._by_name.get(key_or_name)

    def keys(self) -> List[str]:
        return [m.key for m in self._metrics]

    def is_percentage(self, key: str) -> bool:
        metric = self._by_key.get(key)
        return metric.is_percentage if metric else False

    def _topological_order(self) -> Tuple[MetricDefinition, ...]:
        """
        Order metrics so every formula input precedes its dependents.

        Kahn's algorithm over edges between catalog keys only; references
        to keys outside the catalog are raw inputs and impose no order.
        Ready metrics are always taken in declared order, so a catalog
        that is already ordered comes back unchanged.
        """
        position = {m.key: i for i, m in enumerate(self._metrics)}
        in_degree: Dict[str, int] = {m.key: 0 for m in self._metrics}
        dependents: Dict[str, List[str]] = defaultdict(list)

        for metric in self._metrics:
            for dep in set(metric.dependencies()):
                if dep in self._by_key and dep != metric.key:
                    in_degree[metric.key] += 1
                    dependents[dep].append(metric.key)
                elif dep == metric.key:
                    raise CatalogCycleError([metric.key])

        ready = sorted((k for k, d in in_degree.items() if d == 0), key=position.__getitem__)
        ordered: List[str] = []

        while ready:
            key = ready.pop(0)
            ordered.append(key)
            for dependent in dependents[key]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)
            ready.sort(key=position.__getitem__)

        if len(ordered) != len(self._metrics):
            stuck = [k for k, d in in_degree.items() if d > 0]
            raise CatalogCycleError(stuck)

        return tuple(self._by_key[k] for k in ordered)


# =============================================================================
# BRAND CATALOGS
# =============================================================================

GMC_CHEVROLET_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition("total_sales", "Total Sales", DOLLAR, "Total revenue for the period", ABOVE),
    MetricDefinition("gp_net", "GP Net", DOLLAR, "Gross profit after costs", ABOVE),
    MetricDefinition(
        "gp_percent", "GP %", PERCENT, "Gross profit margin", ABOVE,
        Ratio("gp_net", "total_sales"),
    ),
    MetricDefinition("sales_expense", "Sales Expense", DOLLAR, "Total sales expenses", BELOW),
    MetricDefinition(
        "sales_expense_percent", "Sales Expense %", PERCENT, "Sales expenses as % of GP Net", BELOW,
        Ratio("sales_expense", "gp_net"),
    ),
    MetricDefinition("semi_fixed_expense", "Semi Fixed Expense", DOLLAR, "Semi-fixed expenses", BELOW),
    MetricDefinition(
        "semi_fixed_expense_percent", "Semi Fixed Expense %", PERCENT,
        "Semi-fixed expenses as % of GP Net", BELOW,
        Ratio("semi_fixed_expense", "gp_net"),
    ),
    MetricDefinition(
        "net_selling_gross", "Net Selling Gross", DOLLAR,
        "GP Net less Sales Expense less Semi Fixed Expense", ABOVE,
        Subtract("gp_net", ("sales_expense", "semi_fixed_expense")),
    ),
    MetricDefinition("total_fixed_expense", "Total Fixed Expense", DOLLAR, "Total fixed expenses", BELOW),
    MetricDefinition(
        "department_profit", "Department Profit", DOLLAR,
        "GP Net less Sales Expense less Semi Fixed Expense less Fixed Expense", ABOVE,
        Subtract("gp_net", ("sales_expense", "semi_fixed_expense", "total_fixed_expense")),
    ),
    MetricDefinition("parts_transfer", "Parts Transfer", DOLLAR, "Internal parts transfers", ABOVE),
    MetricDefinition(
        "net", "Net Operating Profit", DOLLAR, "Department Profit plus Parts Transfer", ABOVE,
        Complex("department_profit", (), ("parts_transfer",)),
    ),
    MetricDefinition(
        "return_on_gross", "Return on Gross", PERCENT, "Department Profit divided by GP Net", ABOVE,
        Ratio("department_profit", "gp_net"),
    ),
)

# Ford adds Dealer Salary and derives Parts Transfer from Adjusted Selling Gross
FORD_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition("total_sales", "Total Sales", DOLLAR, "Total revenue for the period", ABOVE),
    MetricDefinition("gp_net", "GP Net", DOLLAR, "Gross profit after costs", ABOVE),
    MetricDefinition(
        "gp_percent", "GP %", PERCENT, "Gross profit margin", ABOVE,
        Ratio("gp_net", "total_sales"),
    ),
    MetricDefinition("sales_expense", "Sales Expense", DOLLAR, "Total sales expenses", BELOW),
    MetricDefinition(
        "sales_expense_percent", "Sales Expense %", PERCENT, "Sales expenses as % of GP Net", BELOW,
        Ratio("sales_expense", "gp_net"),
    ),
    MetricDefinition(
        "adjusted_selling_gross", "Adjusted Selling Gross", DOLLAR,
        "Net Selling Gross including part gross transfer", ABOVE,
    ),
    MetricDefinition(
        "net_selling_gross", "Net Selling Gross", DOLLAR, "GP Net less Sales Expense", ABOVE,
        Subtract("gp_net", ("sales_expense",)),
    ),
    MetricDefinition("total_fixed_expense", "Total Fixed Expense", DOLLAR, "Total fixed expenses", BELOW),
    MetricDefinition(
        "department_profit", "Department Profit", DOLLAR,
        "GP Net less Sales Expense less Fixed Expense", ABOVE,
        Subtract("gp_net", ("sales_expense", "total_fixed_expense")),
    ),
    MetricDefinition("dealer_salary", "Dealer Salary", DOLLAR, "Dealer salary expense", BELOW),
    MetricDefinition(
        "parts_transfer", "Parts Transfer", DOLLAR,
        "Adjusted Selling Gross less Net Selling Gross", ABOVE,
        Subtract("adjusted_selling_gross", ("net_selling_gross",)),
    ),
    MetricDefinition(
        "net", "Net Operating Profit", DOLLAR,
        "Department Profit less Dealer Salary less Parts Transfer", ABOVE,
        Subtract("department_profit", ("dealer_salary", "parts_transfer")),
    ),
    MetricDefinition(
        "return_on_gross", "Return on Gross", PERCENT, "Department Profit divided by GP Net", ABOVE,
        Ratio("department_profit", "gp_net"),
    ),
)

# Nissan derives Semi Fixed Expense from Total Direct Expenses
NISSAN_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition("total_sales", "Total Sales", DOLLAR, "Total revenue for the period", ABOVE),
    MetricDefinition("gp_net", "GP Net", DOLLAR, "Gross profit after costs", ABOVE),
    MetricDefinition(
        "gp_percent", "GP %", PERCENT, "Gross profit margin", ABOVE,
        Ratio("gp_net", "total_sales"),
    ),
    MetricDefinition("sales_expense", "Sales Expense", DOLLAR, "Total sales expenses", BELOW),
    MetricDefinition(
        "sales_expense_percent", "Sales Expense %", PERCENT, "Sales expenses as % of GP Net", BELOW,
        Ratio("sales_expense", "gp_net"),
    ),
    MetricDefinition("total_direct_expenses", "Total Direct Expenses", DOLLAR, "Total direct expenses", BELOW),
    MetricDefinition(
        "semi_fixed_expense", "Semi Fixed Expense", DOLLAR, "Total Direct Expenses less Sales Expense", BELOW,
        Subtract("total_direct_expenses", ("sales_expense",)),
    ),
    MetricDefinition(
        "semi_fixed_expense_percent", "Semi Fixed Expense %", PERCENT,
        "Semi-fixed expenses as % of GP Net", BELOW,
        Ratio("semi_fixed_expense", "gp_net"),
    ),
    MetricDefinition(
        "net_selling_gross", "Net Selling Gross", DOLLAR,
        "GP Net less Sales Expense less Semi Fixed Expense", ABOVE,
        Subtract("gp_net", ("sales_expense", "semi_fixed_expense")),
    ),
    MetricDefinition("total_fixed_expense", "Total Fixed Expense", DOLLAR, "Total fixed expenses", BELOW),
    MetricDefinition(
        "department_profit", "Department Profit", DOLLAR,
        "GP Net less Sales Expense less Semi Fixed Expense less Fixed Expense", ABOVE,
        Subtract("gp_net", ("sales_expense", "semi_fixed_expense", "total_fixed_expense")),
    ),
    MetricDefinition(
        "return_on_gross", "Return on Gross", PERCENT, "Department Profit divided by GP Net", ABOVE,
        Ratio("department_profit", "gp_net"),
    ),
)

# Mazda statements have no Parts Transfer / Net Operating Profit
MAZDA_METRICS: Tuple[MetricDefinition, ...] = tuple(
    m for m in GMC_CHEVROLET_METRICS if m.key not in ("parts_transfer", "net")
)

DEFAULT_BRAND_ID = "gmc_chevrolet"

# Registration order matters: the first brand whose patterns match wins
BRAND_PATTERNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("nissan", ("nissan",)),
    ("ford", ("ford",)),
    ("mazda", ("mazda",)),
    ("gmc_chevrolet", ("gmc", "chevrolet", "chevy", "buick", "cadillac")),
)

BRAND_CATALOGS: Dict[str, Tuple[MetricDefinition, ...]] = {
    "nissan": NISSAN_METRICS,
    "ford": FORD_METRICS,
    "mazda": MAZDA_METRICS,
    "gmc_chevrolet": GMC_CHEVROLET_METRICS,
}


# =============================================================================
# PROVIDERS
# =============================================================================

class FallbackPolicy(str, Enum):
    """
    What to do when a brand matches no registered catalog.

    DEFAULT: use the default catalog (logged at WARNING)
    STRICT: raise UnknownBrandError
    """
    DEFAULT = "default"
    STRICT = "strict"


class CatalogProvider(Protocol):
    """Capability the engine needs: brand -> catalog."""

    def lookup(self, brand: Optional[str]) -> MetricCatalog:
        ...


class StaticCatalogProvider:
    """
    CatalogProvider backed by in-memory brand tables.

    WHAT: Matches a free-form brand string ("2024 Ford Lincoln") to a
    registered catalog by case-insensitive substring.

    WHY: Brand names come from store records and are not normalized.

    PARAMETERS:
        catalogs: brand_id -> metric definitions (display order)
        patterns: (brand_id, substrings) checked in order; defaults to
                  matching the brand_id itself
        default_brand: catalog used under FallbackPolicy.DEFAULT
        fallback: unknown-brand policy

    USAGE:
        provider = StaticCatalogProvider(fallback=FallbackPolicy.STRICT)
        catalog = provider.lookup("Nissan of Springfield")
    """

    def __init__(
        self,
        catalogs: Optional[Mapping[str, Sequence[MetricDefinition]]] = None,
        patterns: Optional[Sequence[Tuple[str, Sequence[str]]]] = None,
        default_brand: str = DEFAULT_BRAND_ID,
        fallback: FallbackPolicy = FallbackPolicy.DEFAULT,
    ):
        source = BRAND_CATALOGS if catalogs is None else catalogs
        self._catalogs: Dict[str, MetricCatalog] = {
            brand_id: MetricCatalog(brand_id, metrics) for brand_id, metrics in source.items()
        }
        if patterns is None:
            patterns = BRAND_PATTERNS if catalogs is None else [(b, (b,)) for b in source]
        self._patterns = [(b, tuple(p.lower() for p in pats)) for b, pats in patterns]
        if fallback == FallbackPolicy.DEFAULT and default_brand not in self._catalogs:
            raise UnknownBrandError(default_brand)
        self.default_brand = default_brand
        self.fallback = FallbackPolicy(fallback)

    @property
    def brand_ids(self) -> List[str]:
        return list(self._catalogs)

    def get(self, brand_id: str) -> MetricCatalog:
        """Catalog by exact brand id."""
        try:
            return self._catalogs[brand_id]
        except KeyError:
            raise UnknownBrandError(brand_id) from None

    def match(self, brand: Optional[str]) -> Optional[str]:
        """Brand id for a free-form brand string, or None."""
        if not brand:
            return None
        lowered = brand.lower()
        for brand_id, substrings in self._patterns:
            if any(s in lowered for s in substrings):
                return brand_id
        return None

    def lookup(self, brand: Optional[str]) -> MetricCatalog:
        brand_id = self.match(brand)
        if brand_id is not None:
            return self._catalogs[brand_id]

        if self.fallback == FallbackPolicy.STRICT:
            raise UnknownBrandError(brand)

        if brand:
            logger.warning(
                f"[CATALOG] No catalog for brand {brand!r}, falling back to '{self.default_brand}'"
            )
        return self._catalogs[self.default_brand]


@lru_cache()
def default_catalog_provider() -> StaticCatalogProvider:
    """Return the cached provider configured from settings."""
    from dealermetrics.settings import get_settings

    settings = get_settings()
    return StaticCatalogProvider(
        default_brand=settings.DEFAULT_BRAND,
        fallback=FallbackPolicy(settings.BRAND_FALLBACK),
    )


def get_metrics_for_brand(
    brand: Optional[str],
    provider: Optional[CatalogProvider] = None,
) -> List[MetricDefinition]:
    """
    Ordered metric definitions for a brand.

    WHAT: Convenience wrapper over a CatalogProvider.

    PARAMETERS:
        brand: Free-form brand string, or None
        provider: Provider to use; the settings-configured default otherwise

    RETURNS:
        Metric definitions in display order (a fresh list, safe to mutate)

    EXAMPLES:
        >>> [m.key for m in get_metrics_for_brand("Mazda")][-1]
        'return_on_gross'
    """
    provider = provider or default_catalog_provider()
    return list(provider.lookup(brand).metrics)
