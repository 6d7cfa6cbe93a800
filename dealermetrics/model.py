"""
Metric Model Definition
=======================

Data types describing WHAT a financial metric is, not how it is computed.

WHY THIS FILE EXISTS
--------------------
Every statement page needs the same facts about a metric:
- Its stable key and display name
- Whether it is a dollar amount or a percentage
- Whether it is stored directly or derived from other metrics
- Whether lower values are better (expenses) or higher (profit)

This file holds those definitions. Brand catalogs (catalog.py) are built
from them, and every pipeline stage reads them.

CALCULATION TYPES
-----------------
    Ratio(numerator, denominator)
        percentage = numerator / denominator * 100

    Subtract(base, deductions)
        dollar = base - sum(deductions)

    Complex(base, deductions, additions)
        dollar = base - sum(deductions) + sum(additions)

    None
        value is a raw stored quantity

RELATED FILES
-------------
- dealermetrics/catalog.py: Brand catalogs built from MetricDefinition
- dealermetrics/formulas.py: Evaluates the calculation types
- dealermetrics/refs.py: References to catalog metrics and sub-metrics
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


# =============================================================================
# ENUMS: Type-safe classifications
# =============================================================================

class ValueType(str, Enum):
    """
    How a metric's value is expressed.

    DOLLAR values are summed across months.
    PERCENTAGE values are never summed: catalog percentages are recomputed
    from their dollar inputs, percentage sub-metrics are averaged.
    """
    DOLLAR = "dollar"
    PERCENTAGE = "percentage"


class TargetDirection(str, Enum):
    """
    Which direction counts as an improvement.

    ABOVE: higher is better (sales, gross profit)
    BELOW: lower is better (expenses); variance sign is flipped
    """
    ABOVE = "above"
    BELOW = "below"


# =============================================================================
# CALCULATIONS
# =============================================================================

@dataclass(frozen=True)
class Ratio:
    """Percentage calculation: numerator / denominator * 100."""
    numerator: str
    denominator: str

    def dependencies(self) -> Tuple[str, ...]:
        return (self.numerator, self.denominator)


@dataclass(frozen=True)
class Subtract:
    """Dollar calculation: base minus the sum of deductions."""
    base: str
    deductions: Tuple[str, ...] = ()

    def dependencies(self) -> Tuple[str, ...]:
        return (self.base,) + tuple(self.deductions)


@dataclass(frozen=True)
class Complex:
    """Dollar calculation: base minus deductions plus additions."""
    base: str
    deductions: Tuple[str, ...] = ()
    additions: Tuple[str, ...] = ()

    def dependencies(self) -> Tuple[str, ...]:
        return (self.base,) + tuple(self.deductions) + tuple(self.additions)


Calculation = Union[Ratio, Subtract, Complex]


# =============================================================================
# METRIC DEFINITION
# =============================================================================

@dataclass(frozen=True)
class MetricDefinition:
    """
    Definition of a single catalog metric.

    WHAT: Describes a metric's identity, type and (optional) formula.

    WHY: Centralizes everything the pipeline needs to know about a metric:
    - Key used in stored entries (e.g., "gp_net")
    - Display name used in result rows (e.g., "GP Net")
    - Dollar vs percentage semantics for aggregation
    - Formula for derived metrics
    - Improvement direction for variance

    PARAMETERS:
        key: Stable identifier, unique within a brand catalog
        name: Display label
        value_type: DOLLAR or PERCENTAGE
        description: Human-readable explanation
        target_direction: ABOVE (default) or BELOW
        calculation: Ratio / Subtract / Complex, or None for stored metrics

    EXAMPLES:
        >>> MetricDefinition(
        ...     key="gp_percent",
        ...     name="GP %",
        ...     value_type=ValueType.PERCENTAGE,
        ...     calculation=Ratio("gp_net", "total_sales"),
        ... ).is_percentage_ratio
        True
    """
    key: str
    name: str
    value_type: ValueType = ValueType.DOLLAR
    description: str = ""
    target_direction: TargetDirection = TargetDirection.ABOVE
    calculation: Optional[Calculation] = None

    @property
    def is_derived(self) -> bool:
        return self.calculation is not None

    @property
    def is_percentage(self) -> bool:
        return self.value_type == ValueType.PERCENTAGE

    @property
    def is_percentage_ratio(self) -> bool:
        """True for percentage metrics computed as a ratio of dollar metrics."""
        return self.is_percentage and isinstance(self.calculation, Ratio)

    def dependencies(self) -> Tuple[str, ...]:
        """Keys this metric's formula reads, in formula order."""
        if self.calculation is None:
            return ()
        return self.calculation.dependencies()
