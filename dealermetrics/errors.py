"""
Metric Engine Errors
====================

Exception types for contract violations in the metric engine.

WHY THIS FILE EXISTS
--------------------
The engine is deliberately forgiving about the DATA it receives:
- Missing dependency values just omit the derived metric
- Zero denominators produce 0 (ratios) or None (variance)
- Periods with no entries produce "no data" rows

None of that raises. What DOES raise is a caller handing the engine
something that breaks its contract:
- A malformed PeriodSpec ("2025-13", end before start)
- A malformed `sub:` composite key passed to the parser
- A catalog whose formulas form a cycle
- An unknown brand while the strict fallback policy is active

Callers should treat these as programming errors, not user-facing
failures. Each error carries a machine-readable code for logging.

RELATED FILES
-------------
- dealermetrics/schema.py: Raises InvalidPeriodError from validators
- dealermetrics/refs.py: Raises MetricRefError
- dealermetrics/catalog.py: Raises CatalogCycleError, DuplicateMetricKeyError, UnknownBrandError
- dealermetrics/comparison.py: Raises ComparisonConfigError
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """
    Standard error codes for contract violations.

    WHAT: Machine-readable codes for error categorization and monitoring.
    """
    # Input contract errors
    INVALID_PERIOD = "ERR_001"
    MALFORMED_METRIC_REF = "ERR_002"
    INVALID_COMPARISON = "ERR_003"

    # Catalog errors
    CATALOG_CYCLE = "ERR_010"
    DUPLICATE_METRIC_KEY = "ERR_011"
    UNKNOWN_BRAND = "ERR_012"

    # Unknown errors
    INTERNAL_ERROR = "ERR_999"


class MetricEngineError(Exception):
    """
    Base exception for all metric engine errors.

    WHAT:
        Parent class for contract-violation exceptions raised by the engine.

    WHY:
        Allows catching every engine error with a single except clause
        while still being able to handle specific error types.

    USAGE:
        try:
            rows = engine.compute(request)
        except MetricEngineError as e:
            logger.error(f"Metric engine contract violation: {e}", extra=e.to_dict())
            raise
    """

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_user_message(self) -> str:
        """Message without the error code prefix."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary for logging/JSON serialization.

        RETURNS:
            Dictionary with code, message and any details
        """
        result: Dict[str, Any] = {
            "code": self.code.value,
            "error_type": type(self).__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class InvalidPeriodError(MetricEngineError, ValueError):
    """
    Period specification is malformed.

    Raised for months that are not `YYYY-MM`, months outside 1-12,
    or a custom range whose end precedes its start.

    Subclasses ValueError so pydantic validators surface it as a
    regular ValidationError.
    """

    code = ErrorCode.INVALID_PERIOD


class MetricRefError(MetricEngineError, ValueError):
    """
    Composite metric key could not be parsed.

    Raised by `parse_metric_ref` for keys such as `sub:` or `sub:parent`
    that lack a parent key or a sub-metric name.
    """

    code = ErrorCode.MALFORMED_METRIC_REF

    def __init__(self, raw: str, reason: str):
        super().__init__(f"Malformed metric key '{raw}': {reason}", details={"raw": raw})
        self.raw = raw


class ComparisonConfigError(MetricEngineError, ValueError):
    """Comparison mode requested without the input it needs."""

    code = ErrorCode.INVALID_COMPARISON


class CatalogCycleError(MetricEngineError):
    """
    Metric formulas reference each other in a cycle.

    WHAT:
        Raised when a catalog is built and its calculation graph is not
        acyclic.

    WHY:
        Evaluation happens in a single topological pass. A cycle means
        there is no valid order, so we fail fast at catalog-load time
        instead of producing silently wrong numbers at compute time.

    ATTRIBUTES:
        keys: Metric keys that participate in (or depend on) the cycle
    """

    code = ErrorCode.CATALOG_CYCLE

    def __init__(self, keys):
        self.keys = sorted(keys)
        super().__init__(
            f"Metric catalog has a dependency cycle involving: {', '.join(self.keys)}",
            details={"keys": self.keys},
        )


class DuplicateMetricKeyError(MetricEngineError):
    """Two definitions in one catalog share a key."""

    code = ErrorCode.DUPLICATE_METRIC_KEY

    def __init__(self, key: str):
        super().__init__(f"Duplicate metric key in catalog: '{key}'", details={"key": key})
        self.key = key


class UnknownBrandError(MetricEngineError, LookupError):
    """
    No catalog is registered for a brand under the strict fallback policy.

    RECOVERY:
        Register a catalog for the brand, or use FallbackPolicy.DEFAULT
        to substitute the default catalog.
    """

    code = ErrorCode.UNKNOWN_BRAND

    def __init__(self, brand: Optional[str]):
        super().__init__(f"No metric catalog registered for brand: {brand!r}", details={"brand": brand})
        self.brand = brand
