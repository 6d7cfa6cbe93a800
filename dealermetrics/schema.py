"""
Engine Schema
=============

Pydantic models defining the engine's input and output contract.

- RawEntry: one stored monthly value (from the data provider)
- TargetEntry: one stored quarterly target
- PeriodSpec: Month | FullYear | CustomRange
- ComputeRequest: everything one computation needs
- ResultRow: one (store, department, metric) line for the presentation layer

Months are `YYYY-MM` strings throughout, matching how entries are stored.

Related files:
- dealermetrics/engine.py: Consumes ComputeRequest, produces ResultRow
- dealermetrics/aggregator.py: Uses PeriodSpec.months()
- dealermetrics/comparison.py: Uses ComparisonMode and TargetEntry
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from dealermetrics.errors import ComparisonConfigError, InvalidPeriodError
from dealermetrics.model import TargetDirection


# =============================================================================
# MONTH HELPERS
# =============================================================================

def parse_month(month: str) -> Tuple[int, int]:
    """
    Split a `YYYY-MM` string into (year, month).

    RAISES:
        InvalidPeriodError: if the string is not a valid month
    """
    if not isinstance(month, str) or len(month) != 7 or month[4] != "-":
        raise InvalidPeriodError(f"Month must be formatted YYYY-MM, got {month!r}")
    year_part, month_part = month[:4], month[5:]
    if not (year_part.isdigit() and month_part.isdigit()):
        raise InvalidPeriodError(f"Month must be formatted YYYY-MM, got {month!r}")
    year, mon = int(year_part), int(month_part)
    if not 1 <= mon <= 12:
        raise InvalidPeriodError(f"Month number out of range in {month!r}")
    return year, mon


def format_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(month: str, years: int = 0, months: int = 0) -> str:
    """Move a `YYYY-MM` month by whole years and/or months."""
    year, mon = parse_month(month)
    index = (year + years) * 12 + (mon - 1) + months
    return format_month(index // 12, index % 12 + 1)


def month_range(start: str, end: str) -> List[str]:
    """Inclusive list of months from start to end."""
    start_year, start_mon = parse_month(start)
    end_year, end_mon = parse_month(end)
    first = start_year * 12 + start_mon - 1
    last = end_year * 12 + end_mon - 1
    return [format_month(i // 12, i % 12 + 1) for i in range(first, last + 1)]


def quarter_of(month: str) -> int:
    """Calendar quarter (1-4) of a `YYYY-MM` month."""
    _, mon = parse_month(month)
    return (mon - 1) // 3 + 1


def quarter_months(year: int, quarter: int) -> List[str]:
    """The three months of a calendar quarter."""
    if not 1 <= quarter <= 4:
        raise InvalidPeriodError(f"Quarter must be 1-4, got {quarter}")
    first = (quarter - 1) * 3 + 1
    return [format_month(year, m) for m in range(first, first + 3)]


def year_months(year: int) -> List[str]:
    return [format_month(year, m) for m in range(1, 13)]


def _validate_month(value: str) -> str:
    parse_month(value)
    return value


# =============================================================================
# PERIOD SPEC
# =============================================================================

class MonthPeriod(BaseModel):
    """
    A single month.

    Example: {"type": "month", "month": "2025-03"}
    """
    model_config = ConfigDict(frozen=True)

    type: Literal["month"] = "month"
    month: str

    @field_validator("month")
    @classmethod
    def check_month(cls, v):
        return _validate_month(v)

    @property
    def is_multi_month(self) -> bool:
        return False

    @property
    def year(self) -> int:
        return parse_month(self.month)[0]

    @property
    def reference_month(self) -> str:
        return self.month

    def months(self) -> List[str]:
        return [self.month]

    def shifted(self, years: int) -> "MonthPeriod":
        return MonthPeriod(month=shift_month(self.month, years=years))


class FullYearPeriod(BaseModel):
    """
    A full calendar year (January through December).

    Example: {"type": "full_year", "year": 2025}
    """
    model_config = ConfigDict(frozen=True)

    type: Literal["full_year"] = "full_year"
    year: int = Field(ge=1900, le=9999)

    @property
    def is_multi_month(self) -> bool:
        return True

    @property
    def reference_month(self) -> str:
        return format_month(self.year, 12)

    def months(self) -> List[str]:
        return year_months(self.year)

    def shifted(self, years: int) -> "FullYearPeriod":
        return FullYearPeriod(year=self.year + years)


class CustomRangePeriod(BaseModel):
    """
    An inclusive range of months.

    Example: {"type": "custom_range", "start_month": "2024-11", "end_month": "2025-02"}

    Validation:
    - Both months must be valid YYYY-MM
    - end_month must be >= start_month
    """
    model_config = ConfigDict(frozen=True)

    type: Literal["custom_range"] = "custom_range"
    start_month: str
    end_month: str

    @field_validator("start_month", "end_month")
    @classmethod
    def check_months(cls, v):
        return _validate_month(v)

    @model_validator(mode="after")
    def check_order(self):
        if parse_month(self.end_month) < parse_month(self.start_month):
            raise InvalidPeriodError(
                f"end_month {self.end_month} is before start_month {self.start_month}"
            )
        return self

    @property
    def is_multi_month(self) -> bool:
        return True

    @property
    def year(self) -> int:
        return parse_month(self.end_month)[0]

    @property
    def reference_month(self) -> str:
        return self.end_month

    def months(self) -> List[str]:
        return month_range(self.start_month, self.end_month)

    def shifted(self, years: int) -> "CustomRangePeriod":
        return CustomRangePeriod(
            start_month=shift_month(self.start_month, years=years),
            end_month=shift_month(self.end_month, years=years),
        )


PeriodSpec = Annotated[
    Union[MonthPeriod, FullYearPeriod, CustomRangePeriod],
    Field(discriminator="type"),
]

_period_adapter = TypeAdapter(PeriodSpec)


def parse_period(data) -> Union[MonthPeriod, FullYearPeriod, CustomRangePeriod]:
    """Validate a dict (or JSON-like object) into a PeriodSpec."""
    return _period_adapter.validate_python(data)


# =============================================================================
# ENTRIES
# =============================================================================

class RawEntry(BaseModel):
    """
    One stored monthly value for a (store, department, metric).

    `metric_name` is either a catalog key ("gp_net") or a sub-metric
    composite key ("sub:gp_net:002:Labor"). Names and brand are optional
    display/context fields joined in by the data provider.
    """
    model_config = ConfigDict(frozen=True)

    store_id: str
    department_id: str
    metric_name: str
    month: str
    value: Optional[float] = None

    store_name: str = ""
    department_name: str = ""
    brand: Optional[str] = None

    @field_validator("month")
    @classmethod
    def check_month(cls, v):
        return _validate_month(v)


class TargetEntry(BaseModel):
    """
    One stored target for a department metric and quarter.

    `metric_name` may be a catalog key or a sub-metric composite key.
    """
    model_config = ConfigDict(frozen=True)

    department_id: str
    metric_name: str
    quarter: int = Field(ge=1, le=4)
    year: int
    target_value: float
    target_direction: TargetDirection = TargetDirection.ABOVE


# =============================================================================
# COMPARISON
# =============================================================================

class ComparisonMode(str, Enum):
    """
    Where the baseline for variance comes from.

    - NONE: no baseline, variance is always None
    - TARGETS: stored targets for the reference month's quarter and year
    - YEAR_OVER_YEAR: same months, one year earlier
    - PREV_YEAR_AVG: monthly average over all 12 months of the prior year
    - PREV_YEAR_QUARTER: monthly average over one prior-year quarter
    - CURRENT_YEAR_AVG: monthly average over the months of the period's
      year that have data
    """
    NONE = "none"
    TARGETS = "targets"
    YEAR_OVER_YEAR = "year_over_year"
    PREV_YEAR_AVG = "prev_year_avg"
    PREV_YEAR_QUARTER = "prev_year_quarter"
    CURRENT_YEAR_AVG = "current_year_avg"


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================

class ComputeRequest(BaseModel):
    """
    Input for one engine computation.

    Fields:
    - entries: current raw entries; may span more months than `period`
      (the engine filters by period, while sub-metric discovery sees them all)
    - period: the time window to aggregate
    - selections: ordered selection ids (catalog keys, display names,
      or sub-metric composite keys)
    - comparison_mode: baseline source
    - targets: stored targets (TARGETS mode)
    - comparison_entries: raw entries for data-driven baselines
      (prior-year entries, or current-year entries for CURRENT_YEAR_AVG)
    - comparison_quarter: prior-year quarter (PREV_YEAR_QUARTER mode)
    - brand: brand used when entries carry none
    - combine_fixed: merge Parts and Service into "Fixed Combined"

    Validation:
    - PREV_YEAR_QUARTER requires comparison_quarter
    """
    model_config = ConfigDict(frozen=True)

    entries: List[RawEntry] = Field(default_factory=list)
    period: PeriodSpec
    selections: List[str] = Field(default_factory=list)
    comparison_mode: ComparisonMode = ComparisonMode.NONE
    targets: List[TargetEntry] = Field(default_factory=list)
    comparison_entries: List[RawEntry] = Field(default_factory=list)
    comparison_quarter: Optional[int] = Field(default=None, ge=1, le=4)
    brand: Optional[str] = None
    combine_fixed: bool = False

    @model_validator(mode="after")
    def check_comparison(self):
        if self.comparison_mode == ComparisonMode.PREV_YEAR_QUARTER and self.comparison_quarter is None:
            raise ComparisonConfigError("prev_year_quarter comparison requires comparison_quarter")
        return self


class ResultRow(BaseModel):
    """
    One rendered line: a metric for a store/department group.

    `value` is None when the group has no data for the metric, so the
    presentation layer can render "No data" instead of dropping the row.
    `target` is the baseline value, `variance` the signed percentage
    difference (positive = improvement).
    """
    model_config = ConfigDict(frozen=True)

    store_id: str
    store_name: str = ""
    department_id: Optional[str] = None
    department_name: str = ""
    metric_name: str
    selection_id: str
    value: Optional[float] = None
    target: Optional[float] = None
    variance: Optional[float] = None
