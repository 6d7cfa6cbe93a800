"""
Metric References
=================

Typed references to catalog metrics and sub-metrics, and the ONE place
that knows about the `sub:` string encoding.

WHY THIS FILE EXISTS
--------------------
Stored entries identify line items with composite strings:

    sub:<parentKey>:<orderIndex>:<name>     e.g. sub:sales_expense:003:Advertising
    sub:<parentKey>:<name>                  legacy, no order index

Letting those strings travel through aggregation and derivation means
every stage re-splits them. Instead, keys are parsed once at ingestion
into a tagged variant:

    PlainRef(key)                      -> a catalog metric ("gp_net")
    SubRef(parent_key, name, order)    -> a line item under a catalog metric

and formatted back only at the output boundary.

IDENTITY
--------
A SubRef is identified by (parent_key, name). The order index is display
metadata only, so "Labor" under total_sales and "Labor" under gp_net are
two distinct refs, while the same line item imported with different order
indexes in different months is one ref.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from dealermetrics.errors import MetricRefError


SUB_PREFIX = "sub:"
SUB_DISPLAY_PREFIX = "↳ "

# Legacy keys without an order index sort after every indexed key
UNORDERED_INDEX = 999


@dataclass(frozen=True)
class PlainRef:
    """Reference to a catalog metric (or any raw key without the sub: prefix)."""
    key: str

    @property
    def is_sub(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class SubRef:
    """
    Reference to a sub-metric line item nested under a parent metric.

    PARAMETERS:
        parent_key: Catalog metric the line item rolls up into
        name: Line item name as imported (may itself contain ':')
        order_index: Statement order, display only (None for legacy keys)
    """
    parent_key: str
    name: str
    order_index: Optional[int] = field(default=None, compare=False)

    @property
    def is_sub(self) -> bool:
        return True

    @property
    def identity(self) -> tuple:
        return (self.parent_key, self.name)

    @property
    def sort_index(self) -> int:
        return self.order_index if self.order_index is not None else UNORDERED_INDEX

    @property
    def display_name(self) -> str:
        return f"{SUB_DISPLAY_PREFIX}{self.name}"

    def under(self, parent_key: str) -> "SubRef":
        """Same line item re-homed under another parent."""
        return SubRef(parent_key, self.name, self.order_index)

    def __str__(self) -> str:
        return format_metric_ref(self)


MetricRef = Union[PlainRef, SubRef]


def is_sub_key(raw: str) -> bool:
    return raw.startswith(SUB_PREFIX)


def parse_metric_ref(raw: str) -> MetricRef:
    """
    Parse a stored metric key into a MetricRef.

    WHAT: Converts `gp_net` -> PlainRef, `sub:gp_net:002:Labor` -> SubRef.

    RULES:
        - Keys without the `sub:` prefix are plain references
        - `sub:<parent>:<digits>:<name...>` carries an order index
        - Anything else after the parent is the name (legacy format);
          names may contain ':'

    RAISES:
        MetricRefError: if a sub key lacks a parent key or a name

    EXAMPLES:
        >>> parse_metric_ref("sub:sales_expense:003:Advertising")
        SubRef(parent_key='sales_expense', name='Advertising', order_index=3)

        >>> parse_metric_ref("sub:gp_net:Labor")
        SubRef(parent_key='gp_net', name='Labor', order_index=None)
    """
    if not is_sub_key(raw):
        if not raw:
            raise MetricRefError(raw, "empty key")
        return PlainRef(raw)

    parts = raw.split(":")
    if len(parts) < 3:
        raise MetricRefError(raw, "expected sub:<parent>:<name>")

    parent_key = parts[1]
    if not parent_key:
        raise MetricRefError(raw, "missing parent key")

    if len(parts) >= 4 and parts[2].isdigit():
        order_index: Optional[int] = int(parts[2])
        name = ":".join(parts[3:])
    else:
        order_index = None
        name = ":".join(parts[2:])

    if not name:
        raise MetricRefError(raw, "missing sub-metric name")

    return SubRef(parent_key=parent_key, name=name, order_index=order_index)


def format_metric_ref(ref: MetricRef) -> str:
    """
    Format a MetricRef back into its stored key.

    Order indexes are zero-padded to three digits, matching how
    statement imports write them.
    """
    if isinstance(ref, PlainRef):
        return ref.key
    if ref.order_index is None:
        return f"{SUB_PREFIX}{ref.parent_key}:{ref.name}"
    return f"{SUB_PREFIX}{ref.parent_key}:{ref.order_index:03d}:{ref.name}"
