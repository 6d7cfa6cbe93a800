"""
Engine Telemetry
================

Observability for metric computations. Tracks every stage from request
receipt to result rows.

WHY THIS FILE EXISTS
--------------------
Statement pages recompute on every filter change. When a page is slow or a
figure looks wrong we need to know which stage ran, how long it took and
how much data it saw. This module provides:
- Structured log lines for every computation and stage
- Stage timings for performance monitoring
- A bounded in-memory buffer of recent events for debugging

TELEMETRY EVENTS
----------------
1. computation.started   - request received (period, mode, entry count)
2. stage.started / stage.completed
   - stage: aggregate, backfill, derive, compare, assemble
   - duration_ms, success
3. computation.completed - row_count, group_count, total duration
4. computation.failed    - error_type, error_message

USAGE
-----
```python
from dealermetrics.telemetry import get_telemetry

telemetry = get_telemetry()
with telemetry.track_computation(request) as ctx:
    with ctx.track_stage("aggregate"):
        snapshot = aggregate_entries(...)
    ctx.set_result(row_count=len(rows), group_count=len(snapshot.groups))
```

RELATED FILES
-------------
- dealermetrics/engine.py: Opens one context per compute() call
- dealermetrics/pipeline.py: Times the aggregate/backfill/derive stages
- dealermetrics/settings.py: TELEMETRY_ENABLED, TELEMETRY_MAX_EVENTS
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generator, List, Optional

from dealermetrics.schema import ComputeRequest

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class EventType(Enum):
    """Types of telemetry events."""
    COMPUTATION_STARTED = "computation.started"
    COMPUTATION_COMPLETED = "computation.completed"
    COMPUTATION_FAILED = "computation.failed"
    STAGE_STARTED = "stage.started"
    STAGE_COMPLETED = "stage.completed"


class Stage(Enum):
    """Pipeline stages for tracking."""
    AGGREGATE = "aggregate"
    BACKFILL = "backfill"
    DERIVE = "derive"
    COMPARE = "compare"
    ASSEMBLE = "assemble"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class TelemetryEvent:
    """
    Single telemetry event.

    WHAT: Structured record of something that happened in a computation.

    PARAMETERS:
        event_type: Category of event
        timestamp: When it happened (ISO format, UTC)
        computation_id: Unique identifier for tracing
        stage: Which pipeline stage
        duration_ms: How long the operation took
        success: Whether the operation succeeded
        data: Additional structured data

    LOGGING FORMAT:
        [ENGINE] event=stage.completed | computation_id=mc_ab12cd34ef56 | stage=derive | duration_ms=0.41
    """
    event_type: EventType
    timestamp: str
    computation_id: str
    stage: Optional[str] = None
    duration_ms: Optional[float] = None
    success: bool = True
    data: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "computation_id": self.computation_id,
            "stage": self.stage,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "data": self.data,
        }

    def to_log_line(self) -> str:
        """Format as structured log line."""
        parts = [
            f"event={self.event_type.value}",
            f"computation_id={self.computation_id}",
        ]

        if self.stage:
            parts.append(f"stage={self.stage}")

        if self.duration_ms is not None:
            parts.append(f"duration_ms={self.duration_ms:.2f}")

        if not self.success:
            parts.append("success=false")

        for key in ["period", "comparison_mode", "row_count", "error_type"]:
            if key in self.data:
                parts.append(f"{key}={self.data[key]}")

        return " | ".join(parts)


@dataclass
class ComputationMetrics:
    """
    Aggregated metrics for a single computation.

    PARAMETERS:
        computation_id: Unique identifier
        start_time: When the computation started
        end_time: When it ended (if finished)
        stages: Timing for each pipeline stage
        comparison_mode: Baseline source used
        group_count: Number of (store, department) groups
        row_count: Number of result rows
        success: Whether the computation succeeded
    """
    computation_id: str
    start_time: float
    end_time: Optional[float] = None
    stages: Dict[str, float] = dataclass_field(default_factory=dict)
    comparison_mode: Optional[str] = None
    group_count: int = 0
    row_count: int = 0
    success: bool = True

    @property
    def total_duration_ms(self) -> Optional[float]:
        """Total computation duration in milliseconds."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "computation_id": self.computation_id,
            "total_duration_ms": self.total_duration_ms,
            "stages": self.stages,
            "comparison_mode": self.comparison_mode,
            "group_count": self.group_count,
            "row_count": self.row_count,
            "success": self.success,
        }


def describe_period(request: ComputeRequest) -> str:
    """Short period label for log lines, e.g. month:2025-03."""
    period = request.period
    months = period.months()
    if len(months) == 1:
        return f"{period.type}:{months[0]}"
    return f"{period.type}:{months[0]}..{months[-1]}"


# =============================================================================
# COMPUTATION CONTEXT
# =============================================================================

class ComputationContext:
    """
    Context manager for tracking a single computation.

    WHAT: Tracks timing and events for one compute() call.

    WHY: Automatic timing, proper cleanup on error and structured event
    emission without cluttering the engine.

    USAGE:
        with telemetry.track_computation(request) as ctx:
            with ctx.track_stage("aggregate"):
                aggregate(...)

    PARAMETERS:
        collector: Parent TelemetryCollector
        computation_id: Unique identifier for this computation
        request: The ComputeRequest being executed
    """

    def __init__(
        self,
        collector: 'TelemetryCollector',
        computation_id: str,
        request: Optional[ComputeRequest] = None,
    ):
        self.collector = collector
        self.computation_id = computation_id
        self.request = request
        self.metrics = ComputationMetrics(computation_id=computation_id, start_time=time.perf_counter())
        if request is not None:
            self.metrics.comparison_mode = request.comparison_mode.value

    def emit(self, event_type: EventType, **kwargs) -> None:
        """
        Emit a telemetry event.

        PARAMETERS:
            event_type: Type of event
            **kwargs: Additional event fields
        """
        event = TelemetryEvent(
            event_type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            computation_id=self.computation_id,
            **kwargs,
        )
        self.collector.record(event)

    @contextmanager
    def track_stage(self, stage: str) -> Generator[None, None, None]:
        """
        Context manager for tracking a pipeline stage.

        PARAMETERS:
            stage: Name of the stage (aggregate, derive, etc.)
        """
        start = time.perf_counter()
        self.emit(EventType.STAGE_STARTED, stage=stage)

        try:
            yield
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.metrics.stages[stage] = duration_ms
            self.emit(
                EventType.STAGE_COMPLETED,
                stage=stage,
                duration_ms=duration_ms,
                success=False,
                data={"error": str(e)},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.stages[stage] = duration_ms
        self.emit(EventType.STAGE_COMPLETED, stage=stage, duration_ms=duration_ms, success=True)

    def set_result(self, row_count: int = 0, group_count: int = 0) -> None:
        """Record the size of the computed result."""
        self.metrics.row_count = row_count
        self.metrics.group_count = group_count

    def __enter__(self) -> 'ComputationContext':
        """Start tracking the computation."""
        data: Dict[str, Any] = {}
        if self.request is not None:
            data = {
                "period": describe_period(self.request),
                "comparison_mode": self.request.comparison_mode.value,
                "entry_count": len(self.request.entries),
                "selection_count": len(self.request.selections),
            }
        self.emit(EventType.COMPUTATION_STARTED, data=data)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Finish tracking the computation."""
        self.metrics.end_time = time.perf_counter()
        duration_ms = self.metrics.total_duration_ms

        if exc_type is not None:
            self.metrics.success = False
            self.emit(
                EventType.COMPUTATION_FAILED,
                duration_ms=duration_ms,
                success=False,
                data={"error_type": exc_type.__name__, "error_message": str(exc_val)},
            )
        else:
            self.emit(
                EventType.COMPUTATION_COMPLETED,
                duration_ms=duration_ms,
                success=True,
                data={"row_count": self.metrics.row_count, "group_count": self.metrics.group_count},
            )

        self.collector.record_metrics(self.metrics)

        # Don't suppress exceptions
        return False


# =============================================================================
# TELEMETRY COLLECTOR
# =============================================================================

class TelemetryCollector:
    """
    Central telemetry collection for the engine.

    WHAT: Collects, logs and buffers telemetry events.

    USAGE:
        telemetry = TelemetryCollector()
        engine = MetricEngine(telemetry=telemetry)
        engine.compute(request)
        telemetry.get_stats()

    CONFIGURATION:
        get_telemetry() builds the default collector from settings:
        - DEALERMETRICS_TELEMETRY_ENABLED: true/false
        - DEALERMETRICS_TELEMETRY_MAX_EVENTS: events/metrics kept in memory
    """

    def __init__(self, enabled: bool = True, buffer_size: int = 1000):
        """
        PARAMETERS:
            enabled: Whether to collect telemetry
            buffer_size: Number of events/metrics to keep in memory
        """
        self.enabled = enabled
        self.buffer_size = buffer_size

        self._events: deque = deque(maxlen=buffer_size)
        self._metrics: deque = deque(maxlen=buffer_size)

        # Guards the buffers and counters; one collector is shared across threads
        self._lock = threading.Lock()
        self._computation_count = 0
        self._error_count = 0
        self._total_duration_ms = 0.0

    def track_computation(self, request: Optional[ComputeRequest] = None) -> ComputationContext:
        """
        Create a tracking context for one computation.

        RETURNS:
            ComputationContext to use as context manager
        """
        return ComputationContext(
            collector=self,
            computation_id=self._generate_computation_id(),
            request=request,
        )

    def record(self, event: TelemetryEvent) -> None:
        """Log and buffer one event."""
        if not self.enabled:
            return

        log_line = f"[ENGINE] {event.to_log_line()}"
        if not event.success:
            logger.warning(log_line)
        elif event.stage:
            logger.debug(log_line)
        else:
            logger.info(log_line)

        with self._lock:
            self._events.append(event)

            if event.event_type == EventType.COMPUTATION_COMPLETED:
                self._computation_count += 1
                if event.duration_ms:
                    self._total_duration_ms += event.duration_ms

            if event.event_type == EventType.COMPUTATION_FAILED:
                self._computation_count += 1
                self._error_count += 1

    def record_metrics(self, metrics: ComputationMetrics) -> None:
        """Buffer the final metrics of one computation."""
        if not self.enabled:
            return

        with self._lock:
            self._metrics.append(metrics)

    def get_recent_events(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Recent events as dicts, most recent first."""
        with self._lock:
            events = list(self._events)[-limit:]
        return [e.to_dict() for e in reversed(events)]

    def get_recent_metrics(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Recent computation metrics as dicts, most recent first."""
        with self._lock:
            metrics = list(self._metrics)[-limit:]
        return [m.to_dict() for m in reversed(metrics)]

    def get_stats(self) -> Dict[str, Any]:
        """
        Aggregated statistics.

        RETURNS:
            Dict with computation count, error rate, average duration and
            comparison mode distribution
        """
        with self._lock:
            computation_count = self._computation_count
            error_count = self._error_count
            total_duration_ms = self._total_duration_ms
            metrics = list(self._metrics)

        avg_duration = 0.0
        error_rate = 0.0
        if computation_count > 0:
            avg_duration = total_duration_ms / computation_count
            error_rate = error_count / computation_count

        mode_counts: Dict[str, int] = {}
        for m in metrics:
            if m.comparison_mode:
                mode_counts[m.comparison_mode] = mode_counts.get(m.comparison_mode, 0) + 1

        return {
            "computation_count": computation_count,
            "error_count": error_count,
            "error_rate": error_rate,
            "avg_duration_ms": avg_duration,
            "comparison_mode_distribution": mode_counts,
        }

    def reset(self) -> None:
        """Reset all telemetry data (for testing)."""
        with self._lock:
            self._events.clear()
            self._metrics.clear()
            self._computation_count = 0
            self._error_count = 0
            self._total_duration_ms = 0.0

    def _generate_computation_id(self) -> str:
        return f"mc_{uuid.uuid4().hex[:12]}"


# =============================================================================
# CONVENIENCE INSTANCES
# =============================================================================

_default_collector: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """
    Get the default telemetry collector.

    WHAT: Returns the process-wide collector, created from settings on
    first use.

    EXAMPLE:
        from dealermetrics.telemetry import get_telemetry
        get_telemetry().get_stats()
    """
    global _default_collector
    if _default_collector is None:
        from dealermetrics.settings import get_settings

        settings = get_settings()
        _default_collector = TelemetryCollector(
            enabled=settings.TELEMETRY_ENABLED,
            buffer_size=settings.TELEMETRY_MAX_EVENTS,
        )
    return _default_collector


def set_telemetry(collector: Optional[TelemetryCollector]) -> None:
    """
    Replace the default collector (for tests or custom configurations).

    Passing None makes the next get_telemetry() rebuild it from settings.
    """
    global _default_collector
    _default_collector = collector
