"""Shared fixtures for the engine unit tests

WHAT: Small fixed catalogs, an entry factory and isolated engine instances.
WHY: Tests never depend on environment settings or the process-wide
     telemetry collector.
"""

import pytest

from dealermetrics.catalog import GMC_CHEVROLET_METRICS, MetricCatalog, StaticCatalogProvider
from dealermetrics.engine import MetricEngine
from dealermetrics.model import MetricDefinition, Ratio, Subtract, TargetDirection, ValueType
from dealermetrics.schema import RawEntry
from dealermetrics.telemetry import TelemetryCollector


# Minimal catalog: two stored inputs, a derived profit, and a ratio on the derived profit
SIMPLE_METRICS = (
    MetricDefinition("sales", "Sales"),
    MetricDefinition("cost", "Cost", target_direction=TargetDirection.BELOW),
    MetricDefinition("investment", "Investment"),
    MetricDefinition("gross_profit", "Gross Profit", calculation=Subtract("sales", ("cost",))),
    MetricDefinition(
        "return_on_gross", "Return on Gross", ValueType.PERCENTAGE,
        calculation=Ratio("gross_profit", "investment"),
    ),
)


def make_entry(
    metric_name,
    value,
    month="2025-01",
    store_id="s1",
    department_id="d1",
    **kwargs,
):
    return RawEntry(
        store_id=store_id,
        department_id=department_id,
        metric_name=metric_name,
        month=month,
        value=value,
        **kwargs,
    )


@pytest.fixture
def entry():
    """Factory for RawEntry with sensible defaults."""
    return make_entry


@pytest.fixture
def simple_catalog():
    return MetricCatalog("simple", SIMPLE_METRICS)


@pytest.fixture
def gmc_catalog():
    return MetricCatalog("gmc_chevrolet", GMC_CHEVROLET_METRICS)


@pytest.fixture
def telemetry():
    return TelemetryCollector(enabled=True, buffer_size=100)


@pytest.fixture
def simple_engine(telemetry):
    """Engine whose only catalog is SIMPLE_METRICS."""
    provider = StaticCatalogProvider({"simple": SIMPLE_METRICS}, default_brand="simple")
    return MetricEngine(provider=provider, telemetry=telemetry)


@pytest.fixture
def brand_engine(telemetry):
    """Engine over the real brand catalogs."""
    return MetricEngine(provider=StaticCatalogProvider(), telemetry=telemetry)
