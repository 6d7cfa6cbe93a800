"""
Metric Catalog Tests (Unit)
===========================

WHAT: Catalog validation, topological order and brand lookup.
WHY: Evaluation relies on a verified acyclic order, and brand fallback
     must follow the configured policy instead of guessing silently.
"""

import logging

import pytest

from dealermetrics.catalog import (
    BRAND_CATALOGS,
    FORD_METRICS,
    GMC_CHEVROLET_METRICS,
    FallbackPolicy,
    MetricCatalog,
    StaticCatalogProvider,
    get_metrics_for_brand,
)
from dealermetrics.errors import CatalogCycleError, DuplicateMetricKeyError, UnknownBrandError
from dealermetrics.model import MetricDefinition, Ratio, Subtract, ValueType

from conftest import SIMPLE_METRICS


class TestMetricCatalog:
    def test_declared_order_is_kept_when_already_valid(self):
        catalog = MetricCatalog("gmc_chevrolet", GMC_CHEVROLET_METRICS)

        assert [m.key for m in catalog.evaluation_order] == [m.key for m in GMC_CHEVROLET_METRICS]

    def test_every_brand_catalog_is_acyclic(self):
        for brand_id, metrics in BRAND_CATALOGS.items():
            catalog = MetricCatalog(brand_id, metrics)
            seen = set()
            for metric in catalog.evaluation_order:
                for dep in metric.dependencies():
                    if dep in catalog:
                        assert dep in seen, f"{brand_id}: {metric.key} evaluated before {dep}"
                seen.add(metric.key)

    def test_out_of_order_catalog_is_sorted_topologically(self):
        metrics = (
            MetricDefinition(
                "return_on_gross", "Return on Gross", ValueType.PERCENTAGE,
                calculation=Ratio("gross_profit", "investment"),
            ),
            MetricDefinition("gross_profit", "Gross Profit", calculation=Subtract("sales", ("cost",))),
        )
        catalog = MetricCatalog("unordered", metrics)

        assert [m.key for m in catalog.evaluation_order] == ["gross_profit", "return_on_gross"]
        # Display order is untouched
        assert [m.key for m in catalog] == ["return_on_gross", "gross_profit"]

    def test_cycle_is_rejected_at_load_time(self):
        metrics = (
            MetricDefinition("a", "A", calculation=Subtract("b")),
            MetricDefinition("b", "B", calculation=Subtract("a")),
        )

        with pytest.raises(CatalogCycleError) as exc:
            MetricCatalog("cyclic", metrics)

        assert exc.value.keys == ["a", "b"]

    def test_self_reference_is_a_cycle(self):
        with pytest.raises(CatalogCycleError):
            MetricCatalog("self", (MetricDefinition("a", "A", calculation=Subtract("a", ("x",))),))

    def test_duplicate_keys_are_rejected(self):
        with pytest.raises(DuplicateMetricKeyError):
            MetricCatalog("dup", (MetricDefinition("a", "A"), MetricDefinition("a", "Other A")))

    def test_resolve_by_key_or_display_name(self):
        catalog = MetricCatalog("gmc_chevrolet", GMC_CHEVROLET_METRICS)

        assert catalog.resolve("gp_percent").name == "GP %"
        assert catalog.resolve("GP %").key == "gp_percent"
        assert catalog.resolve("nope") is None

    def test_is_percentage(self):
        catalog = MetricCatalog("simple", SIMPLE_METRICS)

        assert catalog.is_percentage("return_on_gross")
        assert not catalog.is_percentage("sales")
        assert not catalog.is_percentage("unknown")


class TestBrandCatalogs:
    def test_ford_derives_parts_transfer(self):
        catalog = MetricCatalog("ford", FORD_METRICS)

        assert catalog.get("parts_transfer").calculation == Subtract(
            "adjusted_selling_gross", ("net_selling_gross",)
        )
        assert "dealer_salary" in catalog

    def test_mazda_has_no_parts_transfer_or_net(self):
        keys = [m.key for m in get_metrics_for_brand("Mazda", provider=StaticCatalogProvider())]

        assert "parts_transfer" not in keys
        assert "net" not in keys
        assert keys[-1] == "return_on_gross"

    def test_get_metrics_for_brand_returns_a_fresh_list(self):
        provider = StaticCatalogProvider()
        first = get_metrics_for_brand("Ford", provider=provider)
        first.clear()

        assert len(get_metrics_for_brand("Ford", provider=provider)) == len(FORD_METRICS)


class TestStaticCatalogProvider:
    @pytest.mark.parametrize(
        "brand,expected",
        [
            ("Ford", "ford"),
            ("2024 FORD Lincoln of Springfield", "ford"),
            ("nissan", "nissan"),
            ("Chevy Trucks", "gmc_chevrolet"),
            ("Buick GMC", "gmc_chevrolet"),
            ("Mazda", "mazda"),
        ],
    )
    def test_brand_matching(self, brand, expected):
        assert StaticCatalogProvider().match(brand) == expected

    def test_unknown_brand_falls_back_with_warning(self, caplog):
        provider = StaticCatalogProvider()

        with caplog.at_level(logging.WARNING):
            catalog = provider.lookup("Toyota")

        assert catalog.brand_id == "gmc_chevrolet"
        assert "Toyota" in caplog.text

    def test_missing_brand_uses_default_silently(self, caplog):
        with caplog.at_level(logging.WARNING):
            catalog = StaticCatalogProvider().lookup(None)

        assert catalog.brand_id == "gmc_chevrolet"
        assert caplog.text == ""

    def test_strict_policy_raises(self):
        provider = StaticCatalogProvider(fallback=FallbackPolicy.STRICT)

        with pytest.raises(UnknownBrandError):
            provider.lookup("Toyota")

        assert provider.lookup("Ford").brand_id == "ford"

    def test_custom_catalogs_match_their_ids(self):
        provider = StaticCatalogProvider({"simple": SIMPLE_METRICS}, default_brand="simple")

        assert provider.brand_ids == ["simple"]
        assert provider.lookup("Simple Motors").brand_id == "simple"

    def test_default_brand_must_exist(self):
        with pytest.raises(UnknownBrandError):
            StaticCatalogProvider({"simple": SIMPLE_METRICS}, default_brand="missing")

    def test_get_by_exact_id(self):
        provider = StaticCatalogProvider()

        assert provider.get("nissan").brand_id == "nissan"
        with pytest.raises(UnknownBrandError):
            provider.get("Nissan of Springfield")
