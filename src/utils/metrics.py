from __future__ import annotations

from collections.abc import Iterator

from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from src.services.gateway_services import GatewayServices


class GatewayCollector(Collector):
    """Reports cache and rate limiter state of one `GatewayServices` at scrape time."""

    def __init__(self, services: GatewayServices) -> None:
        self.services = services

    def collect(self) -> Iterator[Metric]:
        stats = self.services.cache.stats()
        yield CounterMetricFamily(
            "scholar_cache_hits", "Cache lookups served from the cache.", value=stats.hits
        )
        yield CounterMetricFamily(
            "scholar_cache_misses", "Cache lookups that missed.", value=stats.misses
        )
        yield GaugeMetricFamily(
            "scholar_cache_size_bytes", "Total size of stored cache values.", value=stats.size
        )
        yield GaugeMetricFamily(
            "scholar_cache_entries", "Number of stored cache entries.", value=stats.entries
        )
        yield GaugeMetricFamily(
            "scholar_rate_limit_remaining",
            "Tokens left in the default upstream bucket.",
            value=self.services.rate_limiter.get_remaining(),
        )


def build_metrics_registry(services: GatewayServices) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(GatewayCollector(services))
    return registry
