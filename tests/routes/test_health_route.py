import tempfile
import unittest
from unittest.mock import AsyncMock, MagicMock

from prometheus_client import CONTENT_TYPE_LATEST
from starlette.testclient import TestClient

from src.cache.ttl_cache_store import TtlCacheStore
from src.main import create_app
from src.ratelimit.token_bucket import RateLimitConfig, TokenBucketRateLimiter
from src.routes import health_route
from src.services.gateway_services import GatewayServices
from src.utils.gateway_config import GatewayConfig
from src.utils.metrics import build_metrics_registry


class TestHealthRoute(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.services = GatewayServices(
            config=GatewayConfig(semantic_scholar_api_key="key", cache_dir=self.temp_dir.name),
            cache=TtlCacheStore(self.temp_dir.name, max_size_bytes=1000, default_ttl_seconds=60),
            rate_limiter=TokenBucketRateLimiter(RateLimitConfig(burst_size=3), clock=lambda: 0.0),
            scholar_client=MagicMock(),
        )
        self.request = MagicMock()
        self.request.app.state.services = self.services
        self.request.app.state.metrics_registry = build_metrics_registry(self.services)

    def tearDown(self):
        self.services.cache.close()
        self.temp_dir.cleanup()

    async def test_health_without_graph(self):
        result = await health_route.health_check(self.request)

        self.assertEqual(result["status"], "ok")
        self.assertTrue(result["api_key"])
        self.assertFalse(result["neo4j"])

    async def test_health_checks_graph(self):
        guard = MagicMock()
        guard.is_backend_connected = AsyncMock(return_value=True)
        self.services.graph_guard = guard

        result = await health_route.health_check(self.request)

        self.assertTrue(result["neo4j"])
        guard.is_backend_connected.assert_awaited_once()

    async def test_metrics_exposes_cache_and_limiter(self):
        self.services.cache.set("k", "value")
        self.services.cache.get("k")
        self.services.cache.get("missing")

        response = await health_route.metrics(self.request)
        body = response.body.decode()

        self.assertEqual(response.media_type, CONTENT_TYPE_LATEST)
        self.assertIn("# TYPE scholar_cache_hits_total counter", body)
        self.assertIn("scholar_cache_hits_total 1.0\n", body)
        self.assertIn("scholar_cache_misses_total 1.0\n", body)
        self.assertIn("scholar_cache_size_bytes 5.0\n", body)
        self.assertIn("scholar_cache_entries 1.0\n", body)
        self.assertIn("scholar_rate_limit_remaining 3.0\n", body)

    async def test_metrics_read_values_at_scrape_time(self):
        first = (await health_route.metrics(self.request)).body.decode()
        self.services.rate_limiter.is_allowed()
        self.services.cache.get("missing")
        second = (await health_route.metrics(self.request)).body.decode()

        self.assertIn("scholar_cache_misses_total 0.0\n", first)
        self.assertIn("scholar_cache_misses_total 1.0\n", second)
        self.assertIn("scholar_rate_limit_remaining 2.0\n", second)


class TestGatewayApp(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.services = GatewayServices(
            config=GatewayConfig(cache_dir=self.temp_dir.name),
            cache=TtlCacheStore(self.temp_dir.name, max_size_bytes=1000, default_ttl_seconds=60),
            rate_limiter=TokenBucketRateLimiter(RateLimitConfig(burst_size=3), clock=lambda: 0.0),
            scholar_client=MagicMock(),
        )

    def tearDown(self):
        self.services.cache.close()
        self.temp_dir.cleanup()

    def test_metrics_report_the_services_used_by_the_tools(self):
        app = create_app(self.services)

        self.assertIs(app.state.services, self.services)
        self.assertIn("/mcp", [getattr(route, "path", None) for route in app.routes[-1].routes])

        with TestClient(app) as client:
            self.services.cache.set("k", "value")
            self.services.cache.get("k")
            self.services.rate_limiter.is_allowed()

            health = client.get("/health")
            metrics = client.get("/metrics")

        self.assertEqual(health.status_code, 200)
        self.assertFalse(health.json()["api_key"])
        self.assertEqual(metrics.status_code, 200)
        self.assertIn("scholar_cache_hits_total 1.0\n", metrics.text)
        self.assertIn("scholar_cache_entries 1.0\n", metrics.text)
        self.assertIn("scholar_rate_limit_remaining 2.0\n", metrics.text)

    def test_shared_services_stay_open_after_shutdown(self):
        with TestClient(create_app(self.services)):
            pass

        self.assertTrue(self.services.cache.set("k", "v"))
        self.assertEqual(self.services.cache.get("k"), "v")


if __name__ == "__main__":
    unittest.main()
