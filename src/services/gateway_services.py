from __future__ import annotations

from dataclasses import dataclass

from fastapi.logger import logger

from clients.semantic_scholar_rest_client import SemanticScholarRestClient
from src.cache.ttl_cache_store import TtlCacheStore
from src.graph.query_guard import ReadOnlyQueryGuard
from src.ratelimit.token_bucket import RateLimitConfig, TokenBucketRateLimiter
from src.utils.gateway_config import GatewayConfig


@dataclass
class GatewayServices:
    """Long-lived collaborators shared by every tool call of one process."""

    config: GatewayConfig
    cache: TtlCacheStore
    rate_limiter: TokenBucketRateLimiter
    scholar_client: SemanticScholarRestClient
    graph_guard: ReadOnlyQueryGuard | None = None

    async def aclose(self) -> None:
        await self.scholar_client.aclose()
        if self.graph_guard is not None:
            await self.graph_guard.close()
        self.cache.close()


def build_services(config: GatewayConfig) -> GatewayServices:
    cache = TtlCacheStore(
        config.cache_dir,
        max_size_bytes=config.cache_max_size_bytes,
        default_ttl_seconds=config.cache_default_ttl_seconds,
    )
    rate_limiter = TokenBucketRateLimiter(
        RateLimitConfig(
            requests_per_minute=config.rate_limit_requests_per_minute,
            burst_size=config.rate_limit_burst_size,
        )
    )
    scholar_client = SemanticScholarRestClient(
        api_key=config.semantic_scholar_api_key,
        base_url=config.semantic_scholar_base_url,
        timeout=config.upstream_timeout_seconds,
    )
    graph_guard = ReadOnlyQueryGuard.from_config(config)
    if not config.semantic_scholar_api_key:
        logger.warning("SEMANTIC_SCHOLAR_API_KEY is not set; using the unauthenticated rate tier")

    return GatewayServices(
        config=config,
        cache=cache,
        rate_limiter=rate_limiter,
        scholar_client=scholar_client,
        graph_guard=graph_guard,
    )
