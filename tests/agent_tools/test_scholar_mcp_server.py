from __future__ import annotations

import asyncio
import tempfile
from unittest.mock import MagicMock

from fastmcp import Client

from src.agent_tools.scholar.scholar_mcp import create_scholar_mcp_server
from src.cache.ttl_cache_store import TtlCacheStore
from src.ratelimit.token_bucket import RateLimitConfig, TokenBucketRateLimiter
from src.services.gateway_services import GatewayServices
from src.utils.gateway_config import GatewayConfig

EXPECTED_TOOLS = {
    "search_papers",
    "get_paper",
    "get_authors",
    "get_citations",
    "get_references",
    "batch_fetch",
    "get_author",
    "search_authors",
    "get_paper_with_embedding",
    "get_author_with_papers",
    "cache_stats",
    "clear_cache",
    "read_cypher",
    "graph_stats",
    "find_authors",
    "hybrid_search",
}


def test_server_registers_all_tools():
    async def run():
        with tempfile.TemporaryDirectory() as temp_dir:
            cache = TtlCacheStore(temp_dir, max_size_bytes=1000, default_ttl_seconds=60)
            services = GatewayServices(
                config=GatewayConfig(cache_dir=temp_dir),
                cache=cache,
                rate_limiter=TokenBucketRateLimiter(RateLimitConfig()),
                scholar_client=MagicMock(),
            )
            mcp_server = create_scholar_mcp_server(services)

            async with Client(mcp_server) as client:
                tools = await client.list_tools()

            cache.close()

        assert {tool.name for tool in tools} == EXPECTED_TOOLS

    asyncio.run(run())
