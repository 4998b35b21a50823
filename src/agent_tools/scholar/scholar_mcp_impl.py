from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from fastapi.logger import logger

from clients.semantic_scholar_rest_client import MAX_AUTHOR_PAPERS, SemanticScholarError
from src.graph.exceptions import QueryBackendError, QueryError
from src.models.scholar import (
    CachedToolResponse,
    GatewayStatsResponse,
    GraphErrorResponse,
    HybridSearchResponse,
    RateLimitedResponse,
)
from src.services.gateway_services import GatewayServices
from src.utils.cache import CacheConfig, cache_key

GRAPH_NOT_CONFIGURED = "Graph database not configured. Set NEO4J_URI to enable graph queries."

GRAPH_COUNT_QUERIES = {
    "papers": "MATCH (p:Paper) RETURN count(p) AS value",
    "authors": "MATCH (a:Author) RETURN count(a) AS value",
    "fields": "MATCH (f:Field) RETURN count(f) AS value",
    "communities": (
        "MATCH (a:Author) WHERE a.community IS NOT NULL "
        "RETURN count(DISTINCT a.community) AS value"
    ),
    "embeddings": "MATCH (p:Paper) WHERE p.embedding IS NOT NULL RETURN count(p) AS value",
    "wrote_rels": "MATCH ()-[r:WROTE]->() RETURN count(r) AS value",
    "cites_rels": "MATCH ()-[r:CITES]->() RETURN count(r) AS value",
}

FIND_AUTHORS_QUERY = """
MATCH (a:Author)
WHERE toLower(a.name) CONTAINS toLower($name)
OPTIONAL MATCH (a)-[:WROTE]->(p:Paper)
WITH a, p ORDER BY p.citationCount DESC
WITH a, collect(p { .id, .title, .year, .citationCount })[..5] AS topPapers
OPTIONAL MATCH (a)-[:WROTE]->(:Paper)<-[:WROTE]-(coauthor:Author)
WHERE coauthor <> a
WITH a, topPapers, coauthor, count(*) AS collabs
ORDER BY collabs DESC
WITH a, topPapers, collect(coauthor { .id, .name, .hIndex, collaborations: collabs })[..5] AS topCoauthors
RETURN a { .id, .name, .hIndex, .citationCount, .paperCount, .affiliations, .community } AS author,
       topPapers,
       topCoauthors
LIMIT 20
"""

HYBRID_GRAPH_QUERIES = {
    "paper": """
MATCH (p:Paper)
WHERE toLower(p.title) CONTAINS toLower($query)
OPTIONAL MATCH (a:Author)-[:WROTE]->(p)
WITH p, collect(a.name)[..5] AS authors
RETURN p { .id, .title, .year, .citationCount, .abstract } AS paper, authors
ORDER BY p.citationCount DESC
LIMIT 10
""",
    "author": """
MATCH (a:Author)
WHERE toLower(a.name) CONTAINS toLower($query)
OPTIONAL MATCH (a)-[:WROTE]->(p:Paper)
WITH a, count(p) AS graphPaperCount
RETURN a { .id, .name, .hIndex, .citationCount, .paperCount, .community } AS author, graphPaperCount
ORDER BY a.citationCount DESC
LIMIT 10
""",
    "topic": """
MATCH (f:Field)
WHERE toLower(f.name) CONTAINS toLower($query)
OPTIONAL MATCH (p:Paper)-[:IN_FIELD]->(f)
WITH f, count(p) AS paperCount
RETURN f.name AS field, paperCount
ORDER BY paperCount DESC
LIMIT 10
""",
}


def _dumps(payload: Any) -> str:
    return json.dumps(payload, default=str)


def _read_cached(services: GatewayServices, key: str) -> tuple[bool, Any]:
    raw = services.cache.get(key)
    if raw is None:
        return False, None
    try:
        return True, json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable cache entry: %s", key)
        services.cache.invalidate(key)
        return False, None


async def cached_upstream_call(
    services: GatewayServices,
    operation: str,
    params: dict[str, Any],
    ttl_seconds: float,
    fetch: Callable[[], Awaitable[Any]],
) -> dict[str, Any]:
    """Serve `operation` from cache, or call upstream if the rate limit allows it."""
    key = cache_key(operation, params)
    hit, payload = _read_cached(services, key)
    if hit:
        logger.info("Using cached %s response: %s", operation, key)
        return CachedToolResponse(cached=True, data=payload).model_dump()

    limiter = services.rate_limiter
    if not limiter.is_allowed():
        return RateLimitedResponse(
            retry_after_seconds=round(limiter.seconds_until_token(), 2),
            rate_limit=limiter.get_headers(),
        ).model_dump()

    data = await fetch()
    if services.cache.set(key, _dumps(data), ttl_seconds):
        logger.info("Caching %s response, key: %s", operation, key)
    return CachedToolResponse(cached=False, data=data).model_dump()


async def search_papers_impl(
    services: GatewayServices,
    query: str,
    year: str | None = None,
    limit: int = 10,
    open_access_only: bool = False,
) -> dict[str, Any]:
    if not query or not query.strip():
        raise ValueError("query is required")
    params = {"query": query, "year": year, "limit": limit, "open_access_only": open_access_only}
    return await cached_upstream_call(
        services,
        "search_papers",
        params,
        CacheConfig.SEARCH_PAPERS_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.search_papers(query, year, limit, open_access_only),
    )


async def get_paper_impl(
    services: GatewayServices, paper_id: str, fields: str | None = None
) -> dict[str, Any]:
    if not paper_id:
        raise ValueError("paper_id is required")
    return await cached_upstream_call(
        services,
        "get_paper",
        {"paper_id": paper_id, "fields": fields},
        CacheConfig.GET_PAPER_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_paper(paper_id, fields),
    )


async def get_authors_impl(
    services: GatewayServices, paper_id: str, limit: int = 100
) -> dict[str, Any]:
    if not paper_id:
        raise ValueError("paper_id is required")
    return await cached_upstream_call(
        services,
        "get_authors",
        {"paper_id": paper_id, "limit": limit},
        CacheConfig.GET_AUTHORS_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_paper_authors(paper_id, limit),
    )


async def get_citations_impl(
    services: GatewayServices, paper_id: str, limit: int = 100
) -> dict[str, Any]:
    if not paper_id:
        raise ValueError("paper_id is required")
    return await cached_upstream_call(
        services,
        "get_citations",
        {"paper_id": paper_id, "limit": limit},
        CacheConfig.GET_CITATIONS_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_citations(paper_id, limit),
    )


async def get_references_impl(
    services: GatewayServices, paper_id: str, limit: int = 100
) -> dict[str, Any]:
    if not paper_id:
        raise ValueError("paper_id is required")
    return await cached_upstream_call(
        services,
        "get_references",
        {"paper_id": paper_id, "limit": limit},
        CacheConfig.GET_REFERENCES_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_references(paper_id, limit),
    )


async def batch_fetch_impl(
    services: GatewayServices, paper_ids: list[str], fields: str | None = None
) -> dict[str, Any]:
    """Fetch several papers at once. Batches are not cached but still count against the limit."""
    if not paper_ids:
        raise ValueError("paper_ids must contain at least one id")
    limiter = services.rate_limiter
    if not limiter.is_allowed():
        return RateLimitedResponse(
            retry_after_seconds=round(limiter.seconds_until_token(), 2),
            rate_limit=limiter.get_headers(),
        ).model_dump()
    data = await services.scholar_client.batch_fetch_papers(paper_ids, fields)
    return CachedToolResponse(cached=False, data=data).model_dump()


async def get_author_impl(
    services: GatewayServices, author_id: str, fields: str | None = None
) -> dict[str, Any]:
    if not author_id:
        raise ValueError("author_id is required")
    return await cached_upstream_call(
        services,
        "get_author",
        {"author_id": author_id, "fields": fields},
        CacheConfig.GET_AUTHOR_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_author(author_id, fields),
    )


async def search_authors_impl(
    services: GatewayServices, query: str, limit: int = 10
) -> dict[str, Any]:
    if not query or not query.strip():
        raise ValueError("query is required")
    return await cached_upstream_call(
        services,
        "search_authors",
        {"query": query, "limit": limit},
        CacheConfig.SEARCH_AUTHORS_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.search_authors(query, limit),
    )


async def get_paper_with_embedding_impl(services: GatewayServices, paper_id: str) -> dict[str, Any]:
    if not paper_id:
        raise ValueError("paper_id is required")
    return await cached_upstream_call(
        services,
        "get_paper_with_embedding",
        {"paper_id": paper_id},
        CacheConfig.GET_PAPER_WITH_EMBEDDING_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_paper_with_embedding(paper_id),
    )


async def get_author_with_papers_impl(
    services: GatewayServices, author_id: str, limit: int = 100
) -> dict[str, Any]:
    if not author_id:
        raise ValueError("author_id is required")
    if not 1 <= limit <= MAX_AUTHOR_PAPERS:
        raise ValueError(f"limit must be between 1 and {MAX_AUTHOR_PAPERS}")
    return await cached_upstream_call(
        services,
        "get_author_with_papers",
        {"author_id": author_id, "limit": limit},
        CacheConfig.GET_AUTHOR_WITH_PAPERS_CACHE_TTL_SECONDS,
        lambda: services.scholar_client.get_author_with_papers(author_id, limit),
    )


def cache_stats_impl(services: GatewayServices) -> dict[str, Any]:
    return GatewayStatsResponse(
        cache=services.cache.stats(),
        rate_limit=services.rate_limiter.get_headers(),
        graph_enabled=services.graph_guard is not None,
    ).model_dump()


def clear_cache_impl(services: GatewayServices) -> dict[str, Any]:
    services.cache.clear()
    return {"success": True, "message": "Cache cleared"}


async def run_graph_query(
    services: GatewayServices, query: str, params: dict[str, Any] | None = None
) -> list[dict[str, Any]]:
    if services.graph_guard is None:
        raise QueryBackendError(GRAPH_NOT_CONFIGURED)
    return await services.graph_guard.execute_read_query(query, params)


async def read_cypher_impl(
    services: GatewayServices, query: str, params: dict[str, Any] | None = None
) -> dict[str, Any]:
    params = params or {}
    key = cache_key("read_cypher", {"query": query, "params": params})
    hit, rows = _read_cached(services, key)
    if hit:
        logger.info("Using cached read_cypher response: %s", key)
        return CachedToolResponse(cached=True, data=rows).model_dump()

    try:
        rows = await run_graph_query(services, query, params)
    except QueryError as exc:
        logger.warning("read_cypher failed (%s): %s", exc.kind, exc.message)
        return GraphErrorResponse(error=exc.to_payload()).model_dump()

    services.cache.set(key, _dumps(rows), CacheConfig.READ_CYPHER_CACHE_TTL_SECONDS)
    return CachedToolResponse(cached=False, data=rows).model_dump()


async def graph_stats_impl(services: GatewayServices) -> dict[str, Any]:
    key = cache_key("graph_stats")
    hit, stats = _read_cached(services, key)
    if hit:
        return CachedToolResponse(cached=True, data=stats).model_dump()

    stats = {}
    try:
        for name, query in GRAPH_COUNT_QUERIES.items():
            rows = await run_graph_query(services, query)
            stats[name] = rows[0]["value"] if rows else 0
    except QueryError as exc:
        logger.warning("graph_stats failed (%s): %s", exc.kind, exc.message)
        return GraphErrorResponse(error=exc.to_payload()).model_dump()

    services.cache.set(key, _dumps(stats), CacheConfig.GRAPH_STATS_CACHE_TTL_SECONDS)
    return CachedToolResponse(cached=False, data=stats).model_dump()


async def find_authors_impl(services: GatewayServices, name: str) -> dict[str, Any]:
    if not name or not name.strip():
        raise ValueError("name is required")
    try:
        rows = await run_graph_query(services, FIND_AUTHORS_QUERY, {"name": name})
    except QueryError as exc:
        logger.warning("find_authors failed (%s): %s", exc.kind, exc.message)
        return GraphErrorResponse(error=exc.to_payload()).model_dump()
    return CachedToolResponse(cached=False, data=rows).model_dump()


def _count_api_results(api_results: Any) -> int:
    if isinstance(api_results, list):
        return len(api_results)
    if isinstance(api_results, dict):
        return len(api_results.get("data") or [])
    return 0


async def hybrid_search_impl(
    services: GatewayServices,
    query: str,
    search_type: Literal["paper", "author", "topic"],
) -> dict[str, Any]:
    """Query the local graph first, then the upstream API, and compare what each returned."""
    if not query or not query.strip():
        raise ValueError("query is required")
    if search_type not in HYBRID_GRAPH_QUERIES:
        raise ValueError("search_type must be one of: paper, author, topic")

    graph_results: list[dict[str, Any]] = []
    graph_error: str | None = None
    try:
        graph_results = await run_graph_query(
            services, HYBRID_GRAPH_QUERIES[search_type], {"query": query}
        )
    except QueryError as exc:
        graph_error = exc.message

    api_results: Any = None
    api_error: str | None = None
    try:
        if search_type == "author":
            response = await search_authors_impl(services, query, 10)
        else:
            response = await search_papers_impl(services, query, limit=10)
        if "error" in response:
            api_error = response["error"]
        else:
            api_results = response["data"]
    except SemanticScholarError as exc:
        api_error = str(exc)

    has_graph = bool(graph_results)
    has_api = api_results is not None and api_error is None
    deltas: list[str] = []
    suggestion: str | None = None

    if has_graph and has_api:
        source, confidence = "both", "high"
        api_count = _count_api_results(api_results)
        if api_count and len(graph_results) != api_count:
            deltas.append(
                f"Graph returned {len(graph_results)} results, API returned {api_count}. "
                "Graph may be a subset."
            )
    elif has_graph:
        source, confidence = "graph", "medium"
        if api_error:
            deltas.append(f"S2 API error: {api_error}")
        suggestion = "Results from local graph only. S2 API unavailable, results may be stale."
    elif has_api:
        source, confidence = "api", "medium"
        deltas.append(f"Graph error: {graph_error}" if graph_error else "No matching results in local graph.")
        suggestion = "Not yet in the knowledge graph. Consider ingesting these results."
    else:
        source, confidence = "none", "low"
        if graph_error:
            deltas.append(f"Graph error: {graph_error}")
        if api_error:
            deltas.append(f"API error: {api_error}")
        suggestion = "No results in graph or S2. Try web search."

    return HybridSearchResponse(
        graph_results=graph_results,
        api_results=api_results,
        deltas=deltas,
        source=source,
        confidence=confidence,
        suggestion=suggestion,
    ).model_dump()
