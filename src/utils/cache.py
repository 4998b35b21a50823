import json
from typing import Any

KEY_SEPARATOR = "|"


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(operation: str, params: dict[str, Any] | None = None) -> str:
    """Build a deterministic cache key for `operation` called with `params`.

    Parameter order does not matter. Values are JSON-encoded, so the string
    "10" and the number 10 produce different keys; objects JSON cannot encode
    fall back to ``str()`` and may collide.
    """
    params = params or {}
    pairs = KEY_SEPARATOR.join(f"{name}:{_serialize(params[name])}" for name in sorted(params))
    return f"{operation}:{pairs}"


class CacheConfig:
    SEARCH_PAPERS_CACHE_TTL_SECONDS = 60 * 60
    GET_PAPER_CACHE_TTL_SECONDS = 60 * 60 * 24
    GET_AUTHORS_CACHE_TTL_SECONDS = 60 * 60 * 24
    GET_CITATIONS_CACHE_TTL_SECONDS = 60 * 60
    GET_REFERENCES_CACHE_TTL_SECONDS = 60 * 60
    GET_AUTHOR_CACHE_TTL_SECONDS = 60 * 60 * 24
    GET_PAPER_WITH_EMBEDDING_CACHE_TTL_SECONDS = 60 * 60 * 24
    GET_AUTHOR_WITH_PAPERS_CACHE_TTL_SECONDS = 60 * 60 * 24
    SEARCH_AUTHORS_CACHE_TTL_SECONDS = 60 * 60
    READ_CYPHER_CACHE_TTL_SECONDS = 60 * 5
    GRAPH_STATS_CACHE_TTL_SECONDS = 60 * 60
