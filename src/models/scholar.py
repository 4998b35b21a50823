from typing import Any, Literal

from pydantic import BaseModel, Field

from src.cache.ttl_cache_store import CacheStats


class CachedToolResponse(BaseModel):
    cached: bool = Field(..., description="True when the result was served from the local cache.")
    data: Any = Field(None, description="Upstream payload.")


class RateLimitedResponse(BaseModel):
    error: str = "Rate limit exceeded. Please wait before making more requests."
    retry_after_seconds: float = Field(..., ge=0)
    rate_limit: dict[str, str] = Field(default_factory=dict)


class GraphErrorResponse(BaseModel):
    error: dict[str, Any] = Field(..., description="`kind` and `message` of the failed graph query.")


class GatewayStatsResponse(BaseModel):
    cache: CacheStats
    rate_limit: dict[str, str]
    graph_enabled: bool


class HybridSearchResponse(BaseModel):
    graph_results: list[dict[str, Any]] = Field(default_factory=list)
    api_results: Any = None
    deltas: list[str] = Field(default_factory=list)
    source: Literal["both", "graph", "api", "none"]
    confidence: Literal["high", "medium", "low"]
    suggestion: str | None = None
