from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

SECONDS_PER_DAY = 24 * 60 * 60


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


class GatewayConfig(BaseModel):
    semantic_scholar_api_key: str = Field("", repr=False)
    semantic_scholar_base_url: str = "https://api.semanticscholar.org/graph/v1"
    upstream_timeout_seconds: float = Field(30.0, gt=0)

    cache_dir: str = "./.semantic_scholar_mcp_cache"
    cache_default_ttl_seconds: float = Field(7 * SECONDS_PER_DAY, gt=0)
    cache_max_size_bytes: int = Field(1024 * 1024 * 1024, gt=0)

    rate_limit_requests_per_minute: float = Field(10, gt=0)
    rate_limit_burst_size: int = Field(5, ge=1)

    neo4j_uri: str | None = None
    neo4j_user: str = "neo4j"
    neo4j_password: str = Field("", repr=False, exclude=True)
    neo4j_database: str | None = None
    graph_query_timeout_seconds: float = Field(10.0, gt=0)
    graph_max_rows: int = Field(1000, ge=1)
    graph_max_retry_attempts: int = Field(3, ge=1)
    graph_initial_retry_delay_seconds: float = Field(1.0, ge=0)

    mcp_host: str = "0.0.0.0"
    mcp_port: int = 3100

    @property
    def graph_enabled(self) -> bool:
        return bool(self.neo4j_uri)

    @classmethod
    def from_env(cls) -> GatewayConfig:
        load_dotenv()
        return cls(
            semantic_scholar_api_key=_env_str("SEMANTIC_SCHOLAR_API_KEY", ""),
            semantic_scholar_base_url=_env_str(
                "SEMANTIC_SCHOLAR_BASE_URL", "https://api.semanticscholar.org/graph/v1"
            ),
            upstream_timeout_seconds=_env_float("SEMANTIC_SCHOLAR_TIMEOUT_SECONDS", 30.0),
            cache_dir=_env_str("CACHE_DIR", "./.semantic_scholar_mcp_cache"),
            cache_default_ttl_seconds=_env_float("CACHE_TTL_DAYS", 7) * SECONDS_PER_DAY,
            cache_max_size_bytes=_env_int("CACHE_MAX_SIZE", 1024 * 1024 * 1024),
            rate_limit_requests_per_minute=_env_float("RATE_LIMIT_RPM", 10),
            rate_limit_burst_size=_env_int("RATE_LIMIT_BURST", 5),
            neo4j_uri=_env_str("NEO4J_URI"),
            neo4j_user=_env_str("NEO4J_USER", "neo4j"),
            neo4j_password=_env_str("NEO4J_PASSWORD", ""),
            neo4j_database=_env_str("NEO4J_DATABASE"),
            graph_query_timeout_seconds=_env_float("GRAPH_QUERY_TIMEOUT_MS", 10_000) / 1000,
            graph_max_rows=_env_int("GRAPH_MAX_ROWS", 1000),
            graph_max_retry_attempts=_env_int("GRAPH_MAX_RETRY_ATTEMPTS", 3),
            graph_initial_retry_delay_seconds=_env_float("GRAPH_INITIAL_RETRY_DELAY_MS", 1000)
            / 1000,
            mcp_host=_env_str("MCP_HOST", "0.0.0.0"),
            mcp_port=_env_int("SCHOLAR_MCP_PORT", 3100),
        )
