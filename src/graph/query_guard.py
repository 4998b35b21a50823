from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

import neo4j
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from src.graph.exceptions import (
    QueryBackendError,
    QueryConnectionError,
    QueryError,
    QueryValidationError,
)
from src.graph.values import normalize_driver_value
from src.utils.gateway_config import GatewayConfig
from src.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

# Case-insensitive patterns for clauses and procedures that mutate the graph.
WRITE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bCREATE\b",
        r"\bMERGE\b",
        r"\bSET\b",
        r"\bDELETE\b",
        r"\bREMOVE\b",
        r"\bDROP\b",
        r"\bDETACH\b",
        r"\bLOAD\s+CSV\b",
        r"\bCALL\b[^)]*\bdbms\b",
        r"\bCALL\b[^)]*\bapoc\.trigger\b",
    )
)

CONNECTION_ERROR_MARKERS = (
    "connection",
    "socket",
    "timeout",
    "timed out",
    "unavailable",
    "econnrefused",
    "econnreset",
)

DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_ROWS = 1000
DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0)


def validate_read_only(query: str) -> None:
    for pattern in WRITE_PATTERNS:
        if pattern.search(query):
            raise QueryValidationError(pattern.pattern)


def is_connection_error(error: BaseException) -> bool:
    if isinstance(error, (ServiceUnavailable, SessionExpired, asyncio.TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)


def create_driver(config: GatewayConfig) -> neo4j.AsyncDriver | None:
    if not config.neo4j_uri:
        return None
    return neo4j.AsyncGraphDatabase.driver(
        config.neo4j_uri,
        auth=(config.neo4j_user, config.neo4j_password),
        max_connection_pool_size=10,
        connection_acquisition_timeout=5.0,
        connection_timeout=5.0,
    )


class ReadOnlyQueryGuard:
    """Runs read-only Cypher against a graph backend.

    Every query is checked against ``WRITE_PATTERNS`` before it reaches the
    backend. Execution happens in a read session with a client-side timeout
    and a row cap; connection-class failures are retried with exponential
    backoff on a fresh session, anything else fails immediately. Rows come
    back as plain dicts with driver types normalized.
    """

    def __init__(
        self,
        driver: neo4j.AsyncDriver,
        *,
        database: str | None = None,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        max_rows: int = DEFAULT_MAX_ROWS,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        self._driver = driver
        self._database = database
        self.timeout_seconds = timeout_seconds
        self.max_rows = max_rows
        self.retry_policy = retry_policy
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: GatewayConfig) -> ReadOnlyQueryGuard | None:
        driver = create_driver(config)
        if driver is None:
            logger.info("NEO4J_URI not set, graph tools are disabled")
            return None
        return cls(
            driver,
            database=config.neo4j_database,
            timeout_seconds=config.graph_query_timeout_seconds,
            max_rows=config.graph_max_rows,
            retry_policy=RetryPolicy(
                max_attempts=config.graph_max_retry_attempts,
                base_delay_seconds=config.graph_initial_retry_delay_seconds,
            ),
        )

    async def execute_read_query(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        validate_read_only(query)
        params = params or {}

        def log_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "Graph query attempt %s/%s failed with a connection error, retrying in %.2fs: %s",
                attempt,
                self.retry_policy.max_attempts,
                delay,
                error,
            )

        try:
            return await retry_async(
                lambda: self._run_with_timeout(query, params),
                policy=self.retry_policy,
                is_retryable=is_connection_error,
                sleep=self._sleep,
                on_retry=log_retry,
            )
        except QueryError:
            raise
        except Exception as exc:
            if is_connection_error(exc):
                logger.error(
                    "Graph query failed after %s attempts: %s", self.retry_policy.max_attempts, exc
                )
                raise QueryConnectionError(
                    f"Graph backend unreachable after {self.retry_policy.max_attempts} "
                    f"attempts: {_describe(exc)}",
                    attempts=self.retry_policy.max_attempts,
                ) from exc
            logger.warning("Graph query rejected by backend: %s", exc)
            raise QueryBackendError(_describe(exc)) from exc

    async def is_backend_connected(self) -> bool:
        try:
            await self._driver.verify_connectivity()
        except Exception as exc:
            logger.debug("Graph connectivity check failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        await self._driver.close()

    async def _run_with_timeout(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await asyncio.wait_for(self._run_once(query, params), timeout=self.timeout_seconds)

    async def _run_once(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._driver.session(
            database=self._database, default_access_mode=neo4j.READ_ACCESS
        ) as session:
            result = await session.run(neo4j.Query(query, timeout=self.timeout_seconds), params)
            records = await result.fetch(self.max_rows)
            return [
                {str(key): normalize_driver_value(value) for key, value in record.items()}
                for record in records
            ]


def _describe(error: BaseException) -> str:
    message = str(error).strip()
    if not message:
        return type(error).__name__
    return message
