from __future__ import annotations

import asyncio
from typing import Any


class FakeResult:
    def __init__(self, records: list[dict[str, Any]]) -> None:
        self._records = records

    async def fetch(self, n: int) -> list[dict[str, Any]]:
        return self._records[:n]


class FakeSession:
    def __init__(self, driver: FakeDriver) -> None:
        self.driver = driver

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.driver.sessions_closed += 1

    async def run(self, query: Any, params: dict[str, Any]) -> FakeResult:
        self.driver.calls += 1
        self.driver.queries.append((query, params))
        if self.driver.delay_seconds:
            await asyncio.sleep(self.driver.delay_seconds)
        outcome = self.driver.outcomes.pop(0) if self.driver.outcomes else []
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResult(outcome)


class FakeDriver:
    """Stands in for neo4j.AsyncDriver; each outcome is a row list or an exception."""

    def __init__(self, outcomes: list[Any] | None = None, delay_seconds: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.delay_seconds = delay_seconds
        self.calls = 0
        self.queries: list[tuple[Any, dict[str, Any]]] = []
        self.sessions_opened = 0
        self.sessions_closed = 0
        self.session_kwargs: list[dict[str, Any]] = []
        self.connectivity_error: Exception | None = None
        self.closed = False

    def session(self, **kwargs: Any) -> FakeSession:
        self.sessions_opened += 1
        self.session_kwargs.append(kwargs)
        return FakeSession(self)

    async def verify_connectivity(self) -> None:
        if self.connectivity_error is not None:
            raise self.connectivity_error

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
