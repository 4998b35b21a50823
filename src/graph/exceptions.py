from __future__ import annotations

from enum import StrEnum
from typing import Any


class QueryErrorKind(StrEnum):
    VALIDATION = "validation"
    CONNECTION = "connection"
    BACKEND = "backend"


class QueryError(Exception):
    def __init__(self, message: str, kind: QueryErrorKind) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def to_payload(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class QueryValidationError(QueryError):
    def __init__(self, pattern: str) -> None:
        super().__init__(
            f"Write operations are not allowed. Blocked pattern: {pattern}",
            QueryErrorKind.VALIDATION,
        )
        self.pattern = pattern


class QueryConnectionError(QueryError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message, QueryErrorKind.CONNECTION)
        self.attempts = attempts


class QueryBackendError(QueryError):
    def __init__(self, message: str) -> None:
        super().__init__(message, QueryErrorKind.BACKEND)
