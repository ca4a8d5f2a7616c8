"""Error taxonomy shared by the worker and the API."""

from __future__ import annotations

from typing import Any


class PricewatchError(Exception):
    code = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PricewatchError):
    code = "validation_error"


class NotFoundError(PricewatchError):
    code = "not_found"


class OracleTimeout(PricewatchError):
    code = "oracle_timeout"


class OracleParseError(PricewatchError):
    code = "oracle_parse_error"


class ConcurrencyConflict(PricewatchError):
    code = "concurrency_conflict"


class PersistenceError(PricewatchError):
    code = "persistence_error"
