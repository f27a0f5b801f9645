# Overview: Error taxonomy shared by every finance service.

"""
Finance error taxonomy.

- NotFoundError: referenced entity does not exist (404-level)
- ConflictError: illegal state transition, duplicate unique key, blocked
  deletion or insufficient funds (409-level)
- ValidationError: bad input such as non-positive amounts or date ranges (400-level)
- UnavailableError: the store failed or the retry budget ran out (503-level, retryable)

All validation is done before the first write, so a raised error never
leaves a partially applied unit of work behind.
"""

from __future__ import annotations

from typing import Any


class FinanceError(Exception):
    """Base class for finance service errors."""

    code = "FINANCE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotFoundError(FinanceError):
    code = "NOT_FOUND"


class ValidationError(FinanceError, ValueError):
    """400-level input problem."""

    code = "INVALID_INPUT"


class ConflictError(FinanceError):
    """
    409-level business rule conflict.

    Rejected state transitions carry the entity's actual state so the
    caller can reconcile without re-fetching.
    """

    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        current: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.current = current

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.current_status is not None:
            payload["current_status"] = self.current_status
        if self.current is not None:
            payload["current"] = self.current
        return payload


class UnavailableError(FinanceError):
    """The store could not complete the unit of work. Safe to retry."""

    code = "UNAVAILABLE"
