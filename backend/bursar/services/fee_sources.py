# Overview: Fee-payment feeds consumed by the fee reconciliation importer.

"""
Fee payment sources.

The student-fee subsystem is external. A source only has to answer one
question: which payments exist right now? Amounts arrive in major units and
are converted to cents here, so the importer only ever sees integers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

import httpx

from ..errors import UnavailableError, ValidationError
from ..money import to_cents
from ..time_utils import parse_iso_date

PAYMENT_STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class FeePayment:
    id: str
    student_id: str | None
    amount_cents: int
    payment_date: date | None
    payment_method: str | None
    status: str

    @classmethod
    def from_dict(cls, data: dict) -> "FeePayment":
        if data.get("id") in (None, ""):
            raise ValidationError("Fee payment is missing an id")
        student_id = data.get("student_id")
        return cls(
            id=str(data["id"]),
            student_id=str(student_id) if student_id is not None else None,
            amount_cents=to_cents(data.get("amount", 0)),
            payment_date=parse_iso_date(data.get("payment_date")),
            payment_method=data.get("payment_method"),
            status=(data.get("status") or "").lower(),
        )

    @property
    def is_settled(self) -> bool:
        return self.status == PAYMENT_STATUS_COMPLETED


class StaticFeePaymentSource:
    """In-memory source for tests and one-off imports from a file."""

    def __init__(self, payments: Iterable[FeePayment | dict]):
        self._payments = [p if isinstance(p, FeePayment) else FeePayment.from_dict(p) for p in payments]

    def fetch_payments(self) -> list[FeePayment]:
        return list(self._payments)


class HttpFeePaymentSource:
    """
    Reads GET {base_url}/api/fee-payments?status=completed.

    Accepts either a bare JSON list or an object wrapping it under
    "payments" or "data".
    """

    PATH = "/api/fee-payments"

    def __init__(self, base_url: str, client: httpx.Client | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    def _get(self) -> httpx.Response:
        params = {"status": PAYMENT_STATUS_COMPLETED}
        if self._client is not None:
            return self._client.get(f"{self.base_url}{self.PATH}", params=params)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(f"{self.base_url}{self.PATH}", params=params)

    def fetch_payments(self) -> list[FeePayment]:
        try:
            response = self._get()
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise UnavailableError(f"Fee payment source unavailable: {exc}") from exc
        except ValueError as exc:
            raise UnavailableError("Fee payment source returned invalid JSON") from exc

        if isinstance(body, dict):
            body = body.get("payments", body.get("data", []))
        if not isinstance(body, list):
            raise UnavailableError("Fee payment source returned an unexpected payload")
        return [FeePayment.from_dict(item) for item in body]
