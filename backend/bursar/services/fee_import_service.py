# Overview: Idempotent import of settled student-fee payments as income.

"""
Fee Reconciliation Importer

Import Invariants (authoritative)

- Only payments with status "completed" are imported.
- Each payment becomes exactly one IncomeRecord with reference "FEE-<id>".
  Existing references are skipped, so re-running an import is a no-op.
- The amount is VAT-inclusive; it is split at default_vat_rate into
  amount-before-VAT and VAT.
- The whole batch is one unit of work. The unique reference_number is the
  backstop: a concurrent import that wins the race makes this one fail with
  IntegrityError, roll back, and replay (the replay then skips its rows).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Account
from ..money import split_vat_inclusive
from .audit_service import append_finance_event
from .concurrency import run_with_retry
from .settings_service import VAT_RATE, get_setting
from .transaction_service import income_reference_exists, insert_income

FEE_REFERENCE_PREFIX = "FEE-"
FEE_INCOME_ACCOUNT_NAME = "Student Fees"


@dataclass
class FeeImportResult:
    imported: int = 0
    skipped: int = 0
    ignored: int = 0
    references: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "ignored": self.ignored,
            "references": list(self.references),
        }


def fee_reference(payment_id: str) -> str:
    return f"{FEE_REFERENCE_PREFIX}{payment_id}"


def _fee_income_account() -> Account:
    code = current_app.config.get("FEE_INCOME_ACCOUNT_CODE", "INC-001")
    account = db.session.query(Account).filter_by(code=code).first()
    if account is None:
        account = Account(
            code=code,
            name=FEE_INCOME_ACCOUNT_NAME,
            account_type="income",
            description="Settled student fee payments",
            is_active=True,
        )
        db.session.add(account)
        db.session.flush()
    return account


def import_settled_fee_payments(source, user_id: int | None = None) -> FeeImportResult:
    """Pull payments from source and record the new settled ones as income."""
    payments = source.fetch_payments()

    def _op() -> FeeImportResult:
        result = FeeImportResult()
        vat_rate = get_setting(VAT_RATE)
        account = _fee_income_account()
        seen = set()

        for payment in payments:
            if not payment.is_settled or payment.amount_cents <= 0:
                result.ignored += 1
                continue
            reference = fee_reference(payment.id)
            if reference in seen or income_reference_exists(reference):
                result.skipped += 1
                continue
            seen.add(reference)

            amount_cents, vat_cents = split_vat_inclusive(payment.amount_cents, vat_rate)
            insert_income(
                account_id=account.id,
                amount_cents=amount_cents,
                vat_amount_cents=vat_cents,
                transaction_date=payment.payment_date,
                description=f"Fee payment {payment.id}",
                reference_number=reference,
                payment_method=payment.payment_method,
                student_id=payment.student_id,
                created_by_user_id=user_id,
            )
            result.imported += 1
            result.references.append(reference)

        if result.imported:
            append_finance_event(
                event_type="fee_import.completed",
                event_category="ledger",
                entity_type="account",
                entity_id=account.id,
                actor_user_id=user_id,
                note=f"{result.imported} imported, {result.skipped} skipped",
            )
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Fee import finished: %d imported, %d skipped, %d ignored",
        result.imported,
        result.skipped,
        result.ignored,
    )
    return result
