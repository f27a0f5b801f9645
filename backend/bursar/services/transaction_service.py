# Overview: Transaction ledger: income records and the expense approval workflow.

"""
Transaction Ledger

Expense Lifecycle (authoritative)

    PENDING --approve--> APPROVED --pay--> PAID
    PENDING --reject---> REJECTED

- Below the approval threshold an expense is born APPROVED with
  auto_approved=True. At or above it, the expense waits in PENDING.
- Every transition is a conditional update on the expected status. Two
  concurrent approvals of the same expense produce exactly one success;
  the loser gets ConflictError with the current status.
- Paying from a bank account posts the withdrawal in the same unit of work.

Income has no workflow: records are written COMPLETED and never change.
"""

from __future__ import annotations

from sqlalchemy import update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ExpenseRecord, IncomeRecord
from ..money import require_non_negative_cents, require_positive_cents, to_cents
from ..time_utils import parse_iso_date, today, utcnow
from .account_service import financial_year_for_date, require_active_account
from .audit_service import append_finance_event
from .bank_service import get_bank_account, post_deposit, post_withdrawal
from .concurrency import run_with_retry
from .document_service import next_document_number
from .settings_service import APPROVAL_REQUIRED, APPROVAL_THRESHOLD, get_setting
from .vendor_service import get_vendor


EXPENSE_STATUS_PENDING = "pending"
EXPENSE_STATUS_APPROVED = "approved"
EXPENSE_STATUS_REJECTED = "rejected"
EXPENSE_STATUS_PAID = "paid"
EXPENSE_STATUSES = (
    EXPENSE_STATUS_PENDING,
    EXPENSE_STATUS_APPROVED,
    EXPENSE_STATUS_REJECTED,
    EXPENSE_STATUS_PAID,
)

# Expenses that count as money spent in reports
SPENT_EXPENSE_STATUSES = (EXPENSE_STATUS_APPROVED, EXPENSE_STATUS_PAID)

INCOME_STATUS_COMPLETED = "completed"


def _validate_amounts(amount_cents: int, vat_amount_cents: int) -> None:
    require_positive_cents(amount_cents, "amount_cents")
    require_non_negative_cents(vat_amount_cents, "vat_amount_cents")


def _financial_year_id(day) -> int | None:
    year = financial_year_for_date(day)
    return year.id if year else None


def approval_threshold_cents() -> int:
    return to_cents(get_setting(APPROVAL_THRESHOLD))


def needs_approval(amount_cents: int) -> bool:
    """amount >= threshold waits for a human; everything else is auto-approved."""
    if not get_setting(APPROVAL_REQUIRED):
        return False
    return amount_cents >= approval_threshold_cents()


# =============================================================================
# INCOME
# =============================================================================

def get_income(income_id: int) -> IncomeRecord:
    income = db.session.get(IncomeRecord, income_id)
    if not income:
        raise NotFoundError(f"Income record {income_id} not found")
    return income


def income_reference_exists(reference_number: str) -> bool:
    return (
        db.session.query(IncomeRecord.id).filter_by(reference_number=reference_number).first()
        is not None
    )


def insert_income(
    *,
    account_id: int,
    amount_cents: int,
    vat_amount_cents: int = 0,
    transaction_date=None,
    description: str | None = None,
    reference_number: str | None = None,
    payment_method: str | None = None,
    student_id: str | None = None,
    bank_account_id: int | None = None,
    created_by_user_id: int | None = None,
) -> IncomeRecord:
    """Write one income record inside the caller's unit of work (no commit)."""
    require_active_account(account_id)
    day = parse_iso_date(transaction_date) or today()

    income = IncomeRecord(
        income_number=next_document_number(document_type="income", prefix="INC"),
        transaction_date=day,
        account_id=account_id,
        financial_year_id=_financial_year_id(day),
        amount_cents=amount_cents,
        vat_amount_cents=vat_amount_cents,
        description=description,
        reference_number=reference_number,
        payment_method=payment_method,
        student_id=student_id,
        status=INCOME_STATUS_COMPLETED,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(income)
    db.session.flush()

    if bank_account_id is not None:
        txn = post_deposit(
            bank_account_id,
            income.total_amount_cents,
            transaction_date=day,
            reference_number=income.income_number,
            description=description,
            user_id=created_by_user_id,
        )
        income.bank_account_id = bank_account_id
        income.bank_transaction_id = txn.id
        db.session.flush()

    append_finance_event(
        event_type="income.recorded",
        event_category="ledger",
        entity_type="income",
        entity_id=income.id,
        actor_user_id=created_by_user_id,
        amount_cents=income.total_amount_cents,
        note=reference_number,
    )
    return income


def create_income(
    account_id: int,
    amount_cents: int,
    vat_amount_cents: int = 0,
    transaction_date=None,
    description: str | None = None,
    reference_number: str | None = None,
    payment_method: str | None = None,
    student_id: str | None = None,
    bank_account_id: int | None = None,
    created_by_user_id: int | None = None,
) -> IncomeRecord:
    _validate_amounts(amount_cents, vat_amount_cents)

    def _op():
        if reference_number and income_reference_exists(reference_number):
            raise ConflictError(f"Income with reference {reference_number} already exists")
        return insert_income(
            account_id=account_id,
            amount_cents=amount_cents,
            vat_amount_cents=vat_amount_cents,
            transaction_date=transaction_date,
            description=description,
            reference_number=reference_number,
            payment_method=payment_method,
            student_id=student_id,
            bank_account_id=bank_account_id,
            created_by_user_id=created_by_user_id,
        )

    return run_with_retry(_op)


def list_income(
    start_date=None,
    end_date=None,
    account_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[IncomeRecord]:
    query = db.session.query(IncomeRecord)
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start:
        query = query.filter(IncomeRecord.transaction_date >= start)
    if end:
        query = query.filter(IncomeRecord.transaction_date <= end)
    if account_id is not None:
        query = query.filter(IncomeRecord.account_id == account_id)
    return (
        query.order_by(IncomeRecord.transaction_date.desc(), IncomeRecord.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )


# =============================================================================
# EXPENSES
# =============================================================================

def get_expense(expense_id: int) -> ExpenseRecord:
    expense = db.session.get(ExpenseRecord, expense_id)
    if not expense:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def create_expense(
    account_id: int,
    amount_cents: int,
    vat_amount_cents: int = 0,
    vendor_id: int | None = None,
    transaction_date=None,
    description: str | None = None,
    reference_number: str | None = None,
    payment_method: str | None = None,
    created_by_user_id: int | None = None,
) -> ExpenseRecord:
    _validate_amounts(amount_cents, vat_amount_cents)
    day = parse_iso_date(transaction_date) or today()

    def _op():
        require_active_account(account_id)
        if vendor_id is not None:
            get_vendor(vendor_id)

        pending = needs_approval(amount_cents)
        expense = ExpenseRecord(
            expense_number=next_document_number(document_type="expense", prefix="EXP"),
            transaction_date=day,
            account_id=account_id,
            financial_year_id=_financial_year_id(day),
            vendor_id=vendor_id,
            amount_cents=amount_cents,
            vat_amount_cents=vat_amount_cents,
            description=description,
            reference_number=reference_number,
            payment_method=payment_method,
            status=EXPENSE_STATUS_PENDING if pending else EXPENSE_STATUS_APPROVED,
            auto_approved=not pending,
            approved_at=None if pending else utcnow(),
            created_by_user_id=created_by_user_id,
        )
        db.session.add(expense)
        db.session.flush()

        append_finance_event(
            event_type="expense.created" if pending else "expense.auto_approved",
            event_category="ledger",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=created_by_user_id,
            amount_cents=expense.total_amount_cents,
        )
        return expense

    return run_with_retry(_op)


def _transition_expense(expense_id: int, from_status: str, to_status: str, **values) -> ExpenseRecord:
    result = db.session.execute(
        update(ExpenseRecord)
        .where(ExpenseRecord.id == expense_id, ExpenseRecord.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    expense = db.session.get(ExpenseRecord, expense_id, populate_existing=True)
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    if result.rowcount == 0:
        raise ConflictError(
            f"Cannot move expense {expense.expense_number} from {expense.status} to {to_status}",
            current_status=expense.status,
            current=expense.to_dict(),
        )
    return expense


def approve_expense(expense_id: int, approver_user_id: int | None = None) -> ExpenseRecord:
    def _op():
        expense = _transition_expense(
            expense_id,
            EXPENSE_STATUS_PENDING,
            EXPENSE_STATUS_APPROVED,
            approved_by_user_id=approver_user_id,
            approved_at=utcnow(),
        )
        append_finance_event(
            event_type="expense.approved",
            event_category="ledger",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=approver_user_id,
            amount_cents=expense.total_amount_cents,
        )
        return expense

    return run_with_retry(_op)


def reject_expense(expense_id: int, reason: str, user_id: int | None = None) -> ExpenseRecord:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op():
        expense = _transition_expense(
            expense_id,
            EXPENSE_STATUS_PENDING,
            EXPENSE_STATUS_REJECTED,
            rejected_by_user_id=user_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
        )
        append_finance_event(
            event_type="expense.rejected",
            event_category="ledger",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=user_id,
            note=reason,
        )
        return expense

    return run_with_retry(_op)


def pay_expense(
    expense_id: int,
    bank_account_id: int | None = None,
    user_id: int | None = None,
    allow_overdraft: bool | None = None,
) -> ExpenseRecord:
    """
    APPROVED -> PAID.

    With a bank account, the withdrawal of amount + VAT is posted in the same
    unit of work; insufficient funds (when overdraft is disallowed) leaves the
    expense APPROVED.
    """
    def _op():
        if bank_account_id is not None:
            get_bank_account(bank_account_id)

        expense = _transition_expense(
            expense_id,
            EXPENSE_STATUS_APPROVED,
            EXPENSE_STATUS_PAID,
            paid_by_user_id=user_id,
            paid_at=utcnow(),
        )
        if bank_account_id is not None:
            txn = post_withdrawal(
                bank_account_id,
                expense.total_amount_cents,
                reference_number=expense.expense_number,
                description=expense.description,
                user_id=user_id,
                allow_overdraft=allow_overdraft,
            )
            expense.bank_account_id = bank_account_id
            expense.bank_transaction_id = txn.id
            db.session.flush()

        append_finance_event(
            event_type="expense.paid",
            event_category="ledger",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=user_id,
            amount_cents=expense.total_amount_cents,
        )
        return expense

    return run_with_retry(_op)


def list_expenses(
    status: str | None = None,
    start_date=None,
    end_date=None,
    account_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ExpenseRecord]:
    if status and status not in EXPENSE_STATUSES:
        raise ValidationError(f"Invalid expense status: {status}")
    query = db.session.query(ExpenseRecord)
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if status:
        query = query.filter(ExpenseRecord.status == status)
    if start:
        query = query.filter(ExpenseRecord.transaction_date >= start)
    if end:
        query = query.filter(ExpenseRecord.transaction_date <= end)
    if account_id is not None:
        query = query.filter(ExpenseRecord.account_id == account_id)
    return (
        query.order_by(ExpenseRecord.transaction_date.desc(), ExpenseRecord.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )
