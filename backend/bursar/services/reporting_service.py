# Overview: Read-only ledger reports: category totals and dashboard figures.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Account, BankAccount, Budget, ExpenseRecord, IncomeRecord, PettyCashCustodian
from ..time_utils import parse_iso_date
from .account_service import get_current_financial_year
from .budget_service import BUDGET_STATUS_ACTIVE
from .transaction_service import (
    EXPENSE_STATUS_PENDING,
    INCOME_STATUS_COMPLETED,
    SPENT_EXPENSE_STATUSES,
)


def _by_account(model, statuses, start_date=None, end_date=None) -> list[dict]:
    """SUM(amount + vat) per account, largest first."""
    total = func.coalesce(func.sum(model.amount_cents + model.vat_amount_cents), 0)
    query = (
        db.session.query(
            Account.id,
            Account.code,
            Account.name,
            total.label("total_cents"),
            func.count(model.id).label("record_count"),
        )
        .join(Account, Account.id == model.account_id)
        .filter(model.status.in_(statuses))
    )
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start:
        query = query.filter(model.transaction_date >= start)
    if end:
        query = query.filter(model.transaction_date <= end)

    rows = query.group_by(Account.id, Account.code, Account.name).order_by(total.desc(), Account.code.asc()).all()
    return [
        {
            "account_id": account_id,
            "account_code": code,
            "account_name": name,
            "total_cents": int(total_cents),
            "record_count": int(record_count),
        }
        for account_id, code, name, total_cents, record_count in rows
    ]


def income_by_category(start_date=None, end_date=None) -> list[dict]:
    return _by_account(IncomeRecord, (INCOME_STATUS_COMPLETED,), start_date, end_date)


def expenses_by_category(start_date=None, end_date=None) -> list[dict]:
    """Only approved and paid expenses count as spent."""
    return _by_account(ExpenseRecord, SPENT_EXPENSE_STATUSES, start_date, end_date)


def _sum(query) -> int:
    return int(query.scalar() or 0)


def get_dashboard_stats() -> dict:
    total_income = _sum(
        db.session.query(func.sum(IncomeRecord.amount_cents + IncomeRecord.vat_amount_cents))
        .filter(IncomeRecord.status == INCOME_STATUS_COMPLETED)
    )
    total_expenses = _sum(
        db.session.query(func.sum(ExpenseRecord.amount_cents + ExpenseRecord.vat_amount_cents))
        .filter(ExpenseRecord.status.in_(SPENT_EXPENSE_STATUSES))
    )
    pending_count, pending_total = (
        db.session.query(
            func.count(ExpenseRecord.id),
            func.coalesce(func.sum(ExpenseRecord.amount_cents + ExpenseRecord.vat_amount_cents), 0),
        )
        .filter(ExpenseRecord.status == EXPENSE_STATUS_PENDING)
        .one()
    )
    bank_balance = _sum(
        db.session.query(func.sum(BankAccount.current_balance_cents)).filter(BankAccount.is_active.is_(True))
    )
    petty_cash_balance = _sum(db.session.query(func.sum(PettyCashCustodian.current_balance_cents)))
    active_budgets = _sum(db.session.query(func.count(Budget.id)).filter(Budget.status == BUDGET_STATUS_ACTIVE))

    current_year = get_current_financial_year()
    return {
        "total_income_cents": total_income,
        "total_expenses_cents": total_expenses,
        "net_cents": total_income - total_expenses,
        "pending_expense_count": int(pending_count),
        "pending_expense_cents": int(pending_total),
        "total_bank_balance_cents": bank_balance,
        "petty_cash_balance_cents": petty_cash_balance,
        "active_budget_count": active_budgets,
        "current_financial_year": current_year.to_dict() if current_year else None,
    }
