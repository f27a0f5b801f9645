# Overview: Account registry: chart of accounts and financial-year calendar.

"""
Account Registry

WHY: Reference data consumed by budgets and the transaction ledger.

DESIGN:
- Accounts are never deleted, only deactivated (historical rows reference them).
- Account parents form a tree; re-parenting that would create a cycle is rejected.
- The current financial year is a single pointer row. Switching years locks and
  rewrites that row in one unit of work, so there is never a moment with zero
  or several current years.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Account,
    Budget,
    ExpenseRecord,
    FinancialYear,
    FinancialYearPointer,
    IncomeRecord,
)
from ..time_utils import parse_iso_date, utcnow
from .audit_service import append_finance_event
from .concurrency import lock_for_update, run_with_retry


ACCOUNT_TYPES = ("asset", "liability", "income", "expense", "equity")

YEAR_STATUS_DRAFT = "draft"
YEAR_STATUS_ACTIVE = "active"
YEAR_STATUS_CLOSED = "closed"
YEAR_STATUSES = (YEAR_STATUS_DRAFT, YEAR_STATUS_ACTIVE, YEAR_STATUS_CLOSED)


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def get_account_by_code(code: str) -> Account | None:
    return db.session.query(Account).filter_by(code=code).first()


def require_active_account(account_id: int) -> Account:
    """Used by the ledger and budgets: new money cannot land on a retired account."""
    account = get_account(account_id)
    if not account.is_active:
        raise ConflictError(
            f"Account {account.code} is inactive",
            current_status="inactive",
            current=account.to_dict(),
        )
    return account


def create_account(
    code: str,
    name: str,
    account_type: str,
    parent_id: int | None = None,
    description: str | None = None,
) -> Account:
    code = (code or "").strip()
    name = (name or "").strip()
    if not code:
        raise ValidationError("Account code is required")
    if not name:
        raise ValidationError("Account name is required")
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(f"Invalid account type: {account_type}. Must be one of {list(ACCOUNT_TYPES)}")

    def _op():
        if get_account_by_code(code):
            raise ConflictError(f"Account code {code} already exists")
        if parent_id is not None:
            get_account(parent_id)

        account = Account(
            code=code,
            name=name,
            account_type=account_type,
            parent_id=parent_id,
            description=description,
            is_active=True,
        )
        db.session.add(account)
        db.session.flush()
        return account

    return run_with_retry(_op)


def _would_create_cycle(account_id: int, new_parent_id: int) -> bool:
    cursor = db.session.get(Account, new_parent_id)
    seen = set()
    while cursor is not None and cursor.id not in seen:
        if cursor.id == account_id:
            return True
        seen.add(cursor.id)
        cursor = cursor.parent
    return False


def update_account(
    account_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    parent_id: int | None = None,
    clear_parent: bool = False,
) -> Account:
    def _op():
        account = get_account(account_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Account name cannot be empty")
            account.name = name.strip()
        if description is not None:
            account.description = description
        if clear_parent:
            account.parent_id = None
        elif parent_id is not None:
            get_account(parent_id)
            if _would_create_cycle(account.id, parent_id):
                raise ValidationError("Account hierarchy cannot contain cycles")
            account.parent_id = parent_id
        db.session.flush()
        return account

    return run_with_retry(_op)


def deactivate_account(account_id: int) -> Account:
    """Always permitted: history stays intact because accounts are never deleted."""
    def _op():
        account = get_account(account_id)
        account.is_active = False
        db.session.flush()
        return account

    return run_with_retry(_op)


def reactivate_account(account_id: int) -> Account:
    def _op():
        account = get_account(account_id)
        account.is_active = True
        db.session.flush()
        return account

    return run_with_retry(_op)


def list_accounts(account_type: str | None = None, is_active: bool | None = None) -> list[Account]:
    query = db.session.query(Account)
    if account_type:
        query = query.filter(Account.account_type == account_type)
    if is_active is not None:
        query = query.filter(Account.is_active.is_(is_active))
    return query.order_by(Account.code.asc()).all()


def get_account_tree() -> list[dict]:
    """Chart of accounts as nested dicts ordered by code."""
    accounts = list_accounts()
    nodes = {a.id: {**a.to_dict(), "children": []} for a in accounts}
    roots = []
    for account in accounts:
        node = nodes[account.id]
        if account.parent_id and account.parent_id in nodes:
            nodes[account.parent_id]["children"].append(node)
        else:
            roots.append(node)
    return roots


# =============================================================================
# FINANCIAL YEARS
# =============================================================================

def get_financial_year(year_id: int) -> FinancialYear:
    year = db.session.get(FinancialYear, year_id)
    if not year:
        raise NotFoundError(f"Financial year {year_id} not found")
    return year


def list_financial_years() -> list[FinancialYear]:
    return db.session.query(FinancialYear).order_by(FinancialYear.start_date.desc()).all()


def get_current_financial_year() -> FinancialYear | None:
    pointer = db.session.get(FinancialYearPointer, FinancialYearPointer.SINGLETON_ID)
    if pointer is None or pointer.financial_year_id is None:
        return None
    return pointer.financial_year


def financial_year_for_date(day: date) -> FinancialYear | None:
    return (
        db.session.query(FinancialYear)
        .filter(FinancialYear.start_date <= day, FinancialYear.end_date >= day)
        .order_by(FinancialYear.start_date.desc())
        .first()
    )


def _lock_pointer() -> FinancialYearPointer:
    pointer = lock_for_update(
        db.session.query(FinancialYearPointer).filter_by(id=FinancialYearPointer.SINGLETON_ID)
    ).first()
    if pointer is None:
        # A concurrent creator makes this flush fail; run_with_retry replays.
        pointer = FinancialYearPointer(id=FinancialYearPointer.SINGLETON_ID)
        db.session.add(pointer)
        db.session.flush()
    return pointer


def _point_at(year: FinancialYear | None) -> FinancialYearPointer:
    pointer = _lock_pointer()
    pointer.financial_year = year
    db.session.flush()
    return pointer


def create_financial_year(
    name: str,
    start_date,
    end_date,
    status: str = YEAR_STATUS_DRAFT,
    make_current: bool = False,
) -> FinancialYear:
    name = (name or "").strip()
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if not name:
        raise ValidationError("Financial year name is required")
    if start is None or end is None:
        raise ValidationError("start_date and end_date are required")
    if start > end:
        raise ValidationError("start_date must be on or before end_date")
    if status not in (YEAR_STATUS_DRAFT, YEAR_STATUS_ACTIVE):
        raise ValidationError(f"New financial years must be draft or active, not {status}")

    def _op():
        if db.session.query(FinancialYear).filter_by(name=name).first():
            raise ConflictError(f"Financial year {name} already exists")
        overlap = (
            db.session.query(FinancialYear)
            .filter(FinancialYear.start_date <= end, FinancialYear.end_date >= start)
            .first()
        )
        if overlap:
            raise ConflictError(
                f"Financial year overlaps {overlap.name}",
                current=overlap.to_dict(),
            )

        year = FinancialYear(name=name, start_date=start, end_date=end, status=status)
        db.session.add(year)
        db.session.flush()

        if make_current:
            _point_at(year)

        append_finance_event(
            event_type="financial_year.created",
            event_category="registry",
            entity_type="financial_year",
            entity_id=year.id,
            note=name,
        )
        return year

    return run_with_retry(_op)


def set_current_financial_year(year_id: int) -> FinancialYear:
    def _op():
        year = get_financial_year(year_id)
        if year.status == YEAR_STATUS_CLOSED:
            raise ConflictError(
                f"Financial year {year.name} is closed",
                current_status=year.status,
                current=year.to_dict(),
            )
        _point_at(year)
        append_finance_event(
            event_type="financial_year.set_current",
            event_category="registry",
            entity_type="financial_year",
            entity_id=year.id,
        )
        return year

    return run_with_retry(_op)


def _transition_year(year_id: int, from_statuses: tuple[str, ...], to_status: str, **values) -> FinancialYear:
    """Conditional status update; zero rows means a stale status or a lost race."""
    result = db.session.execute(
        update(FinancialYear)
        .where(FinancialYear.id == year_id, FinancialYear.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    year = db.session.get(FinancialYear, year_id, populate_existing=True)
    if year is None:
        raise NotFoundError(f"Financial year {year_id} not found")
    if result.rowcount == 0:
        raise ConflictError(
            f"Cannot move financial year from {year.status} to {to_status}",
            current_status=year.status,
            current=year.to_dict(),
        )
    return year


def activate_financial_year(year_id: int) -> FinancialYear:
    def _op():
        year = _transition_year(year_id, (YEAR_STATUS_DRAFT,), YEAR_STATUS_ACTIVE)
        append_finance_event(
            event_type="financial_year.activated",
            event_category="registry",
            entity_type="financial_year",
            entity_id=year.id,
        )
        return year

    return run_with_retry(_op)


def close_financial_year(year_id: int) -> FinancialYear:
    def _op():
        year = _transition_year(
            year_id,
            (YEAR_STATUS_ACTIVE,),
            YEAR_STATUS_CLOSED,
            closed_at=utcnow(),
        )
        pointer = _lock_pointer()
        if pointer.financial_year_id == year.id:
            pointer.financial_year = None
            db.session.flush()
        append_finance_event(
            event_type="financial_year.closed",
            event_category="registry",
            entity_type="financial_year",
            entity_id=year.id,
        )
        return year

    return run_with_retry(_op)


def delete_financial_year(year_id: int) -> None:
    def _op():
        year = get_financial_year(year_id)
        if year.is_current:
            raise ConflictError(
                "Cannot delete the current financial year",
                current_status=year.status,
                current=year.to_dict(),
            )
        referenced = (
            db.session.query(Budget.id).filter_by(financial_year_id=year_id).first()
            or db.session.query(IncomeRecord.id).filter_by(financial_year_id=year_id).first()
            or db.session.query(ExpenseRecord.id).filter_by(financial_year_id=year_id).first()
        )
        if referenced:
            raise ConflictError(
                f"Financial year {year.name} is referenced by budgets or ledger records",
                current_status=year.status,
                current=year.to_dict(),
            )
        db.session.delete(year)
        db.session.flush()

    run_with_retry(_op)
