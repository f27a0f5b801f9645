# Overview: Budget engine: budgets, line items, period allocations and variance reports.

"""
Budget Service

Budget Invariants (authoritative)

- Budget.spent_amount_cents == SUM(BudgetItem.spent_amount_cents) for that budget.
  Every item mutation locks the parent budget FIRST, applies the item change,
  then recomputes and writes the aggregate in the same unit of work.
- Status transitions are conditional updates (UPDATE ... WHERE status = expected).
  Losing a race surfaces as ConflictError carrying the current status.
- Closed budgets are frozen: no item, total or allocation changes.
- A budget with any recorded spend cannot be deleted.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Account, Budget, BudgetAllocation, BudgetItem, FinancialYear
from ..money import percentage, require_non_negative_cents, require_positive_cents
from ..time_utils import parse_iso_date, utcnow
from .audit_service import append_finance_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number


BUDGET_STATUS_DRAFT = "draft"
BUDGET_STATUS_APPROVED = "approved"
BUDGET_STATUS_ACTIVE = "active"
BUDGET_STATUS_CLOSED = "closed"
BUDGET_STATUSES = (BUDGET_STATUS_DRAFT, BUDGET_STATUS_APPROVED, BUDGET_STATUS_ACTIVE, BUDGET_STATUS_CLOSED)

VARIANCE_OVER_BUDGET = "Over Budget"
VARIANCE_UNDER_UTILIZED = "Under Utilized"
VARIANCE_ON_TRACK = "On Track"

# Items spending less than this share of their allocation are under-utilized
UNDER_UTILIZED_RATIO = Decimal("0.8")


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _lock_budget(budget_id: int) -> Budget:
    budget = lock_for_update(db.session.query(Budget).filter_by(id=budget_id)).first()
    if not budget:
        raise NotFoundError(f"Budget {budget_id} not found")
    return budget


def _require_open(budget: Budget) -> None:
    if budget.status == BUDGET_STATUS_CLOSED:
        raise ConflictError(
            f"Budget {budget.budget_number} is closed",
            current_status=budget.status,
            current=budget.to_dict(),
        )


def _sum_item_spend(budget_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(BudgetItem.spent_amount_cents), 0))
        .filter(BudgetItem.budget_id == budget_id)
        .scalar()
    )


def _recompute_spent(budget: Budget) -> int:
    """Write SUM(items.spent) onto the locked budget. Pending item changes autoflush first."""
    total = _sum_item_spend(budget.id)
    if budget.spent_amount_cents != total:
        budget.spent_amount_cents = total
    # Any item change rewrites the budget row so its version check always runs.
    budget.updated_at = utcnow()
    db.session.flush()
    return total


def _require_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def _validate_item_payload(item: dict) -> dict:
    name = (item.get("name") or "").strip()
    if not name:
        raise ValidationError("Budget item name is required")
    account_id = item.get("account_id")
    if account_id is None:
        raise ValidationError("Budget item account_id is required")
    allocated = item.get("allocated_amount_cents", 0)
    require_non_negative_cents(allocated, "allocated_amount_cents")
    return {
        "name": name,
        "account_id": account_id,
        "allocated_amount_cents": allocated,
        "description": item.get("description"),
    }


def _transition(budget_id: int, from_statuses: tuple[str, ...], to_status: str, **values) -> Budget:
    """Conditional status update; bumps version_id so cached copies go stale."""
    result = db.session.execute(
        update(Budget)
        .where(Budget.id == budget_id, Budget.status.in_(from_statuses))
        .values(status=to_status, version_id=Budget.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    budget = db.session.get(Budget, budget_id, populate_existing=True)
    if budget is None:
        raise NotFoundError(f"Budget {budget_id} not found")
    if result.rowcount == 0:
        raise ConflictError(
            f"Cannot move budget {budget.budget_number} from {budget.status} to {to_status}",
            current_status=budget.status,
            current=budget.to_dict(),
        )
    return budget


# =============================================================================
# BUDGETS
# =============================================================================

def get_budget(budget_id: int) -> Budget:
    budget = db.session.get(Budget, budget_id)
    if not budget:
        raise NotFoundError(f"Budget {budget_id} not found")
    return budget


def list_budgets(status: str | None = None, financial_year_id: int | None = None) -> list[Budget]:
    query = db.session.query(Budget)
    if status:
        query = query.filter(Budget.status == status)
    if financial_year_id is not None:
        query = query.filter(Budget.financial_year_id == financial_year_id)
    return query.order_by(Budget.created_at.desc(), Budget.id.desc()).all()


def create_budget(
    financial_year_id: int,
    total_amount_cents: int | None = None,
    items: list[dict] | None = None,
    name: str | None = None,
    description: str | None = None,
    created_by_user_id: int | None = None,
) -> Budget:
    """
    Create a DRAFT budget with spent = 0.

    When total_amount_cents is omitted it defaults to the sum of the items'
    allocations. name defaults to the generated budget number.
    """
    payloads = [_validate_item_payload(item) for item in (items or [])]
    if total_amount_cents is None:
        total_amount_cents = sum(p["allocated_amount_cents"] for p in payloads)
    require_non_negative_cents(total_amount_cents, "total_amount_cents")

    def _op():
        if not db.session.get(FinancialYear, financial_year_id):
            raise NotFoundError(f"Financial year {financial_year_id} not found")
        for payload in payloads:
            _require_account(payload["account_id"])

        number = next_document_number(document_type="budget", prefix="BDG")
        budget = Budget(
            budget_number=number,
            name=(name or "").strip() or number,
            financial_year_id=financial_year_id,
            total_amount_cents=total_amount_cents,
            spent_amount_cents=0,
            status=BUDGET_STATUS_DRAFT,
            description=description,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(budget)
        db.session.flush()

        for payload in payloads:
            db.session.add(BudgetItem(budget_id=budget.id, spent_amount_cents=0, **payload))
        db.session.flush()

        append_finance_event(
            event_type="budget.created",
            event_category="budget",
            entity_type="budget",
            entity_id=budget.id,
            actor_user_id=created_by_user_id,
            amount_cents=total_amount_cents,
        )
        return budget

    return run_with_retry(_op)


def update_budget(
    budget_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    total_amount_cents: int | None = None,
) -> Budget:
    if total_amount_cents is not None:
        require_non_negative_cents(total_amount_cents, "total_amount_cents")

    def _op():
        budget = _lock_budget(budget_id)
        _require_open(budget)
        if name is not None:
            if not name.strip():
                raise ValidationError("Budget name cannot be empty")
            budget.name = name.strip()
        if description is not None:
            budget.description = description
        if total_amount_cents is not None:
            budget.total_amount_cents = total_amount_cents
        db.session.flush()
        return budget

    return run_with_retry(_op)


def delete_budget(budget_id: int) -> None:
    def _op():
        budget = _lock_budget(budget_id)
        if budget.spent_amount_cents > 0:
            raise ConflictError(
                "Cannot delete a budget with recorded spending",
                current_status=budget.status,
                current=budget.to_dict(),
            )
        append_finance_event(
            event_type="budget.deleted",
            event_category="budget",
            entity_type="budget",
            entity_id=budget.id,
            note=budget.budget_number,
        )
        db.session.delete(budget)
        db.session.flush()

    run_with_retry(_op)


def approve_budget(budget_id: int, approver_user_id: int | None = None) -> Budget:
    """draft -> approved. A second concurrent approval gets ConflictError."""
    def _op():
        budget = _transition(
            budget_id,
            (BUDGET_STATUS_DRAFT,),
            BUDGET_STATUS_APPROVED,
            approved_by_user_id=approver_user_id,
            approved_at=utcnow(),
        )
        append_finance_event(
            event_type="budget.approved",
            event_category="budget",
            entity_type="budget",
            entity_id=budget.id,
            actor_user_id=approver_user_id,
            amount_cents=budget.total_amount_cents,
        )
        return budget

    return run_with_retry(_op)


def activate_budget(budget_id: int, user_id: int | None = None) -> Budget:
    def _op():
        budget = _transition(budget_id, (BUDGET_STATUS_APPROVED,), BUDGET_STATUS_ACTIVE)
        append_finance_event(
            event_type="budget.activated",
            event_category="budget",
            entity_type="budget",
            entity_id=budget.id,
            actor_user_id=user_id,
        )
        return budget

    return run_with_retry(_op)


def close_budget(budget_id: int, user_id: int | None = None) -> Budget:
    def _op():
        budget = _transition(
            budget_id,
            (BUDGET_STATUS_APPROVED, BUDGET_STATUS_ACTIVE),
            BUDGET_STATUS_CLOSED,
            closed_at=utcnow(),
        )
        append_finance_event(
            event_type="budget.closed",
            event_category="budget",
            entity_type="budget",
            entity_id=budget.id,
            actor_user_id=user_id,
            amount_cents=budget.spent_amount_cents,
        )
        return budget

    return run_with_retry(_op)


# =============================================================================
# BUDGET ITEMS
# =============================================================================

def _get_item(item_id: int) -> BudgetItem:
    item = db.session.get(BudgetItem, item_id)
    if not item:
        raise NotFoundError(f"Budget item {item_id} not found")
    return item


def add_budget_item(
    budget_id: int,
    name: str,
    account_id: int,
    allocated_amount_cents: int = 0,
    description: str | None = None,
) -> BudgetItem:
    payload = _validate_item_payload(
        {
            "name": name,
            "account_id": account_id,
            "allocated_amount_cents": allocated_amount_cents,
            "description": description,
        }
    )

    def _op():
        budget = _lock_budget(budget_id)
        _require_open(budget)
        _require_account(account_id)
        item = BudgetItem(budget_id=budget.id, spent_amount_cents=0, **payload)
        db.session.add(item)
        _recompute_spent(budget)
        return item

    return run_with_retry(_op)


def update_budget_item(
    item_id: int,
    *,
    name: str | None = None,
    account_id: int | None = None,
    allocated_amount_cents: int | None = None,
    spent_amount_cents: int | None = None,
    description: str | None = None,
) -> BudgetItem:
    if allocated_amount_cents is not None:
        require_non_negative_cents(allocated_amount_cents, "allocated_amount_cents")
    if spent_amount_cents is not None:
        require_non_negative_cents(spent_amount_cents, "spent_amount_cents")
    if name is not None and not name.strip():
        raise ValidationError("Budget item name cannot be empty")

    def _op():
        budget_id = _get_item(item_id).budget_id
        budget = _lock_budget(budget_id)
        _require_open(budget)
        item = db.session.get(BudgetItem, item_id, populate_existing=True)

        if name is not None:
            item.name = name.strip()
        if account_id is not None:
            _require_account(account_id)
            item.account_id = account_id
        if allocated_amount_cents is not None:
            item.allocated_amount_cents = allocated_amount_cents
        if spent_amount_cents is not None:
            item.spent_amount_cents = spent_amount_cents
        if description is not None:
            item.description = description

        _recompute_spent(budget)
        return item

    return run_with_retry(_op)


def record_item_spend(item_id: int, amount_cents: int, user_id: int | None = None) -> BudgetItem:
    """Add amount_cents to an item's spend and roll it up onto the budget."""
    require_positive_cents(amount_cents, "amount_cents")

    def _op():
        budget_id = _get_item(item_id).budget_id
        budget = _lock_budget(budget_id)
        _require_open(budget)
        item = db.session.get(BudgetItem, item_id, populate_existing=True)
        item.spent_amount_cents = item.spent_amount_cents + amount_cents
        _recompute_spent(budget)

        append_finance_event(
            event_type="budget.item_spend",
            event_category="budget",
            entity_type="budget_item",
            entity_id=item.id,
            actor_user_id=user_id,
            amount_cents=amount_cents,
        )
        return item

    return run_with_retry(_op)


def delete_budget_item(item_id: int) -> None:
    def _op():
        budget_id = _get_item(item_id).budget_id
        budget = _lock_budget(budget_id)
        _require_open(budget)
        item = db.session.get(BudgetItem, item_id, populate_existing=True)
        if item.spent_amount_cents > 0:
            raise ConflictError(
                "Cannot delete a budget item with recorded spending",
                current=item.to_dict(),
            )
        budget.items.remove(item)
        _recompute_spent(budget)

    run_with_retry(_op)


def recompute_budget_spent(budget_id: int, repair: bool = False) -> dict:
    """
    Audit tool: compare the stored aggregate with the item sum.

    Returns {"budget_id", "stored_cents", "computed_cents", "drift_cents", "repaired"}.
    """
    def _op():
        budget = _lock_budget(budget_id)
        stored = budget.spent_amount_cents
        computed = _sum_item_spend(budget.id)
        repaired = False
        if repair and stored != computed:
            budget.spent_amount_cents = computed
            db.session.flush()
            append_finance_event(
                event_type="budget.spent_repaired",
                event_category="budget",
                entity_type="budget",
                entity_id=budget.id,
                amount_cents=computed - stored,
            )
            repaired = True
        return {
            "budget_id": budget.id,
            "stored_cents": stored,
            "computed_cents": computed,
            "drift_cents": stored - computed,
            "repaired": repaired,
        }

    return run_with_retry(_op)


# =============================================================================
# REPORTS
# =============================================================================

def variance_status(allocated_cents: int, spent_cents: int) -> str:
    if spent_cents > allocated_cents:
        return VARIANCE_OVER_BUDGET
    if Decimal(spent_cents) < Decimal(allocated_cents) * UNDER_UTILIZED_RATIO:
        return VARIANCE_UNDER_UTILIZED
    return VARIANCE_ON_TRACK


def get_budget_variance(budget_id: int) -> list[dict]:
    """
    Per-item variance, most overspent first.

    variance_cents = allocated - spent
    variance_percentage = (spent - allocated) / allocated * 100, 0 when allocated is 0
    """
    budget = get_budget(budget_id)
    rows = []
    for item in budget.items:
        allocated = item.allocated_amount_cents
        spent = item.spent_amount_cents
        rows.append(
            {
                "item_id": item.id,
                "name": item.name,
                "account_id": item.account_id,
                "account_code": item.account.code if item.account else None,
                "account_name": item.account.name if item.account else None,
                "allocated_amount_cents": allocated,
                "spent_amount_cents": spent,
                "variance_cents": allocated - spent,
                "variance_percentage": percentage(spent - allocated, allocated),
                "status": variance_status(allocated, spent),
            }
        )
    rows.sort(key=lambda r: (r["variance_cents"], r["item_id"]))
    return rows


def get_budget_summary(budget_id: int) -> dict:
    budget = get_budget(budget_id)
    items = budget.items

    by_type: dict[str, dict] = {}
    for item in items:
        account_type = item.account.account_type if item.account else "unassigned"
        bucket = by_type.setdefault(
            account_type,
            {"account_type": account_type, "allocated_amount_cents": 0, "spent_amount_cents": 0, "item_count": 0},
        )
        bucket["allocated_amount_cents"] += item.allocated_amount_cents
        bucket["spent_amount_cents"] += item.spent_amount_cents
        bucket["item_count"] += 1

    total_allocated = sum(i.allocated_amount_cents for i in items)
    exhausted = sum(1 for i in items if i.spent_amount_cents >= i.allocated_amount_cents and i.allocated_amount_cents > 0)

    return {
        "budget": budget.to_dict(),
        "total_amount_cents": budget.total_amount_cents,
        "total_allocated_cents": total_allocated,
        "spent_amount_cents": budget.spent_amount_cents,
        "remaining_amount_cents": budget.total_amount_cents - budget.spent_amount_cents,
        "utilization_percentage": percentage(budget.spent_amount_cents, budget.total_amount_cents),
        "item_count": len(items),
        "exhausted_item_count": exhausted,
        "by_account_type": sorted(by_type.values(), key=lambda b: b["account_type"]),
    }


# =============================================================================
# PERIOD ALLOCATIONS
# =============================================================================

def list_allocations(budget_id: int) -> list[BudgetAllocation]:
    get_budget(budget_id)
    return (
        db.session.query(BudgetAllocation)
        .filter_by(budget_id=budget_id)
        .order_by(BudgetAllocation.period_start.asc(), BudgetAllocation.id.asc())
        .all()
    )


def create_allocation(
    budget_id: int,
    period_start,
    period_end,
    allocated_amount_cents: int,
    notes: str | None = None,
) -> BudgetAllocation:
    start = parse_iso_date(period_start)
    end = parse_iso_date(period_end)
    if start is None or end is None:
        raise ValidationError("period_start and period_end are required")
    if start > end:
        raise ValidationError("period_start must be on or before period_end")
    require_non_negative_cents(allocated_amount_cents, "allocated_amount_cents")

    def _op():
        budget = _lock_budget(budget_id)
        _require_open(budget)
        year = budget.financial_year
        if not (year.contains(start) and year.contains(end)):
            raise ValidationError(f"Allocation period must fall within financial year {year.name}")
        allocation = BudgetAllocation(
            budget_id=budget.id,
            period_start=start,
            period_end=end,
            allocated_amount_cents=allocated_amount_cents,
            spent_amount_cents=0,
            notes=notes,
        )
        db.session.add(allocation)
        db.session.flush()
        return allocation

    return run_with_retry(_op)


def update_allocation(
    allocation_id: int,
    *,
    allocated_amount_cents: int | None = None,
    spent_amount_cents: int | None = None,
    notes: str | None = None,
) -> BudgetAllocation:
    """variance_cents is never accepted here; the mapper event recomputes it."""
    if allocated_amount_cents is not None:
        require_non_negative_cents(allocated_amount_cents, "allocated_amount_cents")
    if spent_amount_cents is not None:
        require_non_negative_cents(spent_amount_cents, "spent_amount_cents")

    def _op():
        allocation = db.session.get(BudgetAllocation, allocation_id)
        if not allocation:
            raise NotFoundError(f"Budget allocation {allocation_id} not found")
        budget = _lock_budget(allocation.budget_id)
        _require_open(budget)
        if allocated_amount_cents is not None:
            allocation.allocated_amount_cents = allocated_amount_cents
        if spent_amount_cents is not None:
            allocation.spent_amount_cents = spent_amount_cents
        if notes is not None:
            allocation.notes = notes
        db.session.flush()
        return allocation

    return run_with_retry(_op)


def delete_allocation(allocation_id: int) -> None:
    def _op():
        allocation = db.session.get(BudgetAllocation, allocation_id)
        if not allocation:
            raise NotFoundError(f"Budget allocation {allocation_id} not found")
        budget = _lock_budget(allocation.budget_id)
        _require_open(budget)
        budget.allocations.remove(allocation)
        db.session.flush()

    run_with_retry(_op)
