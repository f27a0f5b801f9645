from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class Budget(db.Model):
    """
    Budget for one financial year.

    LIFECYCLE: draft -> approved -> active -> closed

    spent_amount_cents is a derived aggregate: it always equals the sum of
    the items' spent_amount_cents and is only written by the budget service
    in the same unit of work as the item change that invalidates it.
    """
    __tablename__ = "budgets"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_budgets_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    budget_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    financial_year_id = db.Column(db.Integer, db.ForeignKey("financial_years.id"), nullable=False, index=True)

    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    spent_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    description = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    financial_year = db.relationship("FinancialYear", backref=db.backref("budgets", lazy=True))
    items = db.relationship(
        "BudgetItem",
        backref="budget",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="BudgetItem.id",
    )
    allocations = db.relationship(
        "BudgetAllocation",
        backref="budget",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="BudgetAllocation.period_start",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Budget id={self.id} number={self.budget_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "budget_number": self.budget_number,
            "name": self.name,
            "financial_year_id": self.financial_year_id,
            "total_amount_cents": self.total_amount_cents,
            "spent_amount_cents": self.spent_amount_cents,
            "remaining_amount_cents": self.total_amount_cents - self.spent_amount_cents,
            "status": self.status,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class BudgetItem(db.Model):
    """Budget line item against one account."""
    __tablename__ = "budget_items"
    __table_args__ = (
        db.CheckConstraint("allocated_amount_cents >= 0", name="ck_budget_items_allocated_non_negative"),
        db.CheckConstraint("spent_amount_cents >= 0", name="ck_budget_items_spent_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    allocated_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    spent_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "account_id": self.account_id,
            "account_code": self.account.code if self.account else None,
            "account_name": self.account.name if self.account else None,
            "name": self.name,
            "allocated_amount_cents": self.allocated_amount_cents,
            "spent_amount_cents": self.spent_amount_cents,
            "remaining_amount_cents": self.allocated_amount_cents - self.spent_amount_cents,
            "description": self.description,
        }


class BudgetAllocation(db.Model):
    """
    Period allocation of a budget.

    variance_cents is stored for reporting but never trusted as input: the
    mapper events below overwrite it from its inputs on every insert/update.
    """
    __tablename__ = "budget_allocations"
    __table_args__ = (
        db.CheckConstraint("period_start <= period_end", name="ck_budget_allocations_period"),
        db.Index("ix_budget_allocations_period", "period_start", "period_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id"), nullable=False, index=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    allocated_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    spent_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    variance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def compute_variance(self) -> int:
        return (self.allocated_amount_cents or 0) - (self.spent_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "period_start": to_iso_date(self.period_start),
            "period_end": to_iso_date(self.period_end),
            "allocated_amount_cents": self.allocated_amount_cents,
            "spent_amount_cents": self.spent_amount_cents,
            "variance_cents": self.compute_variance(),
            "notes": self.notes,
        }


@event.listens_for(BudgetAllocation, "before_insert")
@event.listens_for(BudgetAllocation, "before_update")
def _refresh_allocation_variance(mapper, connection, target: BudgetAllocation) -> None:
    target.variance_cents = target.compute_variance()
