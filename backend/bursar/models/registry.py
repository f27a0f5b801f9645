from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class Account(db.Model):
    """
    Chart-of-accounts entry.

    Accounts form a tree through parent_id and are never deleted: historical
    income, expense and budget rows keep referencing them. Retiring an account
    means clearing is_active.
    """
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    account_type = db.Column(db.String(16), nullable=False, index=True)  # asset, liability, income, expense, equity
    parent_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    parent = db.relationship("Account", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Account id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "parent_id": self.parent_id,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class FinancialYear(db.Model):
    """
    Financial-year calendar entry.

    LIFECYCLE: draft -> active -> closed

    Which year is "current" lives in FinancialYearPointer, not on this row,
    so switching years is a single-row update.
    """
    __tablename__ = "financial_years"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_financial_years_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def is_current(self) -> bool:
        return self.current_pointer is not None

    def contains(self, day) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "status": self.status,
            "is_current": self.is_current,
            "closed_at": to_utc_z(self.closed_at),
            "created_at": to_utc_z(self.created_at),
        }


class FinancialYearPointer(db.Model):
    """
    Single-row pointer to the current financial year.

    The check constraint pins the table to id=1, so at most one year can ever
    be current and changing it never passes through a zero-or-many state.
    """
    __tablename__ = "financial_year_pointer"
    __table_args__ = (
        db.CheckConstraint("id = 1", name="ck_financial_year_pointer_singleton"),
    )

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    financial_year_id = db.Column(db.Integer, db.ForeignKey("financial_years.id"), nullable=True, unique=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    financial_year = db.relationship(
        "FinancialYear",
        backref=db.backref("current_pointer", uselist=False, lazy=True),
    )

    __mapper_args__ = {"version_id_col": version_id}
