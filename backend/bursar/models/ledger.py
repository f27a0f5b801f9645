from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class Vendor(db.Model):
    """Supplier reference that expense records may point at."""
    __tablename__ = "vendors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    vendor_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    contact_person = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_code": self.vendor_code,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class IncomeRecord(db.Model):
    """
    Settled income.

    Income has no approval gate: it is written as COMPLETED and never changes
    status. reference_number is unique when present; the fee importer relies
    on it to suppress duplicate imports.
    """
    __tablename__ = "income_records"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_income_records_amount_positive"),
        db.CheckConstraint("vat_amount_cents >= 0", name="ck_income_records_vat_non_negative"),
        db.Index("ix_income_records_account_date", "account_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    income_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    financial_year_id = db.Column(db.Integer, db.ForeignKey("financial_years.id"), nullable=True, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    vat_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    description = db.Column(db.Text, nullable=True)
    reference_number = db.Column(db.String(64), nullable=True, unique=True)
    payment_method = db.Column(db.String(32), nullable=True)
    student_id = db.Column(db.String(64), nullable=True, index=True)  # external student-fee subsystem id

    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    bank_transaction_id = db.Column(db.Integer, db.ForeignKey("bank_transactions.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("Account")

    @property
    def total_amount_cents(self) -> int:
        return (self.amount_cents or 0) + (self.vat_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "income_number": self.income_number,
            "transaction_date": to_iso_date(self.transaction_date),
            "account_id": self.account_id,
            "financial_year_id": self.financial_year_id,
            "amount_cents": self.amount_cents,
            "vat_amount_cents": self.vat_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "description": self.description,
            "reference_number": self.reference_number,
            "payment_method": self.payment_method,
            "student_id": self.student_id,
            "bank_account_id": self.bank_account_id,
            "bank_transaction_id": self.bank_transaction_id,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ExpenseRecord(db.Model):
    """
    Expense with an approval workflow.

    LIFECYCLE:
    - PENDING: at or above the approval threshold, waiting for a decision
    - APPROVED: approved by a user, or auto-approved below the threshold
    - REJECTED: terminal, reason recorded
    - PAID: terminal, reachable only from APPROVED

    Transitions are conditional updates on status (see transaction_service).
    """
    __tablename__ = "expense_records"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expense_records_amount_positive"),
        db.CheckConstraint("vat_amount_cents >= 0", name="ck_expense_records_vat_non_negative"),
        db.Index("ix_expense_records_account_date", "account_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    financial_year_id = db.Column(db.Integer, db.ForeignKey("financial_years.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    vat_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    description = db.Column(db.Text, nullable=True)
    reference_number = db.Column(db.String(64), nullable=True, index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    auto_approved = db.Column(db.Boolean, nullable=False, default=False)

    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    paid_by_user_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    bank_transaction_id = db.Column(db.Integer, db.ForeignKey("bank_transactions.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    account = db.relationship("Account")
    vendor = db.relationship("Vendor", backref=db.backref("expenses", lazy=True))

    @property
    def total_amount_cents(self) -> int:
        return (self.amount_cents or 0) + (self.vat_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_number": self.expense_number,
            "transaction_date": to_iso_date(self.transaction_date),
            "account_id": self.account_id,
            "financial_year_id": self.financial_year_id,
            "vendor_id": self.vendor_id,
            "amount_cents": self.amount_cents,
            "vat_amount_cents": self.vat_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "description": self.description,
            "reference_number": self.reference_number,
            "payment_method": self.payment_method,
            "status": self.status,
            "auto_approved": self.auto_approved,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "paid_by_user_id": self.paid_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
            "bank_account_id": self.bank_account_id,
            "bank_transaction_id": self.bank_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
