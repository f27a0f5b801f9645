from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class BankAccount(db.Model):
    """
    School bank (or mobile-money) account.

    current_balance_cents is a cached aggregate. The authoritative value is
    opening_balance_cents plus the signed sum of every BankTransaction that
    touches the account; bank_service.reconcile_bank_account recomputes it.

    version_id guards the cached balance against lost updates.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    account_number = db.Column(db.String(64), nullable=False, unique=True)
    bank_name = db.Column(db.String(128), nullable=False)
    branch = db.Column(db.String(128), nullable=True)
    account_type = db.Column(db.String(16), nullable=False, default="current")
    currency = db.Column(db.String(3), nullable=False, default="KES")

    opening_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    current_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<BankAccount id={self.id} balance={self.current_balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "branch": self.branch,
            "account_type": self.account_type,
            "currency": self.currency,
            "opening_balance_cents": self.opening_balance_cents,
            "current_balance_cents": self.current_balance_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class BankTransaction(db.Model):
    """
    Immutable bank movement.

    IMMUTABLE: corrections are new transactions, never edits.
    A transfer has a destination distinct from its source; deposits and
    withdrawals have none (enforced by ck_bank_transactions_destination).
    """
    __tablename__ = "bank_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_bank_transactions_amount_positive"),
        db.CheckConstraint(
            "(transaction_type = 'transfer' AND to_account_id IS NOT NULL AND to_account_id <> account_id)"
            " OR (transaction_type <> 'transfer' AND to_account_id IS NULL)",
            name="ck_bank_transactions_destination",
        ),
        db.Index("ix_bank_transactions_account_date", "account_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # deposit, withdrawal, transfer
    account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=False)
    to_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    transaction_date = db.Column(db.Date, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Caller-supplied key that makes a retried deposit/withdrawal/transfer a no-op
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("BankAccount", foreign_keys=[account_id])
    to_account = db.relationship("BankAccount", foreign_keys=[to_account_id])

    def signed_amount_for(self, bank_account_id: int) -> int:
        """Effect of this transaction on the given account's balance."""
        if self.transaction_type == "deposit":
            return self.amount_cents if self.account_id == bank_account_id else 0
        if self.transaction_type == "withdrawal":
            return -self.amount_cents if self.account_id == bank_account_id else 0
        if self.account_id == bank_account_id:
            return -self.amount_cents
        if self.to_account_id == bank_account_id:
            return self.amount_cents
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "transaction_type": self.transaction_type,
            "account_id": self.account_id,
            "to_account_id": self.to_account_id,
            "amount_cents": self.amount_cents,
            "transaction_date": to_iso_date(self.transaction_date),
            "reference_number": self.reference_number,
            "description": self.description,
            "idempotency_key": self.idempotency_key,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
