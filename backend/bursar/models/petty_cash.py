from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class PettyCashCustodian(db.Model):
    """
    Running petty-cash balance for one custodian.

    WHY: The balance is maintained incrementally on every entry instead of
    being summed from history. This row is also the per-custodian lock:
    recording an entry locks it (and version_id catches concurrent writers
    on stores that ignore SELECT ... FOR UPDATE).
    """
    __tablename__ = "petty_cash_custodians"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    custodian = db.Column(db.String(128), nullable=False, unique=True)
    current_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "custodian": self.custodian,
            "current_balance_cents": self.current_balance_cents,
            "version_id": self.version_id,
        }


class PettyCashEntry(db.Model):
    """
    Petty-cash journal line.

    Chain invariant per custodian, in recording order (id):
        balance_after[i] == balance_before[i] +/- amount[i] == balance_before[i+1]
    """
    __tablename__ = "petty_cash_entries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_petty_cash_entries_amount_positive"),
        db.Index("ix_petty_cash_entries_custodian_id", "custodian_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    custodian_id = db.Column(db.Integer, db.ForeignKey("petty_cash_custodians.id"), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    entry_type = db.Column(db.String(16), nullable=False, index=True)  # replenishment, disbursement
    amount_cents = db.Column(db.BigInteger, nullable=False)
    category = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    receipt_number = db.Column(db.String(64), nullable=True)
    balance_before_cents = db.Column(db.BigInteger, nullable=False)
    balance_after_cents = db.Column(db.BigInteger, nullable=False)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    custodian_account = db.relationship("PettyCashCustodian", backref=db.backref("entries", lazy=True))

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.entry_type == "replenishment" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "custodian": self.custodian_account.custodian if self.custodian_account else None,
            "transaction_date": to_iso_date(self.transaction_date),
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
            "receipt_number": self.receipt_number,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
