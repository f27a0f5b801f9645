# Overview: Bank accounts, deposits, withdrawals and account-to-account transfers.

"""
Bank Transfer Engine

Balance Invariants (authoritative)

- BankAccount.current_balance_cents == opening_balance_cents
  + SUM(signed effect of every BankTransaction touching the account).
- The immutable BankTransaction row is written first, then the balance
  deltas, all in one unit of work. A failure anywhere rolls back both.
- Transfers lock both accounts in ascending id order, so two opposite
  transfers can never deadlock on each other.
- version_id on BankAccount turns a lost update into StaleDataError, which
  run_with_retry replays.
- A repeated idempotency_key returns the original transaction unchanged.
"""

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import BankAccount, BankTransaction
from ..money import require_non_negative_cents, require_positive_cents
from ..time_utils import parse_iso_date, today
from .audit_service import append_finance_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .settings_service import ALLOW_OVERDRAFT, DEFAULT_CURRENCY, get_setting


BANK_ACCOUNT_TYPES = ("current", "savings", "mobile_money", "other")

TXN_DEPOSIT = "deposit"
TXN_WITHDRAWAL = "withdrawal"
TXN_TRANSFER = "transfer"


# =============================================================================
# ACCOUNTS
# =============================================================================

def get_bank_account(account_id: int) -> BankAccount:
    account = db.session.get(BankAccount, account_id)
    if not account:
        raise NotFoundError(f"Bank account {account_id} not found")
    return account


def list_bank_accounts(is_active: bool | None = None) -> list[BankAccount]:
    query = db.session.query(BankAccount)
    if is_active is not None:
        query = query.filter(BankAccount.is_active.is_(is_active))
    return query.order_by(BankAccount.name.asc(), BankAccount.id.asc()).all()


def create_bank_account(
    name: str,
    account_number: str,
    bank_name: str,
    account_type: str = "current",
    currency: str | None = None,
    opening_balance_cents: int = 0,
    branch: str | None = None,
) -> BankAccount:
    name = (name or "").strip()
    account_number = (account_number or "").strip()
    bank_name = (bank_name or "").strip()
    if not name or not account_number or not bank_name:
        raise ValidationError("name, account_number and bank_name are required")
    if account_type not in BANK_ACCOUNT_TYPES:
        raise ValidationError(f"Invalid bank account type: {account_type}. Must be one of {list(BANK_ACCOUNT_TYPES)}")
    require_non_negative_cents(opening_balance_cents, "opening_balance_cents")

    def _op():
        if db.session.query(BankAccount).filter_by(account_number=account_number).first():
            raise ConflictError(f"Bank account number {account_number} already exists")
        account = BankAccount(
            name=name,
            account_number=account_number,
            bank_name=bank_name,
            branch=branch,
            account_type=account_type,
            currency=(currency or get_setting(DEFAULT_CURRENCY)).upper(),
            opening_balance_cents=opening_balance_cents,
            current_balance_cents=opening_balance_cents,
            is_active=True,
        )
        db.session.add(account)
        db.session.flush()
        append_finance_event(
            event_type="bank_account.created",
            event_category="bank",
            entity_type="bank_account",
            entity_id=account.id,
            amount_cents=opening_balance_cents,
        )
        return account

    return run_with_retry(_op)


def deactivate_bank_account(account_id: int) -> BankAccount:
    def _op():
        account = _lock_accounts(account_id)[0]
        account.is_active = False
        db.session.flush()
        append_finance_event(
            event_type="bank_account.deactivated",
            event_category="bank",
            entity_type="bank_account",
            entity_id=account.id,
        )
        return account

    return run_with_retry(_op)


def list_bank_transactions(account_id: int | None = None, limit: int = 100, offset: int = 0) -> list[BankTransaction]:
    query = db.session.query(BankTransaction)
    if account_id is not None:
        query = query.filter(
            (BankTransaction.account_id == account_id) | (BankTransaction.to_account_id == account_id)
        )
    return (
        query.order_by(BankTransaction.transaction_date.desc(), BankTransaction.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )


# =============================================================================
# INTERNAL POSTING (caller owns the unit of work)
# =============================================================================

def _lock_accounts(*account_ids: int) -> list[BankAccount]:
    """Lock accounts in ascending id order; returns them in the order requested."""
    locked = {}
    for account_id in sorted(set(account_ids)):
        account = lock_for_update(db.session.query(BankAccount).filter_by(id=account_id)).first()
        if not account:
            raise NotFoundError(f"Bank account {account_id} not found")
        locked[account_id] = account
    return [locked[account_id] for account_id in account_ids]


def _require_active(account: BankAccount) -> None:
    if not account.is_active:
        raise ConflictError(
            f"Bank account {account.account_number} is inactive",
            current_status="inactive",
            current=account.to_dict(),
        )


def _overdraft_allowed(allow_overdraft: bool | None) -> bool:
    if allow_overdraft is None:
        return bool(get_setting(ALLOW_OVERDRAFT))
    return allow_overdraft


def _check_funds(account: BankAccount, amount_cents: int, allow_overdraft: bool | None) -> None:
    if _overdraft_allowed(allow_overdraft):
        return
    if account.current_balance_cents - amount_cents < 0:
        raise ConflictError(
            f"Insufficient funds in bank account {account.account_number}",
            current_status="insufficient_funds",
            current=account.to_dict(),
        )


def _find_idempotent(
    idempotency_key: str | None,
    *,
    transaction_type: str,
    account_id: int,
    to_account_id: int | None,
    amount_cents: int,
) -> BankTransaction | None:
    if not idempotency_key:
        return None
    existing = db.session.query(BankTransaction).filter_by(idempotency_key=idempotency_key).first()
    if existing is None:
        return None
    same = (
        existing.transaction_type == transaction_type
        and existing.account_id == account_id
        and existing.to_account_id == to_account_id
        and existing.amount_cents == amount_cents
    )
    if not same:
        raise ConflictError(
            f"Idempotency key {idempotency_key} was already used for a different operation",
            current=existing.to_dict(),
        )
    return existing


def _new_transaction(
    *,
    transaction_type: str,
    account_id: int,
    amount_cents: int,
    to_account_id: int | None = None,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
) -> BankTransaction:
    txn = BankTransaction(
        transaction_number=next_document_number(document_type="bank_transaction", prefix="BTX"),
        transaction_type=transaction_type,
        account_id=account_id,
        to_account_id=to_account_id,
        amount_cents=amount_cents,
        transaction_date=parse_iso_date(transaction_date) or today(),
        reference_number=reference_number,
        description=description,
        idempotency_key=idempotency_key,
        created_by_user_id=user_id,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def post_deposit(
    account_id: int,
    amount_cents: int,
    *,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
) -> BankTransaction:
    """Deposit inside the caller's unit of work (no commit)."""
    existing = _find_idempotent(
        idempotency_key,
        transaction_type=TXN_DEPOSIT,
        account_id=account_id,
        to_account_id=None,
        amount_cents=amount_cents,
    )
    if existing:
        return existing

    account = _lock_accounts(account_id)[0]
    _require_active(account)
    txn = _new_transaction(
        transaction_type=TXN_DEPOSIT,
        account_id=account.id,
        amount_cents=amount_cents,
        transaction_date=transaction_date,
        reference_number=reference_number,
        description=description,
        idempotency_key=idempotency_key,
        user_id=user_id,
    )
    account.current_balance_cents = account.current_balance_cents + amount_cents
    db.session.flush()

    append_finance_event(
        event_type="bank.deposit",
        event_category="bank",
        entity_type="bank_transaction",
        entity_id=txn.id,
        actor_user_id=user_id,
        amount_cents=amount_cents,
    )
    return txn


def post_withdrawal(
    account_id: int,
    amount_cents: int,
    *,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
    allow_overdraft: bool | None = None,
) -> BankTransaction:
    """Withdrawal inside the caller's unit of work (no commit)."""
    existing = _find_idempotent(
        idempotency_key,
        transaction_type=TXN_WITHDRAWAL,
        account_id=account_id,
        to_account_id=None,
        amount_cents=amount_cents,
    )
    if existing:
        return existing

    account = _lock_accounts(account_id)[0]
    _require_active(account)
    _check_funds(account, amount_cents, allow_overdraft)
    txn = _new_transaction(
        transaction_type=TXN_WITHDRAWAL,
        account_id=account.id,
        amount_cents=amount_cents,
        transaction_date=transaction_date,
        reference_number=reference_number,
        description=description,
        idempotency_key=idempotency_key,
        user_id=user_id,
    )
    account.current_balance_cents = account.current_balance_cents - amount_cents
    db.session.flush()

    append_finance_event(
        event_type="bank.withdrawal",
        event_category="bank",
        entity_type="bank_transaction",
        entity_id=txn.id,
        actor_user_id=user_id,
        amount_cents=amount_cents,
    )
    return txn


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def deposit(
    account_id: int,
    amount_cents: int,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
) -> BankTransaction:
    require_positive_cents(amount_cents)

    def _op():
        return post_deposit(
            account_id,
            amount_cents,
            transaction_date=transaction_date,
            reference_number=reference_number,
            description=description,
            idempotency_key=idempotency_key,
            user_id=user_id,
        )

    return run_with_retry(_op)


def withdraw(
    account_id: int,
    amount_cents: int,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
    allow_overdraft: bool | None = None,
) -> BankTransaction:
    require_positive_cents(amount_cents)

    def _op():
        return post_withdrawal(
            account_id,
            amount_cents,
            transaction_date=transaction_date,
            reference_number=reference_number,
            description=description,
            idempotency_key=idempotency_key,
            user_id=user_id,
            allow_overdraft=allow_overdraft,
        )

    return run_with_retry(_op)


def transfer(
    from_account_id: int,
    to_account_id: int,
    amount_cents: int,
    transaction_date=None,
    reference_number: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
    allow_overdraft: bool | None = None,
) -> BankTransaction:
    """
    Move money between two accounts as one unit of work.

    Both balances change or neither does. Exactly one BankTransaction of
    type "transfer" is written.
    """
    require_positive_cents(amount_cents)
    if from_account_id == to_account_id:
        raise ValidationError("Cannot transfer to the same account")

    def _op():
        existing = _find_idempotent(
            idempotency_key,
            transaction_type=TXN_TRANSFER,
            account_id=from_account_id,
            to_account_id=to_account_id,
            amount_cents=amount_cents,
        )
        if existing:
            return existing

        source, destination = _lock_accounts(from_account_id, to_account_id)
        _require_active(source)
        _require_active(destination)
        if source.currency != destination.currency:
            raise ValidationError(
                f"Cannot transfer between {source.currency} and {destination.currency} accounts"
            )
        _check_funds(source, amount_cents, allow_overdraft)

        txn = _new_transaction(
            transaction_type=TXN_TRANSFER,
            account_id=source.id,
            to_account_id=destination.id,
            amount_cents=amount_cents,
            transaction_date=transaction_date,
            reference_number=reference_number,
            description=description,
            idempotency_key=idempotency_key,
            user_id=user_id,
        )
        source.current_balance_cents = source.current_balance_cents - amount_cents
        destination.current_balance_cents = destination.current_balance_cents + amount_cents
        db.session.flush()

        append_finance_event(
            event_type="bank.transfer",
            event_category="bank",
            entity_type="bank_transaction",
            entity_id=txn.id,
            actor_user_id=user_id,
            amount_cents=amount_cents,
            note=f"{source.account_number} -> {destination.account_number}",
        )
        return txn

    return run_with_retry(_op)


# =============================================================================
# RECONCILIATION
# =============================================================================

def computed_balance_cents(account: BankAccount) -> int:
    txns = (
        db.session.query(BankTransaction)
        .filter((BankTransaction.account_id == account.id) | (BankTransaction.to_account_id == account.id))
        .all()
    )
    return account.opening_balance_cents + sum(t.signed_amount_for(account.id) for t in txns)


def reconcile_bank_account(account_id: int, repair: bool = False) -> dict:
    """
    Recompute opening + signed history and compare with the cached balance.

    Returns {"account_id", "stored_cents", "computed_cents", "drift_cents", "repaired"}.
    """
    def _op():
        account = _lock_accounts(account_id)[0]
        stored = account.current_balance_cents
        computed = computed_balance_cents(account)
        repaired = False
        if repair and stored != computed:
            account.current_balance_cents = computed
            db.session.flush()
            append_finance_event(
                event_type="bank.balance_repaired",
                event_category="bank",
                entity_type="bank_account",
                entity_id=account.id,
                amount_cents=computed - stored,
            )
            repaired = True
        return {
            "account_id": account.id,
            "stored_cents": stored,
            "computed_cents": computed,
            "drift_cents": stored - computed,
            "repaired": repaired,
        }

    return run_with_retry(_op)
