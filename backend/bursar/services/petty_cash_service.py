# Overview: Petty-cash journal with a per-custodian running balance.

"""
Petty Cash Service

Chain Invariants (authoritative)

- For each custodian, entries in recording order (id) form a chain:
  entry.balance_after = entry.balance_before +/- amount, and each entry's
  balance_before equals the previous entry's balance_after (0 for the first).
- PettyCashCustodian.current_balance_cents equals the last balance_after.
- Recording an entry reads and rewrites the custodian row under lock with a
  version check, so two concurrent entries for one custodian serialize.
- Balances may go negative; petty cash is a record of what happened.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import PettyCashCustodian, PettyCashEntry
from ..money import require_positive_cents
from ..time_utils import parse_iso_date, today
from .audit_service import append_finance_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number


ENTRY_REPLENISHMENT = "replenishment"
ENTRY_DISBURSEMENT = "disbursement"
ENTRY_TYPES = (ENTRY_REPLENISHMENT, ENTRY_DISBURSEMENT)


def _signed(entry_type: str, amount_cents: int) -> int:
    return amount_cents if entry_type == ENTRY_REPLENISHMENT else -amount_cents


def _lock_custodian(custodian: str, create: bool = False) -> PettyCashCustodian | None:
    row = lock_for_update(db.session.query(PettyCashCustodian).filter_by(custodian=custodian)).first()
    if row is None and create:
        # A concurrent first entry for the same custodian fails this flush; run_with_retry replays.
        row = PettyCashCustodian(custodian=custodian, current_balance_cents=0)
        db.session.add(row)
        db.session.flush()
    return row


def get_custodian(custodian: str) -> PettyCashCustodian:
    row = db.session.query(PettyCashCustodian).filter_by(custodian=custodian).first()
    if not row:
        raise NotFoundError(f"Petty cash custodian {custodian} not found")
    return row


def record_entry(
    custodian: str,
    entry_type: str,
    amount_cents: int,
    category: str | None = None,
    transaction_date=None,
    description: str | None = None,
    receipt_number: str | None = None,
    user_id: int | None = None,
) -> PettyCashEntry:
    custodian = (custodian or "").strip()
    if not custodian:
        raise ValidationError("custodian is required")
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Invalid entry type: {entry_type}. Must be one of {list(ENTRY_TYPES)}")
    require_positive_cents(amount_cents)
    day = parse_iso_date(transaction_date) or today()

    def _op():
        row = _lock_custodian(custodian, create=True)
        before = row.current_balance_cents
        after = before + _signed(entry_type, amount_cents)

        entry = PettyCashEntry(
            transaction_number=next_document_number(document_type="petty_cash", prefix="PC"),
            custodian_id=row.id,
            transaction_date=day,
            entry_type=entry_type,
            amount_cents=amount_cents,
            category=category,
            description=description,
            receipt_number=receipt_number,
            balance_before_cents=before,
            balance_after_cents=after,
            created_by_user_id=user_id,
        )
        db.session.add(entry)
        row.current_balance_cents = after
        db.session.flush()

        append_finance_event(
            event_type=f"petty_cash.{entry_type}",
            event_category="petty_cash",
            entity_type="petty_cash_entry",
            entity_id=entry.id,
            actor_user_id=user_id,
            amount_cents=amount_cents,
            note=custodian,
        )
        return entry

    return run_with_retry(_op)


def list_entries(
    custodian: str | None = None,
    entry_type: str | None = None,
    start_date=None,
    end_date=None,
    limit: int = 100,
) -> list[PettyCashEntry]:
    query = db.session.query(PettyCashEntry)
    if custodian:
        query = query.join(PettyCashCustodian).filter(PettyCashCustodian.custodian == custodian)
    if entry_type:
        query = query.filter(PettyCashEntry.entry_type == entry_type)
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start:
        query = query.filter(PettyCashEntry.transaction_date >= start)
    if end:
        query = query.filter(PettyCashEntry.transaction_date <= end)
    return query.order_by(PettyCashEntry.id.desc()).limit(max(1, min(limit, 500))).all()


def get_summary() -> dict:
    def _total(entry_type: str, since=None) -> int:
        query = db.session.query(func.coalesce(func.sum(PettyCashEntry.amount_cents), 0)).filter(
            PettyCashEntry.entry_type == entry_type
        )
        if since is not None:
            query = query.filter(PettyCashEntry.transaction_date >= since)
        return int(query.scalar())

    month_start = today().replace(day=1)
    custodians = db.session.query(PettyCashCustodian).order_by(PettyCashCustodian.custodian.asc()).all()

    return {
        "total_replenished_cents": _total(ENTRY_REPLENISHMENT),
        "total_disbursed_cents": _total(ENTRY_DISBURSEMENT),
        "current_balance_cents": sum(c.current_balance_cents for c in custodians),
        "month_replenished_cents": _total(ENTRY_REPLENISHMENT, month_start),
        "month_disbursed_cents": _total(ENTRY_DISBURSEMENT, month_start),
        "active_custodians": sum(1 for c in custodians if c.current_balance_cents > 0),
        "custodians": [c.to_dict() for c in custodians],
    }


def _rechain(entries: list[PettyCashEntry], opening_cents: int) -> tuple[int, int]:
    """Rewrite balances along entries; returns (closing balance, entries changed)."""
    running = opening_cents
    changed = 0
    for entry in entries:
        before = running
        running = before + entry.signed_amount_cents
        if entry.balance_before_cents != before or entry.balance_after_cents != running:
            entry.balance_before_cents = before
            entry.balance_after_cents = running
            changed += 1
    return running, changed


def delete_entry(entry_id: int, user_id: int | None = None) -> None:
    """Remove an entry and re-chain every later entry for that custodian."""
    def _op():
        entry = db.session.get(PettyCashEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Petty cash entry {entry_id} not found")
        row = _lock_custodian(entry.custodian_account.custodian)

        later = (
            db.session.query(PettyCashEntry)
            .filter(PettyCashEntry.custodian_id == row.id, PettyCashEntry.id > entry.id)
            .order_by(PettyCashEntry.id.asc())
            .all()
        )
        opening = entry.balance_before_cents
        append_finance_event(
            event_type="petty_cash.entry_deleted",
            event_category="petty_cash",
            entity_type="petty_cash_entry",
            entity_id=entry.id,
            actor_user_id=user_id,
            amount_cents=entry.amount_cents,
            note=entry.transaction_number,
        )
        db.session.delete(entry)
        closing, _ = _rechain(later, opening)
        row.current_balance_cents = closing
        db.session.flush()

    run_with_retry(_op)


def rebuild_custodian_chain(custodian: str) -> dict:
    """
    Recompute the whole chain for one custodian from zero.

    Returns {"custodian", "entries", "corrected_entries", "stored_balance_cents",
    "computed_balance_cents"}.
    """
    custodian = (custodian or "").strip()

    def _op():
        row = _lock_custodian(custodian)
        if row is None:
            raise NotFoundError(f"Petty cash custodian {custodian} not found")
        entries = (
            db.session.query(PettyCashEntry)
            .filter(PettyCashEntry.custodian_id == row.id)
            .order_by(PettyCashEntry.id.asc())
            .all()
        )
        stored = row.current_balance_cents
        closing, changed = _rechain(entries, 0)
        if stored != closing:
            row.current_balance_cents = closing
        db.session.flush()

        if changed or stored != closing:
            append_finance_event(
                event_type="petty_cash.chain_rebuilt",
                event_category="petty_cash",
                entity_type="petty_cash_custodian",
                entity_id=row.id,
                amount_cents=closing - stored,
                note=f"{changed} entries corrected",
            )
        current_app.logger.info(
            "Rebuilt petty cash chain for %s: %d entries, %d corrected, balance %d -> %d",
            custodian,
            len(entries),
            changed,
            stored,
            closing,
        )
        return {
            "custodian": custodian,
            "entries": len(entries),
            "corrected_entries": changed,
            "stored_balance_cents": stored,
            "computed_balance_cents": closing,
        }

    return run_with_retry(_op)
