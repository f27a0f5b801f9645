"""
Threaded concurrency tests for the finance ledger.

Each worker runs in its own app context (and so its own session) against a
file-backed SQLite database. The assertions are the ledger invariants, not
"every call succeeded": a worker may lose a race, but the books must balance.
"""
import os
import tempfile
import threading
import unittest
from datetime import date

from bursar import create_app
from bursar.errors import ConflictError, UnavailableError
from bursar.extensions import db
from bursar.models import BankTransaction, IncomeRecord, PettyCashEntry
from bursar.services import (
    account_service,
    bank_service,
    budget_service,
    petty_cash_service,
    settings_service,
    transaction_service,
)
from bursar.services.fee_import_service import import_settled_fee_payments
from bursar.services.fee_sources import StaticFeePaymentSource


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "TESTING": True,
            "DB_RETRY_ATTEMPTS": 25,
            "DB_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            settings_service.ensure_settings_seeded()

            year = account_service.create_financial_year(
                "FY2026", date(2026, 1, 1), date(2026, 12, 31), status="active", make_current=True
            )
            self.year_id = year.id
            self.expense_account_id = account_service.create_account("EXP-001", "Supplies", "expense").id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        results = []
        lock = threading.Lock()

        def wrap(func):
            def worker():
                with self.app.app_context():
                    try:
                        outcome = func()
                        with lock:
                            results.append(("ok", outcome))
                    except Exception as exc:
                        with lock:
                            results.append(("error", exc))
                    finally:
                        db.session.remove()
            return worker

        threads = [threading.Thread(target=wrap(t)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_expense_approval_has_one_winner(self):
        with self.app.app_context():
            expense = transaction_service.create_expense(self.expense_account_id, 50_000_00)
            expense_id = expense.id

        results = self._run_threads([
            lambda: transaction_service.approve_expense(expense_id, approver_user_id=1).status,
            lambda: transaction_service.approve_expense(expense_id, approver_user_id=2).status,
        ])

        wins = [r for kind, r in results if kind == "ok"]
        conflicts = [r for kind, r in results if kind == "error" and isinstance(r, ConflictError)]
        self.assertEqual(wins, ["approved"])
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0].current_status, "approved")

    def test_concurrent_item_spend_keeps_budget_aggregate(self):
        with self.app.app_context():
            budget = budget_service.create_budget(
                self.year_id,
                1_000_000_00,
                items=[
                    {"name": "A", "account_id": self.expense_account_id, "allocated_amount_cents": 500_000_00},
                    {"name": "B", "account_id": self.expense_account_id, "allocated_amount_cents": 500_000_00},
                ],
            )
            budget_id = budget.id
            item_ids = [i.id for i in budget.items]

        targets = [
            (lambda item_id=item_ids[n % 2]: budget_service.record_item_spend(item_id, 100_00).id)
            for n in range(8)
        ]
        results = self._run_threads(targets)

        unexpected = [r for kind, r in results if kind == "error" and not isinstance(r, UnavailableError)]
        self.assertFalse(unexpected)
        succeeded = sum(1 for kind, _ in results if kind == "ok")

        with self.app.app_context():
            refreshed = budget_service.get_budget(budget_id)
            self.assertEqual(refreshed.spent_amount_cents, sum(i.spent_amount_cents for i in refreshed.items))
            self.assertEqual(refreshed.spent_amount_cents, succeeded * 100_00)

    def test_opposite_transfers_conserve_money(self):
        with self.app.app_context():
            a = bank_service.create_bank_account("Main", "001", "KCB", opening_balance_cents=1_000_00).id
            b = bank_service.create_bank_account("Fees", "002", "KCB", opening_balance_cents=500_00).id

        targets = []
        for n in range(6):
            if n % 2:
                targets.append(lambda: bank_service.transfer(a, b, 10_00).id)
            else:
                targets.append(lambda: bank_service.transfer(b, a, 5_00).id)
        results = self._run_threads(targets)

        unexpected = [r for kind, r in results if kind == "error" and not isinstance(r, UnavailableError)]
        self.assertFalse(unexpected)

        with self.app.app_context():
            balances = [bank_service.get_bank_account(i).current_balance_cents for i in (a, b)]
            self.assertEqual(sum(balances), 1_500_00)
            for account_id in (a, b):
                self.assertEqual(bank_service.reconcile_bank_account(account_id)["drift_cents"], 0)
            succeeded = sum(1 for kind, _ in results if kind == "ok")
            self.assertEqual(db.session.query(BankTransaction).count(), succeeded)

    def test_concurrent_petty_cash_entries_keep_chain(self):
        targets = [
            (lambda: petty_cash_service.record_entry("Jane", "replenishment", 50_00).id)
            for _ in range(6)
        ]
        results = self._run_threads(targets)

        unexpected = [r for kind, r in results if kind == "error" and not isinstance(r, UnavailableError)]
        self.assertFalse(unexpected)

        with self.app.app_context():
            row = petty_cash_service.get_custodian("Jane")
            entries = (
                db.session.query(PettyCashEntry)
                .filter_by(custodian_id=row.id)
                .order_by(PettyCashEntry.id.asc())
                .all()
            )
            running = 0
            for entry in entries:
                self.assertEqual(entry.balance_before_cents, running)
                running = entry.balance_after_cents
            self.assertEqual(row.current_balance_cents, running)
            self.assertEqual(running, len(entries) * 50_00)

    def test_concurrent_fee_imports_do_not_duplicate(self):
        payments = [
            {"id": f"P{n}", "student_id": "S-1", "amount": 116, "payment_date": "2026-02-01", "status": "completed"}
            for n in range(5)
        ]

        results = self._run_threads([
            lambda: import_settled_fee_payments(StaticFeePaymentSource(payments)).imported
            for _ in range(3)
        ])

        unexpected = [r for kind, r in results if kind == "error" and not isinstance(r, UnavailableError)]
        self.assertFalse(unexpected)

        with self.app.app_context():
            references = [r for (r,) in db.session.query(IncomeRecord.reference_number).all()]
            self.assertEqual(sorted(references), [f"FEE-P{n}" for n in range(5)])

    def test_document_numbers_are_unique(self):
        results = self._run_threads([
            (lambda: transaction_service.create_expense(self.expense_account_id, 1_00).expense_number)
            for _ in range(10)
        ])

        numbers = [r for kind, r in results if kind == "ok"]
        self.assertEqual(len(numbers), len(set(numbers)))


if __name__ == "__main__":
    unittest.main()
