import pytest

from bursar.errors import ConflictError, NotFoundError, ValidationError
from bursar.models import BankAccount, BankTransaction, FinanceEvent
from bursar.services import bank_service, settings_service


def _balance(account_id):
    return bank_service.get_bank_account(account_id).current_balance_cents


class TestAccounts:
    def test_currency_defaults_from_settings(self, db_session, make_bank_account):
        settings_service.set_setting("default_currency", "UGX")
        account = make_bank_account(10_00)

        assert account.currency == "UGX"
        assert account.current_balance_cents == account.opening_balance_cents == 10_00

    def test_duplicate_account_number_conflicts(self, db_session, make_bank_account):
        make_bank_account(0, account_number="123")
        with pytest.raises(ConflictError):
            make_bank_account(0, account_number="123")

    def test_invalid_type_rejected(self, db_session, make_bank_account):
        with pytest.raises(ValidationError):
            make_bank_account(0, account_type="crypto")


class TestTransfer:
    def test_transfer_scenario(self, db_session, make_bank_account):
        a = make_bank_account(1_000_00)
        b = make_bank_account(500_00)

        txn = bank_service.transfer(a.id, b.id, 300_00)

        assert _balance(a.id) == 700_00
        assert _balance(b.id) == 800_00
        assert db_session.query(BankTransaction).filter_by(transaction_type="transfer").count() == 1
        assert txn.transaction_number == "BTX-00001"
        assert txn.to_account_id == b.id

    def test_same_account_rejected(self, db_session, make_bank_account):
        a = make_bank_account(1_00)
        with pytest.raises(ValidationError):
            bank_service.transfer(a.id, a.id, 1_00)

    def test_missing_account_not_found(self, db_session, make_bank_account):
        a = make_bank_account(1_00)
        with pytest.raises(NotFoundError):
            bank_service.transfer(a.id, 999, 1_00)
        assert _balance(a.id) == 1_00

    def test_overdraft_policy(self, db_session, make_bank_account):
        a = make_bank_account(100_00)
        b = make_bank_account(0)

        with pytest.raises(ConflictError) as excinfo:
            bank_service.transfer(a.id, b.id, 150_00, allow_overdraft=False)
        assert excinfo.value.current_status == "insufficient_funds"
        assert _balance(a.id) == 100_00

        # Default policy permits overdrafts
        bank_service.transfer(a.id, b.id, 150_00)
        assert _balance(a.id) == -50_00

        settings_service.set_setting("allow_overdraft", False)
        with pytest.raises(ConflictError):
            bank_service.withdraw(b.id, 200_00)

    def test_failure_after_balance_change_rolls_everything_back(self, db_session, make_bank_account, monkeypatch):
        a = make_bank_account(1_000_00)
        b = make_bank_account(500_00)

        def boom(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr(bank_service, "append_finance_event", boom)

        with pytest.raises(RuntimeError):
            bank_service.transfer(a.id, b.id, 300_00)

        assert _balance(a.id) == 1_000_00
        assert _balance(b.id) == 500_00
        assert db_session.query(BankTransaction).count() == 0

    def test_inactive_account_rejected(self, db_session, make_bank_account):
        a = make_bank_account(100_00)
        b = make_bank_account(0)
        bank_service.deactivate_bank_account(b.id)

        with pytest.raises(ConflictError):
            bank_service.transfer(a.id, b.id, 1_00)

    def test_currency_mismatch_rejected(self, db_session, make_bank_account):
        a = make_bank_account(100_00, currency="KES")
        b = make_bank_account(0, currency="USD")
        with pytest.raises(ValidationError):
            bank_service.transfer(a.id, b.id, 1_00)


class TestIdempotency:
    def test_repeated_key_returns_original(self, db_session, make_bank_account):
        a = make_bank_account(0)

        first = bank_service.deposit(a.id, 250_00, idempotency_key="mpesa-QX1")
        again = bank_service.deposit(a.id, 250_00, idempotency_key="mpesa-QX1")

        assert again.id == first.id
        assert _balance(a.id) == 250_00
        assert db_session.query(BankTransaction).count() == 1

    def test_key_reused_for_different_operation_conflicts(self, db_session, make_bank_account):
        a = make_bank_account(1_000_00)
        bank_service.deposit(a.id, 250_00, idempotency_key="k-1")

        with pytest.raises(ConflictError):
            bank_service.withdraw(a.id, 250_00, idempotency_key="k-1")
        with pytest.raises(ConflictError):
            bank_service.deposit(a.id, 1_00, idempotency_key="k-1")

    def test_transfer_key(self, db_session, make_bank_account):
        a = make_bank_account(1_000_00)
        b = make_bank_account(0)

        bank_service.transfer(a.id, b.id, 100_00, idempotency_key="t-1")
        bank_service.transfer(a.id, b.id, 100_00, idempotency_key="t-1")

        assert _balance(a.id) == 900_00
        assert _balance(b.id) == 100_00


class TestReconcile:
    def test_balance_matches_history(self, db_session, make_bank_account):
        a = make_bank_account(1_000_00)
        b = make_bank_account(0)
        bank_service.deposit(a.id, 200_00)
        bank_service.withdraw(a.id, 50_00)
        bank_service.transfer(a.id, b.id, 300_00)

        report = bank_service.reconcile_bank_account(a.id)
        assert report["computed_cents"] == 1_000_00 + 200_00 - 50_00 - 300_00
        assert report["drift_cents"] == 0

        assert [t.transaction_type for t in bank_service.list_bank_transactions(b.id)] == ["transfer"]

    def test_repair_fixes_drift(self, db_session, make_bank_account):
        a = make_bank_account(1_000_00)
        db_session.query(BankAccount).filter_by(id=a.id).update({"current_balance_cents": 1})
        db_session.commit()

        report = bank_service.reconcile_bank_account(a.id, repair=True)

        assert report["drift_cents"] == 1 - 1_000_00
        assert report["repaired"] is True
        assert _balance(a.id) == 1_000_00
        assert db_session.query(FinanceEvent).filter_by(event_type="bank.balance_repaired").count() == 1
