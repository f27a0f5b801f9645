from datetime import date

import pytest

from bursar.errors import ConflictError, NotFoundError, ValidationError
from bursar.models import BankTransaction
from bursar.services import bank_service, reporting_service, settings_service, transaction_service, vendor_service


THRESHOLD = 10_000_00


class TestExpenseApproval:
    def test_below_threshold_is_auto_approved(self, db_session, financial_year, expense_account):
        expense = transaction_service.create_expense(
            expense_account.id, THRESHOLD - 1, transaction_date=date(2026, 2, 1)
        )
        assert expense.status == "approved"
        assert expense.auto_approved is True
        assert expense.expense_number == "EXP-00001"

    def test_at_threshold_waits_for_approval(self, db_session, financial_year, expense_account):
        expense = transaction_service.create_expense(expense_account.id, THRESHOLD, transaction_date=date(2026, 2, 1))
        assert expense.status == "pending"
        assert expense.auto_approved is False

    def test_threshold_setting_is_honoured(self, db_session, expense_account):
        settings_service.set_setting("expense_approval_threshold", "500")
        expense = transaction_service.create_expense(expense_account.id, 500_00)
        assert expense.status == "pending"

    def test_approval_can_be_switched_off(self, db_session, expense_account):
        settings_service.set_setting("expense_approval_required", False)
        expense = transaction_service.create_expense(expense_account.id, THRESHOLD * 5)
        assert expense.status == "approved"
        assert expense.auto_approved is True

    def test_approve_is_conditional(self, db_session, expense_account):
        expense = transaction_service.create_expense(expense_account.id, THRESHOLD)

        approved = transaction_service.approve_expense(expense.id, approver_user_id=3)
        assert approved.status == "approved"
        assert approved.approved_by_user_id == 3

        with pytest.raises(ConflictError) as excinfo:
            transaction_service.approve_expense(expense.id, approver_user_id=4)
        assert excinfo.value.current_status == "approved"

    def test_reject_requires_reason(self, db_session, expense_account):
        expense = transaction_service.create_expense(expense_account.id, THRESHOLD)

        with pytest.raises(ValidationError):
            transaction_service.reject_expense(expense.id, "  ")

        rejected = transaction_service.reject_expense(expense.id, "Duplicate invoice", user_id=2)
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Duplicate invoice"

        with pytest.raises(ConflictError):
            transaction_service.approve_expense(expense.id)

    def test_pay_only_from_approved(self, db_session, expense_account):
        pending = transaction_service.create_expense(expense_account.id, THRESHOLD)

        with pytest.raises(ConflictError) as excinfo:
            transaction_service.pay_expense(pending.id)
        assert excinfo.value.current_status == "pending"

        transaction_service.approve_expense(pending.id)
        paid = transaction_service.pay_expense(pending.id, user_id=9)
        assert paid.status == "paid"
        assert paid.paid_at is not None

    def test_unknown_expense_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            transaction_service.approve_expense(12345)

    def test_invalid_amounts_rejected(self, db_session, expense_account):
        with pytest.raises(ValidationError):
            transaction_service.create_expense(expense_account.id, 0)
        with pytest.raises(ValidationError):
            transaction_service.create_expense(expense_account.id, 100, vat_amount_cents=-1)

    def test_vendor_must_exist(self, db_session, expense_account):
        with pytest.raises(NotFoundError):
            transaction_service.create_expense(expense_account.id, 100, vendor_id=42)

        vendor = vendor_service.create_vendor("Stationers Ltd", email="sales@stationers.example")
        expense = transaction_service.create_expense(expense_account.id, 100, vendor_id=vendor.id)
        assert expense.vendor.vendor_code == "VND-0001"


class TestPaymentFromBank:
    def test_pay_posts_withdrawal_in_same_unit_of_work(self, db_session, expense_account, make_bank_account):
        bank = make_bank_account(50_000_00)
        expense = transaction_service.create_expense(expense_account.id, 1_000_00, vat_amount_cents=160_00)

        paid = transaction_service.pay_expense(expense.id, bank_account_id=bank.id)

        assert paid.bank_account_id == bank.id
        txn = db_session.get(BankTransaction, paid.bank_transaction_id)
        assert txn.transaction_type == "withdrawal"
        assert txn.amount_cents == 1_160_00
        assert txn.reference_number == paid.expense_number
        assert bank_service.get_bank_account(bank.id).current_balance_cents == 50_000_00 - 1_160_00

    def test_insufficient_funds_leaves_expense_approved(self, db_session, expense_account, make_bank_account):
        bank = make_bank_account(100_00)
        expense = transaction_service.create_expense(expense_account.id, 500_00)

        with pytest.raises(ConflictError):
            transaction_service.pay_expense(expense.id, bank_account_id=bank.id, allow_overdraft=False)

        assert transaction_service.get_expense(expense.id).status == "approved"
        assert bank_service.get_bank_account(bank.id).current_balance_cents == 100_00
        assert db_session.query(BankTransaction).count() == 0


class TestIncome:
    def test_income_is_completed_with_vat_additive(self, db_session, financial_year, income_account):
        income = transaction_service.create_income(
            income_account.id, 10_000_00, vat_amount_cents=1_600_00, transaction_date="2026-01-15",
            reference_number="RCPT-1", student_id="S-001",
        )
        assert income.status == "completed"
        assert income.total_amount_cents == 11_600_00
        assert income.financial_year_id == financial_year.id

    def test_duplicate_reference_conflicts(self, db_session, income_account):
        transaction_service.create_income(income_account.id, 100, reference_number="RCPT-1")
        with pytest.raises(ConflictError):
            transaction_service.create_income(income_account.id, 100, reference_number="RCPT-1")

    def test_income_can_deposit_to_bank(self, db_session, income_account, make_bank_account):
        bank = make_bank_account(0)
        income = transaction_service.create_income(
            income_account.id, 1_000_00, vat_amount_cents=160_00, bank_account_id=bank.id
        )
        assert income.bank_transaction_id is not None
        assert bank_service.get_bank_account(bank.id).current_balance_cents == 1_160_00


class TestReports:
    def test_category_totals_and_dashboard(self, db_session, income_account, expense_account):
        transaction_service.create_income(income_account.id, 1_000_00, vat_amount_cents=160_00, transaction_date="2026-01-10")
        transaction_service.create_income(income_account.id, 500_00, transaction_date="2026-02-10")
        transaction_service.create_expense(expense_account.id, 200_00, transaction_date="2026-01-12")
        transaction_service.create_expense(expense_account.id, THRESHOLD, transaction_date="2026-01-12")

        income = reporting_service.income_by_category()
        expenses = reporting_service.expenses_by_category()
        january = reporting_service.income_by_category("2026-01-01", "2026-01-31")

        assert income == [{
            "account_id": income_account.id,
            "account_code": "INC-001",
            "account_name": "Student Fees",
            "total_cents": 1_660_00,
            "record_count": 2,
        }]
        assert expenses[0]["total_cents"] == 200_00
        assert january[0]["total_cents"] == 1_160_00

        stats = reporting_service.get_dashboard_stats()
        assert stats["total_income_cents"] == 1_660_00
        assert stats["total_expenses_cents"] == 200_00
        assert stats["net_cents"] == 1_460_00
        assert stats["pending_expense_count"] == 1
        assert stats["pending_expense_cents"] == THRESHOLD

    def test_list_expenses_filters(self, db_session, expense_account):
        transaction_service.create_expense(expense_account.id, 100, transaction_date="2026-01-01")
        transaction_service.create_expense(expense_account.id, THRESHOLD, transaction_date="2026-01-05")

        pending = transaction_service.list_expenses(status="pending")
        assert [e.amount_cents for e in pending] == [THRESHOLD]
        assert len(transaction_service.list_expenses(start_date="2026-01-02")) == 1
        with pytest.raises(ValidationError):
            transaction_service.list_expenses(status="lost")
