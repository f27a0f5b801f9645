from datetime import date

import pytest

from bursar.errors import ConflictError, NotFoundError, ValidationError
from bursar.models import FinancialYearPointer
from bursar.services import account_service, budget_service, transaction_service


class TestAccounts:
    def test_create_and_lookup_by_code(self, db_session):
        account = account_service.create_account("EXP-010", "Stationery", "expense", description="Pens")

        assert account.id is not None
        assert account_service.get_account_by_code("EXP-010").id == account.id
        assert account.is_active is True

    def test_duplicate_code_conflicts(self, db_session):
        account_service.create_account("EXP-010", "Stationery", "expense")
        with pytest.raises(ConflictError):
            account_service.create_account("EXP-010", "Other", "expense")

    def test_invalid_type_rejected(self, db_session):
        with pytest.raises(ValidationError):
            account_service.create_account("X-1", "Bad", "revenue")

    def test_missing_parent_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            account_service.create_account("EXP-011", "Child", "expense", parent_id=999)

    def test_reparent_rejects_cycle(self, db_session):
        root = account_service.create_account("EXP-100", "Operations", "expense")
        child = account_service.create_account("EXP-110", "Facilities", "expense", parent_id=root.id)
        grandchild = account_service.create_account("EXP-111", "Cleaning", "expense", parent_id=child.id)

        with pytest.raises(ValidationError):
            account_service.update_account(root.id, parent_id=grandchild.id)
        with pytest.raises(ValidationError):
            account_service.update_account(root.id, parent_id=root.id)

        assert account_service.get_account(root.id).parent_id is None

    def test_tree_nests_children(self, db_session):
        root = account_service.create_account("EXP-100", "Operations", "expense")
        account_service.create_account("EXP-110", "Facilities", "expense", parent_id=root.id)
        account_service.create_account("INC-001", "Student Fees", "income")

        tree = account_service.get_account_tree()

        codes = [node["code"] for node in tree]
        assert codes == ["EXP-100", "INC-001"]
        assert [c["code"] for c in tree[0]["children"]] == ["EXP-110"]

    def test_deactivate_is_always_permitted(self, db_session, financial_year, expense_account):
        transaction_service.create_expense(expense_account.id, 1_000, transaction_date=date(2026, 3, 1))

        account_service.deactivate_account(expense_account.id)

        assert account_service.get_account(expense_account.id).is_active is False
        assert account_service.list_accounts(is_active=True) == []
        with pytest.raises(ConflictError):
            transaction_service.create_expense(expense_account.id, 1_000, transaction_date=date(2026, 3, 2))

        account_service.reactivate_account(expense_account.id)
        assert account_service.get_account(expense_account.id).is_active is True


class TestFinancialYears:
    def test_make_current_sets_single_pointer(self, db_session):
        first = account_service.create_financial_year("FY2025", "2025-01-01", "2025-12-31", make_current=True)
        second = account_service.create_financial_year("FY2026", "2026-01-01", "2026-12-31")

        assert account_service.get_current_financial_year().id == first.id

        account_service.set_current_financial_year(second.id)

        assert account_service.get_current_financial_year().id == second.id
        assert db_session.query(FinancialYearPointer).count() == 1
        assert account_service.get_financial_year(first.id).is_current is False
        assert account_service.get_financial_year(second.id).is_current is True

    def test_start_after_end_rejected(self, db_session):
        with pytest.raises(ValidationError):
            account_service.create_financial_year("FY-bad", "2026-12-31", "2026-01-01")

    def test_overlapping_years_conflict(self, db_session):
        account_service.create_financial_year("FY2026", "2026-01-01", "2026-12-31")
        with pytest.raises(ConflictError):
            account_service.create_financial_year("FY2026b", "2026-06-01", "2027-05-31")

    def test_closed_year_cannot_become_current(self, db_session):
        year = account_service.create_financial_year("FY2024", "2024-01-01", "2024-12-31", status="active")
        account_service.close_financial_year(year.id)

        with pytest.raises(ConflictError) as excinfo:
            account_service.set_current_financial_year(year.id)
        assert excinfo.value.current_status == "closed"

    def test_closing_current_year_clears_pointer(self, db_session, financial_year):
        account_service.close_financial_year(financial_year.id)

        assert account_service.get_current_financial_year() is None
        assert account_service.get_financial_year(financial_year.id).closed_at is not None

    def test_only_active_year_can_be_closed(self, db_session):
        year = account_service.create_financial_year("FY2027", "2027-01-01", "2027-12-31")

        with pytest.raises(ConflictError) as excinfo:
            account_service.close_financial_year(year.id)
        assert excinfo.value.current_status == "draft"
        assert account_service.get_financial_year(year.id).closed_at is None

    def test_activate_is_conditional(self, db_session):
        year = account_service.create_financial_year("FY2027", "2027-01-01", "2027-12-31")
        account_service.activate_financial_year(year.id)

        with pytest.raises(ConflictError) as excinfo:
            account_service.activate_financial_year(year.id)
        assert excinfo.value.current_status == "active"

    def test_delete_blocked_once_referenced(self, db_session):
        year = account_service.create_financial_year("FY2026", "2026-01-01", "2026-12-31")
        spare = account_service.create_financial_year("FY2030", "2030-01-01", "2030-12-31")
        budget_service.create_budget(year.id, 100_00)

        with pytest.raises(ConflictError):
            account_service.delete_financial_year(year.id)

        spare_id = spare.id
        account_service.delete_financial_year(spare_id)
        with pytest.raises(NotFoundError):
            account_service.get_financial_year(spare_id)

    def test_year_resolved_from_transaction_date(self, db_session, financial_year, expense_account):
        inside = transaction_service.create_expense(expense_account.id, 500, transaction_date="2026-05-04")
        outside = transaction_service.create_expense(expense_account.id, 500, transaction_date="2031-05-04")

        assert inside.financial_year_id == financial_year.id
        assert outside.financial_year_id is None
