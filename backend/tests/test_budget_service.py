from datetime import date
from decimal import Decimal

import pytest

from bursar.errors import ConflictError, NotFoundError, ValidationError
from bursar.models import Budget, BudgetAllocation, FinanceEvent
from bursar.services import account_service, budget_service


KES_100K = 100_000_00


@pytest.fixture
def budget(db_session, financial_year, expense_account):
    return budget_service.create_budget(
        financial_year.id,
        KES_100K,
        items=[{"name": "Lab equipment", "account_id": expense_account.id, "allocated_amount_cents": KES_100K}],
        name="Science 2026",
    )


def _only_item(budget_id):
    return budget_service.get_budget(budget_id).items[0]


class TestBudgetLifecycle:
    def test_create_starts_in_draft_with_zero_spend(self, budget):
        assert budget.status == "draft"
        assert budget.spent_amount_cents == 0
        assert budget.budget_number == "BDG-00001"
        assert [i.spent_amount_cents for i in budget.items] == [0]

    def test_total_defaults_to_item_allocations(self, db_session, financial_year, expense_account):
        created = budget_service.create_budget(
            financial_year.id,
            items=[
                {"name": "Chalk", "account_id": expense_account.id, "allocated_amount_cents": 2_500_00},
                {"name": "Paper", "account_id": expense_account.id, "allocated_amount_cents": 7_500_00},
            ],
        )
        assert created.total_amount_cents == 10_000_00
        assert created.name == created.budget_number

    def test_unknown_year_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            budget_service.create_budget(999, 1_00)

    def test_approve_then_second_approve_conflicts(self, budget):
        approved = budget_service.approve_budget(budget.id, approver_user_id=7)
        assert approved.status == "approved"
        assert approved.approved_by_user_id == 7

        with pytest.raises(ConflictError) as excinfo:
            budget_service.approve_budget(budget.id, approver_user_id=8)

        assert excinfo.value.current_status == "approved"
        assert excinfo.value.current["approved_by_user_id"] == 7

    def test_activate_and_close(self, budget):
        with pytest.raises(ConflictError):
            budget_service.activate_budget(budget.id)

        budget_service.approve_budget(budget.id)
        budget_service.activate_budget(budget.id)
        closed = budget_service.close_budget(budget.id)

        assert closed.status == "closed"
        assert closed.closed_at is not None

    def test_closed_budget_is_frozen(self, budget, expense_account):
        budget_service.approve_budget(budget.id)
        budget_service.close_budget(budget.id)

        with pytest.raises(ConflictError):
            budget_service.add_budget_item(budget.id, "Late item", expense_account.id, 1_00)
        with pytest.raises(ConflictError):
            budget_service.record_item_spend(_only_item(budget.id).id, 1_00)
        with pytest.raises(ConflictError):
            budget_service.update_budget(budget.id, total_amount_cents=1)

    def test_delete_blocked_by_spend(self, budget):
        budget_service.record_item_spend(_only_item(budget.id).id, 1_00)

        with pytest.raises(ConflictError):
            budget_service.delete_budget(budget.id)

    def test_delete_unspent_budget_removes_items(self, db_session, budget):
        budget_id = budget.id
        budget_service.delete_budget(budget_id)

        assert db_session.get(Budget, budget_id) is None
        with pytest.raises(NotFoundError):
            budget_service.get_budget(budget_id)


class TestItemsKeepAggregate:
    def test_spend_rolls_up_to_budget(self, budget, expense_account):
        item = _only_item(budget.id)
        second = budget_service.add_budget_item(budget.id, "Consumables", expense_account.id, 5_000_00)

        budget_service.record_item_spend(item.id, 40_000_00)
        budget_service.record_item_spend(second.id, 1_250_00)

        refreshed = budget_service.get_budget(budget.id)
        assert refreshed.spent_amount_cents == 41_250_00
        assert refreshed.spent_amount_cents == sum(i.spent_amount_cents for i in refreshed.items)

    def test_update_item_spent_directly(self, budget):
        item = _only_item(budget.id)
        budget_service.record_item_spend(item.id, 30_000_00)

        budget_service.update_budget_item(item.id, spent_amount_cents=12_000_00)

        assert budget_service.get_budget(budget.id).spent_amount_cents == 12_000_00

    def test_item_edit_bumps_budget_version(self, budget):
        item = _only_item(budget.id)
        before = budget_service.get_budget(budget.id).version_id

        budget_service.update_budget_item(item.id, name="Lab kits", allocated_amount_cents=90_000_00)

        refreshed = budget_service.get_budget(budget.id)
        assert refreshed.version_id == before + 1
        assert refreshed.spent_amount_cents == 0

    def test_delete_item_recomputes_and_blocks_spent_items(self, budget, expense_account):
        spare = budget_service.add_budget_item(budget.id, "Spare", expense_account.id, 1_000_00)
        item = _only_item(budget.id)
        budget_service.record_item_spend(item.id, 2_00)

        with pytest.raises(ConflictError):
            budget_service.delete_budget_item(item.id)

        budget_service.delete_budget_item(spare.id)
        refreshed = budget_service.get_budget(budget.id)
        assert [i.id for i in refreshed.items] == [item.id]
        assert refreshed.spent_amount_cents == 2_00

    def test_non_positive_spend_rejected(self, budget):
        with pytest.raises(ValidationError):
            budget_service.record_item_spend(_only_item(budget.id).id, 0)

    def test_recompute_repairs_drift(self, db_session, budget):
        budget_service.record_item_spend(_only_item(budget.id).id, 10_00)
        db_session.query(Budget).filter_by(id=budget.id).update({"spent_amount_cents": 999})
        db_session.commit()

        report = budget_service.recompute_budget_spent(budget.id)
        assert report["drift_cents"] == 999 - 10_00
        assert report["repaired"] is False

        report = budget_service.recompute_budget_spent(budget.id, repair=True)
        assert report["repaired"] is True
        assert budget_service.get_budget(budget.id).spent_amount_cents == 10_00

    def test_spend_is_audited(self, db_session, budget):
        item = _only_item(budget.id)
        budget_service.record_item_spend(item.id, 3_00, user_id=4)

        event = db_session.query(FinanceEvent).filter_by(event_type="budget.item_spend").one()
        assert event.entity_id == item.id
        assert event.amount_cents == 3_00
        assert event.actor_user_id == 4


class TestVarianceAndSummary:
    def test_hundred_thousand_scenario(self, budget):
        item = _only_item(budget.id)

        budget_service.record_item_spend(item.id, 40_000_00)
        summary = budget_service.get_budget_summary(budget.id)
        [row] = budget_service.get_budget_variance(budget.id)

        assert summary["spent_amount_cents"] == 40_000_00
        assert summary["utilization_percentage"] == Decimal("40.00")
        assert row["status"] == "Under Utilized"
        assert row["variance_cents"] == 60_000_00

        budget_service.record_item_spend(item.id, 45_000_00)
        [row] = budget_service.get_budget_variance(budget.id)
        assert row["status"] == "On Track"
        assert row["variance_percentage"] == Decimal("-15.00")

        budget_service.record_item_spend(item.id, 15_005_00)
        [row] = budget_service.get_budget_variance(budget.id)
        assert row["status"] == "Over Budget"
        assert row["variance_percentage"] == Decimal("0.05")

    def test_zero_allocation_has_zero_percentage(self, budget, expense_account):
        budget_service.add_budget_item(budget.id, "Unplanned", expense_account.id, 0)
        rows = {r["name"]: r for r in budget_service.get_budget_variance(budget.id)}

        assert rows["Unplanned"]["variance_percentage"] == Decimal("0.00")
        assert rows["Unplanned"]["status"] == "On Track"

    def test_variance_is_read_only(self, budget):
        item = _only_item(budget.id)
        budget_service.record_item_spend(item.id, 1_00)

        first = budget_service.get_budget_variance(budget.id)
        second = budget_service.get_budget_variance(budget.id)

        assert first == second
        assert budget_service.get_budget(budget.id).spent_amount_cents == 1_00

    def test_summary_groups_by_account_type(self, budget):
        asset = account_service.create_account("AST-010", "Furniture", "asset")
        extra = budget_service.add_budget_item(budget.id, "Desks", asset.id, 2_000_00)
        budget_service.record_item_spend(extra.id, 2_000_00)

        summary = budget_service.get_budget_summary(budget.id)

        types = {g["account_type"]: g for g in summary["by_account_type"]}
        assert set(types) == {"asset", "expense"}
        assert types["asset"]["spent_amount_cents"] == 2_000_00
        assert summary["exhausted_item_count"] == 1
        assert summary["item_count"] == 2


class TestAllocations:
    def test_variance_recomputed_on_write(self, db_session, budget):
        allocation = budget_service.create_allocation(budget.id, "2026-01-01", "2026-03-31", 25_000_00)
        assert db_session.get(BudgetAllocation, allocation.id).variance_cents == 25_000_00

        budget_service.update_allocation(allocation.id, spent_amount_cents=30_000_00)

        stored = db_session.get(BudgetAllocation, allocation.id)
        assert stored.variance_cents == -5_000_00

    def test_period_must_sit_inside_financial_year(self, budget):
        with pytest.raises(ValidationError):
            budget_service.create_allocation(budget.id, "2025-12-01", "2026-02-28", 1_00)
        with pytest.raises(ValidationError):
            budget_service.create_allocation(budget.id, "2026-03-01", "2026-02-01", 1_00)

    def test_list_and_delete(self, budget):
        q1 = budget_service.create_allocation(budget.id, date(2026, 1, 1), date(2026, 3, 31), 1_00)
        q2 = budget_service.create_allocation(budget.id, date(2026, 4, 1), date(2026, 6, 30), 2_00)

        assert [a.id for a in budget_service.list_allocations(budget.id)] == [q1.id, q2.id]

        budget_service.delete_allocation(q1.id)
        assert [a.id for a in budget_service.list_allocations(budget.id)] == [q2.id]
