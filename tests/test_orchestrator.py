"""
Tests for the FinanceService facade

Every call goes through the in-memory store, which doubles as the
audit store, so the audit trail can be asserted directly.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from pocketbook.audit import AuditLogger
from pocketbook.config import ReportingSettings
from pocketbook.models import AuditEventType, Balance, Transaction
from pocketbook.orchestrator import FinanceService, create_app_components
from pocketbook.storage import (
    DuplicateCategoryError,
    InMemoryLedgerStore,
    NotFoundError,
    StoreUnavailable,
)
from pocketbook.transfers import InsufficientBalance
from pocketbook.validation import InvalidAmount


USER = 1
REFERENCE = datetime(2024, 8, 19)


def make_tx(name, category, amount, when, recurring=False):
    return Transaction(
        name=name,
        category=category,
        date=when,
        amount=Decimal(str(amount)),
        recurring=recurring,
    )


class UnreachableStore(InMemoryLedgerStore):
    """A store whose backend has gone away."""

    async def ping(self) -> bool:
        raise StoreUnavailable("connection refused")

    async def snapshot(self, user_id):
        raise StoreUnavailable("connection refused")


class CorruptStore(InMemoryLedgerStore):
    """A store that hands back something it should not."""

    async def list_pots(self, user_id):
        raise RuntimeError("pot row 7 has no theme")


@pytest.fixture
def store():
    return InMemoryLedgerStore(timeout_seconds=2.0)


@pytest.fixture
def service(store):
    return FinanceService(
        store=store,
        audit_logger=AuditLogger(store),
        reporting=ReportingSettings(reference_date=REFERENCE),
    )


async def event_types(store):
    return [e.event_type for e in reversed(await store.get_recent_events(user_id=USER))]


class TestTransfers:
    """Money movement through the facade."""

    @pytest.mark.asyncio
    async def test_add_and_withdraw_are_audited(self, store, service):
        await store.set_balance(USER, Balance(current=Decimal("100")))
        pot = await service.create_pot(USER, name="Savings", target="500", theme="green")

        funded = await service.add_to_pot(USER, pot.id, "40")
        withdrawn = await service.withdraw_from_pot(USER, pot.id, "15.50")

        assert funded.balance == Decimal("60.00")
        assert withdrawn.balance == Decimal("75.50")
        assert withdrawn.pot.total == Decimal("24.50")
        assert await event_types(store) == [
            AuditEventType.POT_CREATED,
            AuditEventType.POT_FUNDED,
            AuditEventType.POT_WITHDRAWN,
        ]

    @pytest.mark.asyncio
    async def test_rejected_transfer_is_audited(self, store, service):
        await store.set_balance(USER, Balance(current=Decimal("10")))
        pot = await service.create_pot(USER, name="Savings", target="500", theme="green")

        with pytest.raises(InsufficientBalance):
            await service.add_to_pot(USER, pot.id, "10.01")

        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.TRANSFER_REJECTED
        assert events[0].error_message == "Insufficient balance"
        assert (await service.get_balance(USER)).current == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_invalid_amount_is_audited(self, store, service):
        pot = await service.create_pot(USER, name="Savings", target="500", theme="green")

        with pytest.raises(InvalidAmount):
            await service.withdraw_from_pot(USER, pot.id, "abc")

        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.TRANSFER_REJECTED

    @pytest.mark.asyncio
    async def test_delete_pot_refunds(self, store, service):
        await store.set_balance(USER, Balance(current=Decimal("1")))
        pot = await service.create_pot(USER, name="Gift", target="60", theme="red", total="20")

        deletion = await service.delete_pot(USER, pot.id)

        assert deletion.new_balance == Decimal("21.00")
        assert await service.list_pots(USER) == []

    @pytest.mark.asyncio
    async def test_update_balance(self, store, service):
        balance = await service.update_balance(USER, {"current": "4836", "income": "3814.25"})

        assert balance.current == Decimal("4836.00")
        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.BALANCE_UPDATED
        assert events[0].details == {"changes": {"current": "4836", "income": "3814.25"}}


class TestBudgets:
    """Budget lifecycle through the facade."""

    @pytest.mark.asyncio
    async def test_list_uses_configured_reference(self, store, service):
        await store.add_transaction(USER, make_tx("Bistro", "Dining Out", -30, datetime(2024, 8, 2)))
        await store.add_transaction(USER, make_tx("Old", "Dining Out", -70, datetime(2024, 7, 2)))
        await service.create_budget(USER, "Dining Out", "75", "yellow")

        august = await service.list_budgets(USER)
        july = await service.list_budgets(USER, reference=datetime(2024, 7, 20))

        assert august[0].spent == Decimal("30.00")
        assert july[0].spent == Decimal("70.00")

    @pytest.mark.asyncio
    async def test_duplicate_is_audited(self, store, service):
        await service.create_budget(USER, "Bills", "750", "cyan")

        with pytest.raises(DuplicateCategoryError):
            await service.create_budget(USER, "Bills", "10", "green")

        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.BUDGET_REJECTED
        assert len(await store.list_budgets(USER)) == 1

    @pytest.mark.asyncio
    async def test_update_and_delete(self, store, service):
        budget = await service.create_budget(USER, "Bills", "750", "cyan")

        updated = await service.update_budget(USER, budget.id, {"maximum": "800"})
        await service.delete_budget(USER, budget.id)

        assert updated.maximum == Decimal("800.00")
        assert await store.list_budgets(USER) == []
        assert (await event_types(store))[-2:] == [
            AuditEventType.BUDGET_UPDATED,
            AuditEventType.BUDGET_DELETED,
        ]


class TestReadViews:
    """Transactions, recurring bills and the overview."""

    @pytest.mark.asyncio
    async def test_list_transactions(self, store, service):
        for day in range(1, 13):
            await store.add_transaction(USER, make_tx(f"Shop {day}", "General", -day,
                                                      datetime(2024, 8, day)))

        page = await service.list_transactions(USER, {"page": 2})

        assert [t.name for t in page.data] == ["Shop 2", "Shop 1"]
        assert page.pagination.total_pages == 2
        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.TRANSACTIONS_QUERIED
        assert events[0].details["total_items"] == 12

    @pytest.mark.asyncio
    async def test_recurring_bills_use_reference(self, store, service):
        await store.add_transaction(
            USER, make_tx("Spark Electric", "Bills", -100, datetime(2024, 8, 15), recurring=True)
        )
        await store.add_transaction(
            USER, make_tx("Water", "Bills", -45, datetime(2024, 7, 22), recurring=True)
        )
        await store.add_transaction(USER, make_tx("Coffee", "Dining Out", -3, datetime(2024, 8, 1)))

        view = await service.recurring_bills(USER, sort="a-z")

        assert [b.name for b in view.data] == ["Spark Electric", "Water"]
        assert view.summary.paid == Decimal("100.00")
        assert view.summary.due_soon == Decimal("45.00")

    @pytest.mark.asyncio
    async def test_overview(self, store, service):
        await store.set_balance(USER, Balance(current=Decimal("500")))
        pot = await service.create_pot(USER, name="Savings", target="100", theme="green")
        await service.add_to_pot(USER, pot.id, "25")
        await service.create_budget(USER, "Bills", "200", "cyan")
        await store.add_transaction(USER, make_tx("Power", "Bills", -50, datetime(2024, 8, 5)))

        summary = await service.overview(USER)

        assert summary.period == "2024-08"
        assert summary.balance.current == Decimal("475.00")
        assert summary.total_saved == Decimal("25.00")
        assert summary.budget_utilization == 25
        assert [t.name for t in summary.recent_transactions] == ["Power"]

    @pytest.mark.asyncio
    async def test_get_data(self, store, service):
        await store.add_transaction(USER, make_tx("Power", "Bills", -50, datetime(2024, 8, 5)))
        data = await service.get_data(USER)
        assert len(data.transactions) == 1


class TestReference:
    """Reporting reference resolution."""

    def test_explicit_argument_wins(self, service):
        assert service.resolve_reference(datetime(2020, 1, 1)) == datetime(2020, 1, 1)

    def test_configured_date(self, service):
        assert service.resolve_reference() == REFERENCE

    def test_falls_back_to_now(self, store):
        service = FinanceService(store=store, reporting=ReportingSettings())
        assert service.resolve_reference().tzinfo is None


class TestHealthAndOutages:
    """Infrastructure failures."""

    @pytest.mark.asyncio
    async def test_healthy(self, service):
        status = await service.health()
        assert status.status == "healthy"
        assert status.store == "connected"

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        service = FinanceService(store=UnreachableStore(timeout_seconds=1.0))
        status = await service.health()
        assert status.status == "unhealthy"
        assert status.error == "connection refused"

    @pytest.mark.asyncio
    async def test_outage_is_audited_and_raised(self):
        store = UnreachableStore(timeout_seconds=1.0)
        service = FinanceService(store=store, audit_logger=AuditLogger(store),
                                 reporting=ReportingSettings(reference_date=REFERENCE))

        with pytest.raises(StoreUnavailable):
            await service.overview(USER)

        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_is_audited_and_raised(self):
        store = CorruptStore(timeout_seconds=1.0)
        service = FinanceService(store=store, audit_logger=AuditLogger(store))

        with pytest.raises(RuntimeError):
            await service.list_pots(USER)

        events = await store.get_recent_events(user_id=USER)
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
        assert events[0].error_code == "RuntimeError"
        assert events[0].error_message == "pot row 7 has no theme"
        assert events[0].details == {"operation": "list_pots"}

    @pytest.mark.asyncio
    async def test_expected_errors_are_not_system_errors(self, store, service):
        with pytest.raises(NotFoundError):
            await service.update_pot(USER, 404, {"name": "Gone"})

        assert AuditEventType.SYSTEM_ERROR not in await event_types(store)


class TestComponents:
    @pytest.mark.asyncio
    async def test_create_app_components(self):
        service, store = create_app_components(store=InMemoryLedgerStore(timeout_seconds=1.0))

        assert isinstance(service, FinanceService)
        assert (await service.health()).status == "healthy"
        await store.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
