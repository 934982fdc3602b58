"""
Tests for the audit logger
"""

from decimal import Decimal

import pytest

from pocketbook.audit import AuditLogger, create_correlation_id
from pocketbook.models import AuditEventBuilder, AuditEventType, AuditSeverity
from pocketbook.storage import InMemoryLedgerStore, StoreUnavailable


class BrokenAuditStore(InMemoryLedgerStore):
    async def append_event(self, event) -> bool:
        raise StoreUnavailable("audit table locked")


class TestAuditLogger:
    """Local logging and persistence."""

    @pytest.mark.asyncio
    async def test_without_storage(self):
        logger = AuditLogger()
        assert await logger.log_budget_deleted(
            user_id=1, budget_id=2, correlation_id=create_correlation_id()
        ) is None

    @pytest.mark.asyncio
    async def test_events_share_correlation_id(self):
        store = InMemoryLedgerStore(timeout_seconds=1.0)
        logger = AuditLogger(store)
        correlation_id = create_correlation_id()

        await logger.log_pot_funded(user_id=1, pot_id=4, amount=Decimal("5.00"),
                                    new_balance=Decimal("95.00"),
                                    correlation_id=correlation_id)
        await logger.log_pot_withdrawn(user_id=1, pot_id=4, amount=Decimal("2.00"),
                                       new_balance=Decimal("97.00"),
                                       correlation_id=correlation_id)
        await logger.log_pot_created(user_id=1, pot_id=5, name="Other", target=Decimal("10"),
                                     correlation_id=create_correlation_id())

        events = await store.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.POT_FUNDED,
            AuditEventType.POT_WITHDRAWN,
        ]

    @pytest.mark.asyncio
    async def test_system_error(self):
        store = InMemoryLedgerStore(timeout_seconds=1.0)
        logger = AuditLogger(store)

        await logger.log_error("seed_failed", "bad row", details={"row": 3})

        events = await store.get_recent_events()
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
        assert events[0].severity == AuditSeverity.ERROR
        assert events[0].error_code == "seed_failed"
        assert events[0].details == {"row": 3}

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        """A lost audit row is logged, not raised."""
        logger = AuditLogger(BrokenAuditStore(timeout_seconds=1.0))
        event = AuditEventBuilder.transfer_rejected(
            user_id=1,
            pot_id=7,
            operation="withdraw_from_pot",
            reason="Insufficient funds in pot",
            correlation_id=create_correlation_id(),
        )

        assert await logger.log(event) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
