"""
Audit Logger

DESIGN DECISION: Every movement of money and every rejected change is logged.
This provides:
1. A trail from any balance back to the transfers that produced it
2. Debugging capability when a user disputes a figure
3. Correlation of everything one request did

The audit logger:
- Always writes the structured local log first
- Gracefully handles storage failures (a lost audit row never fails a transfer)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from pocketbook.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from pocketbook.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Send the JSON log lines to stderr at the given level."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is None:
            return True

        try:
            return await self._storage.append_event(event)
        except Exception as e:
            # The ledger write already happened; losing its audit row is
            # reported but must not turn a committed transfer into an error
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def log_balance_updated(
        self,
        user_id: int,
        changes: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.balance_updated(
            user_id=user_id,
            changes={k: str(v) for k, v in changes.items()},
            correlation_id=correlation_id,
        ))

    async def log_pot_created(
        self,
        user_id: int,
        pot_id: int,
        name: str,
        target: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pot_created(
            user_id=user_id,
            pot_id=pot_id,
            name=name,
            target=target,
            correlation_id=correlation_id,
        ))

    async def log_pot_updated(
        self,
        user_id: int,
        pot_id: int,
        changes: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pot_updated(
            user_id=user_id,
            pot_id=pot_id,
            changes={k: str(v) for k, v in changes.items()},
            correlation_id=correlation_id,
        ))

    async def log_pot_deleted(
        self,
        user_id: int,
        pot_id: int,
        returned_amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pot_deleted(
            user_id=user_id,
            pot_id=pot_id,
            returned_amount=returned_amount,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_pot_funded(
        self,
        user_id: int,
        pot_id: int,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a balance -> pot transfer."""
        await self.log(AuditEventBuilder.pot_funded(
            user_id=user_id,
            pot_id=pot_id,
            amount=amount,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_pot_withdrawn(
        self,
        user_id: int,
        pot_id: int,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a pot -> balance transfer."""
        await self.log(AuditEventBuilder.pot_withdrawn(
            user_id=user_id,
            pot_id=pot_id,
            amount=amount,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_transfer_rejected(
        self,
        user_id: int,
        pot_id: Optional[int],
        operation: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transfer_rejected(
            user_id=user_id,
            pot_id=pot_id,
            operation=operation,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_budget_created(
        self,
        user_id: int,
        budget_id: int,
        category: str,
        maximum: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.budget_created(
            user_id=user_id,
            budget_id=budget_id,
            category=category,
            maximum=maximum,
            correlation_id=correlation_id,
        ))

    async def log_budget_updated(
        self,
        user_id: int,
        budget_id: int,
        changes: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.budget_updated(
            user_id=user_id,
            budget_id=budget_id,
            changes={k: str(v) for k, v in changes.items()},
            correlation_id=correlation_id,
        ))

    async def log_budget_deleted(
        self,
        user_id: int,
        budget_id: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.budget_deleted(
            user_id=user_id,
            budget_id=budget_id,
            correlation_id=correlation_id,
        ))

    async def log_budget_rejected(
        self,
        user_id: int,
        category: Optional[str],
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.budget_rejected(
            user_id=user_id,
            category=category,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_transactions_queried(
        self,
        user_id: int,
        result_count: int,
        total_items: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transactions_queried(
            user_id=user_id,
            result_count=result_count,
            total_items=total_items,
            correlation_id=correlation_id,
        ))

    async def log_store_unavailable(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.store_unavailable(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[int] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
            user_id=user_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it through every
    operation the request performs.
    """
    return uuid4()
