"""
Audit Models for Pocketbook

Every movement of money and every change to a pot or budget is recorded.
This provides:
1. A trail that explains how a balance reached its current value
2. Debugging information when a transfer is rejected
3. Correlation of all events raised by one request

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Balance
    BALANCE_UPDATED = "balance_updated"

    # Pots
    POT_CREATED = "pot_created"
    POT_UPDATED = "pot_updated"
    POT_DELETED = "pot_deleted"
    POT_FUNDED = "pot_funded"
    POT_WITHDRAWN = "pot_withdrawn"
    TRANSFER_REJECTED = "transfer_rejected"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_REJECTED = "budget_rejected"

    # Reads
    TRANSACTIONS_QUERIED = "transactions_queried"

    # System events
    STORE_UNAVAILABLE = "store_unavailable"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Whose ledger, and which record
    user_id: Optional[int] = Field(
        default=None,
        description="Owner of the ledger the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'pot', 'budget', 'balance')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate all events raised by one request"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.pot_funded(user_id, pot_id, amount, ...)
        event = AuditEventBuilder.transfer_rejected(user_id, pot_id, ...)
    """

    @staticmethod
    def balance_updated(
        user_id: int,
        changes: dict[str, str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_UPDATED,
            user_id=user_id,
            entity_type="balance",
            correlation_id=correlation_id,
            description="Balance edited directly",
            details={"changes": changes},
        )

    @staticmethod
    def pot_created(
        user_id: int,
        pot_id: int,
        name: str,
        target: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POT_CREATED,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description=f"Pot created: {name}",
            details={"name": name, "target": str(target)},
        )

    @staticmethod
    def pot_updated(
        user_id: int,
        pot_id: int,
        changes: dict[str, str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POT_UPDATED,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description="Pot updated",
            details={"changes": changes},
        )

    @staticmethod
    def pot_deleted(
        user_id: int,
        pot_id: int,
        returned_amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POT_DELETED,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description=f"Pot deleted, {returned_amount} returned to balance",
            details={
                "returned_amount": str(returned_amount),
                "new_balance": str(new_balance),
            },
        )

    @staticmethod
    def pot_funded(
        user_id: int,
        pot_id: int,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POT_FUNDED,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description=f"Moved {amount} from balance into pot",
            details={"amount": str(amount), "new_balance": str(new_balance)},
        )

    @staticmethod
    def pot_withdrawn(
        user_id: int,
        pot_id: int,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POT_WITHDRAWN,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description=f"Moved {amount} from pot back to balance",
            details={"amount": str(amount), "new_balance": str(new_balance)},
        )

    @staticmethod
    def transfer_rejected(
        user_id: int,
        pot_id: Optional[int],
        operation: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="pot",
            entity_id=pot_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {reason}",
            details={"operation": operation},
            error_message=reason,
        )

    @staticmethod
    def budget_created(
        user_id: int,
        budget_id: int,
        category: str,
        maximum: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget created for {category}",
            details={"category": category, "maximum": str(maximum)},
        )

    @staticmethod
    def budget_updated(
        user_id: int,
        budget_id: int,
        changes: dict[str, str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPDATED,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget updated",
            details={"changes": changes},
        )

    @staticmethod
    def budget_deleted(
        user_id: int,
        budget_id: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget deleted",
        )

    @staticmethod
    def budget_rejected(
        user_id: int,
        category: Optional[str],
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="budget",
            correlation_id=correlation_id,
            description=f"Budget change rejected: {reason}",
            details={"category": category},
            error_message=reason,
        )

    @staticmethod
    def transactions_queried(
        user_id: int,
        result_count: int,
        total_items: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_QUERIED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Transaction query returned {result_count} of {total_items}",
            details={"result_count": result_count, "total_items": total_items},
        )

    @staticmethod
    def store_unavailable(
        operation: str,
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_UNAVAILABLE,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Ledger store unavailable during {operation}",
            details={"operation": operation},
            error_code="STORE_UNAVAILABLE",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[int] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
        )
