"""
Abstract Ledger Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same core logic against an in-memory store or a database
2. Use the in-memory store as the test double
3. Keep business logic decoupled from the persistence engine

Every call is scoped by user_id. A record owned by another user is
reported exactly like a missing one.

Multi-step mutations go through atomic(user_id): the unit of work it
yields either commits all of its writes or none of them, and no other
unit on the same user can interleave with it.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional
from uuid import UUID

from pocketbook.models.audit import AuditEvent
from pocketbook.models.ledger import (
    Balance,
    Budget,
    LedgerSnapshot,
    Pot,
    Transaction,
    TransactionFilter,
)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage, or not owned by the caller."""

    def __init__(self, entity_type: str, entity_id: Optional[int] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} not found")


class DuplicateCategoryError(StorageError):
    """A budget already exists for this user and category."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"Budget for category '{category}' already exists")


class StoreUnavailable(StorageError):
    """
    The backing store could not be reached in time.

    Unlike business-rule failures this is safe to retry.
    """
    pass


class LedgerUnitOfWork(ABC):
    """
    Reads and writes that commit together.

    Obtained from LedgerStore.atomic(); bound to a single user.
    Reads inside a unit see the unit's own uncommitted writes.
    """

    @abstractmethod
    async def get_balance(self) -> Balance:
        """Read the balance (zero balance if none is stored yet)."""
        pass

    @abstractmethod
    async def set_balance(self, balance: Balance) -> Balance:
        pass

    @abstractmethod
    async def get_pot(self, pot_id: int) -> Optional[Pot]:
        pass

    @abstractmethod
    async def list_pots(self) -> list[Pot]:
        pass

    @abstractmethod
    async def upsert_pot(self, pot: Pot) -> Pot:
        """
        Insert a pot (id is None) or replace an existing one.

        Returns the stored pot, with its id assigned.

        Raises:
            NotFoundError: If pot.id is set but the user owns no such pot
        """
        pass

    @abstractmethod
    async def delete_pot(self, pot_id: int) -> bool:
        """Returns True if a pot was removed."""
        pass

    @abstractmethod
    async def get_budget(self, budget_id: int) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self) -> list[Budget]:
        pass

    @abstractmethod
    async def upsert_budget(self, budget: Budget) -> Budget:
        """
        Insert or replace a budget.

        Raises:
            DuplicateCategoryError: If another budget of this user
                                    already has budget.category
            NotFoundError: If budget.id is set but not owned by the user
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: int) -> bool:
        pass


class LedgerStore(ABC):
    """
    Abstract interface for the per-user ledger.

    Any backing store (memory, SQL, ...) must implement these methods.
    Every operation is bounded in time; on expiry it raises
    StoreUnavailable rather than blocking.
    """

    # -- reads ---------------------------------------------------------------

    @abstractmethod
    async def get_balance(self, user_id: int) -> Balance:
        """Read a user's balance (zero balance if none is stored yet)."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: int,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """
        List a user's transactions in insertion (id) order.

        Args:
            user_id: Owner of the transactions
            filters: Optional category/recurring/date filters

        Returns:
            Matching transactions, oldest insertion first
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        user_id: int,
        transaction_id: int,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_pot(self, user_id: int, pot_id: int) -> Optional[Pot]:
        pass

    @abstractmethod
    async def list_pots(self, user_id: int) -> list[Pot]:
        pass

    @abstractmethod
    async def get_budget(self, user_id: int, budget_id: int) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: int) -> list[Budget]:
        pass

    @abstractmethod
    async def snapshot(self, user_id: int) -> LedgerSnapshot:
        """Read balance, transactions, pots and budgets consistently."""
        pass

    # -- writes --------------------------------------------------------------

    @abstractmethod
    def atomic(self, user_id: int) -> AbstractAsyncContextManager[LedgerUnitOfWork]:
        """
        Open a unit of work on one user's ledger.

        Usage:
            async with store.atomic(user_id) as uow:
                balance = await uow.get_balance()
                ...

        Raises:
            StoreUnavailable: If the unit cannot start or commit in time
        """
        pass

    @abstractmethod
    async def add_transaction(self, user_id: int, txn: Transaction) -> Transaction:
        """Record a new transaction. Transactions are never updated."""
        pass

    async def set_balance(self, user_id: int, balance: Balance) -> Balance:
        async with self.atomic(user_id) as uow:
            return await uow.set_balance(balance)

    async def upsert_pot(self, user_id: int, pot: Pot) -> Pot:
        async with self.atomic(user_id) as uow:
            return await uow.upsert_pot(pot)

    async def delete_pot(self, user_id: int, pot_id: int) -> bool:
        async with self.atomic(user_id) as uow:
            return await uow.delete_pot(pot_id)

    async def upsert_budget(self, user_id: int, budget: Budget) -> Budget:
        async with self.atomic(user_id) as uow:
            return await uow.upsert_budget(budget)

    async def delete_budget(self, user_id: int, budget_id: int) -> bool:
        async with self.atomic(user_id) as uow:
            return await uow.delete_budget(budget_id)

    # -- lifecycle -----------------------------------------------------------

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check the store is reachable.

        Raises:
            StoreUnavailable: If it is not
        """
        pass

    async def close(self) -> None:
        """Release connections. Safe to call more than once."""
        return None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events, optionally for one user.

        Returns:
            List of recent events (newest first)
        """
        pass
