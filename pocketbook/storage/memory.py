"""
In-Memory Ledger Store

Keeps every user's ledger in process memory. Used as the test double
and for running the core without a database.

HOW ATOMICITY WORKS HERE:
- Each user has an asyncio.Lock; a unit of work holds it from start to end
- The unit stages its writes on a private copy of the user's ledger
- Commit is a single reference swap with no await in between, so a reader
  sees either the whole unit or none of it
- A unit that raises (or is cancelled) simply drops its copy

Not shared between processes, and not thread-safe: one event loop only.
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
from uuid import UUID

from pocketbook.config import get_settings
from pocketbook.models.audit import AuditEvent
from pocketbook.models.ledger import (
    Balance,
    Budget,
    LedgerSnapshot,
    Pot,
    Transaction,
    TransactionFilter,
)
from pocketbook.storage.interface import (
    AuditStorageInterface,
    DuplicateCategoryError,
    LedgerStore,
    LedgerUnitOfWork,
    NotFoundError,
    StoreUnavailable,
)


@dataclass
class _UserLedger:
    balance: Balance = field(default_factory=Balance)
    transactions: list[Transaction] = field(default_factory=list)
    pots: dict[int, Pot] = field(default_factory=dict)
    budgets: dict[int, Budget] = field(default_factory=dict)

    def copy(self) -> "_UserLedger":
        # Records are frozen, so copying the containers is enough
        return _UserLedger(
            balance=self.balance,
            transactions=list(self.transactions),
            pots=dict(self.pots),
            budgets=dict(self.budgets),
        )


class _MemoryUnitOfWork(LedgerUnitOfWork):
    """Unit of work over a staged copy of one user's ledger."""

    def __init__(self, ledger: _UserLedger, store: "InMemoryLedgerStore"):
        self._ledger = ledger
        self._store = store

    async def get_balance(self) -> Balance:
        return self._ledger.balance

    async def set_balance(self, balance: Balance) -> Balance:
        self._ledger.balance = balance
        return balance

    async def get_pot(self, pot_id: int) -> Optional[Pot]:
        return self._ledger.pots.get(pot_id)

    async def list_pots(self) -> list[Pot]:
        return list(self._ledger.pots.values())

    async def upsert_pot(self, pot: Pot) -> Pot:
        if pot.id is None:
            pot = pot.model_copy(update={"id": self._store._next_id("pot")})
        elif pot.id not in self._ledger.pots:
            raise NotFoundError("pot", pot.id)
        self._ledger.pots[pot.id] = pot
        return pot

    async def delete_pot(self, pot_id: int) -> bool:
        return self._ledger.pots.pop(pot_id, None) is not None

    async def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self._ledger.budgets.get(budget_id)

    async def list_budgets(self) -> list[Budget]:
        return list(self._ledger.budgets.values())

    async def upsert_budget(self, budget: Budget) -> Budget:
        if budget.id is not None and budget.id not in self._ledger.budgets:
            raise NotFoundError("budget", budget.id)
        for existing in self._ledger.budgets.values():
            if existing.category == budget.category and existing.id != budget.id:
                raise DuplicateCategoryError(budget.category)
        if budget.id is None:
            budget = budget.model_copy(update={"id": self._store._next_id("budget")})
        self._ledger.budgets[budget.id] = budget
        return budget

    async def delete_budget(self, budget_id: int) -> bool:
        return self._ledger.budgets.pop(budget_id, None) is not None


class InMemoryLedgerStore(LedgerStore, AuditStorageInterface):
    """
    Ledger and audit storage held in process memory.

    Ids are allocated from per-entity counters shared by all users,
    so an id never identifies two records.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        """
        Args:
            timeout_seconds: How long a unit of work may wait for another
                             unit on the same user. Defaults to the
                             configured store timeout.
        """
        if timeout_seconds is None:
            timeout_seconds = get_settings().store.timeout_seconds
        self._timeout = timeout_seconds
        self._ledgers: dict[int, _UserLedger] = {}
        # A user's lock lives only while some unit holds or waits for it
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._counters = {
            "transaction": itertools.count(1),
            "pot": itertools.count(1),
            "budget": itertools.count(1),
        }
        self._events: list[AuditEvent] = []

    def _next_id(self, kind: str) -> int:
        return next(self._counters[kind])

    def _ledger(self, user_id: int) -> _UserLedger:
        return self._ledgers.get(user_id) or _UserLedger()

    @asynccontextmanager
    async def _locked(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            acquiring = asyncio.create_task(lock.acquire())
            try:
                done, _ = await asyncio.wait({acquiring}, timeout=self._timeout)
            except asyncio.CancelledError:
                self._abandon(lock, acquiring)
                raise
            if not done:
                self._abandon(lock, acquiring)
                raise StoreUnavailable(
                    f"Timed out after {self._timeout}s waiting for ledger of user {user_id}"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    @staticmethod
    def _abandon(lock: asyncio.Lock, acquiring: asyncio.Task) -> None:
        """Give up on a pending acquire, releasing the lock if it was granted meanwhile."""
        if not acquiring.cancel():
            lock.release()

    # -- reads ---------------------------------------------------------------

    async def get_balance(self, user_id: int) -> Balance:
        return self._ledger(user_id).balance

    async def list_transactions(
        self,
        user_id: int,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        transactions = self._ledger(user_id).transactions
        if filters is None:
            return list(transactions)
        return [t for t in transactions if filters.matches(t)]

    async def get_transaction(
        self,
        user_id: int,
        transaction_id: int,
    ) -> Optional[Transaction]:
        for txn in self._ledger(user_id).transactions:
            if txn.id == transaction_id:
                return txn
        return None

    async def get_pot(self, user_id: int, pot_id: int) -> Optional[Pot]:
        return self._ledger(user_id).pots.get(pot_id)

    async def list_pots(self, user_id: int) -> list[Pot]:
        return list(self._ledger(user_id).pots.values())

    async def get_budget(self, user_id: int, budget_id: int) -> Optional[Budget]:
        return self._ledger(user_id).budgets.get(budget_id)

    async def list_budgets(self, user_id: int) -> list[Budget]:
        return list(self._ledger(user_id).budgets.values())

    async def snapshot(self, user_id: int) -> LedgerSnapshot:
        ledger = self._ledger(user_id)
        return LedgerSnapshot(
            balance=ledger.balance,
            transactions=list(ledger.transactions),
            pots=list(ledger.pots.values()),
            budgets=list(ledger.budgets.values()),
        )

    # -- writes --------------------------------------------------------------

    @asynccontextmanager
    async def atomic(self, user_id: int) -> AsyncIterator[LedgerUnitOfWork]:
        async with self._locked(user_id):
            staged = self._ledger(user_id).copy()
            yield _MemoryUnitOfWork(staged, self)
            self._ledgers[user_id] = staged

    async def add_transaction(self, user_id: int, txn: Transaction) -> Transaction:
        async with self._locked(user_id):
            stored = txn.model_copy(update={"id": self._next_id("transaction")})
            staged = self._ledger(user_id).copy()
            staged.transactions.append(stored)
            self._ledgers[user_id] = staged
        return stored

    # -- lifecycle -----------------------------------------------------------

    async def ping(self) -> bool:
        return True

    # -- audit ---------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [
            e for e in reversed(self._events)
            if user_id is None or e.user_id == user_id
        ]
        return events[:limit]
