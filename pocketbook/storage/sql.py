"""
SQL Ledger Store Implementation

DESIGN DECISION: A relational database backs the durable store because
the transfer rules need real transactions:
1. A balance check and two writes must commit together
2. Two transfers on the same user must not interleave
3. A failure half way must leave nothing behind

SQLAlchemy's synchronous engine does the work; every call is pushed to a
worker thread with asyncio.to_thread so the async interface never blocks
the event loop.

LOCKING:
- Rows read inside a unit of work are selected FOR UPDATE
- SQLite has no row locks, so every transaction there starts with
  BEGIN IMMEDIATE, which takes the database write lock up front

CANCELLATION:
- Session work inside a unit runs to completion even if the caller is
  cancelled, then the unit rolls back. A unit is never left half applied.
- Plain reads may be abandoned (the worker finishes on its own).

Money is stored as integer cents.
"""

import asyncio
import json
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import AsyncIterator, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pocketbook.config import get_settings
from pocketbook.models.audit import AuditEvent, AuditEventType, AuditSeverity
from pocketbook.models.ledger import (
    CENT,
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


T = TypeVar("T")

# Driver failures that mean "the store is not usable right now"
_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError)

logger = structlog.get_logger(__name__)

Base = declarative_base()


class Money(TypeDecorator):
    """Decimal amounts persisted as integer cents."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int((Decimal(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(value) / 100).quantize(CENT)


class BalanceRow(Base):
    __tablename__ = "balances"

    user_id = Column(Integer, primary_key=True)
    current = Column(Money, nullable=False, default=0)
    income = Column(Money, nullable=False, default=0)
    expenses = Column(Money, nullable=False, default=0)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    date = Column(DateTime, nullable=False, index=True)
    amount = Column(Money, nullable=False)
    avatar = Column(String(500), nullable=False, default="")
    recurring = Column(Boolean, nullable=False, default=False)


class PotRow(Base):
    __tablename__ = "pots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(30), nullable=False)
    target = Column(Money, nullable=False)
    total = Column(Money, nullable=False, default=0)
    theme = Column(String(20), nullable=False)


class BudgetRow(Base):
    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    category = Column(String(100), nullable=False)
    maximum = Column(Money, nullable=False)
    theme = Column(String(20), nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id = Column(String(36), primary_key=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    user_id = Column(Integer, nullable=True, index=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, nullable=True)
    correlation_id = Column(String(36), nullable=True, index=True)
    description = Column(String(500), nullable=False)
    details_json = Column(Text, nullable=False, default="{}")
    error_code = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)


# =============================================================================
# ROW <-> MODEL
# =============================================================================

def _balance_from_row(row: Optional[BalanceRow]) -> Balance:
    if row is None:
        return Balance()
    return Balance(current=row.current, income=row.income, expenses=row.expenses)


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        name=row.name,
        category=row.category,
        date=row.date,
        amount=row.amount,
        avatar=row.avatar,
        recurring=row.recurring,
    )


def _pot_from_row(row: PotRow) -> Pot:
    return Pot(id=row.id, name=row.name, target=row.target, total=row.total, theme=row.theme)


def _budget_from_row(row: BudgetRow) -> Budget:
    return Budget(id=row.id, category=row.category, maximum=row.maximum, theme=row.theme)


def _event_to_row(event: AuditEvent) -> AuditEventRow:
    timestamp = event.timestamp
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return AuditEventRow(
        event_id=str(event.event_id),
        timestamp=timestamp,
        event_type=event.event_type.value,
        severity=event.severity.value,
        user_id=event.user_id,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        correlation_id=str(event.correlation_id) if event.correlation_id else None,
        description=event.description,
        details_json=json.dumps(event.details, default=str),
        error_code=event.error_code,
        error_message=event.error_message,
    )


def _event_from_row(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(row.event_id),
        timestamp=row.timestamp.replace(tzinfo=timezone.utc),
        event_type=AuditEventType(row.event_type),
        severity=AuditSeverity(row.severity),
        user_id=row.user_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
        description=row.description,
        details=json.loads(row.details_json or "{}"),
        error_code=row.error_code,
        error_message=row.error_message,
    )


# =============================================================================
# ENGINE
# =============================================================================

def create_ledger_engine(
    database_url: str,
    timeout_seconds: float,
    echo: bool = False,
) -> Engine:
    """
    Create an engine whose waits are bounded by timeout_seconds.

    SQLite: the busy timeout bounds waits for the write lock.
    Other databases: the pool timeout bounds waits for a connection,
    and a session lock timeout bounds SELECT ... FOR UPDATE waits.
    """
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend != "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            pool_timeout=timeout_seconds,
            pool_pre_ping=True,
        )
        statement = lock_timeout_statement(backend, timeout_seconds)
        if statement is not None:
            @event.listens_for(engine, "connect")
            def _set_lock_timeout(dbapi_connection, connection_record):
                # psycopg would otherwise open a transaction for the SET
                if backend == "postgresql":
                    autocommit = dbapi_connection.autocommit
                    dbapi_connection.autocommit = True
                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute(statement)
                finally:
                    cursor.close()
                if backend == "postgresql":
                    dbapi_connection.autocommit = autocommit
        return engine

    engine = create_engine(
        url,
        echo=echo,
        connect_args={"timeout": timeout_seconds, "check_same_thread": False},
    )

    # pysqlite's own transaction handling defers locking; take it over
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def lock_timeout_statement(backend: str, timeout_seconds: float) -> Optional[str]:
    """
    The per-session statement that bounds row lock waits, if the backend has one.

    An expired wait raises OperationalError, which surfaces as StoreUnavailable.
    """
    if backend == "postgresql":
        return f"SET lock_timeout = {max(1, int(timeout_seconds * 1000))}"
    if backend in ("mysql", "mariadb"):
        # whole seconds only
        return f"SET SESSION innodb_lock_wait_timeout = {max(1, math.ceil(timeout_seconds))}"
    return None


async def _run_to_completion(func: Callable[..., T], *args) -> T:
    """
    Run blocking session work in a worker thread.

    If the caller is cancelled meanwhile, wait for the worker to finish
    before re-raising, so the session is never touched by two threads.
    """
    worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        await asyncio.wait([worker])
        raise


# =============================================================================
# UNIT OF WORK
# =============================================================================

class _SqlUnitOfWork(LedgerUnitOfWork):
    """Unit of work bound to one session and one open DB transaction."""

    def __init__(self, session: Session, user_id: int):
        self._session = session
        self._user_id = user_id

    # Balance

    async def get_balance(self) -> Balance:
        return await _run_to_completion(self._get_balance)

    def _get_balance(self) -> Balance:
        row = self._session.get(BalanceRow, self._user_id, with_for_update=True)
        return _balance_from_row(row)

    async def set_balance(self, balance: Balance) -> Balance:
        return await _run_to_completion(self._set_balance, balance)

    def _set_balance(self, balance: Balance) -> Balance:
        row = self._session.get(BalanceRow, self._user_id, with_for_update=True)
        if row is None:
            row = BalanceRow(user_id=self._user_id)
            self._session.add(row)
        row.current = balance.current
        row.income = balance.income
        row.expenses = balance.expenses
        self._session.flush()
        return balance

    # Pots

    def _pot_row(self, pot_id: int) -> Optional[PotRow]:
        stmt = (
            select(PotRow)
            .where(PotRow.id == pot_id, PotRow.user_id == self._user_id)
            .with_for_update()
        )
        return self._session.scalars(stmt).first()

    async def get_pot(self, pot_id: int) -> Optional[Pot]:
        row = await _run_to_completion(self._pot_row, pot_id)
        return _pot_from_row(row) if row else None

    async def list_pots(self) -> list[Pot]:
        return await _run_to_completion(self._list_pots)

    def _list_pots(self) -> list[Pot]:
        stmt = select(PotRow).where(PotRow.user_id == self._user_id).order_by(PotRow.id)
        return [_pot_from_row(row) for row in self._session.scalars(stmt)]

    async def upsert_pot(self, pot: Pot) -> Pot:
        return await _run_to_completion(self._upsert_pot, pot)

    def _upsert_pot(self, pot: Pot) -> Pot:
        if pot.id is None:
            row = PotRow(user_id=self._user_id)
            self._session.add(row)
        else:
            row = self._pot_row(pot.id)
            if row is None:
                raise NotFoundError("pot", pot.id)
        row.name = pot.name
        row.target = pot.target
        row.total = pot.total
        row.theme = pot.theme
        self._session.flush()
        return _pot_from_row(row)

    async def delete_pot(self, pot_id: int) -> bool:
        return await _run_to_completion(self._delete_pot, pot_id)

    def _delete_pot(self, pot_id: int) -> bool:
        result = self._session.execute(
            delete(PotRow).where(PotRow.id == pot_id, PotRow.user_id == self._user_id)
        )
        return result.rowcount > 0

    # Budgets

    def _budget_row(self, budget_id: int) -> Optional[BudgetRow]:
        stmt = (
            select(BudgetRow)
            .where(BudgetRow.id == budget_id, BudgetRow.user_id == self._user_id)
            .with_for_update()
        )
        return self._session.scalars(stmt).first()

    async def get_budget(self, budget_id: int) -> Optional[Budget]:
        row = await _run_to_completion(self._budget_row, budget_id)
        return _budget_from_row(row) if row else None

    async def list_budgets(self) -> list[Budget]:
        return await _run_to_completion(self._list_budgets)

    def _list_budgets(self) -> list[Budget]:
        stmt = select(BudgetRow).where(BudgetRow.user_id == self._user_id).order_by(BudgetRow.id)
        return [_budget_from_row(row) for row in self._session.scalars(stmt)]

    async def upsert_budget(self, budget: Budget) -> Budget:
        return await _run_to_completion(self._upsert_budget, budget)

    def _upsert_budget(self, budget: Budget) -> Budget:
        clash = select(BudgetRow.id).where(
            BudgetRow.user_id == self._user_id,
            BudgetRow.category == budget.category,
        )
        if budget.id is not None:
            clash = clash.where(BudgetRow.id != budget.id)
        if self._session.scalars(clash).first() is not None:
            raise DuplicateCategoryError(budget.category)

        if budget.id is None:
            row = BudgetRow(user_id=self._user_id)
            self._session.add(row)
        else:
            row = self._budget_row(budget.id)
            if row is None:
                raise NotFoundError("budget", budget.id)
        row.category = budget.category
        row.maximum = budget.maximum
        row.theme = budget.theme
        try:
            self._session.flush()
        except IntegrityError as e:
            # Lost a race with another writer on the unique constraint
            raise DuplicateCategoryError(budget.category) from e
        return _budget_from_row(row)

    async def delete_budget(self, budget_id: int) -> bool:
        return await _run_to_completion(self._delete_budget, budget_id)

    def _delete_budget(self, budget_id: int) -> bool:
        result = self._session.execute(
            delete(BudgetRow).where(BudgetRow.id == budget_id, BudgetRow.user_id == self._user_id)
        )
        return result.rowcount > 0


# =============================================================================
# STORE
# =============================================================================

class SqlLedgerStore(LedgerStore, AuditStorageInterface):
    """
    SQLAlchemy implementation of the ledger and audit stores.

    Read-only calls are retried on transient operational errors and
    bounded by the store timeout. Units of work are not retried here:
    retrying a transfer is the caller's decision.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        timeout_seconds: Optional[float] = None,
        read_retry_attempts: Optional[int] = None,
        create_tables: bool = True,
    ):
        settings = get_settings().store
        self._timeout = timeout_seconds or settings.timeout_seconds
        self._engine = engine or create_ledger_engine(
            database_url or settings.database_url,
            timeout_seconds=self._timeout,
            echo=settings.echo_sql,
        )
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        self._retry = retry(
            stop=stop_after_attempt(read_retry_attempts or settings.read_retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        )
        if create_tables:
            self.create_schema()

    def create_schema(self) -> None:
        """Create any missing tables."""
        try:
            Base.metadata.create_all(self._engine)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Could not create ledger schema: {e}") from e

    async def _read(self, func: Callable[..., T], *args) -> T:
        """Run a read in a worker thread with retries and a deadline."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._retry(func), *args),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("store_read_timeout", operation=func.__name__, timeout=self._timeout)
            raise StoreUnavailable(
                f"Ledger read '{func.__name__}' timed out after {self._timeout}s"
            ) from e
        except _UNAVAILABLE as e:
            logger.error("store_read_failed", operation=func.__name__, error=str(e))
            raise StoreUnavailable(f"Ledger read '{func.__name__}' failed: {e}") from e

    # -- reads ---------------------------------------------------------------

    async def get_balance(self, user_id: int) -> Balance:
        return await self._read(self._get_balance, user_id)

    def _get_balance(self, user_id: int) -> Balance:
        with self._sessions() as session:
            return _balance_from_row(session.get(BalanceRow, user_id))

    async def list_transactions(
        self,
        user_id: int,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        return await self._read(self._list_transactions, user_id, filters)

    def _list_transactions(
        self,
        user_id: int,
        filters: Optional[TransactionFilter],
        session: Optional[Session] = None,
    ) -> list[Transaction]:
        stmt = select(TransactionRow).where(TransactionRow.user_id == user_id)
        if filters is not None:
            if filters.category is not None:
                stmt = stmt.where(TransactionRow.category == filters.category)
            if filters.recurring is not None:
                stmt = stmt.where(TransactionRow.recurring == filters.recurring)
        stmt = stmt.order_by(TransactionRow.id)

        if session is not None:
            return [_transaction_from_row(row) for row in session.scalars(stmt)]
        with self._sessions() as session:
            return [_transaction_from_row(row) for row in session.scalars(stmt)]

    async def get_transaction(
        self,
        user_id: int,
        transaction_id: int,
    ) -> Optional[Transaction]:
        return await self._read(self._get_transaction, user_id, transaction_id)

    def _get_transaction(self, user_id: int, transaction_id: int) -> Optional[Transaction]:
        stmt = select(TransactionRow).where(
            TransactionRow.id == transaction_id,
            TransactionRow.user_id == user_id,
        )
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return _transaction_from_row(row) if row else None

    async def get_pot(self, user_id: int, pot_id: int) -> Optional[Pot]:
        return await self._read(self._get_pot, user_id, pot_id)

    def _get_pot(self, user_id: int, pot_id: int) -> Optional[Pot]:
        stmt = select(PotRow).where(PotRow.id == pot_id, PotRow.user_id == user_id)
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return _pot_from_row(row) if row else None

    async def list_pots(self, user_id: int) -> list[Pot]:
        return await self._read(self._list_pots, user_id)

    def _list_pots(self, user_id: int) -> list[Pot]:
        stmt = select(PotRow).where(PotRow.user_id == user_id).order_by(PotRow.id)
        with self._sessions() as session:
            return [_pot_from_row(row) for row in session.scalars(stmt)]

    async def get_budget(self, user_id: int, budget_id: int) -> Optional[Budget]:
        return await self._read(self._get_budget, user_id, budget_id)

    def _get_budget(self, user_id: int, budget_id: int) -> Optional[Budget]:
        stmt = select(BudgetRow).where(BudgetRow.id == budget_id, BudgetRow.user_id == user_id)
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return _budget_from_row(row) if row else None

    async def list_budgets(self, user_id: int) -> list[Budget]:
        return await self._read(self._list_budgets, user_id)

    def _list_budgets(self, user_id: int) -> list[Budget]:
        stmt = select(BudgetRow).where(BudgetRow.user_id == user_id).order_by(BudgetRow.id)
        with self._sessions() as session:
            return [_budget_from_row(row) for row in session.scalars(stmt)]

    async def snapshot(self, user_id: int) -> LedgerSnapshot:
        return await self._read(self._snapshot, user_id)

    def _snapshot(self, user_id: int) -> LedgerSnapshot:
        with self._sessions() as session, session.begin():
            pots = session.scalars(
                select(PotRow).where(PotRow.user_id == user_id).order_by(PotRow.id)
            )
            budgets = session.scalars(
                select(BudgetRow).where(BudgetRow.user_id == user_id).order_by(BudgetRow.id)
            )
            return LedgerSnapshot(
                balance=_balance_from_row(session.get(BalanceRow, user_id)),
                transactions=self._list_transactions(user_id, None, session=session),
                pots=[_pot_from_row(row) for row in pots],
                budgets=[_budget_from_row(row) for row in budgets],
            )

    # -- writes --------------------------------------------------------------

    @asynccontextmanager
    async def atomic(self, user_id: int) -> AsyncIterator[LedgerUnitOfWork]:
        session = self._sessions()
        try:
            try:
                yield _SqlUnitOfWork(session, user_id)
                await _run_to_completion(session.commit)
            except BaseException:
                await _run_to_completion(session.rollback)
                raise
        except _UNAVAILABLE as e:
            logger.error("store_unit_failed", user_id=user_id, error=str(e))
            raise StoreUnavailable(f"Ledger update for user {user_id} failed: {e}") from e
        finally:
            await _run_to_completion(session.close)

    async def add_transaction(self, user_id: int, txn: Transaction) -> Transaction:
        try:
            return await _run_to_completion(self._add_transaction, user_id, txn)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Could not record transaction: {e}") from e

    def _add_transaction(self, user_id: int, txn: Transaction) -> Transaction:
        with self._sessions() as session, session.begin():
            row = TransactionRow(
                user_id=user_id,
                name=txn.name,
                category=txn.category,
                date=txn.date,
                amount=txn.amount,
                avatar=txn.avatar,
                recurring=txn.recurring,
            )
            session.add(row)
            session.flush()
            return _transaction_from_row(row)

    # -- lifecycle -----------------------------------------------------------

    async def ping(self) -> bool:
        return await self._read(self._ping)

    def _ping(self) -> bool:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    # -- audit ---------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            return await _run_to_completion(self._append_event, event)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Could not append audit event: {e}") from e

    def _append_event(self, event: AuditEvent) -> bool:
        with self._sessions() as session, session.begin():
            session.add(_event_to_row(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._read(self._events_by_correlation_id, correlation_id)

    def _events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == str(correlation_id))
            .order_by(AuditEventRow.timestamp)
        )
        with self._sessions() as session:
            return [_event_from_row(row) for row in session.scalars(stmt)]

    async def get_recent_events(
        self,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._read(self._recent_events, user_id, limit)

    def _recent_events(self, user_id: Optional[int], limit: int) -> list[AuditEvent]:
        stmt = select(AuditEventRow)
        if user_id is not None:
            stmt = stmt.where(AuditEventRow.user_id == user_id)
        stmt = stmt.order_by(AuditEventRow.timestamp.desc()).limit(limit)
        with self._sessions() as session:
            return [_event_from_row(row) for row in session.scalars(stmt)]
