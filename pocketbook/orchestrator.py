"""
Main Orchestrator for Pocketbook

This module ties together all the components behind one facade that an
HTTP layer calls with an authenticated user id:
1. Money movement (balance edits, pots, transfers)
2. Budgets with period spend
3. Transaction listing, recurring bills and the overview

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only the Money Transfer Engine moves money
- Every read-side projection gets an explicit reference date
- Every mutation and every rejection is audited
- Infrastructure failures (StoreUnavailable) are audited and re-raised,
  never turned into a business answer
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Optional, Union
from uuid import UUID

from pocketbook.aggregation import BudgetManager, compose_summary, recurring_bills_view
from pocketbook.audit import AuditLogger, configure_logging, create_correlation_id
from pocketbook.config import ReportingSettings, Settings, get_settings
from pocketbook.models.ledger import (
    Balance,
    BalanceUpdate,
    Budget,
    BudgetUpdate,
    LedgerSnapshot,
    PotUpdate,
    ReportingPeriod,
    Transaction,
    TransactionFilter,
    to_naive_utc,
)
from pocketbook.models.views import (
    BudgetView,
    FinanceSummary,
    HealthStatus,
    PotDeletion,
    PotView,
    RecurringBillsView,
    TransactionPage,
    TransferResult,
)
from pocketbook.queries import TransactionQuery, TransactionQueryEngine
from pocketbook.storage import (
    AuditStorageInterface,
    DuplicateCategoryError,
    LedgerStore,
    StorageError,
    StoreUnavailable,
    create_store,
)
from pocketbook.transfers import MoneyTransferEngine, TransferError
from pocketbook.validation import ValidationError, parse_amount, parse_sort


def _requested_changes(update: Any) -> dict:
    if isinstance(update, Mapping):
        return dict(update)
    return update.changes()


class FinanceService:
    """
    Facade over the finance core.

    Every method takes the caller's user_id first and an optional
    correlation_id last; one is generated when none is given.
    """

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
        reporting: Optional[ReportingSettings] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._reporting = reporting or get_settings().reporting
        self._transfers = MoneyTransferEngine(store)
        self._budgets = BudgetManager(store, latest_count=self._reporting.budget_latest_count)
        self._queries = TransactionQueryEngine(
            store,
            default_page_size=self._reporting.default_page_size,
            max_page_size=self._reporting.max_page_size,
        )

    def resolve_reference(self, reference: Optional[datetime] = None) -> datetime:
        """
        The moment "current month" and "due soon" are measured from.

        Explicit argument first, then REPORTING_REFERENCE_DATE, then now (UTC).
        """
        if reference is None:
            reference = self._reporting.reference_date
        if reference is None:
            reference = datetime.now(timezone.utc)
        return to_naive_utc(reference)

    @asynccontextmanager
    async def _guard(
        self,
        operation: str,
        user_id: Optional[int],
        correlation_id: Optional[UUID],
    ) -> AsyncIterator[None]:
        """Audit store outages and unexpected errors before they reach the caller."""
        try:
            yield
        except StoreUnavailable as e:
            if self._audit_logger:
                await self._audit_logger.log_store_unavailable(
                    operation=operation,
                    error_message=str(e),
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            raise
        except (ValidationError, TransferError, StorageError):
            raise
        except Exception as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"operation": operation},
                    correlation_id=correlation_id,
                    user_id=user_id,
                )
            raise

    # =========================================================================
    # BALANCE
    # =========================================================================

    async def get_balance(self, user_id: int) -> Balance:
        async with self._guard("get_balance", user_id, None):
            return await self._transfers.get_balance(user_id)

    async def update_balance(
        self,
        user_id: int,
        update: Union[BalanceUpdate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Balance:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("update_balance", user_id, correlation_id):
            balance = await self._transfers.update_balance(user_id, update)

        if self._audit_logger:
            await self._audit_logger.log_balance_updated(
                user_id=user_id,
                changes=_requested_changes(update),
                correlation_id=correlation_id,
            )
        return balance

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def list_transactions(
        self,
        user_id: int,
        query: Union[TransactionQuery, Mapping[str, Any], None] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionPage:
        """Filter, search, sort and paginate the user's transactions."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("list_transactions", user_id, correlation_id):
            page = await self._queries.execute(user_id, query)

        if self._audit_logger:
            await self._audit_logger.log_transactions_queried(
                user_id=user_id,
                result_count=len(page.data),
                total_items=page.pagination.total_items,
                correlation_id=correlation_id,
            )
        return page

    async def get_transaction(self, user_id: int, transaction_id: int) -> Transaction:
        async with self._guard("get_transaction", user_id, None):
            return await self._queries.get(user_id, transaction_id)

    # =========================================================================
    # POTS
    # =========================================================================

    async def list_pots(self, user_id: int) -> list[PotView]:
        async with self._guard("list_pots", user_id, None):
            return await self._transfers.list_pots(user_id)

    async def create_pot(
        self,
        user_id: int,
        name: Any,
        target: Any,
        theme: Any,
        total: Any = None,
        correlation_id: Optional[UUID] = None,
    ) -> PotView:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("create_pot", user_id, correlation_id):
            pot = await self._transfers.create_pot(user_id, name, target, theme, total)

        if self._audit_logger:
            await self._audit_logger.log_pot_created(
                user_id=user_id,
                pot_id=pot.id,
                name=pot.name,
                target=pot.target,
                correlation_id=correlation_id,
            )
        return pot

    async def update_pot(
        self,
        user_id: int,
        pot_id: int,
        update: Union[PotUpdate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> PotView:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("update_pot", user_id, correlation_id):
            pot = await self._transfers.update_pot(user_id, pot_id, update)

        if self._audit_logger:
            await self._audit_logger.log_pot_updated(
                user_id=user_id,
                pot_id=pot_id,
                changes=_requested_changes(update),
                correlation_id=correlation_id,
            )
        return pot

    async def delete_pot(
        self,
        user_id: int,
        pot_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> PotDeletion:
        """Delete a pot, refunding its total to the balance in the same unit."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_pot", user_id, correlation_id):
            deletion = await self._transfers.delete_pot(user_id, pot_id)

        if self._audit_logger:
            await self._audit_logger.log_pot_deleted(
                user_id=user_id,
                pot_id=pot_id,
                returned_amount=deletion.returned_amount,
                new_balance=deletion.new_balance,
                correlation_id=correlation_id,
            )
        return deletion

    async def add_to_pot(
        self,
        user_id: int,
        pot_id: int,
        amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> TransferResult:
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._guard("add_to_pot", user_id, correlation_id):
                value = parse_amount(amount)
                result = await self._transfers.add_to_pot(user_id, pot_id, value)
        except (TransferError, ValidationError) as e:
            if self._audit_logger:
                await self._audit_logger.log_transfer_rejected(
                    user_id=user_id,
                    pot_id=pot_id,
                    operation="add_to_pot",
                    reason=e.message,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_pot_funded(
                user_id=user_id,
                pot_id=pot_id,
                amount=value,
                new_balance=result.balance,
                correlation_id=correlation_id,
            )
        return result

    async def withdraw_from_pot(
        self,
        user_id: int,
        pot_id: int,
        amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> TransferResult:
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._guard("withdraw_from_pot", user_id, correlation_id):
                value = parse_amount(amount)
                result = await self._transfers.withdraw_from_pot(user_id, pot_id, value)
        except (TransferError, ValidationError) as e:
            if self._audit_logger:
                await self._audit_logger.log_transfer_rejected(
                    user_id=user_id,
                    pot_id=pot_id,
                    operation="withdraw_from_pot",
                    reason=e.message,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_pot_withdrawn(
                user_id=user_id,
                pot_id=pot_id,
                amount=value,
                new_balance=result.balance,
                correlation_id=correlation_id,
            )
        return result

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def list_budgets(
        self,
        user_id: int,
        reference: Optional[datetime] = None,
    ) -> list[BudgetView]:
        """Budgets with spend in the month containing the reference date."""
        period = ReportingPeriod.of(self.resolve_reference(reference))
        async with self._guard("list_budgets", user_id, None):
            return await self._budgets.list_with_spending(user_id, period)

    async def create_budget(
        self,
        user_id: int,
        category: Any,
        maximum: Any,
        theme: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._guard("create_budget", user_id, correlation_id):
                budget = await self._budgets.create(user_id, category, maximum, theme)
        except (DuplicateCategoryError, ValidationError) as e:
            if self._audit_logger:
                await self._audit_logger.log_budget_rejected(
                    user_id=user_id,
                    category=category if isinstance(category, str) else None,
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_budget_created(
                user_id=user_id,
                budget_id=budget.id,
                category=budget.category,
                maximum=budget.maximum,
                correlation_id=correlation_id,
            )
        return budget

    async def update_budget(
        self,
        user_id: int,
        budget_id: int,
        update: Union[BudgetUpdate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """Renaming onto a category the user already budgets is rejected."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            async with self._guard("update_budget", user_id, correlation_id):
                budget = await self._budgets.update(user_id, budget_id, update)
        except (DuplicateCategoryError, ValidationError) as e:
            if self._audit_logger:
                await self._audit_logger.log_budget_rejected(
                    user_id=user_id,
                    category=getattr(e, "category", None),
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_budget_updated(
                user_id=user_id,
                budget_id=budget_id,
                changes=_requested_changes(update),
                correlation_id=correlation_id,
            )
        return budget

    async def delete_budget(
        self,
        user_id: int,
        budget_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        async with self._guard("delete_budget", user_id, correlation_id):
            await self._budgets.delete(user_id, budget_id)

        if self._audit_logger:
            await self._audit_logger.log_budget_deleted(
                user_id=user_id,
                budget_id=budget_id,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # READ-SIDE VIEWS
    # =========================================================================

    async def recurring_bills(
        self,
        user_id: int,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        reference: Optional[datetime] = None,
    ) -> RecurringBillsView:
        """One bill per recurring payee, classified against the reference."""
        order = parse_sort(sort)
        moment = self.resolve_reference(reference)
        async with self._guard("recurring_bills", user_id, None):
            transactions = await self._store.list_transactions(
                user_id, TransactionFilter(recurring=True)
            )
        return recurring_bills_view(
            transactions,
            moment,
            search=search,
            order=order,
            due_soon_days=self._reporting.due_soon_days,
        )

    async def overview(
        self,
        user_id: int,
        reference: Optional[datetime] = None,
    ) -> FinanceSummary:
        """The whole-of-finances view, from one consistent snapshot."""
        moment = self.resolve_reference(reference)
        async with self._guard("overview", user_id, None):
            snapshot = await self._store.snapshot(user_id)
        return compose_summary(
            snapshot,
            moment,
            recent_count=self._reporting.recent_activity_count,
            latest_count=self._reporting.budget_latest_count,
            due_soon_days=self._reporting.due_soon_days,
        )

    async def get_data(self, user_id: int) -> LedgerSnapshot:
        """Every record the user owns."""
        async with self._guard("get_data", user_id, None):
            return await self._store.snapshot(user_id)

    async def health(self) -> HealthStatus:
        checked_at = datetime.now(timezone.utc)
        try:
            await self._store.ping()
        except StorageError as e:
            return HealthStatus(
                status="unhealthy",
                store="disconnected",
                checked_at=checked_at,
                error=str(e),
            )
        return HealthStatus(status="healthy", store="connected", checked_at=checked_at)


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
) -> tuple[FinanceService, LedgerStore]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from. Defaults to get_settings().
        store: An already built store (tests). Built from settings otherwise.

    Returns:
        (finance_service, store); the caller closes the store on shutdown
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    store = store or create_store(settings)
    audit_storage = store if isinstance(store, AuditStorageInterface) else None
    audit_logger = AuditLogger(audit_storage)

    service = FinanceService(
        store=store,
        audit_logger=audit_logger,
        reporting=settings.reporting,
    )
    return service, store
