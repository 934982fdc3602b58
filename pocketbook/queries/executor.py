"""
Transaction Query Engine

DESIGN DECISION: Query execution is DETERMINISTIC and total.
Filter -> search -> sort -> paginate, always in that order, on the full
transaction set. A query never fails because of the data: an empty set
is one empty page, and an out-of-range page is clamped, not an error.

Only malformed queries (unknown sort key, page size below 1) are
rejected, with a ValidationError.
"""

import math
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Union

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pocketbook.config import get_settings
from pocketbook.models.ledger import LedgerModel, SortOrder, Transaction, TransactionFilter
from pocketbook.models.views import Pagination, TransactionPage
from pocketbook.aggregation.budgets import newest_first
from pocketbook.storage import LedgerStore, NotFoundError
from pocketbook.validation import from_pydantic_error, parse_sort


# Category values that mean "no category filter"
ALL_CATEGORIES = frozenset({"All", "All Transactions"})


class TransactionQuery(LedgerModel):
    """
    A transaction list request.

    include_category_in_search widens the search to the category text
    as well as the payee name.
    """

    category: Optional[str] = None
    search: Optional[str] = None
    include_category_in_search: bool = False
    sort: SortOrder = SortOrder.LATEST
    page: int = 1
    page_size: Optional[int] = Field(default=None, ge=1)

    @field_validator('sort', mode='before')
    @classmethod
    def default_sort(cls, v: Any) -> Any:
        return SortOrder.LATEST if v in (None, "") else v

    @field_validator('page', mode='before')
    @classmethod
    def default_page(cls, v: Any) -> Any:
        return 1 if v in (None, "") else v

    @property
    def category_filter(self) -> Optional[str]:
        if not self.category or self.category in ALL_CATEGORIES:
            return None
        return self.category


def _matches_search(txn: Transaction, needle: str, include_category: bool) -> bool:
    if needle in txn.name.casefold():
        return True
    return include_category and needle in txn.category.casefold()


def sort_transactions(transactions: Iterable[Transaction], order: SortOrder) -> list[Transaction]:
    """Stable sort; equal keys keep their original order."""
    if order == SortOrder.LATEST:
        return newest_first(transactions)
    if order == SortOrder.OLDEST:
        return sorted(transactions, key=lambda t: t.date)
    if order == SortOrder.A_Z:
        return sorted(transactions, key=lambda t: t.name.casefold())
    if order == SortOrder.Z_A:
        return sorted(transactions, key=lambda t: t.name.casefold(), reverse=True)
    # highest/lowest compare magnitudes: a 100 expense outranks a 50 income
    if order == SortOrder.HIGHEST:
        return sorted(transactions, key=lambda t: abs(t.amount), reverse=True)
    return sorted(transactions, key=lambda t: abs(t.amount))


def paginate(items: list, page: int, page_size: int) -> tuple[list, Pagination]:
    """
    Slice one page out of items.

    total_pages is at least 1, and page is clamped into [1, total_pages].
    """
    total_items = len(items)
    total_pages = max(1, math.ceil(total_items / page_size))
    current = min(max(page, 1), total_pages)
    start = (current - 1) * page_size

    return items[start:start + page_size], Pagination(
        current_page=current,
        total_pages=total_pages,
        total_items=total_items,
        has_next=current < total_pages,
        has_prev=current > 1,
    )


def query_transactions(
    transactions: Iterable[Transaction],
    query: TransactionQuery,
    default_page_size: int = 10,
    max_page_size: int = 100,
) -> TransactionPage:
    """Run a query over an in-memory transaction set."""
    selected = list(transactions)

    category = query.category_filter
    if category is not None:
        selected = [t for t in selected if t.category == category]

    if query.search and query.search.strip():
        needle = query.search.strip().casefold()
        selected = [
            t for t in selected
            if _matches_search(t, needle, query.include_category_in_search)
        ]

    ordered = sort_transactions(selected, query.sort)
    page_size = min(query.page_size or default_page_size, max_page_size)
    data, pagination = paginate(ordered, query.page, page_size)
    return TransactionPage(data=data, pagination=pagination)


class TransactionQueryEngine:
    """
    Runs transaction queries against a Ledger Store.

    The category filter is pushed down to the store; search, sort and
    pagination run here so every store behaves identically.
    """

    def __init__(
        self,
        store: LedgerStore,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        self._store = store
        settings = get_settings().reporting
        self._default_page_size = default_page_size or settings.default_page_size
        self._max_page_size = max_page_size or settings.max_page_size

    @staticmethod
    def build_query(query: Union[TransactionQuery, Mapping, None]) -> TransactionQuery:
        """Accept a query object or raw request parameters."""
        if query is None:
            return TransactionQuery()
        if isinstance(query, TransactionQuery):
            return query
        params = dict(query)
        if "sort" in params:
            params["sort"] = parse_sort(params["sort"])
        try:
            return TransactionQuery.model_validate(params)
        except PydanticValidationError as e:
            raise from_pydantic_error(e, "Invalid transaction query") from e

    async def execute(
        self,
        user_id: int,
        query: Union[TransactionQuery, Mapping, None] = None,
    ) -> TransactionPage:
        request = self.build_query(query)
        filters = None
        if request.category_filter is not None:
            filters = TransactionFilter(category=request.category_filter)
        transactions = await self._store.list_transactions(user_id, filters)
        return query_transactions(
            transactions,
            request,
            default_page_size=self._default_page_size,
            max_page_size=self._max_page_size,
        )

    async def get(self, user_id: int, transaction_id: int) -> Transaction:
        txn = await self._store.get_transaction(user_id, transaction_id)
        if txn is None:
            raise NotFoundError("transaction", transaction_id)
        return txn
