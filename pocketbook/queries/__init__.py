"""Transaction query package."""

from pocketbook.queries.executor import (
    ALL_CATEGORIES,
    TransactionQuery,
    TransactionQueryEngine,
    paginate,
    query_transactions,
    sort_transactions,
)

__all__ = [
    "ALL_CATEGORIES",
    "TransactionQuery",
    "TransactionQueryEngine",
    "paginate",
    "query_transactions",
    "sort_transactions",
]
