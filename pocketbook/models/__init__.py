"""
Data Models Package

This package contains all Pydantic models used by Pocketbook.
All data flowing through the core must conform to these schemas.
"""

from pocketbook.models.ledger import (
    THEME_COLORS,
    Balance,
    BalanceUpdate,
    Budget,
    BudgetUpdate,
    LedgerSnapshot,
    Pot,
    PotUpdate,
    ReportingPeriod,
    SortOrder,
    Transaction,
    TransactionFilter,
    quantize_money,
    round_percentage,
)
from pocketbook.models.views import (
    BillSummary,
    BudgetView,
    FinanceSummary,
    HealthStatus,
    Pagination,
    PotDeletion,
    PotView,
    RecurringBill,
    RecurringBillsView,
    TransactionPage,
    TransferResult,
)
from pocketbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "THEME_COLORS",
    "Balance",
    "BalanceUpdate",
    "Budget",
    "BudgetUpdate",
    "LedgerSnapshot",
    "Pot",
    "PotUpdate",
    "ReportingPeriod",
    "SortOrder",
    "Transaction",
    "TransactionFilter",
    "quantize_money",
    "round_percentage",
    # Views
    "BillSummary",
    "BudgetView",
    "FinanceSummary",
    "HealthStatus",
    "Pagination",
    "PotDeletion",
    "PotView",
    "RecurringBill",
    "RecurringBillsView",
    "TransactionPage",
    "TransferResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
