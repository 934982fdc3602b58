"""Money Transfer Engine package."""

from pocketbook.transfers.engine import (
    InsufficientBalance,
    InsufficientPotFunds,
    MoneyTransferEngine,
    TransferError,
)

__all__ = [
    "InsufficientBalance",
    "InsufficientPotFunds",
    "MoneyTransferEngine",
    "TransferError",
]
