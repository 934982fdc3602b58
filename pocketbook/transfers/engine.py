"""
Money Transfer Engine

The only component that moves money. Everything else is a read-side
projection.

DESIGN DECISION: Every multi-step mutation runs inside one unit of work:
- add_to_pot:       check balance, debit balance, credit pot
- withdraw_from_pot: check pot, debit pot, credit balance
- delete_pot:       refund pot total to balance, remove pot

The check and both writes commit together or not at all, and no other
unit on the same user can run in between. Rejections are raised before
any write, so a failed call leaves the ledger exactly as it was.

For every successful transfer: change in balance == -(change in pot total).
"""

from decimal import Decimal
from typing import Any, Mapping, Union

from pocketbook.models.ledger import Balance, BalanceUpdate, PotUpdate
from pocketbook.models.views import PotDeletion, PotView, TransferResult
from pocketbook.storage import LedgerStore, NotFoundError
from pocketbook.validation import (
    apply_update,
    parse_amount,
    validate_balance_update,
    validate_new_pot,
    validate_pot_update,
)


class TransferError(Exception):
    """A transfer rejected by a business rule. Not retried."""

    def __init__(self, message: str, requested: Decimal, available: Decimal):
        super().__init__(message)
        self.message = message
        self.requested = requested
        self.available = available


class InsufficientBalance(TransferError):
    """The balance cannot cover a move into a pot."""

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__("Insufficient balance", requested, available)


class InsufficientPotFunds(TransferError):
    """The pot holds less than the amount to withdraw."""

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__("Insufficient funds in pot", requested, available)


class MoneyTransferEngine:
    """
    Pot lifecycle and balance <-> pot transfers for one store.

    Usage:
        engine = MoneyTransferEngine(store)
        result = await engine.add_to_pot(user_id, pot_id, "25.00")
        print(result.balance, result.pot.total)
    """

    def __init__(self, store: LedgerStore):
        self._store = store

    # -- balance -------------------------------------------------------------

    async def get_balance(self, user_id: int) -> Balance:
        return await self._store.get_balance(user_id)

    async def update_balance(
        self,
        user_id: int,
        update: Union[BalanceUpdate, Mapping[str, Any]],
    ) -> Balance:
        """Direct balance edit; only the fields given change."""
        command = validate_balance_update(update)
        async with self._store.atomic(user_id) as uow:
            balance = apply_update(command, await uow.get_balance())
            return await uow.set_balance(balance)

    # -- pots ----------------------------------------------------------------

    async def list_pots(self, user_id: int) -> list[PotView]:
        pots = await self._store.list_pots(user_id)
        return [PotView.from_pot(pot) for pot in pots]

    async def get_pot(self, user_id: int, pot_id: int) -> PotView:
        pot = await self._store.get_pot(user_id, pot_id)
        if pot is None:
            raise NotFoundError("pot", pot_id)
        return PotView.from_pot(pot)

    async def create_pot(
        self,
        user_id: int,
        name: Any,
        target: Any,
        theme: Any,
        total: Any = None,
    ) -> PotView:
        """
        Create a pot.

        An initial total may be given; it is recorded as is and does not
        draw on the balance, so a pot can be seeded with existing savings.
        """
        pot = validate_new_pot(name=name, target=target, theme=theme, total=total)
        stored = await self._store.upsert_pot(user_id, pot)
        return PotView.from_pot(stored)

    async def update_pot(
        self,
        user_id: int,
        pot_id: int,
        update: Union[PotUpdate, Mapping[str, Any]],
    ) -> PotView:
        command = validate_pot_update(update)
        async with self._store.atomic(user_id) as uow:
            pot = await uow.get_pot(pot_id)
            if pot is None:
                raise NotFoundError("pot", pot_id)
            stored = await uow.upsert_pot(apply_update(command, pot))
        return PotView.from_pot(stored)

    # -- transfers -----------------------------------------------------------

    async def add_to_pot(self, user_id: int, pot_id: int, amount: Any) -> TransferResult:
        """
        Move money from the balance into a pot.

        Raises:
            InvalidAmount: amount not numeric or not positive
            NotFoundError: pot missing or owned by another user
            InsufficientBalance: amount exceeds the current balance
        """
        value = parse_amount(amount)
        async with self._store.atomic(user_id) as uow:
            pot = await uow.get_pot(pot_id)
            if pot is None:
                raise NotFoundError("pot", pot_id)
            balance = await uow.get_balance()
            if value > balance.current:
                raise InsufficientBalance(value, balance.current)

            balance = await uow.set_balance(
                balance.model_copy(update={"current": balance.current - value})
            )
            pot = await uow.upsert_pot(pot.model_copy(update={"total": pot.total + value}))

        return TransferResult(pot=PotView.from_pot(pot), balance=balance.current)

    async def withdraw_from_pot(self, user_id: int, pot_id: int, amount: Any) -> TransferResult:
        """
        Move money from a pot back to the balance.

        Raises:
            InvalidAmount: amount not numeric or not positive
            NotFoundError: pot missing or owned by another user
            InsufficientPotFunds: amount exceeds the pot total
        """
        value = parse_amount(amount)
        async with self._store.atomic(user_id) as uow:
            pot = await uow.get_pot(pot_id)
            if pot is None:
                raise NotFoundError("pot", pot_id)
            if value > pot.total:
                raise InsufficientPotFunds(value, pot.total)

            pot = await uow.upsert_pot(pot.model_copy(update={"total": pot.total - value}))
            balance = await uow.get_balance()
            balance = await uow.set_balance(
                balance.model_copy(update={"current": balance.current + value})
            )

        return TransferResult(pot=PotView.from_pot(pot), balance=balance.current)

    async def delete_pot(self, user_id: int, pot_id: int) -> PotDeletion:
        """Refund the pot's whole total to the balance, then remove it."""
        async with self._store.atomic(user_id) as uow:
            pot = await uow.get_pot(pot_id)
            if pot is None:
                raise NotFoundError("pot", pot_id)

            balance = await uow.get_balance()
            balance = await uow.set_balance(
                balance.model_copy(update={"current": balance.current + pot.total})
            )
            await uow.delete_pot(pot_id)

        return PotDeletion(
            pot_id=pot_id,
            returned_amount=pot.total,
            new_balance=balance.current,
        )

