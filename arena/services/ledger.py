"""Wallet balance movements. Callers pass the session of their own transaction."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arena.errors import BadRequest, InsufficientFunds
from arena.models import Currency, LedgerEntry, LedgerEntryType, Wallet
from arena.services.retry import run_in_transaction

logger = logging.getLogger("arena.ledger")


async def credit(
    session: AsyncSession,
    user_id: int,
    amount: int,
    currency: Currency,
    entry_type: LedgerEntryType,
    tournament_id: Optional[int] = None,
) -> LedgerEntry:
    """Add amount to the user's wallet and append a ledger entry."""
    if amount <= 0:
        raise BadRequest("Credit amount must be positive")
    result = await session.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id, Wallet.currency == currency)
        .values(balance=Wallet.balance + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.add(Wallet(user_id=user_id, currency=currency, balance=amount))
    entry = LedgerEntry(
        user_id=user_id,
        entry_type=entry_type,
        amount=amount,
        currency=currency,
        tournament_id=tournament_id,
    )
    session.add(entry)
    await session.flush()
    logger.info("credit %s %s %d to user %s (tournament %s)", entry_type.value, currency.value, amount, user_id, tournament_id)
    return entry


async def debit(
    session: AsyncSession,
    user_id: int,
    amount: int,
    currency: Currency,
    entry_type: LedgerEntryType,
    tournament_id: Optional[int] = None,
) -> LedgerEntry:
    """Take amount from the user's wallet. Raises InsufficientFunds if the balance is short."""
    if amount <= 0:
        raise BadRequest("Debit amount must be positive")
    result = await session.execute(
        update(Wallet)
        .where(
            Wallet.user_id == user_id,
            Wallet.currency == currency,
            Wallet.balance >= amount,
        )
        .values(balance=Wallet.balance - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        balance = await get_balance_in(session, user_id, currency)
        raise InsufficientFunds(
            f"Not enough {currency.value.lower()}s. Required: {amount}, available: {balance}"
        )
    entry = LedgerEntry(
        user_id=user_id,
        entry_type=entry_type,
        amount=amount,
        currency=currency,
        tournament_id=tournament_id,
    )
    session.add(entry)
    await session.flush()
    logger.info("debit %s %s %d from user %s (tournament %s)", entry_type.value, currency.value, amount, user_id, tournament_id)
    return entry


async def get_balance_in(session: AsyncSession, user_id: int, currency: Currency) -> int:
    result = await session.execute(
        select(Wallet.balance).where(Wallet.user_id == user_id, Wallet.currency == currency)
    )
    return result.scalar_one_or_none() or 0


async def get_balance(user_id: int, currency: Currency) -> int:
    """Current balance of one currency for a user (0 without a wallet)."""

    async def work(session: AsyncSession) -> int:
        return await get_balance_in(session, user_id, currency)

    return await run_in_transaction(work)


async def deposit(user_id: int, amount: int, currency: Currency = Currency.COIN) -> LedgerEntry:
    """Top up a wallet. Stands in for the platform's payment flow."""

    async def work(session: AsyncSession) -> LedgerEntry:
        return await credit(session, user_id, amount, currency, LedgerEntryType.DEPOSIT)

    return await run_in_transaction(work)


async def list_entries(user_id: int, tournament_id: Optional[int] = None) -> list[LedgerEntry]:
    """Ledger entries for a user, oldest first."""

    async def work(session: AsyncSession) -> list[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if tournament_id is not None:
            stmt = stmt.where(LedgerEntry.tournament_id == tournament_id)
        result = await session.execute(stmt.order_by(LedgerEntry.id))
        return list(result.scalars().all())

    return await run_in_transaction(work)
