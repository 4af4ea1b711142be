"""Wallet and ledger models backing entry fees, refunds and prizes."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, utcnow


class Currency(str, enum.Enum):
    COIN = "COIN"  # entry fees and refunds
    DIAMOND = "DIAMOND"  # prizes


class LedgerEntryType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    ENTRY_FEE = "ENTRY_FEE"
    REFUND = "REFUND"
    PRIZE = "PRIZE"


class Wallet(Base):
    """Balance of one currency for one user."""

    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),)

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    currency: Mapped[Currency] = mapped_column(
        Enum(Currency, native_enum=False, length=16), primary_key=True
    )
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class LedgerEntry(Base):
    """Append-only record of a balance movement."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        # A tournament pays out its prize once
        Index(
            "uq_ledger_prize_per_tournament",
            "tournament_id",
            unique=True,
            sqlite_where=text("entry_type = 'PRIZE'"),
            postgresql_where=text("entry_type = 'PRIZE'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType, native_enum=False, length=16), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[Currency] = mapped_column(Enum(Currency, native_enum=False, length=16), nullable=False)
    tournament_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournaments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
