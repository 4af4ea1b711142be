"""Tournament and participant models."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, utcnow


class TournamentFormat(str, enum.Enum):
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"


class TournamentStatus(str, enum.Enum):
    UPCOMING = "UPCOMING"
    REGISTRATION_OPEN = "REGISTRATION_OPEN"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({TournamentStatus.COMPLETED, TournamentStatus.CANCELLED})

# Forward-only lifecycle; CANCELLED is added for every non-terminal state below.
_FORWARD = {
    TournamentStatus.UPCOMING: TournamentStatus.REGISTRATION_OPEN,
    TournamentStatus.REGISTRATION_OPEN: TournamentStatus.REGISTRATION_CLOSED,
    TournamentStatus.REGISTRATION_CLOSED: TournamentStatus.IN_PROGRESS,
    TournamentStatus.IN_PROGRESS: TournamentStatus.COMPLETED,
}


def can_transition(current: TournamentStatus, target: TournamentStatus) -> bool:
    """True if the lifecycle allows moving from current to target."""
    if current in TERMINAL_STATUSES:
        return False
    if target == TournamentStatus.CANCELLED:
        return True
    return _FORWARD.get(current) == target


class Tournament(Base):
    """Single-elimination tournament with registration and play windows."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    organizer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    format: Mapped[TournamentFormat] = mapped_column(
        Enum(TournamentFormat, native_enum=False, length=32),
        default=TournamentFormat.SINGLE_ELIMINATION,
        nullable=False,
    )
    status: Mapped[TournamentStatus] = mapped_column(
        Enum(TournamentStatus, native_enum=False, length=32),
        default=TournamentStatus.UPCOMING,
        nullable=False,
        index=True,
    )
    registration_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    registration_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_fee: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)  # COIN
    prize_pool: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)  # DIAMOND
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class TournamentParticipant(Base):
    """User registered for a tournament. Rank is set when the tournament completes."""

    __tablename__ = "tournament_participants"
    __table_args__ = (UniqueConstraint("tournament_id", "user_id", name="uq_participant_tournament_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    entry_fee_paid: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
