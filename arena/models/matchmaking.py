"""Matchmaking queue and game session models."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from arena.models.base import Base, utcnow


class QueueStatus(str, enum.Enum):
    WAITING = "WAITING"
    MATCHED = "MATCHED"
    CANCELLED = "CANCELLED"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class GameSession(Base):
    """Game session spawned by the queue matcher (ranked) or by a host."""

    __tablename__ = "game_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False, length=16),
        default=SessionStatus.ACTIVE,
        nullable=False,
    )
    is_ranked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    winner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # null on draw

    players: Mapped[List["GameSessionPlayer"]] = relationship(
        "GameSessionPlayer",
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GameSessionPlayer.id",
    )

    @property
    def player_ids(self) -> list[int]:
        return [p.user_id for p in self.players]


class GameSessionPlayer(Base):
    """Membership of a user in a game session."""

    __tablename__ = "game_session_players"
    __table_args__ = (UniqueConstraint("session_id", "user_id", name="uq_session_player"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    session: Mapped["GameSession"] = relationship("GameSession", back_populates="players")


class MatchmakingQueueEntry(Base):
    """A user's request to be paired for a ranked session of one game."""

    __tablename__ = "matchmaking_queue"
    __table_args__ = (
        # At most one WAITING entry per user and game
        Index(
            "uq_queue_waiting_user_game",
            "user_id",
            "game_id",
            unique=True,
            sqlite_where=text("status = 'WAITING'"),
            postgresql_where=text("status = 'WAITING'"),
        ),
        Index("ix_queue_game_status_rating", "game_id", "status", "rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    game_id: Mapped[int] = mapped_column(Integer, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[QueueStatus] = mapped_column(
        Enum(QueueStatus, native_enum=False, length=16),
        default=QueueStatus.WAITING,
        nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    game_session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("game_sessions.id"), nullable=True
    )
