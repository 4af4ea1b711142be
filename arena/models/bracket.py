"""Bracket match and result report models."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, utcnow


class MatchStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"


class ReportStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DISPUTED = "DISPUTED"
    RESOLVED = "RESOLVED"


class TournamentMatch(Base):
    """Single match in a single-elimination tree.

    Rounds are numbered from the final: round 1 holds the final, the first
    round played has the highest number. next_match_slot is 1 (player1) or
    2 (player2) of next_match_id.
    """

    __tablename__ = "tournament_matches"
    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "match_number", name="uq_match_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    match_number: Mapped[int] = mapped_column(Integer, nullable=False)
    player1_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    player2_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    winner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus, native_enum=False, length=16),
        default=MatchStatus.SCHEDULED,
        nullable=False,
    )
    previous_match1_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_matches.id"), nullable=True
    )
    previous_match2_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_matches.id"), nullable=True
    )
    next_match_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_matches.id"), nullable=True
    )
    next_match_slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_final(self) -> bool:
        return self.round == 1 and self.match_number == 1

    @property
    def has_both_players(self) -> bool:
        return self.player1_id is not None and self.player2_id is not None

    def slot_of(self, user_id: int) -> Optional[int]:
        """1 or 2 if user_id plays in this match, else None."""
        if user_id is not None and user_id == self.player1_id:
            return 1
        if user_id is not None and user_id == self.player2_id:
            return 2
        return None

    def loser_id(self) -> Optional[int]:
        if self.winner_id is None:
            return None
        return self.player2_id if self.winner_id == self.player1_id else self.player1_id


class MatchResultReport(Base):
    """A player's score submission, stored as (player1_score, player2_score)."""

    __tablename__ = "match_result_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(
        ForeignKey("tournament_matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reporter_id: Mapped[int] = mapped_column(Integer, nullable=False)
    player1_score: Mapped[int] = mapped_column(Integer, nullable=False)
    player2_score: Mapped[int] = mapped_column(Integer, nullable=False)
    evidence: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus, native_enum=False, length=16),
        default=ReportStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
