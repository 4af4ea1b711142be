"""Database models."""
from arena.models.base import Base, async_session_factory, init_db, utcnow
from arena.models.tournament import (
    Tournament,
    TournamentFormat,
    TournamentParticipant,
    TournamentStatus,
)
from arena.models.bracket import MatchResultReport, MatchStatus, ReportStatus, TournamentMatch
from arena.models.player import PlayerSkill, level_for_rating
from arena.models.matchmaking import (
    GameSession,
    GameSessionPlayer,
    MatchmakingQueueEntry,
    QueueStatus,
    SessionStatus,
)
from arena.models.ledger import Currency, LedgerEntry, LedgerEntryType, Wallet

__all__ = [
    "Base",
    "Currency",
    "GameSession",
    "GameSessionPlayer",
    "LedgerEntry",
    "LedgerEntryType",
    "MatchResultReport",
    "MatchStatus",
    "MatchmakingQueueEntry",
    "PlayerSkill",
    "QueueStatus",
    "ReportStatus",
    "SessionStatus",
    "Tournament",
    "TournamentFormat",
    "TournamentMatch",
    "TournamentParticipant",
    "TournamentStatus",
    "Wallet",
    "async_session_factory",
    "init_db",
    "level_for_rating",
    "utcnow",
]
