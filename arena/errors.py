"""Domain errors raised by arena services.

Each concrete error subclasses one kind (NotFound, Conflict, ...). Callers
branch on the kind; the web layer maps kinds to HTTP status codes.
"""
from __future__ import annotations


class ArenaError(Exception):
    """Base for all domain errors."""

    kind = "ArenaError"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFound(ArenaError):
    kind = "NotFound"
    default_message = "Not found"


class Conflict(ArenaError):
    kind = "Conflict"
    default_message = "Conflict"


class InvalidState(ArenaError):
    kind = "InvalidState"
    default_message = "Action not allowed in the current state"


class Forbidden(ArenaError):
    kind = "Forbidden"
    default_message = "Forbidden"


class BadRequest(ArenaError):
    kind = "BadRequest"
    default_message = "Bad request"


class InsufficientFunds(ArenaError):
    kind = "InsufficientFunds"
    default_message = "Insufficient funds"


class TransientConflict(ArenaError):
    kind = "TransientConflict"
    default_message = "Concurrent update conflict, try again"


class PersistenceError(ArenaError):
    """Unexpected persistence failure. Not a domain outcome."""

    kind = "InternalError"
    default_message = "Internal error"


# --- Not found ---


class TournamentNotFound(NotFound):
    default_message = "Tournament not found"


class MatchNotFound(NotFound):
    default_message = "Match not found"


class QueueEntryNotFound(NotFound):
    default_message = "Queue entry not found"


class GameSessionNotFound(NotFound):
    default_message = "Game session not found"


class SkillNotFound(NotFound):
    default_message = "No skill record for this game"


class NotRegistered(NotFound):
    default_message = "You are not registered for this tournament"


class NotQueued(NotFound):
    default_message = "No active matchmaking queue entry"


# --- Conflict ---


class AlreadyRegistered(Conflict):
    default_message = "You are already registered for this tournament"


class TournamentFull(Conflict):
    default_message = "Tournament has reached its maximum number of participants"


class MatchesAlreadyExist(Conflict):
    default_message = "Matches have already been generated for this tournament"


class AlreadyQueued(Conflict):
    default_message = "You are already in the matchmaking queue for this game"


class DuplicateReport(Conflict):
    default_message = "You have already reported a result for this match"


# --- Invalid state ---


class InvalidTransition(InvalidState):
    default_message = "Tournament status transition not allowed"


class RegistrationClosed(InvalidState):
    default_message = "Registration is not open for this tournament"


class WithdrawalClosed(InvalidState):
    default_message = "You cannot withdraw after the tournament has started"


class MatchAlreadyCompleted(InvalidState):
    default_message = "Match is already completed"


class PlayersNotAssigned(InvalidState):
    default_message = "Both players have not been assigned to this match yet"


class MatchUnderDispute(InvalidState):
    default_message = "Match result is disputed and awaits organizer resolution"


class NoDisputeToResolve(InvalidState):
    default_message = "There is no dispute to resolve for this match"


class QueueEntryAlreadyMatched(InvalidState):
    default_message = "Queue entry has already been matched"


class SessionAlreadyCompleted(InvalidState):
    default_message = "Game session is already completed"


# --- Forbidden ---


class NotAParticipant(Forbidden):
    default_message = "You are not a player in this match"


class NotEntryOwner(Forbidden):
    default_message = "You are not allowed to view this queue entry"


# --- Bad request ---


class InsufficientParticipants(BadRequest):
    default_message = "At least 2 participants are required to generate matches"


class DrawNotAllowed(BadRequest):
    default_message = "draw not allowed, a winner must be specified"


class InvalidScore(BadRequest):
    default_message = "Scores must be non-negative integers"
