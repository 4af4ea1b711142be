"""Skill-based matchmaking queue, leaderboards and ranked session results.

Pairing is a conditional UPDATE on the candidate's queue row (WAITING ->
MATCHED). Only the transaction whose UPDATE hits the row wins it; losers
exclude the candidate and search again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

import config
from arena.errors import (
    AlreadyQueued,
    GameSessionNotFound,
    NotAParticipant,
    NotEntryOwner,
    NotQueued,
    QueueEntryAlreadyMatched,
    QueueEntryNotFound,
    SessionAlreadyCompleted,
    SkillNotFound,
)
from arena.models import (
    GameSession,
    GameSessionPlayer,
    MatchmakingQueueEntry,
    PlayerSkill,
    QueueStatus,
    SessionStatus,
    utcnow,
)
from arena.services.notifications import QUEUE_MATCHED, DomainEvent, publish
from arena.services.pagination import Page, paginate
from arena.services.progression import level_events
from arena.services.rating import RatingDelta, get_or_create_skill, rate_pair
from arena.services.retry import run_in_transaction

logger = logging.getLogger("arena.matchmaking")


@dataclass
class JoinResult:
    entry: MatchmakingQueueEntry
    game_session: Optional[GameSession] = None

    @property
    def matched(self) -> bool:
        return self.game_session is not None


@dataclass
class QueueStatusView:
    entry: MatchmakingQueueEntry
    wait_seconds: Optional[int] = None
    game_session: Optional[GameSession] = None


@dataclass
class SessionResult:
    game_session: GameSession
    deltas: Dict[int, RatingDelta] = field(default_factory=dict)


async def _waiting_entry(
    session: AsyncSession, user_id: int, game_id: int
) -> Optional[MatchmakingQueueEntry]:
    result = await session.execute(
        select(MatchmakingQueueEntry).where(
            MatchmakingQueueEntry.user_id == user_id,
            MatchmakingQueueEntry.game_id == game_id,
            MatchmakingQueueEntry.status == QueueStatus.WAITING,
        )
    )
    return result.scalar_one_or_none()


async def _find_candidate(
    session: AsyncSession, entry: MatchmakingQueueEntry, excluded: Set[int]
) -> Optional[MatchmakingQueueEntry]:
    """Best waiting opponent within the rating window: highest rating, then longest wait."""
    window = config.MATCHMAKING_RATING_WINDOW
    stmt = select(MatchmakingQueueEntry).where(
        MatchmakingQueueEntry.game_id == entry.game_id,
        MatchmakingQueueEntry.status == QueueStatus.WAITING,
        MatchmakingQueueEntry.user_id != entry.user_id,
        MatchmakingQueueEntry.rating.between(entry.rating - window, entry.rating + window),
    )
    if excluded:
        stmt = stmt.where(MatchmakingQueueEntry.id.not_in(excluded))
    result = await session.execute(
        stmt.order_by(
            MatchmakingQueueEntry.rating.desc(),
            MatchmakingQueueEntry.joined_at,
            MatchmakingQueueEntry.id,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _claim(session: AsyncSession, candidate: MatchmakingQueueEntry) -> bool:
    now = utcnow()
    result = await session.execute(
        update(MatchmakingQueueEntry)
        .where(
            MatchmakingQueueEntry.id == candidate.id,
            MatchmakingQueueEntry.status == QueueStatus.WAITING,
        )
        .values(status=QueueStatus.MATCHED, matched_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


async def join_queue(user_id: int, game_id: int) -> JoinResult:
    """Queue user_id for a ranked game and pair them immediately if an opponent is waiting."""
    events: List[DomainEvent] = []

    async def work(session: AsyncSession) -> JoinResult:
        events.clear()
        if await _waiting_entry(session, user_id, game_id) is not None:
            raise AlreadyQueued()
        skill = await get_or_create_skill(session, user_id, game_id)
        entry = MatchmakingQueueEntry(
            user_id=user_id,
            game_id=game_id,
            rating=skill.rating,
            status=QueueStatus.WAITING,
            joined_at=utcnow(),
        )
        session.add(entry)
        await session.flush()

        excluded: Set[int] = set()
        for _ in range(config.MATCHMAKING_CLAIM_ATTEMPTS):
            candidate = await _find_candidate(session, entry, excluded)
            if candidate is None:
                break
            if not await _claim(session, candidate):
                logger.info("Queue entry %s was claimed concurrently, searching again", candidate.id)
                excluded.add(candidate.id)
                continue

            now = utcnow()
            game_session = GameSession(
                game_id=game_id,
                status=SessionStatus.ACTIVE,
                is_ranked=True,
                started_at=now,
                players=[
                    GameSessionPlayer(user_id=candidate.user_id, joined_at=now),
                    GameSessionPlayer(user_id=user_id, joined_at=now),
                ],
            )
            session.add(game_session)
            await session.flush()
            entry.status = QueueStatus.MATCHED
            entry.matched_at = now
            entry.game_session_id = game_session.id
            candidate.game_session_id = game_session.id
            await session.flush()

            logger.info(
                "Matched users %s (%s) and %s (%s) for game %s in session %s",
                candidate.user_id, candidate.rating, user_id, entry.rating, game_id, game_session.id,
            )
            for mine, theirs in ((entry, candidate), (candidate, entry)):
                events.append(
                    DomainEvent(
                        QUEUE_MATCHED,
                        {
                            "user_id": mine.user_id,
                            "entry_id": mine.id,
                            "game_id": game_id,
                            "game_session_id": game_session.id,
                            "opponent_id": theirs.user_id,
                        },
                    )
                )
            return JoinResult(entry, game_session)

        return JoinResult(entry)

    result = await run_in_transaction(work)
    await publish(events)
    return result


async def leave_queue(user_id: int, game_id: int) -> MatchmakingQueueEntry:
    """Cancel the user's WAITING entry for a game."""

    async def work(session: AsyncSession) -> MatchmakingQueueEntry:
        entry = await _waiting_entry(session, user_id, game_id)
        if entry is not None:
            result = await session.execute(
                update(MatchmakingQueueEntry)
                .where(
                    MatchmakingQueueEntry.id == entry.id,
                    MatchmakingQueueEntry.status == QueueStatus.WAITING,
                )
                .values(status=QueueStatus.CANCELLED)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 1:
                logger.info("User %s left the queue for game %s", user_id, game_id)
                return entry
            # Paired between our read and the update
            raise QueueEntryAlreadyMatched()

        latest = (
            await session.execute(
                select(MatchmakingQueueEntry)
                .where(
                    MatchmakingQueueEntry.user_id == user_id,
                    MatchmakingQueueEntry.game_id == game_id,
                )
                .order_by(MatchmakingQueueEntry.joined_at.desc(), MatchmakingQueueEntry.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if latest is not None and latest.status == QueueStatus.MATCHED:
            raise QueueEntryAlreadyMatched()
        raise NotQueued()

    return await run_in_transaction(work)


async def check_queue_status(entry_id: int, caller_id: int) -> QueueStatusView:
    async def work(session: AsyncSession) -> QueueStatusView:
        entry = await session.get(MatchmakingQueueEntry, entry_id)
        if entry is None:
            raise QueueEntryNotFound()
        if entry.user_id != caller_id:
            raise NotEntryOwner()
        view = QueueStatusView(entry)
        if entry.status == QueueStatus.WAITING:
            view.wait_seconds = max(0, int((utcnow() - entry.joined_at).total_seconds()))
        elif entry.status == QueueStatus.MATCHED and entry.game_session_id is not None:
            view.game_session = await session.get(GameSession, entry.game_session_id)
        return view

    return await run_in_transaction(work)


async def get_leaderboard(game_id: int, page: int = 1, limit: Optional[int] = None) -> Page:
    """Skills for a game, highest rating first."""

    async def work(session: AsyncSession) -> Page:
        stmt = (
            select(PlayerSkill)
            .where(PlayerSkill.game_id == game_id)
            .order_by(PlayerSkill.rating.desc(), PlayerSkill.user_id)
        )
        return await paginate(session, stmt, page, limit or config.LEADERBOARD_PAGE_SIZE)

    return await run_in_transaction(work)


async def get_player_skill(user_id: int, game_id: int) -> PlayerSkill:
    async def work(session: AsyncSession) -> PlayerSkill:
        result = await session.execute(
            select(PlayerSkill).where(PlayerSkill.user_id == user_id, PlayerSkill.game_id == game_id)
        )
        skill = result.scalar_one_or_none()
        if skill is None:
            raise SkillNotFound()
        return skill

    return await run_in_transaction(work)


async def list_player_skills(user_id: int) -> List[PlayerSkill]:
    async def work(session: AsyncSession) -> List[PlayerSkill]:
        result = await session.execute(
            select(PlayerSkill).where(PlayerSkill.user_id == user_id).order_by(PlayerSkill.game_id)
        )
        return list(result.scalars().all())

    return await run_in_transaction(work)


async def complete_game_session(session_id: int, winner_id: Optional[int] = None) -> SessionResult:
    """Record the result of a game session. winner_id None is a draw.

    Ranked head-to-head sessions rate both players against each other.
    """
    events: List[DomainEvent] = []

    async def work(session: AsyncSession) -> SessionResult:
        events.clear()
        result = await session.execute(
            select(GameSession).where(GameSession.id == session_id).with_for_update()
        )
        game_session = result.scalar_one_or_none()
        if game_session is None:
            raise GameSessionNotFound()
        if game_session.status != SessionStatus.ACTIVE:
            raise SessionAlreadyCompleted()
        players = game_session.player_ids
        if winner_id is not None and winner_id not in players:
            raise NotAParticipant("Winner is not a player in this session")

        game_session.status = SessionStatus.COMPLETED
        game_session.ended_at = utcnow()
        game_session.winner_id = winner_id
        await session.flush()

        deltas: Dict[int, RatingDelta] = {}
        if game_session.is_ranked and len(players) == 2:
            deltas = await rate_pair(session, game_session.game_id, players[0], players[1], winner_id)
            events.extend(level_events(game_session.game_id, deltas))
        logger.info("Game session %s completed, winner %s", game_session.id, winner_id)
        return SessionResult(game_session, deltas)

    outcome = await run_in_transaction(work)
    await publish(events)
    return outcome
