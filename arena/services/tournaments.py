"""Tournament lifecycle: creation, status transitions, registration, bracket trigger."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from arena.errors import (
    AlreadyRegistered,
    BadRequest,
    InsufficientParticipants,
    InvalidState,
    InvalidTransition,
    MatchesAlreadyExist,
    NotRegistered,
    RegistrationClosed,
    TournamentFull,
    TournamentNotFound,
    WithdrawalClosed,
)
from arena.models import (
    Currency,
    LedgerEntryType,
    Tournament,
    TournamentFormat,
    TournamentParticipant,
    TournamentStatus,
    utcnow,
)
from arena.models.tournament import can_transition
from arena.services import ledger
from arena.services.bracket_gen import BracketSummary, build_single_elim_bracket, has_matches
from arena.services.pagination import Page, paginate
from arena.services.retry import run_in_transaction

logger = logging.getLogger("arena.tournaments")

WITHDRAWABLE_STATUSES = frozenset({TournamentStatus.UPCOMING, TournamentStatus.REGISTRATION_OPEN})


@dataclass
class UserTournament:
    """A tournament seen from one participant: their rank and registration time."""

    tournament: Tournament
    rank: Optional[int]
    entry_fee_paid: int
    registered_at: datetime


async def _load(session: AsyncSession, tournament_id: int) -> Tournament:
    t = await session.get(Tournament, tournament_id)
    if t is None:
        raise TournamentNotFound()
    return t


def transition(tournament: Tournament, target: TournamentStatus) -> None:
    """Move a tournament to target, raising InvalidTransition if the lifecycle forbids it."""
    if not can_transition(tournament.status, target):
        raise InvalidTransition(
            f"Cannot move tournament from {tournament.status.value} to {target.value}"
        )
    logger.info("Tournament %s: %s -> %s", tournament.id, tournament.status.value, target.value)
    tournament.status = target
    if target in (TournamentStatus.COMPLETED, TournamentStatus.CANCELLED):
        tournament.end_date = utcnow()


def _touch(tournament: Tournament) -> None:
    # Forces an UPDATE with the version check on flush
    flag_modified(tournament, "status")


async def _participant_count(session: AsyncSession, tournament_id: int) -> int:
    result = await session.execute(
        select(func.count(TournamentParticipant.id)).where(
            TournamentParticipant.tournament_id == tournament_id
        )
    )
    return result.scalar_one()


async def _get_participant(
    session: AsyncSession, tournament_id: int, user_id: int
) -> Optional[TournamentParticipant]:
    result = await session.execute(
        select(TournamentParticipant).where(
            TournamentParticipant.tournament_id == tournament_id,
            TournamentParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def _validate_new_tournament(
    name: str,
    registration_start: datetime,
    registration_end: datetime,
    start_date: datetime,
    end_date: Optional[datetime],
    max_participants: int,
    entry_fee: int,
    prize_pool: int,
    fmt: TournamentFormat,
) -> None:
    if not name or not name.strip():
        raise BadRequest("Tournament name is required")
    if fmt != TournamentFormat.SINGLE_ELIMINATION:
        raise BadRequest("Only single elimination tournaments are supported")
    if not registration_start < registration_end:
        raise BadRequest("Registration start must be before registration end")
    if not registration_end <= start_date:
        raise BadRequest("Registration must end before the tournament starts")
    if end_date is not None and end_date < start_date:
        raise BadRequest("End date must not be before the start date")
    if max_participants < 2:
        raise BadRequest("A tournament needs room for at least 2 participants")
    if entry_fee < 0 or prize_pool < 0:
        raise BadRequest("Entry fee and prize pool must not be negative")


async def create_tournament(
    organizer_id: int,
    game_id: int,
    name: str,
    registration_start: datetime,
    registration_end: datetime,
    start_date: datetime,
    max_participants: int,
    entry_fee: int = 0,
    prize_pool: int = 0,
    description: Optional[str] = None,
    end_date: Optional[datetime] = None,
    fmt: TournamentFormat = TournamentFormat.SINGLE_ELIMINATION,
) -> Tournament:
    _validate_new_tournament(
        name, registration_start, registration_end, start_date, end_date,
        max_participants, entry_fee, prize_pool, fmt,
    )

    async def work(session: AsyncSession) -> Tournament:
        t = Tournament(
            organizer_id=organizer_id,
            game_id=game_id,
            name=name.strip(),
            description=description,
            format=fmt,
            status=TournamentStatus.UPCOMING,
            registration_start=registration_start,
            registration_end=registration_end,
            start_date=start_date,
            end_date=end_date,
            max_participants=max_participants,
            entry_fee=entry_fee,
            prize_pool=prize_pool,
        )
        session.add(t)
        await session.flush()
        logger.info("Tournament %s created by %s for game %s", t.id, organizer_id, game_id)
        return t

    return await run_in_transaction(work)


async def _set_status(tournament_id: int, target: TournamentStatus) -> Tournament:
    async def work(session: AsyncSession) -> Tournament:
        t = await _load(session, tournament_id)
        transition(t, target)
        await session.flush()
        return t

    return await run_in_transaction(work)


async def open_registration(tournament_id: int) -> Tournament:
    return await _set_status(tournament_id, TournamentStatus.REGISTRATION_OPEN)


async def close_registration(tournament_id: int) -> Tournament:
    return await _set_status(tournament_id, TournamentStatus.REGISTRATION_CLOSED)


async def cancel_tournament(tournament_id: int) -> Tournament:
    """Cancel a non-terminal tournament and refund every paid entry fee."""

    async def work(session: AsyncSession) -> Tournament:
        t = await _load(session, tournament_id)
        transition(t, TournamentStatus.CANCELLED)
        result = await session.execute(
            select(TournamentParticipant).where(
                TournamentParticipant.tournament_id == t.id,
                TournamentParticipant.entry_fee_paid > 0,
            )
        )
        refunded = 0
        for p in result.scalars().all():
            await ledger.credit(
                session, p.user_id, p.entry_fee_paid, Currency.COIN,
                LedgerEntryType.REFUND, tournament_id=t.id,
            )
            refunded += 1
        await session.flush()
        logger.info("Tournament %s cancelled, %d entry fees refunded", t.id, refunded)
        return t

    return await run_in_transaction(work)


async def register_participant(tournament_id: int, user_id: int) -> TournamentParticipant:
    """Register user_id, debiting the entry fee in the same transaction."""

    async def work(session: AsyncSession) -> TournamentParticipant:
        t = await _load(session, tournament_id)
        if t.status != TournamentStatus.REGISTRATION_OPEN:
            raise RegistrationClosed()
        if await _get_participant(session, t.id, user_id) is not None:
            raise AlreadyRegistered()
        if await _participant_count(session, t.id) >= t.max_participants:
            raise TournamentFull()
        _touch(t)
        await session.flush()
        if t.entry_fee > 0:
            await ledger.debit(
                session, user_id, t.entry_fee, Currency.COIN,
                LedgerEntryType.ENTRY_FEE, tournament_id=t.id,
            )
        participant = TournamentParticipant(
            tournament_id=t.id,
            user_id=user_id,
            entry_fee_paid=t.entry_fee,
        )
        session.add(participant)
        await session.flush()
        logger.info("User %s registered for tournament %s (fee %s)", user_id, t.id, t.entry_fee)
        return participant

    return await run_in_transaction(work)


async def withdraw_participant(tournament_id: int, user_id: int) -> int:
    """Remove user_id from the tournament and refund what they paid. Returns the refund."""

    async def work(session: AsyncSession) -> int:
        t = await _load(session, tournament_id)
        if t.status not in WITHDRAWABLE_STATUSES:
            raise WithdrawalClosed()
        participant = await _get_participant(session, t.id, user_id)
        if participant is None:
            raise NotRegistered()
        refund = participant.entry_fee_paid
        await session.delete(participant)
        if refund > 0:
            await ledger.credit(
                session, user_id, refund, Currency.COIN,
                LedgerEntryType.REFUND, tournament_id=t.id,
            )
        await session.flush()
        logger.info("User %s withdrew from tournament %s (refund %s)", user_id, t.id, refund)
        return refund

    return await run_in_transaction(work)


async def generate_bracket(tournament_id: int, rng: Optional[random.Random] = None) -> BracketSummary:
    """Seed the bracket for a closed tournament and start it."""

    async def work(session: AsyncSession) -> BracketSummary:
        t = await _load(session, tournament_id)
        if await has_matches(session, t.id):
            raise MatchesAlreadyExist()
        if t.status != TournamentStatus.REGISTRATION_CLOSED:
            raise InvalidState("Registration must be closed before generating the bracket")
        result = await session.execute(
            select(TournamentParticipant.user_id)
            .where(TournamentParticipant.tournament_id == t.id)
            .order_by(TournamentParticipant.id)
        )
        user_ids = list(result.scalars().all())
        if len(user_ids) < 2:
            raise InsufficientParticipants()
        summary = await build_single_elim_bracket(session, t, user_ids, rng=rng)
        transition(t, TournamentStatus.IN_PROGRESS)
        await session.flush()
        return summary

    return await run_in_transaction(work)


# --- Reads ---


async def get_tournament(tournament_id: int) -> Tournament:
    async def work(session: AsyncSession) -> Tournament:
        return await _load(session, tournament_id)

    return await run_in_transaction(work)


async def count_participants(tournament_id: int) -> int:
    async def work(session: AsyncSession) -> int:
        await _load(session, tournament_id)
        return await _participant_count(session, tournament_id)

    return await run_in_transaction(work)


async def list_tournaments(
    game_id: Optional[int] = None,
    status: Optional[TournamentStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Page:
    async def work(session: AsyncSession) -> Page:
        stmt = select(Tournament)
        if game_id is not None:
            stmt = stmt.where(Tournament.game_id == game_id)
        if status is not None:
            stmt = stmt.where(Tournament.status == status)
        stmt = stmt.order_by(Tournament.start_date.desc(), Tournament.id.desc())
        return await paginate(session, stmt, page, limit)

    return await run_in_transaction(work)


async def list_participants(tournament_id: int) -> List[TournamentParticipant]:
    async def work(session: AsyncSession) -> List[TournamentParticipant]:
        await _load(session, tournament_id)
        result = await session.execute(
            select(TournamentParticipant)
            .where(TournamentParticipant.tournament_id == tournament_id)
            .order_by(TournamentParticipant.created_at, TournamentParticipant.id)
        )
        return list(result.scalars().all())

    return await run_in_transaction(work)


async def get_standings(tournament_id: int, page: int = 1, limit: int = 10) -> Page:
    """Ranked participants, best rank first. Empty until the tournament completes."""

    async def work(session: AsyncSession) -> Page:
        await _load(session, tournament_id)
        stmt = (
            select(TournamentParticipant)
            .where(
                TournamentParticipant.tournament_id == tournament_id,
                TournamentParticipant.rank.is_not(None),
            )
            .order_by(TournamentParticipant.rank, TournamentParticipant.user_id)
        )
        return await paginate(session, stmt, page, limit)

    return await run_in_transaction(work)


async def list_user_tournaments(
    user_id: int,
    status: Optional[TournamentStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Page:
    """Tournaments the user registered for, most recent registration first.

    Items are UserTournament rows carrying the user's rank and registration time.
    """

    async def work(session: AsyncSession) -> Page:
        stmt = (
            select(TournamentParticipant)
            .join(Tournament, Tournament.id == TournamentParticipant.tournament_id)
            .where(TournamentParticipant.user_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(Tournament.status == status)
        stmt = stmt.order_by(TournamentParticipant.created_at.desc(), TournamentParticipant.id.desc())
        result = await paginate(session, stmt, page, limit)

        ids = [p.tournament_id for p in result.items]
        loaded = await session.execute(select(Tournament).where(Tournament.id.in_(ids)))
        by_id = {t.id: t for t in loaded.scalars().all()}
        result.items = [
            UserTournament(
                tournament=by_id[p.tournament_id],
                rank=p.rank,
                entry_fee_paid=p.entry_fee_paid,
                registered_at=p.created_at,
            )
            for p in result.items
        ]
        return result

    return await run_in_transaction(work)
