"""Match progression: result reports, disputes, admin results, advancement and settlement.

Matches move SCHEDULED -> COMPLETED exactly once. Every completion path runs
complete_match() inside the transaction that loaded the match row, so the
winner advancement, rating update and final settlement commit together with
the match's own transition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

import config
from arena.errors import (
    DrawNotAllowed,
    DuplicateReport,
    InvalidScore,
    InvalidState,
    MatchAlreadyCompleted,
    MatchNotFound,
    MatchUnderDispute,
    NoDisputeToResolve,
    NotAParticipant,
    PlayersNotAssigned,
    TournamentNotFound,
)
from arena.models import (
    Currency,
    LedgerEntryType,
    MatchResultReport,
    MatchStatus,
    ReportStatus,
    Tournament,
    TournamentMatch,
    TournamentParticipant,
    TournamentStatus,
    utcnow,
)
from arena.services import ledger
from arena.services.notifications import (
    MATCH_COMPLETED,
    MATCH_DISPUTED,
    PLAYER_LEVEL_CHANGED,
    TOURNAMENT_COMPLETED,
    DomainEvent,
    publish,
)
from arena.services.pagination import Page, paginate
from arena.services.rating import RatingDelta, rate_pair
from arena.services.retry import run_in_transaction

logger = logging.getLogger("arena.matches")


@dataclass
class ReportOutcome:
    """Result of one report submission. consensus is PENDING, APPROVED or DISPUTED."""

    report: MatchResultReport
    match: TournamentMatch
    consensus: ReportStatus


@dataclass
class MatchDetail:
    match: TournamentMatch
    reports: List[MatchResultReport] = field(default_factory=list)


# --- Guards ---


def _validate_scores(player1_score: int, player2_score: int) -> None:
    for s in (player1_score, player2_score):
        if isinstance(s, bool) or not isinstance(s, int) or s < 0:
            raise InvalidScore()
    if player1_score == player2_score:
        raise DrawNotAllowed()


def _ensure_playable(match: TournamentMatch) -> None:
    if match.status == MatchStatus.COMPLETED:
        raise MatchAlreadyCompleted()
    if not match.has_both_players:
        raise PlayersNotAssigned()


async def _load_match_for_update(session: AsyncSession, match_id: int) -> TournamentMatch:
    result = await session.execute(
        select(TournamentMatch).where(TournamentMatch.id == match_id).with_for_update()
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise MatchNotFound()
    return match


async def _load_tournament_in_play(session: AsyncSession, match: TournamentMatch) -> Tournament:
    tournament = await session.get(Tournament, match.tournament_id)
    if tournament is None:
        raise TournamentNotFound()
    if tournament.status != TournamentStatus.IN_PROGRESS:
        raise InvalidState(f"Tournament is {tournament.status.value}, results can only be recorded while IN_PROGRESS")
    return tournament


async def _match_reports(session: AsyncSession, match_id: int) -> List[MatchResultReport]:
    result = await session.execute(
        select(MatchResultReport)
        .where(MatchResultReport.match_id == match_id)
        .order_by(MatchResultReport.id)
    )
    return list(result.scalars().all())


async def _set_report_status(
    session: AsyncSession,
    match_id: int,
    status: ReportStatus,
    from_statuses: Sequence[ReportStatus],
) -> None:
    """Bulk status change for this match's reports currently in from_statuses."""
    await session.execute(
        update(MatchResultReport)
        .where(
            MatchResultReport.match_id == match_id,
            MatchResultReport.status.in_(list(from_statuses)),
        )
        .values(status=status)
    )


# --- Advancement and settlement ---


def _is_orphan_bye(match: TournamentMatch) -> bool:
    """One player present and the empty slot has no feeder that could ever fill it."""
    if match.status == MatchStatus.COMPLETED:
        return False
    if match.player1_id is not None and match.player2_id is None:
        return match.previous_match2_id is None
    if match.player2_id is not None and match.player1_id is None:
        return match.previous_match1_id is None
    return False


def complete_as_bye(match: TournamentMatch) -> None:
    """Complete a single-player match with the present player as winner."""
    match.winner_id = match.player1_id if match.player1_id is not None else match.player2_id
    match.status = MatchStatus.COMPLETED
    match.completed_at = utcnow()
    match.updated_at = match.completed_at


async def advance_winner(session: AsyncSession, match: TournamentMatch) -> List[TournamentMatch]:
    """Write the winner into its next-match slot, following any bye chain toward the final.

    Returns the matches that were completed as byes along the way.
    """
    byes: List[TournamentMatch] = []
    current = match
    while current.next_match_id is not None and current.winner_id is not None:
        nxt = await session.get(TournamentMatch, current.next_match_id)
        if nxt is None:
            raise MatchNotFound(f"Next match {current.next_match_id} is missing")
        if current.next_match_slot == 1:
            nxt.player1_id = current.winner_id
        else:
            nxt.player2_id = current.winner_id
        nxt.updated_at = utcnow()
        if not _is_orphan_bye(nxt):
            break
        complete_as_bye(nxt)
        byes.append(nxt)
        current = nxt
    await session.flush()
    return byes


async def _settle_tournament(
    session: AsyncSession,
    tournament: Tournament,
    final: TournamentMatch,
    events: List[DomainEvent],
) -> None:
    """Final completed: close the tournament, rank the finalists, pay the prize."""
    winner_id = final.winner_id
    runner_up_id = final.loser_id()
    now = utcnow()
    tournament.status = TournamentStatus.COMPLETED
    tournament.end_date = now
    for user_id, rank in ((winner_id, 1), (runner_up_id, 2)):
        await session.execute(
            update(TournamentParticipant)
            .where(
                TournamentParticipant.tournament_id == tournament.id,
                TournamentParticipant.user_id == user_id,
            )
            .values(rank=rank)
        )
    if tournament.prize_pool > 0:
        await ledger.credit(
            session,
            winner_id,
            tournament.prize_pool,
            Currency.DIAMOND,
            LedgerEntryType.PRIZE,
            tournament_id=tournament.id,
        )
    await session.flush()
    logger.info("Tournament %s completed, winner %s, prize %s", tournament.id, winner_id, tournament.prize_pool)
    events.append(
        DomainEvent(
            TOURNAMENT_COMPLETED,
            {
                "tournament_id": tournament.id,
                "winner_id": winner_id,
                "runner_up_id": runner_up_id,
                "prize_pool": tournament.prize_pool,
            },
        )
    )


def level_events(game_id: int, deltas: dict[int, RatingDelta]) -> List[DomainEvent]:
    return [
        DomainEvent(
            PLAYER_LEVEL_CHANGED,
            {
                "user_id": user_id,
                "game_id": game_id,
                "level_before": d.level_before,
                "level_after": d.level_after,
                "rating": d.rating_after,
            },
        )
        for user_id, d in deltas.items()
        if d.level_changed
    ]


async def complete_match(
    session: AsyncSession,
    match: TournamentMatch,
    tournament: Tournament,
    player1_score: int,
    player2_score: int,
    events: List[DomainEvent],
    notes: Optional[str] = None,
) -> TournamentMatch:
    """SCHEDULED -> COMPLETED with the higher score winning, then advance and settle."""
    _ensure_playable(match)
    _validate_scores(player1_score, player2_score)
    now = utcnow()
    match.player1_score = player1_score
    match.player2_score = player2_score
    match.winner_id = match.player1_id if player1_score > player2_score else match.player2_id
    match.status = MatchStatus.COMPLETED
    match.completed_at = now
    match.updated_at = now
    if notes is not None:
        match.admin_notes = notes
    await session.flush()

    await advance_winner(session, match)

    if config.RATE_TOURNAMENT_MATCHES:
        deltas = await rate_pair(
            session, tournament.game_id, match.player1_id, match.player2_id, match.winner_id
        )
        events.extend(level_events(tournament.game_id, deltas))

    logger.info(
        "Match %s (tournament %s, round %s #%s) completed, winner %s",
        match.id, tournament.id, match.round, match.match_number, match.winner_id,
    )
    events.append(
        DomainEvent(
            MATCH_COMPLETED,
            {
                "match_id": match.id,
                "tournament_id": tournament.id,
                "round": match.round,
                "match_number": match.match_number,
                "winner_id": match.winner_id,
                "player1_score": player1_score,
                "player2_score": player2_score,
                "next_match_id": match.next_match_id,
            },
        )
    )
    if match.is_final:
        await _settle_tournament(session, tournament, match, events)
    return match


# --- Operations ---


async def report_match_result(
    match_id: int,
    reporter_id: int,
    score: int,
    opponent_score: int,
    evidence: Optional[str] = None,
) -> ReportOutcome:
    """A player reports (own score, opponent score). Two matching reports complete the match."""
    events: List[DomainEvent] = []

    async def work(session: AsyncSession) -> ReportOutcome:
        events.clear()
        match = await _load_match_for_update(session, match_id)
        _ensure_playable(match)
        tournament = await _load_tournament_in_play(session, match)
        slot = match.slot_of(reporter_id)
        if slot is None:
            raise NotAParticipant()
        if slot == 1:
            player1_score, player2_score = score, opponent_score
        else:
            player1_score, player2_score = opponent_score, score
        _validate_scores(player1_score, player2_score)

        reports = await _match_reports(session, match.id)
        if any(r.status == ReportStatus.DISPUTED for r in reports):
            raise MatchUnderDispute()
        if any(r.reporter_id == reporter_id and r.status == ReportStatus.PENDING for r in reports):
            raise DuplicateReport()

        report = MatchResultReport(
            match_id=match.id,
            reporter_id=reporter_id,
            player1_score=player1_score,
            player2_score=player2_score,
            evidence=evidence,
            status=ReportStatus.PENDING,
        )
        session.add(report)
        # Touch the match so its version bumps: concurrent reports on one match serialize here
        match.updated_at = utcnow()
        await session.flush()

        opponent_id = match.player2_id if slot == 1 else match.player1_id
        other = next(
            (r for r in reports if r.reporter_id == opponent_id and r.status == ReportStatus.PENDING),
            None,
        )
        if other is None:
            return ReportOutcome(report, match, ReportStatus.PENDING)

        if (other.player1_score, other.player2_score) == (player1_score, player2_score):
            await _set_report_status(session, match.id, ReportStatus.APPROVED, [ReportStatus.PENDING])
            await complete_match(session, match, tournament, player1_score, player2_score, events)
            consensus = ReportStatus.APPROVED
        else:
            await _set_report_status(session, match.id, ReportStatus.DISPUTED, [ReportStatus.PENDING])
            logger.info("Match %s disputed: %s vs %s", match.id, (other.player1_score, other.player2_score), (player1_score, player2_score))
            events.append(
                DomainEvent(
                    MATCH_DISPUTED,
                    {
                        "match_id": match.id,
                        "tournament_id": tournament.id,
                        "organizer_id": tournament.organizer_id,
                    },
                )
            )
            consensus = ReportStatus.DISPUTED
        report.status = consensus
        other.status = consensus
        return ReportOutcome(report, match, consensus)

    outcome = await run_in_transaction(work)
    await publish(events)
    return outcome


async def resolve_dispute(
    match_id: int,
    player1_score: int,
    player2_score: int,
    notes: Optional[str] = None,
) -> TournamentMatch:
    """Organizer/admin settles a disputed match. All its reports become RESOLVED."""
    events: List[DomainEvent] = []

    async def work(session: AsyncSession) -> TournamentMatch:
        events.clear()
        match = await _load_match_for_update(session, match_id)
        _ensure_playable(match)
        tournament = await _load_tournament_in_play(session, match)
        reports = await _match_reports(session, match.id)
        if not any(r.status == ReportStatus.DISPUTED for r in reports):
            raise NoDisputeToResolve()
        _validate_scores(player1_score, player2_score)
        await complete_match(session, match, tournament, player1_score, player2_score, events, notes=notes)
        await _set_report_status(
            session,
            match.id,
            ReportStatus.RESOLVED,
            [ReportStatus.PENDING, ReportStatus.DISPUTED, ReportStatus.APPROVED],
        )
        return match

    match = await run_in_transaction(work)
    await publish(events)
    return match


async def update_match_result_admin(
    match_id: int,
    player1_score: int,
    player2_score: int,
    notes: Optional[str] = None,
) -> TournamentMatch:
    """Organizer/admin enters the result directly. Outstanding reports become RESOLVED."""
    events: List[DomainEvent] = []

    async def work(session: AsyncSession) -> TournamentMatch:
        events.clear()
        match = await _load_match_for_update(session, match_id)
        _ensure_playable(match)
        tournament = await _load_tournament_in_play(session, match)
        await complete_match(session, match, tournament, player1_score, player2_score, events, notes=notes)
        await _set_report_status(
            session,
            match.id,
            ReportStatus.RESOLVED,
            [ReportStatus.PENDING, ReportStatus.DISPUTED],
        )
        return match

    match = await run_in_transaction(work)
    await publish(events)
    return match


# --- Reads ---


async def get_match(match_id: int) -> MatchDetail:
    async def work(session: AsyncSession) -> MatchDetail:
        match = await session.get(TournamentMatch, match_id)
        if match is None:
            raise MatchNotFound()
        return MatchDetail(match, await _match_reports(session, match.id))

    return await run_in_transaction(work)


async def list_tournament_matches(
    tournament_id: int,
    round: Optional[int] = None,
    status: Optional[MatchStatus] = None,
) -> List[TournamentMatch]:
    """Matches of a tournament ordered by round, then match number."""

    async def work(session: AsyncSession) -> List[TournamentMatch]:
        if await session.get(Tournament, tournament_id) is None:
            raise TournamentNotFound()
        stmt = select(TournamentMatch).where(TournamentMatch.tournament_id == tournament_id)
        if round is not None:
            stmt = stmt.where(TournamentMatch.round == round)
        if status is not None:
            stmt = stmt.where(TournamentMatch.status == status)
        result = await session.execute(
            stmt.order_by(TournamentMatch.round, TournamentMatch.match_number)
        )
        return list(result.scalars().all())

    return await run_in_transaction(work)


async def list_user_matches(
    user_id: int,
    status: Optional[MatchStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Page:
    """Matches where the user occupies a slot, latest scheduled first."""

    async def work(session: AsyncSession) -> Page:
        stmt = select(TournamentMatch).where(
            or_(TournamentMatch.player1_id == user_id, TournamentMatch.player2_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(TournamentMatch.status == status)
        stmt = stmt.order_by(TournamentMatch.scheduled_at.desc(), TournamentMatch.id.desc())
        return await paginate(session, stmt, page, limit)

    return await run_in_transaction(work)
