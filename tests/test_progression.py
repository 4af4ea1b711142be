"""Tests for match reporting, disputes, advancement and settlement."""
import asyncio

import pytest
from sqlalchemy import select

from arena.errors import (
    BadRequest,
    DrawNotAllowed,
    DuplicateReport,
    InvalidScore,
    MatchAlreadyCompleted,
    MatchNotFound,
    MatchUnderDispute,
    NoDisputeToResolve,
    NotAParticipant,
    PlayersNotAssigned,
)
from arena.models import (
    Currency,
    LedgerEntryType,
    MatchStatus,
    PlayerSkill,
    ReportStatus,
    Tournament,
    TournamentMatch,
    TournamentStatus,
)
from arena.services import ledger, progression, tournaments
from arena.services.matchmaking import get_player_skill
from arena.services.notifications import (
    MATCH_COMPLETED,
    MATCH_DISPUTED,
    PLAYER_LEVEL_CHANGED,
    TOURNAMENT_COMPLETED,
)
from arena.services.retry import run_in_transaction


def _by_position(matches):
    return {(m.round, m.match_number): m for m in matches}


@pytest.mark.asyncio
async def test_first_report_is_pending(started_tournament):
    _, [final] = await started_tournament([1, 2])
    outcome = await progression.report_match_result(final.id, final.player1_id, 3, 1)
    assert outcome.consensus == ReportStatus.PENDING
    assert outcome.report.player1_score == 3
    assert outcome.report.player2_score == 1
    assert outcome.match.status == MatchStatus.SCHEDULED


@pytest.mark.asyncio
async def test_matching_reports_complete_match(started_tournament, sink):
    t, [final] = await started_tournament([1, 2])
    a, b = final.player1_id, final.player2_id
    await progression.report_match_result(final.id, a, 3, 1)
    # b reports from their own side
    outcome = await progression.report_match_result(final.id, b, 1, 3)

    assert outcome.consensus == ReportStatus.APPROVED
    assert outcome.match.status == MatchStatus.COMPLETED
    assert outcome.match.winner_id == a
    assert (outcome.match.player1_score, outcome.match.player2_score) == (3, 1)

    detail = await progression.get_match(final.id)
    assert [r.status for r in detail.reports] == [ReportStatus.APPROVED, ReportStatus.APPROVED]

    t = await tournaments.get_tournament(t.id)
    assert t.status == TournamentStatus.COMPLETED
    assert t.end_date is not None
    standings = await tournaments.get_standings(t.id)
    assert [(p.user_id, p.rank) for p in standings.items] == [(a, 1), (b, 2)]

    assert len(sink.named(MATCH_COMPLETED)) == 1
    [done] = sink.named(TOURNAMENT_COMPLETED)
    assert done.payload["winner_id"] == a
    assert done.payload["runner_up_id"] == b


@pytest.mark.asyncio
async def test_tournament_match_rates_both_players(started_tournament, sink):
    _, [final] = await started_tournament([1, 2])
    a, b = final.player1_id, final.player2_id
    await progression.update_match_result_admin(final.id, 0, 2)

    winner = await get_player_skill(b, 7)
    loser = await get_player_skill(a, 7)
    assert (winner.rating, winner.wins, winner.games_played) == (1016, 1, 1)
    assert (loser.rating, loser.losses, loser.games_played) == (984, 1, 1)
    # 1000 -> 1016 stays on level 11, 1000 -> 984 drops to 10
    [event] = sink.named(PLAYER_LEVEL_CHANGED)
    assert event.payload["user_id"] == a


@pytest.mark.asyncio
async def test_conflicting_reports_dispute(started_tournament, sink):
    _, [final] = await started_tournament([1, 2])
    a, b = final.player1_id, final.player2_id
    await progression.report_match_result(final.id, a, 3, 1)
    outcome = await progression.report_match_result(final.id, b, 3, 1)

    assert outcome.consensus == ReportStatus.DISPUTED
    assert outcome.match.status == MatchStatus.SCHEDULED
    assert outcome.match.winner_id is None
    [event] = sink.named(MATCH_DISPUTED)
    assert event.payload["match_id"] == final.id
    assert event.payload["organizer_id"] == 1

    with pytest.raises(MatchUnderDispute):
        await progression.report_match_result(final.id, a, 3, 0)


@pytest.mark.asyncio
async def test_resolve_dispute(started_tournament):
    t, [final] = await started_tournament([1, 2])
    a, b = final.player1_id, final.player2_id
    await progression.report_match_result(final.id, a, 3, 1)
    await progression.report_match_result(final.id, b, 3, 1)

    match = await progression.resolve_dispute(final.id, 1, 3, notes="replay reviewed")
    assert match.status == MatchStatus.COMPLETED
    assert match.winner_id == b
    assert match.admin_notes == "replay reviewed"

    detail = await progression.get_match(final.id)
    assert {r.status for r in detail.reports} == {ReportStatus.RESOLVED}
    assert (await tournaments.get_tournament(t.id)).status == TournamentStatus.COMPLETED


@pytest.mark.asyncio
async def test_resolve_without_dispute(started_tournament):
    _, [final] = await started_tournament([1, 2])
    await progression.report_match_result(final.id, final.player1_id, 3, 1)
    with pytest.raises(NoDisputeToResolve):
        await progression.resolve_dispute(final.id, 3, 1)


@pytest.mark.asyncio
async def test_resolve_rejects_draw(started_tournament):
    _, [final] = await started_tournament([1, 2])
    await progression.report_match_result(final.id, final.player1_id, 3, 1)
    await progression.report_match_result(final.id, final.player2_id, 3, 1)
    with pytest.raises(DrawNotAllowed):
        await progression.resolve_dispute(final.id, 2, 2)


@pytest.mark.asyncio
async def test_report_validation(started_tournament):
    _, [final] = await started_tournament([1, 2])
    a = final.player1_id
    with pytest.raises(DrawNotAllowed) as exc:
        await progression.report_match_result(final.id, a, 2, 2)
    assert exc.value.message == "draw not allowed, a winner must be specified"
    with pytest.raises(InvalidScore):
        await progression.report_match_result(final.id, a, -1, 2)
    with pytest.raises(NotAParticipant):
        await progression.report_match_result(final.id, 999, 3, 1)
    with pytest.raises(MatchNotFound):
        await progression.report_match_result(12345, a, 3, 1)


@pytest.mark.asyncio
async def test_duplicate_report(started_tournament):
    _, [final] = await started_tournament([1, 2])
    await progression.report_match_result(final.id, final.player1_id, 3, 1)
    with pytest.raises(DuplicateReport):
        await progression.report_match_result(final.id, final.player1_id, 3, 1)


@pytest.mark.asyncio
async def test_report_before_opponent_known(started_tournament):
    _, matches = await started_tournament([11, 12, 13, 14, 15])
    waiting = _by_position(matches)[(2, 1)]
    assert waiting.player1_id is None
    with pytest.raises(PlayersNotAssigned):
        await progression.report_match_result(waiting.id, waiting.player2_id, 3, 1)


@pytest.mark.asyncio
async def test_winner_advances_into_next_slot(started_tournament):
    _, matches = await started_tournament([1, 2, 3, 4])
    pos = _by_position(matches)
    semi1, semi2 = pos[(2, 1)], pos[(2, 2)]

    await progression.update_match_result_admin(semi1.id, 2, 0)
    await progression.update_match_result_admin(semi2.id, 1, 2)

    final = (await progression.get_match(pos[(1, 1)].id)).match
    assert final.player1_id == semi1.player1_id
    assert final.player2_id == semi2.player2_id
    assert final.has_both_players


@pytest.mark.asyncio
async def test_admin_result_resolves_outstanding_reports(started_tournament):
    _, [final] = await started_tournament([1, 2])
    await progression.report_match_result(final.id, final.player1_id, 3, 1)
    await progression.update_match_result_admin(final.id, 3, 1)
    detail = await progression.get_match(final.id)
    assert detail.match.winner_id == final.player1_id
    assert [r.status for r in detail.reports] == [ReportStatus.RESOLVED]


@pytest.mark.asyncio
async def test_completed_match_cannot_be_completed_again(started_tournament):
    _, matches = await started_tournament([1, 2, 3, 4])
    semi = _by_position(matches)[(2, 1)]
    await progression.update_match_result_admin(semi.id, 2, 0)
    with pytest.raises(MatchAlreadyCompleted):
        await progression.update_match_result_admin(semi.id, 0, 2)
    with pytest.raises(MatchAlreadyCompleted):
        await progression.report_match_result(semi.id, semi.player1_id, 2, 0)


@pytest.mark.asyncio
async def test_prize_paid_once(started_tournament):
    t, [final] = await started_tournament([1, 2], prize_pool=500)
    await progression.update_match_result_admin(final.id, 3, 0)
    winner = final.player1_id
    assert await ledger.get_balance(winner, Currency.DIAMOND) == 500

    with pytest.raises(MatchAlreadyCompleted):
        await progression.update_match_result_admin(final.id, 3, 0)
    assert await ledger.get_balance(winner, Currency.DIAMOND) == 500
    prizes = [e for e in await ledger.list_entries(winner, t.id) if e.entry_type == LedgerEntryType.PRIZE]
    assert len(prizes) == 1
    assert await ledger.get_balance(final.player2_id, Currency.DIAMOND) == 0


@pytest.mark.asyncio
async def test_rolled_back_completion_leaves_no_trace(started_tournament):
    t, [final] = await started_tournament([1, 2], prize_pool=300)

    async def work(session):
        match = await session.get(TournamentMatch, final.id)
        tournament = await session.get(Tournament, t.id)
        await progression.complete_match(session, match, tournament, 3, 0, [])
        raise BadRequest("abort")

    with pytest.raises(BadRequest):
        await run_in_transaction(work)

    assert await ledger.get_balance(final.player1_id, Currency.DIAMOND) == 0
    assert (await progression.get_match(final.id)).match.status == MatchStatus.SCHEDULED
    assert (await tournaments.get_tournament(t.id)).status == TournamentStatus.IN_PROGRESS

    async def skills(session):
        return (await session.execute(select(PlayerSkill))).scalars().all()

    assert await run_in_transaction(skills) == []


@pytest.mark.asyncio
async def test_concurrent_matching_reports_complete_once(started_tournament, sink):
    _, [final] = await started_tournament([1, 2])
    a, b = final.player1_id, final.player2_id
    results = await asyncio.gather(
        progression.report_match_result(final.id, a, 2, 1),
        progression.report_match_result(final.id, b, 1, 2),
    )
    assert sorted(r.consensus.value for r in results) == ["APPROVED", "PENDING"]
    detail = await progression.get_match(final.id)
    assert detail.match.status == MatchStatus.COMPLETED
    assert detail.match.winner_id == a
    assert len(detail.reports) == 2
    assert len(sink.named(MATCH_COMPLETED)) == 1


@pytest.mark.asyncio
async def test_list_user_matches(started_tournament):
    _, matches = await started_tournament([1, 2, 3, 4])
    page = await progression.list_user_matches(1)
    assert page.total == 1
    assert 1 in (page.items[0].player1_id, page.items[0].player2_id)

    filtered = await progression.list_tournament_matches(matches[0].tournament_id, round=2)
    assert [m.match_number for m in filtered] == [1, 2]
