"""API routes for tournaments, brackets and match results."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_validator

from arena.models import MatchStatus, ReportStatus, TournamentFormat, TournamentStatus
from arena.services import progression, tournaments
from web.auth import Actor, ensure_manager, require_actor

router = APIRouter(prefix="/api", tags=["tournaments"])


def _to_naive_utc(v):
    """Stored datetimes are naive UTC; convert aware inputs."""
    if isinstance(v, datetime) and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


# --- Pydantic schemas ---


class TournamentCreate(BaseModel):
    game_id: int
    name: str
    description: Optional[str] = None
    format: TournamentFormat = TournamentFormat.SINGLE_ELIMINATION
    registration_start: datetime
    registration_end: datetime
    start_date: datetime
    end_date: Optional[datetime] = None
    max_participants: int
    entry_fee: int = 0  # COIN
    prize_pool: int = 0  # DIAMOND

    @field_validator("registration_start", "registration_end", "start_date", "end_date")
    @classmethod
    def naive_utc(cls, v):
        return _to_naive_utc(v)


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_id: int
    organizer_id: int
    name: str
    description: Optional[str]
    format: TournamentFormat
    status: TournamentStatus
    registration_start: datetime
    registration_end: datetime
    start_date: datetime
    end_date: Optional[datetime]
    max_participants: int
    entry_fee: int
    prize_pool: int
    created_at: Optional[datetime] = None


class TournamentPage(BaseModel):
    items: list[TournamentResponse]
    total: int
    page: int
    limit: int
    pages: int


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    user_id: int
    entry_fee_paid: int
    rank: Optional[int]
    created_at: Optional[datetime] = None


class ParticipantPage(BaseModel):
    items: list[ParticipantResponse]
    total: int
    page: int
    limit: int
    pages: int


class UserTournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tournament: TournamentResponse
    rank: Optional[int]
    entry_fee_paid: int
    registered_at: datetime


class UserTournamentPage(BaseModel):
    items: list[UserTournamentResponse]
    total: int
    page: int
    limit: int
    pages: int


class WithdrawResponse(BaseModel):
    refunded: int


class BracketSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tournament_id: int
    rounds: int
    match_count: int
    bye_count: int


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    round: int
    match_number: int
    player1_id: Optional[int]
    player2_id: Optional[int]
    winner_id: Optional[int]
    player1_score: Optional[int]
    player2_score: Optional[int]
    status: MatchStatus
    previous_match1_id: Optional[int]
    previous_match2_id: Optional[int]
    next_match_id: Optional[int]
    next_match_slot: Optional[int]
    scheduled_at: Optional[datetime]
    completed_at: Optional[datetime]
    admin_notes: Optional[str]


class MatchPage(BaseModel):
    items: list[MatchResponse]
    total: int
    page: int
    limit: int
    pages: int


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: int
    reporter_id: int
    player1_score: int
    player2_score: int
    evidence: Optional[str]
    status: ReportStatus
    created_at: Optional[datetime] = None


class MatchDetailResponse(MatchResponse):
    reports: list[ReportResponse] = []


class ReportCreate(BaseModel):
    score: int  # reporter's own score
    opponent_score: int
    evidence: Optional[str] = None


class ReportOutcomeResponse(BaseModel):
    report: ReportResponse
    match: MatchResponse
    consensus: ReportStatus


class MatchResultBody(BaseModel):
    player1_score: int
    player2_score: int
    notes: Optional[str] = None


def _page(page_cls, page, item_cls):
    return page_cls(
        items=[item_cls.model_validate(x) for x in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        pages=page.pages,
    )


async def _require_manager(tournament_id: int, actor: Actor) -> None:
    t = await tournaments.get_tournament(tournament_id)
    ensure_manager(actor, t)


async def _require_match_manager(match_id: int, actor: Actor) -> None:
    detail = await progression.get_match(match_id)
    await _require_manager(detail.match.tournament_id, actor)


# --- Tournaments ---


@router.post("/tournaments", response_model=TournamentResponse)
async def create_tournament(body: TournamentCreate, actor: Actor = Depends(require_actor)):
    """Create a tournament organized by the caller."""
    t = await tournaments.create_tournament(
        organizer_id=actor.user_id,
        game_id=body.game_id,
        name=body.name,
        registration_start=body.registration_start,
        registration_end=body.registration_end,
        start_date=body.start_date,
        max_participants=body.max_participants,
        entry_fee=body.entry_fee,
        prize_pool=body.prize_pool,
        description=body.description,
        end_date=body.end_date,
        fmt=body.format,
    )
    return TournamentResponse.model_validate(t)


@router.get("/tournaments", response_model=TournamentPage)
async def list_tournaments(
    game_id: Optional[int] = None,
    status: Optional[TournamentStatus] = None,
    page: int = 1,
    limit: int = 10,
):
    result = await tournaments.list_tournaments(game_id=game_id, status=status, page=page, limit=limit)
    return _page(TournamentPage, result, TournamentResponse)


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(tournament_id: int):
    return TournamentResponse.model_validate(await tournaments.get_tournament(tournament_id))


@router.post("/tournaments/{tournament_id}/registration/open", response_model=TournamentResponse)
async def open_registration(tournament_id: int, actor: Actor = Depends(require_actor)):
    await _require_manager(tournament_id, actor)
    return TournamentResponse.model_validate(await tournaments.open_registration(tournament_id))


@router.post("/tournaments/{tournament_id}/registration/close", response_model=TournamentResponse)
async def close_registration(tournament_id: int, actor: Actor = Depends(require_actor)):
    await _require_manager(tournament_id, actor)
    return TournamentResponse.model_validate(await tournaments.close_registration(tournament_id))


@router.post("/tournaments/{tournament_id}/cancel", response_model=TournamentResponse)
async def cancel_tournament(tournament_id: int, actor: Actor = Depends(require_actor)):
    """Cancel the tournament and refund entry fees."""
    await _require_manager(tournament_id, actor)
    return TournamentResponse.model_validate(await tournaments.cancel_tournament(tournament_id))


@router.post("/tournaments/{tournament_id}/participants", response_model=ParticipantResponse)
async def register(tournament_id: int, actor: Actor = Depends(require_actor)):
    """Register the caller. The entry fee is debited from their coin wallet."""
    p = await tournaments.register_participant(tournament_id, actor.user_id)
    return ParticipantResponse.model_validate(p)


@router.delete("/tournaments/{tournament_id}/participants/me", response_model=WithdrawResponse)
async def withdraw(tournament_id: int, actor: Actor = Depends(require_actor)):
    refunded = await tournaments.withdraw_participant(tournament_id, actor.user_id)
    return WithdrawResponse(refunded=refunded)


@router.get("/tournaments/{tournament_id}/participants", response_model=list[ParticipantResponse])
async def list_participants(tournament_id: int):
    return [ParticipantResponse.model_validate(p) for p in await tournaments.list_participants(tournament_id)]


@router.get("/tournaments/{tournament_id}/standings", response_model=ParticipantPage)
async def get_standings(tournament_id: int, page: int = 1, limit: int = 10):
    result = await tournaments.get_standings(tournament_id, page=page, limit=limit)
    return _page(ParticipantPage, result, ParticipantResponse)


@router.get("/users/me/tournaments", response_model=UserTournamentPage)
async def my_tournaments(
    status: Optional[TournamentStatus] = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(require_actor),
):
    """Tournaments the caller registered for, with their rank and registration time."""
    result = await tournaments.list_user_tournaments(actor.user_id, status=status, page=page, limit=limit)
    return _page(UserTournamentPage, result, UserTournamentResponse)


@router.post("/tournaments/{tournament_id}/bracket/generate", response_model=BracketSummaryResponse)
async def generate_bracket(tournament_id: int, actor: Actor = Depends(require_actor)):
    """Seed the bracket from registered participants and start the tournament."""
    await _require_manager(tournament_id, actor)
    summary = await tournaments.generate_bracket(tournament_id)
    return BracketSummaryResponse.model_validate(summary)


@router.get("/tournaments/{tournament_id}/matches", response_model=list[MatchResponse])
async def list_tournament_matches(
    tournament_id: int,
    round: Optional[int] = None,
    status: Optional[MatchStatus] = None,
):
    matches = await progression.list_tournament_matches(tournament_id, round=round, status=status)
    return [MatchResponse.model_validate(m) for m in matches]


# --- Matches ---


@router.get("/matches/{match_id}", response_model=MatchDetailResponse)
async def get_match(match_id: int):
    detail = await progression.get_match(match_id)
    data = MatchResponse.model_validate(detail.match).model_dump()
    data["reports"] = [ReportResponse.model_validate(r) for r in detail.reports]
    return MatchDetailResponse(**data)


@router.get("/users/me/matches", response_model=MatchPage)
async def my_matches(
    status: Optional[MatchStatus] = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(require_actor),
):
    result = await progression.list_user_matches(actor.user_id, status=status, page=page, limit=limit)
    return _page(MatchPage, result, MatchResponse)


@router.post("/matches/{match_id}/reports", response_model=ReportOutcomeResponse)
async def report_result(match_id: int, body: ReportCreate, actor: Actor = Depends(require_actor)):
    """Report the caller's match result. Scores are from the caller's side."""
    outcome = await progression.report_match_result(
        match_id, actor.user_id, body.score, body.opponent_score, evidence=body.evidence
    )
    return ReportOutcomeResponse(
        report=ReportResponse.model_validate(outcome.report),
        match=MatchResponse.model_validate(outcome.match),
        consensus=outcome.consensus,
    )


@router.post("/matches/{match_id}/resolve", response_model=MatchResponse)
async def resolve_dispute(match_id: int, body: MatchResultBody, actor: Actor = Depends(require_actor)):
    await _require_match_manager(match_id, actor)
    match = await progression.resolve_dispute(
        match_id, body.player1_score, body.player2_score, notes=body.notes
    )
    return MatchResponse.model_validate(match)


@router.put("/matches/{match_id}/result", response_model=MatchResponse)
async def update_match_result(match_id: int, body: MatchResultBody, actor: Actor = Depends(require_actor)):
    """Enter a match result directly (organizer or admin)."""
    await _require_match_manager(match_id, actor)
    match = await progression.update_match_result_admin(
        match_id, body.player1_score, body.player2_score, notes=body.notes
    )
    return MatchResponse.model_validate(match)
