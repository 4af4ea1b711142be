"""API routes for the matchmaking queue, leaderboards, skills and ranked sessions."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from arena.models import QueueStatus, SessionStatus
from arena.services import matchmaking
from web.auth import Actor, require_actor, require_admin_actor

router = APIRouter(prefix="/api", tags=["matchmaking"])


class QueueEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    game_id: int
    rating: int
    status: QueueStatus
    joined_at: datetime
    matched_at: Optional[datetime]
    game_session_id: Optional[int]


class GameSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_id: int
    status: SessionStatus
    is_ranked: bool
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    winner_id: Optional[int]
    player_ids: list[int]


class JoinResponse(BaseModel):
    entry: QueueEntryResponse
    matched: bool
    game_session: Optional[GameSessionResponse] = None


class QueueStatusResponse(BaseModel):
    entry: QueueEntryResponse
    wait_seconds: Optional[int] = None
    game_session: Optional[GameSessionResponse] = None


class SkillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    game_id: int
    rating: int
    level: int
    games_played: int
    wins: int
    losses: int
    draws: int


class LeaderboardResponse(BaseModel):
    items: list[SkillResponse]
    total: int
    page: int
    limit: int
    pages: int


class SessionResultBody(BaseModel):
    winner_id: Optional[int] = None  # null = draw


class RatingChange(BaseModel):
    user_id: int
    rating_before: int
    rating_after: int
    level_before: int
    level_after: int


class SessionResultResponse(BaseModel):
    game_session: GameSessionResponse
    rating_changes: list[RatingChange]


def _session_out(game_session) -> Optional[GameSessionResponse]:
    if game_session is None:
        return None
    return GameSessionResponse.model_validate(game_session)


@router.post("/games/{game_id}/queue", response_model=JoinResponse)
async def join_queue(game_id: int, actor: Actor = Depends(require_actor)):
    """Join the ranked queue. Pairs immediately when an opponent within range is waiting."""
    result = await matchmaking.join_queue(actor.user_id, game_id)
    return JoinResponse(
        entry=QueueEntryResponse.model_validate(result.entry),
        matched=result.matched,
        game_session=_session_out(result.game_session),
    )


@router.delete("/games/{game_id}/queue", response_model=QueueEntryResponse)
async def leave_queue(game_id: int, actor: Actor = Depends(require_actor)):
    entry = await matchmaking.leave_queue(actor.user_id, game_id)
    return QueueEntryResponse.model_validate(entry)


@router.get("/queue/{entry_id}", response_model=QueueStatusResponse)
async def queue_status(entry_id: int, actor: Actor = Depends(require_actor)):
    view = await matchmaking.check_queue_status(entry_id, actor.user_id)
    return QueueStatusResponse(
        entry=QueueEntryResponse.model_validate(view.entry),
        wait_seconds=view.wait_seconds,
        game_session=_session_out(view.game_session),
    )


@router.get("/games/{game_id}/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(game_id: int, page: int = 1, limit: Optional[int] = None):
    result = await matchmaking.get_leaderboard(game_id, page=page, limit=limit)
    return LeaderboardResponse(
        items=[SkillResponse.model_validate(s) for s in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/users/{user_id}/skills", response_model=list[SkillResponse])
async def list_skills(user_id: int):
    return [SkillResponse.model_validate(s) for s in await matchmaking.list_player_skills(user_id)]


@router.get("/users/{user_id}/skills/{game_id}", response_model=SkillResponse)
async def get_skill(user_id: int, game_id: int):
    return SkillResponse.model_validate(await matchmaking.get_player_skill(user_id, game_id))


@router.post("/sessions/{session_id}/result", response_model=SessionResultResponse)
async def session_result(
    session_id: int,
    body: SessionResultBody,
    actor: Actor = Depends(require_admin_actor),
):
    """Record a ranked session result reported by the game server."""
    result = await matchmaking.complete_game_session(session_id, winner_id=body.winner_id)
    return SessionResultResponse(
        game_session=GameSessionResponse.model_validate(result.game_session),
        rating_changes=[
            RatingChange(
                user_id=user_id,
                rating_before=d.rating_before,
                rating_after=d.rating_after,
                level_before=d.level_before,
                level_after=d.level_after,
            )
            for user_id, d in result.deltas.items()
        ],
    )
