"""ELO-style rating engine.

compute_rating_delta is pure; record_outcome applies a delta to the stored
PlayerSkill row inside the caller's transaction.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from arena.models import PlayerSkill, level_for_rating


class Outcome(str, enum.Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    DRAW = "DRAW"


ACTUAL_SCORE = {
    Outcome.WIN: 1.0,
    Outcome.LOSS: 0.0,
    Outcome.DRAW: 0.5,
}


@dataclass(frozen=True)
class RatingDelta:
    outcome: Outcome
    rating_before: int
    rating_after: int
    level_before: int
    level_after: int

    @property
    def delta(self) -> int:
        return self.rating_after - self.rating_before

    @property
    def level_changed(self) -> bool:
        return self.level_after != self.level_before


def expected_score(rating: int, opponent_rating: int) -> float:
    """Expected score (0.0 to 1.0) for a player rated `rating` against `opponent_rating`."""
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def compute_rating_delta(
    rating: int,
    outcome: Outcome,
    opponent_rating: Optional[int] = None,
    k: Optional[int] = None,
    level: Optional[int] = None,
) -> RatingDelta:
    """Rating change for one result. Without an opponent rating only counters move.

    level is the stored level before the result; it defaults to the level
    derived from rating.
    """
    level_before = level_for_rating(rating) if level is None else level
    if opponent_rating is None:
        return RatingDelta(outcome, rating, rating, level_before, level_before)
    k = config.ELO_K_FACTOR if k is None else k
    # Half-up rounding: 2.5 -> 3, -2.5 -> -2
    change = math.floor(k * (ACTUAL_SCORE[outcome] - expected_score(rating, opponent_rating)) + 0.5)
    new_rating = rating + change
    return RatingDelta(outcome, rating, new_rating, level_before, level_for_rating(new_rating))


def apply_delta(skill: PlayerSkill, delta: RatingDelta) -> PlayerSkill:
    """Write a computed delta and the result counters onto a skill row."""
    skill.games_played += 1
    if delta.outcome == Outcome.WIN:
        skill.wins += 1
    elif delta.outcome == Outcome.LOSS:
        skill.losses += 1
    else:
        skill.draws += 1
    skill.rating = delta.rating_after
    skill.level = delta.level_after
    return skill


async def get_or_create_skill(session: AsyncSession, user_id: int, game_id: int) -> PlayerSkill:
    """Load the user's skill row for a game, creating the default one if missing."""
    result = await session.execute(
        select(PlayerSkill).where(PlayerSkill.user_id == user_id, PlayerSkill.game_id == game_id)
    )
    skill = result.scalar_one_or_none()
    if skill is None:
        skill = PlayerSkill(
            user_id=user_id,
            game_id=game_id,
            rating=config.DEFAULT_RATING,
            games_played=0,
            wins=0,
            losses=0,
            draws=0,
            level=level_for_rating(config.DEFAULT_RATING),
        )
        session.add(skill)
        await session.flush()
    return skill


async def record_outcome(
    session: AsyncSession,
    user_id: int,
    game_id: int,
    outcome: Outcome,
    opponent_rating: Optional[int] = None,
) -> RatingDelta:
    """Apply one result to the user's stored skill and return the delta."""
    skill = await get_or_create_skill(session, user_id, game_id)
    delta = compute_rating_delta(skill.rating, outcome, opponent_rating, level=skill.level)
    apply_delta(skill, delta)
    await session.flush()
    return delta


async def rate_pair(
    session: AsyncSession,
    game_id: int,
    player1_id: int,
    player2_id: int,
    winner_id: Optional[int],
) -> dict[int, RatingDelta]:
    """Rate both players of a head-to-head result against each other's pre-match rating.

    winner_id None is a draw.
    """
    skill1 = await get_or_create_skill(session, player1_id, game_id)
    skill2 = await get_or_create_skill(session, player2_id, game_id)
    before1, before2 = skill1.rating, skill2.rating
    if winner_id is None:
        outcome1 = outcome2 = Outcome.DRAW
    elif winner_id == player1_id:
        outcome1, outcome2 = Outcome.WIN, Outcome.LOSS
    else:
        outcome1, outcome2 = Outcome.LOSS, Outcome.WIN
    delta1 = compute_rating_delta(before1, outcome1, before2, level=skill1.level)
    delta2 = compute_rating_delta(before2, outcome2, before1, level=skill2.level)
    apply_delta(skill1, delta1)
    apply_delta(skill2, delta2)
    await session.flush()
    return {player1_id: delta1, player2_id: delta2}
