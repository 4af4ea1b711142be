"""Bracket generation service."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from arena.errors import InsufficientParticipants, MatchesAlreadyExist
from arena.models import MatchStatus, Tournament, TournamentMatch, utcnow
from arena.services.progression import advance_winner

logger = logging.getLogger("arena.bracket")


@dataclass
class BracketSummary:
    tournament_id: int
    rounds: int
    match_count: int
    bye_count: int


def next_power_of_2(n: int) -> int:
    """Round up to next power of 2."""
    p = 1
    while p < n:
        p *= 2
    return p


def round_count(n: int) -> int:
    """Rounds needed for n participants (ceil(log2 n), at least 1)."""
    return max(1, next_power_of_2(n).bit_length() - 1)


def first_round_pairs(seeded: Sequence[int]) -> List[Tuple[int, Optional[int]]]:
    """Pair a shuffled list for the first round played.

    Match i gets seeded[i] against seeded[n-1-i] while that index lies in the
    second half of the slot range; the remaining matches are byes. No player
    is placed twice and no first-round match is empty.
    """
    n = len(seeded)
    half = next_power_of_2(n) // 2
    pairs: List[Tuple[int, Optional[int]]] = []
    for i in range(half):
        opp = n - 1 - i
        pairs.append((seeded[i], seeded[opp] if opp >= half else None))
    return pairs


async def has_matches(session: AsyncSession, tournament_id: int) -> bool:
    result = await session.execute(
        select(func.count(TournamentMatch.id)).where(TournamentMatch.tournament_id == tournament_id)
    )
    return result.scalar_one() > 0


async def build_single_elim_bracket(
    session: AsyncSession,
    tournament: Tournament,
    user_ids: Sequence[int],
    rng: Optional[random.Random] = None,
) -> BracketSummary:
    """Create the full single-elimination tree for a tournament and advance byes.

    Round 1 is the final; the first round played is round `rounds`.
    """
    if len(user_ids) < 2:
        raise InsufficientParticipants()
    if await has_matches(session, tournament.id):
        raise MatchesAlreadyExist()

    seeded = list(user_ids)
    (rng or random.Random()).shuffle(seeded)
    rounds = round_count(len(seeded))
    interval = timedelta(days=config.ROUND_INTERVAL_DAYS)
    now = utcnow()

    matches: Dict[Tuple[int, int], TournamentMatch] = {}
    byes: List[TournamentMatch] = []
    for i, (p1, p2) in enumerate(first_round_pairs(seeded)):
        m = TournamentMatch(
            tournament_id=tournament.id,
            round=rounds,
            match_number=i + 1,
            player1_id=p1,
            player2_id=p2,
            status=MatchStatus.SCHEDULED,
            scheduled_at=tournament.start_date,
            updated_at=now,
        )
        if p2 is None:
            m.winner_id = p1
            m.status = MatchStatus.COMPLETED
            m.completed_at = now
            byes.append(m)
        matches[(rounds, i + 1)] = m
        session.add(m)

    for r in range(rounds - 1, 0, -1):
        for k in range(1, 2 ** (r - 1) + 1):
            m = TournamentMatch(
                tournament_id=tournament.id,
                round=r,
                match_number=k,
                status=MatchStatus.SCHEDULED,
                scheduled_at=tournament.start_date + (rounds - r) * interval,
                updated_at=now,
            )
            matches[(r, k)] = m
            session.add(m)
    await session.flush()

    # (2k-1, 2k) of round r feed match k of round r-1
    for (r, num), m in matches.items():
        if r == 1:
            continue
        nxt = matches[(r - 1, (num + 1) // 2)]
        m.next_match_id = nxt.id
        if num % 2 == 1:
            m.next_match_slot = 1
            nxt.previous_match1_id = m.id
        else:
            m.next_match_slot = 2
            nxt.previous_match2_id = m.id
    await session.flush()

    for bye in byes:
        await advance_winner(session, bye)

    logger.info(
        "Bracket generated for tournament %s: %d players, %d rounds, %d matches, %d byes",
        tournament.id, len(seeded), rounds, len(matches), len(byes),
    )
    return BracketSummary(
        tournament_id=tournament.id,
        rounds=rounds,
        match_count=len(matches),
        bye_count=len(byes),
    )
