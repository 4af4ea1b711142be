"""Periodic housekeeping: queue expiry, dispute escalation, registration windows.

Each policy is a no-op unless enabled in config.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

import config
from arena.models import (
    MatchResultReport,
    MatchStatus,
    MatchmakingQueueEntry,
    QueueStatus,
    ReportStatus,
    Tournament,
    TournamentMatch,
    TournamentStatus,
    utcnow,
)
from arena.services.notifications import DISPUTE_ESCALATED, DomainEvent, publish
from arena.services.retry import run_in_transaction
from arena.services.tournaments import transition

logger = logging.getLogger("arena.housekeeping")


async def expire_stale_queue_entries(now: Optional[datetime] = None) -> int:
    """Cancel WAITING entries older than QUEUE_ENTRY_TTL_MINUTES. Returns how many."""
    if config.QUEUE_ENTRY_TTL_MINUTES <= 0:
        return 0
    cutoff = (now or utcnow()) - timedelta(minutes=config.QUEUE_ENTRY_TTL_MINUTES)

    async def work(session: AsyncSession) -> int:
        result = await session.execute(
            update(MatchmakingQueueEntry)
            .where(
                MatchmakingQueueEntry.status == QueueStatus.WAITING,
                MatchmakingQueueEntry.joined_at < cutoff,
            )
            .values(status=QueueStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    expired = await run_in_transaction(work)
    if expired:
        logger.info("Expired %d stale queue entries", expired)
    return expired


async def escalate_stale_disputes(now: Optional[datetime] = None) -> List[int]:
    """Notify organizers about disputes open longer than DISPUTE_ESCALATION_HOURS.

    Nothing is resolved automatically. Returns the escalated match ids.
    """
    if config.DISPUTE_ESCALATION_HOURS <= 0:
        return []
    cutoff = (now or utcnow()) - timedelta(hours=config.DISPUTE_ESCALATION_HOURS)

    async def work(session: AsyncSession) -> List[tuple]:
        result = await session.execute(
            select(TournamentMatch.id, TournamentMatch.tournament_id, Tournament.organizer_id)
            .join(MatchResultReport, MatchResultReport.match_id == TournamentMatch.id)
            .join(Tournament, Tournament.id == TournamentMatch.tournament_id)
            .where(
                TournamentMatch.status == MatchStatus.SCHEDULED,
                MatchResultReport.status == ReportStatus.DISPUTED,
                MatchResultReport.created_at < cutoff,
            )
            .distinct()
            .order_by(TournamentMatch.id)
        )
        return [tuple(row) for row in result.all()]

    rows = await run_in_transaction(work)
    await publish(
        DomainEvent(
            DISPUTE_ESCALATED,
            {"match_id": match_id, "tournament_id": tournament_id, "organizer_id": organizer_id},
        )
        for match_id, tournament_id, organizer_id in rows
    )
    if rows:
        logger.info("Escalated %d stale disputes", len(rows))
    return [r[0] for r in rows]


async def sync_registration_windows(now: Optional[datetime] = None) -> Dict[str, int]:
    """Open and close registration according to each tournament's window."""
    if not config.AUTO_REGISTRATION_WINDOWS:
        return {"opened": 0, "closed": 0}
    now = now or utcnow()

    async def work(session: AsyncSession) -> Dict[str, int]:
        counts = {"opened": 0, "closed": 0}
        result = await session.execute(
            select(Tournament)
            .where(
                Tournament.status.in_(
                    [TournamentStatus.UPCOMING, TournamentStatus.REGISTRATION_OPEN]
                ),
                Tournament.registration_start <= now,
            )
            .order_by(Tournament.id)
        )
        for t in result.scalars().all():
            if t.status == TournamentStatus.UPCOMING:
                transition(t, TournamentStatus.REGISTRATION_OPEN)
                counts["opened"] += 1
            if t.status == TournamentStatus.REGISTRATION_OPEN and t.registration_end <= now:
                transition(t, TournamentStatus.REGISTRATION_CLOSED)
                counts["closed"] += 1
        await session.flush()
        return counts

    return await run_in_transaction(work)


async def run_housekeeping(now: Optional[datetime] = None) -> dict:
    """Run every enabled policy once."""
    return {
        "expired_queue_entries": await expire_stale_queue_entries(now),
        "escalated_disputes": await escalate_stale_disputes(now),
        "registration_windows": await sync_registration_windows(now),
    }
