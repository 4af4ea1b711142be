"""Notification sink for domain events. Fire-and-forget, at-most-once."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import httpx

import config
from arena.models.base import utcnow

logger = logging.getLogger("arena.notify")

MATCH_COMPLETED = "MatchCompleted"
MATCH_DISPUTED = "MatchDisputed"
TOURNAMENT_COMPLETED = "TournamentCompleted"
QUEUE_MATCHED = "QueueMatched"
PLAYER_LEVEL_CHANGED = "PlayerLevelChanged"
DISPUTE_ESCALATED = "DisputeEscalated"


@dataclass
class DomainEvent:
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_json(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat() + "Z"
        return data


class NotificationSink:
    """Delivers one event. Implementations may raise; publish() logs and moves on."""

    async def send(self, event: DomainEvent) -> None:
        raise NotImplementedError


class LogSink(NotificationSink):
    """Default sink when no webhook is configured."""

    async def send(self, event: DomainEvent) -> None:
        logger.info("event %s %s", event.name, event.payload)


class WebhookSink(NotificationSink):
    """POST each event as JSON to an external pub/sub bridge."""

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self.transport = transport

    async def send(self, event: DomainEvent) -> None:
        headers = {"Authorization": f"Bearer {self.secret}"} if self.secret else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(self.url, json=event.to_json(), headers=headers)
            r.raise_for_status()


_sink: Optional[NotificationSink] = None


def get_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        if config.NOTIFY_WEBHOOK_URL:
            _sink = WebhookSink(
                config.NOTIFY_WEBHOOK_URL,
                config.NOTIFY_WEBHOOK_SECRET,
                config.NOTIFY_TIMEOUT_SECONDS,
            )
        else:
            _sink = LogSink()
    return _sink


def set_sink(sink: Optional[NotificationSink]) -> None:
    """Replace the process sink (None restores the configured default)."""
    global _sink
    _sink = sink


async def publish(events: Iterable[DomainEvent], sink: Optional[NotificationSink] = None) -> None:
    """Deliver events after the state change committed. Failures are logged only."""
    target = sink or get_sink()
    for event in events:
        try:
            await target.send(event)
        except Exception:
            logger.exception("Failed to publish %s", event.name)
