"""Pytest configuration and fixtures."""
import os
import tempfile

# Set test env BEFORE any imports that use config
_tmpdir = tempfile.mkdtemp(prefix="arena-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmpdir, 'arena-test.db')}"
os.environ["TX_RETRY_ATTEMPTS"] = "8"
os.environ["TX_RETRY_BACKOFF_SECONDS"] = "0.01"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["RATE_TOURNAMENT_MATCHES"] = "true"

import random
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from arena.models.base import drop_db, engine, init_db, utcnow
from arena.services import ledger, notifications, tournaments
from arena.services.notifications import NotificationSink
from arena.services.progression import list_tournament_matches
from web.api.main import app
from web.auth import create_access_token


class RecordingSink(NotificationSink):
    """Keeps published events in memory."""

    def __init__(self):
        self.events = []

    async def send(self, event):
        self.events.append(event)

    def named(self, name):
        return [e for e in self.events if e.name == name]


@pytest.fixture(autouse=True)
async def _reset_db():
    """Fresh tables for every test. Pooled connections are bound to the test's loop."""
    await drop_db()
    await init_db()
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def sink():
    recorder = RecordingSink()
    notifications.set_sink(recorder)
    yield recorder
    notifications.set_sink(None)


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id and role."""

    def _headers(user_id: int, role: str = "user") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return _headers


@pytest.fixture
def new_tournament():
    """Create a tournament with registration open."""

    async def _create(
        organizer_id: int = 1,
        game_id: int = 7,
        max_participants: int = 16,
        entry_fee: int = 0,
        prize_pool: int = 0,
    ):
        now = utcnow()
        t = await tournaments.create_tournament(
            organizer_id=organizer_id,
            game_id=game_id,
            name="Weekend Cup",
            registration_start=now - timedelta(days=1),
            registration_end=now + timedelta(days=1),
            start_date=now + timedelta(days=2),
            max_participants=max_participants,
            entry_fee=entry_fee,
            prize_pool=prize_pool,
        )
        return await tournaments.open_registration(t.id)

    return _create


@pytest.fixture
def started_tournament(new_tournament):
    """Create, fill, close and seed a tournament. Returns (tournament, matches)."""

    async def _start(user_ids, seed: int = 42, entry_fee: int = 0, prize_pool: int = 0, organizer_id: int = 1):
        t = await new_tournament(
            organizer_id=organizer_id,
            max_participants=max(2, len(user_ids)),
            entry_fee=entry_fee,
            prize_pool=prize_pool,
        )
        for uid in user_ids:
            if entry_fee:
                await ledger.deposit(uid, entry_fee)
            await tournaments.register_participant(t.id, uid)
        await tournaments.close_registration(t.id)
        await tournaments.generate_bracket(t.id, rng=random.Random(seed))
        t = await tournaments.get_tournament(t.id)
        return t, await list_tournament_matches(t.id)

    return _start

