"""Tests for the HTTP API."""
from datetime import timedelta

import pytest

from arena.models import utcnow
from arena.services import ledger


def _tournament_body(**overrides):
    now = utcnow()
    body = {
        "game_id": 7,
        "name": "Test Cup",
        "registration_start": (now - timedelta(hours=1)).isoformat(),
        "registration_end": (now + timedelta(days=1)).isoformat(),
        "start_date": (now + timedelta(days=2)).isoformat(),
        "max_participants": 8,
    }
    body.update(overrides)
    return body


async def _open_tournament(client, auth_headers, organizer=1, **overrides):
    r = await client.post("/api/tournaments", json=_tournament_body(**overrides), headers=auth_headers(organizer))
    assert r.status_code == 200
    tid = r.json()["id"]
    r = await client.post(f"/api/tournaments/{tid}/registration/open", headers=auth_headers(organizer))
    assert r.status_code == 200
    return tid


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns ok."""
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_list_tournaments_empty(client):
    r = await client.get("/api/tournaments")
    assert r.status_code == 200
    assert r.json() == {"items": [], "total": 0, "page": 1, "limit": 10, "pages": 0}


@pytest.mark.asyncio
async def test_create_requires_auth(client):
    r = await client.post("/api/tournaments", json=_tournament_body())
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client):
    r = await client.post(
        "/api/tournaments",
        json=_tournament_body(),
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_create_tournament(client, auth_headers):
    """Create tournament returns tournament data organized by the caller."""
    r = await client.post("/api/tournaments", json=_tournament_body(entry_fee=10), headers=auth_headers(3))
    assert r.status_code == 200
    data = r.json()
    assert data["name"] == "Test Cup"
    assert data["organizer_id"] == 3
    assert data["status"] == "UPCOMING"
    assert data["format"] == "SINGLE_ELIMINATION"
    assert data["entry_fee"] == 10

    r = await client.get(f"/api/tournaments/{data['id']}")
    assert r.status_code == 200
    assert r.json()["id"] == data["id"]

    r = await client.get("/api/tournaments", params={"game_id": 7})
    assert [t["name"] for t in r.json()["items"]] == ["Test Cup"]


@pytest.mark.asyncio
async def test_x_auth_token_header(client):
    from web.auth import create_access_token

    r = await client.post(
        "/api/tournaments",
        json=_tournament_body(),
        headers={"X-Auth-Token": create_access_token(9)},
    )
    assert r.status_code == 200
    assert r.json()["organizer_id"] == 9


@pytest.mark.asyncio
async def test_bad_tournament_dates(client, auth_headers):
    now = utcnow()
    r = await client.post(
        "/api/tournaments",
        json=_tournament_body(start_date=now.isoformat()),
        headers=auth_headers(1),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "BadRequest"


@pytest.mark.asyncio
async def test_unknown_tournament(client):
    r = await client.get("/api/tournaments/999")
    assert r.status_code == 404
    assert r.json() == {"error": "NotFound", "detail": "Tournament not found"}


@pytest.mark.asyncio
async def test_only_organizer_or_admin_manages(client, auth_headers):
    r = await client.post("/api/tournaments", json=_tournament_body(), headers=auth_headers(1))
    tid = r.json()["id"]

    r = await client.post(f"/api/tournaments/{tid}/registration/open", headers=auth_headers(2))
    assert r.status_code == 403
    r = await client.post(f"/api/tournaments/{tid}/registration/open", headers=auth_headers(2, "admin"))
    assert r.status_code == 200
    assert r.json()["status"] == "REGISTRATION_OPEN"

    r = await client.post(f"/api/tournaments/{tid}/registration/open", headers=auth_headers(1))
    assert r.status_code == 409
    assert r.json()["error"] == "InvalidState"


@pytest.mark.asyncio
async def test_registration_flow(client, auth_headers):
    tid = await _open_tournament(client, auth_headers, entry_fee=20)

    # No coins yet
    r = await client.post(f"/api/tournaments/{tid}/participants", headers=auth_headers(5))
    assert r.status_code == 402
    assert r.json()["error"] == "InsufficientFunds"

    await ledger.deposit(5, 50)
    r = await client.post(f"/api/tournaments/{tid}/participants", headers=auth_headers(5))
    assert r.status_code == 200
    assert r.json()["entry_fee_paid"] == 20

    r = await client.post(f"/api/tournaments/{tid}/participants", headers=auth_headers(5))
    assert r.status_code == 409
    assert r.json()["error"] == "Conflict"

    r = await client.get(f"/api/tournaments/{tid}/participants")
    assert [p["user_id"] for p in r.json()] == [5]

    r = await client.delete(f"/api/tournaments/{tid}/participants/me", headers=auth_headers(5))
    assert r.status_code == 200
    assert r.json() == {"refunded": 20}
    r = await client.get(f"/api/tournaments/{tid}/participants")
    assert r.json() == []


@pytest.mark.asyncio
async def test_tournament_flow(client, auth_headers):
    """Register, seed, report from both sides and read the standings."""
    tid = await _open_tournament(client, auth_headers)
    for uid in (10, 11):
        r = await client.post(f"/api/tournaments/{tid}/participants", headers=auth_headers(uid))
        assert r.status_code == 200

    r = await client.post(f"/api/tournaments/{tid}/bracket/generate", headers=auth_headers(1))
    assert r.status_code == 409  # registration still open

    await client.post(f"/api/tournaments/{tid}/registration/close", headers=auth_headers(1))
    r = await client.post(f"/api/tournaments/{tid}/bracket/generate", headers=auth_headers(1))
    assert r.status_code == 200
    assert r.json() == {"tournament_id": tid, "rounds": 1, "match_count": 1, "bye_count": 0}
    assert (await client.get(f"/api/tournaments/{tid}")).json()["status"] == "IN_PROGRESS"

    r = await client.get(f"/api/tournaments/{tid}/matches")
    [match] = r.json()
    mid = match["id"]
    p1, p2 = match["player1_id"], match["player2_id"]
    assert {p1, p2} == {10, 11}

    r = await client.post(f"/api/matches/{mid}/reports", json={"score": 2, "opponent_score": 2}, headers=auth_headers(p1))
    assert r.status_code == 400
    assert r.json()["error"] == "BadRequest"

    r = await client.post(f"/api/matches/{mid}/reports", json={"score": 3, "opponent_score": 1}, headers=auth_headers(99))
    assert r.status_code == 403

    r = await client.post(
        f"/api/matches/{mid}/reports",
        json={"score": 3, "opponent_score": 1, "evidence": "https://img.example/1.png"},
        headers=auth_headers(p1),
    )
    assert r.status_code == 200
    assert r.json()["consensus"] == "PENDING"
    assert r.json()["report"]["evidence"] == "https://img.example/1.png"

    r = await client.post(f"/api/matches/{mid}/reports", json={"score": 1, "opponent_score": 3}, headers=auth_headers(p2))
    assert r.status_code == 200
    data = r.json()
    assert data["consensus"] == "APPROVED"
    assert data["match"]["status"] == "COMPLETED"
    assert data["match"]["winner_id"] == p1

    r = await client.get(f"/api/matches/{mid}")
    assert [rep["status"] for rep in r.json()["reports"]] == ["APPROVED", "APPROVED"]

    r = await client.get(f"/api/tournaments/{tid}/standings")
    assert [(p["user_id"], p["rank"]) for p in r.json()["items"]] == [(p1, 1), (p2, 2)]

    r = await client.get("/api/users/me/matches", headers=auth_headers(p2))
    assert r.json()["total"] == 1

    r = await client.get("/api/users/me/tournaments", headers=auth_headers(p2))
    [mine] = r.json()["items"]
    assert mine["tournament"]["id"] == tid
    assert mine["tournament"]["status"] == "COMPLETED"
    assert mine["rank"] == 2
    assert mine["registered_at"] is not None
    r = await client.get("/api/users/me/tournaments", params={"status": "IN_PROGRESS"}, headers=auth_headers(p2))
    assert r.json()["total"] == 0

    r = await client.get(f"/api/users/{p1}/skills/7")
    assert r.status_code == 200
    assert r.json()["rating"] == 1016


@pytest.mark.asyncio
async def test_dispute_resolution_via_api(client, auth_headers, started_tournament):
    _, [final] = await started_tournament([1, 2], organizer_id=30)
    mid = final.id
    await client.post(f"/api/matches/{mid}/reports", json={"score": 2, "opponent_score": 0}, headers=auth_headers(1))
    r = await client.post(f"/api/matches/{mid}/reports", json={"score": 2, "opponent_score": 0}, headers=auth_headers(2))
    assert r.json()["consensus"] == "DISPUTED"

    body = {"player1_score": 0, "player2_score": 2, "notes": "checked replay"}
    r = await client.post(f"/api/matches/{mid}/resolve", json=body, headers=auth_headers(1))
    assert r.status_code == 403
    r = await client.post(f"/api/matches/{mid}/resolve", json=body, headers=auth_headers(30))
    assert r.status_code == 200
    assert r.json()["winner_id"] == final.player2_id
    assert r.json()["admin_notes"] == "checked replay"

    r = await client.put(f"/api/matches/{mid}/result", json=body, headers=auth_headers(30))
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_unknown_match(client, auth_headers):
    r = await client.get("/api/matches/404")
    assert r.status_code == 404
    r = await client.post("/api/matches/404/reports", json={"score": 1, "opponent_score": 0}, headers=auth_headers(1))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_queue_flow(client, auth_headers):
    r = await client.post("/api/games/3/queue", headers=auth_headers(1))
    assert r.status_code == 200
    first = r.json()
    assert first["matched"] is False
    assert first["entry"]["status"] == "WAITING"

    r = await client.get(f"/api/queue/{first['entry']['id']}", headers=auth_headers(2))
    assert r.status_code == 403
    r = await client.get(f"/api/queue/{first['entry']['id']}", headers=auth_headers(1))
    assert r.status_code == 200
    assert r.json()["wait_seconds"] >= 0

    r = await client.post("/api/games/3/queue", headers=auth_headers(1))
    assert r.status_code == 409

    r = await client.post("/api/games/3/queue", headers=auth_headers(2))
    second = r.json()
    assert second["matched"] is True
    assert sorted(second["game_session"]["player_ids"]) == [1, 2]

    r = await client.delete("/api/games/3/queue", headers=auth_headers(1))
    assert r.status_code == 409
    r = await client.delete("/api/games/3/queue", headers=auth_headers(4))
    assert r.status_code == 404

    session_id = second["game_session"]["id"]
    r = await client.post(f"/api/sessions/{session_id}/result", json={"winner_id": 1}, headers=auth_headers(1))
    assert r.status_code == 403
    r = await client.post(
        f"/api/sessions/{session_id}/result", json={"winner_id": 1}, headers=auth_headers(100, "admin")
    )
    assert r.status_code == 200
    changes = {c["user_id"]: c for c in r.json()["rating_changes"]}
    assert changes[1]["rating_after"] == 1016
    assert changes[2]["rating_after"] == 984

    r = await client.get("/api/games/3/leaderboard")
    assert [s["user_id"] for s in r.json()["items"]] == [1, 2]

    r = await client.get("/api/users/2/skills")
    assert [s["game_id"] for s in r.json()] == [3]


@pytest.mark.asyncio
async def test_leave_queue(client, auth_headers):
    await client.post("/api/games/3/queue", headers=auth_headers(1))
    r = await client.delete("/api/games/3/queue", headers=auth_headers(1))
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_missing_skill(client):
    r = await client.get("/api/users/1/skills/3")
    assert r.status_code == 404
