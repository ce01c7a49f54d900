"""
Tests for competition endpoints: admin creation, listing, lifecycle, draw.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from prizedraw.models.competition import CompetitionStatus
from prizedraw.services import ticket_pool


def competition_payload(**overrides) -> dict:
    payload = {
        "title": "Win a Tesla Model 3",
        "description": "Drawn live",
        "ticket_price": "0.99",
        "total_tickets": 50,
        "max_tickets_per_user": 20,
        "draw_date": (datetime.now(timezone.utc) + timedelta(days=14)).isoformat(),
        "status": "ACTIVE",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_admin_creates_competition_with_ticket_pool(client: AsyncClient, admin_headers, db_session):
    response = await client.post("/api/v1/competitions/", json=competition_payload(), headers=admin_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Win a Tesla Model 3"
    assert data["total_tickets"] == 50
    assert data["status"] == "ACTIVE"
    assert data["winning_ticket_number"] is None

    counts = await ticket_pool.count_by_status(db_session, data["id"], datetime.now(timezone.utc))
    assert counts.total == 50
    assert counts.available == 50


@pytest.mark.asyncio
async def test_create_competition_requires_admin(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/competitions/", json=competition_payload(), headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_create_competition_requires_auth(client: AsyncClient):
    response = await client.post("/api/v1/competitions/", json=competition_payload())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_draw_date_must_be_in_the_future(client: AsyncClient, admin_headers):
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.post(
        "/api/v1/competitions/", json=competition_payload(draw_date=past), headers=admin_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"total_tickets": 0}, {"max_tickets_per_user": 0}, {"ticket_price": "-1"}, {"status": "COMPLETED"}],
)
async def test_create_competition_validation(client: AsyncClient, admin_headers, overrides):
    response = await client.post(
        "/api/v1/competitions/", json=competition_payload(**overrides), headers=admin_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_competitions(client: AsyncClient, make_competition):
    await make_competition(status=CompetitionStatus.ACTIVE)
    await make_competition(status=CompetitionStatus.DRAFT)

    response = await client.get("/api/v1/competitions/")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["cached"] is False

    active = (await client.get("/api/v1/competitions/?status=ACTIVE")).json()
    assert active["total"] == 1
    assert active["competitions"][0]["status"] == "ACTIVE"


@pytest.mark.asyncio
async def test_get_competition_not_found(client: AsyncClient):
    response = await client.get("/api/v1/competitions/9999")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_status_transitions(client: AsyncClient, admin_headers, make_competition):
    competition = await make_competition(status=CompetitionStatus.DRAFT)
    url = f"/api/v1/competitions/{competition.id}/status"

    response = await client.post(url, json={"status": "ACTIVE"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "ACTIVE"

    response = await client.post(url, json={"status": "DRAFT"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_STATUS_TRANSITION"

    response = await client.post(url, json={"status": "CANCELLED"}, headers=admin_headers)
    assert response.json()["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_draw_picks_a_sold_ticket(client: AsyncClient, admin_headers, db_session, allocator, make_competition, test_user):
    competition = await make_competition(total_tickets=10)
    reservation = await allocator.reserve(db_session, competition.id, test_user.id, quantity=3)
    await allocator.confirm_purchase(db_session, competition.id, test_user.id, reservation.ticket_numbers)

    response = await client.post(f"/api/v1/competitions/{competition.id}/draw", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "COMPLETED"
    assert data["winning_ticket_number"] in (1, 2, 3)
    assert data["winner_user_id"] == test_user.id
    assert data["actual_draw_date"] is not None

    again = await client.post(f"/api/v1/competitions/{competition.id}/draw", headers=admin_headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_draw_without_entries(client: AsyncClient, admin_headers, competition):
    response = await client.post(f"/api/v1/competitions/{competition.id}/draw", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "NO_ENTRIES"


@pytest.mark.asyncio
async def test_draw_entries(client: AsyncClient, admin_headers, auth_headers, db_session, allocator, competition, make_user):
    buyer, entrant = await make_user(), await make_user()
    reservation = await allocator.reserve(db_session, competition.id, buyer.id, quantity=2)
    await allocator.confirm_purchase(db_session, competition.id, buyer.id, reservation.ticket_numbers)
    await allocator.grant_free_entry(db_session, competition.id, entrant.id)
    await allocator.reserve(db_session, competition.id, entrant.id, quantity=1)

    response = await client.get(f"/api/v1/competitions/{competition.id}/entries", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert [(e["ticket_number"], e["status"]) for e in data["entries"]] == [
        (1, "SOLD"), (2, "SOLD"), (3, "FREE_ENTRY"),
    ]

    forbidden = await client.get(f"/api/v1/competitions/{competition.id}/entries", headers=auth_headers)
    assert forbidden.status_code == 403
