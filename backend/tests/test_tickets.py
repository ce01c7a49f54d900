"""
Tests for ticket endpoints: reserve, status, release, free entry.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_reserve_tickets(client: AsyncClient, auth_headers, competition, test_user):
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "quantity": 3},
        headers=auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["competition_id"] == competition.id
    assert data["user_id"] == test_user.id
    assert data["ticket_numbers"] == [1, 2, 3]
    assert data["bonus_numbers"] == []
    assert data["expires_at"] > data["reserved_at"]


@pytest.mark.asyncio
async def test_reserve_with_bonus(client: AsyncClient, auth_headers, competition):
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "quantity": 20},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert response.json()["bonus_numbers"] == [21, 22, 23]


@pytest.mark.asyncio
async def test_reserve_requires_auth(client: AsyncClient, competition):
    response = await client.post(
        "/api/v1/tickets/reserve", json={"competition_id": competition.id, "quantity": 1}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body,status,code",
    [
        ({"quantity": 0}, 400, "INVALID_QUANTITY"),
        ({"quantity": 500}, 400, "INVALID_QUANTITY"),
        ({"quantity": 2, "ticket_numbers": [1, 2]}, 400, "INVALID_REQUEST"),
        ({"ticket_numbers": [1, 1]}, 400, "INVALID_TICKET_NUMBERS"),
        ({"ticket_numbers": [101]}, 400, "INVALID_TICKET_NUMBERS"),
    ],
)
async def test_reserve_rejections(client: AsyncClient, auth_headers, competition, body, status, code):
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, **body},
        headers=auth_headers,
    )
    assert response.status_code == status
    assert response.json()["code"] == code


@pytest.mark.asyncio
async def test_reserve_sold_out_is_conflict(client: AsyncClient, auth_headers, make_competition):
    competition = await make_competition(total_tickets=2)
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "quantity": 3},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SOLD_OUT"


@pytest.mark.asyncio
async def test_reserve_taken_numbers_is_conflict(client: AsyncClient, auth_headers, headers_for, competition, make_user):
    other = await make_user()
    first = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "ticket_numbers": [7]},
        headers=headers_for(other),
    )
    assert first.status_code == 201

    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "ticket_numbers": [7, 8]},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "TICKETS_UNAVAILABLE"


@pytest.mark.asyncio
async def test_reserve_unknown_competition(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": 9999, "quantity": 1},
        headers=auth_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_shows_own_reservation(client: AsyncClient, auth_headers, competition):
    await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "quantity": 4},
        headers=auth_headers,
    )

    response = await client.post(
        "/api/v1/tickets/status", json={"competition_id": competition.id}, headers=auth_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_tickets"] == 100
    assert data["available_count"] == 96
    assert data["unavailable_count"] == 4
    assert data["user_reservation"]["ticket_numbers"] == [1, 2, 3, 4]

    anonymous = (await client.post("/api/v1/tickets/status", json={"competition_id": competition.id})).json()
    assert anonymous["available_count"] == 96
    assert anonymous["user_reservation"] is None


@pytest.mark.asyncio
async def test_release_is_idempotent(client: AsyncClient, auth_headers, competition):
    await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition.id, "quantity": 2},
        headers=auth_headers,
    )

    first = await client.post(
        "/api/v1/tickets/release", json={"competition_id": competition.id}, headers=auth_headers
    )
    second = await client.post(
        "/api/v1/tickets/release", json={"competition_id": competition.id}, headers=auth_headers
    )

    assert first.json() == {"competition_id": competition.id, "released": 2}
    assert second.json() == {"competition_id": competition.id, "released": 0}

    status = (await client.post("/api/v1/tickets/status", json={"competition_id": competition.id})).json()
    assert status["available_count"] == 100


@pytest.mark.asyncio
async def test_free_entry_admin_only(client: AsyncClient, admin_headers, auth_headers, competition, test_user):
    body = {"competition_id": competition.id, "user_id": test_user.id, "quantity": 2}

    forbidden = await client.post("/api/v1/tickets/free-entry", json=body, headers=auth_headers)
    assert forbidden.status_code == 403

    response = await client.post("/api/v1/tickets/free-entry", json=body, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["ticket_numbers"] == [1, 2]
