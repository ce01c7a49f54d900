"""
Tests for checkout and payment: orders freeze a reservation, payment
completion turns it into SOLD tickets.
"""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from prizedraw.core.config import get_settings
from prizedraw.core.exceptions import PaymentConflictError
from prizedraw.models.audit_log import AuditAction, AuditLog
from prizedraw.models.order import PaymentStatus
from prizedraw.services import order_service, ticket_pool


def payment_headers() -> dict:
    return {"X-Payment-Secret": get_settings().PAYMENT_WEBHOOK_SECRET}


async def reserve(client, headers, competition_id, quantity):
    response = await client.post(
        "/api/v1/tickets/reserve",
        json={"competition_id": competition_id, "quantity": quantity},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


async def checkout(client, headers, competition_id):
    response = await client.post("/api/v1/orders/", json={"competition_id": competition_id}, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_order_number_format():
    number = order_service.generate_order_number(now=datetime(2026, 3, 9, tzinfo=timezone.utc))
    assert re.fullmatch(r"WTC-20260309-[A-Z0-9]{4}", number)


@pytest.mark.asyncio
async def test_create_order_from_reservation(client: AsyncClient, auth_headers, competition, test_user):
    await reserve(client, auth_headers, competition.id, 10)

    order = await checkout(client, auth_headers, competition.id)

    assert order["payment_status"] == "PENDING"
    assert order["user_id"] == test_user.id
    assert order["ticket_numbers"] == list(range(1, 11))
    assert order["bonus_ticket_numbers"] == [11]
    assert order["ticket_count"] == 10
    assert order["bonus_ticket_count"] == 1
    # Bonus tickets are free
    assert Decimal(order["total_amount"]) == Decimal("25.00")
    assert order["currency"] == "GBP"
    assert order["order_number"].startswith("WTC-")


@pytest.mark.asyncio
async def test_order_without_reservation(client: AsyncClient, auth_headers, competition):
    response = await client.post("/api/v1/orders/", json={"competition_id": competition.id}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "NO_RESERVATION"


@pytest.mark.asyncio
async def test_payment_success_sells_tickets(client: AsyncClient, auth_headers, db_session, competition):
    await reserve(client, auth_headers, competition.id, 3)
    order = await checkout(client, auth_headers, competition.id)

    response = await client.post(
        f"/api/v1/orders/{order['id']}/payment",
        json={"succeeded": True, "payment_reference": "pi_123"},
        headers=payment_headers(),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["payment_status"] == "SUCCEEDED"
    assert data["payment_reference"] == "pi_123"

    counts = await ticket_pool.count_by_status(db_session, competition.id, datetime.now(timezone.utc))
    assert counts.sold == 3
    assert counts.reserved == 0

    # Provider retries are harmless
    repeat = await client.post(
        f"/api/v1/orders/{order['id']}/payment", json={"succeeded": True}, headers=payment_headers()
    )
    assert repeat.status_code == 200
    assert repeat.json()["payment_status"] == "SUCCEEDED"

    orders = (await client.get("/api/v1/orders/", headers=auth_headers)).json()
    assert [o["payment_status"] for o in orders] == ["SUCCEEDED"]


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"X-Payment-Secret": "guess"}])
async def test_payment_requires_secret(client: AsyncClient, auth_headers, competition, headers):
    await reserve(client, auth_headers, competition.id, 1)
    order = await checkout(client, auth_headers, competition.id)

    response = await client.post(
        f"/api/v1/orders/{order['id']}/payment", json={"succeeded": True}, headers=headers
    )
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_PAYMENT_SECRET"


@pytest.mark.asyncio
async def test_payment_failure_releases_tickets(client: AsyncClient, auth_headers, competition):
    await reserve(client, auth_headers, competition.id, 2)
    order = await checkout(client, auth_headers, competition.id)

    response = await client.post(
        f"/api/v1/orders/{order['id']}/payment", json={"succeeded": False}, headers=payment_headers()
    )

    assert response.json()["payment_status"] == "FAILED"
    status = (await client.post("/api/v1/tickets/status", json={"competition_id": competition.id})).json()
    assert status["available_count"] == 100


@pytest.mark.asyncio
async def test_checkout_then_cancel(client: AsyncClient, auth_headers, competition):
    await reserve(client, auth_headers, competition.id, 2)
    order = await checkout(client, auth_headers, competition.id)

    processing = await client.post(f"/api/v1/orders/{order['id']}/checkout", headers=auth_headers)
    assert processing.json()["payment_status"] == "PROCESSING"

    cancelled = await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=auth_headers)
    assert cancelled.json()["payment_status"] == "CANCELLED"

    status = (await client.post("/api/v1/tickets/status", json={"competition_id": competition.id})).json()
    assert status["available_count"] == 100

    # Money arriving for a cancelled order needs reconciling
    late = await client.post(
        f"/api/v1/orders/{order['id']}/payment",
        json={"succeeded": True, "payment_reference": "pi_after_cancel"},
        headers=payment_headers(),
    )
    assert late.status_code == 409
    assert late.json()["code"] == "PAYMENT_CONFLICT"
    assert late.json()["ticket_numbers"] == [1, 2]


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_order(client: AsyncClient, auth_headers, headers_for, competition, make_user):
    await reserve(client, auth_headers, competition.id, 1)
    order = await checkout(client, auth_headers, competition.id)
    intruder = headers_for(await make_user())

    assert (await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=intruder)).status_code == 403
    assert (await client.post(f"/api/v1/orders/{order['id']}/checkout", headers=intruder)).status_code == 403


@pytest.mark.asyncio
async def test_new_checkout_cancels_overlapping_order(client: AsyncClient, auth_headers, competition):
    await reserve(client, auth_headers, competition.id, 2)
    first = await checkout(client, auth_headers, competition.id)
    await reserve(client, auth_headers, competition.id, 3)
    second = await checkout(client, auth_headers, competition.id)

    orders = {o["id"]: o for o in (await client.get("/api/v1/orders/", headers=auth_headers)).json()}
    assert orders[first["id"]]["payment_status"] == "CANCELLED"
    assert orders[second["id"]]["payment_status"] == "PENDING"
    assert orders[second["id"]]["ticket_numbers"] == [1, 2, 3]


@pytest.mark.asyncio
async def test_refund_is_admin_only(client: AsyncClient, auth_headers, admin_headers, competition):
    await reserve(client, auth_headers, competition.id, 1)
    order = await checkout(client, auth_headers, competition.id)
    await client.post(f"/api/v1/orders/{order['id']}/payment", json={"succeeded": True}, headers=payment_headers())

    assert (await client.post(f"/api/v1/orders/{order['id']}/refund", headers=auth_headers)).status_code == 403
    response = await client.post(f"/api/v1/orders/{order['id']}/refund", headers=admin_headers)
    assert response.json()["payment_status"] == "REFUNDED"


@pytest.mark.asyncio
async def test_payment_after_reservation_expired(db_session, allocator, competition, test_user):
    await allocator.reserve(db_session, competition.id, test_user.id, quantity=2)
    order = await order_service.create_order(db_session, allocator, competition.id, test_user.id)
    order_id = order.id

    with pytest.raises(PaymentConflictError):
        await order_service.complete_payment(
            db_session, allocator, order_id,
            payment_reference="pi_late",
            now=datetime.now(timezone.utc) + timedelta(minutes=11),
        )

    order = await order_service.get_order(db_session, order_id)
    assert order.payment_status == PaymentStatus.PROCESSING
    assert order.payment_reference == "pi_late"
    counts = await ticket_pool.count_by_status(db_session, competition.id, datetime.now(timezone.utc))
    assert counts.sold == 0


@pytest.mark.asyncio
async def test_payment_conflict_over_http(client: AsyncClient, auth_headers, db_session, competition, test_user):
    await reserve(client, auth_headers, competition.id, 2)
    order = await checkout(client, auth_headers, competition.id)
    # Sweep ran early / another worker released the hold
    await ticket_pool.release(db_session, competition.id, [1, 2])
    await db_session.commit()

    response = await client.post(
        f"/api/v1/orders/{order['id']}/payment", json={"succeeded": True}, headers=payment_headers()
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "PAYMENT_CONFLICT"
    assert body["ticket_numbers"] == [1, 2]


@pytest.mark.asyncio
async def test_payment_after_cancel_is_conflict(db_session, allocator, competition, test_user):
    await allocator.reserve(db_session, competition.id, test_user.id, quantity=2)
    order = await order_service.create_order(db_session, allocator, competition.id, test_user.id)
    order_id = order.id
    await order_service.mark_processing(db_session, order_id)
    await order_service.cancel_order(db_session, allocator, order_id, test_user.id)

    with pytest.raises(PaymentConflictError) as exc:
        await order_service.complete_payment(db_session, allocator, order_id, payment_reference="pi_123")
    assert exc.value.ticket_numbers == [1, 2]

    order = await order_service.get_order(db_session, order_id)
    assert order.payment_status == PaymentStatus.CANCELLED
    assert order.payment_reference == "pi_123"
    conflicts = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.PAYMENT_CONFLICT))
    ).scalars().all()
    assert [(a.entity_id, a.details["payment_reference"]) for a in conflicts] == [(order_id, "pi_123")]
    counts = await ticket_pool.count_by_status(db_session, competition.id, datetime.now(timezone.utc))
    assert counts.sold == 0


@pytest.mark.asyncio
async def test_payment_for_order_cancelled_by_another_checkout(db_session, allocator, competition, make_user):
    alice, bob = await make_user(), await make_user()
    await allocator.reserve(db_session, competition.id, alice.id, ticket_numbers=[1, 2])
    stale = await order_service.create_order(db_session, allocator, competition.id, alice.id)
    stale_id = stale.id
    # Alice's hold is gone and Bob checks out the same numbers
    await allocator.release(db_session, competition.id, alice.id)
    await allocator.reserve(db_session, competition.id, bob.id, ticket_numbers=[1, 2])
    await order_service.create_order(db_session, allocator, competition.id, bob.id)
    assert (await order_service.get_order(db_session, stale_id)).payment_status == PaymentStatus.CANCELLED

    with pytest.raises(PaymentConflictError):
        await order_service.complete_payment(db_session, allocator, stale_id, payment_reference="pi_alice")

    held = await ticket_pool.get_user_reserved_numbers(db_session, competition.id, bob.id, datetime.now(timezone.utc))
    assert held == [1, 2]


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", ["failed", "cancelled"])
async def test_stale_order_leaves_newer_reservation_alone(db_session, allocator, store, competition, test_user, outcome):
    await allocator.reserve(db_session, competition.id, test_user.id, ticket_numbers=[1, 2])
    stale = await order_service.create_order(db_session, allocator, competition.id, test_user.id)
    stale_id = stale.id
    await allocator.reserve(db_session, competition.id, test_user.id, ticket_numbers=[5, 6])
    live = await order_service.create_order(db_session, allocator, competition.id, test_user.id)
    live_id = live.id
    assert (await order_service.get_order(db_session, stale_id)).payment_status == PaymentStatus.PENDING

    if outcome == "failed":
        await order_service.fail_payment(db_session, allocator, stale_id)
    else:
        await order_service.cancel_order(db_session, allocator, stale_id, test_user.id)

    status = await allocator.get_status(db_session, competition.id, test_user.id)
    assert status.user_reservation.ticket_numbers == (5, 6)
    assert (await store.get(competition.id, test_user.id)).ticket_numbers == (5, 6)

    paid = await order_service.complete_payment(db_session, allocator, live_id, payment_reference="pi_live")
    assert paid.payment_status == PaymentStatus.SUCCEEDED
