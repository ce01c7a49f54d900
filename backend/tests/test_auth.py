"""
Auth endpoint tests: registration, login and /auth/me.
"""

import pytest
from httpx import AsyncClient


def registration(**overrides) -> dict:
    body = {"email": "new@example.com", "username": "newuser", "password": "securepassword123"}
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    response = await client.post("/api/v1/auth/register", json=registration())

    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["username"] == "newuser"
    assert data["is_active"] is True
    assert data["is_admin"] is False
    assert "hashed_password" not in data


@pytest.mark.asyncio
async def test_register_cannot_grant_admin(client: AsyncClient):
    response = await client.post("/api/v1/auth/register", json=registration(is_admin=True))

    assert response.status_code == 201
    assert response.json()["is_admin"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"email": "test@example.com"}, {"username": "testuser"}],
    ids=["email", "username"],
)
async def test_register_duplicate(client: AsyncClient, test_user, overrides):
    response = await client.post("/api/v1/auth/register", json=registration(**overrides))

    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_EXISTS"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"password": "short"}, {"username": "no spaces"}, {"email": "not-an-email"}],
)
async def test_register_validation(client: AsyncClient, overrides):
    response = await client.post("/api/v1/auth/register", json=registration(**overrides))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_then_me(client: AsyncClient, admin_user):
    response = await client.post("/api/v1/auth/login", json={
        "email": admin_user.email,
        "password": "testpassword123",
    })
    assert response.status_code == 200
    token = response.json()
    assert token["token_type"] == "bearer"

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == admin_user.id
    assert me.json()["is_admin"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password",
    [("test@example.com", "wrongpassword"), ("nobody@example.com", "anypassword123")],
    ids=["wrong-password", "unknown-email"],
)
async def test_login_rejected(client: AsyncClient, test_user, email, password):
    response = await client.post("/api/v1/auth/login", json={"email": email, "password": password})

    assert response.status_code == 401
    assert response.json()["code"] == "NOT_AUTHENTICATED"


@pytest.mark.asyncio
async def test_deactivated_account(client: AsyncClient, db_session, test_user, auth_headers):
    test_user.is_active = False
    await db_session.commit()

    login = await client.post("/api/v1/auth/login", json={
        "email": "test@example.com",
        "password": "testpassword123",
    })
    assert login.status_code == 403

    # Tokens issued before deactivation stop working too
    me = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert me.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    assert (await client.get("/api/v1/auth/me")).status_code == 401
    bogus = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bogus.status_code == 401
