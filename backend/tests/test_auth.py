"""Tests for auth signup/login and role enforcement."""

import pytest

from dineflow import config


@pytest.mark.asyncio
async def test_signup_login_flow(client):
    signup_payload = {
        "username": "admin_user",
        "password": "secret123",
        "roles": ["admin"]
    }

    signup_response = await client.post("/api/auth/signup", json=signup_payload)
    assert signup_response.status_code == 200
    signup_data = signup_response.json()
    assert signup_data["username"] == "admin_user"
    assert "admin" in signup_data["roles"]

    login_response = await client.post(
        "/api/auth/login",
        json={"username": "admin_user", "password": "secret123"}
    )
    assert login_response.status_code == 200
    login_data = login_response.json()
    assert "access_token" in login_data
    assert login_data["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_wrong_password_rejected(client):
    await client.post("/api/auth/signup", json={"username": "cook", "password": "secret123", "roles": ["kitchen"]})
    response = await client.post("/api/auth/login", json={"username": "cook", "password": "nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_duplicate_username(client):
    payload = {"username": "dup", "password": "secret123", "roles": ["waiter"]}
    assert (await client.post("/api/auth/signup", json=payload)).status_code == 200
    assert (await client.post("/api/auth/signup", json=payload)).status_code == 409


@pytest.mark.asyncio
async def test_unknown_role_rejected(client):
    response = await client.post(
        "/api/auth/signup", json={"username": "x", "password": "secret123", "roles": ["sommelier"]}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_signup_closed_outside_dev_once_users_exist(client, monkeypatch):
    monkeypatch.setattr(config, "IS_DEV", False)

    first = await client.post("/api/auth/signup", json={"username": "owner", "password": "secret123", "roles": ["admin"]})
    assert first.status_code == 200

    second = await client.post("/api/auth/signup", json={"username": "late", "password": "secret123"})
    assert second.status_code == 403


@pytest.mark.asyncio
async def test_user_without_roles_is_not_staff(client, seeded):
    await client.post("/api/auth/signup", json={"username": "basic_user", "password": "secret123", "roles": []})
    login_response = await client.post(
        "/api/auth/login",
        json={"username": "basic_user", "password": "secret123"}
    )
    token = login_response.json()["access_token"]

    response = await client.post(
        f"/api/tables/{seeded['tables'][0]}/claim",
        headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_can_create_tables(client, admin_headers):
    response = await client.post(
        "/api/tables", json={"table_number": "Bar-1", "capacity": 2}, headers=admin_headers
    )
    assert response.status_code == 201
    assert response.json()["table_number"] == "Bar-1"


@pytest.mark.asyncio
async def test_waiter_cannot_create_tables(client, waiter_headers):
    response = await client.post(
        "/api/tables", json={"table_number": "Bar-2"}, headers=waiter_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_garbage_token_rejected(client):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
