"""
Pytest fixtures: an in-memory SQLite database per test, the FastAPI app wired to it,
and helpers for signing up, logging in and opening a PIN session.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["MAIL_SUPPRESS_SEND"] = "true"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core import mailer
from db import Base, get_async_session
from main import app
from routers.pin import SESSION_HEADER, pin_limiter

TEST_PIN = "123456"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def outbox(monkeypatch):
    """Captured mail: (kind, recipient, payload) tuples instead of SMTP."""
    sent = []

    def _capture(kind):
        async def _send(to, payload):
            sent.append((kind, to, payload))
        return _send

    monkeypatch.setattr(mailer, "send_login_code", _capture("login_code"))
    monkeypatch.setattr(mailer, "send_magic_link", _capture("magic_link"))
    monkeypatch.setattr(mailer, "send_pin_reset", _capture("pin_reset"))
    monkeypatch.setattr(mailer, "send_password_reset", _capture("password_reset"))
    return sent


@pytest.fixture
async def client(session_maker, outbox):
    async def _get_test_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = _get_test_session
    pin_limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    pin_limiter.reset()


def auth(token: str, pin_session: str = None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if pin_session:
        headers[SESSION_HEADER] = pin_session
    return headers


async def signup(client, email="owner@acme.com", company="Acme Corp", password="s3cret-pass", name="Olive Owner"):
    resp = await client.post(
        "/auth/signup",
        json={"company_name": company, "name": name, "email": email, "password": password},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def login(client, email, password) -> str:
    resp = await client.post("/auth/jwt/login", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


async def open_pin_session(client, token: str, pin: str = TEST_PIN) -> str:
    resp = await client.post("/pin/setup", json={"pin": pin}, headers=auth(token))
    assert resp.status_code == 200, resp.text
    resp = await client.post("/pin/validate", json={"pin": pin}, headers=auth(token))
    assert resp.status_code == 200, resp.text
    # Tests pass the session explicitly so several users can share one client.
    client.cookies.clear()
    return resp.json()["session_token"]


@pytest.fixture
async def owner(client):
    """Signed-up company admin with an open PIN session: (headers, signup payload)."""
    data = await signup(client)
    session_token = await open_pin_session(client, data["access_token"])
    return auth(data["access_token"], session_token), data


async def create_warehouse(client, headers, name="Main Warehouse", code="MAIN"):
    resp = await client.post("/warehouses/", json={"name": name, "code": code}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_product(client, headers, sku="WID-001", name="Widget", price=10.0, cost=4.0, **extra):
    body = {"sku": sku, "name": name, "price": price, "cost": cost, **extra}
    resp = await client.post("/products/", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def stock_product(client, headers, product_id, warehouse_id, quantity):
    resp = await client.post(
        "/inventory/",
        json={"product_id": product_id, "warehouse_id": warehouse_id, "quantity": quantity},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
