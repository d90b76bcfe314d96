from urllib.parse import parse_qs, urlparse

from sqlalchemy import select

from conftest import TEST_PIN, auth, open_pin_session, signup
from db import AuditLog
from routers.pin import SESSION_COOKIE


async def test_inventory_requires_pin_session(client):
    data = await signup(client)
    headers = auth(data["access_token"])

    resp = await client.get("/inventory/", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "PIN verification required"

    session_token = await open_pin_session(client, data["access_token"])
    resp = await client.get("/inventory/", headers=auth(data["access_token"], session_token))
    assert resp.status_code == 200
    assert resp.json()["data"] == []


async def test_pin_cookie_opens_inventory(client):
    data = await signup(client)
    headers = auth(data["access_token"])
    await client.post("/pin/setup", json={"pin": TEST_PIN}, headers=headers)

    resp = await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)
    assert resp.status_code == 200
    assert SESSION_COOKIE in resp.cookies

    # The client jar now carries the cookie.
    assert (await client.get("/inventory/", headers=headers)).status_code == 200
    status = await client.get("/pin/status", headers=headers)
    assert status.json()["verified"] is True

    await client.post("/pin/logout", headers=headers)
    client.cookies.clear()
    assert (await client.get("/inventory/", headers=headers)).status_code == 403


async def test_pin_setup_validation(client):
    data = await signup(client)
    headers = auth(data["access_token"])

    resp = await client.post("/pin/setup", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing PIN"

    for bad in ("12345", "1234567", "12ab56"):
        resp = await client.post("/pin/setup", json={"pin": bad}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "PIN must be exactly 6 digits"

    assert (await client.get("/pin/setup", headers=headers)).json() == {"has_pin": False}
    resp = await client.post("/pin/setup", json={"pin": "654321"}, headers=headers)
    assert resp.json() == {"ok": True, "message": "PIN saved"}
    assert (await client.get("/pin/setup", headers=headers)).json() == {"has_pin": True}


async def test_validate_without_pin_needs_setup(client):
    data = await signup(client)
    resp = await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=auth(data["access_token"]))
    assert resp.status_code == 403
    assert resp.json() == {"detail": "PIN not set", "needs_setup": True}


async def test_invalid_pin_then_rate_limited(client):
    data = await signup(client)
    headers = auth(data["access_token"])
    await client.post("/pin/setup", json={"pin": TEST_PIN}, headers=headers)

    for _ in range(5):
        resp = await client.post("/pin/validate", json={"pin": "000000"}, headers=headers)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid PIN"

    # Even the right PIN is refused once the window is exhausted.
    resp = await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)
    assert resp.status_code == 429
    assert resp.json()["detail"] == "Too many attempts. Try later."


async def test_forgot_and_reset_pin(client, outbox):
    data = await signup(client)
    token = data["access_token"]
    old_session = await open_pin_session(client, token)

    resp = await client.post("/pin/forgot", json={"email": "owner@acme.com"})
    assert resp.status_code == 200
    assert "reset_link" in resp.json()
    kind, _, link = outbox[-1]
    assert kind == "pin_reset"
    reset_token = parse_qs(urlparse(link).query)["token"][0]

    resp = await client.post(
        "/pin/reset", json={"email": "owner@acme.com", "token": "bogus", "pin": "999999"}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired reset token"

    resp = await client.post(
        "/pin/reset", json={"email": "owner@acme.com", "token": reset_token, "pin": "999999"}
    )
    assert resp.status_code == 200

    # Sessions opened with the old PIN are gone.
    assert (await client.get("/inventory/", headers=auth(token, old_session))).status_code == 403
    assert (await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=auth(token))).status_code == 401
    assert (await client.post("/pin/validate", json={"pin": "999999"}, headers=auth(token))).status_code == 200


async def test_forgot_pin_requires_email_when_anonymous(client):
    resp = await client.post("/pin/forgot", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email is required"

    resp = await client.post("/pin/forgot", json={"email": "ghost@acme.com"})
    assert resp.status_code == 404


async def _audit_actions(session_maker):
    async with session_maker() as session:
        res = await session.execute(select(AuditLog.action).order_by(AuditLog.created_at.asc()))
        return list(res.scalars().all())


async def test_pin_outcomes_are_audited(client, session_maker):
    data = await signup(client)
    headers = auth(data["access_token"])
    await client.post("/pin/setup", json={"pin": TEST_PIN}, headers=headers)

    assert (await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)).status_code == 200
    assert await _audit_actions(session_maker) == ["pin_valid"]

    client.cookies.clear()
    for _ in range(4):
        await client.post("/pin/validate", json={"pin": "000000"}, headers=headers)
    assert (await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)).status_code == 429

    actions = await _audit_actions(session_maker)
    assert actions.count("pin_invalid") == 4
    assert actions[-1] == "pin_rate_limited"


async def test_validate_missing_pin_and_setup_keep_attempts(client, session_maker):
    data = await signup(client)
    headers = auth(data["access_token"])

    resp = await client.post("/pin/validate", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing PIN"

    for _ in range(6):
        resp = await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)
        assert resp.json()["needs_setup"] is True
    assert (await _audit_actions(session_maker)) == ["pin_needs_setup"] * 6

    await client.post("/pin/setup", json={"pin": TEST_PIN}, headers=headers)
    assert (await client.post("/pin/validate", json={"pin": TEST_PIN}, headers=headers)).status_code == 200
