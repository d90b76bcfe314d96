from urllib.parse import parse_qs, urlparse

from conftest import auth, login, signup
from core.config import settings


async def test_signup_creates_company_and_admin(client):
    data = await signup(client)

    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "owner@acme.com"
    assert data["user"]["role"] == "admin"
    assert data["company"]["name"] == "Acme Corp"
    assert data["company"]["slug"] == "acme-corp"
    assert data["user"]["company_id"] == data["company"]["id"]

    me = await client.get("/users/me", headers=auth(data["access_token"]))
    assert me.status_code == 200
    assert me.json()["company"]["id"] == data["company"]["id"]
    assert me.json()["initials"] == "OO"


async def test_signup_duplicates_conflict(client):
    await signup(client)

    resp = await client.post(
        "/auth/signup",
        json={"company_name": "Other", "name": "X", "email": "owner@acme.com", "password": "s3cret-pass"},
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == "A user with this email already exists"

    resp = await client.post(
        "/auth/signup",
        json={"company_name": "acme corp", "name": "Y", "email": "other@acme.com", "password": "s3cret-pass"},
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Company already exists"


async def test_signup_validation(client):
    resp = await client.post("/auth/signup", json={"company_name": "", "name": "A", "email": "a@b.com", "password": "xx"})
    assert resp.status_code == 400

    resp = await client.post(
        "/auth/signup",
        json={"company_name": "Shorty", "name": "A", "email": "a@shorty.com", "password": "abc"},
    )
    assert resp.status_code == 400
    assert "at least" in resp.json()["detail"]


async def test_password_login_and_unauthenticated_access(client):
    await signup(client)
    token = await login(client, "owner@acme.com", "s3cret-pass")

    assert (await client.get("/users/me", headers=auth(token))).status_code == 200
    assert (await client.get("/users/me")).status_code == 401

    bad = await client.post("/auth/jwt/login", data={"username": "owner@acme.com", "password": "wrong-pass"})
    assert bad.status_code == 400


async def test_otp_login_flow(client, outbox):
    await signup(client)

    resp = await client.post("/auth/otp/request", json={"email": "owner@acme.com"})
    assert resp.status_code == 202
    kind, to, code = outbox[-1]
    assert kind == "login_code" and to == "owner@acme.com"
    assert len(code) == 6 and code.isdigit()

    wrong = "000000" if code != "000000" else "111111"
    resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": wrong})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid code"

    resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": code})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert (await client.get("/users/me", headers=auth(token))).status_code == 200

    # Codes are single use.
    resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": code})
    assert resp.status_code == 401


async def test_new_otp_invalidates_previous_code(client, outbox):
    await signup(client)
    await client.post("/auth/otp/request", json={"email": "owner@acme.com"})
    first = outbox[-1][2]
    await client.post("/auth/otp/request", json={"email": "owner@acme.com"})
    second = outbox[-1][2]

    if first != second:
        resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": first})
        assert resp.status_code == 401
    resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": second})
    assert resp.status_code == 200


async def test_otp_locked_after_max_attempts(client, outbox):
    await signup(client)
    await client.post("/auth/otp/request", json={"email": "owner@acme.com"})
    code = outbox[-1][2]
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(settings.otp_max_attempts):
        resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": wrong})
        assert resp.json()["detail"] == "Invalid code"

    resp = await client.post("/auth/otp/verify", json={"email": "owner@acme.com", "code": code})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired code"


async def test_otp_unknown_email(client):
    resp = await client.post("/auth/otp/request", json={"email": "nobody@acme.com"})
    assert resp.status_code == 404


async def test_magic_link_flow(client, outbox):
    await signup(client)

    resp = await client.post("/auth/magic-link/request", json={"email": "owner@acme.com"})
    assert resp.status_code == 202
    kind, _, link = outbox[-1]
    assert kind == "magic_link"
    token = parse_qs(urlparse(link).query)["token"][0]

    resp = await client.post("/auth/magic-link/verify", json={"token": token})
    assert resp.status_code == 200
    assert resp.json()["token_type"] == "bearer"

    resp = await client.post("/auth/magic-link/verify", json={"token": token})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired link"


async def test_magic_link_rejects_unknown_token(client):
    resp = await client.post("/auth/magic-link/verify", json={"token": "not-a-real-token"})
    assert resp.status_code == 401
