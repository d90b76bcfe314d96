import pytest

from conftest import auth, create_product, login, open_pin_session


async def _add_member(client, headers, email, role, password="member-pass-1"):
    resp = await client.post(
        "/users/", json={"email": email, "password": password, "name": role.title(), "role": role}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_admin_manages_company_users(client, owner):
    headers, data = owner
    member = await _add_member(client, headers, "ops@acme.com", "operator")
    assert member["company_id"] == data["company"]["id"]
    assert member["role"] == "operator"

    resp = await client.post(
        "/users/", json={"email": "ops@acme.com", "password": "member-pass-1", "role": "viewer"}, headers=headers
    )
    assert resp.status_code == 409

    listing = (await client.get("/users/", headers=headers)).json()
    assert sorted(u["email"] for u in listing) == ["ops@acme.com", "owner@acme.com"]

    resp = await client.patch(f"/users/{member['id']}", json={"role": "manager"}, headers=headers)
    assert resp.json()["role"] == "manager"
    resp = await client.patch(f"/users/{member['id']}", json={"role": "overlord"}, headers=headers)
    assert resp.status_code == 400

    assert (await client.delete(f"/users/{member['id']}", headers=headers)).json() == {"ok": True}
    assert (await client.get(f"/users/{member['id']}", headers=headers)).status_code == 404


async def test_admin_cannot_demote_or_delete_self(client, owner):
    headers, data = owner
    me = data["user"]["id"]

    resp = await client.patch(f"/users/{me}", json={"role": "viewer"}, headers=headers)
    assert resp.status_code == 400
    resp = await client.patch(f"/users/{me}", json={"is_active": False}, headers=headers)
    assert resp.status_code == 400
    resp = await client.delete(f"/users/{me}", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "You cannot delete your own account"


async def test_viewer_is_read_only(client, owner):
    headers, _ = owner
    await create_product(client, headers)
    await _add_member(client, headers, "viewer@acme.com", "viewer")
    token = await login(client, "viewer@acme.com", "member-pass-1")
    viewer = auth(token, await open_pin_session(client, token))

    assert (await client.get("/products/", headers=viewer)).status_code == 200
    assert (await client.get("/inventory/", headers=viewer)).status_code == 200

    resp = await client.post("/products/", json={"name": "Nope", "sku": "NOPE"}, headers=viewer)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "You don't have permission to modify products"

    assert (await client.post("/warehouses/", json={"name": "W", "code": "W"}, headers=viewer)).status_code == 403
    assert (await client.get("/users/", headers=viewer)).status_code == 403
    assert (await client.patch("/company/", json={"name": "Mine"}, headers=viewer)).status_code == 403


@pytest.mark.parametrize(
    "role,path,expected",
    [
        ("operator", "/reports/stats", 200),
        ("operator", "/reports/inventory-summary", 403),
        ("operator", "/suppliers/", 200),
        ("manager", "/reports/stats", 200),
        ("manager", "/users/", 200),
    ],
)
async def test_role_permissions(client, owner, role, path, expected):
    headers, _ = owner
    await _add_member(client, headers, f"{role}@acme.com", role)
    token = await login(client, f"{role}@acme.com", "member-pass-1")
    assert (await client.get(path, headers=auth(token))).status_code == expected


async def test_update_me(client, owner):
    headers, _ = owner
    resp = await client.patch("/users/me", json={"name": "Olivia Owner"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Olivia Owner"

    resp = await client.patch("/users/me", json={"password": "fresh-pass-2"}, headers=headers)
    assert resp.status_code == 200
    await login(client, "owner@acme.com", "fresh-pass-2")

    resp = await client.patch("/users/me", json={"password": "123"}, headers=headers)
    assert resp.status_code == 400
