from conftest import auth, create_product, login


async def test_category_crud(client, owner):
    headers, _ = owner

    resp = await client.post("/categories/", json={"name": " Hardware ", "description": "Tools"}, headers=headers)
    assert resp.status_code == 201
    category = resp.json()
    assert (category["name"], category["product_count"]) == ("Hardware", 0)

    resp = await client.post("/categories/", json={"name": "hardware"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Category already exists"

    resp = await client.post("/categories/", json={"name": "  "}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Category name is required"

    await client.post("/categories/", json={"name": "Accessories"}, headers=headers)
    listing = (await client.get("/categories/", headers=headers)).json()
    assert [c["name"] for c in listing] == ["Accessories", "Hardware"]

    fetched = (await client.get(f"/categories/{category['id']}", headers=headers)).json()
    assert fetched["description"] == "Tools"

    assert (await client.delete(f"/categories/{category['id']}", headers=headers)).json() == {"ok": True}
    assert (await client.get(f"/categories/{category['id']}", headers=headers)).status_code == 404


async def test_rename_category_renames_products(client, owner):
    headers, _ = owner
    category = (await client.post("/categories/", json={"name": "Hardware"}, headers=headers)).json()
    product = await create_product(client, headers, category="Hardware")

    resp = await client.put(f"/categories/{category['id']}", json={"name": "Tools"}, headers=headers)
    assert resp.status_code == 200
    assert (resp.json()["name"], resp.json()["product_count"]) == ("Tools", 1)
    assert (await client.get(f"/products/{product['id']}", headers=headers)).json()["category"] == "Tools"

    await client.post("/categories/", json={"name": "Spares"}, headers=headers)
    resp = await client.put(f"/categories/{category['id']}", json={"name": "spares"}, headers=headers)
    assert resp.status_code == 409
    resp = await client.put(f"/categories/{category['id']}", json={"description": "no name"}, headers=headers)
    assert resp.status_code == 400


async def test_category_in_use_cannot_be_deleted(client, owner):
    headers, _ = owner
    category = (await client.post("/categories/", json={"name": "Hardware"}, headers=headers)).json()
    await create_product(client, headers, category="hardware")

    resp = await client.delete(f"/categories/{category['id']}", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"].startswith("Cannot delete category")


async def test_only_admins_change_categories(client, owner):
    headers, _ = owner
    await client.post(
        "/users/",
        json={"email": "mgr@acme.com", "password": "member-pass-1", "name": "Manager", "role": "manager"},
        headers=headers,
    )
    manager = auth(await login(client, "mgr@acme.com", "member-pass-1"))

    resp = await client.post("/categories/", json={"name": "Hardware"}, headers=manager)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "You don't have permission to modify categories"
    assert (await client.get("/categories/", headers=manager)).status_code == 200
