from conftest import create_product, create_warehouse, stock_product


async def test_first_warehouse_becomes_default(client, owner):
    headers, _ = owner
    main = await create_warehouse(client, headers, code="main")
    assert main["code"] == "MAIN"
    assert main["is_default"] is True

    store = await create_warehouse(client, headers, name="Store", code="STORE")
    assert store["is_default"] is False

    resp = await client.patch(f"/warehouses/{store['id']}", json={"is_default": True}, headers=headers)
    assert resp.json()["is_default"] is True
    listing = (await client.get("/warehouses/", headers=headers)).json()
    assert [(w["code"], w["is_default"]) for w in listing] == [("STORE", True), ("MAIN", False)]


async def test_warehouse_validation(client, owner):
    headers, _ = owner
    await create_warehouse(client, headers)

    resp = await client.post("/warehouses/", json={"name": "Other", "code": "main"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "A warehouse with this code already exists"

    resp = await client.post("/warehouses/", json={"name": "No code"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Name and code are required"

    resp = await client.post("/warehouses/", json={"name": "X", "code": "X", "type": "spaceship"}, headers=headers)
    assert resp.status_code == 400


async def test_warehouse_with_stock_cannot_be_deleted(client, owner):
    headers, _ = owner
    warehouse = await create_warehouse(client, headers)
    product = await create_product(client, headers)
    await stock_product(client, headers, product["id"], warehouse["id"], 2)

    detail = (await client.get(f"/warehouses/{warehouse['id']}", headers=headers)).json()
    assert (detail["inventory_items"], detail["total_quantity"]) == (1, 2)
    contents = (await client.get(f"/warehouses/{warehouse['id']}/inventory", headers=headers)).json()
    assert [row["sku"] for row in contents] == ["WID-001"]

    resp = await client.delete(f"/warehouses/{warehouse['id']}", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot delete a warehouse that holds stock"

    empty = await create_warehouse(client, headers, name="Empty", code="EMPTY")
    assert (await client.delete(f"/warehouses/{empty['id']}", headers=headers)).json() == {"ok": True}
    assert (await client.get(f"/warehouses/{empty['id']}", headers=headers)).status_code == 404


async def test_company_settings(client, owner):
    headers, data = owner

    company = (await client.get("/company/", headers=headers)).json()
    assert company["id"] == data["company"]["id"]
    assert company["low_stock_threshold"] == 10

    resp = await client.patch("/company/", json={"low_stock_threshold": 3, "currency": "eur"}, headers=headers)
    assert resp.status_code == 200
    assert (resp.json()["low_stock_threshold"], resp.json()["currency"]) == (3, "EUR")

    resp = await client.patch("/company/", json={"currency": "EURO"}, headers=headers)
    assert resp.status_code == 400
