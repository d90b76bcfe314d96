import csv
import io

import pytest

from conftest import auth, create_product, create_warehouse, login, stock_product


@pytest.fixture
async def report_data(client, owner):
    headers, _ = owner
    main = await create_warehouse(client, headers)
    widget = await create_product(client, headers, price=10.0, cost=4.0, category="Hardware")
    cable = await create_product(client, headers, sku="CAB-1", name="Cable", price=2.5, cost=1.0, category="Accessories")
    await stock_product(client, headers, widget["id"], main["id"], 20)
    await stock_product(client, headers, cable["id"], main["id"], 4)
    return {"headers": headers, "main": main, "widget": widget, "cable": cable}


async def test_inventory_summary(client, report_data):
    headers = report_data["headers"]
    resp = await client.get("/reports/inventory-summary", headers=headers)
    assert resp.status_code == 200
    report = resp.json()["data"]

    assert report["summary"] == {
        "total_items": 2,
        "total_quantity": 24,
        "total_value": 210.0,
        "low_stock_count": 1,
        "low_stock_percentage": 50.0,
    }
    statuses = {row["sku"]: row["status"] for row in report["items"]}
    assert statuses == {"CAB-1": "Low Stock", "WID-001": "In Stock"}
    assert report["category_summary"]["Hardware"]["total_value"] == 200.0
    assert report["warehouse_summary"]["Main Warehouse"]["total_quantity"] == 24

    filtered = (await client.get("/reports/inventory-summary", params={"category": "hardware"}, headers=headers)).json()
    assert filtered["data"]["summary"]["total_items"] == 1


async def test_inventory_summary_csv(client, report_data):
    resp = await client.get("/reports/inventory-summary", params={"format": "csv"}, headers=report_data["headers"])
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attachment" in resp.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0] == [
        "Product", "SKU", "Category", "Warehouse", "Warehouse Code",
        "Quantity", "Threshold", "Status", "Value", "Last Updated",
    ]
    assert len(rows) == 3
    assert rows[1][:3] == ["Cable", "CAB-1", "Accessories"]


async def test_sales_summary_excludes_cancelled_orders(client, report_data):
    headers = report_data["headers"]
    widget_id = report_data["widget"]["id"]

    kept = await client.post("/orders/", json={"items": [{"product_id": widget_id, "quantity": 2}]}, headers=headers)
    dropped = await client.post("/orders/", json={"items": [{"product_id": widget_id, "quantity": 5}]}, headers=headers)
    await client.post(f"/orders/{dropped.json()['id']}/cancel", headers=headers)
    assert kept.status_code == 201

    report = (await client.get("/reports/sales-summary", headers=headers)).json()["data"]
    assert report["summary"] == {"order_count": 1, "revenue": 20.0, "average_order_value": 20.0}
    assert report["by_status"]["cancelled"]["count"] == 1
    assert report["top_products"][0]["sku"] == "WID-001"
    assert report["top_products"][0]["quantity"] == 2

    resp = await client.get(
        "/reports/sales-summary", params={"start_date": "2024-02-01", "end_date": "2024-01-01"}, headers=headers
    )
    assert resp.status_code == 400


async def test_stats_for_admin(client, report_data):
    stats = (await client.get("/reports/stats", headers=report_data["headers"])).json()["data"]
    assert stats["products"] == 2
    assert stats["inventory_items"] == 2
    assert stats["low_stock_items"] == 1
    # 20 * 4.00 + 4 * 1.00 at cost
    assert stats["inventory_value"] == 84.0
    assert stats["warehouses"][0]["total_quantity"] == 24
    assert stats["users"]["total"] == 1


async def test_search(client, report_data):
    headers = report_data["headers"]
    await client.post("/suppliers/", json={"name": "Cable Co"}, headers=headers)

    assert (await client.get("/search/", params={"q": "c"}, headers=headers)).json() == {
        "products": [], "suppliers": [], "warehouses": [],
    }
    found = (await client.get("/search/", params={"q": "cab"}, headers=headers)).json()
    assert [p["sku"] for p in found["products"]] == ["CAB-1"]
    assert [s["name"] for s in found["suppliers"]] == ["Cable Co"]


async def test_stats_are_tiered_by_role(client, report_data):
    headers = report_data["headers"]
    for email, role in (("ops@acme.com", "operator"), ("mgr@acme.com", "manager")):
        resp = await client.post(
            "/users/", json={"email": email, "password": "member-pass-1", "role": role}, headers=headers
        )
        assert resp.status_code == 201

    operator = auth(await login(client, "ops@acme.com", "member-pass-1"))
    basic = (await client.get("/reports/stats", headers=operator)).json()["data"]
    assert (basic["products"], basic["inventory_items"], basic["low_stock_items"]) == (2, 2, 1)
    assert "inventory_value" not in basic
    assert "users" not in basic

    manager = auth(await login(client, "mgr@acme.com", "member-pass-1"))
    detailed = (await client.get("/reports/stats", headers=manager)).json()["data"]
    assert detailed["inventory_value"] == 84.0
    assert "users" not in detailed
