"""
HTTP API tests (Flask test client).

Verifies status mapping:
- 400 for malformed input, 404 for unknown references,
  409 for insufficient stock / invariant and state conflicts
"""

import pytest


@pytest.fixture
def stocked(db_session, client, product, location_a):
    """Receive 100 units of lot L1 into location A through the API."""
    resp = client.post("/api/receipts/1/receive", json={
        "lines": [{
            "product_id": product.id,
            "location_id": location_a.id,
            "quantity": 100,
            "lot_number": "L1",
            "expiration_date": "2027-01-31",
        }],
        "actor_id": 3,
    })
    assert resp.status_code == 201, resp.json
    return resp.json["movements"][0]


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")

        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["details"]["movements"] == 0

    def test_version(self, client):
        resp = client.get("/api/version")
        assert resp.status_code == 200
        assert "api_version" in resp.json


class TestReceiptsApi:

    def test_receive(self, client, stocked, location_a):
        assert stocked["movement_type"] == "Inbound"
        assert stocked["to_location_id"] == location_a.id
        assert stocked["reference_type"] == "Receipt"
        assert stocked["reference_id"] == 1

    def test_resubmitted_receipt_is_409(self, client, stocked, product, location_a):
        resp = client.post("/api/receipts/1/receive", json={
            "lines": [{
                "product_id": product.id,
                "location_id": location_a.id,
                "quantity": 100,
                "lot_number": "L1",
            }],
        })

        assert resp.status_code == 409
        assert resp.json["kind"] == "ReceiptAlreadyReceived"
        resp = client.get(f"/api/inventory?product_id={product.id}")
        assert resp.json["items"][0]["quantity_on_hand"] == 100

    def test_unknown_product_is_404(self, client, db_session, location_a):
        resp = client.post("/api/receipts/2/receive", json={
            "lines": [{"product_id": 999999, "location_id": location_a.id, "quantity": 1}],
        })

        assert resp.status_code == 404
        assert resp.json["kind"] == "UnknownReference"

    @pytest.mark.parametrize("quantity", [1.5, "1e3", None])
    def test_malformed_quantity_is_400(self, client, db_session, product, location_a, quantity):
        resp = client.post("/api/receipts/2/receive", json={
            "lines": [{"product_id": product.id, "location_id": location_a.id, "quantity": quantity}],
        })

        assert resp.status_code == 400

    def test_zero_quantity_is_400(self, client, db_session, product, location_a):
        resp = client.post("/api/receipts/2/receive", json={
            "lines": [{"product_id": product.id, "location_id": location_a.id, "quantity": 0}],
        })

        assert resp.status_code == 400
        assert resp.json["kind"] == "InvalidQuantity"

    def test_empty_lines_is_400(self, client, db_session):
        resp = client.post("/api/receipts/2/receive", json={"lines": []})
        assert resp.status_code == 400


class TestInventoryApi:

    def test_list_and_get(self, client, stocked, product):
        resp = client.get(f"/api/inventory?product_id={product.id}")

        assert resp.status_code == 200
        assert resp.json["total"] == 1
        row = resp.json["items"][0]
        assert row["lot_number"] == "L1"
        assert row["quantity_available"] == 100

        resp = client.get(f"/api/inventory/{row['id']}")
        assert resp.status_code == 200
        assert resp.json["quantity_on_hand"] == 100

    def test_get_missing_is_404(self, client, db_session):
        assert client.get("/api/inventory/999999").status_code == 404

    def test_filter_by_lot_number(self, client, stocked, product, location_a):
        resp = client.post("/api/receipts/3/receive", json={
            "lines": [{"product_id": product.id, "location_id": location_a.id, "quantity": 5, "lot_number": "L2"}],
        })
        assert resp.status_code == 201

        resp = client.get("/api/inventory?lot_number=L2")

        assert resp.status_code == 200
        assert resp.json["total"] == 1
        assert resp.json["items"][0]["lot_number"] == "L2"
        assert resp.json["items"][0]["quantity_on_hand"] == 5
        assert client.get("/api/inventory?lot_number=NOPE").json["total"] == 0

    def test_allocate_then_issue(self, client, stocked, product):
        resp = client.post("/api/inventory/allocate", json={"product_id": product.id, "quantity": 30})

        assert resp.status_code == 200
        allocation = resp.json["allocation"]
        assert allocation["allocated"] == 30
        assert allocation["shortfall"] == 0
        balance_id = allocation["picks"][0]["balance_id"]

        resp = client.post(f"/api/inventory/{balance_id}/issue", json={"quantity": 10, "reference_id": 8})
        assert resp.status_code == 201
        assert resp.json["movement_type"] == "Outbound"

        resp = client.post(f"/api/inventory/{balance_id}/deallocate", json={"quantity": 20})
        assert resp.status_code == 200
        assert resp.json["quantity_allocated"] == 0
        assert resp.json["quantity_on_hand"] == 90

    def test_allocation_shortfall_is_409(self, client, stocked, product):
        resp = client.post("/api/inventory/allocate", json={"product_id": product.id, "quantity": 130})

        assert resp.status_code == 409
        assert resp.json["allocation"]["allocated"] == 100
        assert resp.json["allocation"]["shortfall"] == 30

    def test_transfer_insufficient_stock_is_409(self, client, stocked, product, location_a, location_b):
        resp = client.post("/api/inventory/transfer", json={
            "product_id": product.id,
            "lot_id": stocked["lot_id"],
            "from_location_id": location_a.id,
            "to_location_id": location_b.id,
            "quantity": 150,
        })

        assert resp.status_code == 409
        assert resp.json["kind"] == "InsufficientStock"

    def test_transfer(self, client, stocked, product, location_a, location_b):
        resp = client.post("/api/inventory/transfer", json={
            "product_id": product.id,
            "lot_id": stocked["lot_id"],
            "from_location_id": location_a.id,
            "to_location_id": location_b.id,
            "quantity": 40,
        })

        assert resp.status_code == 201
        assert resp.json["movement_type"] == "Transfer"

    def test_transfer_same_location_is_400(self, client, stocked, product, location_a):
        resp = client.post("/api/inventory/transfer", json={
            "product_id": product.id,
            "lot_id": stocked["lot_id"],
            "from_location_id": location_a.id,
            "to_location_id": location_a.id,
            "quantity": 1,
        })

        assert resp.status_code == 400

    def test_adjust_requires_reason(self, client, stocked, product, location_a):
        resp = client.post("/api/inventory/adjust", json={
            "product_id": product.id,
            "lot_id": stocked["lot_id"],
            "location_id": location_a.id,
            "quantity_delta": -2,
        })
        assert resp.status_code == 400

        resp = client.post("/api/inventory/adjust", json={
            "product_id": product.id,
            "lot_id": stocked["lot_id"],
            "location_id": location_a.id,
            "quantity_delta": -2,
            "reason": "damaged",
        })
        assert resp.status_code == 201
        assert resp.json["movement_type"] == "Adjustment"


class TestMovementsApi:

    def test_list_and_verify(self, client, stocked, product):
        resp = client.get(f"/api/movements?product_id={product.id}&movement_type=Inbound")
        assert resp.status_code == 200
        assert resp.json["total"] == 1

        resp = client.get("/api/movements/verify")
        assert resp.status_code == 200
        assert resp.json == {"consistent": True, "problems": []}

    def test_get_by_id(self, client, stocked):
        resp = client.get(f"/api/movements/{stocked['id']}")

        assert resp.status_code == 200
        assert resp.json["movement_type"] == "Inbound"
        assert resp.json["quantity"] == 100
        assert resp.json["reference_id"] == 1

    def test_get_missing_is_404(self, client, db_session):
        resp = client.get("/api/movements/999999")

        assert resp.status_code == 404
        assert "error" in resp.json

    def test_date_filters_are_inclusive(self, client, db_session, product, location_a):
        at = "2026-01-02T08:30:00Z"
        resp = client.post("/api/receipts/5/receive", json={
            "lines": [{"product_id": product.id, "location_id": location_a.id, "quantity": 3}],
            "occurred_at": at,
        })
        assert resp.status_code == 201
        movement_id = resp.json["movements"][0]["id"]

        resp = client.get("/api/movements", query_string={"start_date": at, "end_date": at})

        assert resp.status_code == 200
        assert [m["id"] for m in resp.json["items"]] == [movement_id]
        assert resp.json["items"][0]["occurred_at"] == at

    def test_bad_date_is_400(self, client, db_session):
        assert client.get("/api/movements?start_date=yesterday").status_code == 400


class TestStockTakesApi:

    def test_shortage_flow(self, client, stocked, location_a):
        resp = client.post("/api/stock-takes/initiate", json={"location_id": location_a.id})
        assert resp.status_code == 201
        take_id = resp.json["id"]
        item = resp.json["items"][0]
        assert item["expected_quantity"] == 100

        assert client.post(f"/api/stock-takes/{take_id}/start").status_code == 200

        resp = client.post(f"/api/stock-takes/items/{item['id']}/count", json={"counted_quantity": 97})
        assert resp.status_code == 200

        resp = client.post(f"/api/stock-takes/{take_id}/process", json={"actor_id": 5})
        assert resp.status_code == 200
        assert resp.json["status"] == "Completed"
        assert resp.json["items"][0]["discrepancy"] == 3

        resp = client.get(f"/api/stock-takes/{take_id}/adjustments")
        assert resp.status_code == 200
        assert [m["quantity"] for m in resp.json["items"]] == [3]

        resp = client.post(f"/api/stock-takes/{take_id}/process")
        assert resp.status_code == 409

        resp = client.post(f"/api/stock-takes/{take_id}/verify", json={"verified_by": 2})
        assert resp.status_code == 200
        assert resp.json["status"] == "Verified"

    def test_cancel_requires_reason(self, client, stocked):
        take_id = client.post("/api/stock-takes/initiate", json={}).json["id"]

        assert client.post(f"/api/stock-takes/{take_id}/cancel", json={}).status_code == 400
        resp = client.post(f"/api/stock-takes/{take_id}/cancel", json={"reason": "duplicate"})
        assert resp.status_code == 200
        assert resp.json["status"] == "Cancelled"

    def test_list_and_get(self, client, stocked):
        take_id = client.post("/api/stock-takes/initiate", json={}).json["id"]

        resp = client.get("/api/stock-takes?status=Planning")
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json["items"]] == [take_id]

        assert client.get(f"/api/stock-takes/{take_id}").status_code == 200
        assert client.get("/api/stock-takes/999999").status_code == 404
        assert client.get("/api/stock-takes?status=Bogus").status_code == 400
