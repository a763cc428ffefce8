"""
PalmKash callbacks settling payments that were still pending when placed.
"""
import itertools

import pytest

from conftest import create_product, wallet_balance, retailer_balance, reward_units
from bigpos.services.mobile_money import gateway, PaymentResult


class FakePalmKash:
    """Leaves every payment pending until a test decides how it ended."""

    def __init__(self):
        self.counter = itertools.count(1)
        self.outcomes = {}
        self.references = []

    def initiate_payment(self, amount, phone_number, reference_id, description, callback_url=None):
        transaction_id = f"PK-{next(self.counter)}"
        self.outcomes[transaction_id] = "PENDING"
        self.references.append(reference_id)
        return PaymentResult(success=True, transaction_id=transaction_id, status="PENDING")

    def check_status(self, transaction_id):
        status = self.outcomes.get(transaction_id, "FAILED")
        return PaymentResult(success=True, transaction_id=transaction_id, status=status)


@pytest.fixture
def palmkash(monkeypatch):
    fake = FakePalmKash()
    monkeypatch.setattr(gateway, "initiate_payment", fake.initiate_payment)
    monkeypatch.setattr(gateway, "check_status", fake.check_status)
    return fake


def callback(client, reference, transaction_id="PK-1", status="SUCCESS"):
    return client.post("/api/webhooks/palmkash", json={
        "reference": reference, "transaction_id": transaction_id, "status": status,
    })


def momo_topup(client, consumer, amount):
    response = client.post("/api/store/wallets/topup",
                           json={"amount": amount, "payment_method": "mobile_money"},
                           headers=consumer.headers)
    assert response.status_code == 200, response.text
    return response.json()


def topups(client, consumer):
    txns = client.get("/api/store/wallets/transactions", headers=consumer.headers).json()["transactions"]
    return [t for t in txns if t["type"] == "topup"]


class TestCallbackValidation:
    def test_missing_reference(self, client):
        response = client.post("/api/webhooks/palmkash", json={"status": "SUCCESS"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Missing reference"}

    def test_unknown_reference_is_acknowledged(self, client):
        response = callback(client, "XYZ-42")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["matched"] is False
        assert body["type"] is None


class TestWalletTopup:
    def test_balance_moves_only_after_payment(self, client, consumer, palmkash):
        body = momo_topup(client, consumer, 5000)
        assert body["pending"] is True
        assert body["transaction"]["status"] == "pending"
        assert body["transaction"]["reference"] == "PK-1"
        assert wallet_balance(client, consumer) == 0.0

        palmkash.outcomes["PK-1"] = "SUCCESS"
        response = callback(client, palmkash.references[0])
        assert response.status_code == 200
        assert response.json()["matched"] is True
        assert response.json()["type"] == "wallet_topup"
        assert wallet_balance(client, consumer) == 5000.0
        assert [t["status"] for t in topups(client, consumer)] == ["completed"]

        repeat = callback(client, palmkash.references[0])
        assert repeat.json()["matched"] is False
        assert wallet_balance(client, consumer) == 5000.0

    def test_failed_payment_never_credits(self, client, consumer, palmkash):
        momo_topup(client, consumer, 5000)
        palmkash.outcomes["PK-1"] = "FAILED"
        response = callback(client, palmkash.references[0], status="FAILED")
        assert response.json()["matched"] is True
        assert wallet_balance(client, consumer) == 0.0
        assert [t["status"] for t in topups(client, consumer)] == ["failed"]

    def test_callback_status_is_checked_with_gateway(self, client, consumer, palmkash):
        momo_topup(client, consumer, 5000)
        response = callback(client, palmkash.references[0], status="SUCCESS")
        body = response.json()
        assert body["matched"] is False
        assert body["status"] == "PENDING"
        assert wallet_balance(client, consumer) == 0.0
        assert [t["status"] for t in topups(client, consumer)] == ["pending"]


class TestGasTopup:
    def buy(self, client, consumer):
        client.post("/api/store/gas/meters", json={"meter_number": "MTR-1001"}, headers=consumer.headers)
        response = client.post("/api/store/gas/topup",
                               json={"meter_number": "MTR-1001", "amount": 3000, "payment_method": "mobile_money"},
                               headers=consumer.headers)
        assert response.status_code == 200, response.text
        return response.json()

    def meter_units(self, client, consumer):
        meters = client.get("/api/store/gas/meters", headers=consumer.headers).json()["meters"]
        return meters[0]["current_units"]

    def test_units_and_reward_wait_for_payment(self, client, consumer, palmkash):
        body = self.buy(client, consumer)
        assert body["pending"] is True
        assert body["reward_units"] == 0.0
        assert body["meter"]["current_units"] == 0.0
        assert reward_units(client, consumer) == 0.0

        palmkash.outcomes["PK-1"] = "SUCCESS"
        response = callback(client, palmkash.references[0])
        assert response.json()["matched"] is True
        assert response.json()["type"] == "gas_topup"
        assert self.meter_units(client, consumer) == 2.0
        assert reward_units(client, consumer) == pytest.approx(0.2)

        orders = client.get("/api/store/orders", headers=consumer.headers).json()["orders"]
        assert orders[0]["status"] == "completed"

    def test_failed_payment_adds_no_units(self, client, consumer, palmkash):
        self.buy(client, consumer)
        palmkash.outcomes["PK-1"] = "CANCELLED"
        callback(client, palmkash.references[0], status="CANCELLED")
        assert self.meter_units(client, consumer) == 0.0
        assert reward_units(client, consumer) == 0.0

        orders = client.get("/api/store/orders", headers=consumer.headers).json()["orders"]
        assert orders[0]["status"] == "failed"


class TestStoreOrder:
    def place(self, client, shop):
        response = client.post("/api/store/orders", json={
            "retailer_id": shop["retailer"].profile_id,
            "items": [{"product_id": shop["product"]["id"], "quantity": 1}],
            "payment_method": "mobile_money",
        }, headers=shop["consumer"].headers)
        assert response.status_code == 201, response.text
        return response.json()["order"]

    def stock(self, client, shop):
        products = client.get("/api/retailer/inventory", headers=shop["retailer"].headers).json()["products"]
        return next(p["stock"] for p in products if p["id"] == shop["product"]["id"])

    def retailer_view(self, client, shop, order_id):
        return client.get(f"/api/retailer/orders/{order_id}", headers=shop["retailer"].headers).json()["order"]

    def test_retailer_is_paid_on_settlement(self, client, shop, palmkash):
        order = self.place(client, shop)
        assert order["status"] == "pending_payment"
        assert order["amount_paid"] == 0.0
        assert retailer_balance(client, shop["retailer"]) == 0.0
        assert self.stock(client, shop) == 9

        palmkash.outcomes["PK-1"] = "SUCCESS"
        response = callback(client, palmkash.references[0])
        assert response.json()["matched"] is True
        assert response.json()["type"] == "sale"

        assert retailer_balance(client, shop["retailer"]) == 3000.0
        settled = self.retailer_view(client, shop, order["id"])
        assert settled["status"] == "pending"
        assert settled["amount_paid"] == 3000.0

    def test_failed_payment_cancels_and_restocks(self, client, shop, palmkash):
        order = self.place(client, shop)
        palmkash.outcomes["PK-1"] = "FAILED"
        callback(client, palmkash.references[0], status="FAILED")

        assert self.retailer_view(client, shop, order["id"])["status"] == "cancelled"
        assert self.stock(client, shop) == 10
        assert retailer_balance(client, shop["retailer"]) == 0.0
        assert wallet_balance(client, shop["consumer"]) == 0.0

    def test_consumer_cannot_cancel_while_awaiting_payment(self, client, shop, palmkash):
        order = self.place(client, shop)
        response = client.post(f"/api/store/orders/{order['id']}/cancel", headers=shop["consumer"].headers)
        assert response.status_code == 400
        assert self.stock(client, shop) == 9


class TestWholesaleOrder:
    def test_settlement_marks_order_paid(self, client, retailer, wholesaler, admin, palmkash):
        client.post(f"/api/admin/retailers/{retailer.profile_id}/link-wholesaler",
                    json={"wholesaler_id": wholesaler.profile_id}, headers=admin.headers)
        product = create_product(client, wholesaler, path="/api/wholesaler/inventory",
                                 name="Sugar 50kg", price=2000, cost_price=None, stock=10)
        response = client.post("/api/retailer/wholesaler/orders", json={
            "items": [{"product_id": product["id"], "quantity": 2}],
            "payment_method": "momo",
        }, headers=retailer.headers)
        assert response.status_code == 201, response.text
        placed = response.json()["order"]
        assert placed["status"] == "pending_payment"

        palmkash.outcomes["PK-1"] = "COMPLETED"
        response = callback(client, palmkash.references[-1])
        assert response.json()["matched"] is True
        assert response.json()["type"] == "wholesale_order"

        orders = client.get("/api/retailer/wholesaler/orders", headers=retailer.headers).json()["orders"]
        assert orders[0]["status"] == "pending"
        assert orders[0]["payment_status"] == "paid"
        assert orders[0]["amount_paid"] == 4000.0
