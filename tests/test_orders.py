"""
Consumer store orders: payment, reward gas, stock and cancellation.
"""
import pytest

from conftest import (
    register, topup_wallet, wallet_balance, retailer_balance, reward_units, reward_wallet_id,
)


def place_order(client, consumer, retailer, product, quantity=1, **extra):
    body = {
        "retailer_id": retailer.profile_id,
        "items": [{"product_id": product["id"], "quantity": quantity}],
        "payment_method": "wallet",
    }
    body.update(extra)
    return client.post("/api/store/orders", json=body, headers=consumer.headers)


def product_stock(client, retailer, product_id):
    products = client.get("/api/retailer/inventory", headers=retailer.headers).json()["products"]
    return next(p["stock"] for p in products if p["id"] == product_id)


class TestPlaceOrder:
    def test_wallet_order_moves_money_stock_and_reward(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 10000)

        response = place_order(client, consumer, retailer, product, quantity=2,
                               gas_reward_wallet_id=reward_wallet_id(consumer))
        assert response.status_code == 201, response.text
        order = response.json()["order"]
        assert order["status"] == "pending"
        assert order["total_amount"] == 6000.0
        assert order["amount_paid"] == 6000.0
        assert order["payment_method"] == "dashboard_wallet"
        assert order["order_number"].startswith("ORD-")

        assert wallet_balance(client, consumer) == 4000.0
        assert retailer_balance(client, retailer) == 6000.0
        assert product_stock(client, retailer, product["id"]) == 8
        # 12% of 6000 RWF at 300 RWF per unit
        assert reward_units(client, consumer) == pytest.approx(2.4)

    def test_no_reward_without_reward_wallet_id(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        response = place_order(client, consumer, shop["retailer"], shop["product"])
        assert response.status_code == 201
        assert reward_units(client, consumer) == 0.0

    def test_meter_id_counts_as_reward_wallet(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        response = place_order(client, consumer, shop["retailer"], shop["product"],
                               meter_id=reward_wallet_id(consumer))
        assert response.status_code == 201
        assert reward_units(client, consumer) == pytest.approx(1.2)

    def test_foreign_reward_wallet_id_rejected(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        response = place_order(client, consumer, shop["retailer"], shop["product"],
                               gas_reward_wallet_id="GRW-NOTMINE1")
        assert response.status_code == 400
        assert wallet_balance(client, consumer) == 5000.0

    def test_insufficient_balance_rolls_back_everything(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 1000)

        response = place_order(client, consumer, retailer, product)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["balance"] == 1000.0
        assert body["required"] == 3000.0

        assert wallet_balance(client, consumer) == 1000.0
        assert retailer_balance(client, retailer) == 0.0
        assert product_stock(client, retailer, product["id"]) == 10
        assert client.get("/api/store/orders", headers=consumer.headers).json()["total"] == 0

    def test_insufficient_stock(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 100000)
        response = place_order(client, consumer, shop["retailer"], shop["product"], quantity=11)
        assert response.status_code == 400
        assert response.json()["available"] == 10
        assert wallet_balance(client, consumer) == 100000.0

    def test_unlinked_consumer_is_refused(self, client, shop):
        stranger = register(client, "consumer")
        topup_wallet(client, stranger, 5000)
        response = place_order(client, stranger, shop["retailer"], shop["product"])
        assert response.status_code == 403
        body = response.json()
        assert body["requiresLinking"] is True
        assert body["retailerId"] == shop["retailer"].profile_id

    def test_credit_wallet_required_for_credit_payment(self, client, shop):
        response = place_order(client, shop["consumer"], shop["retailer"], shop["product"],
                               payment_method="credit_wallet")
        assert response.status_code == 400
        assert response.json()["error"] == "No credit wallet available"

    def test_mobile_money_order(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        response = place_order(client, consumer, retailer, shop["product"], payment_method="mobile_money")
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["external_ref"].startswith("DEV-TXN-")
        assert retailer_balance(client, retailer) == 3000.0
        assert wallet_balance(client, consumer) == 0.0


class TestRewardGasDiscount:
    def test_reward_gas_pays_part_of_the_order(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 10000)
        place_order(client, consumer, retailer, product, quantity=2,
                    gas_reward_wallet_id=reward_wallet_id(consumer))
        assert reward_units(client, consumer) == pytest.approx(2.4)  # worth 720 RWF

        response = place_order(client, consumer, retailer, product,
                               apply_reward_gas=True, reward_gas_amount=600)
        assert response.status_code == 201, response.text
        order = response.json()["order"]
        assert order["reward_gas_applied"] == 600.0
        assert order["amount_paid"] == 2400.0

        assert wallet_balance(client, consumer) == 1600.0
        assert reward_units(client, consumer) == pytest.approx(0.4)
        assert retailer_balance(client, retailer) == 8400.0

    def test_cannot_spend_more_reward_gas_than_held(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        response = place_order(client, consumer, shop["retailer"], shop["product"],
                               apply_reward_gas=True, reward_gas_amount=500)
        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient reward gas balance"
        assert wallet_balance(client, consumer) == 5000.0

    def test_amount_without_opt_in_is_ignored(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 10000)
        place_order(client, consumer, retailer, product,
                    gas_reward_wallet_id=reward_wallet_id(consumer))
        assert reward_units(client, consumer) == pytest.approx(1.2)

        response = place_order(client, consumer, retailer, product,
                               apply_reward_gas=False, reward_gas_amount=300)
        assert response.status_code == 201, response.text
        order = response.json()["order"]
        assert order["reward_gas_applied"] == 0.0
        assert order["amount_paid"] == 3000.0
        assert reward_units(client, consumer) == pytest.approx(1.2)
        assert wallet_balance(client, consumer) == 4000.0

    def test_reward_gas_balance_endpoint(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        place_order(client, consumer, shop["retailer"], shop["product"],
                    gas_reward_wallet_id=reward_wallet_id(consumer))
        body = client.get("/api/store/reward-gas/balance", headers=consumer.headers).json()
        assert body["units"] == pytest.approx(1.2)
        assert body["balance_rwf"] == 360.0
        assert body["recent"][0]["source"] == "purchase_reward"


class TestCancel:
    def test_cancel_reverses_every_movement(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 10000)
        order = place_order(client, consumer, retailer, product, quantity=2,
                            gas_reward_wallet_id=reward_wallet_id(consumer)).json()["order"]

        response = client.post(f"/api/store/orders/{order['id']}/cancel", json={"reason": "Too slow"},
                               headers=consumer.headers)
        assert response.status_code == 200, response.text
        assert response.json()["order"]["status"] == "cancelled"

        assert wallet_balance(client, consumer) == 10000.0
        assert retailer_balance(client, retailer) == 0.0
        assert product_stock(client, retailer, product["id"]) == 10
        assert reward_units(client, consumer) == 0.0

    def test_cancel_restores_spent_reward_gas(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 10000)
        place_order(client, consumer, retailer, product, quantity=2,
                    gas_reward_wallet_id=reward_wallet_id(consumer))
        order = place_order(client, consumer, retailer, product,
                            apply_reward_gas=True, reward_gas_amount=600).json()["order"]

        client.post(f"/api/store/orders/{order['id']}/cancel", headers=consumer.headers)
        assert reward_units(client, consumer) == pytest.approx(2.4)
        assert wallet_balance(client, consumer) == 4000.0

    def test_mobile_money_refund_goes_to_dashboard_wallet(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        order = place_order(client, consumer, retailer, shop["product"],
                            payment_method="mobile_money").json()["order"]
        client.post(f"/api/store/orders/{order['id']}/cancel", headers=consumer.headers)
        assert wallet_balance(client, consumer) == 3000.0
        assert retailer_balance(client, retailer) == 0.0

    def test_cannot_cancel_twice(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        order = place_order(client, consumer, shop["retailer"], shop["product"]).json()["order"]
        client.post(f"/api/store/orders/{order['id']}/cancel", headers=consumer.headers)

        response = client.post(f"/api/store/orders/{order['id']}/cancel", headers=consumer.headers)
        assert response.status_code == 400
        assert wallet_balance(client, consumer) == 5000.0

    def test_other_consumers_order_is_hidden(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 5000)
        order = place_order(client, consumer, shop["retailer"], shop["product"]).json()["order"]
        stranger = register(client, "consumer")
        response = client.post(f"/api/store/orders/{order['id']}/cancel", headers=stranger.headers)
        assert response.status_code == 404


class TestHistoryAndDelivery:
    def test_history_lists_orders(self, client, shop):
        consumer = shop["consumer"]
        topup_wallet(client, consumer, 10000)
        place_order(client, consumer, shop["retailer"], shop["product"])
        place_order(client, consumer, shop["retailer"], shop["product"])
        body = client.get("/api/store/orders", headers=consumer.headers).json()
        assert body["total"] == 2
        assert body["orders"][0]["id"] > body["orders"][1]["id"]

    def test_confirm_delivery_after_retailer_confirms(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        topup_wallet(client, consumer, 5000)
        order = place_order(client, consumer, retailer, shop["product"]).json()["order"]

        response = client.post(f"/api/store/orders/{order['id']}/confirm-delivery", headers=consumer.headers)
        assert response.status_code == 400

        client.put(f"/api/retailer/orders/{order['id']}/status", json={"status": "confirmed"},
                   headers=retailer.headers)
        response = client.post(f"/api/store/orders/{order['id']}/confirm-delivery", headers=consumer.headers)
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "delivered"
