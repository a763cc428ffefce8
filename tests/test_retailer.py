"""
Retailer side: inventory ledger, order status machine, POS and customer links.
"""
import pytest

from conftest import (
    register, create_product, link_consumer, topup_wallet, wallet_balance, retailer_balance,
    reward_units, reward_wallet_id,
)


def store_order(client, shop, quantity=1, **extra):
    body = {
        "retailer_id": shop["retailer"].profile_id,
        "items": [{"product_id": shop["product"]["id"], "quantity": quantity}],
        "payment_method": "wallet",
    }
    body.update(extra)
    response = client.post("/api/store/orders", json=body, headers=shop["consumer"].headers)
    assert response.status_code == 201, response.text
    return response.json()["order"]


def set_status(client, retailer, order_id, status):
    return client.put(f"/api/retailer/orders/{order_id}/status", json={"status": status},
                      headers=retailer.headers)


class TestInventory:
    def test_opening_stock_is_a_movement(self, client, retailer):
        product = create_product(client, retailer, stock=15)
        movements = client.get(f"/api/retailer/inventory/{product['id']}/movements",
                               headers=retailer.headers).json()["movements"]
        assert [(m["change"], m["source_type"]) for m in movements] == [(15, "INITIAL")]

    def test_stock_update_records_adjustment(self, client, retailer):
        product = create_product(client, retailer, stock=15)
        response = client.put(f"/api/retailer/inventory/{product['id']}", json={"stock": 12, "price": 1100},
                              headers=retailer.headers)
        assert response.status_code == 200
        assert response.json()["product"]["stock"] == 12
        assert response.json()["product"]["price"] == 1100.0

        movements = client.get(f"/api/retailer/inventory/{product['id']}/movements",
                               headers=retailer.headers).json()["movements"]
        assert movements[0]["change"] == -3
        assert movements[0]["source_type"] == "ADJUSTMENT"

    def test_products_are_private_to_owner(self, client, retailer):
        product = create_product(client, retailer)
        other = register(client, "retailer")
        response = client.put(f"/api/retailer/inventory/{product['id']}", json={"price": 5},
                              headers=other.headers)
        assert response.status_code == 404

    def test_alerts(self, client, retailer):
        create_product(client, retailer, name="Empty", stock=0)
        create_product(client, retailer, name="Low", stock=3, low_stock_threshold=5)
        create_product(client, retailer, name="Plenty", stock=50)
        body = client.get("/api/retailer/inventory/alerts", headers=retailer.headers).json()
        assert body["count"] == 2
        assert {a["alert_type"] for a in body["alerts"]} == {"STOCK_OUT", "STOCK_LOW"}

    def test_barcode_scan(self, client, retailer):
        create_product(client, retailer, name="Soap", barcode="6001234")
        response = client.post("/api/retailer/pos/scan", json={"barcode": "6001234"}, headers=retailer.headers)
        assert response.json()["product"]["name"] == "Soap"

        response = client.post("/api/retailer/pos/scan", json={"barcode": "missing"}, headers=retailer.headers)
        assert response.status_code == 404


class TestOrderStatusMachine:
    def test_happy_path(self, client, shop):
        topup_wallet(client, shop["consumer"], 5000)
        order = store_order(client, shop)
        retailer = shop["retailer"]

        for status in ("confirmed", "ready", "completed"):
            response = set_status(client, retailer, order["id"], status)
            assert response.status_code == 200, response.text
            assert response.json()["order"]["status"] == status

    def test_processing_is_confirmed(self, client, shop):
        topup_wallet(client, shop["consumer"], 5000)
        order = store_order(client, shop)
        response = set_status(client, shop["retailer"], order["id"], "processing")
        assert response.json()["order"]["status"] == "confirmed"

    def test_illegal_jump(self, client, shop):
        topup_wallet(client, shop["consumer"], 5000)
        order = store_order(client, shop)
        response = set_status(client, shop["retailer"], order["id"], "completed")
        assert response.status_code == 400
        assert response.json()["allowed"] == ["cancelled", "confirmed"]

    def test_ready_orders_cannot_be_cancelled(self, client, shop):
        topup_wallet(client, shop["consumer"], 5000)
        order = store_order(client, shop)
        set_status(client, shop["retailer"], order["id"], "confirmed")
        set_status(client, shop["retailer"], order["id"], "ready")
        response = client.post(f"/api/retailer/orders/{order['id']}/cancel", headers=shop["retailer"].headers)
        assert response.status_code == 400

    def test_retailer_cancel_refunds_consumer(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        topup_wallet(client, consumer, 5000)
        order = store_order(client, shop)
        response = client.post(f"/api/retailer/orders/{order['id']}/cancel", json={"reason": "Out of stock"},
                               headers=retailer.headers)
        assert response.status_code == 200
        assert wallet_balance(client, consumer) == 5000.0
        assert retailer_balance(client, retailer) == 0.0

    def test_cancel_fails_when_retailer_wallet_is_short(self, client, shop, wholesaler, admin):
        consumer, retailer = shop["consumer"], shop["retailer"]
        topup_wallet(client, consumer, 5000)
        order = store_order(client, shop)

        # Spend the retailer's takings on a wholesale order
        client.post(f"/api/admin/retailers/{retailer.profile_id}/link-wholesaler",
                    json={"wholesaler_id": wholesaler.profile_id}, headers=admin.headers)
        supply = create_product(client, wholesaler, path="/api/wholesaler/inventory", price=2500, stock=10)
        response = client.post("/api/retailer/wholesaler/orders", json={
            "items": [{"product_id": supply["id"], "quantity": 1}], "payment_method": "wallet",
        }, headers=retailer.headers)
        assert response.status_code == 201, response.text

        response = client.post(f"/api/retailer/orders/{order['id']}/cancel", headers=retailer.headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Retailer wallet cannot cover this refund"
        assert wallet_balance(client, consumer) == 2000.0

    def test_fulfill(self, client, shop):
        topup_wallet(client, shop["consumer"], 5000)
        order = store_order(client, shop)
        retailer = shop["retailer"]
        response = client.post(f"/api/retailer/orders/{order['id']}/fulfill", headers=retailer.headers)
        assert response.status_code == 400

        set_status(client, retailer, order["id"], "confirmed")
        response = client.post(f"/api/retailer/orders/{order['id']}/fulfill", headers=retailer.headers)
        assert response.json()["order"]["status"] == "completed"

    def test_order_list_filters_by_status(self, client, shop):
        topup_wallet(client, shop["consumer"], 10000)
        first = store_order(client, shop)
        store_order(client, shop)
        set_status(client, shop["retailer"], first["id"], "confirmed")

        body = client.get("/api/retailer/orders", params={"status": "pending"},
                          headers=shop["retailer"].headers).json()
        assert body["total"] == 1


class TestPOS:
    def test_cash_sale(self, client, retailer):
        product = create_product(client, retailer, price=500, stock=10)
        response = client.post("/api/retailer/pos/sale", json={
            "items": [{"product_id": product["id"], "quantity": 4}],
            "payment_method": "cash",
            "discount": 100,
        }, headers=retailer.headers)
        assert response.status_code == 201, response.text
        sale = response.json()["sale"]
        assert sale["status"] == "completed"
        assert sale["origin"] == "pos"
        assert sale["total_amount"] == 1900.0
        assert retailer_balance(client, retailer) == 0.0

        stats = client.get("/api/retailer/pos/daily-sales", headers=retailer.headers).json()["stats"]
        assert stats["transactions"] == 1
        assert stats["total_revenue"] == 1900.0
        assert stats["by_payment_method"] == {"cash": 1900.0}

    def test_dashboard_wallet_needs_reward_wallet_id(self, client, shop):
        response = client.post("/api/retailer/pos/sale", json={
            "items": [{"product_id": shop["product"]["id"], "quantity": 1}],
            "payment_method": "dashboard_wallet",
            "customer_phone": shop["consumer"].phone,
        }, headers=shop["retailer"].headers)
        assert response.status_code == 400

    def test_wallet_sale_rewards_profit(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        topup_wallet(client, consumer, 10000)
        response = client.post("/api/retailer/pos/sale", json={
            "items": [{"product_id": shop["product"]["id"], "quantity": 2}],
            "payment_method": "dashboard_wallet",
            "customer_phone": consumer.phone,
            "gas_reward_wallet_id": reward_wallet_id(consumer),
        }, headers=retailer.headers)
        assert response.status_code == 201, response.text

        assert wallet_balance(client, consumer) == 4000.0
        assert retailer_balance(client, retailer) == 6000.0
        # profit (3000 - 2400) * 2 = 1200; 12% of that at 300 RWF per unit
        assert reward_units(client, consumer) == pytest.approx(0.48)

    def test_cash_sale_earns_no_reward(self, client, shop):
        consumer = shop["consumer"]
        client.post("/api/retailer/pos/sale", json={
            "items": [{"product_id": shop["product"]["id"], "quantity": 1}],
            "payment_method": "cash",
            "gas_reward_wallet_id": reward_wallet_id(consumer),
        }, headers=shop["retailer"].headers)
        assert reward_units(client, consumer) == 0.0

    def test_nfc_sale_checks_pin(self, client, shop):
        consumer, retailer = shop["consumer"], shop["retailer"]
        topup_wallet(client, consumer, 5000)
        card = client.post("/api/nfc/cards/link", json={"uid": "04a1b2c3", "pin": "4321"},
                           headers=consumer.headers).json()["card"]
        client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 4000}, headers=consumer.headers)

        sale = {
            "items": [{"product_id": shop["product"]["id"], "quantity": 1}],
            "payment_method": "nfc",
            "payment_details": {"uid": "04A1B2C3", "pin": "0000"},
        }
        response = client.post("/api/retailer/pos/sale", json=sale, headers=retailer.headers)
        assert response.status_code == 403

        sale["payment_details"]["pin"] = "4321"
        response = client.post("/api/retailer/pos/sale", json=sale, headers=retailer.headers)
        assert response.status_code == 201, response.text
        assert response.json()["sale"]["consumer_id"] == consumer.profile_id

        cards = client.get("/api/nfc/cards", headers=consumer.headers).json()["cards"]
        assert cards[0]["balance"] == 1000.0
        assert retailer_balance(client, retailer) == 3000.0


class TestCustomerLinks:
    def test_reject_then_resend(self, client, consumer, retailer, admin):
        client.post(f"/api/admin/retailers/{retailer.profile_id}/verify", headers=admin.headers)
        request = client.post("/api/store/retailers/link-request", json={"retailer_id": retailer.profile_id},
                              headers=consumer.headers).json()["request"]

        response = client.post(f"/api/retailer/customer-link-requests/{request['id']}/reject",
                               json={"reason": "Unknown customer"}, headers=retailer.headers)
        assert response.json()["request"]["status"] == "rejected"

        retailers = client.get("/api/store/retailers", headers=consumer.headers).json()["retailers"]
        assert retailers[0]["requestStatus"] == "rejected"
        assert retailers[0]["canSendRequest"] is True

        response = client.post("/api/store/retailers/link-request", json={"retailer_id": retailer.profile_id},
                               headers=consumer.headers)
        assert response.status_code == 201
        assert response.json()["request"]["status"] == "pending"

    def test_duplicate_pending_request(self, client, consumer, retailer):
        client.post("/api/store/retailers/link-request", json={"retailer_id": retailer.profile_id},
                    headers=consumer.headers)
        response = client.post("/api/store/retailers/link-request", json={"retailer_id": retailer.profile_id},
                               headers=consumer.headers)
        assert response.status_code == 400

    def test_unverified_retailers_are_not_listed(self, client, consumer, retailer):
        assert client.get("/api/store/retailers", headers=consumer.headers).json()["retailers"] == []

    def test_linked_customers_and_unlink(self, client, consumer, retailer, admin):
        link_consumer(client, consumer, retailer, admin)
        customers = client.get("/api/retailer/linked-customers", headers=retailer.headers).json()["customers"]
        assert [c["id"] for c in customers] == [consumer.profile_id]

        response = client.delete(f"/api/retailer/linked-customers/{consumer.profile_id}",
                                 headers=retailer.headers)
        assert response.status_code == 200
        products = client.get("/api/store/products", params={"retailer_id": retailer.profile_id},
                              headers=consumer.headers).json()
        assert products["canBuy"] is False
