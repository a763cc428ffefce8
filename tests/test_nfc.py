"""
NFC card linking, PINs, balances and admin card registry.
"""
from conftest import register, topup_wallet, wallet_balance


def link_card(client, consumer, uid="04a1b2c3", pin="1111", **extra):
    body = {"uid": uid, "pin": pin}
    body.update(extra)
    return client.post("/api/nfc/cards/link", json=body, headers=consumer.headers)


def cards_of(client, consumer):
    return client.get("/api/nfc/cards", headers=consumer.headers).json()["cards"]


class TestLinking:
    def test_first_card_is_primary(self, client, consumer):
        response = link_card(client, consumer, nickname="Daily")
        assert response.status_code == 201
        card = response.json()["card"]
        assert card["uid"] == "04A1B2C3"
        assert card["status"] == "active"
        assert card["is_primary"] is True
        assert card["has_pin"] is True

        second = link_card(client, consumer, uid="04ffee01").json()["card"]
        assert second["is_primary"] is False

    def test_card_linked_elsewhere_is_refused(self, client, consumer):
        link_card(client, consumer)
        other = register(client, "consumer")
        response = link_card(client, other, uid="04A1B2C3")
        assert response.status_code == 400
        assert cards_of(client, other) == []

    def test_unlink_promotes_another_card(self, client, consumer):
        first = link_card(client, consumer).json()["card"]
        second = link_card(client, consumer, uid="04ffee01").json()["card"]

        response = client.delete(f"/api/nfc/cards/{first['id']}", headers=consumer.headers)
        assert response.status_code == 200
        cards = cards_of(client, consumer)
        assert [c["id"] for c in cards] == [second["id"]]
        assert cards[0]["is_primary"] is True

    def test_unlink_returns_card_balance_to_wallet(self, client, consumer):
        topup_wallet(client, consumer, 5000)
        card = link_card(client, consumer, uid="abcd1234").json()["card"]
        client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 5000}, headers=consumer.headers)
        assert wallet_balance(client, consumer) == 0.0

        response = client.delete(f"/api/nfc/cards/{card['id']}", headers=consumer.headers)
        assert response.status_code == 200, response.text
        assert response.json()["refunded"] == 5000.0
        assert wallet_balance(client, consumer) == 5000.0

        txns = client.get("/api/store/wallets/transactions", headers=consumer.headers).json()["transactions"]
        refunds = [t for t in txns if t["type"] == "nfc_refund"]
        assert [(t["amount"], t["reference"]) for t in refunds] == [(5000.0, "NFC-ABCD1234")]

        other = register(client, "consumer")
        relinked = link_card(client, other, uid="ABCD1234").json()["card"]
        assert relinked["balance"] == 0.0

    def test_unlinked_card_can_be_relinked(self, client, consumer):
        card = link_card(client, consumer).json()["card"]
        client.delete(f"/api/nfc/cards/{card['id']}", headers=consumer.headers)
        other = register(client, "consumer")
        assert link_card(client, other).status_code == 201


class TestCardSettings:
    def test_change_pin(self, client, consumer):
        card = link_card(client, consumer).json()["card"]
        url = f"/api/nfc/cards/{card['id']}/pin"

        response = client.put(url, json={"old_pin": "9999", "new_pin": "2222"}, headers=consumer.headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Current PIN is incorrect"

        response = client.put(url, json={"old_pin": "1111", "new_pin": "2222"}, headers=consumer.headers)
        assert response.status_code == 200

    def test_pin_must_be_four_digits(self, client, consumer):
        assert link_card(client, consumer, pin="12a4").status_code == 422

    def test_switch_primary(self, client, consumer):
        link_card(client, consumer)
        second = link_card(client, consumer, uid="04ffee01").json()["card"]
        response = client.put(f"/api/nfc/cards/{second['id']}/primary", headers=consumer.headers)
        assert response.json()["card"]["is_primary"] is True

        primaries = [c["id"] for c in cards_of(client, consumer) if c["is_primary"]]
        assert primaries == [second["id"]]

    def test_nickname(self, client, consumer):
        card = link_card(client, consumer).json()["card"]
        response = client.put(f"/api/nfc/cards/{card['id']}/nickname", json={"nickname": "Market"},
                              headers=consumer.headers)
        assert response.json()["card"]["nickname"] == "Market"

    def test_other_consumers_card_is_hidden(self, client, consumer):
        card = link_card(client, consumer).json()["card"]
        other = register(client, "consumer")
        response = client.put(f"/api/nfc/cards/{card['id']}/nickname", json={"nickname": "Mine"},
                              headers=other.headers)
        assert response.status_code == 404


class TestTopup:
    def test_drains_dashboard_then_credit(self, client, consumer, admin):
        loan = client.post("/api/store/loans/apply", json={"amount": 3000}, headers=consumer.headers).json()["loan"]
        client.post(f"/api/admin/loans/{loan['id']}/approve", headers=admin.headers)
        topup_wallet(client, consumer, 2000)
        card = link_card(client, consumer).json()["card"]

        response = client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 4000}, headers=consumer.headers)
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["from_dashboard_wallet"] == 2000.0
        assert body["from_credit_wallet"] == 2000.0
        assert body["card"]["balance"] == 4000.0

        assert wallet_balance(client, consumer) == 0.0
        assert wallet_balance(client, consumer, "credit_wallet") == 1000.0

    def test_insufficient_balance(self, client, consumer):
        topup_wallet(client, consumer, 500)
        card = link_card(client, consumer).json()["card"]
        response = client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 1000}, headers=consumer.headers)
        assert response.status_code == 400
        assert response.json()["required"] == 1000.0
        assert wallet_balance(client, consumer) == 500.0
        assert cards_of(client, consumer)[0]["balance"] == 0.0


class TestCardPayments:
    def test_store_order_paid_by_card(self, client, shop):
        consumer, retailer, product = shop["consumer"], shop["retailer"], shop["product"]
        topup_wallet(client, consumer, 5000)
        card = link_card(client, consumer).json()["card"]
        client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 5000}, headers=consumer.headers)

        response = client.post("/api/store/orders", json={
            "retailer_id": retailer.profile_id,
            "items": [{"product_id": product["id"], "quantity": 1}],
            "payment_method": "nfc_card",
            "card_id": card["id"],
        }, headers=consumer.headers)
        assert response.status_code == 201, response.text
        assert response.json()["order"]["payment_method"] == "nfc_card"

        assert cards_of(client, consumer)[0]["balance"] == 2000.0
        orders = client.get(f"/api/nfc/cards/{card['id']}/orders", headers=consumer.headers).json()["orders"]
        assert [o["id"] for o in orders] == [response.json()["order"]["id"]]

    def test_card_payment_needs_card_id(self, client, shop):
        response = client.post("/api/store/orders", json={
            "retailer_id": shop["retailer"].profile_id,
            "items": [{"product_id": shop["product"]["id"], "quantity": 1}],
            "payment_method": "nfc_card",
        }, headers=shop["consumer"].headers)
        assert response.status_code == 400


class TestAdminRegistry:
    def test_register_for_consumer_by_phone(self, client, consumer, admin):
        response = client.post("/api/admin/nfc-cards", json={"uid": "04cafe99", "phone": consumer.phone, "pin": "5555"},
                               headers=admin.headers)
        assert response.status_code == 201
        card = response.json()["card"]
        assert card["status"] == "active"
        assert card["is_primary"] is True
        assert cards_of(client, consumer)[0]["uid"] == "04CAFE99"

    def test_unowned_card_is_available_and_cannot_be_activated(self, client, admin):
        card = client.post("/api/admin/nfc-cards", json={"uid": "04cafe99"}, headers=admin.headers).json()["card"]
        assert card["status"] == "available"
        response = client.post(f"/api/admin/nfc-cards/{card['id']}/activate", headers=admin.headers)
        assert response.status_code == 400

    def test_duplicate_uid(self, client, admin):
        client.post("/api/admin/nfc-cards", json={"uid": "04cafe99"}, headers=admin.headers)
        response = client.post("/api/admin/nfc-cards", json={"uid": "04CAFE99"}, headers=admin.headers)
        assert response.status_code == 400

    def test_blocked_card_cannot_pay(self, client, consumer, admin):
        card = link_card(client, consumer).json()["card"]
        response = client.post(f"/api/admin/nfc-cards/{card['id']}/block", headers=admin.headers)
        assert response.json()["card"]["status"] == "blocked"

        topup_wallet(client, consumer, 1000)
        response = client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 500}, headers=consumer.headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Card is blocked"

        client.post(f"/api/admin/nfc-cards/{card['id']}/activate", headers=admin.headers)
        response = client.post(f"/api/nfc/cards/{card['id']}/topup", json={"amount": 500}, headers=consumer.headers)
        assert response.status_code == 200
