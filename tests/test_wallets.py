"""
Consumer wallet top-ups, transaction history and refund requests.
"""
from conftest import topup_wallet, wallet_balance


class TestTopup:
    def test_mobile_money_topup_credits_dashboard_wallet(self, client, consumer):
        wallet = topup_wallet(client, consumer, 5000)
        assert wallet["balance"] == 5000.0

        txns = client.get("/api/store/wallets/transactions", headers=consumer.headers).json()
        assert txns["total"] == 1
        txn = txns["transactions"][0]
        assert txn["type"] == "topup"
        assert txn["amount"] == 5000.0
        assert txn["reference"].startswith("DEV-TXN-")

    def test_topup_requires_positive_amount(self, client, consumer):
        response = client.post("/api/store/wallets/topup", json={"amount": 0}, headers=consumer.headers)
        assert response.status_code == 422

    def test_transactions_filter_by_wallet_type(self, client, consumer):
        topup_wallet(client, consumer, 1000)
        response = client.get(
            "/api/store/wallets/transactions", params={"wallet_type": "credit_wallet"}, headers=consumer.headers
        )
        assert response.json()["total"] == 0


class TestRefunds:
    def test_refund_request_waits_for_admin(self, client, consumer, admin):
        topup_wallet(client, consumer, 3000)
        response = client.post(
            "/api/store/wallets/refund-request", json={"amount": 1000, "reason": "Changed my mind"},
            headers=consumer.headers,
        )
        assert response.status_code == 201
        txn = response.json()["transaction"]
        assert txn["status"] == "pending"
        assert txn["amount"] == -1000.0
        assert wallet_balance(client, consumer) == 3000.0

        response = client.post(f"/api/admin/refunds/{txn['id']}/approve", headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["transaction"]["status"] == "completed"
        assert wallet_balance(client, consumer) == 2000.0

    def test_refund_rejected_keeps_balance(self, client, consumer, admin):
        topup_wallet(client, consumer, 3000)
        txn = client.post(
            "/api/store/wallets/refund-request", json={"amount": 1000}, headers=consumer.headers
        ).json()["transaction"]

        response = client.post(f"/api/admin/refunds/{txn['id']}/reject", headers=admin.headers)
        assert response.json()["transaction"]["status"] == "rejected"
        assert wallet_balance(client, consumer) == 3000.0

        response = client.post(f"/api/admin/refunds/{txn['id']}/approve", headers=admin.headers)
        assert response.status_code == 400

    def test_refund_above_balance(self, client, consumer):
        topup_wallet(client, consumer, 500)
        response = client.post(
            "/api/store/wallets/refund-request", json={"amount": 1000}, headers=consumer.headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient balance for refund"

    def test_only_admin_approves(self, client, consumer):
        response = client.post("/api/admin/refunds/1/approve", headers=consumer.headers)
        assert response.status_code == 403
