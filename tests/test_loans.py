"""
Loan application, admin approval, disbursement and repayment.
"""
from conftest import topup_wallet, wallet_balance


def apply(client, consumer, amount=10000, **extra):
    body = {"amount": amount, "purpose": "Stock up"}
    body.update(extra)
    return client.post("/api/store/loans/apply", json=body, headers=consumer.headers)


def approved_loan(client, consumer, admin, amount=10000):
    loan = apply(client, consumer, amount).json()["loan"]
    response = client.post(f"/api/admin/loans/{loan['id']}/approve", headers=admin.headers)
    assert response.status_code == 200, response.text
    return response.json()["loan"]


def repay(client, consumer, loan_id, amount, method="wallet"):
    return client.post(f"/api/store/loans/{loan_id}/repay", json={"amount": amount, "payment_method": method},
                       headers=consumer.headers)


class TestApply:
    def test_application_is_pending(self, client, consumer):
        response = apply(client, consumer)
        assert response.status_code == 201
        loan = response.json()["loan"]
        assert loan["status"] == "pending"
        assert loan["loan_number"].startswith("LOAN-")
        assert loan["due_date"] is not None

    def test_amount_cap(self, client, consumer):
        response = apply(client, consumer, 50001)
        assert response.status_code == 400

    def test_unknown_loan_product(self, client, consumer):
        response = apply(client, consumer, loan_product_id="lp_404")
        assert response.status_code == 404

    def test_products_and_eligibility(self, client, consumer, admin):
        products = client.get("/api/store/loans/products", headers=consumer.headers).json()["products"]
        assert {p["id"] for p in products} >= {"lp_1", "lp_2"}

        body = client.get("/api/store/loans/eligibility", headers=consumer.headers).json()
        assert (body["credit_score"], body["max_amount"]) == (50, 5000)

        client.post(f"/api/admin/consumers/{consumer.profile_id}/verify", headers=admin.headers)
        body = client.get("/api/store/loans/eligibility", headers=consumer.headers).json()
        assert (body["credit_score"], body["max_amount"]) == (80, 100000)


class TestApproval:
    def test_approve_disburses_to_credit_wallet(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 8000)
        assert loan["status"] == "approved"
        assert loan["outstanding_balance"] == 8000.0
        assert wallet_balance(client, consumer, "credit_wallet") == 8000.0

        txns = client.get("/api/store/loans/transactions", headers=consumer.headers).json()["transactions"]
        assert txns[0]["amount"] == 8000.0
        assert txns[0]["reference"] == str(loan["id"])

    def test_cannot_approve_twice(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin)
        response = client.post(f"/api/admin/loans/{loan['id']}/approve", headers=admin.headers)
        assert response.status_code == 400
        assert wallet_balance(client, consumer, "credit_wallet") == 10000.0

    def test_reject(self, client, consumer, admin):
        loan = apply(client, consumer).json()["loan"]
        response = client.post(f"/api/admin/loans/{loan['id']}/reject", headers=admin.headers)
        assert response.json()["loan"]["status"] == "rejected"
        assert wallet_balance(client, consumer, "credit_wallet") == 0.0

    def test_admin_list_by_status(self, client, consumer, admin):
        apply(client, consumer)
        approved_loan(client, consumer, admin)
        body = client.get("/api/admin/loans", params={"status": "pending"}, headers=admin.headers).json()
        assert len(body["loans"]) == 1


class TestRepay:
    def test_wallet_repayment_replenishes_credit(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 10000)
        topup_wallet(client, consumer, 6000)

        response = repay(client, consumer, loan["id"], 4000)
        assert response.status_code == 200, response.text
        body = response.json()["loan"]
        assert body["amount_repaid"] == 4000.0
        assert body["outstanding_balance"] == 6000.0
        assert body["status"] == "approved"
        assert wallet_balance(client, consumer) == 2000.0
        assert wallet_balance(client, consumer, "credit_wallet") == 14000.0

    def test_full_repayment_closes_loan(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 5000)
        response = repay(client, consumer, loan["id"], 5000, method="credit_wallet")
        assert response.json()["loan"]["status"] == "repaid"
        assert wallet_balance(client, consumer, "credit_wallet") == 0.0

        response = repay(client, consumer, loan["id"], 1, method="credit_wallet")
        assert response.status_code == 400

    def test_overpayment_rejected(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 5000)
        response = repay(client, consumer, loan["id"], 5001, method="credit_wallet")
        assert response.status_code == 400
        assert response.json()["outstanding"] == 5000.0

    def test_insufficient_wallet_leaves_loan_untouched(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 5000)
        response = repay(client, consumer, loan["id"], 3000)
        assert response.status_code == 400
        loans = client.get("/api/store/loans", headers=consumer.headers).json()
        assert loans["loans"][0]["amount_repaid"] == 0.0
        assert loans["summary"]["total_outstanding"] == 5000.0

    def test_mobile_money_repayment(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 5000)
        response = repay(client, consumer, loan["id"], 2000, method="mobile_money")
        assert response.status_code == 200
        assert wallet_balance(client, consumer, "credit_wallet") == 7000.0

    def test_active_ledger_schedule(self, client, consumer, admin):
        loan = approved_loan(client, consumer, admin, 8000)
        repay(client, consumer, loan["id"], 2000, method="credit_wallet")

        active = client.get("/api/store/loans/active", headers=consumer.headers).json()["loan"]
        assert [entry["status"] for entry in active["schedule"]] == ["paid", "upcoming", "upcoming", "upcoming"]
        assert active["next_payment"]["installment"] == 2
        assert active["schedule"][0]["amount"] == 2000.0
