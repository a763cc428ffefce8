"""
Registration, login and credential changes.
"""
import inspect

from fastapi.routing import APIRoute

from conftest import register, auth_headers
from bigpos.main import app


class TestRegister:
    def test_consumer_gets_wallet_and_reward_id(self, client):
        account = register(client, "consumer")
        profile = account.user["consumer_profile"]
        assert profile["gas_reward_wallet_id"].startswith("GRW-")
        assert len(profile["gas_reward_wallet_id"]) == 12

        wallets = client.get("/api/store/wallets", headers=account.headers).json()["wallets"]
        assert [(w["type"], w["balance"]) for w in wallets] == [("dashboard_wallet", 0.0)]

    def test_retailer_profile_created(self, client):
        account = register(client, "retailer", business_name="Corner Shop")
        assert account.user["retailer_profile"]["shop_name"] == "Corner Shop"
        assert account.user["retailer_profile"]["is_verified"] is False

    def test_duplicate_user_rejected(self, client):
        register(client, "consumer", email="dup@example.com", phone="0781111111")
        response = client.post("/api/auth/register", json={
            "role": "consumer", "name": "Again", "email": "dup@example.com", "password": "secret123",
        })
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "User already exists"}

    def test_admin_cannot_self_register(self, client):
        response = client.post("/api/auth/register", json={
            "role": "admin", "name": "Root", "email": "root@example.com", "password": "secret123",
        })
        assert response.status_code == 422

    def test_retailer_requires_business_name(self, client):
        response = client.post("/api/auth/register", json={
            "role": "retailer", "name": "No Shop", "phone": "0782222222", "password": "secret123",
        })
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestLogin:
    def test_password_login(self, client):
        account = register(client, "retailer")
        response = client.post("/api/auth/login", json={
            "email": account.user["email"], "password": account.password, "role": "retailer",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["id"] == account.id

    def test_consumer_pin_login(self, client):
        account = register(client, "consumer")
        response = client.post("/api/auth/login", json={"phone": account.phone, "pin": "1234"})
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "consumer"

    def test_wrong_password(self, client):
        account = register(client, "consumer")
        response = client.post("/api/auth/login", json={"phone": account.phone, "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid credentials"}
        assert response.headers["www-authenticate"] == "Bearer"

    def test_role_mismatch_fails(self, client):
        account = register(client, "consumer")
        response = client.post("/api/auth/login", json={
            "phone": account.phone, "password": account.password, "role": "retailer",
        })
        assert response.status_code == 401


class TestCurrentUser:
    def test_me(self, client, consumer):
        response = client.get("/api/auth/me", headers=consumer.headers)
        assert response.status_code == 200
        assert response.json()["user"]["email"] == consumer.user["email"]

    def test_invalid_token(self, client):
        response = client.get("/api/auth/me", headers=auth_headers("not-a-token"))
        assert response.status_code == 401
        assert response.json()["success"] is False
        assert "detail" not in response.json()

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code in (401, 403)
        assert response.json() == {"success": False, "error": "Not authenticated"}

    def test_role_guard(self, client, consumer):
        response = client.get("/api/retailer/inventory", headers=consumer.headers)
        assert response.status_code == 403
        assert response.json()["success"] is False

    def test_change_password(self, client, consumer):
        response = client.put("/api/auth/password", json={
            "current_password": consumer.password, "new_password": "newsecret1",
        }, headers=consumer.headers)
        assert response.status_code == 200

        response = client.post("/api/auth/login", json={"phone": consumer.phone, "password": "newsecret1"})
        assert response.status_code == 200

    def test_change_password_wrong_current(self, client, consumer):
        response = client.put("/api/auth/password", json={
            "current_password": "wrong-one", "new_password": "newsecret1",
        }, headers=consumer.headers)
        assert response.status_code == 400

    def test_change_pin(self, client, consumer):
        response = client.put("/api/auth/pin", json={"current_pin": "1234", "new_pin": "9876"},
                              headers=consumer.headers)
        assert response.status_code == 200

        response = client.post("/api/auth/login", json={"phone": consumer.phone, "pin": "9876"})
        assert response.status_code == 200


class TestApplication:
    def test_route_handlers_run_in_threadpool(self):
        handlers = [route.endpoint for route in app.routes if isinstance(route, APIRoute)]
        assert handlers
        assert [h.__name__ for h in handlers if inspect.iscoroutinefunction(h)] == []

    def test_http_errors_use_error_envelope(self, client):
        response = client.get("/api/no-such-endpoint")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}
