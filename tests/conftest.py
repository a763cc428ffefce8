"""
Shared fixtures: an in-memory SQLite database per test, a TestClient with
``get_db`` overridden, and helpers that register users of each role.

Environment is set before ``bigpos`` is imported so settings pick it up.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEV_MODE"] = "true"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key"

import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bigpos.database import Base, get_db
from bigpos.crud.users import crud_user
from bigpos.main import app

_counter = itertools.count(1)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    """A session for arranging and inspecting state directly."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class Account:
    """A registered user with its bearer headers."""

    def __init__(self, payload: dict, password: str, pin=None):
        self.token = payload["access_token"]
        self.user = payload["user"]
        self.headers = auth_headers(self.token)
        self.password = password
        self.pin = pin

    @property
    def id(self) -> int:
        return self.user["id"]

    @property
    def phone(self) -> str:
        return self.user["phone"]

    @property
    def profile_id(self) -> int:
        for key in ("consumer_profile", "retailer_profile", "wholesaler_profile"):
            if key in self.user:
                return self.user[key]["id"]
        raise KeyError("no profile")


def register(client: TestClient, role: str, **overrides) -> Account:
    n = next(_counter)
    body = {
        "role": role,
        "name": f"{role.title()} {n}",
        "email": f"{role}{n}@example.com",
        "phone": f"0788{n:06d}",
        "password": "secret123",
    }
    if role == "consumer":
        body["pin"] = "1234"
    if role in ("retailer", "wholesaler"):
        body["business_name"] = f"{role.title()} Shop {n}"
        body["district"] = "Gasabo"
    body.update(overrides)
    response = client.post("/api/auth/register", json=body)
    assert response.status_code == 201, response.text
    return Account(response.json(), body["password"], body.get("pin"))


@pytest.fixture
def consumer(client) -> Account:
    return register(client, "consumer")


@pytest.fixture
def retailer(client) -> Account:
    return register(client, "retailer")


@pytest.fixture
def wholesaler(client) -> Account:
    return register(client, "wholesaler")


@pytest.fixture
def admin(client, db) -> Account:
    crud_user.ensure_admin(db, "admin@example.com", "adminpass")
    db.commit()
    response = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "adminpass"})
    assert response.status_code == 200, response.text
    return Account(response.json(), "adminpass")


# ====================
# Arrangement helpers
# ====================


def create_product(client, account: Account, path: str = "/api/retailer/inventory", **fields) -> dict:
    body = {"name": f"Product {next(_counter)}", "price": 1000, "cost_price": 700, "stock": 20}
    body.update(fields)
    response = client.post(path, json=body, headers=account.headers)
    assert response.status_code == 201, response.text
    return response.json()["product"]


def link_consumer(client, consumer: Account, retailer: Account, admin: Account) -> None:
    """Verify the retailer and approve a link request from the consumer."""
    response = client.post(f"/api/admin/retailers/{retailer.profile_id}/verify", headers=admin.headers)
    assert response.status_code == 200, response.text
    response = client.post(
        "/api/store/retailers/link-request",
        json={"retailer_id": retailer.profile_id, "message": "Hello"},
        headers=consumer.headers,
    )
    assert response.status_code == 201, response.text
    request_id = response.json()["request"]["id"]
    response = client.post(
        f"/api/retailer/customer-link-requests/{request_id}/approve", headers=retailer.headers
    )
    assert response.status_code == 200, response.text


def topup_wallet(client, consumer: Account, amount) -> dict:
    response = client.post(
        "/api/store/wallets/topup",
        json={"amount": amount, "payment_method": "mobile_money"},
        headers=consumer.headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["wallet"]


def wallet_balance(client, consumer: Account, wallet_type: str = "dashboard_wallet") -> float:
    response = client.get("/api/store/wallets", headers=consumer.headers)
    for wallet in response.json()["wallets"]:
        if wallet["type"] == wallet_type:
            return wallet["balance"]
    return 0.0


def retailer_balance(client, retailer: Account) -> float:
    return client.get("/api/retailer/wallet", headers=retailer.headers).json()["wallet_balance"]


def reward_units(client, consumer: Account) -> float:
    return client.get("/api/store/reward-gas/balance", headers=consumer.headers).json()["units"]


def reward_wallet_id(consumer: Account) -> str:
    return consumer.user["consumer_profile"]["gas_reward_wallet_id"]


@pytest.fixture
def shop(client, consumer, retailer, admin):
    """A consumer linked to a verified retailer that stocks one product."""
    link_consumer(client, consumer, retailer, admin)
    product = create_product(client, retailer, name="Rice 5kg", price=3000, cost_price=2400, stock=10)
    return {"consumer": consumer, "retailer": retailer, "admin": admin, "product": product}

