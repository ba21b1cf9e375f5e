import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main

PASSWORD = "secret123"


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db(monkeypatch):
    test_db = mongomock.MongoClient()["carwash_test"]
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture
def client(db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def superadmin(client):
    res = client.post("/api/auth/register", json={"name": "Owner", "email": "owner@example.com", "password": PASSWORD})
    assert res.status_code == 201
    return res.json()


def _staff_headers(client, superadmin, role, email):
    res = client.post(
        "/api/auth/register",
        json={"name": role.title(), "email": email, "password": PASSWORD, "role": role},
        headers=bearer(superadmin["token"]),
    )
    assert res.status_code == 201
    return bearer(res.json()["token"])


@pytest.fixture
def admin_headers(client, superadmin):
    return _staff_headers(client, superadmin, "admin", "admin@example.com")


@pytest.fixture
def limited_headers(client, superadmin):
    return _staff_headers(client, superadmin, "limited_admin", "viewer@example.com")


def make_washer(client, admin_headers, name, email):
    res = client.post(
        "/api/washer/create",
        json={"name": name, "email": email, "password": PASSWORD, "salary": {"base": 12000, "bonus": 500}},
        headers=admin_headers,
    )
    assert res.status_code == 201
    washer = res.json()
    login = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert login.status_code == 200
    washer["headers"] = bearer(login.json()["token"])
    return washer


@pytest.fixture
def washer(client, admin_headers):
    return make_washer(client, admin_headers, "Ravi", "ravi@example.com")


@pytest.fixture
def new_washer(client, admin_headers):
    def factory(name, email):
        return make_washer(client, admin_headers, name, email)
    return factory
