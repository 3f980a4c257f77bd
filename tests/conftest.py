import sqlite3

import pytest
from fastapi.testclient import TestClient

from classifieds.config import Settings
from classifieds.main import create_app

PASSWORD = "secret123"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def client(db_path):
    app = create_app(Settings(DATABASE_URL=f"sqlite+aiosqlite:///{db_path}"))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def query(db_path):
    """Run raw SQL against the test database, bypassing the API."""

    def _query(sql, *params):
        conn = sqlite3.connect(db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
            conn.commit()
            return rows
        finally:
            conn.close()

    return _query


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, name, email, password=PASSWORD, phone=None):
    body = {"name": name, "email": email, "password": password}
    if phone:
        body["phone"] = phone
    response = client.post("/api/auth/register", json=body)
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    return data["user"], auth(data["token"])


@pytest.fixture
def alice(client):
    return register(client, "Alice", "alice@example.com")


@pytest.fixture
def bob(client):
    return register(client, "Bob", "bob@example.com")


@pytest.fixture
def admin(client, query):
    user, headers = register(client, "Admin", "admin@example.com")
    query("UPDATE users SET role = 'ADMIN' WHERE id = ?", user["id"])
    return user, headers


@pytest.fixture
def category(client, admin):
    _, headers = admin
    response = client.post("/api/categories", json={"name": "Electronics"}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["category"]


def ad_payload(category_id, **overrides):
    payload = {
        "title": "Used laptop",
        "description": "A well kept laptop with charger",
        "price": 250,
        "categoryId": category_id,
        "location": "Algiers",
        "condition": "USED",
        "images": [{"url": "https://img.example.com/1.jpg"}],
    }
    payload.update(overrides)
    return payload


def create_ad(client, headers, category_id, **overrides):
    response = client.post("/api/ads", json=ad_payload(category_id, **overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["ad"]
