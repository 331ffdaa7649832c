"""
tests/integration/conftest.py: Fixtures and helpers for all integration tests.

Design:
  - Tests run against the database named by TestingConfig (in-memory SQLite
    unless TEST_DATABASE_URL points elsewhere).
  - The app is created once per session using create_app("testing"), with
    receipts written to a temporary directory.
  - All tables are created once via db.create_all() at session start.
  - Between tests, every row is deleted (children first) so tests are
    isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)      -> dict with user + tokens
  - login(client, ...)         -> dict with user + tokens
  - auth_headers(token)        -> {"Authorization": "Bearer <token>"}
  - make_project(client, ...)  -> HTTP response
  - make_expense(client, ...)  -> HTTP response

These are plain functions so they can be called with arbitrary arguments in
any test.
"""

from __future__ import annotations

import pytest

from spendsync.app import create_app
from spendsync.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def receipts_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("receipts")


@pytest.fixture(scope="session")
def app(receipts_dir):
    flask_app = create_app(
        "testing",
        overrides={
            "RECEIPT_STORAGE_BACKEND": "local",
            "RECEIPT_STORAGE_DIR": str(receipts_dir),
        },
    )

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()
        for table in reversed(_db.metadata.sorted_tables):
            _db.session.execute(table.delete())
        _db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def storage(app):
    return app.extensions["receipt_storage"]


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "alice",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """
    Registers a new user and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    if email is None:
        email = f"{name}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"display_name": name.capitalize(), "email": email, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = "Password1") -> dict:
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_project(
    client,
    token: str,
    name: str = "Trip",
    project_type: str = "Trip/Vacation",
    total_budget: str = "0",
    members: list[dict] | None = None,
    monthly_budget: str | None = None,
):
    """Creates a project and returns the HTTP response."""
    payload: dict = {
        "name": name,
        "project_type": project_type,
        "total_budget": total_budget,
        "members": members or [],
    }
    if monthly_budget is not None:
        payload["monthly_budget"] = monthly_budget
    return client.post("/api/v1/projects", json=payload, headers=auth_headers(token))


def make_expense(
    client,
    token: str,
    project_id: str,
    amount: str,
    description: str = "Test Expense",
    category: str | None = None,
    created_at: str | None = None,
):
    """Adds an expense (JSON body, no receipts) and returns the HTTP response."""
    payload: dict = {"description": description, "amount": amount}
    if category is not None:
        payload["category"] = category
    if created_at is not None:
        payload["created_at"] = created_at
    return client.post(
        f"/api/v1/projects/{project_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )
