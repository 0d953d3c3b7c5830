"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite (Flask-SQLAlchemy keeps one shared connection).
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - The service clock (quarter_calendar.utc_today) is pinned to FIXED_TODAY
    for every test, so HTTP calls that do not take `today` are deterministic.
    Service-level tests still pass `today` explicitly.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)       → response data dict (user, group, token)
  - login(client, ...)          → response data dict (user, token)
  - auth_headers(token)         → {"Authorization": "Bearer <token>"}
  - make_admin(app, client)     → admin access token
  - make_user(session, ...)     → User row (no HTTP, no group assignment)
  - make_group(session, ...)    → BibleGroup row, committed

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import text

from biblebus.app import create_app
from biblebus.app.extensions import db as _db
from biblebus.app.models.user import User
from biblebus.app.services import auth_service, group_service, quarter_calendar

FIXED_TODAY = date(2026, 1, 5)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the app in 'testing' mode once and builds the schema."""
    flask_app = create_app("testing")

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
    """
    Deletes all rows after every test, children first:
    group_members → bible_groups → users.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.execute(text("DELETE FROM group_members"))
        _db.session.execute(text("DELETE FROM bible_groups"))
        _db.session.execute(text("DELETE FROM users"))
        _db.session.commit()


@pytest.fixture(autouse=True)
def frozen_today(monkeypatch):
    monkeypatch.setattr(quarter_calendar, "utc_today", lambda: FIXED_TODAY)
    return FIXED_TODAY


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def session(app):
    """The Flask-SQLAlchemy session inside an app context, for service-level tests."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()


@pytest.fixture
def open_group(app):
    """The January 2026 quarter, open for registration on FIXED_TODAY."""
    with app.app_context():
        group = make_group(_db.session, "2026-01-01")
        return group.id


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "Alice Walker",
    email: str | None = None,
    password: str = "Password1",
    expected_status: int = 201,
) -> dict:
    """
    Registers a new user and returns the response body's data (or error).
    Returns: {"user": {...}, "group": {...}, "message": "...", "access_token": "..."}
    """
    if email is None:
        email = f"{name.split()[0].lower()}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"name": name, "email": email, "password": password},
    )
    assert resp.status_code == expected_status, f"register failed: {resp.get_json()}"
    body = resp.get_json()
    return body["data"] if expected_status == 201 else body["error"]


def login(client, email: str, password: str = "Password1") -> dict:
    """Returns: {"user": {...}, "access_token": "..."}"""
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_admin(app, client, email: str = "admin@test.com", password: str = "AdminPass1") -> str:
    """Creates an admin directly through the service and returns a fresh token."""
    with app.app_context():
        auth_service.create_admin(email, "Site Admin", password, _db.session)
        _db.session.commit()
    return login(client, email, password)["access_token"]


def make_user(session, name: str = "Reader", email: str | None = None) -> User:
    """Inserts a bare user row, bypassing registration and group assignment."""
    if email is None:
        email = f"{name.lower().replace(' ', '.')}@test.com"
    user = User(name=name, email=email, password_hash="not-a-real-hash")
    session.add(user)
    session.flush()
    return user


def make_group(session, start, **kwargs):
    """Creates a group through the service and commits it."""
    kwargs.setdefault("today", FIXED_TODAY)
    group = group_service.create_group_with_start(start, session, **kwargs)
    session.commit()
    return group
