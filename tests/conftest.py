# =============================================================================
# tests/conftest.py - Pytest configuration
# =============================================================================
# Environment variables are set BEFORE the app is imported: the module
# reads its config and bootstraps the schema at import time.
# Every test then gets its own SQLite file and fresh rate limiters.
# =============================================================================

import os
import sqlite3
import tempfile
from pathlib import Path

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DB_PATH", str(Path(tempfile.mkdtemp()) / "import.db"))

import pytest

from project_tracker.app import app as flask_app
from project_tracker.db import init_db
from project_tracker.guards import init_limiters

# Frozen 300s into a 900s rate-limit window, so Retry-After is always 600.
FROZEN_NOW = 1_700_000_400.0

DEFAULT_PASSWORD = "Secret123"


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(
        TESTING=True,
        DATABASE=tmp_path / "test.db",
        CSRF_ENABLED=True,
        RATE_LIMIT_MAX=1000,
        LOGIN_MAX_ATTEMPTS=5,
        MAX_PROJECTS_PER_USER=50,
    )
    init_db(flask_app.config["DATABASE"])
    init_limiters(flask_app, clock=lambda: FROZEN_NOW)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def other_client(app):
    return app.test_client()


# =============================================================================
# Helpers
# =============================================================================

def csrf_token(client) -> str:
    """Return the session's CSRF token, creating one if needed."""
    with client.session_transaction() as sess:
        return sess.setdefault("csrf_token", "test-csrf-token")


def post(client, path, data=None, **kwargs):
    data = dict(data or {})
    data["csrf_token"] = csrf_token(client)
    return client.post(path, data=data, **kwargs)


def register(client, username="alice", email=None, password=DEFAULT_PASSWORD, confirm=None, **kwargs):
    return post(
        client,
        "/register",
        {
            "username": username,
            "email": email or f"{username}@acme.io",
            "password": password,
            "confirm_password": password if confirm is None else confirm,
        },
        **kwargs,
    )


def login(client, username="alice", password=DEFAULT_PASSWORD, **kwargs):
    return post(client, "/login", {"username": username, "password": password}, **kwargs)


def add_project(client, **fields):
    data = {
        "title": "Inventory Service",
        "short_description": "Track stock levels across warehouses",
        "start_date": "2024-01-15",
        "end_date": "2024-06-30",
        "phase": "development",
    }
    data.update(fields)
    return post(client, "/add-project", data)


def query(app, sql, args=()):
    conn = sqlite3.connect(app.config["DATABASE"])
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(sql, args).fetchall()
    finally:
        conn.close()


def count_rows(app, table) -> int:
    return query(app, f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


def session_user(client):
    with client.session_transaction() as sess:
        return sess.get("user")
