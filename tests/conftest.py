"""
tests/conftest.py
"""
from __future__ import annotations

import itertools
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# keep the app from writing skyblog/.secret_key during tests
os.environ.setdefault("SECRET_KEY", "testing-secret-key")

from skyblog import blog  # noqa: E402
from skyblog.blog import app, create_account, get_db, init_db  # noqa: E402

CSRF = "test-token"          # shared constant so the token matches the session


@pytest.fixture(autouse=True)
def _configure_app(tmp_path: Path, monkeypatch: MonkeyPatch) -> Path:
    """
    Every test gets its own sqlite file and a cheap password hash.
    The config keys are restored by monkeypatch afterwards.
    """
    db_file = tmp_path / "test.sqlite3"
    for key, value in {
        "TESTING": True,
        "DATABASE": str(db_file),
        "PASSWORD_HASH_METHOD": "pbkdf2:sha256:1000",
        "SIGNIN_RATE_LIMIT": 0,
        "OPEN_WEATHER_KEY": "test-key",
        "WEATHER_URL": "https://weather.test/data/2.5/weather",
    }.items():
        monkeypatch.setitem(app.config, key, value)

    with app.app_context():
        init_db()
    return db_file


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Test client plus an application context, so helpers can use get_db().
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture(autouse=True)
def _ticking_clock(monkeypatch: MonkeyPatch):
    """
    Patch skyblog.blog.local_now so every call is one second later
    than the previous one; timestamps are predictable and always change.
    """
    counter = itertools.count()         # 0, 1, 2, …
    base = datetime(2026, 10, 18, 15, 4, 5)

    def _fake_now():
        return base + timedelta(seconds=next(counter))

    monkeypatch.setattr(blog, "local_now", _fake_now)


# ───────────────────────── shared helpers ─────────────────────────────
def make_user(user_id: str = "alice", password: str = "pw123", name: str = "Alice A") -> None:
    """Insert an account directly (needs an active app context)."""
    create_account(user_id, password, name, db=get_db())


def act_as(client: FlaskClient, user_id: str = "alice", name: str = "Alice A") -> None:
    """Put *user_id* into the client's session without going through the form."""
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["display_name"] = name
        sess["csrf"] = CSRF
