"""
Shared pytest fixtures for backend tests.
Uses a temporary SQLite file per test and a scripted oracle instead of Claude.
"""
import asyncio
import pytest
import sqlite3
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
import database
from models import OracleResponse


class ScriptedOracle:
    """Answers with queued responses in order and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def respond(self, message, history, context, tracker):
        self.requests.append({
            "message": message,
            "history": list(history),
            "context": list(context),
            "tracker": tracker,
        })
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            return OracleResponse.model_validate(item)
        return item


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            due_at TEXT,
            range_start TEXT,
            range_end TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL
        );

        CREATE TABLE conversations (
            id INTEGER PRIMARY KEY,
            title TEXT DEFAULT 'Untitled',
            messages TEXT DEFAULT '[]',
            tracker TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def store(test_db):
    return database.TaskStore()


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def collect():
    """Drain an async event stream into a list."""
    def _collect(events):
        async def gather():
            return [event async for event in events]
        return asyncio.run(gather())
    return _collect


@pytest.fixture
def app_client(test_db, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations.
    """
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(database, "init_db", lambda: None)

    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def chat_oracle(oracle, monkeypatch):
    """Route /chat through the scripted oracle with an API key configured."""
    import main

    monkeypatch.setattr(main, "oracle", oracle)
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "test-key")
    return oracle
