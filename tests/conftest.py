"""Shared fixtures for the nosqlite test suite."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path when running without an install
sys.path.append(str(Path(__file__).resolve().parents[1]))

from nosqlite import Collection, MemoryStore, NoSQLite  # noqa: E402


@pytest.fixture
def coll() -> Collection:
    return Collection("things", MemoryStore())


@pytest.fixture
def users() -> Collection:
    users = Collection("users", MemoryStore())
    users.insert([
        {"name": "John Doe", "age": 30, "email": "john@example.com"},
        {"name": "Jane Smith", "age": 25, "email": "jane@example.com"},
        {"name": "Bob Johnson", "age": 35, "email": "bob@example.com"},
    ])
    return users


@pytest.fixture
def db(tmp_path) -> NoSQLite:
    database = NoSQLite(str(tmp_path / "db"))
    yield database
    database.close()
