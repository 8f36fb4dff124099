"""Shared test fixtures for ormconsole.

Provides a file-backed SQLite database with a small schema, a connected
DataHandle over it, and in-memory fakes for driving consoles without a
database.
"""

from __future__ import annotations

import asyncio
import math
from io import StringIO

import pytest
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
)

from ormconsole.client import DataHandle
from ormconsole.exceptions import OperationError, UnknownModelError
from ormconsole.models.config import ConsoleConfig
from ormconsole.models.schema import EntityInfo, FieldInfo


# ------------------------------------------------------------------
# Database fixtures
# ------------------------------------------------------------------

def create_schema(url: str) -> None:
    """Create ``user`` and ``post`` tables in the database at *url*."""
    metadata = MetaData()
    Table(
        "user",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(50), nullable=False, unique=True),
        Column("email", String(100), nullable=True),
        Column("created_at", DateTime, nullable=True),
    )
    Table(
        "post",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("title", String(100), nullable=False),
        Column("user_id", Integer, ForeignKey("user.id"), nullable=True),
    )
    engine = create_engine(url)
    metadata.create_all(engine)
    engine.dispose()


def seed_users(url: str, names: list[str]) -> None:
    engine = create_engine(url)
    metadata = MetaData()
    metadata.reflect(engine)
    with engine.begin() as conn:
        for name in names:
            conn.execute(insert(metadata.tables["user"]).values(name=name))
    engine.dispose()


@pytest.fixture
def db_url(tmp_path) -> str:
    """URL of a fresh SQLite database with the test schema."""
    url = f"sqlite:///{tmp_path / 'test.db'}"
    create_schema(url)
    return url


@pytest.fixture
def seeded_url(db_url) -> str:
    """Test database holding users Al and Bo."""
    seed_users(db_url, ["Al", "Bo"])
    return db_url


@pytest.fixture
def handle(seeded_url):
    """Connected DataHandle over the seeded database."""
    h = DataHandle(seeded_url)
    h.connect()
    yield h
    h.disconnect()


def run(coro):
    """Run a coroutine to completion (accessor operations are async)."""
    return asyncio.run(coro)


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------

class FakeAccessor:
    """Accessor stand-in recording every call."""

    def __init__(self, name: str, records=None, error: Exception | None = None) -> None:
        self.name = name
        self.records = list(records or [])
        self.error = error
        self.calls: list[tuple] = []
        self.primary_key = ["id"]

    def _record(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        if self.error is not None:
            raise self.error

    async def find_many(self, where=None, *, order_by=None, take=None, skip=None):
        self._record("find_many", where)
        records = list(self.records)
        if order_by and order_by[0].startswith("-"):
            records.reverse()
        return records[:take] if take is not None else records

    async def count(self, where=None):
        self._record("count", where)
        return len(self.records)

    async def create(self, data):
        self._record("create", data)
        record = {"id": len(self.records) + 1, **data}
        self.records.append(record)
        return record

    async def update(self, id, data):
        self._record("update", id, data)
        if isinstance(id, float) and math.isnan(id):
            raise OperationError(f"Invalid id for {self.name}: {id!r}")
        return {"id": id, **data}

    async def delete(self, id):
        self._record("delete", id)
        if isinstance(id, float) and math.isnan(id):
            raise OperationError(f"Invalid id for {self.name}: {id!r}")
        return {"id": id}


class FakeHandle:
    """DataHandle stand-in with in-memory accessors."""

    def __init__(self, accessors=None, *, describe_error: Exception | None = None) -> None:
        self._accessors = {a.name: a for a in (accessors or [])}
        self.describe_error = describe_error
        self.events: list[str] = []

    @property
    def connect_calls(self) -> int:
        return self.events.count("connect")

    @property
    def disconnect_calls(self) -> int:
        return self.events.count("disconnect")

    def connect(self) -> None:
        self.events.append("connect")

    def disconnect(self) -> None:
        self.events.append("disconnect")

    def refresh(self) -> None:
        self.events.append("refresh")

    def accessor(self, name: str) -> FakeAccessor:
        if name not in self._accessors:
            raise UnknownModelError(name, sorted(self._accessors))
        return self._accessors[name]

    def entity_names(self) -> list[str]:
        return list(self._accessors)

    def describe(self) -> list[EntityInfo]:
        if self.describe_error is not None:
            raise self.describe_error
        return [
            EntityInfo(name=n, table=n, fields=[FieldInfo(name="id", type="INTEGER", primary_key=True)])
            for n in self._accessors
        ]


class ScriptedInput:
    """``input``-style callable replaying lines, then raising EOFError."""

    def __init__(self, lines: list[str]) -> None:
        self.lines = list(lines)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)


USERS = [{"id": 1, "name": "Al"}, {"id": 2, "name": "Bo"}]


@pytest.fixture
def user_accessor() -> FakeAccessor:
    return FakeAccessor("user", USERS)


@pytest.fixture
def fake_handle(user_accessor) -> FakeHandle:
    return FakeHandle([user_accessor])


def quiet_config(**kwargs) -> ConsoleConfig:
    """Config with history disabled."""
    return ConsoleConfig(history_file=None, **kwargs)


def run_session(console_cls, handle, lines: list[str], **config):
    """Run a full console session over scripted input.

    Returns (console, output text, exit code).
    """
    out = StringIO()
    console = console_cls(
        handle,
        config=quiet_config(**config),
        output=out,
        input_fn=ScriptedInput(lines),
    )
    code = asyncio.run(console.run())
    return console, out.getvalue(), code
