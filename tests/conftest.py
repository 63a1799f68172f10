"""Shared fixtures: an in-memory backend and an app wired to it."""
from __future__ import annotations

import copy
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Sequence

import jwt
import pytest
from fastapi.testclient import TestClient

from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess, Filter, Order, Subscription
from community_chat.core.exceptions import BackendError
from community_chat.main import create_app


JWT_SECRET = "test-jwt-secret"
SUPABASE_URL = "https://project.supabase.test"
EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _matches(row: dict, filters: Sequence[Filter]) -> bool:
    for f in filters:
        value = row.get(f.column)
        if f.op == "eq" and str(value) != str(f.value):
            return False
        if f.op == "neq" and str(value) == str(f.value):
            return False
        if f.op == "in" and str(value) not in {str(v) for v in f.value}:
            return False
    return True


def _project(row: dict, columns: str) -> dict:
    wanted = [c.strip() for c in columns.split(",") if c.strip()]
    if "*" in wanted:
        return copy.deepcopy(row)
    return {c: copy.deepcopy(row.get(c)) for c in wanted}


class FakeDataAccess(DataAccess):
    """
    In-memory stand-in for the hosted backend.

    Assigns ids and strictly increasing `created_at` values, enforces the
    unique participant pairs, cascades channel/chat deletes, and pushes
    inserted rows to matching insert subscriptions.
    """

    UNIQUE = {
        "chat_participants": ("chat_id", "user_id"),
        "channel_participants": ("channel_id", "user_id"),
    }
    CASCADES = {
        "chats": [("chat_participants", "chat_id"), ("messages", "chat_id")],
        "channels": [
            ("channel_participants", "channel_id"),
            ("channel_messages", "channel_id"),
        ],
    }

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.blobs: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.subscriptions: list[Subscription] = []
        self.failures: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []
        self._ticks = 0

    # helpers for tests
    def now(self) -> datetime:
        self._ticks += 1
        return EPOCH + timedelta(milliseconds=10 * self._ticks)

    def fail(self, operation: str, table: str) -> None:
        self.failures.add((operation, table))

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def add_user(self, username: str, **extra) -> str:
        user_id = str(uuid.uuid4())
        self.rows("profiles").append(
            {"id": user_id, "username": username, "avatar_url": None, **extra}
        )
        return user_id

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if (operation, table) in self.failures:
            raise BackendError(operation, table, RuntimeError("injected failure"))

    # DataAccess
    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict]:
        self._check("query", table)
        rows = [row for row in self.rows(table) if _matches(row, filters)]
        for o in reversed(list(order)):
            rows.sort(
                key=lambda r: (r.get(o.column) is None, str(r.get(o.column) or "")),
                reverse=o.desc,
            )
        if limit is not None:
            rows = rows[:limit]
        return [_project(row, columns) for row in rows]

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        self._check("count", table)
        return sum(1 for row in self.rows(table) if _matches(row, filters))

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        self._check("insert", table)
        created = []
        for row in rows:
            stored = {"id": str(uuid.uuid4()), "created_at": iso(self.now()), **row}
            unique = self.UNIQUE.get(table)
            if unique and any(
                all(str(existing.get(c)) == str(stored.get(c)) for c in unique)
                for existing in self.rows(table)
            ):
                raise BackendError(
                    "insert", table, RuntimeError("duplicate key value violates unique constraint")
                )
            self.rows(table).append(stored)
            created.append(copy.deepcopy(stored))

        for row in created:
            for subscription in self.subscriptions:
                if subscription.table == table and _matches(row, [subscription.filter]):
                    subscription.push(copy.deepcopy(row))
        return created

    async def update(self, table: str, patch: dict, filters: Sequence[Filter]) -> list[dict]:
        self._check("update", table)
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(patch)
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, filters: Sequence[Filter]) -> list[dict]:
        self._check("delete", table)
        doomed = [row for row in self.rows(table) if _matches(row, filters)]
        self.tables[table] = [row for row in self.rows(table) if row not in doomed]
        for row in doomed:
            for child, key in self.CASCADES.get(table, []):
                self.tables[child] = [
                    r for r in self.rows(child) if str(r.get(key)) != str(row["id"])
                ]
        return doomed

    async def subscribe_insert(self, table: str, filter: Filter) -> Subscription:
        self._check("subscribe", table)
        subscription = Subscription(table, filter)
        self.subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)
        self._check("unsubscribe", subscription.table)

    async def upload_blob(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self._check("upload", bucket)
        self.blobs[(bucket, path)] = (data, content_type)
        return f"{SUPABASE_URL}/storage/v1/object/public/{bucket}/{path}"

    async def delete_blob(self, bucket: str, path: str) -> None:
        self._check("delete_blob", bucket)
        self.blobs.pop((bucket, path), None)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake() -> FakeDataAccess:
    return FakeDataAccess()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_key="service-role-key",
        jwt_secret=JWT_SECRET,
        dedup_window_seconds=3,
    )


@pytest.fixture
def token_for(settings: Settings) -> Callable[[str], str]:
    def _token(user_id: str) -> str:
        return jwt.encode(
            {
                "sub": user_id,
                "iss": settings.jwt_issuer,
                "exp": int(time.time()) + 3600,
                "role": "authenticated",
            },
            JWT_SECRET,
            algorithm="HS256",
        )
    return _token


@pytest.fixture
def client(fake: FakeDataAccess, settings: Settings) -> Iterator[TestClient]:
    app = create_app(settings, data_access=fake)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(token_for) -> Callable[[str], dict]:
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id)}"}
    return _headers
