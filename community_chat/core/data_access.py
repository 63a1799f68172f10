"""
Data-Access Interface consumed by the conversation layer.

Everything that touches the hosted backend goes through a `DataAccess`
instance that the application builds once at startup and injects into
the components. Implementations raise `BackendError` for any failure.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Iterable, NamedTuple, Sequence


class Filter(NamedTuple):
    column: str
    op: str  # "eq" | "neq" | "in"
    value: Any


class Order(NamedTuple):
    column: str
    desc: bool = False


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", list(values))


_CLOSED = object()


class Subscription:
    """
    Live feed of rows inserted into `table` that match `filter`.

    Iterate with `async for row in subscription`. Iteration ends once the
    subscription is closed; rows pushed after that are dropped.
    """

    def __init__(self, table: str, filter: Filter):
        self.id = uuid.uuid4().hex
        self.table = table
        self.filter = filter
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, row: dict) -> None:
        if not self._closed:
            self._queue.put_nowait(row)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        row = await self._queue.get()
        if row is _CLOSED:
            # keep the sentinel for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return row


class DataAccess(ABC):
    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict]: ...

    @abstractmethod
    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        """Count-only mode of `query`."""

    @abstractmethod
    async def insert(self, table: str, rows: list[dict]) -> list[dict]: ...

    @abstractmethod
    async def update(
        self, table: str, patch: dict, filters: Sequence[Filter]
    ) -> list[dict]: ...

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[Filter]) -> list[dict]: ...

    @abstractmethod
    async def subscribe_insert(self, table: str, filter: Filter) -> Subscription: ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None: ...

    @abstractmethod
    async def upload_blob(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        """Store `data` and return its public URL."""

    @abstractmethod
    async def delete_blob(self, bucket: str, path: str) -> None: ...

    async def close(self) -> None:
        return None
