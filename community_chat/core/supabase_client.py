import logging
from typing import Sequence

from postgrest import CountMethod
from supabase import AsyncClient, acreate_client

from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess, Filter, Order, Subscription
from community_chat.core.exceptions import BackendError


logger = logging.getLogger(__name__)


async def create_supabase_client(settings: Settings) -> AsyncClient:
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError(
            "PUBLIC_SUPABASE_URL and SECRET_API_KEY must be set to reach Supabase."
        )
    return await acreate_client(settings.supabase_url, settings.supabase_key)


def _record_from_payload(payload: dict) -> dict | None:
    """Pull the inserted row out of a postgres_changes payload."""
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        return data["record"]
    if isinstance(payload.get("new"), dict):
        return payload["new"]
    return None


class SupabaseDataAccess(DataAccess):
    """DataAccess over a supabase AsyncClient (postgrest, realtime, storage)."""

    def __init__(self, client: AsyncClient):
        self._client = client
        # subscription id -> (subscription, realtime channel)
        self._channels = {}

    @staticmethod
    def _apply_filters(builder, filters: Sequence[Filter]):
        for f in filters:
            if f.op == "eq":
                builder = builder.eq(f.column, f.value)
            elif f.op == "neq":
                builder = builder.neq(f.column, f.value)
            elif f.op == "in":
                builder = builder.in_(f.column, list(f.value))
            else:
                raise ValueError(f"Unsupported filter operator: {f.op}")
        return builder

    async def _execute(self, operation: str, table: str, builder):
        try:
            return await builder.execute()
        except Exception as e:
            logger.error(f"supabase_error op={operation} table={table} error={e}")
            raise BackendError(operation, table, e) from e

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict]:
        builder = self._apply_filters(
            self._client.table(table).select(columns), filters
        )
        for o in order:
            builder = builder.order(o.column, desc=o.desc)
        if limit is not None:
            builder = builder.limit(limit)

        response = await self._execute("query", table, builder)
        return response.data or []

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        builder = self._apply_filters(
            self._client.table(table).select("*", count=CountMethod.exact, head=True),
            filters,
        )
        response = await self._execute("count", table, builder)
        return response.count or 0

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        response = await self._execute(
            "insert", table, self._client.table(table).insert(rows)
        )
        return response.data or []

    async def update(
        self, table: str, patch: dict, filters: Sequence[Filter]
    ) -> list[dict]:
        builder = self._apply_filters(self._client.table(table).update(patch), filters)
        response = await self._execute("update", table, builder)
        return response.data or []

    async def delete(self, table: str, filters: Sequence[Filter]) -> list[dict]:
        builder = self._apply_filters(self._client.table(table).delete(), filters)
        response = await self._execute("delete", table, builder)
        return response.data or []

    async def subscribe_insert(self, table: str, filter: Filter) -> Subscription:
        if filter.op != "eq":
            raise ValueError("Realtime filters only support equality.")

        subscription = Subscription(table, filter)
        channel = self._client.channel(f"{table}:{subscription.id}")

        def on_insert(payload):
            record = _record_from_payload(payload)
            if record is None:
                logger.warning(f"realtime_payload_without_record table={table}")
                return
            subscription.push(record)

        try:
            channel.on_postgres_changes(
                "INSERT",
                callback=on_insert,
                table=table,
                schema="public",
                filter=f"{filter.column}=eq.{filter.value}",
            )
            await channel.subscribe()
        except Exception as e:
            logger.error(f"supabase_error op=subscribe table={table} error={e}")
            subscription.close()
            raise BackendError("subscribe", table, e) from e

        self._channels[subscription.id] = (subscription, channel)
        logger.info(
            f"realtime_subscribed table={table} {filter.column}={filter.value} "
            f"active={len(self._channels)}"
        )
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        entry = self._channels.pop(subscription.id, None)
        if entry is None:
            return
        _, channel = entry

        try:
            await self._client.remove_channel(channel)
        except Exception as e:
            logger.error(
                f"supabase_error op=unsubscribe table={subscription.table} error={e}"
            )
            raise BackendError("unsubscribe", subscription.table, e) from e

        logger.info(
            f"realtime_unsubscribed table={subscription.table} "
            f"active={len(self._channels)}"
        )

    async def upload_blob(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        storage = self._client.storage.from_(bucket)
        try:
            await storage.upload(
                path, data, {"content-type": content_type, "upsert": "true"}
            )
            return await storage.get_public_url(path)
        except Exception as e:
            logger.error(f"supabase_error op=upload bucket={bucket} error={e}")
            raise BackendError("upload", bucket, e) from e

    async def delete_blob(self, bucket: str, path: str) -> None:
        try:
            await self._client.storage.from_(bucket).remove([path])
        except Exception as e:
            logger.error(f"supabase_error op=delete_blob bucket={bucket} error={e}")
            raise BackendError("delete_blob", bucket, e) from e

    async def close(self) -> None:
        for subscription_id, (subscription, channel) in list(self._channels.items()):
            subscription.close()
            try:
                await self._client.remove_channel(channel)
            except Exception as e:
                logger.warning(f"realtime_channel_close_failed error={e}")
            self._channels.pop(subscription_id, None)
