"""
Realtime subscription manager.

One backend channel per subscribe() call. Each channel gets its own delivery
queue and worker task, so a slow callback on one table never holds up events
for another, and events for a channel reach its callback one at a time in the
order the backend sent them.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..config.logfire_config import get_logger
from ..errors import SubscriptionError
from .models import CHANGE_TYPES, ChangeCallback, ChangeEvent, EventFilter, Subscription, utc_now_iso

logger = get_logger(__name__)

_FAILED_STATES = {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}


def normalize_change(payload: Any, table: str) -> ChangeEvent:
    """
    Convert a raw postgres_changes notification into a ChangeEvent.

    Accepts the realtime-py shape ({"data": {"type", "record", "old_record",
    "commit_timestamp"}}) as well as the flat supabase-js shape
    ({"eventType", "new", "old"}).
    """
    if not isinstance(payload, Mapping):
        raise ValueError(f"Unexpected change payload: {payload!r}")
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        raise ValueError(f"Unexpected change payload: {payload!r}")

    change_type = str(data.get("type") or data.get("eventType") or "").upper()
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown change type {change_type!r}")

    record = data.get("record", data.get("new")) or None
    old_record = data.get("old_record", data.get("old")) or None

    return ChangeEvent(
        type=change_type,  # type: ignore[arg-type]
        table=data.get("table") or table,
        record=dict(record) if record else None,
        old_record=dict(old_record) if old_record else None,
        timestamp=data.get("commit_timestamp") or utc_now_iso(),
    )


@dataclass(eq=False)
class _Channel:
    id: str
    table: str
    callback: ChangeCallback
    client: Any
    native: Any = None
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: asyncio.Task | None = None
    active: bool = True

    def on_change(self, payload: Any) -> None:
        if not self.active:
            return
        try:
            event = normalize_change(payload, self.table)
        except ValueError as e:
            logger.warning("Dropping malformed change on channel %s: %s", self.id, e)
            return
        self.queue.put_nowait(event)

    async def deliver(self) -> None:
        while True:
            event = await self.queue.get()
            if event is None or not self.active:
                return
            try:
                result = self.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Realtime callback failed (channel=%s, table=%s, type=%s)",
                    self.id,
                    self.table,
                    event.type,
                )

    def stop(self) -> None:
        """Stop future delivery; an in-flight callback is left to finish."""
        self.active = False
        self.queue.put_nowait(None)


class ChannelRegistry:
    """
    Active channels keyed by channel name. Owned by one provider, which
    calls close_all() on disconnect.
    """

    def __init__(self, subscribe_timeout: float = 10.0) -> None:
        self._subscribe_timeout = subscribe_timeout
        self._channels: dict[str, _Channel] = {}
        self._lock = asyncio.Lock()
        self._counter = itertools.count(1)
        self._workers: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._channels

    def _channel_name(self, schema: str, table: str) -> str:
        return f"{schema}-{table}-{next(self._counter)}-{uuid.uuid4().hex[:8]}"

    async def open(
        self,
        client: Any,
        table: str,
        callback: ChangeCallback,
        *,
        event: EventFilter = "*",
        filter: str | None = None,
        schema: str = "public",
    ) -> Subscription:
        """
        Open a channel and return its Subscription once the backend confirms it.

        Raises:
            SubscriptionError: channel setup failed; nothing stays registered.
        """
        if event != "*" and event not in CHANGE_TYPES:
            raise SubscriptionError(f"Unsupported realtime event {event!r}", operation="subscribe", table=table)

        loop = asyncio.get_running_loop()
        name = self._channel_name(schema, table)
        handle = _Channel(id=name, table=table, callback=callback, client=client)
        ready: asyncio.Future = loop.create_future()

        def on_status(status: Any, err: Exception | None = None) -> None:
            state = str(getattr(status, "value", status)).upper()
            if ready.done():
                return
            if state == "SUBSCRIBED":
                ready.set_result(True)
            elif state in _FAILED_STATES:
                ready.set_exception(
                    SubscriptionError(
                        f"Channel {name} reported {state}: {err}", operation="subscribe", table=table
                    )
                )

        try:
            handle.native = client.channel(name)
            handle.native.on_postgres_changes(
                event, callback=handle.on_change, table=table, schema=schema, filter=filter
            )
            await handle.native.subscribe(on_status)
            await asyncio.wait_for(ready, timeout=self._subscribe_timeout)
        except Exception as e:
            handle.active = False
            if handle.native is not None:
                await self._remove_quietly(handle)
            if isinstance(e, SubscriptionError):
                raise
            if isinstance(e, asyncio.TimeoutError):
                raise SubscriptionError(
                    f"Channel {name} was not confirmed within {self._subscribe_timeout}s",
                    operation="subscribe",
                    table=table,
                ) from e
            raise SubscriptionError(
                f"Failed to open channel {name}: {e}", operation="subscribe", table=table
            ) from e

        handle.worker = asyncio.create_task(handle.deliver(), name=f"realtime-{name}")
        self._workers.add(handle.worker)
        handle.worker.add_done_callback(self._workers.discard)

        async with self._lock:
            self._channels[name] = handle

        logger.info("Subscribed to %s.%s (event=%s, channel=%s)", schema, table, event, name)
        return Subscription(id=name, table=table, _release=self.close)

    async def close(self, subscription: Subscription) -> None:
        """Release one channel. Releasing an unknown or already released channel is a no-op."""
        async with self._lock:
            handle = self._channels.pop(subscription.id, None)
        if handle is None:
            return
        handle.stop()
        try:
            await handle.client.remove_channel(handle.native)
        except Exception as e:
            raise SubscriptionError(
                f"Failed to remove channel {handle.id}: {e}", operation="unsubscribe", table=handle.table
            ) from e
        logger.info("Unsubscribed channel %s", handle.id)

    async def close_all(self) -> None:
        """
        Release every tracked channel. All channels are attempted even if some
        removals fail; the first failure is raised afterwards.
        """
        async with self._lock:
            handles = list(self._channels.values())
            self._channels.clear()

        first_error: Exception | None = None
        for handle in handles:
            handle.stop()
            try:
                await handle.client.remove_channel(handle.native)
            except Exception as e:
                logger.warning("Failed to remove channel %s: %s", handle.id, e)
                if first_error is None:
                    first_error = e

        if handles:
            logger.info("Released %d realtime channel(s)", len(handles))
        if first_error is not None:
            raise SubscriptionError(
                f"Failed to release all realtime channels: {first_error}", operation="unsubscribe_all"
            ) from first_error

    async def _remove_quietly(self, handle: _Channel) -> None:
        try:
            await handle.client.remove_channel(handle.native)
        except Exception as e:
            logger.debug("Cleanup of failed channel %s raised: %s", handle.id, e)
