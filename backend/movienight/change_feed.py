from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import threading
from typing import Any, Callable, Iterator
import uuid

from pydantic import ValidationError as PydanticValidationError

from .metrics import CHANGE_FEED_SUBSCRIPTIONS
from .rows import ChangeEvent, decode_change

logger = logging.getLogger("movienight.change_feed")

ChangeCallback = Callable[[ChangeEvent], None]


@dataclass
class SubscriptionHandle:
    channel_key: str
    table: str
    filter: dict[str, Any]
    on_event: ChangeCallback
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    active: bool = True

    def matches(self, row: dict[str, Any] | None) -> bool:
        if row is None:
            return False
        return all(row.get(column) == value for column, value in self.filter.items())


class ChangeFeed:
    """In-process broker for row-level change events.

    The persistence gateway publishes one ``{table, type, new, old}`` payload
    per committed row change. Subscribers register on a table with an equality
    filter and receive typed events in publish order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, SubscriptionHandle] = {}

    def subscribe(
        self,
        channel_key: str,
        table: str,
        filter: dict[str, Any] | None,
        on_event: ChangeCallback,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(
            channel_key=channel_key,
            table=table,
            filter=dict(filter or {}),
            on_event=on_event,
        )
        with self._lock:
            previous = self._handles.get(channel_key)
            self._handles[channel_key] = handle
        if previous is not None:
            previous.active = False
            logger.info(
                "Replaced subscription",
                extra={"event": "subscription_replaced", "channel": channel_key, "table": table},
            )
        else:
            CHANGE_FEED_SUBSCRIPTIONS.inc()
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        handle.active = False
        with self._lock:
            current = self._handles.get(handle.channel_key)
            if current is not handle:
                return
            del self._handles[handle.channel_key]
        CHANGE_FEED_SUBSCRIPTIONS.dec()

    @contextmanager
    def subscription(
        self,
        channel_key: str,
        table: str,
        filter: dict[str, Any] | None,
        on_event: ChangeCallback,
    ) -> Iterator[SubscriptionHandle]:
        handle = self.subscribe(channel_key, table, filter, on_event)
        try:
            yield handle
        finally:
            self.unsubscribe(handle)

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is None:
                return len(self._handles)
            return sum(1 for handle in self._handles.values() if handle.table == table)

    def publish(self, raw: dict[str, Any]) -> int:
        """Deliver one raw change payload. Returns the number of callbacks invoked."""
        table = raw.get("table")
        with self._lock:
            targets = [handle for handle in self._handles.values() if handle.table == table]
        if not targets:
            return 0

        row = raw.get("old") if raw.get("type") == "delete" else raw.get("new")
        targets = [handle for handle in targets if handle.matches(row)]
        if not targets:
            return 0

        try:
            event = decode_change(raw)
        except PydanticValidationError:
            logger.warning(
                "Dropped undecodable change event",
                extra={"event": "change_decode_failed", "table": table},
                exc_info=True,
            )
            return 0

        delivered = 0
        for handle in targets:
            if not handle.active:
                continue
            try:
                handle.on_event(event)
            except Exception:
                logger.exception(
                    "Change feed callback failed",
                    extra={"event": "change_callback_failed", "channel": handle.channel_key, "table": table},
                )
                continue
            delivered += 1
        return delivered


change_feed = ChangeFeed()
