"""
Checkpoint LMS - Change Feed
In-process publish/subscribe of row changes, keyed by table.

Delivery is at-least-once from the observer's point of view: the same
change may be announced more than once and payloads may be stale.
Observers treat an event as "something changed" and re-fetch the row.

Subscribers only hear changes committed in the same process. Run the API
as a single worker; with several workers a ticket claimed in one never
reaches a watcher held by another.
"""
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

STAGED_KEY = "change_feed.staged"


class ChangeType(str, Enum):
    """Kinds of row change announced on the feed."""
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class ChangeEvent:
    """One row change. ``payload`` is informational only."""
    table: str
    change_type: ChangeType
    row_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def matches(self, filters: dict[str, Any]) -> bool:
        for key, expected in filters.items():
            if key == "id":
                actual = self.row_id
            else:
                actual = self.payload.get(key)
            if str(actual) != str(expected):
                return False
        return True


EventHandler = Callable[[ChangeEvent], Awaitable[None]]


@dataclass
class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``."""
    id: str
    table: str
    filters: dict[str, Any]
    handler: EventHandler
    feed: "ChangeFeed"

    def unsubscribe(self) -> None:
        self.feed._remove(self)


class ChangeFeed:
    """Per-table observer registry."""

    def __init__(self):
        self._subscriptions: dict[str, dict[str, Subscription]] = {}

    def subscribe(
        self,
        table: str,
        filters: dict[str, Any] | None,
        handler: EventHandler,
    ) -> Subscription:
        """Register ``handler`` for changes on ``table`` matching ``filters``."""
        subscription = Subscription(
            id=uuid.uuid4().hex,
            table=table,
            filters=dict(filters or {}),
            handler=handler,
            feed=self,
        )
        self._subscriptions.setdefault(table, {})[subscription.id] = subscription
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.get(subscription.table, {}).pop(subscription.id, None)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, {}))

    async def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching observer.

        A failing observer is logged and skipped; it never fails the
        publisher. Returns the number of observers notified.
        """
        delivered = 0
        for subscription in list(self._subscriptions.get(event.table, {}).values()):
            if not event.matches(subscription.filters):
                continue
            try:
                await subscription.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Change feed observer %s failed on %s %s",
                    subscription.id, event.table, event.row_id,
                )
        return delivered

    # ------------------------------------------------------------------
    # Transaction staging
    # ------------------------------------------------------------------

    def stage(self, session: Any, event: ChangeEvent) -> None:
        """Queue an event on a session until its transaction commits."""
        session.info.setdefault(STAGED_KEY, []).append(event)

    def staged(self, session: Any) -> list[ChangeEvent]:
        return list(session.info.get(STAGED_KEY, []))

    def discard_staged(self, session: Any) -> None:
        session.info.pop(STAGED_KEY, None)

    async def publish_staged(self, session: Any) -> None:
        events = session.info.pop(STAGED_KEY, [])
        for event in events:
            await self.publish(event)


change_feed = ChangeFeed()
