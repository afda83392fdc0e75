"""
Checkpoint LMS - Ticket Watcher
Turns change-feed notifications for one ticket into authoritative snapshots
"""
import asyncio
import logging
import uuid
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.change_feed import ChangeEvent, ChangeFeed, Subscription, change_feed
from app.core.context import RequestContext
from app.models.dialogue import SupportTicket, TicketStatus
from app.schemas.dialogue import TicketResponse
from app.services.tickets import TicketService

logger = logging.getLogger(__name__)

FINAL_STATUSES = (TicketStatus.COMPLETED.value, TicketStatus.CANCELLED.value)


class TicketWatcher:
    """
    Follows a single ticket until it reaches a final state.

    Events are only a signal: each one triggers a fresh read in a new
    session, and a burst of notifications collapses into one read.
    """

    def __init__(
        self,
        ctx: RequestContext,
        ticket_id: uuid.UUID,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed = change_feed,
    ):
        self.ctx = ctx
        self.ticket_id = ticket_id
        self.session_factory = session_factory
        self.feed = feed
        self._signals: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscription: Subscription | None = None

    async def _on_event(self, event: ChangeEvent) -> None:
        self._signals.put_nowait(event)

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.feed.subscribe(
                SupportTicket.__tablename__,
                {"id": str(self.ticket_id)},
                self._on_event,
            )

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def snapshot(self) -> TicketResponse:
        """Current ticket state, read in its own session."""
        async with self.session_factory() as db:
            return await TicketService(db).get_ticket(self.ctx, self.ticket_id)

    async def updates(self) -> AsyncIterator[TicketResponse]:
        """
        Yield the ticket now and after every change, ending after a final
        status has been sent.
        """
        self.start()
        try:
            state = await self.snapshot()
            yield state
            while state.status not in FINAL_STATUSES:
                await self._signals.get()
                while not self._signals.empty():
                    self._signals.get_nowait()
                state = await self.snapshot()
                yield state
        finally:
            self.close()
