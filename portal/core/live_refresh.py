"""
Debounced change subscriptions.

Each watched table gets one realtime channel. Bursts of insert/update/delete
events collapse into a single ``on_change`` call once the table has been
quiet for the debounce window, because every consumer reacts with a full
re-aggregation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from ..config import CONFIG


logger = logging.getLogger(__name__)

OnChange = Callable[[], Union[None, Awaitable[None]]]


class ChangeFeed(Protocol):
    async def subscribe(self, table: str, callback: Callable[[Dict[str, Any]], None], *, channel_prefix: str = ...) -> Any:
        ...

    async def unsubscribe(self, handle: Any) -> None:
        ...


class Debouncer:
    """Coalesces calls to ``trigger`` into one ``action`` run per quiet period."""

    def __init__(self, action: OnChange, delay: float, loop: asyncio.AbstractEventLoop) -> None:
        self._action = action
        self._delay = delay
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def trigger(self) -> None:
        # Realtime callbacks may arrive off-loop; hop onto the owning loop first.
        self._loop.call_soon_threadsafe(self._reschedule)

    def _reschedule(self) -> None:
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._closed:
            return
        result = self._action()
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Live refresh handler failed: %s", exc, exc_info=exc)

    def close(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        # A handler that closes its own subscription is left to finish.
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()


class Subscription:
    """Handle over a set of realtime channels; ``close`` releases all of them."""

    def __init__(self, feed: ChangeFeed, tables: Sequence[str], debouncer: Debouncer) -> None:
        self._feed = feed
        self.tables = list(tables)
        self._debouncer = debouncer
        self._handles: List[Any] = []
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def _handle_event(self, table: str, payload: Dict[str, Any]) -> None:
        if self._closed:
            return
        event_type = None
        if isinstance(payload, dict):
            event_type = payload.get("eventType") or payload.get("type")
        logger.debug("Change on %s (%s); scheduling refresh", table, event_type)
        self._debouncer.trigger()

    async def _attach(self, channel_prefix: str) -> None:
        for table in self.tables:
            handle = await self._feed.subscribe(
                table,
                lambda payload, table=table: self._handle_event(table, payload),
                channel_prefix=channel_prefix,
            )
            self._handles.append(handle)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._debouncer.close()
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                await self._feed.unsubscribe(handle)
            except Exception as exc:
                logger.warning("Failed to release change channel %s: %s", handle, exc)


class LiveRefresh:
    def __init__(self, feed: ChangeFeed, *, debounce_seconds: Optional[float] = None) -> None:
        self.feed = feed
        self.debounce_seconds = (
            CONFIG.live_refresh_debounce_seconds if debounce_seconds is None else debounce_seconds
        )

    async def subscribe(
        self,
        resources: Sequence[str],
        on_change: OnChange,
        *,
        channel_prefix: str = "portal",
    ) -> Subscription:
        """
        Watch ``resources`` and call ``on_change`` after each burst of changes.

        If any channel fails to attach, the ones already attached are released
        before the error propagates.
        """
        unique = list(dict.fromkeys(resources))
        debouncer = Debouncer(on_change, self.debounce_seconds, asyncio.get_running_loop())
        subscription = Subscription(self.feed, unique, debouncer)
        try:
            await subscription._attach(channel_prefix)
        except Exception:
            await subscription.close()
            raise
        logger.info("Live refresh watching %s", unique)
        return subscription
