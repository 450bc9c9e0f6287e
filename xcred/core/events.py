"""Typed in-process event channel between engine components."""

import asyncio
import inspect
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from aiopubsub import Hub, Key, Subscriber

from xcred.logging import get_logger


@dataclass(frozen=True)
class RateLimited:
    """The fetch pipeline hit HTTP 429 and paused."""

    username: str
    pause_seconds: float
    consecutive_hits: int


@dataclass(frozen=True)
class ProfileResolved:
    """A pending request finished (record may be an error record)."""

    username: str
    error: bool


@dataclass(frozen=True)
class RemoteFallbackSuggested:
    """Rate limited while remote sync is off; an outer UI may prompt the user."""

    reason: str


@dataclass(frozen=True)
class ValidationCompleted:
    """A consensus task was serviced."""

    task_id: str
    username: str
    submitted: bool


E = TypeVar("E")


@dataclass(eq=False)
class _Subscription:
    subscriber: Subscriber
    key: Key
    handler: Callable[[Any], Any]
    active: bool = True
    pending: int = 0


class EventBus:
    """
    Typed event channel on an aiopubsub hub.

    Each event type is published under a key named after the class. Every
    subscription gets its own aiopubsub Subscriber, so handlers run in
    their own listener and a failing handler never affects the others.
    Coroutine handlers run as background tasks.

    Example:
        bus = EventBus()
        unsubscribe = bus.subscribe(RateLimited, on_rate_limit)
        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()
    """

    def __init__(self):
        self.hub = Hub()
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()
        self._log = get_logger("events")

    @staticmethod
    def _key(event_type: type) -> Key:
        return Key(event_type.__name__)

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> Callable[[], None]:
        """
        Register a handler for one event type. Needs a running event loop.

        Returns:
            Callable that removes the subscription
        """
        key = self._key(event_type)
        subscriber = Subscriber(self.hub, f"{event_type.__name__}:{uuid.uuid4().hex[:8]}")
        subscription = _Subscription(subscriber=subscriber, key=key, handler=handler)

        def listener(received_key: Key, event: Any) -> None:
            self._deliver(subscription, event)

        subscriber.subscribe(key)
        subscriber.add_sync_listener(key, listener)
        self._subscriptions[event_type.__name__].append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            subscription.pending = 0
            self._subscriptions[event_type.__name__].remove(subscription)
            self._track(asyncio.ensure_future(subscriber.remove_all_listeners()))

        return unsubscribe

    def publish(self, event: Any) -> None:
        """Publish an event to every subscriber of its type."""
        subscriptions = self._subscriptions.get(type(event).__name__)
        if not subscriptions:
            return
        for subscription in subscriptions:
            subscription.pending += 1
        self.hub.publish(self._key(type(event)), event)

    def _deliver(self, subscription: _Subscription, event: Any) -> None:
        if not subscription.active:
            return
        subscription.pending = max(subscription.pending - 1, 0)

        try:
            result = subscription.handler(event)
        except Exception:
            self._log.exception("event_handler_failed", event=type(event).__name__)
            return

        if inspect.isawaitable(result):
            self._track(asyncio.ensure_future(result))

    def _track(self, task: asyncio.Future) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.error("event_handler_failed", error=str(task.exception()))

    @property
    def in_flight(self) -> int:
        """Published events not yet handled, plus running coroutine handlers."""
        pending = sum(s.pending for subs in self._subscriptions.values() for s in subs)
        return pending + len(self._tasks)

    async def drain(self) -> None:
        """Wait until every published event has been handled."""
        while self.in_flight:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0)

    async def close(self) -> None:
        """Drain, then detach every remaining listener."""
        await self.drain()
        subscriptions = [s for subs in self._subscriptions.values() for s in subs]
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.active = False
            await subscription.subscriber.remove_all_listeners()
