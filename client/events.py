import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Set

from logging_config import get_logger

logger = get_logger(__name__)

_ids = itertools.count(1)


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``EventEmitter.on``; pass it to ``off`` to unsubscribe."""

    event: str
    callback: Callable = field(compare=False)
    once: bool = field(default=False, compare=False)
    id: int = field(default_factory=lambda: next(_ids))


class EventEmitter:
    """Named-event fan-out for the client.

    Coroutine callbacks are scheduled as tasks; ``drain`` waits for them.
    """

    def __init__(self):
        self._subscriptions: Dict[str, Dict[int, Subscription]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable) -> Subscription:
        subscription = Subscription(event=event, callback=callback)
        self._subscriptions.setdefault(event, {})[subscription.id] = subscription
        return subscription

    def once(self, event: str, callback: Callable) -> Subscription:
        subscription = Subscription(event=event, callback=callback, once=True)
        self._subscriptions.setdefault(event, {})[subscription.id] = subscription
        return subscription

    def off(self, subscription: Subscription) -> bool:
        listeners = self._subscriptions.get(subscription.event)
        if not listeners or listeners.pop(subscription.id, None) is None:
            return False
        if not listeners:
            del self._subscriptions[subscription.event]
        return True

    def listener_count(self, event: str) -> int:
        return len(self._subscriptions.get(event, {}))

    def emit(self, event: str, *args: Any):
        for subscription in list(self._subscriptions.get(event, {}).values()):
            if subscription.once:
                self.off(subscription)
            try:
                result = subscription.callback(*args)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                self.spawn(result)

    def spawn(self, awaitable) -> asyncio.Task:
        """Run ``awaitable`` in the background; ``drain`` waits for it and failures are logged."""
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Async listener failed: {error}", exc_info=error)

    async def drain(self):
        """Wait until every scheduled coroutine listener has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
