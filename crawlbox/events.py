import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List

from loguru import logger


Handler = Callable[[str, Dict[str, Any]], Any]

WILDCARD = "*"


class EventBus:
    """Best-effort publish/subscribe for lifecycle events.

    Publishing never raises and never waits on subscribers: handler errors are
    logged, coroutine handlers are scheduled on the running loop (or dropped
    when there is none).
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._pending: set = set()

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: Dict[str, Any] | None = None) -> None:
        payload = payload or {}
        for handler in [*self._handlers.get(topic, ()), *self._handlers.get(WILDCARD, ())]:
            try:
                outcome = handler(topic, payload)
                if inspect.isawaitable(outcome):
                    self._schedule(topic, outcome)
            except Exception as e:
                logger.warning(f"Event handler for '{topic}' failed: {e}")

    def _schedule(self, topic: str, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; dropping async handler for '{topic}'")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._guard(topic, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _guard(topic: str, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Async event handler for '{topic}' failed: {e}")
