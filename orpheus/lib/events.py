"""
Minimal listener registry used by detectors and the façade.

Handlers run in registration order.  A handler may be a plain function or a
coroutine function; coroutines are scheduled on the running loop so a slow
subscriber never holds up the detector that emitted the event.
"""

import asyncio
import inspect
import logging
from collections import defaultdict

log = logging.getLogger(__name__)


class EventEmitter:

    def __init__(self):
        self._listeners: dict[str, list] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, handler):
        self._listeners[event].append(handler)
        return self

    def off(self, event: str, handler):
        """Remove *handler*; unknown handlers are ignored."""
        handlers = self._listeners.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
        return self

    def listeners(self, event: str) -> list:
        return list(self._listeners.get(event, ()))

    def emit(self, event: str, *args) -> int:
        """Dispatch to every handler of *event*.  Returns the handler count."""
        handlers = self.listeners(event)
        for handler in handlers:
            try:
                result = handler(*args)
            except Exception:
                log.exception("Error in %s handler %r", event, handler)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)
        return len(handlers)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Async event handler failed: %s", exc)
