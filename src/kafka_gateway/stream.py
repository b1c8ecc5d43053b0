"""
Push-based stream of decoded message batches.

A MessageStream polls an async ``fetch`` callable on its own asyncio task and
emits each non-empty batch to its ``data`` listeners. Fetch failures are
emitted to ``error`` listeners and polling resumes after a backoff. Emission
is synchronous: a listener raising ends the polling task. The exception is
emitted to ``close`` listeners and surfaces from ``wait_closed()``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from kafka_gateway.common.logging import get_logger, log_exception
from kafka_gateway.schemas import Message

logger = get_logger(__name__)

DATA = "data"
ERROR = "error"
CLOSE = "close"
EVENTS = (DATA, ERROR, CLOSE)

Fetch = Callable[[], Awaitable[List[Message]]]
Listener = Callable[[Any], Any]


class MessageStream:
    """
    Subscribed sequence of message batches for one topic/consumer-group pair.

    Usage:
        >>> stream = MessageStream("orders", fetch=instance.fetch_records)
        >>> stream.on("data", handle_batch)
        >>> stream.on("error", handle_error)
        >>> stream.start()
        >>> ...
        >>> stream.detach()
    """

    def __init__(
        self,
        topic: str,
        fetch: Fetch,
        poll_interval: float = 1.0,
        error_backoff: Optional[float] = None,
    ):
        self.topic = topic
        self._fetch = fetch
        self.poll_interval = poll_interval
        self.error_backoff = poll_interval if error_backoff is None else error_backoff
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in EVENTS}
        self._task: Optional[asyncio.Task] = None
        self._detached = False

    def on(self, event: str, listener: Listener) -> None:
        """Register a listener for ``data``, ``error`` or ``close`` events."""
        self._check_event(event)
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        """Remove one registration of ``listener``; unknown listeners are ignored."""
        self._check_event(event)
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def listener_count(self, event: str) -> int:
        self._check_event(event)
        return len(self._listeners[event])

    def emit(self, event: str, payload: Any) -> None:
        """Invoke every listener for ``event`` in registration order."""
        self._check_event(event)
        # Listeners may detach the stream while it emits
        for listener in list(self._listeners[event]):
            listener(payload)

    def start(self) -> None:
        """Start polling. No-op when already started or detached."""
        if self._task is not None or self._detached:
            return
        self._task = asyncio.ensure_future(self._poll())
        self._task.add_done_callback(self._on_task_done)

    def detach(self) -> None:
        """Remove all listeners and stop polling. Safe to call repeatedly."""
        for listeners in self._listeners.values():
            listeners.clear()
        if self._detached:
            return
        self._detached = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def is_detached(self) -> bool:
        return self._detached

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_closed(self) -> None:
        """
        Wait for the polling task to finish.

        Raises:
            Exception: Whatever a listener raised while handling an event
        """
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _poll(self) -> None:
        while not self._detached:
            try:
                batch = await self._fetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(
                    "Fetch failed",
                    extra={"topic": self.topic, "error_type": type(e).__name__},
                )
                self.emit(ERROR, e)
                await asyncio.sleep(self.error_backoff)
                continue

            if batch and not self._detached:
                self.emit(DATA, batch)
                # Yield before the next fetch so batches never overlap
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(self.poll_interval)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_exception(
                logger,
                exc,
                "Message stream stopped by listener exception",
                level=logging.ERROR,
                topic=self.topic,
            )
            if not self._detached:
                self.emit(CLOSE, exc)

    @staticmethod
    def _check_event(event: str) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown stream event {event!r}, expected one of {EVENTS}")
