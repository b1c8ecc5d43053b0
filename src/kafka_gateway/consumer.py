"""
Kafka REST gateway consumer with automatic reconnect.

Provides a long-lived topic subscription with:
- Connect with unbounded retry (connect() never fails on connectivity)
- Per-message dispatch to a caller-supplied handler, in batch order
- Stream error classification: "topic not found" and dropped connections
  reset the subscription, everything else goes to the caller
- A raising message handler resets the subscription instead of stalling it
- Idempotent disposal, also wired to SIGINT/SIGTERM
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from kafka_gateway import lifecycle
from kafka_gateway.client import ConsumerInstance, GatewayClient
from kafka_gateway.common.exceptions import (
    ConsumerDisposedError,
    is_connection_reset,
    is_topic_not_found,
)
from kafka_gateway.common.logging import get_logger, log_exception
from kafka_gateway.config import GatewayConfig
from kafka_gateway.connection import GatewayConnection, default_connection
from kafka_gateway.metrics import (
    record_consumer_reconnect,
    record_messages_consumed,
    update_connection_status,
)
from kafka_gateway.schemas import Message
from kafka_gateway.stream import CLOSE, DATA, ERROR, MessageStream

DEFAULT_JOIN_OPTIONS: Dict[str, Any] = {
    "format": "avro",
    "auto.commit.enable": "true",
    "auto.offset.reset": "earliest",
}


class ConsumerState(str, Enum):
    """Lifecycle states of a Consumer."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RESETTING = "resetting"
    DISPOSED = "disposed"


@dataclass
class ConnectOptions:
    """Options given to Consumer.connect(), reused on every reconnect."""

    consumer_group: str
    on_message: Callable[[Message], Any]
    on_error: Optional[Callable[[BaseException], Any]] = None
    join_options: Dict[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_JOIN_OPTIONS)
    )


class Consumer:
    """
    Consumes one topic through the REST gateway until disposed.

    Usage:
        >>> consumer = Consumer("orders", logger)
        >>> await consumer.connect(
        ...     consumer_group="order-audit",
        ...     on_message=lambda message: print(message.value),
        ... )
        >>> ...
        >>> await consumer.dispose()
    """

    def __init__(
        self,
        topic: str,
        logger: Optional[logging.Logger] = None,
        *,
        retry_interval: Optional[float] = None,
        shutdown_timeout: Optional[float] = None,
        connection: Optional[GatewayConnection] = None,
        shutdown_hooks: Optional[lifecycle.ShutdownHooks] = None,
    ):
        """
        Initialize consumer.

        Args:
            topic: Topic this consumer works on
            logger: Logger to use (default: module logger)
            retry_interval: Seconds between reconnect attempts
                (default: KAFKA_CONSUMER_RETRY_INTERVAL or 10)
            shutdown_timeout: Seconds granted to the gateway shutdown issued
                while resetting (default: KAFKA_REST_SHUTDOWN_TIMEOUT or 1)
            connection: Gateway registry (default: the process-wide one)
            shutdown_hooks: Signal dispatcher (default: the process-wide one)
        """
        if not topic:
            raise ValueError("topic is required")

        config = GatewayConfig.from_env()
        self._topic: Optional[str] = topic
        self.log = logger or get_logger(__name__)
        self.retry_interval = (
            config.consumer_retry_interval if retry_interval is None else retry_interval
        )
        self.shutdown_timeout = (
            config.shutdown_timeout if shutdown_timeout is None else shutdown_timeout
        )

        registry = connection if connection is not None else default_connection
        self.gateway: Optional[GatewayClient]
        self.gateway, self.gateway_url = registry.ensure()
        self._shutdown_hooks = (
            shutdown_hooks if shutdown_hooks is not None else lifecycle.shutdown_hooks
        )

        self.options: Optional[ConnectOptions] = None
        self.consumer_instance: Optional[ConsumerInstance] = None
        self.stream: Optional[MessageStream] = None
        self.state = ConsumerState.IDLE
        self.connect_retries = 0

        self._disposed = False
        self._disposed_event = asyncio.Event()
        self._reset_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        # Bound once so the exact same objects can be removed later
        self._data_listener: Optional[Callable[[List[Message]], None]] = self._on_data
        self._error_listener: Optional[Callable[[BaseException], None]] = self._on_error
        self._close_listener: Optional[Callable[[BaseException], None]] = self._on_stream_closed
        self._shutdown_hook: Optional[Callable[[], None]] = self._on_shutdown_signal

    @property
    def topic(self) -> Optional[str]:
        return self._topic

    @property
    def is_connected(self) -> bool:
        return self.state is ConsumerState.CONNECTED

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    async def connect(
        self,
        consumer_group: str,
        on_message: Callable[[Message], Any],
        on_error: Optional[Callable[[BaseException], Any]] = None,
        join_options: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConsumerInstance]:
        """
        Join ``consumer_group`` and start dispatching messages.

        Connectivity failures are retried every ``retry_interval`` without
        bound, so this only returns once a stream is attached (or the
        consumer was disposed while retrying, in which case it returns None).

        Args:
            consumer_group: Consumer group to join
            on_message: Called once per message, in delivery order
            on_error: Called with stream errors that are not recovered
                automatically, and with exceptions raised by ``on_message``
            join_options: Gateway consumer options (default: avro format,
                auto commit, earliest offset reset)

        Raises:
            ConsumerDisposedError: If the consumer was disposed
            RuntimeError: If connect() was already called
        """
        if self._disposed:
            raise ConsumerDisposedError("Consumer has been disposed")
        if self.state is not ConsumerState.IDLE:
            raise RuntimeError(f"Consumer already {self.state.value}, dispose it first")
        if not consumer_group:
            raise ValueError("consumer_group is required")
        if not callable(on_message):
            raise TypeError("on_message must be callable")

        self.options = ConnectOptions(
            consumer_group=consumer_group,
            on_message=on_message,
            on_error=on_error,
            join_options=(
                dict(join_options)
                if join_options is not None
                else dict(DEFAULT_JOIN_OPTIONS)
            ),
        )
        return await self._connect()

    async def _connect(self) -> Optional[ConsumerInstance]:
        options = self.options
        topic = self._topic
        gateway = self.gateway
        if options is None or topic is None or gateway is None:
            return None

        while not self._disposed:
            self.state = ConsumerState.CONNECTING
            self.log.info(
                "Initializing consumer",
                extra={"topic": topic, "consumer_group": options.consumer_group},
            )

            instance: Optional[ConsumerInstance] = None
            try:
                instance = await gateway.join(options.consumer_group, options.join_options)
                if self._disposed:
                    self._spawn(instance.shutdown(timeout=self.shutdown_timeout))
                    return None
                stream = await instance.subscribe(topic)
            except asyncio.CancelledError:
                # Disposed while joining; the gateway must still drop the join
                if instance is not None:
                    self._spawn(instance.shutdown(timeout=self.shutdown_timeout))
                raise
            except Exception as e:
                if instance is not None:
                    self._spawn(instance.shutdown(timeout=self.shutdown_timeout))
                self.connect_retries += 1
                record_consumer_reconnect(topic, "join_failed")
                log_exception(
                    self.log,
                    e,
                    "Failed to connect consumer",
                    include_traceback=False,
                    topic=topic,
                    consumer_group=options.consumer_group,
                    connect_retries=self.connect_retries,
                    retry_interval=self.retry_interval,
                )
                await self._wait(self.retry_interval)
                continue

            if self._disposed:
                stream.detach()
                self._spawn(instance.shutdown(timeout=self.shutdown_timeout))
                return None

            self.connect_retries = 0
            self.consumer_instance = instance
            self.stream = stream
            stream.on(DATA, self._data_listener)
            stream.on(ERROR, self._error_listener)
            stream.on(CLOSE, self._close_listener)
            self._shutdown_hooks.register(self._shutdown_hook)
            self.state = ConsumerState.CONNECTED
            update_connection_status("consumer", topic, connected=True)

            self.log.info(
                "Consumer online",
                extra={
                    "topic": topic,
                    "consumer_group": options.consumer_group,
                    "instance_id": instance.instance_id,
                },
            )
            return instance

        return None

    def _on_data(self, messages: List[Message]) -> None:
        """Invoke the message handler once per message of ``messages``."""
        options = self.options
        if options is None or not callable(options.on_message):
            return
        for message in messages:
            options.on_message(message)
        record_messages_consumed(self._topic or "", options.consumer_group, len(messages))

    def _on_error(self, err: BaseException) -> None:
        """Recover from known transient stream errors, forward the rest."""
        if is_topic_not_found(err):
            self.log.info(
                "Topic not found, resetting consumer",
                extra={"topic": self._topic, "reason": "topic_not_found"},
            )
            self._reset_consumer("topic_not_found")
            return

        if is_connection_reset(err):
            self.log.warning(
                "Connection reset, resetting consumer",
                extra={"topic": self._topic, "reason": "connection_reset"},
            )
            self._reset_consumer("connection_reset")
            return

        options = self.options
        if options is not None and callable(options.on_error):
            options.on_error(err)
            return

        log_exception(
            self.log,
            err,
            "Unhandled consumer stream error (no on_error handler)",
            level=logging.WARNING,
            include_traceback=False,
            topic=self._topic,
        )

    def _on_stream_closed(self, exc: BaseException) -> None:
        """
        The stream stopped because the message handler raised.

        The consumer rejoins after ``retry_interval`` and continues with the
        messages the gateway has not handed out yet.
        """
        log_exception(
            self.log,
            exc,
            "Message handler failed, resetting consumer",
            include_traceback=False,
            topic=self._topic,
            reason="handler_error",
        )
        options = self.options
        self._reset_consumer("handler_error")
        if options is not None and callable(options.on_error):
            options.on_error(exc)

    def _reset_consumer(self, reason: str = "reset") -> None:
        """
        Drop the current join and reconnect after ``retry_interval``.

        The gateway shutdown is not awaited: the broker-side condition being
        recovered from is often what makes it hang.
        """
        if self._disposed or self.state is ConsumerState.RESETTING:
            return
        self.state = ConsumerState.RESETTING
        topic = self._topic or ""
        record_consumer_reconnect(topic, reason)
        update_connection_status("consumer", topic, connected=False)

        instance, self.consumer_instance = self.consumer_instance, None
        if instance is not None:
            self._spawn(instance.shutdown(timeout=self.shutdown_timeout))
        self._release_stream()

        self._reset_task = asyncio.ensure_future(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await self._wait(self.retry_interval)
        if self._disposed:
            return
        await self._connect()

    def _release_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is None:
            return
        if self._data_listener is not None:
            stream.remove_listener(DATA, self._data_listener)
        if self._error_listener is not None:
            stream.remove_listener(ERROR, self._error_listener)
        if self._close_listener is not None:
            stream.remove_listener(CLOSE, self._close_listener)
        stream.detach()

    async def dispose(self) -> None:
        """
        Detach the stream, shut the join down on the gateway, drop references.

        Safe to call multiple times; later calls return immediately.
        """
        if self._disposed:
            return
        self._disposed = True
        self._disposed_event.set()
        self.state = ConsumerState.DISPOSED
        topic = self._topic

        self.log.info("Shutting down consumer", extra={"topic": topic})

        reset_task, self._reset_task = self._reset_task, None
        if (
            reset_task is not None
            and not reset_task.done()
            and reset_task is not asyncio.current_task()
        ):
            reset_task.cancel()

        self._release_stream()
        if self._shutdown_hook is not None:
            self._shutdown_hooks.unregister(self._shutdown_hook)

        instance, self.consumer_instance = self.consumer_instance, None
        if instance is not None:
            try:
                await instance.shutdown()
            except Exception as e:
                log_exception(
                    self.log,
                    e,
                    "Gateway shutdown failed while disposing consumer",
                    level=logging.WARNING,
                    include_traceback=False,
                    topic=topic,
                )

        if topic is not None:
            update_connection_status("consumer", topic, connected=False)
        self._nuke_locals()

    def _nuke_locals(self) -> None:
        self.stream = None
        self.consumer_instance = None
        self.options = None
        self.gateway = None
        self._topic = None
        self._data_listener = None
        self._error_listener = None
        self._close_listener = None
        self._shutdown_hook = None

    def _on_shutdown_signal(self) -> None:
        self._spawn(self.dispose())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.debug(
                "Background gateway call failed",
                extra={"topic": self._topic, "error_type": type(exc).__name__},
            )

    async def _wait(self, delay: float) -> None:
        """Sleep ``delay`` seconds, waking early if the consumer is disposed."""
        try:
            await asyncio.wait_for(self._disposed_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
