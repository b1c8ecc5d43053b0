"""
Kafka REST gateway producer with bounded retry.

Provides Avro publishing to one topic with:
- Schema ids cached after the first publish
- Optional key schema for keyed records
- Fixed-interval retry with a bounded attempt count
"""

import asyncio
import functools
import logging
from typing import Any, Dict, Mapping, Optional, Union

from kafka_gateway.common.exceptions import RetriesExhaustedError, classify_exception
from kafka_gateway.common.logging import get_logger, log_exception
from kafka_gateway.config import GatewayConfig
from kafka_gateway.connection import GatewayConnection, default_connection
from kafka_gateway.metrics import (
    record_message_produced,
    record_producer_error,
    record_producer_retry,
)
from kafka_gateway.schemas import AvroSchema, PublishResult

SchemaLike = Union[AvroSchema, str, Dict[str, Any]]


def _as_schema(schema: SchemaLike) -> AvroSchema:
    return schema if isinstance(schema, AvroSchema) else AvroSchema(schema)


class Producer:
    """
    Publishes Avro records to one topic through the REST gateway.

    A publish that fails is retried every ``retry_interval`` seconds;
    ``retry_times`` retries are made after the first attempt, so a producer
    with ``retry_times=3`` tries at most 4 times before raising
    RetriesExhaustedError.

    Usage:
        >>> producer = Producer("orders", order_schema, logger)
        >>> result = await producer.produce({"order_id": "o-1", "total": 10})
        >>> result.offsets[0].offset
        42
    """

    def __init__(
        self,
        topic: str,
        schema: SchemaLike,
        logger: Optional[logging.Logger] = None,
        *,
        key_schema: Optional[SchemaLike] = None,
        retry_interval: Optional[float] = None,
        retry_times: Optional[int] = None,
        connection: Optional[GatewayConnection] = None,
    ):
        """
        Initialize producer.

        Args:
            topic: Topic to publish to
            schema: Avro schema of the record value (JSON string, dict or
                AvroSchema)
            logger: Logger to use (default: module logger)
            key_schema: Avro schema of the record key; when set, messages
                must be mappings with ``key`` and ``value``
            retry_interval: Seconds between attempts
                (default: KAFKA_PRODUCER_RETRY_INTERVAL or 5)
            retry_times: Retries after the first attempt
                (default: KAFKA_PRODUCER_RETRY_TIMES or 3)
            connection: Gateway registry (default: the process-wide one)
        """
        if not topic:
            raise ValueError("topic is required")

        config = GatewayConfig.from_env()
        self.topic = topic
        self.log = logger or get_logger(__name__)
        self.retry_interval = (
            config.producer_retry_interval if retry_interval is None else retry_interval
        )
        self.retry_times = (
            config.producer_retry_times if retry_times is None else retry_times
        )
        if self.retry_times < 0:
            raise ValueError("retry_times must be >= 0")

        registry = connection if connection is not None else default_connection
        self.gateway, self.gateway_url = registry.ensure()

        self.schema = _as_schema(schema)
        self.key_schema = _as_schema(key_schema) if key_schema is not None else None
        self.kafka_topic = self.gateway.topic(topic)

        # Publish operation is fixed here: keyed iff a key schema was given
        if self.key_schema is not None:
            self._publish = functools.partial(
                self.kafka_topic.produce,
                value_schema=self.schema,
                key_schema=self.key_schema,
            )
        else:
            self._publish = functools.partial(
                self.kafka_topic.produce, value_schema=self.schema
            )

        self.log.info(
            "Producer ready",
            extra={
                "topic": topic,
                "gateway_url": self.gateway_url,
                "retry_times": self.retry_times,
                "retry_interval": self.retry_interval,
            },
        )

    async def produce(self, message: Any) -> PublishResult:
        """
        Publish ``message``, retrying failed attempts.

        Args:
            message: Record value, or a mapping with ``key`` and ``value``
                when the producer has a key schema

        Returns:
            PublishResult with the offsets the gateway assigned

        Raises:
            ValueError: If a keyed producer gets a message without ``value``
            RetriesExhaustedError: If every attempt failed; carries the last
                failure as ``cause``
        """
        if self.key_schema is not None and (
            not isinstance(message, Mapping) or "value" not in message
        ):
            raise ValueError("Keyed messages must be mappings with 'key' and 'value'")

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._publish(message)
            except Exception as e:
                record_producer_error(self.topic, type(e).__name__)
                log_exception(
                    self.log,
                    e,
                    "Failed to publish message",
                    level=logging.WARNING,
                    include_traceback=False,
                    topic=self.topic,
                    attempt=attempt,
                    retry_times=self.retry_times,
                )

                if attempt > self.retry_times:
                    record_message_produced(self.topic, success=False)
                    self.log.error(
                        "Max retries exceeded",
                        extra={
                            "topic": self.topic,
                            "attempt": attempt,
                            "retry_times": self.retry_times,
                            "error_category": classify_exception(e).value,
                        },
                    )
                    raise RetriesExhaustedError(e, self.topic, attempt) from e

                record_producer_retry(self.topic)
                await asyncio.sleep(self.retry_interval)
                continue

            record_message_produced(self.topic, success=True)
            self.log.debug(
                "Message published",
                extra={"topic": self.topic, "attempt": attempt},
            )
            return result
