"""
Prometheus metrics for gateway consumers and producers.

Provides instrumentation for:
- Message production and consumption counts
- Producer errors and retries
- Consumer reconnects by reason
- Gateway connection status
"""

from prometheus_client import Counter, Gauge

# Message production metrics
messages_produced_total = Counter(
    "kafka_gateway_messages_produced_total",
    "Total number of messages published through the gateway",
    ["topic", "status"],  # status: success, error
)

producer_errors_total = Counter(
    "kafka_gateway_producer_errors_total",
    "Total number of failed publish attempts",
    ["topic", "error_type"],
)

producer_retries_total = Counter(
    "kafka_gateway_producer_retries_total",
    "Total number of publish retries",
    ["topic"],
)

# Message consumption metrics
messages_consumed_total = Counter(
    "kafka_gateway_messages_consumed_total",
    "Total number of messages dispatched to consumer handlers",
    ["topic", "consumer_group"],
)

consumer_reconnects_total = Counter(
    "kafka_gateway_consumer_reconnects_total",
    "Total number of consumer resets and failed joins",
    ["topic", "reason"],  # reason: join_failed, topic_not_found, connection_reset
)

# Connection health metrics
gateway_connection_status = Gauge(
    "kafka_gateway_connection_status",
    "Gateway connection status (1=connected, 0=disconnected)",
    ["component", "topic"],  # component: producer, consumer
)


def record_message_produced(topic: str, success: bool) -> None:
    status = "success" if success else "error"
    messages_produced_total.labels(topic=topic, status=status).inc()


def record_producer_error(topic: str, error_type: str) -> None:
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def record_producer_retry(topic: str) -> None:
    producer_retries_total.labels(topic=topic).inc()


def record_messages_consumed(topic: str, consumer_group: str, count: int) -> None:
    if count > 0:
        messages_consumed_total.labels(topic=topic, consumer_group=consumer_group).inc(count)


def record_consumer_reconnect(topic: str, reason: str) -> None:
    consumer_reconnects_total.labels(topic=topic, reason=reason).inc()


def update_connection_status(component: str, topic: str, connected: bool) -> None:
    gateway_connection_status.labels(component=component, topic=topic).set(
        1 if connected else 0
    )
