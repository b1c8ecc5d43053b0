"""
Command line entry point for the REST gateway consumer and producer.

Usage:
    # Print every message of a topic as JSON lines until Ctrl+C
    python -m kafka_gateway consume --topic orders --group order-audit

    # Publish one message
    python -m kafka_gateway produce --topic orders --schema order.avsc \\
        --message '{"order_id": "o-1", "total": 10}'

    # Publish one keyed message
    python -m kafka_gateway produce --topic orders --schema order.avsc \\
        --key-schema order_key.avsc \\
        --message '{"key": "o-1", "value": {"order_id": "o-1", "total": 10}}'

Gateway URL resolution: --url > KAFKA_REST_PROXY_URL > config file > default.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from prometheus_client import start_http_server

from kafka_gateway.client import GatewayClient
from kafka_gateway.common.exceptions import GatewayError
from kafka_gateway.common.logging import get_logger, setup_logging
from kafka_gateway.config import GatewayConfig
from kafka_gateway.connection import GatewayConnection
from kafka_gateway.consumer import Consumer
from kafka_gateway.lifecycle import shutdown_hooks
from kafka_gateway.producer import Producer
from kafka_gateway.schemas import AvroSchema, Message

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m kafka_gateway",
        description="Consume from or publish to Kafka through a REST gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Gateway URL (default: KAFKA_REST_PROXY_URL or http://127.0.0.1:8082)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file with a 'gateway:' section",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (default: disabled)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    consume = commands.add_parser("consume", help="Print messages as JSON lines")
    consume.add_argument("--topic", required=True)
    consume.add_argument("--group", required=True, help="Consumer group to join")
    consume.add_argument(
        "--offset-reset",
        choices=["earliest", "latest"],
        default="earliest",
        help="Where a new group starts reading (default: earliest)",
    )

    produce = commands.add_parser("produce", help="Publish one message")
    produce.add_argument("--topic", required=True)
    produce.add_argument(
        "--schema", type=Path, required=True, help="Avro schema file for the value"
    )
    produce.add_argument(
        "--key-schema", type=Path, default=None, help="Avro schema file for the key"
    )
    produce.add_argument("--message", required=True, help="Message as JSON")

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def build_connection(config: GatewayConfig) -> GatewayConnection:
    """Gateway registry whose client uses the loaded config's HTTP settings."""

    def factory(url: str, _env_config: GatewayConfig) -> GatewayClient:
        return GatewayClient(
            url,
            request_timeout=config.request_timeout,
            poll_interval=config.poll_interval,
        )

    connection = GatewayConnection(client_factory=factory)
    connection.set_url(config.url)
    return connection


def _print_message(message: Message) -> None:
    sys.stdout.write(json.dumps(message.model_dump(mode="json")) + "\n")
    sys.stdout.flush()


async def run_consumer(
    args: argparse.Namespace, config: GatewayConfig, connection: GatewayConnection
) -> None:
    """Consume until SIGINT/SIGTERM, printing each message to stdout."""
    stop = asyncio.Event()
    shutdown_hooks.register(stop.set)

    consumer = Consumer(
        args.topic,
        get_logger("kafka_gateway.consumer"),
        retry_interval=config.consumer_retry_interval,
        shutdown_timeout=config.shutdown_timeout,
        connection=connection,
    )

    def on_error(err: BaseException) -> None:
        logger.warning(
            f"Stream error: {err}",
            extra={"topic": args.topic, "error_type": type(err).__name__},
        )

    connect_task = asyncio.ensure_future(
        consumer.connect(
            consumer_group=args.group,
            on_message=_print_message,
            on_error=on_error,
            join_options={
                "format": "avro",
                "auto.commit.enable": "true",
                "auto.offset.reset": args.offset_reset,
            },
        )
    )

    def stop_on_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            stop.set()

    connect_task.add_done_callback(stop_on_failure)

    try:
        await stop.wait()
    finally:
        shutdown_hooks.unregister(stop.set)
        logger.info("Stopping consumer...")
        await consumer.dispose()
        await connect_task


async def run_producer(
    args: argparse.Namespace, config: GatewayConfig, connection: GatewayConnection
) -> None:
    """Publish the message given on the command line and print the result."""
    schema = AvroSchema(args.schema.read_text())
    key_schema = AvroSchema(args.key_schema.read_text()) if args.key_schema else None
    message: Any = json.loads(args.message)

    producer = Producer(
        args.topic,
        schema,
        get_logger("kafka_gateway.producer"),
        key_schema=key_schema,
        retry_interval=config.producer_retry_interval,
        retry_times=config.producer_retry_times,
        connection=connection,
    )
    result = await producer.produce(message)
    sys.stdout.write(json.dumps(result.model_dump(mode="json")) + "\n")


async def run(args: argparse.Namespace, config: GatewayConfig) -> None:
    connection = build_connection(config)
    try:
        if args.command == "consume":
            await run_consumer(args, config, connection)
        else:
            await run_producer(args, config, connection)
    finally:
        client = connection.reset()
        if client is not None:
            await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    global logger
    args = parse_args(argv)

    # JSON logs: controlled via JSON_LOGS env var (default: true)
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    setup_logging(
        name="kafka_gateway",
        json_format=json_logs,
        level=getattr(logging, args.log_level),
    )
    logger = get_logger(__name__)

    try:
        config = GatewayConfig.load_config(args.config)
    except GatewayError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    if args.url:
        config.url = args.url

    if args.metrics_port is not None:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    try:
        asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except GatewayError as e:
        logger.error(f"Gateway error: {e}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
