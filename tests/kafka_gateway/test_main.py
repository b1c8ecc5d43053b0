"""Tests for the command line entry point."""

import asyncio
import json
from pathlib import Path

import pytest

from kafka_gateway.__main__ import build_connection, parse_args, run_consumer, run_producer
from kafka_gateway.config import GatewayConfig

SCHEMA = {"type": "record", "name": "Foo", "fields": [{"name": "foo", "type": "string"}]}


class TestParseArgs:
    """Test argument parsing."""

    def test_consume(self):
        args = parse_args(["--url", "http://proxy:8082", "consume", "--topic", "orders", "--group", "audit"])

        assert args.command == "consume"
        assert args.url == "http://proxy:8082"
        assert args.topic == "orders"
        assert args.group == "audit"
        assert args.offset_reset == "earliest"
        assert args.metrics_port is None

    def test_produce(self):
        args = parse_args(
            [
                "--log-level",
                "DEBUG",
                "produce",
                "--topic",
                "orders",
                "--schema",
                "foo.avsc",
                "--key-schema",
                "key.avsc",
                "--message",
                '{"key": "k", "value": {"foo": "bar"}}',
            ]
        )

        assert args.command == "produce"
        assert args.log_level == "DEBUG"
        assert args.schema == Path("foo.avsc")
        assert args.key_schema == Path("key.avsc")

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestRunConsumer:
    """Test the consume command."""

    @pytest.mark.asyncio
    async def test_connect_failure_ends_command(self):
        """Test a consumer that cannot connect does not leave the command waiting."""
        args = parse_args(["consume", "--topic", "orders", "--group", ""])
        config = GatewayConfig(url="http://127.0.0.1:1")
        connection = build_connection(config)

        try:
            with pytest.raises(ValueError, match="consumer_group"):
                await asyncio.wait_for(run_consumer(args, config, connection), timeout=2)
        finally:
            client = connection.reset()
            if client is not None:
                await client.close()


class TestRunProducer:
    """Test the produce command against the fake gateway."""

    @pytest.mark.asyncio
    async def test_publishes_message(self, fake_gateway, tmp_path, capsys):
        schema_file = tmp_path / "foo.avsc"
        schema_file.write_text(json.dumps(SCHEMA))
        args = parse_args(
            [
                "produce",
                "--topic",
                "orders",
                "--schema",
                str(schema_file),
                "--message",
                '{"foo": "bar"}',
            ]
        )
        config = GatewayConfig(url=fake_gateway.url, producer_retry_interval=0)
        connection = build_connection(config)

        try:
            await run_producer(args, config, connection)
        finally:
            await connection.reset().close()

        output = json.loads(capsys.readouterr().out)
        assert output["offsets"][0]["offset"] == 0
        assert fake_gateway.topics["orders"][0]["value"] == {"foo": "bar"}

    def test_build_connection_uses_config(self):
        config = GatewayConfig(url="http://configured:8082", request_timeout=3.0)

        client, url = build_connection(config).ensure()

        assert url == "http://configured:8082"
        assert client.url == "http://configured:8082"
