"""
Pytest fixtures for kafka_gateway tests.

Provides fixtures for:
- An in-process fake REST gateway (aiohttp.web) speaking the v2 API
- Gateway clients and registries pointed at the fake gateway
- Shutdown hooks that never touch real signal handlers
- A helper for waiting on asynchronous conditions
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from kafka_gateway.client import GatewayClient
from kafka_gateway.connection import GatewayConnection
from kafka_gateway.lifecycle import ShutdownHooks


def _error(status: int, error_code: int, message: str) -> web.Response:
    return web.json_response(
        {"error_code": error_code, "message": message}, status=status
    )


class FakeGateway:
    """
    Minimal in-memory REST gateway.

    Topics are single-partition lists of records. Consumer groups commit
    automatically as records are handed out. Topics are created on first
    publish, so reading a topic nobody published to yields 40401.
    """

    def __init__(self):
        self.url = ""
        self.topics: Dict[str, List[Dict[str, Any]]] = {}
        self.instances: Dict[str, Dict[str, Any]] = {}
        self.group_offsets: Dict[str, Dict[str, int]] = {}
        self.schema_ids: Dict[str, int] = {}
        self.deleted: List[str] = []
        self.produce_requests: List[Dict[str, Any]] = []
        self.join_attempts = 0
        self.fail_joins = 0
        self.fail_produces = 0
        self._next_instance = 0

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/consumers/{group}", self.create_instance)
        app.router.add_post(
            "/consumers/{group}/instances/{instance}/subscription", self.subscribe
        )
        app.router.add_get(
            "/consumers/{group}/instances/{instance}/records", self.records
        )
        app.router.add_delete(
            "/consumers/{group}/instances/{instance}", self.delete_instance
        )
        app.router.add_post("/topics/{topic}", self.produce)
        return app

    async def create_instance(self, request: web.Request) -> web.Response:
        self.join_attempts += 1
        if self.fail_joins > 0:
            self.fail_joins -= 1
            return _error(503, 50301, "Gateway unavailable")

        group = request.match_info["group"]
        options = json.loads(await request.text() or "{}")
        self._next_instance += 1
        instance_id = f"instance-{self._next_instance}"
        self.instances[instance_id] = {
            "group": group,
            "topics": [],
            "options": options,
        }
        base_uri = f"{self.url}/consumers/{group}/instances/{instance_id}"
        return web.json_response({"instance_id": instance_id, "base_uri": base_uri})

    async def subscribe(self, request: web.Request) -> web.Response:
        instance = self.instances.get(request.match_info["instance"])
        if instance is None:
            return _error(404, 40403, "Consumer instance not found")
        body = json.loads(await request.text())
        instance["topics"] = list(body["topics"])
        return web.Response(status=204)

    async def records(self, request: web.Request) -> web.Response:
        instance = self.instances.get(request.match_info["instance"])
        if instance is None:
            return _error(404, 40403, "Consumer instance not found")

        topic = instance["topics"][0]
        if topic not in self.topics:
            return _error(404, 40401, "Topic not found")

        log = self.topics[topic]
        offsets = self.group_offsets.setdefault(instance["group"], {})
        if topic not in offsets:
            reset = instance["options"].get("auto.offset.reset", "latest")
            offsets[topic] = 0 if reset in ("earliest", "smallest") else len(log)
        start = offsets[topic]
        offsets[topic] = len(log)

        return web.json_response(
            [
                {
                    "topic": topic,
                    "key": record["key"],
                    "value": record["value"],
                    "partition": 0,
                    "offset": offset,
                }
                for offset, record in enumerate(log[start:], start=start)
            ]
        )

    async def delete_instance(self, request: web.Request) -> web.Response:
        instance_id = request.match_info["instance"]
        if self.instances.pop(instance_id, None) is None:
            return _error(404, 40403, "Consumer instance not found")
        self.deleted.append(instance_id)
        return web.Response(status=204)

    async def produce(self, request: web.Request) -> web.Response:
        body = json.loads(await request.text())
        self.produce_requests.append(body)
        if self.fail_produces > 0:
            self.fail_produces -= 1
            return _error(500, 50002, "Broker unavailable")

        value_schema_id = self._schema_id(body, "value")
        if value_schema_id is None:
            return _error(422, 42205, "Request includes records but no value schema")
        key_schema_id = self._schema_id(body, "key")

        log = self.topics.setdefault(request.match_info["topic"], [])
        offsets = []
        for record in body["records"]:
            log.append({"key": record.get("key"), "value": record["value"]})
            offsets.append({"partition": 0, "offset": len(log) - 1})

        return web.json_response(
            {
                "key_schema_id": key_schema_id,
                "value_schema_id": value_schema_id,
                "offsets": offsets,
            }
        )

    def _schema_id(self, body: Dict[str, Any], kind: str) -> Optional[int]:
        if f"{kind}_schema_id" in body:
            return body[f"{kind}_schema_id"]
        schema = body.get(f"{kind}_schema")
        if schema is None:
            return None
        return self.schema_ids.setdefault(schema, len(self.schema_ids) + 1)


@pytest_asyncio.fixture
async def fake_gateway():
    """Start a fake REST gateway on a free local port."""
    gateway = FakeGateway()
    server = TestServer(gateway.app())
    await server.start_server()
    gateway.url = str(server.make_url("")).rstrip("/")

    yield gateway

    await server.close()


@pytest_asyncio.fixture
async def gateway_client(fake_gateway):
    """GatewayClient pointed at the fake gateway with fast polling."""
    client = GatewayClient(fake_gateway.url, request_timeout=5.0, poll_interval=0.01)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def connection(fake_gateway):
    """Gateway registry whose clients talk to the fake gateway."""
    registry = GatewayConnection(
        client_factory=lambda url, _config: GatewayClient(
            url, request_timeout=5.0, poll_interval=0.01
        )
    )
    registry.set_url(fake_gateway.url)

    yield registry

    client = registry.reset()
    if client is not None:
        await client.close()


@pytest.fixture
def hooks():
    """Shutdown hooks that dispatch nothing from real signals."""
    hooks = ShutdownHooks(signals=())
    yield hooks
    hooks.clear()


@pytest.fixture
def wait_for():
    """Poll ``condition`` until it holds or ``timeout`` seconds pass."""

    async def _wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_for
