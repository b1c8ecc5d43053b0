"""
Async HTTP client for the Kafka REST gateway (REST Proxy v2 API).

Thin adapter over aiohttp: maps the consumer-group, subscription, records
and produce resources to Python calls and gateway error bodies to
GatewayHTTPError. Transport failures (aiohttp exceptions) propagate as-is.
"""

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional

import aiohttp
from pydantic import BaseModel

from kafka_gateway.common.exceptions import GatewayHTTPError, error_from_response
from kafka_gateway.common.logging import get_logger
from kafka_gateway.schemas import (
    AvroSchema,
    ConsumerInstanceInfo,
    Message,
    PublishResult,
)
from kafka_gateway.stream import MessageStream

logger = get_logger(__name__)

V2_CONTENT_TYPE = "application/vnd.kafka.v2+json"


def embedded_format_type(fmt: str) -> str:
    """Content type for records in an embedded format (avro, json, binary)."""
    return f"application/vnd.kafka.{fmt}.v2+json"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class GatewayClient:
    """
    Handle to one REST gateway.

    Creating a client does not touch the network; the aiohttp session is
    opened on the first request.

    Usage:
        >>> client = GatewayClient("http://127.0.0.1:8082")
        >>> instance = await client.join("my-group", {"format": "avro"})
        >>> stream = await instance.subscribe("my-topic")
        >>> ...
        >>> await instance.shutdown()
        >>> await client.close()
    """

    def __init__(
        self,
        url: str,
        request_timeout: float = 30.0,
        poll_interval: float = 1.0,
    ):
        self.url = url.rstrip("/")
        self.poll_interval = poll_interval
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        body: Optional[Any] = None,
        content_type: str = V2_CONTENT_TYPE,
        accept: str = V2_CONTENT_TYPE,
    ) -> Any:
        """
        Issue one gateway request and decode the JSON response.

        Returns:
            Decoded body, or None for empty (204) responses

        Raises:
            GatewayHTTPError: On 4xx/5xx responses
            aiohttp.ClientError: On transport failures
        """
        session = await self._get_session()
        headers = {"Accept": accept}
        data = None
        if body is not None:
            headers["Content-Type"] = content_type
            data = json.dumps(body)

        async with session.request(method, url, data=data, headers=headers) as response:
            text = await response.text()
            payload: Any = None
            if text:
                try:
                    payload = json.loads(text)
                except ValueError:
                    payload = {"message": text}

            if response.status >= 400:
                raise error_from_response(response.status, payload)
            return payload

    async def join(
        self, group: str, options: Optional[Mapping[str, Any]] = None
    ) -> "ConsumerInstance":
        """Create a consumer instance in ``group``."""
        options = dict(options or {})
        payload = await self.request("POST", f"{self.url}/consumers/{group}", options)
        info = ConsumerInstanceInfo.model_validate(payload)
        logger.debug(
            "Joined consumer group",
            extra={"consumer_group": group, "instance_id": info.instance_id},
        )
        return ConsumerInstance(
            self,
            group=group,
            instance_id=info.instance_id,
            base_uri=info.base_uri,
            fmt=str(options.get("format", "binary")),
        )

    def topic(self, name: str) -> "Topic":
        """Bind a publish handle for ``name``."""
        return Topic(self, name)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class ConsumerInstance:
    """A joined consumer-group member on the gateway."""

    def __init__(
        self,
        client: GatewayClient,
        group: str,
        instance_id: str,
        base_uri: str,
        fmt: str = "binary",
    ):
        self.client = client
        self.group = group
        self.instance_id = instance_id
        self.base_uri = base_uri.rstrip("/")
        self.format = fmt
        self._shut_down = False

    async def subscribe(self, topic: str) -> MessageStream:
        """Subscribe to ``topic`` and return a started stream over its records."""
        await self.client.request(
            "POST", f"{self.base_uri}/subscription", {"topics": [topic]}
        )
        stream = MessageStream(
            topic,
            fetch=self.fetch_records,
            poll_interval=self.client.poll_interval,
        )
        stream.start()
        return stream

    async def fetch_records(self) -> List[Message]:
        payload = await self.client.request(
            "GET",
            f"{self.base_uri}/records",
            accept=embedded_format_type(self.format),
        )
        return [Message.model_validate(record) for record in payload or []]

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Delete the instance on the gateway.

        Args:
            timeout: Seconds to wait before abandoning the request; None waits
                for completion
        """
        if self._shut_down:
            return
        self._shut_down = True
        request = self.client.request("DELETE", self.base_uri)
        if timeout is None:
            await request
        else:
            await asyncio.wait_for(request, timeout)

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down


class Topic:
    """Publish handle for one topic."""

    def __init__(self, client: GatewayClient, name: str):
        self.client = client
        self.name = name

    async def produce(
        self,
        message: Any,
        value_schema: AvroSchema,
        key_schema: Optional[AvroSchema] = None,
    ) -> PublishResult:
        """
        Publish one Avro-encoded record.

        Args:
            message: The record value; with ``key_schema`` a mapping with
                ``key`` and ``value`` entries
            value_schema: Schema for the value
            key_schema: Optional schema for the key

        Raises:
            GatewayHTTPError: If the gateway rejects the request or the record
        """
        body: Dict[str, Any] = {}
        if key_schema is not None:
            if not isinstance(message, Mapping) or "value" not in message:
                raise ValueError("Keyed messages must be mappings with 'key' and 'value'")
            record = {"key": _jsonable(message.get("key")), "value": _jsonable(message["value"])}
            _add_schema(body, "key", key_schema)
        else:
            record = {"value": _jsonable(message)}
        _add_schema(body, "value", value_schema)
        body["records"] = [record]

        payload = await self.client.request(
            "POST",
            f"{self.client.url}/topics/{self.name}",
            body,
            content_type=embedded_format_type("avro"),
        )
        result = PublishResult.model_validate(payload or {})

        if result.value_schema_id is not None:
            value_schema.id = result.value_schema_id
        if key_schema is not None and result.key_schema_id is not None:
            key_schema.id = result.key_schema_id

        for offset in result.offsets:
            if offset.error_code is not None:
                raise GatewayHTTPError(
                    offset.error or "Record rejected by gateway",
                    status=offset.error_code // 100 if offset.error_code >= 10000 else 500,
                    error_code=offset.error_code,
                    context={"topic": self.name},
                )
        return result


def _add_schema(body: Dict[str, Any], kind: str, schema: AvroSchema) -> None:
    if schema.id is not None:
        body[f"{kind}_schema_id"] = schema.id
    else:
        body[f"{kind}_schema"] = schema.to_json()
