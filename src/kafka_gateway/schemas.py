"""
Pydantic models for REST gateway payloads.

The gateway decodes Avro records before handing them out, so message keys
and values arrive as plain JSON values.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class Message(BaseModel):
    """A single decoded record delivered by a consumer stream."""

    topic: str
    key: Any = None
    value: Any = None
    partition: int
    offset: int


class ConsumerInstanceInfo(BaseModel):
    """Response to joining a consumer group."""

    instance_id: str
    base_uri: str


class PartitionOffset(BaseModel):
    """Where a published record landed, or why it did not."""

    partition: Optional[int] = None
    offset: Optional[int] = None
    error_code: Optional[int] = None
    error: Optional[str] = None


class PublishResult(BaseModel):
    """Response to a publish request."""

    key_schema_id: Optional[int] = None
    value_schema_id: Optional[int] = None
    offsets: List[PartitionOffset] = Field(default_factory=list)


class AvroSchema:
    """
    Avro schema sent along with published records.

    The gateway registers the schema on first use and returns its id; the id
    is kept here so later publishes can reference it instead of resending
    the whole schema.
    """

    def __init__(self, schema: Union[str, Dict[str, Any]]):
        if isinstance(schema, str):
            schema = json.loads(schema)
        if not isinstance(schema, dict):
            raise TypeError(f"Avro schema must be a JSON object, got {type(schema).__name__}")
        self.schema: Dict[str, Any] = schema
        self.id: Optional[int] = None

    @property
    def name(self) -> Optional[str]:
        return self.schema.get("name")

    def to_json(self) -> str:
        return json.dumps(self.schema, separators=(",", ":"))

    def __repr__(self) -> str:
        return f"AvroSchema(name={self.name!r}, id={self.id!r})"
