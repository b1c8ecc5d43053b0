"""Gateway configuration from environment variables and config.yaml."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import yaml

from kafka_gateway.common.exceptions import ConfigurationError

T = TypeVar("T")

DEFAULT_GATEWAY_URL = "http://127.0.0.1:8082"
URL_ENV_VAR = "KAFKA_REST_PROXY_URL"


@dataclass
class GatewayConfig:
    """REST gateway connection and retry configuration.

    Load from environment using GatewayConfig.from_env(), or from a YAML file
    plus environment overrides using GatewayConfig.load_config().
    All timing values in seconds.
    """

    url: str = DEFAULT_GATEWAY_URL

    # Consumer reconnect delay (retried without bound)
    consumer_retry_interval: float = 10.0

    # Producer publish retries
    producer_retry_interval: float = 5.0
    producer_retry_times: int = 3

    # HTTP client
    request_timeout: float = 30.0
    poll_interval: float = 1.0

    # Budget for the gateway shutdown issued while resetting a consumer
    shutdown_timeout: float = 1.0

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Load configuration from environment variables.

        Optional environment variables (with defaults):
            KAFKA_REST_PROXY_URL: http://127.0.0.1:8082
            KAFKA_CONSUMER_RETRY_INTERVAL: 10
            KAFKA_PRODUCER_RETRY_INTERVAL: 5
            KAFKA_PRODUCER_RETRY_TIMES: 3
            KAFKA_REST_REQUEST_TIMEOUT: 30
            KAFKA_REST_POLL_INTERVAL: 1
            KAFKA_REST_SHUTDOWN_TIMEOUT: 1

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        return cls._build({})

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "GatewayConfig":
        """Load configuration from a YAML file and environment variables.

        Configuration priority (highest to lowest):
        1. Environment variables
        2. config file (under 'gateway:' key)
        3. Dataclass defaults
        """
        gateway_data: Dict[str, Any] = {}
        if config_path is not None and config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
            gateway_data = yaml_data.get("gateway", {}) or {}

        return cls._build(gateway_data)

    @classmethod
    def _build(cls, data: Dict[str, Any]) -> "GatewayConfig":
        defaults = cls()
        return cls(
            url=os.getenv(URL_ENV_VAR) or data.get("url") or defaults.url,
            consumer_retry_interval=_setting(
                "KAFKA_CONSUMER_RETRY_INTERVAL",
                data.get("consumer_retry_interval", defaults.consumer_retry_interval),
                float,
            ),
            producer_retry_interval=_setting(
                "KAFKA_PRODUCER_RETRY_INTERVAL",
                data.get("producer_retry_interval", defaults.producer_retry_interval),
                float,
            ),
            producer_retry_times=_setting(
                "KAFKA_PRODUCER_RETRY_TIMES",
                data.get("producer_retry_times", defaults.producer_retry_times),
                int,
            ),
            request_timeout=_setting(
                "KAFKA_REST_REQUEST_TIMEOUT",
                data.get("request_timeout", defaults.request_timeout),
                float,
            ),
            poll_interval=_setting(
                "KAFKA_REST_POLL_INTERVAL",
                data.get("poll_interval", defaults.poll_interval),
                float,
            ),
            shutdown_timeout=_setting(
                "KAFKA_REST_SHUTDOWN_TIMEOUT",
                data.get("shutdown_timeout", defaults.shutdown_timeout),
                float,
            ),
        )


def _setting(env_var: str, fallback: Any, convert: Callable[[Any], T]) -> T:
    raw = os.getenv(env_var)
    value = raw if raw is not None else fallback
    try:
        converted = convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {env_var}: {value!r}",
            cause=e,
            context={"setting": env_var},
        ) from e
    if converted < 0:
        raise ConfigurationError(
            f"{env_var} must not be negative, got {value!r}",
            context={"setting": env_var},
        )
    return converted
