"""
Registry for the process-wide gateway client.

One GatewayClient is shared by every Consumer and Producer created from the
same registry, so the process keeps a single connection pool to the gateway.
"""

from typing import Callable, Optional, Tuple

from kafka_gateway.client import GatewayClient
from kafka_gateway.common.logging import get_logger
from kafka_gateway.config import GatewayConfig

logger = get_logger(__name__)

ClientFactory = Callable[[str, GatewayConfig], GatewayClient]


def _default_factory(url: str, config: GatewayConfig) -> GatewayClient:
    return GatewayClient(
        url,
        request_timeout=config.request_timeout,
        poll_interval=config.poll_interval,
    )


class GatewayConnection:
    """
    Lazily creates and memoizes one gateway client.

    URL resolution order: explicit override (set_url) > KAFKA_REST_PROXY_URL
    environment variable > built-in default.

    The memoized client lives until reset(); instances that captured it
    earlier keep using it until they are disposed.
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or _default_factory
        self._url_override: Optional[str] = None
        self._client: Optional[GatewayClient] = None
        self._url: Optional[str] = None

    def set_url(self, url: Optional[str]) -> None:
        """Set the explicit gateway URL; None falls back to env/default."""
        self._url_override = url

    def resolve_url(self, config: Optional[GatewayConfig] = None) -> str:
        config = config or GatewayConfig.from_env()
        return self._url_override or config.url

    def ensure(self) -> Tuple[GatewayClient, str]:
        """
        Return the shared client and the URL it talks to, creating it if needed.

        Repeated calls return the same client without side effects.
        """
        if self._client is not None and self._url is not None:
            return self._client, self._url

        config = GatewayConfig.from_env()
        url = self.resolve_url(config)
        self._client = self._client_factory(url, config)
        self._url = url
        logger.info("Created gateway client", extra={"gateway_url": url})
        return self._client, url

    def reset(self) -> Optional[GatewayClient]:
        """
        Forget the memoized client.

        Returns:
            The dropped client (if any), so the caller can close it
        """
        client, self._client, self._url = self._client, None, None
        if client is not None:
            logger.info("Reset gateway client", extra={"gateway_url": client.url})
        return client

    @property
    def client(self) -> Optional[GatewayClient]:
        return self._client


default_connection = GatewayConnection()


def set_gateway_url(url: Optional[str]) -> None:
    """Set the gateway URL used by clients created after this call."""
    default_connection.set_url(url)
