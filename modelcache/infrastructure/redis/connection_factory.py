"""
Redis Connection Factory

Resolves cache connection identifiers to pooled Redis clients.
One connection pool is kept per identifier and shared by every entity
type configured with that identifier.
"""

import logging
import threading
from typing import Dict, Optional

import redis
from redis import ConnectionPool
from redis.exceptions import (
    AuthenticationError as RedisAuthError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)

from opentelemetry.instrumentation.redis import RedisInstrumentor

from ...core.config import Settings, get_settings
from .exceptions import (
    RedisConfigurationException,
    RedisConnectionException,
)

logger = logging.getLogger(__name__)


class RedisConnectionFactory:
    """
    Factory for creating and sharing Redis connection pools.

    Pools are created lazily on first use of a connection identifier.
    """

    def __init__(self, settings: Optional[Settings] = None, instrument: bool = True):
        self._settings = settings or get_settings()
        self._pools: Dict[str, ConnectionPool] = {}
        self._lock = threading.Lock()

        if instrument:
            try:
                RedisInstrumentor().instrument()
                logger.info("Redis OpenTelemetry instrumentation enabled")
            except Exception as e:
                logger.warning(
                    f"Failed to enable Redis OpenTelemetry instrumentation: {e}"
                )

    def get_client(self, connection: str) -> redis.Redis:
        """
        Get a Redis client for a cache connection identifier.

        Args:
            connection: Identifier registered in ``REDIS_CONNECTIONS``
                (``default`` falls back to ``REDIS_URL``)

        Returns:
            Redis client backed by the identifier's shared pool

        Raises:
            RedisConfigurationException: If the identifier is unknown or its
                URL cannot be parsed
        """
        return redis.Redis(connection_pool=self._get_pool(connection))

    def _get_pool(self, connection: str) -> ConnectionPool:
        with self._lock:
            pool = self._pools.get(connection)
            if pool is not None:
                return pool

            try:
                url = self._settings.redis_url_for(connection)
            except KeyError:
                raise RedisConfigurationException(
                    message=f"Unknown cache connection: {connection}",
                    config_key="REDIS_CONNECTIONS",
                    config_value=connection,
                )

            try:
                pool = ConnectionPool.from_url(
                    url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self._settings.REDIS_CONNECTION_TIMEOUT,
                    socket_timeout=self._settings.REDIS_OPERATION_TIMEOUT,
                    retry_on_timeout=True,
                    health_check_interval=self._settings.REDIS_HEALTH_CHECK_INTERVAL,
                    max_connections=self._settings.REDIS_MAX_CONNECTIONS,
                )
            except ValueError as e:
                raise RedisConfigurationException(
                    message=f"Invalid Redis URL for connection {connection}",
                    config_key="REDIS_CONNECTIONS",
                    config_value=connection,
                    original_error=e,
                )

            self._pools[connection] = pool
            logger.debug(
                f"Created Redis connection pool for connection: {connection}",
                extra={
                    "connection": connection,
                    "max_connections": self._settings.REDIS_MAX_CONNECTIONS,
                },
            )
            return pool

    def ping(self, connection: str) -> bool:
        """Test a connection with PING.

        Raises:
            RedisConnectionException: If Redis is unreachable
        """
        try:
            return bool(self.get_client(connection).ping())
        except (RedisConnectionError, RedisAuthError, RedisTimeoutError) as e:
            logger.error(f"Redis connection test failed for {connection}: {e}")
            raise RedisConnectionException(
                message=f"Redis connection test failed for {connection}",
                original_error=e,
            )

    def close(self) -> None:
        """Disconnect every pool."""
        with self._lock:
            for name, pool in self._pools.items():
                pool.disconnect()
                logger.debug(f"Closed Redis connection pool: {name}")
            self._pools.clear()


# Global connection factory instance
redis_connection_factory = RedisConnectionFactory()
