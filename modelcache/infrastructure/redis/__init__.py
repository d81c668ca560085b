"""
Redis Infrastructure Module

Redis-backed key-value store for the entity cache.

This module provides:
- RedisKeyValueStore: KeyValueStore over a redis-py client
- RedisConnectionFactory: pooled clients per cache connection identifier
- StampedeLock: fill-lock serializing cache-miss fallbacks
- Exception taxonomy for an unavailable store
"""

from .connection_factory import RedisConnectionFactory, redis_connection_factory
from .redis_store import RedisKeyValueStore
from .lock import StampedeLock
from .exceptions import (
    RedisException,
    RedisConnectionException,
    RedisOperationTimeoutException,
    RedisOperationException,
    RedisConfigurationException,
)

__all__ = [
    # Connection management
    "RedisConnectionFactory",
    "redis_connection_factory",
    # Store and lock
    "RedisKeyValueStore",
    "StampedeLock",
    # Exceptions
    "RedisException",
    "RedisConnectionException",
    "RedisOperationTimeoutException",
    "RedisOperationException",
    "RedisConfigurationException",
]
