"""
Model Cache

Entity cache layer for SQLAlchemy models backed by Redis: read-through
lookups, write-through updates, negative caching, a stampede-prevention
fill-lock and multiple named cache views per entity type.
"""

from .constants import APP_VERSION
from .domain.cache.entities import Entity, EntityCacheConfig
from .domain.cache.value_objects import CacheState, CacheViewSpec, KeyType
from .domain.cache.domain_services import CacheKeyResolver
from .domain.cache.repository_interfaces import EntityStore, KeyValueStore
from .infrastructure.redis import (
    RedisConnectionFactory,
    RedisKeyValueStore,
    StampedeLock,
    RedisException,
)
from .repositories import SqlAlchemyEntityStore
from .services.cache import EntityCache, AutoUpdateCache, enable_auto_update_cache

__version__ = APP_VERSION

__all__ = [
    "Entity",
    "EntityCacheConfig",
    "CacheState",
    "CacheViewSpec",
    "KeyType",
    "CacheKeyResolver",
    "EntityStore",
    "KeyValueStore",
    "RedisConnectionFactory",
    "RedisKeyValueStore",
    "StampedeLock",
    "RedisException",
    "SqlAlchemyEntityStore",
    "EntityCache",
    "AutoUpdateCache",
    "enable_auto_update_cache",
]
