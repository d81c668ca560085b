"""
Entity Cache Service

Read-through / write-through cache-aside layer for single-entity lookups.

Read path: resolve the view key, probe the key-value store, and on a miss
serialize the database fallback behind a StampedeLock. Confirmed-absent
lookups are recorded with a short-lived negative marker. Write path: every
declared view of the entity is merged into its own hash.
"""

from typing import Any, Mapping, Optional

import structlog
from opentelemetry import trace

from ...domain.cache.domain_services import CacheKeyResolver
from ...domain.cache.entities import Entity, EntityCacheConfig
from ...domain.cache.repository_interfaces import EntityStore, KeyValueStore
from ...domain.cache.value_objects import CacheLookup, CacheState, KeyType
from ...infrastructure.redis.connection_factory import (
    RedisConnectionFactory,
    redis_connection_factory,
)
from ...infrastructure.redis.exceptions import RedisException
from ...infrastructure.redis.lock import StampedeLock
from ...infrastructure.redis.redis_store import RedisKeyValueStore

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)


class EntityCache:
    """
    Cache layer of one entity type.

    Composed of the entity type's static configuration, a key-value store
    holding cache entries, and the relational store the entries are read
    from. Caching is disabled when the configuration names no connection or
    no default key template; every lookup then goes straight to the store.
    """

    def __init__(
        self,
        config: EntityCacheConfig,
        kv_store: Optional[KeyValueStore],
        entity_store: EntityStore,
        lock: Optional[StampedeLock] = None,
    ):
        self.config = config
        self.entity_store = entity_store
        self.resolver = CacheKeyResolver(config)
        self.kv_store = kv_store if config.enabled else None

        if self.kv_store is not None and lock is None:
            lock = StampedeLock(self.kv_store, prefix=config.lock_prefix)
        self.lock = lock

    @classmethod
    def from_config(
        cls,
        config: EntityCacheConfig,
        entity_store: EntityStore,
        connection_factory: Optional[RedisConnectionFactory] = None,
    ) -> "EntityCache":
        """Build a cache whose key-value store is the configured Redis connection."""
        kv_store = None
        if config.enabled:
            factory = connection_factory or redis_connection_factory
            kv_store = RedisKeyValueStore(factory.get_client(config.connection))
        return cls(config, kv_store, entity_store)

    @property
    def enabled(self) -> bool:
        return self.kv_store is not None

    def get_cache_key(self, entity: Entity, view: Optional[str] = None) -> Optional[str]:
        """Cache key of ``entity`` for a view (None = default view)."""
        if not self.enabled:
            return None
        return self.resolver.resolve(view, entity.fields)

    # Read path

    def find(
        self,
        identifying_data: Any = None,
        view: Optional[str] = None,
        disable_cache: bool = False,
    ) -> Optional[Entity]:
        """
        Find one entity, reading through the cache.

        Args:
            identifying_data: Primary key value, or a field -> value map
            view: Cache view to read (None = default view)
            disable_cache: Query the store without reading or writing the cache

        Returns:
            The entity, or None when it does not exist

        Raises:
            RedisException: If the key-value store is unavailable
        """
        with tracer.start_as_current_span("entity_cache.find") as span:
            if identifying_data is None or (
                isinstance(identifying_data, Mapping) and not identifying_data
            ):
                return self.entity_store.find_by_primary_key(None)

            if not self.enabled and not isinstance(identifying_data, Mapping):
                return self.entity_store.find_by_primary_key(identifying_data)

            conditions = self._normalize(identifying_data)
            key = self.resolver.resolve(view, conditions) if self.enabled else None
            if key is None:
                span.set_attribute("cache.bypass", True)
                return self.entity_store.find_by_field_equality(conditions)

            span.set_attribute("cache.key", key)
            if disable_cache:
                span.set_attribute("cache.bypass", True)
                return self.entity_store.find_by_field_equality(conditions)

            lookup = self._probe(key)
            span.set_attribute("cache.state", lookup.state.value)

            if lookup.state is CacheState.NEGATIVE:
                logger.debug("Entity cache negative hit", key=key)
                return None
            if lookup.state is CacheState.HIT:
                logger.debug("Entity cache hit", key=key)
                return Entity.from_cache_entry(lookup.data, conditions)

            logger.debug(
                "Entity cache miss",
                key=key,
                state=lookup.state.value,
                ambiguous=lookup.ambiguous,
            )
            return self._fill(key, conditions, disable_cache=lookup.ambiguous)

    def _normalize(self, identifying_data: Any) -> dict:
        if isinstance(identifying_data, Mapping):
            return dict(identifying_data)
        return {self.config.primary_key: identifying_data}

    def _probe(self, key: str) -> CacheLookup:
        if not self.kv_store.exists(key):
            return CacheLookup(CacheState.MISS)

        key_type = self.kv_store.type_of(key)
        if key_type is KeyType.HASH:
            data = self.kv_store.read_hash(key)
            if not data:
                return CacheLookup(CacheState.MISS, ambiguous=True)
            return CacheLookup(CacheState.HIT, data)

        if key_type is KeyType.NONE:
            return CacheLookup(CacheState.MISS, ambiguous=True)

        if (
            key_type is KeyType.STRING
            and self.kv_store.get_scalar(key) == self.config.invalid_value
        ):
            return CacheLookup(CacheState.NEGATIVE)

        return CacheLookup(CacheState.MISS_CORRUPT)

    def _fill(
        self, key: str, conditions: Mapping[str, Any], disable_cache: bool = False
    ) -> Optional[Entity]:
        """Query the store behind the fill-lock and write the result back."""
        if disable_cache:
            return self.entity_store.find_by_field_equality(conditions)

        acquired = self.lock.acquire(key)
        try:
            if not acquired and self.lock.strict:
                # Another filler held the key for the whole wait: use what it
                # wrote, otherwise read the store without touching the cache.
                lookup = self._probe(key)
                if lookup.state is CacheState.NEGATIVE:
                    return None
                if lookup.state is CacheState.HIT:
                    return Entity.from_cache_entry(lookup.data, conditions)
                return self.entity_store.find_by_field_equality(conditions)

            entity = self.entity_store.find_by_field_equality(conditions)
            if entity is None:
                self.kv_store.set_scalar_with_expiry(
                    key, self.config.negative_ttl, self.config.invalid_value
                )
                logger.debug(
                    "Entity not found, negative marker written",
                    key=key,
                    ttl=self.config.negative_ttl,
                )
            else:
                self.update_cache(entity)
            return entity
        finally:
            self.lock.release(key)

    # Write path

    def update_cache(
        self, entity: Entity, data: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Write an entity into every declared cache view.

        Args:
            entity: Entity whose fields render the view keys
            data: Fields to write. Empty or None writes the entity's full
                field map; otherwise only these fields are merged, and views
                with no existing entry are left alone.

        Returns:
            False when caching is disabled for the entity type, True once
            every view has been processed. Store failures of a single view
            are logged, not raised.
        """
        with tracer.start_as_current_span("entity_cache.update_cache") as span:
            if not self.enabled:
                return False

            partial = bool(data)
            payload = dict(data) if partial else entity.to_dict()
            for name in self.config.field_except:
                payload.pop(name, None)
            span.set_attribute("cache.partial", partial)

            for spec in self.resolver.views():
                key = spec.render(entity.fields)
                if key is None:
                    logger.debug("Cache view key unresolved, skipped", view=spec.name)
                    continue
                try:
                    self._write_view(key, payload, partial)
                except RedisException as e:
                    logger.warning(
                        "Cache view update failed",
                        key=key,
                        view=spec.name,
                        error=e.message,
                        error_code=e.error_code,
                    )
            return True

    def _write_view(self, key: str, payload: Mapping[str, Any], partial: bool) -> bool:
        exists = self.kv_store.exists(key)
        if not exists and partial:
            return False

        if exists and self.kv_store.type_of(key) is not KeyType.HASH:
            self.kv_store.delete(key)
            logger.info("Purged non-hash cache entry", key=key)
            return False

        written = self.kv_store.write_hash_merge(key, payload)
        if written and self.config.expire > 0:
            self.kv_store.expire(key, self.config.expire)
        return written

    # Invalidation

    def delete_cache(self, entity: Entity) -> bool:
        """
        Remove every declared view's entry of an entity.

        Cache entries and negative markers are both removed.

        Returns:
            False when caching is disabled for the entity type, True otherwise

        Raises:
            RedisException: If the key-value store is unavailable
        """
        with tracer.start_as_current_span("entity_cache.delete_cache"):
            if not self.enabled:
                return False

            for spec in self.resolver.views():
                key = spec.render(entity.fields)
                if key is not None and self.kv_store.exists(key):
                    self.kv_store.delete(key)
                    logger.debug("Cache entry deleted", key=key, view=spec.name)
            return True
