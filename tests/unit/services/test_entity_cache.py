"""
Unit tests for the Entity Cache service.

Covers the read-through path (hit, miss, negative marker, corrupt entry),
write-through into every view, invalidation and the fill-lock interplay,
over in-memory key-value and entity stores.
"""

import pytest
from unittest.mock import MagicMock

from modelcache.domain.cache.entities import Entity, EntityCacheConfig
from modelcache.domain.cache.value_objects import KeyType
from modelcache.infrastructure.redis.exceptions import (
    RedisConnectionException,
    RedisOperationException,
)
from modelcache.infrastructure.redis.lock import StampedeLock
from modelcache.services.cache.entity_cache import EntityCache

from tests.fixtures.fake_stores import InMemoryEntityStore


class TestFindReadThrough:
    """Test EntityCache.find on the cached read path."""

    def test_miss_populates_default_view(self, user_cache, kv_store, entity_store):
        """Test a miss reads the store once and writes the hash."""
        entity = user_cache.find(7)

        assert entity is not None
        assert entity["email"] == "a@example.com"
        assert entity.from_cache is False
        assert entity_store.field_lookups == 1
        assert kv_store.hash_at("user:7") == {
            "id": 7,
            "name": "A",
            "email": "a@example.com",
            "password_hash": "secret-a",
        }

    def test_second_find_is_served_from_cache(self, user_cache, entity_store):
        """Test a hit does not touch the entity store."""
        first = user_cache.find(7)
        second = user_cache.find(7)

        assert entity_store.lookups == 1
        assert second.from_cache is True
        assert second.fields == first.fields
        assert second.identity == {"id": 7}

    def test_hit_keeps_scalar_types(self, user_cache):
        """Test a cache hit returns the same values as a store read."""
        from_store = user_cache.find(7)
        from_cache = user_cache.find(7)

        assert from_cache.to_dict() == from_store.to_dict()
        assert isinstance(from_cache["id"], int)

    def test_delete_then_find_repeats_miss_path(self, user_cache, kv_store, entity_store):
        """Test invalidation forces the next read back to the store."""
        entity = user_cache.find(7)
        assert user_cache.delete_cache(entity) is True
        assert "user:7" not in kv_store.data

        again = user_cache.find(7)

        assert entity_store.lookups == 2
        assert again.from_cache is False
        assert kv_store.hash_at("user:7") is not None

    def test_fill_lock_is_released_after_miss(self, user_cache, kv_store):
        """Test the fill-lock marker is removed once the fill completes."""
        user_cache.find(7)

        assert kv_store.operations("set_scalar") == ["setcachelock:user:7"]
        assert "setcachelock:user:7" in kv_store.operations("delete")
        assert "setcachelock:user:7" not in kv_store.data

    def test_mapping_identifying_data(self, user_cache, entity_store):
        """Test a field map resolves the same default view key."""
        entity = user_cache.find({"id": 8})

        assert entity["name"] == "B"
        assert user_cache.find({"id": 8}).from_cache is True
        assert entity_store.lookups == 1


class TestNegativeCaching:
    """Test negative markers for confirmed-absent entities."""

    def test_absent_entity_writes_negative_marker(self, user_cache, kv_store, user_config):
        """Test a store miss stores the marker with the negative TTL."""
        assert user_cache.find(99) is None

        assert kv_store.data["user:99"] == (KeyType.STRING, user_config.invalid_value)
        assert kv_store.expiries["user:99"] == 300

    def test_negative_marker_short_circuits_store(self, user_cache, entity_store):
        """Test a second lookup of an absent entity is served by the marker."""
        user_cache.find(99)
        assert user_cache.find(99) is None

        assert entity_store.lookups == 1

    def test_custom_invalid_value_and_ttl(self, make_cache, kv_store):
        """Test the marker value and expiry come from the configuration."""
        config = EntityCacheConfig(
            connection="default",
            key_template="user:{id}",
            invalid_value="gone",
            negative_ttl=60,
        )
        cache = make_cache(config)

        cache.find(42)

        assert kv_store.data["user:42"] == (KeyType.STRING, "gone")
        assert kv_store.expiries["user:42"] == 60

    def test_delete_cache_removes_negative_marker(self, user_cache, kv_store, entity_store):
        """Test invalidation also clears a negative marker."""
        user_cache.find(99)
        entity_store.rows.append({"id": 99, "name": "Z", "email": "z@example.com"})

        user_cache.delete_cache(Entity(fields={"id": 99}))
        entity = user_cache.find(99)

        assert entity is not None
        assert entity["name"] == "Z"
        assert kv_store.hash_at("user:99")["name"] == "Z"


class TestCorruptEntries:
    """Test self-healing of keys holding a non-hash value."""

    def test_foreign_string_is_treated_as_miss(self, user_cache, kv_store, entity_store):
        """Test a non-marker string goes back to the store."""
        kv_store.put_raw("user:7", KeyType.STRING, "garbage")

        entity = user_cache.find(7)

        assert entity is not None
        assert entity["name"] == "A"
        assert entity_store.lookups == 1

    def test_corrupt_entry_is_purged_then_rebuilt(self, user_cache, kv_store, entity_store):
        """Test the corrupt key is removed and a later read restores a hash."""
        kv_store.put_raw("user:7", KeyType.LIST, ["x"])

        user_cache.find(7)
        assert "user:7" not in kv_store.data

        user_cache.find(7)
        assert kv_store.hash_at("user:7")["email"] == "a@example.com"
        assert user_cache.find(7).from_cache is True
        assert entity_store.lookups == 2

    def test_corrupt_entry_never_raises(self, user_cache, kv_store):
        """Test a wrong-typed key is never surfaced as an error."""
        kv_store.put_raw("user:7", KeyType.SET, {"a"})

        assert user_cache.find(7)["id"] == 7


class TestAmbiguousMiss:
    """Test misses whose cache state cannot be trusted."""

    def test_key_vanishing_after_exists_bypasses_cache(self, user_cache, kv_store, entity_store):
        """Test a key that expires mid-probe is read without caching."""
        kv_store.exists = MagicMock(return_value=True)

        entity = user_cache.find(7)

        assert entity["name"] == "A"
        assert entity_store.lookups == 1
        assert "user:7" not in kv_store.data
        assert kv_store.operations("set_scalar") == []

    def test_empty_hash_bypasses_cache(self, user_cache, kv_store):
        """Test an empty hash read is treated as an untrusted miss."""
        kv_store.put_raw("user:7", KeyType.HASH, {})

        entity = user_cache.find(7)

        assert entity["id"] == 7
        assert kv_store.operations("write_hash_merge") == []


class TestFindBypass:
    """Test lookups that never touch the cache."""

    def test_none_identifying_data(self, user_cache, kv_store, entity_store):
        """Test None is delegated to a primary key lookup."""
        assert user_cache.find(None) is None

        assert entity_store.primary_key_lookups == 1
        assert kv_store.calls == []

    def test_empty_mapping_identifying_data(self, user_cache, kv_store, entity_store):
        """Test an empty field map is treated as absent."""
        assert user_cache.find({}) is None

        assert entity_store.primary_key_lookups == 1
        assert kv_store.calls == []

    def test_disable_cache_flag(self, user_cache, kv_store, entity_store):
        """Test disable_cache reads the store and writes nothing."""
        entity = user_cache.find(7, disable_cache=True)

        assert entity["name"] == "A"
        assert entity_store.field_lookups == 1
        assert kv_store.calls == []

    def test_unresolvable_key(self, user_cache, kv_store, entity_store):
        """Test conditions not covering the template bypass the cache."""
        entity = user_cache.find({"email": "b@example.com"})

        assert entity["id"] == 8
        assert entity_store.field_lookups == 1
        assert kv_store.calls == []

    def test_undeclared_view(self, user_cache, kv_store):
        """Test an unknown view name bypasses the cache."""
        entity = user_cache.find(7, view="missing")

        assert entity["id"] == 7
        assert kv_store.calls == []

    def test_disabled_config_uses_primary_key(self, kv_store, entity_store):
        """Test a scalar lookup on a disabled cache uses the primary key."""
        cache = EntityCache(EntityCacheConfig(), kv_store, entity_store)

        entity = cache.find(7)

        assert cache.enabled is False
        assert cache.lock is None
        assert entity["name"] == "A"
        assert entity_store.primary_key_lookups == 1
        assert kv_store.calls == []

    def test_disabled_config_uses_field_lookup_for_mapping(self, kv_store, entity_store):
        """Test a field map on a disabled cache uses field equality."""
        config = EntityCacheConfig(key_template="user:{id}")
        cache = EntityCache(config, kv_store, entity_store)

        entity = cache.find({"email": "a@example.com"})

        assert entity["id"] == 7
        assert entity_store.field_lookups == 1
        assert kv_store.calls == []


class TestNamedViews:
    """Test reads and writes across several views."""

    @pytest.fixture
    def cache(self, make_cache, multi_view_config):
        return make_cache(multi_view_config)

    def test_update_writes_every_view(self, cache, kv_store):
        """Test one write lands in the default and both named views."""
        entity = Entity(fields={"id": 7, "name": "A", "email": "a@example.com", "password_hash": "x"})

        assert cache.update_cache(entity) is True

        expected = {"id": 7, "name": "A", "email": "a@example.com"}
        assert kv_store.hash_at("user:7") == expected
        assert kv_store.hash_at("user:email:a@example.com") == expected
        assert kv_store.hash_at("user:name:A") == expected

    def test_find_through_named_view(self, cache, kv_store, entity_store):
        """Test a named view miss fills every view, then hits."""
        entity = cache.find({"email": "b@example.com"}, view="by_email")

        assert entity["id"] == 8
        assert "password_hash" not in kv_store.hash_at("user:email:b@example.com")
        assert kv_store.hash_at("user:8") is not None

        cached = cache.find({"email": "b@example.com"}, view="by_email")
        assert cached.from_cache is True
        assert cached.identity == {"email": "b@example.com"}
        assert entity_store.lookups == 1

    def test_get_cache_key(self, cache):
        """Test keys are rendered per view."""
        entity = Entity(fields={"id": 7, "name": "A", "email": "a@example.com"})

        assert cache.get_cache_key(entity) == "user:7"
        assert cache.get_cache_key(entity, view="by_email") == "user:email:a@example.com"
        assert cache.get_cache_key(entity, view="unknown") is None

    def test_delete_cache_clears_every_view(self, cache, kv_store):
        """Test invalidation reaches every view key."""
        entity = Entity(fields={"id": 7, "name": "A", "email": "a@example.com"})
        cache.update_cache(entity)

        cache.delete_cache(entity)

        assert kv_store.data == {}

    def test_view_with_missing_field_is_skipped(self, cache, kv_store):
        """Test a view whose key cannot be rendered is not written."""
        entity = Entity(fields={"id": 7, "name": "A"})

        cache.update_cache(entity)

        assert kv_store.hash_at("user:7") == {"id": 7, "name": "A"}
        assert kv_store.hash_at("user:name:A") == {"id": 7, "name": "A"}
        assert len(kv_store.data) == 2


class TestUpdateCache:
    """Test write-through semantics of EntityCache.update_cache."""

    def test_partial_update_merges_fields(self, user_cache, kv_store):
        """Test partial data merges into an existing entry."""
        entity = user_cache.find(7)

        user_cache.update_cache(entity, {"name": "Alice"})

        assert kv_store.hash_at("user:7")["name"] == "Alice"
        assert kv_store.hash_at("user:7")["email"] == "a@example.com"

    def test_partial_update_skips_absent_entry(self, user_cache, kv_store):
        """Test partial data never creates a partial entry."""
        entity = Entity(fields={"id": 7})

        assert user_cache.update_cache(entity, {"name": "Alice"}) is True
        assert "user:7" not in kv_store.data

    def test_empty_data_writes_full_entity(self, user_cache, kv_store):
        """Test empty data falls back to the full field map."""
        entity = Entity(fields={"id": 7, "name": "A"})

        user_cache.update_cache(entity, {})

        assert kv_store.hash_at("user:7") == {"id": 7, "name": "A"}

    def test_excluded_fields_are_stripped_from_partial_data(self, make_cache, multi_view_config, kv_store):
        """Test field_except also applies to partial data."""
        cache = make_cache(multi_view_config)
        entity = Entity(fields={"id": 7, "name": "A", "email": "a@example.com"})
        cache.update_cache(entity)

        cache.update_cache(entity, {"password_hash": "new", "name": "A"})

        assert "password_hash" not in kv_store.hash_at("user:7")

    def test_expire_applied_to_every_view(self, make_cache, kv_store):
        """Test a positive expiry is set after each write."""
        config = EntityCacheConfig(
            connection="default",
            key_template="user:{id}",
            views={"by_email": "user:email:{email}"},
            expire=600,
        )
        cache = make_cache(config)

        cache.update_cache(Entity(fields={"id": 7, "email": "a@example.com"}))

        assert kv_store.expiries == {"user:7": 600, "user:email:a@example.com": 600}

    def test_zero_expire_leaves_entry_persistent(self, user_cache, kv_store):
        """Test no expiry is set when expire is 0."""
        user_cache.update_cache(Entity(fields={"id": 7}))

        assert kv_store.operations("expire") == []

    def test_update_overwrites_negative_marker(self, user_cache, kv_store):
        """Test a write over a negative marker purges it first."""
        user_cache.find(99)
        entity = Entity(fields={"id": 99, "name": "Z"})

        user_cache.update_cache(entity)
        assert "user:99" not in kv_store.data

        user_cache.update_cache(entity)
        assert kv_store.hash_at("user:99") == {"id": 99, "name": "Z"}

    def test_disabled_cache_returns_false(self, kv_store, entity_store):
        """Test writes report False when caching is disabled."""
        cache = EntityCache(EntityCacheConfig(connection="default"), kv_store, entity_store)
        entity = Entity(fields={"id": 7})

        assert cache.update_cache(entity) is False
        assert cache.delete_cache(entity) is False
        assert cache.get_cache_key(entity) is None
        assert kv_store.calls == []

    def test_view_failure_is_logged_and_skipped(self, make_cache, multi_view_config, kv_store):
        """Test a store error on one view does not stop the others."""
        cache = make_cache(multi_view_config)
        original = kv_store.write_hash_merge

        def failing_write(key, data):
            if key == "user:7":
                raise RedisOperationException(operation="hset", key=key)
            return original(key, data)

        kv_store.write_hash_merge = failing_write
        entity = Entity(fields={"id": 7, "name": "A", "email": "a@example.com"})

        assert cache.update_cache(entity) is True
        assert "user:7" not in kv_store.data
        assert kv_store.hash_at("user:email:a@example.com") is not None
        assert kv_store.hash_at("user:name:A") is not None


class TestFailurePropagation:
    """Test store failures on the read path."""

    def test_entity_store_error_releases_lock(self, user_cache, kv_store, entity_store):
        """Test the fill-lock is released when the store query fails."""
        entity_store.error = RuntimeError("database down")

        with pytest.raises(RuntimeError, match="database down"):
            user_cache.find(7)

        assert "setcachelock:user:7" not in kv_store.data

    def test_key_value_store_error_propagates(self, user_cache, kv_store):
        """Test an unavailable key-value store surfaces to the caller."""
        kv_store.exists = MagicMock(side_effect=RedisConnectionException())

        with pytest.raises(RedisConnectionException):
            user_cache.find(7)


class TestFillLockInterplay:
    """Test reads while another filler holds the lock."""

    def test_lenient_timeout_still_fills(self, user_cache, kv_store, entity_store):
        """Test a stale lenient marker only delays the fill."""
        kv_store.put_raw("setcachelock:user:7", KeyType.STRING, "1")

        entity = user_cache.find(7)

        assert entity["id"] == 7
        assert kv_store.hash_at("user:7") is not None
        assert "setcachelock:user:7" not in kv_store.data

    def test_strict_timeout_reads_store_without_writing(
        self, make_cache, user_config, kv_store, entity_store
    ):
        """Test a strict lock timeout reads the store but leaves the cache alone."""
        lock = StampedeLock(
            kv_store, max_wait_seconds=0, strict=True, sleep=lambda seconds: None
        )
        cache = make_cache(user_config, lock=lock)
        kv_store.put_raw("setcachelock:user:7", KeyType.STRING, "other-token")

        entity = cache.find(7)

        assert entity["name"] == "A"
        assert entity_store.field_lookups == 1
        assert "user:7" not in kv_store.data
        assert kv_store.data["setcachelock:user:7"] == (KeyType.STRING, "other-token")

    def test_strict_timeout_uses_entry_written_meanwhile(
        self, make_cache, user_config, kv_store, entity_store
    ):
        """Test a strict waiter picks up the entry the lock holder wrote."""
        lock = StampedeLock(
            kv_store, max_wait_seconds=0, strict=True, sleep=lambda seconds: None
        )
        cache = make_cache(user_config, lock=lock)
        kv_store.put_raw("setcachelock:user:7", KeyType.STRING, "other-token")
        original_acquire = lock.acquire

        def acquire_while_holder_fills(key, *args, **kwargs):
            kv_store.put_raw("user:7", KeyType.HASH, {"id": 7, "name": "Cached"})
            return original_acquire(key, *args, **kwargs)

        lock.acquire = acquire_while_holder_fills

        entity = cache.find(7)

        assert entity["name"] == "Cached"
        assert entity.from_cache is True
        assert entity_store.lookups == 0

    def test_strict_lock_fill(self, make_cache, user_config, kv_store, entity_store):
        """Test a free strict lock fills the cache and releases its lease."""
        lock = StampedeLock(kv_store, strict=True, sleep=lambda seconds: None)
        cache = make_cache(user_config, lock=lock)

        cache.find(7)

        assert kv_store.hash_at("user:7") is not None
        assert kv_store.operations("set_if_absent") == ["setcachelock:user:7"]
        assert "setcachelock:user:7" not in kv_store.data


class TestFromConfig:
    """Test EntityCache.from_config wiring."""

    def test_enabled_config_uses_named_connection(self, user_config, entity_store):
        """Test the key-value store is built from the configured connection."""
        factory = MagicMock()

        cache = EntityCache.from_config(user_config, entity_store, connection_factory=factory)

        factory.get_client.assert_called_once_with("default")
        assert cache.kv_store.client is factory.get_client.return_value
        assert isinstance(cache.lock, StampedeLock)

    def test_disabled_config_needs_no_connection(self):
        """Test a disabled configuration never asks for a client."""
        factory = MagicMock()

        cache = EntityCache.from_config(
            EntityCacheConfig(key_template="user:{id}"),
            InMemoryEntityStore(),
            connection_factory=factory,
        )

        factory.get_client.assert_not_called()
        assert cache.enabled is False


class TestLongKeys:
    """Test views rendered from long field values."""

    @pytest.fixture
    def cache(self, make_cache, multi_view_config):
        return make_cache(multi_view_config)

    def test_find_with_long_view_value(self, cache, kv_store, entity_store):
        """Test a long identifying value is cached like any other."""
        email = "x" * 600 + "@example.com"
        entity_store.rows.append({"id": 9, "name": "Long", "email": email})

        entity = cache.find({"email": email}, view="by_email")

        assert entity["id"] == 9
        assert kv_store.hash_at(f"user:email:{email}")["name"] == "Long"
        assert f"setcachelock:user:email:{email}" not in kv_store.data
        assert cache.find({"email": email}, view="by_email").from_cache is True

    def test_find_absent_long_value(self, cache, kv_store):
        """Test a long absent value gets a negative marker."""
        email = "y" * 495

        assert cache.find({"email": email}, view="by_email") is None
        assert kv_store.data[f"user:email:{email}"][0] is KeyType.STRING

    def test_update_cache_with_long_value(self, cache, kv_store):
        """Test every view is written for a long field value."""
        email = "z" * 600
        entity = Entity(fields={"id": 1, "name": "Z", "email": email})

        assert cache.update_cache(entity) is True
        assert kv_store.hash_at(f"user:email:{email}") == {"id": 1, "name": "Z", "email": email}
        assert kv_store.hash_at("user:1") is not None


class TestCompositeKeys:
    """Test keys rendered from several fields."""

    def test_distinct_rows_get_distinct_keys(self, make_cache, kv_store):
        """Test rows whose values concatenate alike are cached apart."""
        store = InMemoryEntityStore(
            [
                {"id": 1, "a": "1", "b": "23", "name": "first"},
                {"id": 2, "a": "12", "b": "3", "name": "second"},
            ]
        )
        config = EntityCacheConfig(connection="default", key_template="item:{a}:{b}")
        cache = make_cache(config, store=store)

        first = cache.find({"a": "1", "b": "23"})
        second = cache.find({"a": "12", "b": "3"})

        assert first["name"] == "first"
        assert second["name"] == "second"
        assert kv_store.hash_at("item:1:23")["name"] == "first"
        assert kv_store.hash_at("item:12:3")["name"] == "second"
