"""
Main pytest configuration for model cache tests.

Fixtures for in-memory key-value and entity stores, an in-memory SQLite
database, and pre-configured entity caches.
"""

import os

import pytest

# Set test environment variables before importing package modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from modelcache.db import create_database_engine, create_session_factory, init_database
from modelcache.domain.cache.entities import EntityCacheConfig
from modelcache.infrastructure.redis.lock import StampedeLock
from modelcache.models import Base
from modelcache.services.cache.entity_cache import EntityCache

from tests.fixtures.fake_stores import InMemoryEntityStore, InMemoryKeyValueStore
from tests.fixtures.models import UserRecord


@pytest.fixture
def kv_store():
    """Empty in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def user_rows():
    """Rows of the users table."""
    return [
        {"id": 7, "name": "A", "email": "a@example.com", "password_hash": "secret-a"},
        {"id": 8, "name": "B", "email": "b@example.com", "password_hash": "secret-b"},
    ]


@pytest.fixture
def entity_store(user_rows):
    """In-memory entity store holding ``user_rows``."""
    return InMemoryEntityStore(user_rows)


@pytest.fixture
def user_config():
    """Default-view-only cache configuration for users."""
    return EntityCacheConfig(connection="default", key_template="user:{id}")


@pytest.fixture
def multi_view_config():
    """User cache configuration with two named views and an excluded field."""
    return EntityCacheConfig(
        connection="default",
        key_template="user:{id}",
        views={
            "by_email": "user:email:{email}",
            "by_name": "user:name:{name}",
        },
        field_except=["password_hash"],
    )


@pytest.fixture
def no_wait_lock(kv_store):
    """Lenient lock that never sleeps."""
    return StampedeLock(
        kv_store, max_wait_seconds=0, poll_interval_ms=1, sleep=lambda seconds: None
    )


@pytest.fixture
def make_cache(kv_store, entity_store):
    """Factory building an EntityCache over the in-memory stores."""

    def _make(config, lock=None, store=None):
        return EntityCache(
            config,
            kv_store,
            store or entity_store,
            lock=lock
            or StampedeLock(
                kv_store,
                prefix=config.lock_prefix,
                max_wait_seconds=0,
                poll_interval_ms=1,
                sleep=lambda seconds: None,
            ),
        )

    return _make


@pytest.fixture
def user_cache(make_cache, user_config):
    """EntityCache for users with the default view only."""
    return make_cache(user_config)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with every test model's table created."""
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database."""
    return create_session_factory(db_engine)


@pytest.fixture
def seeded_users(session_factory, user_rows):
    """Insert ``user_rows`` into the users table."""
    with session_factory() as session:
        session.add_all(UserRecord(**row) for row in user_rows)
        session.commit()
    return user_rows
