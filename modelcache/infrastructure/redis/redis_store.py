"""
Redis Key-Value Store

KeyValueStore implementation over a synchronous redis-py client.
Entity hashes store each field value JSON-encoded. datetime, date, time,
Decimal and UUID values are tagged so they decode to their own type; other
non-JSON values are stored as their string form.
"""

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterator, Mapping, Optional
from uuid import UUID

import redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from ...domain.cache.repository_interfaces import KeyValueStore
from ...domain.cache.value_objects import KeyType
from .exceptions import (
    RedisConnectionException,
    RedisOperationException,
    RedisOperationTimeoutException,
)

logger = logging.getLogger(__name__)

_TYPE_TAG = "__modelcache_type__"

_DECODERS = {
    "datetime": datetime.fromisoformat,
    "date": date.fromisoformat,
    "time": time.fromisoformat,
    "decimal": Decimal,
    "uuid": UUID,
}


def _encode_default(value: Any) -> Any:
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return {_TYPE_TAG: "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {_TYPE_TAG: "date", "value": value.isoformat()}
    if isinstance(value, time):
        return {_TYPE_TAG: "time", "value": value.isoformat()}
    if isinstance(value, Decimal):
        return {_TYPE_TAG: "decimal", "value": str(value)}
    if isinstance(value, UUID):
        return {_TYPE_TAG: "uuid", "value": str(value)}
    return str(value)


def _decode_object(obj: Dict[str, Any]) -> Any:
    decoder = _DECODERS.get(obj.get(_TYPE_TAG)) if len(obj) == 2 else None
    if decoder is None or "value" not in obj:
        return obj
    return decoder(obj["value"])


def encode_field(value: Any) -> str:
    """Encode one hash field value."""
    return json.dumps(value, default=_encode_default)


def decode_field(raw: Any) -> Any:
    """Decode one hash field value; values not written by us pass through."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return json.loads(raw, object_hook=_decode_object)
    except (TypeError, ValueError, ArithmeticError):
        return raw


@contextmanager
def _redis_errors(operation: str, key: Optional[str] = None) -> Iterator[None]:
    """Translate redis-py errors into the store's exception taxonomy."""
    try:
        yield
    except RedisTimeoutError as e:
        logger.error(f"Redis {operation} timed out for key {key}: {e}")
        raise RedisOperationTimeoutException(
            operation=operation, key=key, original_error=e
        )
    except RedisConnectionError as e:
        logger.error(f"Redis connection error during {operation}: {e}")
        raise RedisConnectionException(
            message=f"Redis connection failed during {operation}", original_error=e
        )
    except RedisError as e:
        logger.error(f"Redis {operation} failed for key {key}: {e}")
        raise RedisOperationException(operation=operation, key=key, original_error=e)


class RedisKeyValueStore(KeyValueStore):
    """Redis implementation of the key-value store."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def exists(self, key: str) -> bool:
        with _redis_errors("exists", key):
            return bool(self.client.exists(key))

    def type_of(self, key: str) -> KeyType:
        with _redis_errors("type", key):
            return KeyType.parse(self.client.type(key))

    def read_hash(self, key: str) -> Dict[str, Any]:
        with _redis_errors("hgetall", key):
            raw = self.client.hgetall(key)
        return {
            (name.decode("utf-8") if isinstance(name, bytes) else name): decode_field(value)
            for name, value in raw.items()
        }

    def write_hash_merge(self, key: str, data: Mapping[str, Any]) -> bool:
        if not data:
            return False
        mapping = {name: encode_field(value) for name, value in data.items()}
        with _redis_errors("hset", key):
            self.client.hset(key, mapping=mapping)
        return True

    def expire(self, key: str, seconds: int) -> bool:
        with _redis_errors("expire", key):
            return bool(self.client.expire(key, seconds))

    def set_scalar_with_expiry(self, key: str, seconds: int, value: str) -> bool:
        with _redis_errors("setex", key):
            return bool(self.client.setex(key, seconds, value))

    def set_scalar(self, key: str, value: str) -> bool:
        with _redis_errors("set", key):
            return bool(self.client.set(key, value))

    def get_scalar(self, key: str) -> Optional[str]:
        with _redis_errors("get", key):
            value = self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_if_absent(self, key: str, value: str, seconds: int) -> bool:
        with _redis_errors("set", key):
            return bool(self.client.set(key, value, nx=True, ex=seconds))

    def delete(self, key: str) -> bool:
        with _redis_errors("unlink", key):
            self.client.unlink(key)
        return True
