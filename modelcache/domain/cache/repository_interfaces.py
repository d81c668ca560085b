"""
Cache Repository Interfaces

Abstract repository interfaces following DDD Repository pattern.
Defines the contracts of the two stores the entity cache is layered on:
a hash-oriented key-value store and a relational entity store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from .entities import Entity
from .value_objects import KeyType


class KeyValueStore(ABC):
    """
    Abstract key-value store holding entity hashes, negative markers and
    lock markers.

    Implementations raise ``RedisException`` subclasses when the store is
    unreachable.
    """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether a key exists."""
        pass

    @abstractmethod
    def type_of(self, key: str) -> KeyType:
        """Get the stored type of a key."""
        pass

    @abstractmethod
    def read_hash(self, key: str) -> Dict[str, Any]:
        """Read every field of a hash. Empty when the key is absent."""
        pass

    @abstractmethod
    def write_hash_merge(self, key: str, data: Mapping[str, Any]) -> bool:
        """Write fields into a hash, leaving fields not in ``data`` untouched."""
        pass

    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        """Set a key's expiry."""
        pass

    @abstractmethod
    def set_scalar_with_expiry(self, key: str, seconds: int, value: str) -> bool:
        """Set a scalar value that expires after ``seconds``."""
        pass

    @abstractmethod
    def set_scalar(self, key: str, value: str) -> bool:
        """Set a scalar value without expiry."""
        pass

    @abstractmethod
    def get_scalar(self, key: str) -> Optional[str]:
        """Get a scalar value. None when absent."""
        pass

    @abstractmethod
    def set_if_absent(self, key: str, value: str, seconds: int) -> bool:
        """Atomically set a scalar with expiry only if the key is absent."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Deleting an absent key is not an error."""
        pass


class EntityStore(ABC):
    """Abstract relational store backing an entity type (read-only here)."""

    @abstractmethod
    def find_by_primary_key(self, value: Any) -> Optional[Entity]:
        """Find entity by primary key."""
        pass

    @abstractmethod
    def find_by_field_equality(self, conditions: Mapping[str, Any]) -> Optional[Entity]:
        """Find the first entity whose fields equal every given condition."""
        pass
