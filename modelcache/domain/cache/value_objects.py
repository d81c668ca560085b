"""
Cache Value Objects

Immutable value objects for the entity cache domain.
Provides type safety and validation for cache keys, view templates and
the states a cache key can be observed in.
"""

from dataclasses import dataclass, field
from enum import Enum
from string import Formatter
from typing import Any, Mapping, Optional, Tuple

from ...constants import LOCK_KEY_PREFIX


class CacheState(str, Enum):
    """Outcome of probing a cache key on the read path."""

    MISS = "miss"
    MISS_CORRUPT = "miss_corrupt"
    NEGATIVE = "negative"
    HIT = "hit"


class KeyType(str, Enum):
    """Stored type of a key in the key-value store."""

    NONE = "none"
    STRING = "string"
    HASH = "hash"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    STREAM = "stream"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "KeyType":
        """Map a raw store type name (str or bytes) to a KeyType."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return cls(str(raw).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Rejects empty keys and builds derived keys. Length is not capped.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise ValueError("Cache key cannot be empty")

    @classmethod
    def lock(cls, base_key: str, prefix: str = LOCK_KEY_PREFIX) -> "CacheKey":
        """Create the fill-lock key guarding ``base_key``."""
        return cls(f"{prefix}{base_key}")

    def __str__(self) -> str:
        return self.value


def _escape_key_part(value: Any) -> str:
    # Separators inside values are escaped so "a:b" + "c" never renders
    # the same key as "a" + "b:c".
    return str(value).replace("\\", "\\\\").replace(":", "\\:")


def _parse_template(template: str) -> Tuple[str, ...]:
    names = []
    try:
        parsed = list(Formatter().parse(template))
    except ValueError as e:
        raise ValueError(f"Invalid cache key template {template!r}: {e}") from e

    # Escaped values never contain a bare ":", so a ":" in the literal text
    # between two placeholders marks where the first value ends.
    between = ""
    for literal, field_name, format_spec, conversion in parsed:
        between += literal
        if field_name is None:
            continue
        if names and (":" not in between or "\\" in between):
            raise ValueError(
                f"Placeholders in cache key template {template!r} must be "
                f"separated by ':' (found {between!r})"
            )
        between = ""
        if not field_name.isidentifier():
            raise ValueError(
                f"Invalid placeholder {{{field_name}}} in cache key template {template!r}"
            )
        if format_spec or conversion:
            raise ValueError(
                f"Format specs are not supported in cache key template {template!r}"
            )
        if field_name not in names:
            names.append(field_name)
    return tuple(names)


@dataclass(frozen=True)
class CacheViewSpec:
    """
    One cache rendering of an entity.

    ``template`` uses ``str.format`` placeholders naming entity fields,
    e.g. ``"user:{id}"``. The default view has ``name=None``.
    """

    template: str
    name: Optional[str] = None
    fields: Tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.template:
            raise ValueError("Cache key template cannot be empty")
        object.__setattr__(self, "fields", _parse_template(self.template))

    @property
    def is_default(self) -> bool:
        return self.name is None

    def render(self, values: Mapping[str, Any]) -> Optional[str]:
        """Render the key for ``values``; None when a placeholder has no value."""
        substitutions = {}
        for name in self.fields:
            value = values.get(name)
            if value is None:
                return None
            substitutions[name] = _escape_key_part(value)
        return str(CacheKey(self.template.format(**substitutions)))


@dataclass(frozen=True)
class CacheLookup:
    """
    Result of probing one cache key.

    ``ambiguous`` marks a miss where the key vanished between the existence
    check and the read, so the prior state cannot be trusted.
    """

    state: CacheState
    data: Optional[Mapping[str, Any]] = None
    ambiguous: bool = False
