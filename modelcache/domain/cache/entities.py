"""
Cache Domain Entities

Core domain entities for the entity cache layer.
Encapsulates the entity field map and the static cache configuration of an
entity type.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...constants import (
    DEFAULT_INVALID_VALUE,
    DEFAULT_PRIMARY_KEY,
    LOCK_KEY_PREFIX,
    NEGATIVE_CACHE_TTL_SECONDS,
)
from .value_objects import CacheViewSpec


@dataclass
class Entity:
    """
    Entity record.

    Owns a mutable field map. ``identity`` holds the field-equality
    conditions the entity was looked up with, so a later write can target
    the same row. ``from_cache`` tells whether the fields were materialized
    from a cache entry rather than read from the relational store.
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    identity: Dict[str, Any] = field(default_factory=dict)
    from_cache: bool = False

    @classmethod
    def from_cache_entry(
        cls, data: Mapping[str, Any], identity: Mapping[str, Any]
    ) -> "Entity":
        """Materialize an entity from a cached field map."""
        return cls(fields=dict(data), identity=dict(identity), from_cache=True)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def update(self, values: Mapping[str, Any]) -> None:
        self.fields.update(values)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.fields)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self.fields


class EntityCacheConfig(BaseModel):
    """
    Static cache configuration of an entity type.

    Caching is disabled when either ``connection`` or ``key_template`` is
    empty. ``views`` maps view names to additional key templates rendered
    from the same entity fields.
    """

    model_config = ConfigDict(frozen=True)

    connection: str = Field(default="", description="Cache connection identifier")
    key_template: str = Field(default="", description="Default view key template")
    views: Dict[str, str] = Field(
        default_factory=dict, description="Named view key templates"
    )
    field_except: List[str] = Field(
        default_factory=list, description="Fields never written to the cache"
    )
    expire: int = Field(default=0, ge=0, description="Entry expiry, 0 = no expiry")
    invalid_value: str = Field(
        default=DEFAULT_INVALID_VALUE,
        min_length=1,
        description="Negative marker stored for confirmed-absent lookups",
    )
    negative_ttl: int = Field(
        default=NEGATIVE_CACHE_TTL_SECONDS,
        gt=0,
        description="Expiry of the negative marker",
    )
    primary_key: str = Field(default=DEFAULT_PRIMARY_KEY, min_length=1)
    lock_prefix: str = Field(default=LOCK_KEY_PREFIX, min_length=1)

    @field_validator("key_template")
    @classmethod
    def validate_key_template(cls, v):
        """Reject templates that cannot be rendered."""
        if v:
            CacheViewSpec(v)
        return v

    @field_validator("views")
    @classmethod
    def validate_views(cls, v):
        """Reject empty view names and unrenderable view templates."""
        for name, template in v.items():
            if not name:
                raise ValueError("Cache view name cannot be empty")
            CacheViewSpec(template, name=name)
        return v

    @property
    def enabled(self) -> bool:
        """Check whether caching is configured for this entity type."""
        return bool(self.connection) and bool(self.key_template)

    def view_specs(self) -> List[CacheViewSpec]:
        """Default view first, then named views in declaration order."""
        if not self.key_template:
            return []
        specs = [CacheViewSpec(self.key_template)]
        specs.extend(
            CacheViewSpec(template, name=name) for name, template in self.views.items()
        )
        return specs

    def view_spec(self, name: Optional[str] = None) -> Optional[CacheViewSpec]:
        """Get one view by name (None = default view)."""
        if not self.key_template:
            return None
        if name is None:
            return CacheViewSpec(self.key_template)
        template = self.views.get(name)
        if template is None:
            return None
        return CacheViewSpec(template, name=name)
