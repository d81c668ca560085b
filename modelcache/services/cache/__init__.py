"""
Entity Cache Services

Cache-aside orchestration for single-entity lookups and the ORM hook that
keeps the cache in step with committed updates.
"""

from .entity_cache import EntityCache
from .auto_update import AutoUpdateCache, enable_auto_update_cache

__all__ = [
    "EntityCache",
    "AutoUpdateCache",
    "enable_auto_update_cache",
]
