"""
Cache Domain Services

Domain services holding the cache logic that does not belong to a single
entity or value object.
"""

from typing import Any, List, Mapping, Optional

from .entities import EntityCacheConfig
from .value_objects import CacheViewSpec


class CacheKeyResolver:
    """
    Resolves cache keys for the views of one entity type.

    Pure: reads only the configuration and the fields it is given.
    """

    def __init__(self, config: EntityCacheConfig):
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def views(self) -> List[CacheViewSpec]:
        """Declared views, default first. Empty when caching is disabled."""
        if not self.enabled:
            return []
        return self.config.view_specs()

    def resolve(
        self, view_name: Optional[str], fields: Mapping[str, Any]
    ) -> Optional[str]:
        """
        Render the cache key of a view.

        Args:
            view_name: View name, None for the default view
            fields: Entity field values

        Returns:
            The key, or None when caching is disabled, the view is not
            declared, or a field the template needs has no value
        """
        if not self.enabled:
            return None

        spec = self.config.view_spec(view_name)
        if spec is None:
            return None

        return spec.render(fields)
