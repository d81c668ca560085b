"""
Auto Update Cache

Keeps an entity type's cache in step with ORM updates: rows updated in a
flush are refreshed in every cache view once the surrounding transaction
commits. A rollback discards the pending refreshes.
"""

from typing import Any, Dict, List, Type, Union

import structlog
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session, sessionmaker

from ...domain.cache.entities import Entity
from ...models import Base
from .entity_cache import EntityCache

logger = structlog.get_logger()

SessionTarget = Union[Type[Session], sessionmaker]


class AutoUpdateCache:
    """Refreshes the cache of ``model`` rows after committed updates."""

    def __init__(self, model: Type[Base], cache: EntityCache):
        self.model = model
        self.cache = cache
        self._columns = [attr.key for attr in inspect(model).column_attrs]
        self._pending_key = f"modelcache.auto_update.{model.__name__}.{id(self)}"
        self._session_target: Any = None

    def register(self, session_target: SessionTarget = Session) -> "AutoUpdateCache":
        """Attach the mapper and session listeners."""
        event.listen(self.model, "after_update", self._on_after_update)
        event.listen(session_target, "after_commit", self._on_after_commit)
        event.listen(session_target, "after_rollback", self._on_after_rollback)
        self._session_target = session_target
        logger.debug("Auto cache update enabled", model=self.model.__name__)
        return self

    def unregister(self) -> None:
        """Detach every listener attached by ``register``."""
        if self._session_target is None:
            return
        event.remove(self.model, "after_update", self._on_after_update)
        event.remove(self._session_target, "after_commit", self._on_after_commit)
        event.remove(self._session_target, "after_rollback", self._on_after_rollback)
        self._session_target = None

    def _snapshot(self, target: Base) -> Dict[str, Any]:
        # Only loaded attributes; reading an expired one would emit SQL mid-flush.
        loaded = inspect(target).dict
        return {name: loaded[name] for name in self._columns if name in loaded}

    def _on_after_update(self, mapper, connection, target) -> None:
        session = object_session(target)
        if session is None:
            return
        pending: List[Dict[str, Any]] = session.info.setdefault(self._pending_key, [])
        pending.append(self._snapshot(target))

    def _on_after_commit(self, session: Session) -> None:
        pending = session.info.pop(self._pending_key, [])
        for fields in pending:
            self.cache.update_cache(Entity(fields=fields))
        if pending:
            logger.debug(
                "Cache refreshed after commit",
                model=self.model.__name__,
                count=len(pending),
            )

    def _on_after_rollback(self, session: Session) -> None:
        session.info.pop(self._pending_key, None)


def enable_auto_update_cache(
    model: Type[Base], cache: EntityCache, session_target: SessionTarget = Session
) -> AutoUpdateCache:
    """Refresh ``cache`` whenever a ``model`` row update is committed."""
    return AutoUpdateCache(model, cache).register(session_target)
