"""
Base Entity Repository

SQLAlchemy implementation of the relational entity store consumed by the
entity cache. Read-only: lookups by primary key or by a conjunction of
field-equality conditions.
"""

from typing import Any, Dict, Mapping, Optional, Type

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.orm import Session, sessionmaker

from ..domain.cache.entities import Entity
from ..domain.cache.repository_interfaces import EntityStore
from ..models import Base

logger = structlog.get_logger()


class SqlAlchemyEntityStore(EntityStore):
    """
    Entity store backed by one SQLAlchemy model.

    Each lookup runs in its own short-lived session; rows are converted to
    Entity field maps keyed by the model's column attribute names.
    """

    def __init__(self, session_factory: sessionmaker[Session], model: Type[Base]):
        """
        Initialize repository with strict input validation.

        Args:
            session_factory: Factory producing Session instances
            model: SQLAlchemy model class

        Raises:
            TypeError: If model is not a mapped SQLAlchemy model
            ValueError: If the model has a composite primary key
        """
        if not model or not hasattr(model, "__tablename__"):
            raise TypeError(
                f"model must be valid SQLAlchemy model with __tablename__, got {getattr(model, '__name__', type(model).__name__)}"
            )

        self.session_factory = session_factory
        self.model = model
        self._mapper = inspect(model)

        if len(self._mapper.primary_key) != 1:
            raise ValueError(
                f"{model.__name__} must have a single-column primary key"
            )
        self.primary_key = self._mapper.get_property_by_column(
            self._mapper.primary_key[0]
        ).key
        self._columns = [attr.key for attr in self._mapper.column_attrs]

    def to_entity(self, row: Optional[Base], identity: Mapping[str, Any]) -> Optional[Entity]:
        """Convert an ORM row to an Entity; None stays None."""
        if row is None:
            return None
        fields: Dict[str, Any] = {name: getattr(row, name) for name in self._columns}
        return Entity(fields=fields, identity=dict(identity))

    def find_by_primary_key(self, value: Any) -> Optional[Entity]:
        """
        Get entity by primary key.

        Args:
            value: Primary key value

        Returns:
            Entity if found, None otherwise
        """
        if value is None:
            return None

        try:
            with self.session_factory() as session:
                row = session.get(self.model, value)
                entity = self.to_entity(row, {self.primary_key: value})

            logger.debug(
                "Repository: Entity lookup by primary key",
                model=self.model.__name__,
                primary_key=str(value),
                found=entity is not None,
            )
            return entity

        except Exception as e:
            logger.error(
                "Repository: Failed to get entity",
                model=self.model.__name__,
                primary_key=str(value),
                error=str(e),
                exc_info=True,
            )
            raise  # Preserve full error context

    def find_by_field_equality(self, conditions: Mapping[str, Any]) -> Optional[Entity]:
        """
        Get the first entity matching every field-equality condition.

        Args:
            conditions: Field name to value map (at least one entry)

        Returns:
            Entity if found, None otherwise

        Raises:
            ValueError: If conditions are empty or name unknown fields
        """
        if not conditions:
            raise ValueError("At least one lookup condition is required")

        unknown = [name for name in conditions if name not in self._columns]
        if unknown:
            raise ValueError(
                f"Unknown fields for {self.model.__name__}: {', '.join(sorted(unknown))}"
            )

        try:
            stmt = select(self.model).filter_by(**conditions).limit(1)
            with self.session_factory() as session:
                row = session.execute(stmt).scalars().first()
                entity = self.to_entity(row, conditions)

            logger.debug(
                "Repository: Entity lookup by fields",
                model=self.model.__name__,
                fields=sorted(conditions),
                found=entity is not None,
            )
            return entity

        except Exception as e:
            logger.error(
                "Repository: Failed to find entity",
                model=self.model.__name__,
                fields=sorted(conditions),
                error=str(e),
                exc_info=True,
            )
            raise  # Preserve full error context
