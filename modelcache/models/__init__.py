"""
Model Cache Database Models

Declarative base for the SQLAlchemy models backing cached entity types.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Canonical Base class for all database models."""

    pass
