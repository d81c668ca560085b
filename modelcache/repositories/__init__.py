"""
Repositories Module

Relational entity stores for cached entity types.
"""

from .base import SqlAlchemyEntityStore

__all__ = ["SqlAlchemyEntityStore"]
