"""
Cache Domain Module

Domain-Driven Design implementation of the entity cache.
Contains entities, value objects, repository interfaces, and domain services.
"""
