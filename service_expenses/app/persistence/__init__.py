"""
Entity store implementations.
"""

from .store import EntityStore, InMemoryEntityStore

__all__ = ["EntityStore", "InMemoryEntityStore"]
