"""
Persistence utilities for the repository cache.
"""

from .atomic import atomic_write, atomic_write_text
from .registry import CacheEntry, RegistryIssue, Removal, RepositoryRegistry

__all__ = [
    "CacheEntry",
    "RegistryIssue",
    "Removal",
    "RepositoryRegistry",
    "atomic_write",
    "atomic_write_text",
]
