"""
Fetch a repository, collect its markdown documentation, and cache the result.
"""
from .version import __version__

__all__ = ["__version__"]
