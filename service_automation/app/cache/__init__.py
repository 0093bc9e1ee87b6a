"""
Caching layer for the Automation Service.
"""

from .redis_cache import CachedDefinitionStore

__all__ = ["CachedDefinitionStore"]
