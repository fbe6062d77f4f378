"""Result Store adapter."""

from locallens.lib.cache.store import CacheUnavailableError, ResultStore

__all__ = ["CacheUnavailableError", "ResultStore"]
