from .cache_client import CacheClient
from .dispatcher import RequestDispatcher

__all__ = ["CacheClient", "RequestDispatcher"]
