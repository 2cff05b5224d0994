from .connection_manager import ConnectionManager, PoolStats

__all__ = ["ConnectionManager", "PoolStats"]
