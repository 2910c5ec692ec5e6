"""锁与状态存储模块"""

from .database import Database
from .lock import MemoryLock, RedisLock
from .state import MemoryStateStore, MySQLStateStore, RedisStateStore

__all__ = [
    "Database",
    "MemoryLock",
    "RedisLock",
    "MemoryStateStore",
    "MySQLStateStore",
    "RedisStateStore",
]
