"""
同步锁
"""
import threading
import time
import uuid
from typing import Callable, Dict, Tuple

import redis
from loguru import logger

from ..core.interfaces import LockStore


class RedisLock(LockStore):
    """基于 Redis SET NX EX 的同步锁，超时自动释放"""

    prefix = "sync_lock:"

    # 比较令牌后删除，GET 与 DEL 之间不会被其他持有者插入
    RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self._tokens: Dict[str, str] = {}
        self._release_script = redis_client.register_script(self.RELEASE_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def try_acquire(self, key: str, ttl: int) -> bool:
        """获取锁"""
        token = uuid.uuid4().hex
        acquired = bool(self.redis.set(self._key(key), token, nx=True, ex=max(1, int(ttl))))
        if acquired:
            self._tokens[key] = token
            logger.debug(f"Acquired lock {key}")
        return acquired

    def release(self, key: str) -> None:
        """释放锁，只删除本实例持有的锁"""
        token = self._tokens.pop(key, None)
        if token is None:
            return

        if self._release_script(keys=[self._key(key)], args=[token]):
            logger.debug(f"Released lock {key}")
        else:
            logger.warning(f"Lock {key} expired before release")

    def is_locked(self, key: str) -> bool:
        """检查是否被锁定"""
        return bool(self.redis.exists(self._key(key)))


class MemoryLock(LockStore):
    """进程内同步锁，Redis 不可用时使用"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._mutex = threading.Lock()
        # key -> (token, 过期时间)
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._tokens: Dict[str, str] = {}

    def try_acquire(self, key: str, ttl: int) -> bool:
        with self._mutex:
            now = self.clock()
            held = self._locks.get(key)
            if held and held[1] > now:
                return False
            if held:
                logger.warning(f"Reclaiming stale lock {key}")

            token = uuid.uuid4().hex
            self._locks[key] = (token, now + ttl)
            self._tokens[key] = token
            return True

    def release(self, key: str) -> None:
        with self._mutex:
            token = self._tokens.pop(key, None)
            held = self._locks.get(key)
            if token and held and held[0] == token:
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        with self._mutex:
            held = self._locks.get(key)
            return bool(held and held[1] > self.clock())
