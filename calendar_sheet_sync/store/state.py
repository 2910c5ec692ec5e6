"""
映射表与游标存储
"""
import json
from typing import Optional

import redis
from loguru import logger

from ..core.errors import StoreError
from ..core.interfaces import StateStore
from ..core.models import SyncState
from .database import Database


class MemoryStateStore(StateStore):
    """内存存储，进程退出即丢失"""

    def __init__(self):
        self._payload: Optional[str] = None

    def load(self) -> SyncState:
        if self._payload is None:
            return SyncState()
        return SyncState.from_dict(json.loads(self._payload))

    def save(self, state: SyncState) -> None:
        # 序列化保存，避免调用方继续修改已提交的状态
        self._payload = json.dumps(state.to_dict())

    def clear(self) -> None:
        self._payload = None


class RedisStateStore(StateStore):
    """以 JSON 存放在单个 Redis 键中，读写都是整体操作"""

    def __init__(self, redis_client: redis.Redis, key: str = "calendar_sheet_sync:state"):
        self.redis = redis_client
        self.key = key

    def load(self) -> SyncState:
        try:
            payload = self.redis.get(self.key)
        except redis.RedisError as e:
            raise StoreError(f"Failed to load state from Redis: {e}") from e

        if not payload:
            return SyncState()
        try:
            return SyncState.from_dict(json.loads(payload))
        except (ValueError, KeyError) as e:
            raise StoreError(f"Corrupted state in Redis key {self.key}: {e}") from e

    def save(self, state: SyncState) -> None:
        try:
            self.redis.set(self.key, json.dumps(state.to_dict(), ensure_ascii=False))
        except redis.RedisError as e:
            raise StoreError(f"Failed to save state to Redis: {e}") from e
        logger.debug(f"Saved sync state with {len(state.mapping)} entries")

    def clear(self) -> None:
        try:
            self.redis.delete(self.key)
        except redis.RedisError as e:
            raise StoreError(f"Failed to clear state in Redis: {e}") from e
        logger.info(f"Cleared sync state {self.key}")


class MySQLStateStore(StateStore):
    """存放在 MySQL sync_state 表中，每个 state_key 一行"""

    def __init__(self, database: Database, key: str = "calendar_sheet_sync:state"):
        self.db = database
        self.key = key
        self.db.create_state_table()

    def load(self) -> SyncState:
        try:
            payload = self.db.fetch_payload(self.key)
        except Exception as e:
            raise StoreError(f"Failed to load state from MySQL: {e}") from e

        if payload is None:
            return SyncState()
        try:
            return SyncState.from_dict(json.loads(payload))
        except (ValueError, KeyError) as e:
            raise StoreError(f"Corrupted state for {self.key}: {e}") from e

    def save(self, state: SyncState) -> None:
        try:
            self.db.store_payload(self.key, json.dumps(state.to_dict(), ensure_ascii=False))
        except Exception as e:
            raise StoreError(f"Failed to save state to MySQL: {e}") from e
        logger.debug(f"Saved sync state with {len(state.mapping)} entries")

    def clear(self) -> None:
        try:
            self.db.delete_payload(self.key)
        except Exception as e:
            raise StoreError(f"Failed to clear state in MySQL: {e}") from e
        logger.info(f"Cleared sync state {self.key}")
