"""
MySQL 同步状态表访问
"""
from typing import Any, Optional, Tuple

import pymysql
from dbutils.pooled_db import PooledDB
from loguru import logger
from pymysql.cursors import DictCursor

from ..config.config import DatabaseConfig


STATE_TABLE = "sync_state"


class Database:
    """基于连接池的 sync_state 表读写，每个 state_key 一行 JSON"""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = PooledDB(
            creator=pymysql,
            maxconnections=self.config.pool_size,
            mincached=1,
            blocking=True,
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            database=self.config.database,
            charset=self.config.charset,
            cursorclass=DictCursor
        )
        logger.info(f"Database connection pool initialized: {self.config.host}:{self.config.port}")

    def _run(self, sql: str, params: Optional[Tuple] = None, fetch: bool = False) -> Any:
        conn = self._pool.connection()
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            row = cursor.fetchone() if fetch else None
            conn.commit()
            return row
        except Exception as e:
            conn.rollback()
            logger.error(f"Database operation error: {e}")
            raise
        finally:
            cursor.close()
            conn.close()

    def create_state_table(self) -> None:
        """创建同步状态表"""
        self._run(f"""
            CREATE TABLE IF NOT EXISTS {STATE_TABLE} (
                state_key VARCHAR(191) PRIMARY KEY,
                payload LONGTEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """)
        logger.info("Sync state table created/verified")

    def fetch_payload(self, key: str) -> Optional[str]:
        """读取状态 JSON，没有记录时返回 None"""
        row = self._run(f"SELECT payload FROM {STATE_TABLE} WHERE state_key = %s", (key,), fetch=True)
        return row['payload'] if row else None

    def store_payload(self, key: str, payload: str) -> None:
        """写入或覆盖状态 JSON"""
        self._run(
            f"INSERT INTO {STATE_TABLE} (state_key, payload) VALUES (%s, %s) "
            f"ON DUPLICATE KEY UPDATE payload = VALUES(payload)",
            (key, payload),
        )

    def delete_payload(self, key: str) -> None:
        self._run(f"DELETE FROM {STATE_TABLE} WHERE state_key = %s", (key,))

    def test_connection(self) -> bool:
        """测试数据库连接"""
        try:
            self._run("SELECT 1", fetch=True)
            return True
        except pymysql.MySQLError as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    def close(self) -> None:
        """关闭连接池"""
        self._pool.close()
        logger.info("Database connection pool closed")
