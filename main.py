#!/usr/bin/env python3
"""
Google 日历与飞书多维表格双向同步服务
主程序入口
"""
import argparse
import json
import signal
import sys
import time
from pathlib import Path
from typing import Optional

import redis
from loguru import logger

# 添加项目路径到系统路径
sys.path.insert(0, str(Path(__file__).parent))

from calendar_sheet_sync.config.config import Config
from calendar_sheet_sync.core.errors import ConfigurationError
from calendar_sheet_sync.core.field_validator import FieldValidator
from calendar_sheet_sync.core.models import PassStatus, PassSummary, Side
from calendar_sheet_sync.core.orchestrator import SyncOrchestrator
from calendar_sheet_sync.feishu.bitable import BitableSheet
from calendar_sheet_sync.gcal.client import GoogleCalendar
from calendar_sheet_sync.monitor.logger import setup_logger
from calendar_sheet_sync.monitor.reporter import SyncReporter
from calendar_sheet_sync.store.database import Database
from calendar_sheet_sync.store.lock import MemoryLock, RedisLock
from calendar_sheet_sync.store.state import MemoryStateStore, MySQLStateStore, RedisStateStore


class SyncApplication:
    """同步应用主类"""

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None):
        self.config_path = config_path
        self.log_level = log_level
        self.config: Optional[Config] = None
        self.orchestrator: Optional[SyncOrchestrator] = None
        self.reporter: Optional[SyncReporter] = None
        self.sheet: Optional[BitableSheet] = None
        self.database: Optional[Database] = None
        self.running = False

        # 注册信号处理
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """信号处理器"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def initialize(self):
        """初始化应用"""
        config = Config(self.config_path)
        self.config = config

        setup_logger(config.monitor, self.log_level)

        logger.info("=" * 60)
        logger.info("Calendar Sheet Sync Service")
        logger.info("=" * 60)
        logger.info(f"Config file: {config.config_path}")
        logger.info(f"Calendar: {config.calendar.calendar_id} ({config.calendar.time_zone})")
        logger.info(f"Sync interval: {config.sync.interval_minutes} minutes")

        errors = config.validate()
        errors.extend(FieldValidator(()).validate_all(config.sync.custom_fields))
        if not config.calendar.token_file:
            errors.append("calendar.token_file is required")
        if not config.sheet.app_token:
            errors.append("sheet.app_token is required")
        if errors:
            raise ConfigurationError(errors)

        calendar = GoogleCalendar.from_token_file(
            config.calendar.token_file,
            config.calendar.calendar_id,
            config.calendar.max_events_per_request,
        )
        self.sheet = BitableSheet.from_credentials(
            config.sheet.app_id,
            config.sheet.app_secret,
            config.sheet.app_token,
            config.sheet.table_id,
            config.sheet.page_size,
        )

        lock_store, state_store = self._build_stores(config)

        self.orchestrator = SyncOrchestrator(config.app, calendar, self.sheet, lock_store, state_store)
        self.reporter = SyncReporter(config.monitor)

        logger.info("Application initialized successfully")

    def _build_stores(self, config: Config):
        """创建锁与状态存储，Redis 不可用时退回内存存储"""
        store = config.store
        redis_client = None

        if store.backend in ("redis", "mysql"):
            try:
                redis_client = redis.Redis(
                    host=store.redis_host,
                    port=store.redis_port,
                    db=store.redis_db,
                    decode_responses=True
                )
                redis_client.ping()
                logger.info("Redis connected successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}, using memory lock")
                redis_client = None

        lock_store = RedisLock(redis_client) if redis_client else MemoryLock()

        if store.backend == "mysql":
            self.database = Database(config.database)
            if not self.database.test_connection():
                raise ConnectionError("Database connection test failed")
            state_store = MySQLStateStore(self.database, store.state_key)
        elif store.backend == "redis" and redis_client:
            state_store = RedisStateStore(redis_client, store.state_key)
        else:
            logger.warning("Using in-memory sync state, mapping is lost on exit")
            state_store = MemoryStateStore()

        return lock_store, state_store

    def setup(self) -> PassSummary:
        """初始化表格结构并执行首次同步"""
        table_id = self.sheet.ensure_table(self.config.sheet.worksheet_name)
        created = self.sheet.ensure_schema(self.config.sync.custom_fields)
        logger.info(f"Sheet table {table_id} ready ({len(created)} fields created)")
        return self.run_once()

    def run_once(self, direction: Optional[str] = None) -> PassSummary:
        """执行一次同步"""
        if direction:
            summary = self.orchestrator.run_directional_pass(Side(direction))
        else:
            summary = self.orchestrator.run_full_pass()

        self.reporter.record_pass(summary)
        return summary

    def reset(self) -> PassSummary:
        """清空同步状态后重新初始化"""
        self.orchestrator.clear_state()
        logger.info("Sync state reset, running setup again")
        return self.setup()

    def serve(self):
        """按间隔定时执行全量同步"""
        self.running = True
        interval = self.config.sync.interval_minutes * 60
        logger.info(f"Application started, syncing every {self.config.sync.interval_minutes} minutes, "
                    f"press Ctrl+C to stop")

        while self.running:
            self.run_once()
            deadline = time.monotonic() + interval
            while self.running and time.monotonic() < deadline:
                time.sleep(1)

    def stop(self):
        """停止应用"""
        if not self.running:
            return

        self.running = False
        logger.info("Application stopped")

    def close(self):
        """释放数据库连接池"""
        if self.database:
            self.database.close()
            self.database = None

    def print_status(self):
        """打印状态信息"""
        status = self.orchestrator.get_status()
        status['sheet_connected'] = self.sheet.test_connection()
        print(json.dumps(status, ensure_ascii=False, indent=2, default=str))


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description='Google Calendar and Feishu Bitable Bidirectional Sync Service'
    )
    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file',
        default=None
    )
    parser.add_argument(
        '--log-level',
        help='Override the configured log level',
        default=None
    )
    parser.add_argument(
        '--init',
        action='store_true',
        help='Initialize configuration file'
    )
    parser.add_argument(
        '--setup',
        action='store_true',
        help='Create the sheet table and fields, then run the first sync'
    )
    parser.add_argument(
        '--sync',
        action='store_true',
        help='Run one full sync pass and exit'
    )
    parser.add_argument(
        '--direction',
        choices=[side.value for side in Side],
        help='Run one pass that only propagates changes made on this side'
    )
    parser.add_argument(
        '--status',
        action='store_true',
        help='Show sync status'
    )
    parser.add_argument(
        '--reset',
        action='store_true',
        help='Clear the sync mapping and run setup again'
    )

    args = parser.parse_args()

    # 初始化配置文件
    if args.init:
        config = Config(args.config)
        config.save()
        print(f"Configuration file created: {config.config_path}")
        print("Please edit the configuration file and run the service again")
        return

    app = SyncApplication(args.config, args.log_level)
    try:
        app.initialize()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    try:
        if args.status:
            app.print_status()
            return

        summary = None
        if args.reset:
            summary = app.reset()
        elif args.setup:
            summary = app.setup()
        elif args.sync or args.direction:
            summary = app.run_once(args.direction)

        if summary is not None:
            logger.info(f"Pass {summary.status.value} with {summary.changes} changes")
            if summary.status is PassStatus.FAILED:
                sys.exit(1)
            return

        # 启动服务
        try:
            app.serve()
        except Exception as e:
            logger.error(f"Service failed: {e}")
            sys.exit(1)
    finally:
        app.close()


if __name__ == '__main__':
    main()
