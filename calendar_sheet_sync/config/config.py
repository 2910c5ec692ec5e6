"""
配置管理模块
"""
import json
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class ExtensionPolicy(Enum):
    """扩展字段超出范围时的处理策略"""
    REJECT = "reject"
    CLAMP = "clamp"


FIELD_TYPE_NUMBER = "number"
FIELD_TYPE_TEXT = "text"


@dataclass(frozen=True)
class FieldDefinition:
    """扩展字段定义"""
    key: str
    name: str
    column: str
    type: str = FIELD_TYPE_TEXT
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    max_length: Optional[int] = None
    default: Any = None
    validation: str = ""


DEFAULT_CUSTOM_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        key="priority",
        name="Priority",
        column="L",
        type=FIELD_TYPE_NUMBER,
        min_value=1,
        max_value=5,
        default=3,
        validation="Must be a number between 1 and 5",
    ),
    FieldDefinition(
        key="notes",
        name="Notes",
        column="O",
        type=FIELD_TYPE_TEXT,
        max_length=500,
        default="",
        validation="Text up to 500 characters",
    ),
)


@dataclass(frozen=True)
class CalendarConfig:
    """日历配置"""
    calendar_id: str = "primary"
    time_zone: str = "America/Los_Angeles"
    max_events_per_request: int = 2500
    look_ahead_days: int = 365  # 向后同步的天数
    look_back_days: int = 30  # 向前同步的天数
    token_file: Optional[str] = None  # 已授权的 Google 凭据文件


@dataclass(frozen=True)
class SheetConfig:
    """多维表格配置"""
    app_id: str = ""
    app_secret: str = ""
    app_token: str = ""
    table_id: str = ""
    spreadsheet_name: str = "Calendar Sync Data"
    worksheet_name: str = "Events"
    page_size: int = 500


@dataclass(frozen=True)
class SyncConfig:
    """同步配置"""
    batch_size: int = 100  # 批量写入大小
    max_retries: int = 3  # 重试次数
    retry_delay_ms: int = 1000  # 首次重试间隔（毫秒），之后指数增长
    conflict_resolution: str = "LAST_WRITE_WINS"
    interval_minutes: int = 15  # 定时全量同步间隔
    enable_real_time: bool = True
    extension_policy: str = ExtensionPolicy.REJECT.value
    lock_key: str = "calendar_sheet_sync"
    lock_timeout_seconds: int = 600  # 超时后视为残留锁
    time_budget_seconds: int = 330  # 单次同步的时间预算
    custom_fields: Tuple[FieldDefinition, ...] = DEFAULT_CUSTOM_FIELDS


@dataclass(frozen=True)
class StoreConfig:
    """锁与状态存储配置"""
    backend: str = "memory"  # memory | redis | mysql
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    state_key: str = "calendar_sheet_sync:state"


@dataclass(frozen=True)
class DatabaseConfig:
    """数据库配置"""
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "calendar_sync"
    charset: str = "utf8mb4"
    pool_size: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'charset': self.charset
        }


@dataclass(frozen=True)
class MonitorConfig:
    """监控配置"""
    log_level: str = "INFO"
    log_file: str = "sync.log"
    log_max_size: str = "100MB"
    log_backup_count: int = 10
    max_log_entries: int = 1000
    alert_webhook: Optional[str] = None
    notify_on_error: bool = False


@dataclass(frozen=True)
class AppConfig:
    """不可变的完整配置，构造同步器时传入"""
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    sheet: SheetConfig = field(default_factory=SheetConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    def validate(self) -> List[str]:
        """验证配置，返回错误列表（为空表示有效）"""
        errors = []

        if not self.calendar.calendar_id:
            errors.append("calendar.calendar_id is required")

        if not self.sheet.spreadsheet_name:
            errors.append("sheet.spreadsheet_name is required")

        try:
            ZoneInfo(self.calendar.time_zone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"calendar.time_zone '{self.calendar.time_zone}' is not a known time zone")

        if self.sync.batch_size <= 0:
            errors.append("sync.batch_size must be greater than 0")

        if self.sync.max_retries < 0:
            errors.append("sync.max_retries must not be negative")

        if self.calendar.look_ahead_days <= 0:
            errors.append("calendar.look_ahead_days must be greater than 0")

        valid_strategies = ("LAST_WRITE_WINS", "CALENDAR_WINS", "SHEETS_WINS")
        if self.sync.conflict_resolution not in valid_strategies:
            errors.append(f"sync.conflict_resolution must be one of {', '.join(valid_strategies)}")

        if self.sync.extension_policy not in [p.value for p in ExtensionPolicy]:
            errors.append("sync.extension_policy must be 'reject' or 'clamp'")

        if self.store.backend not in ("memory", "redis", "mysql"):
            errors.append("store.backend must be one of memory, redis, mysql")

        return errors


def parse_custom_fields(data: Dict[str, Dict[str, Any]]) -> Tuple[FieldDefinition, ...]:
    """解析扩展字段配置: {"priority": {"column": "L", "name": "Priority", ...}}"""
    definitions = []
    for key, options in data.items():
        definitions.append(FieldDefinition(
            key=key,
            name=options.get('name', ''),
            column=options.get('column', ''),
            type=options.get('type', FIELD_TYPE_TEXT),
            min_value=options.get('min'),
            max_value=options.get('max'),
            max_length=options.get('maxLength'),
            default=options.get('default'),
            validation=options.get('validation', ''),
        ))
    return tuple(definitions)


def dump_custom_fields(definitions: Tuple[FieldDefinition, ...]) -> Dict[str, Dict[str, Any]]:
    result = {}
    for definition in definitions:
        options = {
            'column': definition.column,
            'name': definition.name,
            'type': definition.type,
            'default': definition.default,
            'validation': definition.validation,
        }
        if definition.min_value is not None:
            options['min'] = definition.min_value
        if definition.max_value is not None:
            options['max'] = definition.max_value
        if definition.max_length is not None:
            options['maxLength'] = definition.max_length
        result[definition.key] = options
    return result


class Config:
    """配置文件管理器，解析结果为不可变的 AppConfig"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_file()
        self._data: Dict[str, Any] = {}
        self.app = AppConfig()

        # 加载配置
        self.load()

    @property
    def calendar(self) -> CalendarConfig:
        return self.app.calendar

    @property
    def sheet(self) -> SheetConfig:
        return self.app.sheet

    @property
    def sync(self) -> SyncConfig:
        return self.app.sync

    @property
    def store(self) -> StoreConfig:
        return self.app.store

    @property
    def database(self) -> DatabaseConfig:
        return self.app.database

    @property
    def monitor(self) -> MonitorConfig:
        return self.app.monitor

    def _find_config_file(self) -> str:
        """查找配置文件"""
        search_paths = [
            Path.cwd() / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".calendar_sheet_sync" / "config.json",
            Path("/etc/calendar_sheet_sync/config.json")
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        # 默认配置文件路径
        return str(Path.cwd() / "config.json")

    def load(self) -> None:
        """加载配置文件"""
        if not os.path.exists(self.config_path):
            self._create_default_config()

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._data = json.load(f)

        self._parse_config()

    def _parse_config(self) -> None:
        """解析配置"""
        sync_config = dict(self._data.get('sync', {}))
        custom_fields = sync_config.pop('custom_fields', None)
        if custom_fields is not None:
            sync_config['custom_fields'] = parse_custom_fields(custom_fields)

        self.app = AppConfig(
            calendar=CalendarConfig(**self._data.get('calendar', {})),
            sheet=SheetConfig(**self._data.get('sheet', {})),
            sync=SyncConfig(**sync_config),
            store=StoreConfig(**self._data.get('store', {})),
            database=DatabaseConfig(**self._data.get('database', {})),
            monitor=MonitorConfig(**self._data.get('monitor', {})),
        )

    def _create_default_config(self) -> None:
        """创建默认配置文件"""
        default_config = {
            "calendar": {
                "calendar_id": "primary",
                "time_zone": "America/Los_Angeles",
                "look_ahead_days": 365,
                "look_back_days": 30,
                "token_file": "token.json"
            },
            "sheet": {
                "app_id": "your_app_id",
                "app_secret": "your_app_secret",
                "app_token": "your_bitable_app_token",
                "table_id": "",
                "spreadsheet_name": "Calendar Sync Data",
                "worksheet_name": "Events"
            },
            "sync": {
                "batch_size": 100,
                "max_retries": 3,
                "retry_delay_ms": 1000,
                "conflict_resolution": "LAST_WRITE_WINS",
                "interval_minutes": 15,
                "extension_policy": "reject",
                "custom_fields": dump_custom_fields(DEFAULT_CUSTOM_FIELDS)
            },
            "store": {
                "backend": "redis",
                "redis_host": "localhost",
                "redis_port": 6379
            },
            "monitor": {
                "log_level": "INFO",
                "log_file": "sync.log",
                "notify_on_error": False
            }
        }

        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(default_config, f, indent=4, ensure_ascii=False)

        self._data = default_config

    def save(self) -> None:
        """保存配置"""
        sync_config = asdict(self.app.sync)
        sync_config['custom_fields'] = dump_custom_fields(self.app.sync.custom_fields)

        config_dict = {
            "calendar": asdict(self.app.calendar),
            "sheet": asdict(self.app.sheet),
            "sync": sync_config,
            "store": asdict(self.app.store),
            "database": asdict(self.app.database),
            "monitor": asdict(self.app.monitor)
        }

        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(config_dict, f, indent=4, ensure_ascii=False)

    def validate(self) -> List[str]:
        """验证配置是否有效"""
        return self.app.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """按点分路径读取配置值，如 'sync.batch_size'"""
        keys = key.split('.')
        value: Any = self._data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value
