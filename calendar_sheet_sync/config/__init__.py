"""配置模块"""

from .config import (
    AppConfig,
    CalendarConfig,
    Config,
    DatabaseConfig,
    ExtensionPolicy,
    FieldDefinition,
    MonitorConfig,
    SheetConfig,
    StoreConfig,
    SyncConfig,
)

__all__ = [
    "AppConfig",
    "CalendarConfig",
    "Config",
    "DatabaseConfig",
    "ExtensionPolicy",
    "FieldDefinition",
    "MonitorConfig",
    "SheetConfig",
    "StoreConfig",
    "SyncConfig",
]
