"""监控模块"""

from .logger import setup_logger
from .reporter import SyncReporter

__all__ = ["SyncReporter", "setup_logger"]
