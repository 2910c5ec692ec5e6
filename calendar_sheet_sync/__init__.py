"""
日历与多维表格双向同步系统
"""

__version__ = "1.0.0"
__author__ = "lory7c"

from .core.orchestrator import SyncOrchestrator
from .config.config import Config

__all__ = ["SyncOrchestrator", "Config"]
