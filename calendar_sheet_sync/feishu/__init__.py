"""飞书多维表格模块"""

from .bitable import BitableSheet

__all__ = ["BitableSheet"]
