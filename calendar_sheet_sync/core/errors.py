"""
同步异常定义
"""
from typing import Optional


class SyncError(Exception):
    """同步异常基类"""


class MalformedRecordError(SyncError):
    """记录缺少必填字段或字段格式错误，跳过该记录"""

    def __init__(self, field: str, message: str = "", record_id: Optional[str] = None):
        self.field = field
        self.record_id = record_id
        detail = message or "missing or invalid"
        super().__init__(f"Malformed record field '{field}': {detail}")


class ValidationError(SyncError):
    """扩展字段值不符合字段定义"""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid value for '{field}': {message}")


class TransientIOError(SyncError):
    """可重试的外部错误（限流、网络抖动）"""


class PermanentIOError(SyncError):
    """不可重试的外部错误（目标不存在、请求非法）"""


class LockUnavailableError(SyncError):
    """同步锁已被占用"""


class ConfigurationError(SyncError):
    """配置结构错误，阻止同步启动"""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class StoreError(SyncError):
    """映射/游标存储读写失败"""
