"""同步引擎依赖的外部接口"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import SyncState


class CalendarGateway(ABC):
    """日历接口"""

    @abstractmethod
    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        """
        列出时间窗口内的事件

        Args:
            time_min: 窗口开始时间
            time_max: 窗口结束时间

        Returns:
            日历事件资源列表

        Raises:
            TransientIOError: 限流或网络错误
            PermanentIOError: 其他错误
        """
        pass

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        """
        按 ID 读取单个事件，不受时间窗口限制

        Returns:
            事件资源；事件不存在或已取消时返回 None
        """
        pass

    @abstractmethod
    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        创建事件

        Returns:
            日历返回的事件，包含新分配的 ID
        """
        pass

    @abstractmethod
    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        """更新事件，由同步管理的字段整体替换，返回更新后的事件"""
        pass

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        """删除事件，事件不存在视为成功"""
        pass


class SheetGateway(ABC):
    """表格接口，行以表头文字为键"""

    @abstractmethod
    def list_rows(self) -> Dict[str, Dict[str, Any]]:
        """
        读取所有数据行

        Returns:
            {行定位符: 行数据}
        """
        pass

    @abstractmethod
    def write_row(self, locator: Optional[str], row: Dict[str, Any]) -> str:
        """
        写入一行

        Args:
            locator: 已有行的定位符，为 None 时追加新行
            row: 行数据

        Returns:
            写入行的定位符
        """
        pass

    @abstractmethod
    def clear_row(self, locator: str) -> None:
        """删除一行，行不存在视为成功"""
        pass


class LockStore(ABC):
    """互斥锁存储"""

    @abstractmethod
    def try_acquire(self, key: str, ttl: int) -> bool:
        """
        尝试获取锁，不阻塞

        Args:
            key: 锁名
            ttl: 超时秒数，超时的锁可被重新获取

        Returns:
            是否获取成功
        """
        pass

    @abstractmethod
    def release(self, key: str) -> None:
        """释放本实例持有的锁"""
        pass

    @abstractmethod
    def is_locked(self, key: str) -> bool:
        """锁当前是否被持有"""
        pass


class StateStore(ABC):
    """映射表与游标存储，整体读写"""

    @abstractmethod
    def load(self) -> SyncState:
        """
        读取状态，未初始化时返回空状态

        Raises:
            StoreError: 读取失败
        """
        pass

    @abstractmethod
    def save(self, state: SyncState) -> None:
        """
        保存状态

        Raises:
            StoreError: 写入失败
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """清空状态"""
        pass
