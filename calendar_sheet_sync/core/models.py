"""
同步数据模型定义
"""
import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class Side(Enum):
    """同步的两端"""
    CALENDAR = "calendar"
    SHEET = "sheet"

    @property
    def other(self) -> "Side":
        return Side.SHEET if self is Side.CALENDAR else Side.CALENDAR


class SyncStatus(Enum):
    """记录同步状态枚举"""
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    CONFLICT = "CONFLICT"
    ERROR = "ERROR"
    DELETED = "DELETED"


class ChangeKind(Enum):
    """变更操作类型枚举"""
    CREATE_ON_SHEET = "CREATE_ON_SHEET"
    CREATE_ON_CALENDAR = "CREATE_ON_CALENDAR"
    UPDATE = "UPDATE"
    DELETE_ON_SHEET = "DELETE_ON_SHEET"
    DELETE_ON_CALENDAR = "DELETE_ON_CALENDAR"
    CONFLICT = "CONFLICT"

    @property
    def is_create(self) -> bool:
        return self in (ChangeKind.CREATE_ON_SHEET, ChangeKind.CREATE_ON_CALENDAR)

    @property
    def is_delete(self) -> bool:
        return self in (ChangeKind.DELETE_ON_SHEET, ChangeKind.DELETE_ON_CALENDAR)


def create_toward(side: Side) -> ChangeKind:
    """在指定一端创建记录的操作类型"""
    return ChangeKind.CREATE_ON_SHEET if side is Side.SHEET else ChangeKind.CREATE_ON_CALENDAR


def delete_on(side: Side) -> ChangeKind:
    """在指定一端删除记录的操作类型"""
    return ChangeKind.DELETE_ON_SHEET if side is Side.SHEET else ChangeKind.DELETE_ON_CALENDAR


class ConflictStrategy(Enum):
    """冲突解决策略"""
    LAST_WRITE_WINS = "LAST_WRITE_WINS"
    CALENDAR_WINS = "CALENDAR_WINS"
    SHEETS_WINS = "SHEETS_WINS"


class PassStatus(Enum):
    """单次同步结果"""
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    SKIPPED_CONCURRENT_RUN = "SKIPPED_CONCURRENT_RUN"
    FAILED = "FAILED"


class OrchestratorState(Enum):
    """同步状态机"""
    IDLE = "IDLE"
    ACQUIRING_LOCK = "ACQUIRING_LOCK"
    LOADING = "LOADING"
    DIFFING = "DIFFING"
    RESOLVING = "RESOLVING"
    WRITING = "WRITING"
    COMMITTING = "COMMITTING"
    ERROR = "ERROR"


PENDING_ID_PREFIX = "pending:"


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _instant_key(value: Any) -> Optional[str]:
    """比较用的时间表示：全天为日期，定时事件精确到分钟（UTC）"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%MZ")
    return value.isoformat()


@dataclass
class SyncRecord:
    """日历事件与表格行的统一内部表示"""
    id: str
    title: str = ""
    start_at: Optional[date] = None
    end_at: Optional[date] = None
    all_day: bool = False
    description: str = ""
    location: str = ""
    attendees: List[str] = field(default_factory=list)
    recurrence_rule: Optional[str] = None
    extensions: Dict[str, Any] = field(default_factory=dict)
    last_modified_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    time_zone: Optional[str] = None

    @property
    def is_pending_id(self) -> bool:
        return self.id.startswith(PENDING_ID_PREFIX)

    def content(self) -> Dict[str, Any]:
        """两端共享的内容（不含 ID、扩展字段、时间戳与状态）"""
        return {
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'all_day': self.all_day,
            'start': _instant_key(self.start_at),
            'end': _instant_key(self.end_at),
            'attendees': list(self.attendees),
            'recurrence': self.recurrence_rule or "",
        }

    def fingerprint(self) -> str:
        """计算内容哈希值"""
        data_str = json.dumps(self.content(), sort_keys=True, ensure_ascii=False)
        return hashlib.md5(data_str.encode('utf-8')).hexdigest()

    def synced(self) -> "SyncRecord":
        return replace(self, sync_status=SyncStatus.SYNCED)


@dataclass
class ChangeOp:
    """单个同步操作"""
    id: str
    kind: ChangeKind
    source: Optional[Side] = None
    target: Optional[Side] = None
    record: Optional[SyncRecord] = None
    calendar_record: Optional[SyncRecord] = None
    sheet_record: Optional[SyncRecord] = None

    def describe(self) -> str:
        if self.kind is ChangeKind.UPDATE and self.target:
            return f"UPDATE->{self.target.value} {self.id}"
        return f"{self.kind.value} {self.id}"


@dataclass
class MappingEntry:
    """ID 与两端物理位置的映射关系"""
    id: str
    sheet_locator: Optional[str] = None
    calendar_locator: Optional[str] = None
    calendar_fingerprint: Optional[str] = None
    sheet_fingerprint: Optional[str] = None
    calendar_modified_at: Optional[datetime] = None
    sheet_modified_at: Optional[datetime] = None
    status: SyncStatus = SyncStatus.SYNCED

    def fingerprint_for(self, side: Side) -> Optional[str]:
        return self.calendar_fingerprint if side is Side.CALENDAR else self.sheet_fingerprint

    def modified_at_for(self, side: Side) -> Optional[datetime]:
        return self.calendar_modified_at if side is Side.CALENDAR else self.sheet_modified_at

    def observe(self, side: Side, record: SyncRecord, locator: Optional[str]) -> None:
        """记录某一端在本次同步后的状态"""
        if side is Side.CALENDAR:
            self.calendar_locator = locator or self.calendar_locator
            self.calendar_fingerprint = record.fingerprint()
            self.calendar_modified_at = record.last_modified_at
        else:
            self.sheet_locator = locator or self.sheet_locator
            self.sheet_fingerprint = record.fingerprint()
            self.sheet_modified_at = record.last_modified_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sheet_locator': self.sheet_locator,
            'calendar_locator': self.calendar_locator,
            'calendar_fingerprint': self.calendar_fingerprint,
            'sheet_fingerprint': self.sheet_fingerprint,
            'calendar_modified_at': _to_iso(self.calendar_modified_at),
            'sheet_modified_at': _to_iso(self.sheet_modified_at),
            'status': self.status.value,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'MappingEntry':
        return MappingEntry(
            id=data['id'],
            sheet_locator=data.get('sheet_locator'),
            calendar_locator=data.get('calendar_locator'),
            calendar_fingerprint=data.get('calendar_fingerprint'),
            sheet_fingerprint=data.get('sheet_fingerprint'),
            calendar_modified_at=_from_iso(data.get('calendar_modified_at')),
            sheet_modified_at=_from_iso(data.get('sheet_modified_at')),
            status=SyncStatus(data.get('status', SyncStatus.SYNCED.value)),
        )


class SyncMapping:
    """映射表，每个 ID 至多一条记录"""

    def __init__(self, entries: Optional[Dict[str, MappingEntry]] = None):
        self._entries: Dict[str, MappingEntry] = dict(entries or {})

    def get(self, record_id: str) -> Optional[MappingEntry]:
        return self._entries.get(record_id)

    def put(self, entry: MappingEntry) -> None:
        self._entries[entry.id] = entry

    def remove(self, record_id: str) -> None:
        self._entries.pop(record_id, None)

    def retire(self, record_id: str) -> None:
        """标记为已删除，等待两端确认后移除"""
        entry = self._entries.get(record_id)
        if entry:
            entry.status = SyncStatus.DELETED

    def ids(self) -> List[str]:
        return sorted(self._entries)

    def find_by_sheet_locator(self, locator: str) -> Optional[MappingEntry]:
        for entry in self._entries.values():
            if entry.sheet_locator == locator:
                return entry
        return None

    def copy(self) -> 'SyncMapping':
        return SyncMapping.from_dict(self.to_dict())

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter([self._entries[k] for k in sorted(self._entries)])

    def to_dict(self) -> Dict[str, Any]:
        return {k: self._entries[k].to_dict() for k in sorted(self._entries)}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SyncMapping':
        return SyncMapping({k: MappingEntry.from_dict(v) for k, v in (data or {}).items()})


@dataclass
class SyncCursor:
    """上次成功同步的时间与计数"""
    last_sync_at: Optional[datetime] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_sync_at': _to_iso(self.last_sync_at),
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'conflicts': self.conflicts,
            'errors': self.errors,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SyncCursor':
        data = data or {}
        return SyncCursor(
            last_sync_at=_from_iso(data.get('last_sync_at')),
            created=data.get('created', 0),
            updated=data.get('updated', 0),
            deleted=data.get('deleted', 0),
            conflicts=data.get('conflicts', 0),
            errors=data.get('errors', 0),
        )


@dataclass
class SyncState:
    """映射表与游标，整体读写"""
    mapping: SyncMapping = field(default_factory=SyncMapping)
    cursor: SyncCursor = field(default_factory=SyncCursor)

    def to_dict(self) -> Dict[str, Any]:
        return {'mapping': self.mapping.to_dict(), 'cursor': self.cursor.to_dict()}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SyncState':
        data = data or {}
        return SyncState(
            mapping=SyncMapping.from_dict(data.get('mapping', {})),
            cursor=SyncCursor.from_dict(data.get('cursor', {})),
        )


@dataclass
class WriteAck:
    """写入成功后的回执"""
    record_id: str
    locator: Optional[str] = None
    record: Optional[SyncRecord] = None


@dataclass
class OpOutcome:
    op: ChangeOp
    ack: Optional[WriteAck] = None
    error: Optional[str] = None


@dataclass
class ApplyResult:
    """批量写入结果"""
    succeeded: List[OpOutcome] = field(default_factory=list)
    failed: List[OpOutcome] = field(default_factory=list)
    deferred: List[ChangeOp] = field(default_factory=list)

    @property
    def failed_ids(self) -> List[str]:
        return [outcome.op.id for outcome in self.failed]


@dataclass
class PassSummary:
    """单次同步汇总，交给日志与通知模块"""
    status: PassStatus
    direction: str = "full"
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: int = 0
    errors: int = 0
    skipped: int = 0
    conflict_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def changes(self) -> int:
        return self.created + self.updated + self.deleted

    @staticmethod
    def skipped_run(direction: str, started_at: Optional[datetime] = None) -> 'PassSummary':
        return PassSummary(
            status=PassStatus.SKIPPED_CONCURRENT_RUN,
            direction=direction,
            started_at=started_at,
            finished_at=started_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'direction': self.direction,
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'conflicts': self.conflicts,
            'errors': self.errors,
            'skipped': self.skipped,
            'changes': self.changes,
            'conflict_ids': list(self.conflict_ids),
            'failed_ids': list(self.failed_ids),
            'error': self.error,
            'started_at': _to_iso(self.started_at),
            'finished_at': _to_iso(self.finished_at),
        }
