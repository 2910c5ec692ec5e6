"""
实体映射器
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from loguru import logger

from ..config.config import DEFAULT_CUSTOM_FIELDS, FieldDefinition
from .errors import MalformedRecordError
from .field_validator import FieldValidator
from .models import PENDING_ID_PREFIX, SyncRecord, SyncStatus


# 表格列定义，列顺序与表头文字是兼容性约定，不可修改
EVENT_ID = "Event ID"
TITLE = "Title"
START_DATE = "Start Date"
START_TIME = "Start Time"
END_DATE = "End Date"
END_TIME = "End Time"
ALL_DAY = "All Day"
DESCRIPTION = "Description"
LOCATION = "Location"
ATTENDEES = "Attendees"
RECURRENCE = "Recurrence"
PRIORITY = "Priority"
LAST_MODIFIED = "Last Modified"
SYNC_STATUS = "Sync Status"
NOTES = "Notes"

SHEET_HEADERS = [
    EVENT_ID,
    TITLE,
    START_DATE,
    START_TIME,
    END_DATE,
    END_TIME,
    ALL_DAY,
    DESCRIPTION,
    LOCATION,
    ATTENDEES,
    RECURRENCE,
    PRIORITY,
    LAST_MODIFIED,
    SYNC_STATUS,
    NOTES,
]

SHEET_COLUMNS = dict(zip(SHEET_HEADERS, "ABCDEFGHIJKLMNO"))

_TRUE_VALUES = ("true", "yes", "y", "1", "x")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return _text(value).strip().lower() in _TRUE_VALUES


def _unique(values: List[str]) -> List[str]:
    """去除完全重复的项，保持顺序"""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _split_attendees(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        parts = [_text(item) for item in value]
    else:
        parts = re.split(r"[,;\n]", _text(value))
    return _unique([part.strip() for part in parts if part.strip()])


def _parse_iso_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))


def format_updated(value: datetime) -> str:
    """日历 API 的 updated 格式：UTC，毫秒精度，Z 结尾"""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S") + ".%03dZ" % (utc_value.microsecond // 1000)


class EntityMapper:
    """日历事件、表格行与统一记录之间的转换，纯函数，无 I/O"""

    def __init__(self, time_zone: str = "UTC",
                 field_definitions: Optional[Iterable[FieldDefinition]] = None,
                 validator: Optional[FieldValidator] = None):
        self.time_zone = time_zone
        self.tz = ZoneInfo(time_zone)
        if validator is None:
            validator = FieldValidator(field_definitions or DEFAULT_CUSTOM_FIELDS)
        self.validator = validator

    # ------------------------------------------------------------------
    # 日历事件
    # ------------------------------------------------------------------

    def event_to_record(self, event: Dict[str, Any]) -> SyncRecord:
        """日历事件转换为统一记录"""
        event_id = event.get('id')
        if not event_id:
            raise MalformedRecordError('id', "calendar event has no id")

        start = event.get('start') or {}
        end = event.get('end') or {}
        all_day = 'date' in start

        updated = None
        if event.get('updated'):
            try:
                updated = _parse_iso_datetime(event['updated'])
            except ValueError:
                raise MalformedRecordError('updated', f"invalid timestamp {event['updated']!r}", event_id)

        recurrence = event.get('recurrence') or []

        return SyncRecord(
            id=event_id,
            title=event.get('summary', ""),
            start_at=self._event_time(start, 'start', all_day, event_id),
            end_at=self._event_time(end, 'end', all_day, event_id),
            all_day=all_day,
            description=event.get('description', ""),
            location=event.get('location', ""),
            attendees=_unique([a['email'] for a in event.get('attendees', []) if a.get('email')]),
            recurrence_rule="\n".join(recurrence) if recurrence else None,
            extensions={},
            last_modified_at=updated,
            sync_status=SyncStatus.SYNCED,
            time_zone=start.get('timeZone'),
        )

    def record_to_event(self, record: SyncRecord) -> Dict[str, Any]:
        """统一记录转换为日历事件"""
        event: Dict[str, Any] = {}

        if not record.is_pending_id:
            event['id'] = record.id
        if record.title:
            event['summary'] = record.title
        if record.description:
            event['description'] = record.description
        if record.location:
            event['location'] = record.location

        event['start'] = self._event_time_out(record.start_at, 'start', record)
        event['end'] = self._event_time_out(record.end_at, 'end', record)

        if record.attendees:
            event['attendees'] = [{'email': email} for email in _unique(record.attendees)]
        if record.recurrence_rule:
            event['recurrence'] = record.recurrence_rule.split("\n")
        if record.last_modified_at:
            event['updated'] = format_updated(record.last_modified_at)

        return event

    def _event_time(self, info: Dict[str, Any], name: str, all_day: bool, record_id: str):
        try:
            if all_day:
                if not info.get('date'):
                    raise MalformedRecordError(name, "all-day event without date", record_id)
                return date.fromisoformat(info['date'])

            if not info.get('dateTime'):
                raise MalformedRecordError(name, "timed event without dateTime", record_id)
            value = _parse_iso_datetime(info['dateTime'])
        except ValueError as e:
            raise MalformedRecordError(name, str(e), record_id)

        if value.tzinfo is None:
            zone = info.get('timeZone')
            value = value.replace(tzinfo=ZoneInfo(zone) if zone else self.tz)
        return value

    def _event_time_out(self, value: Optional[date], name: str, record: SyncRecord) -> Dict[str, Any]:
        if value is None:
            raise MalformedRecordError(name, "record has no time", record.id)

        if record.all_day:
            if isinstance(value, datetime):
                value = value.astimezone(self.tz).date()
            return {'date': value.isoformat()}

        if not isinstance(value, datetime):
            value = datetime.combine(value, time.min, tzinfo=self.tz)
        info = {'dateTime': value.isoformat()}
        if record.time_zone:
            info['timeZone'] = record.time_zone
        return info

    # ------------------------------------------------------------------
    # 表格行
    # ------------------------------------------------------------------

    def row_to_record(self, row: Dict[str, Any], locator: Optional[str] = None) -> SyncRecord:
        """
        表格行转换为统一记录

        Args:
            row: 以表头文字为键的行数据
            locator: 行在表格中的位置，没有 Event ID 的新行用它生成临时 ID

        Raises:
            MalformedRecordError: 必填字段缺失或格式错误
            ValidationError: 扩展字段不符合字段定义
        """
        raw_id = _text(row.get(EVENT_ID)).strip()
        if raw_id:
            record_id = raw_id
        elif locator:
            record_id = f"{PENDING_ID_PREFIX}{locator}"
        else:
            raise MalformedRecordError(EVENT_ID, "row has no Event ID")

        all_day = _parse_bool(row.get(ALL_DAY))
        start_date = self._row_date(row, START_DATE, record_id)
        end_date = self._row_date(row, END_DATE, record_id, required=False)

        if all_day:
            start_at = start_date
            end_at = end_date or start_date + timedelta(days=1)
        else:
            start_time = self._row_time(row, START_TIME, record_id)
            start_at = datetime.combine(start_date, start_time, tzinfo=self.tz)
            end_time = self._row_time(row, END_TIME, record_id, required=False)
            if end_time is None:
                end_at = start_at + timedelta(hours=1)
            else:
                end_at = datetime.combine(end_date or start_date, end_time, tzinfo=self.tz)

        extensions = {
            key: self.validator.validate(key, row.get(definition.name))
            for key, definition in self.validator.definitions.items()
        }

        return SyncRecord(
            id=record_id,
            title=_text(row.get(TITLE)),
            start_at=start_at,
            end_at=end_at,
            all_day=all_day,
            description=_text(row.get(DESCRIPTION)),
            location=_text(row.get(LOCATION)),
            attendees=_split_attendees(row.get(ATTENDEES)),
            recurrence_rule=_text(row.get(RECURRENCE)).strip() or None,
            extensions=extensions,
            last_modified_at=self._row_datetime(row, LAST_MODIFIED, record_id),
            sync_status=self._row_status(row),
            time_zone=None if all_day else self.time_zone,
        )

    def record_to_row(self, record: SyncRecord) -> Dict[str, Any]:
        """统一记录转换为表格行"""
        if record.start_at is None:
            raise MalformedRecordError(START_DATE, "record has no start", record.id)

        start_date, start_time = self._split_local(record.start_at, record.all_day)
        end_date, end_time = self._split_local(record.end_at, record.all_day)

        row = {
            EVENT_ID: "" if record.is_pending_id else record.id,
            TITLE: record.title,
            START_DATE: start_date,
            START_TIME: start_time,
            END_DATE: end_date,
            END_TIME: end_time,
            ALL_DAY: record.all_day,
            DESCRIPTION: record.description,
            LOCATION: record.location,
            ATTENDEES: ", ".join(_unique(record.attendees)),
            RECURRENCE: record.recurrence_rule or "",
            LAST_MODIFIED: self._format_local(record.last_modified_at),
            SYNC_STATUS: record.sync_status.value,
        }

        extensions = self.validator.defaults()
        extensions.update(record.extensions)
        for key, definition in self.validator.definitions.items():
            row[definition.name] = extensions.get(key)

        return row

    def _split_local(self, value: Optional[date], all_day: bool):
        if value is None:
            return "", ""
        if all_day:
            if isinstance(value, datetime):
                value = value.astimezone(self.tz).date()
            return value.isoformat(), ""
        if not isinstance(value, datetime):
            return value.isoformat(), "00:00"
        local = value.astimezone(self.tz)
        return local.date().isoformat(), local.strftime("%H:%M")

    def _format_local(self, value: Optional[datetime]) -> str:
        if value is None:
            return ""
        return value.astimezone(self.tz).isoformat(timespec='seconds')

    def _row_date(self, row: Dict[str, Any], column: str, record_id: str,
                  required: bool = True) -> Optional[date]:
        value = row.get(column)
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # 多维表格日期字段为毫秒时间戳
            return datetime.fromtimestamp(value / 1000, tz=self.tz).date()

        text = _text(value).strip()
        if not text:
            if required:
                raise MalformedRecordError(column, "required", record_id)
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise MalformedRecordError(column, f"invalid date {text!r}", record_id)

    def _row_time(self, row: Dict[str, Any], column: str, record_id: str,
                  required: bool = True) -> Optional[time]:
        value = row.get(column)
        if isinstance(value, time):
            return value

        text = _text(value).strip()
        if not text:
            if required:
                raise MalformedRecordError(column, "required for timed events", record_id)
            return None
        try:
            return time.fromisoformat(text)
        except ValueError:
            raise MalformedRecordError(column, f"invalid time {text!r}", record_id)

    def _row_datetime(self, row: Dict[str, Any], column: str, record_id: str) -> Optional[datetime]:
        value = row.get(column)
        if isinstance(value, datetime):
            parsed = value
        else:
            text = _text(value).strip()
            if not text:
                return None
            try:
                parsed = _parse_iso_datetime(text)
            except ValueError:
                raise MalformedRecordError(column, f"invalid timestamp {text!r}", record_id)

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed

    def _row_status(self, row: Dict[str, Any]) -> SyncStatus:
        text = _text(row.get(SYNC_STATUS)).strip().upper()
        if not text:
            return SyncStatus.PENDING
        try:
            return SyncStatus(text)
        except ValueError:
            logger.debug(f"Unknown sync status {text!r}, treating as PENDING")
            return SyncStatus.PENDING
