"""
测试用的内存版日历与表格
"""
import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from calendar_sheet_sync.core.entity_mapper import EVENT_ID, format_updated
from calendar_sheet_sync.core.interfaces import CalendarGateway, SheetGateway


def _event_bound(info: Dict[str, Any]) -> datetime:
    if 'dateTime' in info:
        return datetime.fromisoformat(info['dateTime'])
    return datetime.fromisoformat(info['date']).replace(tzinfo=timezone.utc)


class FakeCalendar(CalendarGateway):
    """内存日历，新事件 ID 依次为 evt1、evt2 ..."""

    def __init__(self, now: Optional[datetime] = None):
        self.events: Dict[str, Dict[str, Any]] = {}
        self.now = now or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.fail: Optional[Callable[[str, Optional[str]], None]] = None
        self.calls: List[str] = []
        self._next_id = 0

    def add(self, event: Dict[str, Any]) -> None:
        self.events[event['id']] = copy.deepcopy(event)

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        self.calls.append('list')
        result = []
        for event in self.events.values():
            if event.get('status') == 'cancelled':
                continue
            if _event_bound(event['end']) > time_min and _event_bound(event['start']) < time_max:
                result.append(copy.deepcopy(event))
        return result

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append('get')
        event = self.events.get(event_id)
        if event is None or event.get('status') == 'cancelled':
            return None
        return copy.deepcopy(event)

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        self._check('create', None)
        self._next_id += 1
        stored = copy.deepcopy(event)
        stored['id'] = f"evt{self._next_id}"
        stored['updated'] = format_updated(self.now)
        self.events[stored['id']] = stored
        return copy.deepcopy(stored)

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        self._check('update', event_id)
        stored = copy.deepcopy(event)
        stored['id'] = event_id
        stored['updated'] = format_updated(self.now)
        self.events[event_id] = stored
        return copy.deepcopy(stored)

    def delete_event(self, event_id: str) -> None:
        self._check('delete', event_id)
        self.events.pop(event_id, None)

    def _check(self, action: str, event_id: Optional[str]) -> None:
        self.calls.append(action)
        if self.fail:
            self.fail(action, event_id)


class FakeSheet(SheetGateway):
    """内存表格，新行定位符依次为 rec1、rec2 ..."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.fail: Optional[Callable[[str, Dict[str, Any]], None]] = None
        self.calls: List[str] = []
        self._next_id = 0

    def add(self, row: Dict[str, Any]) -> str:
        self._next_id += 1
        locator = f"rec{self._next_id}"
        self.rows[locator] = dict(row)
        return locator

    def find(self, event_id: str) -> Optional[Dict[str, Any]]:
        for row in self.rows.values():
            if row.get(EVENT_ID) == event_id:
                return row
        return None

    def list_rows(self) -> Dict[str, Dict[str, Any]]:
        self.calls.append('list')
        return {locator: dict(row) for locator, row in self.rows.items()}

    def write_row(self, locator: Optional[str], row: Dict[str, Any]) -> str:
        self.calls.append('write')
        if self.fail:
            self.fail('write', row)
        if locator is None:
            return self.add(row)
        self.rows[locator] = dict(row)
        return locator

    def clear_row(self, locator: str) -> None:
        self.calls.append('clear')
        if self.fail:
            self.fail('clear', self.rows.get(locator, {}))
        self.rows.pop(locator, None)
