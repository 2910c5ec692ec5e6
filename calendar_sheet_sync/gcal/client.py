"""
Google 日历适配器
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from ..core.errors import PermanentIOError, TransientIOError
from ..core.interfaces import CalendarGateway


SCOPES = ["https://www.googleapis.com/auth/calendar"]

# 服务端生成的字段，写入时去掉
READ_ONLY_KEYS = ("id", "updated", "created", "etag", "htmlLink", "iCalUID", "kind", "creator", "organizer")

# 由同步管理的字段，patch 时显式给出空值以便清空
OWNED_DEFAULTS = {
    "summary": "",
    "description": "",
    "location": "",
    "attendees": [],
    "recurrence": [],
}

RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


def _translate(error: HttpError, action: str) -> Exception:
    """HttpError 转换为可重试/不可重试错误"""
    status = error.resp.status
    content = error.content.decode('utf-8', errors='ignore') if error.content else ""
    message = f"Calendar {action} failed with HTTP {status}"

    if status == 429 or status >= 500 or any(reason in content for reason in RATE_LIMIT_REASONS):
        return TransientIOError(message)
    return PermanentIOError(f"{message}: {content[:200]}")


class GoogleCalendar(CalendarGateway):
    """基于 google-api-python-client 的日历读写"""

    def __init__(self, service: Any, calendar_id: str = "primary", max_results: int = 2500):
        """
        初始化

        Args:
            service: googleapiclient 构建的 calendar v3 服务
            calendar_id: 日历 ID
            max_results: 每页事件数
        """
        self.service = service
        self.calendar_id = calendar_id
        self.max_results = max_results

    @classmethod
    def from_token_file(cls, token_file: str, calendar_id: str = "primary",
                        max_results: int = 2500) -> "GoogleCalendar":
        """从已授权的凭据文件创建"""
        credentials = Credentials.from_authorized_user_file(token_file, SCOPES)
        service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        return cls(service, calendar_id, max_results)

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        request_params = {
            "calendarId": self.calendar_id,
            "maxResults": self.max_results,
            "singleEvents": False,
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
        }

        all_events = []
        page_token = None
        while True:
            if page_token:
                request_params["pageToken"] = page_token

            result = self._execute(self.service.events().list(**request_params), "list")
            all_events.extend(result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(all_events)} events from calendar {self.calendar_id}")
        return all_events

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        try:
            event = self.service.events().get(calendarId=self.calendar_id, eventId=event_id).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.debug(f"Calendar event {event_id} not found")
                return None
            raise _translate(e, "get")
        except OSError as e:
            raise TransientIOError(f"Calendar get failed: {e}")

        if event.get("status") == "cancelled":
            logger.debug(f"Calendar event {event_id} is cancelled")
            return None
        return event

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        body = self._body(event)
        created = self._execute(
            self.service.events().insert(calendarId=self.calendar_id, body=body, sendUpdates="none"),
            "insert",
        )
        logger.info(f"Created calendar event {created.get('id')}")
        return created

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(OWNED_DEFAULTS)
        body.update(self._body(event))
        for name in ("start", "end"):
            if name in body:
                body[name] = self._time_patch(body[name])
        updated = self._execute(
            self.service.events().patch(
                calendarId=self.calendar_id, eventId=event_id, body=body, sendUpdates="none"
            ),
            "patch",
        )
        logger.info(f"Updated calendar event {event_id}")
        return updated

    def delete_event(self, event_id: str) -> None:
        try:
            self.service.events().delete(
                calendarId=self.calendar_id, eventId=event_id, sendUpdates="none"
            ).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.debug(f"Calendar event {event_id} already deleted")
                return
            raise _translate(e, "delete")
        except OSError as e:
            raise TransientIOError(f"Calendar delete failed: {e}")
        logger.info(f"Deleted calendar event {event_id}")

    @staticmethod
    def _body(event: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in event.items() if key not in READ_ONLY_KEYS}

    @staticmethod
    def _time_patch(info: Dict[str, Any]) -> Dict[str, Any]:
        """patch 会合并 start/end，切换全天时显式清空另一种时间"""
        patched = dict(info)
        if "date" in patched:
            patched.setdefault("dateTime", None)
            patched.setdefault("timeZone", None)
        else:
            patched.setdefault("date", None)
        return patched

    @staticmethod
    def _execute(request: Any, action: str) -> Dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            error = _translate(e, action)
            logger.warning(str(error))
            raise error
        except OSError as e:
            # 网络错误（超时、连接重置）
            raise TransientIOError(f"Calendar {action} failed: {e}")
