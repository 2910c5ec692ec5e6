"""
日历与多维表格适配器测试
"""
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import httplib2
import requests
from googleapiclient.errors import HttpError

from calendar_sheet_sync.config.config import DEFAULT_CUSTOM_FIELDS
from calendar_sheet_sync.core.entity_mapper import EVENT_ID, SHEET_HEADERS, TITLE
from calendar_sheet_sync.core.errors import PermanentIOError, TransientIOError
from calendar_sheet_sync.feishu.bitable import BitableSheet, FIELD_CHECKBOX, FIELD_NUMBER
from calendar_sheet_sync.gcal.client import GoogleCalendar


def http_error(status: int, content: bytes = b"{}") -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), content)


def lark_response(code: int = 0, data=None):
    response = Mock(code=code, msg="ok" if code == 0 else "error", data=data)
    response.success.return_value = code == 0
    return response


class TestGoogleCalendar(unittest.TestCase):
    """Google 日历适配器测试"""

    def setUp(self):
        self.service = MagicMock()
        self.events = self.service.events.return_value
        self.calendar = GoogleCalendar(self.service, "team@example.com", max_results=50)
        self.window = (
            datetime(2024, 4, 1, tzinfo=timezone.utc),
            datetime(2025, 5, 1, tzinfo=timezone.utc),
        )

    def test_list_events_paginates(self):
        """测试分页读取"""
        self.events.list.return_value.execute.side_effect = [
            {"items": [{"id": "a"}], "nextPageToken": "p2"},
            {"items": [{"id": "b"}]},
        ]

        events = self.calendar.list_events(*self.window)

        self.assertEqual([e["id"] for e in events], ["a", "b"])
        first_call = self.events.list.call_args_list[0].kwargs
        self.assertEqual(first_call["calendarId"], "team@example.com")
        self.assertEqual(first_call["maxResults"], 50)
        self.assertFalse(first_call["singleEvents"])
        self.assertEqual(self.events.list.call_args_list[1].kwargs["pageToken"], "p2")

    def test_create_strips_server_fields(self):
        """测试创建事件时去掉只读字段"""
        self.events.insert.return_value.execute.return_value = {"id": "new1", "summary": "Sync"}

        created = self.calendar.create_event({"id": "pending:rec1", "summary": "Sync", "updated": "x"})

        self.assertEqual(created["id"], "new1")
        body = self.events.insert.call_args.kwargs["body"]
        self.assertEqual(body, {"summary": "Sync"})
        self.assertEqual(self.events.insert.call_args.kwargs["sendUpdates"], "none")

    def test_update_clears_owned_fields(self):
        """测试更新时显式清空同步管理的字段"""
        self.events.patch.return_value.execute.return_value = {"id": "e1"}

        self.calendar.update_event("e1", {"id": "e1", "summary": "Renamed"})

        kwargs = self.events.patch.call_args.kwargs
        self.assertEqual(kwargs["eventId"], "e1")
        self.assertEqual(kwargs["body"]["summary"], "Renamed")
        self.assertEqual(kwargs["body"]["description"], "")
        self.assertEqual(kwargs["body"]["attendees"], [])
        self.assertNotIn("id", kwargs["body"])

    def test_update_to_all_day_clears_date_time(self):
        """测试改为全天事件时清空原来的 dateTime"""
        self.events.patch.return_value.execute.return_value = {"id": "e1"}

        self.calendar.update_event("e1", {
            "summary": "Offsite",
            "start": {"date": "2024-05-03"},
            "end": {"date": "2024-05-04"},
        })

        body = self.events.patch.call_args.kwargs["body"]
        self.assertEqual(body["start"], {"date": "2024-05-03", "dateTime": None, "timeZone": None})
        self.assertEqual(body["end"], {"date": "2024-05-04", "dateTime": None, "timeZone": None})

    def test_update_to_timed_clears_date(self):
        """测试改为定时事件时清空原来的 date"""
        self.events.patch.return_value.execute.return_value = {"id": "e1"}

        self.calendar.update_event("e1", {
            "start": {"dateTime": "2024-05-03T09:00:00+08:00", "timeZone": "Asia/Shanghai"},
            "end": {"dateTime": "2024-05-03T10:00:00+08:00", "timeZone": "Asia/Shanghai"},
        })

        body = self.events.patch.call_args.kwargs["body"]
        self.assertIsNone(body["start"]["date"])
        self.assertEqual(body["start"]["dateTime"], "2024-05-03T09:00:00+08:00")
        self.assertEqual(body["end"]["timeZone"], "Asia/Shanghai")

    def test_create_keeps_time_unchanged(self):
        """测试创建事件时不添加空的时间字段"""
        self.events.insert.return_value.execute.return_value = {"id": "e1"}

        self.calendar.create_event({"summary": "x", "start": {"date": "2024-05-03"}})

        self.assertEqual(self.events.insert.call_args.kwargs["body"]["start"], {"date": "2024-05-03"})

    def test_get_event(self):
        """测试按 ID 读取事件"""
        self.events.get.return_value.execute.return_value = {"id": "e1", "status": "confirmed"}

        self.assertEqual(self.calendar.get_event("e1")["id"], "e1")
        self.events.get.assert_called_once_with(calendarId="team@example.com", eventId="e1")

    def test_get_missing_or_cancelled_event(self):
        """测试不存在或已取消的事件返回 None"""
        self.events.get.return_value.execute.side_effect = http_error(404)
        self.assertIsNone(self.calendar.get_event("gone"))

        self.events.get.return_value.execute.side_effect = None
        self.events.get.return_value.execute.return_value = {"id": "e1", "status": "cancelled"}
        self.assertIsNone(self.calendar.get_event("e1"))

    def test_get_event_server_error_is_transient(self):
        """测试读取事件时服务端错误可重试"""
        self.events.get.return_value.execute.side_effect = http_error(500)

        with self.assertRaises(TransientIOError):
            self.calendar.get_event("e1")

    def test_rate_limit_is_transient(self):
        """测试限流错误可重试"""
        self.events.list.return_value.execute.side_effect = http_error(429)

        with self.assertRaises(TransientIOError):
            self.calendar.list_events(*self.window)

    def test_quota_reason_is_transient(self):
        """测试 403 限流原因可重试"""
        content = b'{"error": {"errors": [{"reason": "userRateLimitExceeded"}]}}'
        self.events.insert.return_value.execute.side_effect = http_error(403, content)

        with self.assertRaises(TransientIOError):
            self.calendar.create_event({"summary": "x"})

    def test_server_error_is_transient(self):
        """测试服务端错误可重试"""
        self.events.patch.return_value.execute.side_effect = http_error(503)

        with self.assertRaises(TransientIOError):
            self.calendar.update_event("e1", {"summary": "x"})

    def test_bad_request_is_permanent(self):
        """测试请求错误不可重试"""
        self.events.insert.return_value.execute.side_effect = http_error(400, b"invalid start")

        with self.assertRaises(PermanentIOError):
            self.calendar.create_event({"summary": "x"})

    def test_delete_missing_event_succeeds(self):
        """测试删除不存在的事件"""
        self.events.delete.return_value.execute.side_effect = http_error(410)

        self.calendar.delete_event("gone")

    def test_network_error_is_transient(self):
        """测试网络错误可重试"""
        self.events.delete.return_value.execute.side_effect = ConnectionResetError("reset")

        with self.assertRaises(TransientIOError):
            self.calendar.delete_event("e1")


class TestBitableSheet(unittest.TestCase):
    """多维表格适配器测试"""

    def setUp(self):
        self.client = MagicMock()
        self.records = self.client.bitable.v1.app_table_record
        self.fields = self.client.bitable.v1.app_table_field
        self.sheet = BitableSheet(self.client, "app_token", "tbl1", page_size=2)

    def test_list_rows_flattens_cells(self):
        """测试分页读取并展开富文本单元格"""
        page1 = SimpleNamespace(
            items=[SimpleNamespace(record_id="rec1", fields={
                EVENT_ID: [{"type": "text", "text": "e1"}],
                TITLE: [{"text": "Design "}, {"text": "review"}],
                "All Day": True,
            })],
            has_more=True,
            page_token="next",
        )
        page2 = SimpleNamespace(
            items=[SimpleNamespace(record_id="rec2", fields={TITLE: "Plain"})],
            has_more=False,
            page_token=None,
        )
        self.records.list.side_effect = [lark_response(data=page1), lark_response(data=page2)]

        rows = self.sheet.list_rows()

        self.assertEqual(rows["rec1"], {EVENT_ID: "e1", TITLE: "Design review", "All Day": True})
        self.assertEqual(rows["rec2"], {TITLE: "Plain"})
        self.assertEqual(self.records.list.call_count, 2)

    def test_create_row_drops_empty_cells(self):
        """测试新建行不写入空值"""
        created = SimpleNamespace(record=SimpleNamespace(record_id="rec9"))
        self.records.create.return_value = lark_response(data=created)

        locator = self.sheet.write_row(None, {EVENT_ID: "e1", TITLE: "", "Priority": 3})

        self.assertEqual(locator, "rec9")
        request = self.records.create.call_args.args[0]
        self.assertEqual(request.request_body.fields, {EVENT_ID: "e1", "Priority": 3})

    def test_update_row_clears_empty_cells(self):
        """测试更新行时空字符串写为空值"""
        self.records.update.return_value = lark_response()

        locator = self.sheet.write_row("rec1", {EVENT_ID: "e1", TITLE: ""})

        self.assertEqual(locator, "rec1")
        request = self.records.update.call_args.args[0]
        self.assertEqual(request.record_id, "rec1")
        self.assertEqual(request.request_body.fields, {EVENT_ID: "e1", TITLE: None})

    def test_rate_limit_code_is_transient(self):
        """测试限流错误码可重试"""
        self.records.update.return_value = lark_response(code=1254290)

        with self.assertRaises(TransientIOError):
            self.sheet.write_row("rec1", {TITLE: "x"})

    def test_other_error_code_is_permanent(self):
        """测试其他错误码不可重试"""
        self.records.update.return_value = lark_response(code=1254001)

        with self.assertRaises(PermanentIOError):
            self.sheet.write_row("rec1", {TITLE: "x"})

    def test_network_error_is_transient(self):
        """测试网络错误可重试"""
        self.records.list.side_effect = requests.ConnectionError("timeout")

        with self.assertRaises(TransientIOError):
            self.sheet.list_rows()

    def test_clear_missing_row_succeeds(self):
        """测试删除不存在的行"""
        self.records.delete.return_value = lark_response(code=1254043)

        self.sheet.clear_row("rec404")

    def test_ensure_schema_renames_primary_and_creates_missing(self):
        """测试补齐表头字段"""
        existing = [
            SimpleNamespace(field_id="fld0", field_name="多行文本"),
            SimpleNamespace(field_id="fld1", field_name=TITLE),
        ]
        self.fields.list.return_value = lark_response(data=SimpleNamespace(items=existing))
        self.fields.update.return_value = lark_response()
        self.fields.create.return_value = lark_response()

        created = self.sheet.ensure_schema(DEFAULT_CUSTOM_FIELDS)

        rename = self.fields.update.call_args.args[0]
        self.assertEqual(rename.field_id, "fld0")
        self.assertEqual(rename.request_body.field_name, EVENT_ID)
        self.assertNotIn(EVENT_ID, created)
        self.assertNotIn(TITLE, created)
        self.assertEqual(len(created), len(SHEET_HEADERS) - 2)

        types = {
            call.args[0].request_body.field_name: call.args[0].request_body.type
            for call in self.fields.create.call_args_list
        }
        self.assertEqual(types["All Day"], FIELD_CHECKBOX)
        self.assertEqual(types["Priority"], FIELD_NUMBER)

    def test_ensure_table_finds_existing(self):
        """测试按名称查找已有数据表"""
        sheet = BitableSheet(self.client, "app_token")
        tables = SimpleNamespace(items=[SimpleNamespace(name="Events", table_id="tblE")])
        self.client.bitable.v1.app_table.list.return_value = lark_response(data=tables)

        self.assertEqual(sheet.ensure_table("Events"), "tblE")
        self.client.bitable.v1.app_table.create.assert_not_called()

    def test_connection_check(self):
        """测试连接检查"""
        self.fields.list.return_value = lark_response(code=91402)

        self.assertFalse(self.sheet.test_connection())


if __name__ == '__main__':
    unittest.main()
