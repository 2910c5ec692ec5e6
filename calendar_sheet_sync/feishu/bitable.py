"""飞书多维表格适配器"""

from typing import Any, Dict, Iterable, List, Optional

import lark_oapi as lark
import requests
from lark_oapi.api.bitable.v1 import *
from loguru import logger

from ..config.config import FIELD_TYPE_NUMBER, FieldDefinition
from ..core.entity_mapper import ALL_DAY, EVENT_ID, SHEET_HEADERS
from ..core.errors import PermanentIOError, TransientIOError
from ..core.interfaces import SheetGateway


# 多维表格字段类型
FIELD_TEXT = 1
FIELD_NUMBER = 2
FIELD_CHECKBOX = 7

# 限流、数据版本冲突、服务繁忙等可重试错误码
TRANSIENT_CODES = {99991400, 1254290, 1254291, 1254607, 1255040}
RECORD_NOT_FOUND_CODES = {1254043}


def _cell_value(value: Any) -> Any:
    """把多维表格返回的单元格值转换为普通值"""
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("name") or ""))
            else:
                parts.append(str(item))
        return "".join(parts)
    if isinstance(value, dict):
        return value.get("text") or value.get("link") or ""
    return value


def _error_for(response: Any, action: str) -> Exception:
    message = f"Bitable {action} failed: code={response.code}, msg={response.msg}"
    if response.code in TRANSIENT_CODES:
        return TransientIOError(message)
    return PermanentIOError(message)


class BitableSheet(SheetGateway):
    """以多维表格数据表作为同步表格，行定位符为 record_id"""

    def __init__(self, client: lark.Client, app_token: str, table_id: str = "",
                 page_size: int = 500):
        """
        初始化

        Args:
            client: 飞书客户端
            app_token: 多维表格 app token
            table_id: 数据表 ID，为空时需先调用 ensure_table
            page_size: 分页大小
        """
        self.client = client
        self.app_token = app_token
        self.table_id = table_id
        self.page_size = page_size

    @classmethod
    def from_credentials(cls, app_id: str, app_secret: str, app_token: str,
                         table_id: str = "", page_size: int = 500) -> "BitableSheet":
        client = lark.Client.builder() \
            .app_id(app_id) \
            .app_secret(app_secret) \
            .domain(lark.FEISHU_DOMAIN) \
            .log_level(lark.LogLevel.ERROR) \
            .build()
        return cls(client, app_token, table_id, page_size)

    # ------------------------------------------------------------------
    # 行读写
    # ------------------------------------------------------------------

    def list_rows(self) -> Dict[str, Dict[str, Any]]:
        rows: Dict[str, Dict[str, Any]] = {}
        page_token = None

        while True:
            builder = ListAppTableRecordRequest.builder() \
                .app_token(self.app_token) \
                .table_id(self.table_id) \
                .page_size(self.page_size)
            if page_token:
                builder = builder.page_token(page_token)

            response = self._call(self.client.bitable.v1.app_table_record.list, builder.build(), "list records")

            data = response.data
            if data and data.items:
                for item in data.items:
                    fields = item.fields or {}
                    rows[item.record_id] = {name: _cell_value(value) for name, value in fields.items()}

            if not data or not data.has_more:
                break
            page_token = data.page_token

        logger.debug(f"Listed {len(rows)} rows from table {self.table_id}")
        return rows

    def write_row(self, locator: Optional[str], row: Dict[str, Any]) -> str:
        fields = {name: (None if value == "" else value) for name, value in row.items()}

        if locator is None:
            request_body = AppTableRecord.builder() \
                .fields({name: value for name, value in fields.items() if value is not None}) \
                .build()
            request = CreateAppTableRecordRequest.builder() \
                .app_token(self.app_token) \
                .table_id(self.table_id) \
                .request_body(request_body) \
                .build()
            response = self._call(self.client.bitable.v1.app_table_record.create, request, "create record")
            record_id = response.data.record.record_id
            logger.debug(f"Created row {record_id} for {row.get(EVENT_ID) or 'new event'}")
            return record_id

        request_body = AppTableRecord.builder() \
            .fields(fields) \
            .build()
        request = UpdateAppTableRecordRequest.builder() \
            .app_token(self.app_token) \
            .table_id(self.table_id) \
            .record_id(locator) \
            .request_body(request_body) \
            .build()
        self._call(self.client.bitable.v1.app_table_record.update, request, "update record")
        logger.debug(f"Updated row {locator}")
        return locator

    def clear_row(self, locator: str) -> None:
        request = DeleteAppTableRecordRequest.builder() \
            .app_token(self.app_token) \
            .table_id(self.table_id) \
            .record_id(locator) \
            .build()

        try:
            response = self.client.bitable.v1.app_table_record.delete(request)
        except requests.RequestException as e:
            raise TransientIOError(f"Bitable delete record failed: {e}")

        if not response.success():
            if response.code in RECORD_NOT_FOUND_CODES:
                logger.debug(f"Row {locator} already deleted")
                return
            raise _error_for(response, "delete record")
        logger.debug(f"Deleted row {locator}")

    # ------------------------------------------------------------------
    # 表结构
    # ------------------------------------------------------------------

    def ensure_table(self, name: str) -> str:
        """按名称查找数据表，不存在时创建"""
        if self.table_id:
            return self.table_id

        request = ListAppTableRequest.builder() \
            .app_token(self.app_token) \
            .build()
        response = self._call(self.client.bitable.v1.app_table.list, request, "list tables")
        for item in (response.data.items or []) if response.data else []:
            if item.name == name:
                self.table_id = item.table_id
                return self.table_id

        request_body = CreateAppTableRequestBody.builder() \
            .table(ReqTable.builder().name(name).build()) \
            .build()
        request = CreateAppTableRequest.builder() \
            .app_token(self.app_token) \
            .request_body(request_body) \
            .build()
        response = self._call(self.client.bitable.v1.app_table.create, request, "create table")
        self.table_id = response.data.table_id
        logger.info(f"Created table {name} -> {self.table_id}")
        return self.table_id

    def ensure_schema(self, custom_fields: Iterable[FieldDefinition] = ()) -> List[str]:
        """
        确保表头字段齐全，返回新建的字段名

        首个字段重命名为 Event ID，其余缺失的字段按类型创建。
        """
        field_types = {name: FIELD_TEXT for name in SHEET_HEADERS}
        field_types[ALL_DAY] = FIELD_CHECKBOX
        for definition in custom_fields:
            field_types[definition.name] = FIELD_NUMBER if definition.type == FIELD_TYPE_NUMBER else FIELD_TEXT

        fields = self._list_fields()
        existing = {field.field_name for field in fields}

        if fields and EVENT_ID not in existing and fields[0].field_name not in field_types:
            primary = fields[0]
            request = UpdateAppTableFieldRequest.builder() \
                .app_token(self.app_token) \
                .table_id(self.table_id) \
                .field_id(primary.field_id) \
                .request_body(AppTableField.builder().field_name(EVENT_ID).type(FIELD_TEXT).build()) \
                .build()
            self._call(self.client.bitable.v1.app_table_field.update, request, "rename primary field")
            existing.discard(primary.field_name)
            existing.add(EVENT_ID)

        created = []
        for name, field_type in field_types.items():
            if name in existing:
                continue
            request = CreateAppTableFieldRequest.builder() \
                .app_token(self.app_token) \
                .table_id(self.table_id) \
                .request_body(AppTableField.builder().field_name(name).type(field_type).build()) \
                .build()
            self._call(self.client.bitable.v1.app_table_field.create, request, "create field")
            created.append(name)

        if created:
            logger.info(f"Created fields: {', '.join(created)}")
        return created

    def test_connection(self) -> bool:
        """测试连接"""
        try:
            self._list_fields()
            return True
        except (TransientIOError, PermanentIOError) as e:
            logger.error(f"Bitable connection test failed: {e}")
            return False

    def _list_fields(self) -> List[Any]:
        request = ListAppTableFieldRequest.builder() \
            .app_token(self.app_token) \
            .table_id(self.table_id) \
            .build()
        response = self._call(self.client.bitable.v1.app_table_field.list, request, "list fields")
        return list(response.data.items or []) if response.data else []

    @staticmethod
    def _call(method: Any, request: Any, action: str) -> Any:
        try:
            response = method(request)
        except requests.RequestException as e:
            raise TransientIOError(f"Bitable {action} failed: {e}")

        if not response.success():
            error = _error_for(response, action)
            logger.error(str(error))
            raise error
        return response
