"""
双向变更检测
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .models import (
    ChangeKind,
    ChangeOp,
    MappingEntry,
    Side,
    SyncMapping,
    SyncRecord,
    SyncStatus,
    create_toward,
    delete_on,
)


class DiffEngine:
    """对比两端当前记录与上次同步的映射表，生成变更操作"""

    def diff(self, calendar_records: Dict[str, SyncRecord],
             sheet_records: Dict[str, SyncRecord],
             mapping: SyncMapping,
             last_sync_at: Optional[datetime] = None,
             skip_ids: Iterable[str] = ()) -> List[ChangeOp]:
        """
        生成变更操作列表，按 ID 排序

        Args:
            calendar_records: 日历端记录，以 ID 为键
            sheet_records: 表格端记录，以 ID 为键
            mapping: 上次同步后的映射表
            last_sync_at: 上次同步时间，映射缺少哈希时按时间戳判断变更
            skip_ids: 本次不参与对比的 ID（格式错误、超出时间窗口等）
        """
        skip = set(skip_ids)
        all_ids = (set(calendar_records) | set(sheet_records) | set(mapping.ids())) - skip

        ops = []
        for record_id in sorted(all_ids):
            op = self._diff_one(
                record_id,
                calendar_records.get(record_id),
                sheet_records.get(record_id),
                mapping.get(record_id),
                last_sync_at,
            )
            if op:
                ops.append(op)

        logger.debug(f"Diff produced {len(ops)} operations from {len(all_ids)} ids")
        return ops

    def _diff_one(self, record_id: str, calendar: Optional[SyncRecord],
                  sheet: Optional[SyncRecord], entry: Optional[MappingEntry],
                  last_sync_at: Optional[datetime]) -> Optional[ChangeOp]:
        if calendar and sheet:
            return self._diff_both(record_id, calendar, sheet, entry, last_sync_at)

        if calendar or sheet:
            side = Side.CALENDAR if calendar else Side.SHEET
            record = calendar or sheet
            return self._diff_single(record_id, side, record, calendar, sheet, entry, last_sync_at)

        # 两端都已删除，映射在提交时清理
        return None

    def _diff_both(self, record_id: str, calendar: SyncRecord, sheet: SyncRecord,
                   entry: Optional[MappingEntry],
                   last_sync_at: Optional[datetime]) -> Optional[ChangeOp]:
        same_content = calendar.fingerprint() == sheet.fingerprint()

        if entry is None:
            if same_content:
                return None
            return self._conflict(record_id, calendar, sheet)

        calendar_changed = self.has_changed(Side.CALENDAR, calendar, entry, last_sync_at)
        sheet_changed = self.has_changed(Side.SHEET, sheet, entry, last_sync_at)

        if not calendar_changed and not sheet_changed:
            return None
        if same_content:
            return None
        if calendar_changed and sheet_changed:
            return self._conflict(record_id, calendar, sheet)

        if calendar_changed:
            return ChangeOp(
                id=record_id,
                kind=ChangeKind.UPDATE,
                source=Side.CALENDAR,
                target=Side.SHEET,
                record=calendar,
                calendar_record=calendar,
                sheet_record=sheet,
            )
        return ChangeOp(
            id=record_id,
            kind=ChangeKind.UPDATE,
            source=Side.SHEET,
            target=Side.CALENDAR,
            record=sheet,
            calendar_record=calendar,
            sheet_record=sheet,
        )

    def _diff_single(self, record_id: str, side: Side, record: SyncRecord,
                     calendar: Optional[SyncRecord], sheet: Optional[SyncRecord],
                     entry: Optional[MappingEntry],
                     last_sync_at: Optional[datetime]) -> ChangeOp:
        if entry is None:
            # 只在一端出现且从未同步过：新增
            return ChangeOp(
                id=record_id,
                kind=create_toward(side.other),
                source=side,
                target=side.other,
                record=record,
                calendar_record=calendar,
                sheet_record=sheet,
            )

        # 同步过但另一端已删除
        if entry.status is not SyncStatus.DELETED and self.has_changed(side, record, entry, last_sync_at):
            return self._conflict(record_id, calendar, sheet)

        return ChangeOp(
            id=record_id,
            kind=delete_on(side),
            source=side.other,
            target=side,
            record=record,
            calendar_record=calendar,
            sheet_record=sheet,
        )

    @staticmethod
    def has_changed(side: Side, record: SyncRecord, entry: Optional[MappingEntry],
                    last_sync_at: Optional[datetime] = None) -> bool:
        """判断某一端自上次同步以来是否变更"""
        if entry is None:
            return True

        fingerprint = entry.fingerprint_for(side)
        if fingerprint is not None:
            return record.fingerprint() != fingerprint

        if last_sync_at is None:
            return True
        if record.last_modified_at is None:
            return False
        return record.last_modified_at > last_sync_at

    @staticmethod
    def _conflict(record_id: str, calendar: Optional[SyncRecord],
                  sheet: Optional[SyncRecord]) -> ChangeOp:
        return ChangeOp(
            id=record_id,
            kind=ChangeKind.CONFLICT,
            calendar_record=calendar,
            sheet_record=sheet,
        )

    @staticmethod
    def filter_by_origin(ops: List[ChangeOp], side: Side) -> List[ChangeOp]:
        """单向同步时只保留源自指定一端的操作，冲突始终保留"""
        return [op for op in ops if op.kind is ChangeKind.CONFLICT or op.source is side]
