"""
冲突解决器
"""
from typing import List, Tuple, Union

from loguru import logger

from .models import (
    ChangeKind,
    ChangeOp,
    ConflictStrategy,
    Side,
    SyncRecord,
    create_toward,
    delete_on,
)


class ConflictResolver:
    """按策略把冲突操作转换为确定的写入操作，不做字段级合并"""

    def __init__(self, strategy: Union[str, ConflictStrategy] = ConflictStrategy.LAST_WRITE_WINS):
        self.strategy = ConflictStrategy(strategy)

    def resolve(self, op: ChangeOp) -> ChangeOp:
        """解决单个冲突，非冲突操作原样返回"""
        if op.kind is not ChangeKind.CONFLICT:
            return op

        calendar, sheet = op.calendar_record, op.sheet_record
        if calendar and sheet:
            return self._resolve_both(op, calendar, sheet)
        if calendar or sheet:
            return self._resolve_delete_vs_modify(op)

        raise ValueError(f"Conflict {op.id} carries no records")

    def resolve_all(self, ops: List[ChangeOp]) -> Tuple[List[ChangeOp], List[str]]:
        """
        解决所有冲突

        Returns:
            (解决后的操作列表, 发生冲突的 ID 列表)
        """
        resolved = []
        conflict_ids = []
        for op in ops:
            if op.kind is ChangeKind.CONFLICT:
                conflict_ids.append(op.id)
            resolved.append(self.resolve(op))

        if conflict_ids:
            logger.info(f"Resolved {len(conflict_ids)} conflicts with {self.strategy.value}")
        return resolved, conflict_ids

    def _resolve_both(self, op: ChangeOp, calendar: SyncRecord, sheet: SyncRecord) -> ChangeOp:
        winner_side = self._pick_winner(calendar, sheet)
        winner = calendar if winner_side is Side.CALENDAR else sheet

        logger.debug(f"Conflict {op.id}: {winner_side.value} wins ({self.strategy.value})")
        return ChangeOp(
            id=op.id,
            kind=ChangeKind.UPDATE,
            source=winner_side,
            target=winner_side.other,
            record=winner.synced(),
            calendar_record=calendar,
            sheet_record=sheet,
        )

    def _resolve_delete_vs_modify(self, op: ChangeOp) -> ChangeOp:
        holder = Side.CALENDAR if op.calendar_record else Side.SHEET
        record = op.calendar_record or op.sheet_record

        if self.strategy is ConflictStrategy.LAST_WRITE_WINS:
            # 修改时间晚于上次同步，删除时间未知，保留修改
            keep = True
        else:
            keep = self._preferred_side() is holder

        if keep:
            logger.debug(f"Conflict {op.id}: re-creating on {holder.other.value}")
            return ChangeOp(
                id=op.id,
                kind=create_toward(holder.other),
                source=holder,
                target=holder.other,
                record=record.synced(),
                calendar_record=op.calendar_record,
                sheet_record=op.sheet_record,
            )

        logger.debug(f"Conflict {op.id}: propagating delete to {holder.value}")
        return ChangeOp(
            id=op.id,
            kind=delete_on(holder),
            source=holder.other,
            target=holder,
            record=record,
            calendar_record=op.calendar_record,
            sheet_record=op.sheet_record,
        )

    def _pick_winner(self, calendar: SyncRecord, sheet: SyncRecord) -> Side:
        if self.strategy is not ConflictStrategy.LAST_WRITE_WINS:
            return self._preferred_side()

        calendar_time = calendar.last_modified_at
        sheet_time = sheet.last_modified_at
        if sheet_time is None:
            return Side.CALENDAR
        if calendar_time is None:
            return Side.SHEET
        # 时间相同时日历优先
        return Side.SHEET if sheet_time > calendar_time else Side.CALENDAR

    def _preferred_side(self) -> Side:
        if self.strategy is ConflictStrategy.SHEETS_WINS:
            return Side.SHEET
        return Side.CALENDAR
