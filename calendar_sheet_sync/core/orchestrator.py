"""
同步编排器
"""
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from ..config.config import AppConfig
from .batch_writer import BatchWriter
from .conflict_resolver import ConflictResolver
from .diff_engine import DiffEngine
from .entity_mapper import EVENT_ID, EntityMapper
from .errors import (
    ConfigurationError,
    LockUnavailableError,
    MalformedRecordError,
    PermanentIOError,
    StoreError,
    TransientIOError,
    ValidationError,
)
from .field_validator import FieldValidator
from .interfaces import CalendarGateway, LockStore, SheetGateway, StateStore
from .models import (
    ApplyResult,
    ChangeKind,
    ChangeOp,
    MappingEntry,
    OpOutcome,
    OrchestratorState,
    PENDING_ID_PREFIX,
    PassStatus,
    PassSummary,
    Side,
    SyncCursor,
    SyncMapping,
    SyncRecord,
    SyncState,
    SyncStatus,
    WriteAck,
)


@dataclass
class PassSnapshot:
    """单次同步读取到的两端数据"""
    calendar: Dict[str, SyncRecord] = field(default_factory=dict)
    sheet: Dict[str, SyncRecord] = field(default_factory=dict)
    sheet_locators: Dict[str, str] = field(default_factory=dict)
    skip_ids: Set[str] = field(default_factory=set)
    write_back_ids: Set[str] = field(default_factory=set)
    errors: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """
    双向同步编排器

    状态流转: IDLE -> ACQUIRING_LOCK -> LOADING -> DIFFING -> RESOLVING
    -> WRITING -> COMMITTING -> IDLE，任一步骤出错进入 ERROR。
    """

    def __init__(self, config: AppConfig,
                 calendar: CalendarGateway,
                 sheet: SheetGateway,
                 lock_store: LockStore,
                 state_store: StateStore,
                 mapper: Optional[EntityMapper] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 monotonic: Callable[[], float] = time.monotonic):
        self.config = config
        self.calendar = calendar
        self.sheet = sheet
        self.lock_store = lock_store
        self.state_store = state_store
        self.mapper = mapper
        self.clock = clock or _utc_now
        self.monotonic = monotonic

        self.diff_engine = DiffEngine()
        self.resolver: Optional[ConflictResolver] = None
        self.writer = BatchWriter(
            self._apply_op,
            batch_size=config.sync.batch_size,
            max_retries=config.sync.max_retries,
            retry_delay=config.sync.retry_delay_ms / 1000.0,
            sleep=sleep,
            clock=monotonic,
        )

        self.state = OrchestratorState.IDLE
        self.last_summary: Optional[PassSummary] = None
        self._snapshot = PassSnapshot()
        self._mapping = SyncMapping()

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    def run_full_pass(self) -> PassSummary:
        """执行一次双向全量同步"""
        return self._run_pass(None)

    def run_directional_pass(self, source: Side) -> PassSummary:
        """只同步源自 source 一端的变更（冲突仍会解决）"""
        return self._run_pass(Side(source))

    def get_status(self) -> Dict[str, Any]:
        """获取同步状态"""
        try:
            state = self.state_store.load()
        except StoreError as e:
            logger.error(f"Failed to load sync state: {e}")
            state = None

        status = {
            'state': self.state.value,
            'lock_held': self.lock_store.is_locked(self.config.sync.lock_key),
            'last_pass': self.last_summary.to_dict() if self.last_summary else None,
            'cursor': None,
            'mapped_records': 0,
            'retired_records': 0,
        }
        if state is not None:
            retired = sum(1 for entry in state.mapping if entry.status is SyncStatus.DELETED)
            status['cursor'] = state.cursor.to_dict()
            status['mapped_records'] = len(state.mapping) - retired
            status['retired_records'] = retired
        return status

    def clear_state(self) -> None:
        """
        清空映射表与游标

        Raises:
            LockUnavailableError: 同步正在进行
        """
        lock_key = self.config.sync.lock_key
        if not self.lock_store.try_acquire(lock_key, self.config.sync.lock_timeout_seconds):
            raise LockUnavailableError(f"Lock '{lock_key}' is held by another sync pass")

        try:
            self.state_store.clear()
            self.last_summary = None
            logger.info("Sync state cleared")
        finally:
            self.lock_store.release(lock_key)

    # ------------------------------------------------------------------
    # 同步流程
    # ------------------------------------------------------------------

    def _run_pass(self, origin: Optional[Side]) -> PassSummary:
        direction = origin.value if origin else "full"
        started = self.clock()

        errors = self._configuration_errors()
        if errors:
            error = ConfigurationError(errors)
            logger.error(f"Sync pass aborted: {error}")
            summary = PassSummary(
                status=PassStatus.FAILED,
                direction=direction,
                error=str(error),
                started_at=started,
                finished_at=started,
            )
            self.last_summary = summary
            return summary
        self._prepare()

        previous_state = self.state
        self.state = OrchestratorState.ACQUIRING_LOCK
        lock_key = self.config.sync.lock_key
        if not self.lock_store.try_acquire(lock_key, self.config.sync.lock_timeout_seconds):
            self.state = previous_state
            logger.warning(f"Lock '{lock_key}' is held by another pass, skipping {direction} sync")
            return PassSummary.skipped_run(direction, started)

        try:
            summary = self._execute(origin, direction, started)
            self.state = OrchestratorState.IDLE
        except Exception as e:
            self.state = OrchestratorState.ERROR
            logger.error(f"Sync pass failed: {e}")
            summary = PassSummary(
                status=PassStatus.FAILED,
                direction=direction,
                error=f"{type(e).__name__}: {e}",
                started_at=started,
                finished_at=self.clock(),
            )
        finally:
            self.lock_store.release(lock_key)
            self._snapshot = PassSnapshot()

        self.last_summary = summary
        return summary

    def _configuration_errors(self) -> List[str]:
        errors = self.config.validate()
        errors.extend(FieldValidator(()).validate_all(self.config.sync.custom_fields))
        return errors

    def _prepare(self) -> None:
        if self.mapper is None:
            validator = FieldValidator(self.config.sync.custom_fields, self.config.sync.extension_policy)
            self.mapper = EntityMapper(self.config.calendar.time_zone, validator=validator)
        if self.resolver is None:
            self.resolver = ConflictResolver(self.config.sync.conflict_resolution)

    def _execute(self, origin: Optional[Side], direction: str, started: datetime) -> PassSummary:
        logger.info(f"Starting {direction} sync pass")

        # 读取
        self.state = OrchestratorState.LOADING
        state = self._load_state()
        self._mapping = state.mapping
        snapshot = self._load_snapshot(state.mapping, started)
        self._snapshot = snapshot

        # 对比
        self.state = OrchestratorState.DIFFING
        ops = self.diff_engine.diff(
            snapshot.calendar,
            snapshot.sheet,
            state.mapping,
            state.cursor.last_sync_at,
            snapshot.skip_ids,
        )
        touched = {op.id for op in ops}
        if origin is not None:
            ops = self.diff_engine.filter_by_origin(ops, origin)

        # 解决冲突
        self.state = OrchestratorState.RESOLVING
        ops, conflict_ids = self.resolver.resolve_all(ops)

        # 写入：先日历，再表格（含 ID 回写）
        self.state = OrchestratorState.WRITING
        deadline = self.monotonic() + self.config.sync.time_budget_seconds
        calendar_result = self.writer.apply(
            [op for op in ops if op.target is Side.CALENDAR], Side.CALENDAR, deadline
        )
        write_backs = self._write_back_ops(calendar_result, ops, snapshot)
        sheet_result = self.writer.apply(
            [op for op in ops if op.target is Side.SHEET] + write_backs, Side.SHEET, deadline
        )

        # 提交
        self.state = OrchestratorState.COMMITTING
        succeeded = calendar_result.succeeded + sheet_result.succeeded
        failed = calendar_result.failed + sheet_result.failed
        deferred = calendar_result.deferred + sheet_result.deferred

        mapping = self._build_mapping(state.mapping, snapshot, touched, succeeded)

        write_back_refs = {id(op) for op in write_backs}
        primary = [outcome.op for outcome in succeeded if id(outcome.op) not in write_back_refs]
        cursor = SyncCursor(
            last_sync_at=started,
            created=sum(1 for op in primary if op.kind.is_create),
            updated=sum(1 for op in primary if op.kind is ChangeKind.UPDATE),
            deleted=sum(1 for op in primary if op.kind.is_delete),
            conflicts=len(conflict_ids),
            errors=snapshot.errors + len(failed),
        )
        self._save_state(SyncState(mapping=mapping, cursor=cursor))

        summary = PassSummary(
            status=PassStatus.PARTIAL if failed or deferred else PassStatus.COMPLETED,
            direction=direction,
            created=cursor.created,
            updated=cursor.updated,
            deleted=cursor.deleted,
            conflicts=cursor.conflicts,
            errors=cursor.errors,
            skipped=len(deferred),
            conflict_ids=conflict_ids,
            failed_ids=[outcome.op.id for outcome in failed],
            started_at=started,
            finished_at=self.clock(),
        )
        logger.info(
            f"Sync pass {summary.status.value}: created={summary.created} updated={summary.updated} "
            f"deleted={summary.deleted} conflicts={summary.conflicts} errors={summary.errors} "
            f"skipped={summary.skipped}"
        )
        return summary

    # ------------------------------------------------------------------
    # 读取阶段
    # ------------------------------------------------------------------

    def _load_state(self) -> SyncState:
        try:
            return self.state_store.load()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to load sync state: {e}") from e

    def _save_state(self, state: SyncState) -> None:
        try:
            self.state_store.save(state)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to save sync state: {e}") from e

    def _window(self, now: datetime) -> Tuple[datetime, datetime]:
        calendar_config = self.config.calendar
        return (
            now - timedelta(days=calendar_config.look_back_days),
            now + timedelta(days=calendar_config.look_ahead_days),
        )

    def _load_snapshot(self, mapping: SyncMapping, now: datetime) -> PassSnapshot:
        snapshot = PassSnapshot()
        window_start, window_end = self._window(now)

        events = self.calendar.list_events(window_start, window_end)
        rows = self.sheet.list_rows()
        logger.debug(f"Loaded {len(events)} calendar events and {len(rows)} sheet rows")

        for event in events:
            try:
                record = self.mapper.event_to_record(event)
            except (MalformedRecordError, ValidationError) as e:
                snapshot.errors += 1
                if event.get('id'):
                    snapshot.skip_ids.add(event['id'])
                logger.warning(f"Skipping calendar event {event.get('id')}: {e}")
                continue
            snapshot.calendar[record.id] = record

        sheet_ids = {str(row.get(EVENT_ID) or "").strip() for row in rows.values()}
        duplicates = set()

        for locator, row in rows.items():
            if not any(value not in (None, "", False) for value in row.values()):
                continue

            try:
                record = self.mapper.row_to_record(row, locator)
            except (MalformedRecordError, ValidationError) as e:
                snapshot.errors += 1
                raw_id = str(row.get(EVENT_ID) or "").strip()
                snapshot.skip_ids.add(raw_id or f"{PENDING_ID_PREFIX}{locator}")
                logger.warning(f"Skipping sheet row {locator}: {e}")
                continue

            if record.is_pending_id:
                # 上次创建日历事件后 ID 回写失败的行，按行定位符找回
                entry = mapping.find_by_sheet_locator(locator)
                if entry and entry.id not in sheet_ids:
                    record = replace(record, id=entry.id)
                    snapshot.write_back_ids.add(entry.id)

            if record.id in snapshot.sheet:
                snapshot.errors += 1
                duplicates.add(record.id)
                logger.warning(f"Duplicate Event ID {record.id} in sheet row {locator}")
                continue

            snapshot.sheet[record.id] = self._stamp(record, mapping.get(record.id), now)
            snapshot.sheet_locators[record.id] = locator

        snapshot.skip_ids |= duplicates

        for record_id, record in list(snapshot.sheet.items()):
            if record.is_pending_id or record_id in snapshot.calendar or record_id in snapshot.skip_ids:
                continue
            if not self._in_window(record, window_start, window_end):
                # 不在日历查询窗口内，无法判断是否已删除
                snapshot.skip_ids.add(record_id)
                continue
            self._confirm_missing_event(snapshot, record_id)

        return snapshot

    def _confirm_missing_event(self, snapshot: PassSnapshot, record_id: str) -> None:
        """
        表格中有、窗口查询中没有的事件，按 ID 再读取一次

        事件仍存在（被移出窗口）时加入日历端记录，只有确认不存在或已取消才按删除处理。
        """
        try:
            event = self.calendar.get_event(record_id)
        except (TransientIOError, PermanentIOError) as e:
            snapshot.errors += 1
            snapshot.skip_ids.add(record_id)
            logger.warning(f"Could not confirm calendar event {record_id}: {e}")
            return

        if event is None:
            return

        try:
            record = self.mapper.event_to_record(event)
        except (MalformedRecordError, ValidationError) as e:
            snapshot.errors += 1
            snapshot.skip_ids.add(record_id)
            logger.warning(f"Skipping calendar event {record_id}: {e}")
            return

        logger.debug(f"Calendar event {record_id} is outside the sync window")
        snapshot.calendar[record.id] = record

    def _stamp(self, record: SyncRecord, entry: Optional[MappingEntry], now: datetime) -> SyncRecord:
        """表格中内容已改但修改时间未更新的记录，以本次同步开始时间作为修改时间"""
        if not self.diff_engine.has_changed(Side.SHEET, record, entry):
            return record

        previous = entry.sheet_modified_at if entry else None
        if record.last_modified_at is None or (previous and record.last_modified_at <= previous):
            return replace(record, last_modified_at=now)
        return record

    def _in_window(self, record: SyncRecord, window_start: datetime, window_end: datetime) -> bool:
        start = self._as_datetime(record.start_at)
        end = self._as_datetime(record.end_at) or start
        if start is None:
            return True
        if record.recurrence_rule:
            # 重复事件的结束时间未知，只认开始时间在窗口内的
            return window_start <= start < window_end
        return end > window_start and start < window_end

    def _as_datetime(self, value: Optional[date]) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        return datetime.combine(value, datetime.min.time(), tzinfo=ZoneInfo(self.config.calendar.time_zone))

    # ------------------------------------------------------------------
    # 写入阶段
    # ------------------------------------------------------------------

    def _write_back_ops(self, calendar_result: ApplyResult, ops: List[ChangeOp],
                        snapshot: PassSnapshot) -> List[ChangeOp]:
        """为刚在日历创建的记录生成表格 Event ID 回写操作"""
        write_backs = []
        for outcome in calendar_result.succeeded:
            op, ack = outcome.op, outcome.ack
            if op.kind is not ChangeKind.CREATE_ON_CALENDAR or op.sheet_record is None:
                continue
            if ack.record_id == op.id:
                continue
            write_backs.append(self._write_back(ack.record_id, op.sheet_record))

        sheet_bound = {op.id for op in ops if op.target is Side.SHEET}
        for record_id in sorted(snapshot.write_back_ids - sheet_bound - snapshot.skip_ids):
            record = snapshot.sheet.get(record_id)
            if record is not None:
                write_backs.append(self._write_back(record_id, record))

        return write_backs

    @staticmethod
    def _write_back(record_id: str, sheet_record: SyncRecord) -> ChangeOp:
        return ChangeOp(
            id=record_id,
            kind=ChangeKind.UPDATE,
            source=Side.CALENDAR,
            target=Side.SHEET,
            record=replace(sheet_record, id=record_id, sync_status=SyncStatus.SYNCED),
            sheet_record=sheet_record,
        )

    def _apply_op(self, op: ChangeOp) -> WriteAck:
        if op.target is Side.CALENDAR:
            return self._write_calendar(op)
        return self._write_sheet(op)

    def _write_calendar(self, op: ChangeOp) -> WriteAck:
        if op.kind is ChangeKind.DELETE_ON_CALENDAR:
            self.calendar.delete_event(op.id)
            return WriteAck(record_id=op.id, locator=op.id)

        event = self.mapper.record_to_event(op.record)
        if op.kind is ChangeKind.CREATE_ON_CALENDAR:
            # 新事件由日历分配 ID
            event.pop('id', None)
            response = self.calendar.create_event(event)
        else:
            response = self.calendar.update_event(op.id, event)

        record = self.mapper.event_to_record(response)
        return WriteAck(record_id=record.id, locator=record.id, record=record)

    def _write_sheet(self, op: ChangeOp) -> WriteAck:
        locator = self._sheet_locator(op)

        if op.kind is ChangeKind.DELETE_ON_SHEET:
            if locator:
                self.sheet.clear_row(locator)
            return WriteAck(record_id=op.id, locator=locator)

        extensions = dict(op.sheet_record.extensions) if op.sheet_record else {}
        extensions.update(op.record.extensions)
        record = replace(op.record, extensions=extensions, sync_status=SyncStatus.SYNCED)

        row = self.mapper.record_to_row(record)
        target = None if op.kind is ChangeKind.CREATE_ON_SHEET else locator
        new_locator = self.sheet.write_row(target, row)
        return WriteAck(
            record_id=record.id,
            locator=new_locator,
            record=self.mapper.row_to_record(row, new_locator),
        )

    def _sheet_locator(self, op: ChangeOp) -> Optional[str]:
        locators = self._snapshot.sheet_locators
        if op.sheet_record and op.sheet_record.id in locators:
            return locators[op.sheet_record.id]
        if op.id in locators:
            return locators[op.id]
        entry = self._mapping.get(op.id)
        return entry.sheet_locator if entry else None

    # ------------------------------------------------------------------
    # 提交阶段
    # ------------------------------------------------------------------

    def _build_mapping(self, previous: SyncMapping, snapshot: PassSnapshot,
                       touched: Set[str], succeeded: List[OpOutcome]) -> SyncMapping:
        """
        根据本次观察到的两端状态与成功的操作生成新映射表

        失败或延后的操作不修改映射，下次同步重新计算。
        """
        mapping = previous.copy()

        # 两端一致且本次无操作的记录，刷新快照
        in_sync = (set(snapshot.calendar) & set(snapshot.sheet)) - touched - snapshot.skip_ids
        for record_id in in_sync:
            entry = mapping.get(record_id) or MappingEntry(id=record_id)
            entry.observe(Side.CALENDAR, snapshot.calendar[record_id], record_id)
            entry.observe(Side.SHEET, snapshot.sheet[record_id], snapshot.sheet_locators.get(record_id))
            entry.status = SyncStatus.SYNCED
            mapping.put(entry)

        # 两端都已不存在
        for record_id in mapping.ids():
            absent = record_id not in snapshot.calendar and record_id not in snapshot.sheet
            if absent and record_id not in snapshot.skip_ids:
                mapping.remove(record_id)

        for outcome in succeeded:
            op, ack = outcome.op, outcome.ack

            if op.kind.is_delete:
                mapping.retire(op.id)
                continue

            if op.target is Side.CALENDAR:
                self._commit_calendar_write(mapping, op, ack)
            else:
                self._commit_sheet_write(mapping, op, ack)

        return mapping

    def _commit_calendar_write(self, mapping: SyncMapping, op: ChangeOp, ack: WriteAck) -> None:
        entry = mapping.get(op.id)
        if ack.record_id != op.id:
            mapping.remove(op.id)
            entry = replace(entry, id=ack.record_id) if entry else None
        entry = entry or MappingEntry(id=ack.record_id)

        entry.observe(Side.CALENDAR, ack.record, ack.locator)
        if op.sheet_record is not None:
            entry.observe(Side.SHEET, op.sheet_record, self._sheet_locator(op))
        entry.status = SyncStatus.SYNCED
        mapping.put(entry)

    def _commit_sheet_write(self, mapping: SyncMapping, op: ChangeOp, ack: WriteAck) -> None:
        entry = mapping.get(op.id) or MappingEntry(id=op.id)

        entry.observe(Side.SHEET, ack.record, ack.locator)
        if op.calendar_record is not None:
            entry.observe(Side.CALENDAR, op.calendar_record, op.calendar_record.id)
        entry.status = SyncStatus.SYNCED
        mapping.put(entry)
