"""
批量写入测试
"""
import unittest
from unittest.mock import Mock

from calendar_sheet_sync.core.batch_writer import BatchWriter
from calendar_sheet_sync.core.errors import PermanentIOError, TransientIOError
from calendar_sheet_sync.core.models import ChangeKind, ChangeOp, Side, WriteAck


def make_ops(count: int):
    return [
        ChangeOp(id=f"e{i}", kind=ChangeKind.CREATE_ON_SHEET, source=Side.CALENDAR, target=Side.SHEET)
        for i in range(count)
    ]


def ack(op: ChangeOp) -> WriteAck:
    return WriteAck(record_id=op.id, locator=f"loc-{op.id}")


class TestBatchWriter(unittest.TestCase):
    """批量写入器测试"""

    def setUp(self):
        self.sleep = Mock()

    def test_all_succeed(self):
        """测试全部成功"""
        writer = BatchWriter(ack, batch_size=2, sleep=self.sleep)

        result = writer.apply(make_ops(5), Side.SHEET)

        self.assertEqual([o.op.id for o in result.succeeded], ["e0", "e1", "e2", "e3", "e4"])
        self.assertEqual(result.succeeded[0].ack.locator, "loc-e0")
        self.assertEqual(result.failed, [])
        self.assertEqual(result.deferred, [])
        self.sleep.assert_not_called()

    def test_failure_isolated_to_one_op(self):
        """测试单个失败不影响其他操作"""
        def sink(op):
            if op.id == "e1":
                raise PermanentIOError("row not found")
            return ack(op)

        result = BatchWriter(sink, sleep=self.sleep).apply(make_ops(3))

        self.assertEqual([o.op.id for o in result.succeeded], ["e0", "e2"])
        self.assertEqual(result.failed_ids, ["e1"])
        self.assertEqual(result.failed[0].error, "row not found")
        self.sleep.assert_not_called()

    def test_transient_error_retried_with_backoff(self):
        """测试可重试错误按指数退避重试"""
        sink = Mock(side_effect=[TransientIOError("429"), TransientIOError("429"), WriteAck(record_id="e0")])
        writer = BatchWriter(sink, max_retries=3, retry_delay=0.5, sleep=self.sleep)

        result = writer.apply(make_ops(1))

        self.assertEqual(len(result.succeeded), 1)
        self.assertEqual(sink.call_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [0.5, 1.0])

    def test_retries_exhausted(self):
        """测试超过重试次数后记为失败"""
        sink = Mock(side_effect=TransientIOError("service unavailable"))
        writer = BatchWriter(sink, max_retries=2, retry_delay=1.0, sleep=self.sleep)

        result = writer.apply(make_ops(1))

        self.assertEqual(result.failed_ids, ["e0"])
        self.assertEqual(sink.call_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [1.0, 2.0])

    def test_unexpected_exception_recorded(self):
        """测试意外异常只影响当前操作"""
        sink = Mock(side_effect=[KeyError("start"), WriteAck(record_id="e1")])

        result = BatchWriter(sink, sleep=self.sleep).apply(make_ops(2))

        self.assertEqual(result.failed_ids, ["e0"])
        self.assertEqual(result.failed[0].error, "KeyError: 'start'")
        self.assertEqual(len(result.succeeded), 1)

    def test_deadline_defers_remaining_batches(self):
        """测试超过截止时间后剩余批次延后"""
        clock = Mock(side_effect=[0.0, 5.0, 11.0])
        writer = BatchWriter(ack, batch_size=2, sleep=self.sleep, clock=clock)

        result = writer.apply(make_ops(5), deadline=10.0)

        self.assertEqual(len(result.succeeded), 4)
        self.assertEqual([op.id for op in result.deferred], ["e4"])

    def test_empty_ops(self):
        """测试空操作列表"""
        sink = Mock()

        result = BatchWriter(sink).apply([])

        self.assertEqual(result.succeeded, [])
        sink.assert_not_called()


if __name__ == '__main__':
    unittest.main()
