"""
批量写入器
"""
import time
from typing import Callable, List, Optional

from loguru import logger

from .errors import PermanentIOError, TransientIOError
from .models import ApplyResult, ChangeOp, OpOutcome, Side, WriteAck


Sink = Callable[[ChangeOp], WriteAck]


class BatchWriter:
    """
    分批执行写入操作

    可重试错误按指数退避重试；其他错误只影响当前操作，不中断批次。
    """

    def __init__(self, sink: Sink, batch_size: int = 100, max_retries: int = 3,
                 retry_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.sink = sink
        self.batch_size = max(1, batch_size)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.clock = clock

    def apply(self, ops: List[ChangeOp], target: Optional[Side] = None,
              deadline: Optional[float] = None) -> ApplyResult:
        """
        执行操作列表

        Args:
            ops: 待执行操作
            target: 写入的一端，仅用于日志
            deadline: 单调时钟截止时间，批次之间检查，超时的剩余操作延后到下次同步
        """
        result = ApplyResult()
        label = target.value if target else "mixed"

        for start in range(0, len(ops), self.batch_size):
            if deadline is not None and self.clock() >= deadline:
                result.deferred.extend(ops[start:])
                logger.warning(f"Time budget exhausted, deferred {len(ops) - start} {label} operations")
                break

            batch = ops[start:start + self.batch_size]
            logger.debug(f"Applying batch of {len(batch)} {label} operations")
            for op in batch:
                outcome = self._apply_one(op)
                if outcome.error is None:
                    result.succeeded.append(outcome)
                else:
                    result.failed.append(outcome)

        if ops:
            logger.info(
                f"Applied {len(result.succeeded)}/{len(ops)} {label} operations "
                f"({len(result.failed)} failed, {len(result.deferred)} deferred)"
            )
        return result

    def _apply_one(self, op: ChangeOp) -> OpOutcome:
        attempt = 0
        while True:
            try:
                ack = self.sink(op)
                return OpOutcome(op=op, ack=ack)
            except TransientIOError as e:
                if attempt >= self.max_retries:
                    logger.error(f"Giving up on {op.describe()} after {attempt + 1} attempts: {e}")
                    return OpOutcome(op=op, error=str(e))
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(f"Retrying {op.describe()} in {delay:.2f}s: {e}")
                self.sleep(delay)
                attempt += 1
            except PermanentIOError as e:
                logger.error(f"Failed {op.describe()}: {e}")
                return OpOutcome(op=op, error=str(e))
            except Exception as e:
                logger.error(f"Unexpected error on {op.describe()}: {e}")
                return OpOutcome(op=op, error=f"{type(e).__name__}: {e}")
