"""
同步结果记录与告警
"""
import json
import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from loguru import logger

from ..config.config import MonitorConfig
from ..core.models import PassStatus, PassSummary


class SyncReporter:
    """记录每次同步的汇总、错误日志，并在出错时发送告警"""

    def __init__(self, config: MonitorConfig, clock: Callable[[], datetime] = datetime.now):
        self.config = config
        self.clock = clock
        self._lock = threading.Lock()

        # 按结果统计的同步次数
        self.pass_counters: Dict[str, int] = defaultdict(int)

        # 累计变更数
        self.totals: Dict[str, int] = defaultdict(int)

        # 错误记录，超出上限时丢弃最早的
        self.errors = deque(maxlen=max(1, config.max_log_entries))

        self.last_summary: Optional[PassSummary] = None
        self.start_time = clock()

    def record_pass(self, summary: PassSummary) -> None:
        """记录一次同步结果，失败或有错误时按配置发送告警"""
        with self._lock:
            self.last_summary = summary
            self.pass_counters[summary.status.value] += 1
            for name in ('created', 'updated', 'deleted', 'conflicts', 'errors', 'skipped'):
                self.totals[name] += getattr(summary, name)

        if summary.status is PassStatus.FAILED:
            self.record_error('sync_pass', summary.error or "unknown error")
        elif summary.failed_ids:
            self.record_error('sync_write', f"Failed records: {', '.join(summary.failed_ids)}")

        if self.config.notify_on_error and (summary.status is PassStatus.FAILED or summary.errors):
            self.send_alert(
                'ERROR' if summary.status is PassStatus.FAILED else 'WARNING',
                f"Calendar sync {summary.direction} pass {summary.status.value}",
                summary.to_dict(),
            )

    def record_error(self, error_type: str, error: Union[str, Exception]) -> None:
        """记录错误"""
        message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        with self._lock:
            self.errors.append({
                'type': error_type,
                'message': message,
                'timestamp': self.clock().isoformat()
            })

    def get_error_log(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """获取错误日志，最新的在最后"""
        with self._lock:
            entries = list(self.errors)
        return entries[-limit:] if limit else entries

    def get_metrics(self) -> Dict[str, Any]:
        """获取统计信息"""
        with self._lock:
            return {
                'uptime_seconds': (self.clock() - self.start_time).total_seconds(),
                'passes': dict(self.pass_counters),
                'totals': dict(self.totals),
                'last_pass': self.last_summary.to_dict() if self.last_summary else None,
                'recent_errors': list(self.errors)[-10:],
                'timestamp': self.clock().isoformat()
            }

    def send_alert(self, alert_type: str, message: str, details: Optional[Dict] = None) -> bool:
        """发送告警，返回是否发送成功"""
        if not self.config.alert_webhook:
            return False

        if 'open.feishu.cn' in self.config.alert_webhook:
            # 飞书机器人格式
            payload = {
                "msg_type": "text",
                "content": {
                    "text": f"【{alert_type}】{message}\n{json.dumps(details or {}, ensure_ascii=False, indent=2)}"
                }
            }
        else:
            payload = {
                'type': alert_type,
                'message': message,
                'details': details or {},
                'timestamp': self.clock().isoformat(),
                'service': 'calendar_sheet_sync'
            }

        try:
            response = requests.post(self.config.alert_webhook, json=payload, timeout=5)
        except requests.RequestException as e:
            logger.error(f"Error sending alert: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Failed to send alert: {response.text}")
            return False
        return True
