"""
告警投递实现

- LoggingAlertSink: 只写结构化日志，未配置消息队列时使用
- TaskAlertSink: 通过 Celery 任务异步投递邮件，调用方不等待
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from core.logging_config import get_logger
from core.settings import AlertSettings

logger = get_logger(__name__)


class LoggingAlertSink:
    """把告警写入日志（error 级别，便于日志平台报警）"""

    def __init__(self, *, enabled: bool = True):
        self._enabled = enabled

    async def send_alert(self, subject: str, message: str, **context: Any) -> None:
        if not self._enabled:
            return
        logger.error("payment_alert", subject=subject, message=message, **context)


class TaskAlertSink:
    """通过任务分发器投递告警；投递失败只记录日志，不影响支付流程"""

    def __init__(self, dispatcher: Any, *, recipient: Optional[str] = None, enabled: bool = True):
        self._dispatcher = dispatcher
        self._recipient = recipient
        self._enabled = enabled

    async def send_alert(self, subject: str, message: str, **context: Any) -> None:
        if not self._enabled:
            return
        logger.warning("payment_alert_dispatched", subject=subject, **context)
        try:
            # send_task 会阻塞在 broker 连接上，放到线程中执行
            await asyncio.to_thread(
                self._dispatcher.send_payment_alert,
                subject,
                message,
                recipient=self._recipient,
                context={k: str(v) for k, v in context.items() if v is not None},
            )
        except Exception as e:
            logger.error("payment_alert_dispatch_failed", subject=subject, error=str(e), **context)


def build_alert_sink(alerts: AlertSettings, *, broker_url: Optional[str]) -> LoggingAlertSink | TaskAlertSink:
    """有 broker 时走任务队列，否则退化为日志告警"""
    if broker_url:
        from infrastructure.tasks import TaskDispatcher

        return TaskAlertSink(TaskDispatcher(), recipient=alerts.recipient, enabled=alerts.enabled)
    return LoggingAlertSink(enabled=alerts.enabled)
