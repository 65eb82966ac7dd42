"""Common base task for payment Celery jobs"""
from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


def _order_id(args, kwargs) -> Optional[str]:
    """Order id of a task call, from `order_id` or the alert context."""
    if kwargs and kwargs.get("order_id"):
        return kwargs["order_id"]
    context = (kwargs or {}).get("context") or {}
    if context.get("order_id"):
        return context["order_id"]
    return None


class BaseTask(Task):
    """Binds the task and order to the log context and logs the task lifecycle."""

    def __call__(self, *args, **kwargs):
        order_id = _order_id(args, kwargs)
        bound: Dict[str, Any] = {"task_name": self.name}
        if order_id:
            bound["order_id"] = order_id
        with structlog.contextvars.bound_contextvars(**bound):
            return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        """Emit a structured error before the default Celery handling."""
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            order_id=_order_id(args, kwargs),
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            order_id=_order_id(args, kwargs),
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            order_id=_order_id(args, kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)
