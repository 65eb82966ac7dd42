"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Dict, Optional

from ..config.celery import celery_app


SEND_ALERT_TASK = "payments.send_alert"


class TaskDispatcher:
    """Internal facade used by the alert sink to schedule tasks."""

    def send_payment_alert(
        self,
        subject: str,
        message: str,
        *,
        recipient: Optional[str] = None,
        context: Dict[str, str] | None = None,
    ) -> None:
        """Fire-and-forget operator alert; delivery happens in the worker."""
        celery_app.send_task(
            SEND_ALERT_TASK,
            kwargs={"subject": subject, "message": message, "recipient": recipient, "context": context or {}},
        )
