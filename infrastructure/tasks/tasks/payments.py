"""Payment related Celery tasks: operator alerts and status polling."""
from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import gateway_settings
from domain.common.exceptions import OrderPaymentNotFoundException

logger = get_logger(__name__)


def _build_message(subject: str, body: str, sender: str, recipient: str, context: Dict[str, str]) -> EmailMessage:
    mail = EmailMessage()
    mail["Subject"] = f"[paygate] {subject}"
    mail["From"] = sender
    mail["To"] = recipient
    lines = [body, ""]
    lines.extend(f"{key}: {value}" for key, value in sorted(context.items()))
    mail.set_content("\n".join(lines))
    return mail


@shared_task(
    name="payments.send_alert",
    bind=True,
    base=BaseTask,
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_alert(
    self,
    subject: str,
    message: str,
    recipient: Optional[str] = None,
    context: Optional[Dict[str, str]] = None,
) -> bool:
    """Mail an integrity alert to the operator mailbox.

    Without an SMTP host the alert is only logged. Returns whether a mail
    was handed to the SMTP server.
    """
    config = gateway_settings.alerts
    context = context or {}
    to = recipient or config.recipient
    logger.error("payment_alert", subject=subject, message=message, context=context)

    if not config.smtp_host or not to:
        logger.info("payment_alert_mail_skipped", subject=subject, has_recipient=bool(to))
        return False

    mail = _build_message(subject, message, config.sender, to, context)
    with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=config.smtp_timeout) as smtp:
        if config.smtp_starttls:
            smtp.starttls()
        if config.smtp_user:
            smtp.login(config.smtp_user, config.smtp_password or "")
        smtp.send_message(mail)
    logger.info("payment_alert_mailed", subject=subject, recipient=to)
    return True


async def _refresh_status(order_id: str, attempts: Optional[int]) -> Dict[str, Any]:
    from infrastructure.bootstrap import build_gateways, build_payment_service, close_gateways
    from infrastructure.database import engine
    from infrastructure.external.cache import shutdown_redis_client

    gateways = build_gateways()
    try:
        service = await build_payment_service(gateways=gateways)
        response = await service.refresh_status(order_id, attempts=attempts)
        return response.model_dump(mode="json")
    finally:
        # each task run owns its event loop; nothing may outlive it
        await close_gateways(gateways)
        await shutdown_redis_client()
        await engine.dispose()


@shared_task(name="payments.poll_status", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def poll_status(self, order_id: str, attempts: Optional[int] = None) -> Dict[str, Any]:
    """Refresh one order's status from its gateway and apply the result."""
    try:
        response = asyncio.run(_refresh_status(order_id, attempts))
    except OrderPaymentNotFoundException:
        logger.warning("payment_status_poll_order_not_found", order_id=order_id)
        return {"order_id": order_id, "outcome": "not_found"}
    except Exception as exc:
        logger.error("payment_status_poll_failed", order_id=order_id, error=str(exc))
        raise self.retry(exc=exc)

    logger.info(
        "payment_status_polled",
        order_id=order_id,
        outcome=response["result"]["outcome"],
        state=response.get("state"),
        apply_outcome=response.get("apply_outcome"),
    )
    return response
