"""Celery beat schedule configuration (optional).

Add entries here for periodic jobs, e.g. re-polling orders whose gateway
does not send reliable callbacks.
"""
from __future__ import annotations

CELERY_BEAT_SCHEDULE = {
    # "poll-order-status": {
    #     "task": "payments.poll_status",
    #     "schedule": 900,  # every 15 minutes
    #     "kwargs": {"order_id": "ORDER-1"},
    # },
}
