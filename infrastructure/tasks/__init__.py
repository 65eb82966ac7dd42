"""Celery task infrastructure for payments.

Importing this module wires the configured Celery app and the dispatcher
that the alert sink uses to hand operator alerts to the worker.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
