"""Dispatcher facade and base task shared by the payment tasks."""
from .dispatcher import TaskDispatcher
from .base_task import BaseTask

__all__ = ["TaskDispatcher", "BaseTask"]
