"""运维告警投递（AlertSink 端口的适配器）"""
from .sinks import LoggingAlertSink, TaskAlertSink, build_alert_sink


__all__ = [
    "LoggingAlertSink",
    "TaskAlertSink",
    "build_alert_sink",
]
