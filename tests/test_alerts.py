import pytest

from core.settings import AlertSettings, gateway_settings
from infrastructure.external.alerts import LoggingAlertSink, TaskAlertSink, build_alert_sink
from infrastructure.tasks.tasks import payments as payment_tasks


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send_payment_alert(self, subject, message, *, recipient=None, context=None):
        if self.fail:
            raise ConnectionError("broker down")
        self.sent.append((subject, message, recipient, context))


@pytest.mark.asyncio
async def test_task_sink_dispatches_with_string_context():
    dispatcher = RecordingDispatcher()
    sink = TaskAlertSink(dispatcher, recipient="ops@example.com")

    await sink.send_alert("Mismatch", "details", order_id="ORDER-1", attempt=2, provider=None)

    assert dispatcher.sent == [("Mismatch", "details", "ops@example.com", {"order_id": "ORDER-1", "attempt": "2"})]


@pytest.mark.asyncio
async def test_task_sink_never_raises():
    sink = TaskAlertSink(RecordingDispatcher(fail=True))
    await sink.send_alert("Mismatch", "details", order_id="ORDER-1")


@pytest.mark.asyncio
async def test_disabled_sinks_do_nothing():
    dispatcher = RecordingDispatcher()
    await TaskAlertSink(dispatcher, enabled=False).send_alert("s", "m")
    await LoggingAlertSink(enabled=False).send_alert("s", "m")
    assert dispatcher.sent == []


def test_build_alert_sink_depends_on_broker():
    assert isinstance(build_alert_sink(AlertSettings(), broker_url=None), LoggingAlertSink)
    sink = build_alert_sink(AlertSettings(recipient="ops@example.com"), broker_url="redis://localhost:6379/0")
    assert isinstance(sink, TaskAlertSink)


def test_send_alert_without_smtp_only_logs(monkeypatch):
    monkeypatch.setattr(gateway_settings.alerts, "smtp_host", None)
    assert payment_tasks.send_alert.run("Mismatch", "details", recipient="ops@example.com") is False


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.started_tls = False
        self.login_args = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, mail):
        self.messages.append(mail)


def test_send_alert_mails_operator(monkeypatch):
    FakeSMTP.instances = []
    alerts = gateway_settings.alerts
    monkeypatch.setattr(alerts, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(alerts, "smtp_port", 587)
    monkeypatch.setattr(alerts, "smtp_starttls", True)
    monkeypatch.setattr(alerts, "smtp_user", "paygate")
    monkeypatch.setattr(alerts, "smtp_password", "pw")
    monkeypatch.setattr(alerts, "recipient", "ops@example.com")
    monkeypatch.setattr(payment_tasks.smtplib, "SMTP", FakeSMTP)

    sent = payment_tasks.send_alert.run(
        "Payment amount mismatch for order ORDER-1",
        "buckaroo reported 4.99 EUR",
        context={"order_id": "ORDER-1"},
    )

    assert sent is True
    (smtp,) = FakeSMTP.instances
    assert (smtp.host, smtp.port) == ("smtp.example.com", 587)
    assert smtp.started_tls
    assert smtp.login_args == ("paygate", "pw")
    (mail,) = smtp.messages
    assert mail["To"] == "ops@example.com"
    assert mail["Subject"] == "[paygate] Payment amount mismatch for order ORDER-1"
    assert "order_id: ORDER-1" in mail.get_content()


def test_task_log_context_picks_order_id():
    from infrastructure.tasks.utils.base_task import _order_id

    assert _order_id((), {"order_id": "ORDER-1"}) == "ORDER-1"
    assert _order_id(("Mismatch", "details"), {"context": {"order_id": "ORDER-2"}}) == "ORDER-2"
    assert _order_id(("ORDER-3",), {}) is None
