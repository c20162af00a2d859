import smtplib

import pytest

from jewel_analysis import mailer
from jewel_analysis.errors import EmailDispatchError
from jewel_analysis.mailer import SmtpConfig, send_batch_report

BATCH = {"batch_number": 2, "manufacturer_name": "Atelier", "created_at": "2026-03-01T10:00:00+00:00"}
RECORDS = [
    {
        "product_code": "R-1",
        "product_type": "ring",
        "total_grams": 5.0,
        "gold_purity": "18",
        "raw_material_cost": 7500.0,
        "labor_cost": 300.0,
        "total_stone_cost": 3000.0,
        "total_setting_cost": 120.0,
        "polish_cost": 0.0,
        "certificate_cost": 0.0,
        "total_cost": 10920.0,
        "manufacturer_price_base": 12000.0,
        "profit_loss": 1080.0,
    }
]
CONFIG = SmtpConfig(host="smtp.example.com", port=2525, username="mailer", password="pw", sender="reports@example.com")


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username, password))

    def send_message(self, message):
        self.sent.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_sends_report_with_attachments(fake_smtp):
    send_batch_report(BATCH, RECORDS, ["owner@example.com", "cc@example.com"], CONFIG, currency="TRY")

    [smtp] = fake_smtp.instances
    assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
    assert smtp.calls == ["starttls", ("login", "mailer", "pw")]

    [message] = smtp.sent
    assert message["To"] == "owner@example.com"
    assert message["Cc"] == "cc@example.com"
    assert message["Subject"] == "Cost analysis: Atelier - Batch #2"
    assert [part.get_filename() for part in message.iter_attachments()] == ["batch-2.csv", "batch-2.pdf"]


def test_missing_host_or_recipients(fake_smtp):
    with pytest.raises(EmailDispatchError, match="SMTP_HOST"):
        send_batch_report(BATCH, RECORDS, ["owner@example.com"], SmtpConfig(host=""))

    with pytest.raises(EmailDispatchError, match="recipients"):
        send_batch_report(BATCH, RECORDS, ["", None], CONFIG)

    assert fake_smtp.instances == []


def test_smtp_failure_is_wrapped(monkeypatch):
    class RefusingSMTP(FakeSMTP):
        def send_message(self, message):
            raise smtplib.SMTPRecipientsRefused({"owner@example.com": (550, b"no such user")})

    monkeypatch.setattr(mailer.smtplib, "SMTP", RefusingSMTP)

    with pytest.raises(EmailDispatchError, match="Could not send"):
        send_batch_report(BATCH, RECORDS, ["owner@example.com"], CONFIG)


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "mail.example.com")
    monkeypatch.setenv("SMTP_PORT", "465x")
    monkeypatch.setenv("SMTP_USERNAME", "user@example.com")
    monkeypatch.setenv("SMTP_USE_TLS", "false")
    monkeypatch.delenv("SMTP_FROM", raising=False)
    monkeypatch.delenv("SMTP_PASSWORD", raising=False)

    config = SmtpConfig.from_env()

    assert config == SmtpConfig(
        host="mail.example.com",
        port=587,
        username="user@example.com",
        password="",
        sender="user@example.com",
        use_tls=False,
    )
