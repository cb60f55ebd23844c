"""
Tests for the outgoing mailer.
"""
import smtplib

from finops_api.core import mailer as mailer_module
from finops_api.core.mailer import Mailer


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def send_message(self, message):
        self.messages.append(message)


class FailingSMTP(FakeSMTP):

    def send_message(self, message):
        raise smtplib.SMTPRecipientsRefused({"a@b.com": (550, b"no")})


class TestMailer:

    def test_smtp_delivery(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
        mailer = Mailer(host="smtp.example.com", port=2525, username="bot", password="pw", sender="ops@finops.app")

        sent = mailer.send(
            ["a@b.com", " a@b.com ", "c@d.com", ""],
            "Weekly report",
            "See attached.",
            attachments=[("report.csv", b"id,name\n", "text/csv")]
        )

        assert sent is True
        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
        assert smtp.calls == ["starttls", ("login", "bot")]
        message = smtp.messages[0]
        assert message["To"] == "a@b.com, c@d.com"
        assert message["From"] == "ops@finops.app"
        attachment = next(message.iter_attachments())
        assert attachment.get_filename() == "report.csv"
        assert attachment.get_content_type() == "text/csv"

    def test_delivery_failure_returns_false(self, monkeypatch):
        monkeypatch.setattr(mailer_module.smtplib, "SMTP", FailingSMTP)

        assert Mailer(host="smtp.example.com").send(["a@b.com"], "Hi", "Body") is False

    def test_outbox_without_smtp(self, monkeypatch):
        monkeypatch.setattr(mailer_module.smtplib, "SMTP", FailingSMTP)

        assert Mailer().send(["a@b.com"], "Hi", "Body") is True

    def test_sensitive_mail_dropped_in_production(self, monkeypatch):
        monkeypatch.setattr(mailer_module.settings, "ENVIRONMENT", "production")

        assert Mailer().send(["a@b.com"], "Reset", "token=secret", sensitive=True) is False
        assert Mailer().send(["a@b.com"], "Report", "hello") is True

    def test_no_recipients(self):
        assert Mailer().send([], "Hi", "Body") is False
