import smtplib

from communityhub.service.email import EmailNotifier, redact_email


def test_redact_email():
    assert redact_email("jonathan@example.com") == "jo***@example.com"
    assert redact_email("nonsense") == "redacted"


def test_unconfigured_notifier_logs_instead_of_sending(monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("SMTP must not be used")

    monkeypatch.setattr(smtplib, "SMTP", _fail)
    notifier = EmailNotifier()
    assert not notifier.is_configured
    assert notifier.send_otp("jo@x.com", "123456") is True


class _RecordingSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.messages = []
        self.started_tls = False
        self.logged_in = None
        _RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, sender, recipient, body):
        self.messages.append((sender, recipient, body))


def _notifier():
    return EmailNotifier(
        smtp_host="smtp.example.com",
        smtp_user="mailer@example.com",
        smtp_password="pw",
        from_email="noreply@example.com",
    )


def test_send_otp_over_starttls(monkeypatch):
    _RecordingSMTP.instances = []
    monkeypatch.setattr(smtplib, "SMTP", _RecordingSMTP)
    assert _notifier().send_otp("jo@x.com", "654321", ttl_minutes=10) is True

    server = _RecordingSMTP.instances[0]
    assert server.host == "smtp.example.com"
    assert server.started_tls
    assert server.logged_in == ("mailer@example.com", "pw")
    sender, recipient, body = server.messages[0]
    assert sender == "noreply@example.com"
    assert recipient == "jo@x.com"
    assert "Your password reset OTP" in body
    assert "654321" in body


def test_smtp_failure_returns_false(monkeypatch):
    class _Refusing(_RecordingSMTP):
        def sendmail(self, sender, recipient, body):
            raise smtplib.SMTPException("mailbox unavailable")

    monkeypatch.setattr(smtplib, "SMTP", _Refusing)
    assert _notifier().send_otp("jo@x.com", "654321") is False


def test_connection_failure_returns_false(monkeypatch):
    def _refused(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(smtplib, "SMTP", _refused)
    assert _notifier().send_otp("jo@x.com", "654321") is False
