from datetime import timedelta

import pytest

import notifications
from application import IncomingFile
from config import Config, parse_duration
from notifications import EmailDeliveryError, SmtpNotifier, render_finding_overdue
from security import TokenError, create_token, decode_token, hash_password, verify_password
from storage import LocalFileStore, generate_unique_filename, sanitize_filename


# ---------------------------------------------------------------------------
# storage
# ---------------------------------------------------------------------------

def test_sanitize_filename():
    assert sanitize_filename("Survey Report (final).PDF") == "survey_report_final_.pdf"


def test_unique_filename_keeps_extension():
    name = generate_unique_filename("Hull Photo.JPG")
    assert name.startswith("hull_photo_")
    assert name.endswith(".jpg")
    assert generate_unique_filename("a.pdf") != generate_unique_filename("a.pdf")


def test_file_store_limits(tmp_path):
    store = LocalFileStore(str(tmp_path), max_file_size=10)
    store.validate(IncomingFile("ok.png", "image/png", b"12345"))

    with pytest.raises(ValueError, match="exceeds"):
        store.validate(IncomingFile("big.png", "image/png", b"x" * 11))
    with pytest.raises(ValueError, match="not allowed"):
        store.validate(IncomingFile("ok.png", "text/html", b"<html>"))


def test_file_store_save_resolve_delete(tmp_path):
    store = LocalFileStore(str(tmp_path), max_file_size=1024)
    stored = store.save("findings", IncomingFile("Evidence.pdf", "application/pdf", b"%PDF"))

    assert stored.file_path.startswith("/uploads/findings/evidence_")
    assert stored.file_size == 4
    on_disk = store.resolve(stored.file_path)
    assert on_disk.read_bytes() == b"%PDF"

    assert store.delete(stored.file_path) is True
    assert store.delete(stored.file_path) is False

    with pytest.raises(ValueError):
        store.resolve("/uploads/../../etc/passwd")


# ---------------------------------------------------------------------------
# security
# ---------------------------------------------------------------------------

def test_password_hashing():
    hashed = hash_password("s3cret-pass")
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("other", hashed)
    assert not verify_password("s3cret-pass", "plain-text-legacy")


def test_token_round_trip_and_tampering():
    token = create_token(5, "a@b.com", "A", "Admin", "k1", timedelta(minutes=5))
    claims = decode_token(token, "k1")
    assert claims["sub"] == 5
    assert claims["role"] == "Admin"

    with pytest.raises(TokenError):
        decode_token(token, "another-secret")


def test_expired_token():
    token = create_token(5, "a@b.com", "A", "Admin", "k1", timedelta(seconds=-1))
    with pytest.raises(TokenError, match="expired"):
        decode_token(token, "k1")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "text, expected",
    [("7d", timedelta(days=7)), ("12h", timedelta(hours=12)), ("30m", timedelta(minutes=30))],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


def test_database_url_built_from_parts(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("DB_USER", "audit")
    monkeypatch.setenv("DB_PASSWORD", "pw")
    monkeypatch.setenv("DB_NAME", "fleet")
    assert Config().DATABASE_URL == "mysql+pymysql://audit:pw@db.internal:3306/fleet"


# ---------------------------------------------------------------------------
# notifications
# ---------------------------------------------------------------------------

FINDING = {
    "finding_id": 12,
    "audit_reference": "AUD-26-00003",
    "category": "Major",
    "description": "<script>alert(1)</script>",
    "responsible_person": "Chief Engineer",
    "target_date": "2026-03-01",
    "days_overdue": 4,
}


def test_overdue_template_escapes_values():
    subject, html = render_finding_overdue(FINDING)
    assert subject == "Overdue Finding: #12"
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "Days Overdue:</strong> 4" in html


class FakeSMTP:
    instances = []
    extensions = {"starttls", "auth"}

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.messages = []
        self.commands = []
        self.logged_in = None
        self.features = set()
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        self.commands.append("EHLO")
        self.features = set(self.extensions)

    def has_extn(self, name):
        return name.lower() in self.features

    def starttls(self):
        self.commands.append("STARTTLS")
        self.features = set()

    def login(self, user, password):
        self.commands.append("AUTH")
        self.logged_in = user

    def send_message(self, msg):
        self.commands.append("DATA")
        self.messages.append(msg)


def test_smtp_notifier_sends_html(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(notifications.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setenv("EMAIL_USER", "mailer")
    monkeypatch.setenv("EMAIL_SECURE", "false")

    SmtpNotifier(Config()).finding_overdue("ops@fleet.com", FINDING)

    server = FakeSMTP.instances[-1]
    assert server.logged_in == "mailer"
    msg = server.messages[0]
    assert msg["To"] == "ops@fleet.com"
    assert msg["Subject"] == "Overdue Finding: #12"


def test_starttls_negotiated_before_login(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(notifications.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setenv("EMAIL_USER", "mailer")
    monkeypatch.setenv("EMAIL_SECURE", "false")

    SmtpNotifier(Config()).finding_overdue("ops@fleet.com", FINDING)

    assert FakeSMTP.instances[-1].commands == ["EHLO", "STARTTLS", "EHLO", "AUTH", "DATA"]


def test_smtp_failure_is_wrapped(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no route")

    monkeypatch.setattr(notifications.smtplib, "SMTP", refuse)
    monkeypatch.setenv("EMAIL_SECURE", "false")
    with pytest.raises(EmailDeliveryError):
        SmtpNotifier(Config()).upcoming_audit(
            "ops@fleet.com",
            {
                "audit_reference": "AUD-26-00001",
                "vessel_name": "MV Test",
                "audit_type": "ISM",
                "next_due_date": "2026-04-01",
                "days_remaining": 10,
            },
        )
