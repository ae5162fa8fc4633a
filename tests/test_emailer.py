import smtplib

import pytest

import emailer
import utils


def _configure(monkeypatch, prefix, host):
    monkeypatch.setenv(f"{prefix}_HOST", host)
    monkeypatch.setenv(f"{prefix}_PORT", "587")
    monkeypatch.setenv(f"{prefix}_FROM", f"events@{host}")


def test_transport_requires_host_port_and_sender(monkeypatch):
    monkeypatch.setenv("SMTP_PRIMARY_HOST", "mail.example.com")
    monkeypatch.delenv("SMTP_PRIMARY_PORT", raising=False)
    assert emailer.SMTPTransport.from_env("SMTP_PRIMARY") is None

    monkeypatch.setenv("SMTP_PRIMARY_PORT", "not-a-port")
    monkeypatch.setenv("SMTP_PRIMARY_FROM", "events@example.com")
    with pytest.raises(RuntimeError, match="Invalid SMTP_PRIMARY_PORT"):
        emailer.SMTPTransport.from_env("SMTP_PRIMARY")


def test_send_email_without_transports_raises(monkeypatch):
    for prefix in emailer.TRANSPORT_PREFIXES:
        monkeypatch.delenv(f"{prefix}_HOST", raising=False)
    with pytest.raises(RuntimeError, match="No SMTP transport configured"):
        emailer.send_email("a@example.com", "Hi", "<p>Hi</p>", "Hi")


def test_send_email_fails_over_to_secondary(monkeypatch):
    _configure(monkeypatch, "SMTP_PRIMARY", "primary.example.com")
    _configure(monkeypatch, "SMTP_SECONDARY", "backup.example.com")
    delivered = []

    def fake_deliver(self, message):
        if self.name == "SMTP_PRIMARY":
            raise smtplib.SMTPServerDisconnected("gone")
        message["From"] = self.sender
        delivered.append((self.name, message["To"], message["From"]))

    monkeypatch.setattr(emailer.SMTPTransport, "deliver", fake_deliver)
    emailer.send_email("a@example.com", "Hi", "<p>Hi</p>", "Hi")
    assert delivered == [("SMTP_SECONDARY", "a@example.com", "events@backup.example.com")]


def test_batch_counts_failures(monkeypatch):
    def flaky(to_email, subject, html, text):
        if to_email.startswith("bad"):
            raise RuntimeError("boom")

    monkeypatch.setattr(emailer, "send_email", flaky)
    result = emailer.send_batch_background(
        [("good@example.com", "s", "h", "t"), ("bad@example.com", "s", "h", "t")],
        "test",
    )
    assert result == {"sent": 1, "failed": 1}


def test_download_url_only_presigns_bucket_urls(monkeypatch):
    monkeypatch.setattr(utils, "S3_BUCKET_NAME", "thittam-files")
    assert utils._bucket_key("https://thittam-files.s3.ap-south-1.amazonaws.com/materials/a%20b.pdf") == "materials/a b.pdf"
    assert utils._bucket_key("https://other.s3.amazonaws.com/x.pdf") is None
    assert utils._bucket_key(None) is None
    assert utils.generate_download_url("https://cdn.example.com/x.pdf") == "https://cdn.example.com/x.pdf"
