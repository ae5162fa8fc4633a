import os
import smtplib
import ssl
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Tried in order until one delivers.
TRANSPORT_PREFIXES = ("SMTP_PRIMARY", "SMTP_SECONDARY")
SMTP_TIMEOUT_SECONDS = 20


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SMTPTransport:
    name: str
    host: str
    port: int
    sender: str
    user: Optional[str] = None
    password: Optional[str] = None
    starttls: bool = True
    implicit_ssl: bool = False

    @classmethod
    def from_env(cls, prefix: str) -> Optional["SMTPTransport"]:
        host = os.environ.get(f"{prefix}_HOST")
        raw_port = os.environ.get(f"{prefix}_PORT")
        sender = os.environ.get(f"{prefix}_FROM")
        if not (host and raw_port and sender):
            return None
        try:
            port = int(raw_port)
        except ValueError as exc:
            raise RuntimeError(f"Invalid {prefix}_PORT: {raw_port}") from exc
        return cls(
            name=prefix,
            host=host,
            port=port,
            sender=sender,
            user=os.environ.get(f"{prefix}_USER"),
            password=os.environ.get(f"{prefix}_PASS"),
            starttls=_flag(os.environ.get(f"{prefix}_TLS"), default=True),
            implicit_ssl=_flag(os.environ.get(f"{prefix}_SSL"), default=False),
        )

    def _connect(self) -> smtplib.SMTP:
        if self.implicit_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context(), timeout=SMTP_TIMEOUT_SECONDS)
        server = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
        server.ehlo()
        if self.starttls:
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
        return server

    def deliver(self, message: EmailMessage) -> None:
        if message["From"] is None:
            message["From"] = self.sender
        with self._connect() as server:
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(message)


def configured_transports() -> List[SMTPTransport]:
    transports = []
    for prefix in TRANSPORT_PREFIXES:
        transport = SMTPTransport.from_env(prefix)
        if transport:
            transports.append(transport)
    return transports


def build_message(to_email: str, subject: str, html: str, text: str) -> EmailMessage:
    message = EmailMessage()
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


def send_email(to_email: str, subject: str, html: str, text: str) -> None:
    transports = configured_transports()
    if not transports:
        raise RuntimeError("No SMTP transport configured (set SMTP_PRIMARY_HOST/PORT/FROM)")

    last_error: Optional[Exception] = None
    for transport in transports:
        try:
            # Fresh message per attempt; From depends on the transport.
            transport.deliver(build_message(to_email, subject, html, text))
        except (smtplib.SMTPException, OSError) as exc:
            last_error = exc
            logger.warning("%s failed for %s: %s", transport.name, to_email, exc)
            continue
        if transport.name != TRANSPORT_PREFIXES[0]:
            logger.info("Email to %s sent via %s", to_email, transport.name)
        return
    raise RuntimeError(f"All SMTP transports failed for {to_email}") from last_error


def send_batch_background(messages: List[Tuple[str, str, str, str]], context: str = "email") -> Dict[str, int]:
    """Send ``(to_email, subject, html, text)`` tuples, logging failures.

    Runs as a FastAPI background task, so SMTP errors never reach the request.
    """
    sent = 0
    failed = 0
    for to_email, subject, html, text in messages:
        try:
            send_email(to_email, subject, html, text)
            sent += 1
        except Exception as exc:
            failed += 1
            logger.error("Failed to send %s to %s: %s", context, to_email, exc)
    if messages:
        logger.info("Sent %s %s message(s), %s failed", sent, context, failed)
    return {"sent": sent, "failed": failed}
