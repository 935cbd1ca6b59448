"""
Utility functions for the EventHub backend.

Currently hosts the low-level SMTP sender used by the notification
dispatcher: retries with exponential backoff and a development fallback that
logs the message when no SMTP server is configured.
"""
import asyncio  # for to_thread and sleep
import email.utils
import logging
import smtplib
import uuid
from email.message import EmailMessage
from typing import Mapping, Sequence

from .settings import get_settings

logger = logging.getLogger("email")


async def send_email(
    *,
    to: Sequence[str] | str,
    subject: str,
    body: str,
    from_address: str | None = None,
    headers: Mapping[str, str] | None = None,
    category: str = "generic",
) -> bool:
    """Low-level reusable email sender with retry & console fallback.

    Args:
        to: Recipient email address or a sequence of addresses.
        subject: Subject line of the email.
        body: Plain text body of the email.
        from_address: Sender address. Defaults to SMTP_FROM_ADDRESS.
        headers: Additional headers; From/To/Subject overrides are ignored.
        category: Tag used for logging and the X-EH-Category header.

    Returns:
        True if an SMTP delivery attempt reported success or SMTP is not
        configured (dev fallback), False once all retries failed.

    Raises:
        ValueError: If no recipients are provided.
    """
    if isinstance(to, str):
        recipients = [to]
    else:
        recipients = list(to)
    if not recipients:
        raise ValueError("No recipients provided")

    settings = get_settings()
    smtp_host = settings.smtp_host
    smtp_port = settings.smtp_port
    from_addr = from_address or settings.smtp_from
    max_retries = settings.smtp_max_retries

    def _build_message() -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)
        msg["Date"] = email.utils.formatdate(localtime=True)
        try:
            from_domain = from_addr.split('@', 1)[1]
        except (IndexError, AttributeError):
            from_domain = 'eventhub.local'
        msg["Message-ID"] = f"<{uuid.uuid4().hex}@{from_domain}>"
        msg["X-EH-Category"] = category
        if headers:
            for k, v in headers.items():
                if k.lower() in {"from", "to", "subject"}:
                    continue
                msg[k] = v
        return msg

    def _send_once():
        msg = _build_message()
        smtp_cls = smtplib.SMTP_SSL if smtp_port == 465 else smtplib.SMTP
        try:
            with smtp_cls(smtp_host, smtp_port, timeout=settings.smtp_timeout_seconds) as server:
                server.ehlo()
                if smtp_cls is smtplib.SMTP and settings.smtp_use_tls:
                    server.starttls()
                    server.ehlo()
                if settings.smtp_user and settings.smtp_pass:
                    server.login(settings.smtp_user, settings.smtp_pass)
                refused = server.send_message(msg, from_addr=settings.smtp_user or from_addr, to_addrs=recipients)
                if refused:
                    logger.warning("email.partial_failure refused=%s", refused)
            return True, None
        except (smtplib.SMTPException, OSError) as exc:
            return False, exc

    if not (smtp_host and smtp_port):
        logger.info("email.dev_fallback category=%s to=%s subject=%s\n%s", category, recipients, subject, body)
        return True

    attempt = 0
    last_exc = None
    while attempt <= max_retries:
        attempt += 1
        ok, exc = await asyncio.to_thread(_send_once)
        if ok:
            logger.info("email.sent category=%s to=%s attempt=%d", category, recipients, attempt)
            return True
        last_exc = exc
        if attempt > max_retries:
            break
        backoff = min(2 ** (attempt - 1), 8)
        logger.warning("email.retry category=%s attempt=%d error=%r backoff=%ss", category, attempt, exc, backoff)
        await asyncio.sleep(backoff)
    logger.error("email.failed category=%s to=%s attempts=%d error=%r", category, recipients, attempt, last_exc)
    return False
