import logging
import smtplib
import uuid
from email.message import EmailMessage

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.types import utcnow
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)

SEND_ERRORS = (OSError, smtplib.SMTPException, requests.RequestException, RuntimeError)


def queue_email(db: Session, to_email: str, subject: str, body: str, related_request_ref: str = "") -> str:
    """Record a notice in the email log and, when EMAIL_ENABLED, try to send it straight away.

    The body is stored so process_pending_emails can retry a failed send.
    """
    eid = str(uuid.uuid4())
    db.add(
        EmailLog(
            id=eid,
            to_email=to_email,
            subject=subject,
            body=body,
            status="queued",
            related_request_ref=related_request_ref,
        )
    )
    db.commit()

    if not settings.EMAIL_ENABLED:
        return eid

    log = db.get(EmailLog, eid)
    try:
        send_email(to_email, subject, body)
    except SEND_ERRORS as e:
        logger.warning("Email to %s about %s failed (%s), left for retry", to_email, related_request_ref, e)
        log.status = "failed"
    else:
        log.status = "sent"
        log.sent_at = utcnow()
    db.commit()
    return eid


def send_email(to_email: str, subject: str, body: str):
    """Plain-text notice through SendGrid when an API key is set, SMTP otherwise."""
    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str):
    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json={
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        },
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Retry up to `limit` queued or failed notices, oldest first. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(EmailLog.status.in_(["queued", "failed"]), EmailLog.body.isnot(None), EmailLog.body != "")
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        try:
            send_email(log.to_email, log.subject, log.body)
        except SEND_ERRORS as e:
            logger.warning("Retry of email %s failed: %s", log.id, e)
            log.status = "failed"
            failed += 1
        else:
            log.status = "sent"
            log.sent_at = utcnow()
            sent += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
