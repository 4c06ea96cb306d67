"""
Outgoing notifications: queued as rows, then delivered in small synchronous
batches by email (SMTP) and WhatsApp (Twilio REST API).

Status lifecycle: pending -> processing -> sent | failed.
"""

import smtplib
import ssl
import sys
import traceback
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import requests

from vittasami.config import (
    EMAIL_FROM_ADDRESS,
    NOTIFICATION_BATCH_SIZE,
    NOTIFICATION_LIST_LIMIT,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_WHATSAPP_FROM,
)
from vittasami.database import fetch_all, fetch_one, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import ValidationError

NOTIFICATION_STATUSES = ("pending", "processing", "sent", "failed")
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
HTTP_TIMEOUT = 15


def queue_notification(
    conn,
    tenant_id: str,
    type: str,
    subject: str,
    content: str,
    recipient_email: Optional[str] = None,
    recipient_phone: Optional[str] = None,
    appointment_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a pending notification using an open connection."""
    if not tenant_id or not type or not subject or not content:
        raise ValidationError("tenant_id, type, subject and content are required")
    if not recipient_email and not recipient_phone:
        raise ValidationError("recipient_email or recipient_phone is required")

    now = utcnow_iso()
    return insert_row(conn, "notifications", {
        "id": new_id(),
        "tenant_id": tenant_id,
        "type": type,
        "recipient_email": recipient_email,
        "recipient_phone": recipient_phone,
        "subject": subject,
        "content": content,
        "appointment_id": appointment_id,
        "status": "pending",
        "error_message": None,
        "sent_at": None,
        "created_at": now,
        "updated_at": now,
    })


# ── Channels ─────────────────────────────────────────────────────────

def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email through the configured SMTP server."""
    if not SMTP_HOST:
        raise RuntimeError("SMTP_HOST is not configured")

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM_ADDRESS
    msg["To"] = to

    context = ssl.create_default_context()
    if SMTP_PORT == 465:
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=context, timeout=30)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30)
        server.starttls(context=context)
    try:
        if SMTP_USERNAME:
            server.login(SMTP_USERNAME, SMTP_PASSWORD or "")
        server.sendmail(EMAIL_FROM_ADDRESS.split("<")[-1].rstrip(">"), [to], msg.as_string())
    finally:
        server.quit()


def send_whatsapp(to: str, body: str) -> str:
    """Send a WhatsApp message via Twilio; returns the message SID."""
    if not (TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_WHATSAPP_FROM):
        raise RuntimeError("Twilio WhatsApp is not configured")

    resp = requests.post(
        TWILIO_MESSAGES_URL.format(sid=TWILIO_ACCOUNT_SID),
        data={
            "From": f"whatsapp:{TWILIO_WHATSAPP_FROM}",
            "To": f"whatsapp:{to}",
            "Body": body,
        },
        auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
        timeout=HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json().get("sid", "")


def deliver(notification: Dict[str, Any]) -> Optional[str]:
    """
    Try every channel the notification has a recipient for.

    Returns None when at least one channel succeeded, otherwise the joined
    error messages.
    """
    errors: List[str] = []
    delivered = False

    if notification.get("recipient_email"):
        try:
            send_email(notification["recipient_email"], notification["subject"], notification["content"])
            delivered = True
        except (RuntimeError, OSError, smtplib.SMTPException) as e:
            errors.append(f"email: {e}")

    if notification.get("recipient_phone"):
        try:
            send_whatsapp(notification["recipient_phone"], f"{notification['subject']}\n\n{notification['content']}")
            delivered = True
        except (RuntimeError, requests.RequestException) as e:
            errors.append(f"whatsapp: {e}")

    return None if delivered else "; ".join(errors) or "No recipient"


def claim_notification(conn, notification_id: str) -> bool:
    """Move one notification from pending to processing; False if another batch took it."""
    return bool(update_row(
        conn, "notifications", notification_id,
        {"status": "processing", "updated_at": utcnow_iso()},
        expected={"status": "pending"},
    ))


def process_pending(engine, limit: int = NOTIFICATION_BATCH_SIZE) -> Dict[str, int]:
    """Deliver up to *limit* of the oldest pending notifications."""
    with engine.connect() as conn:
        candidates = fetch_all(
            conn,
            "SELECT * FROM notifications WHERE status = 'pending' ORDER BY created_at LIMIT :limit",
            {"limit": limit},
        )

    batch = []
    for notification in candidates:
        with engine.begin() as conn:
            if claim_notification(conn, notification["id"]):
                batch.append(notification)

    sent = failed = 0
    for notification in batch:
        try:
            error = deliver(notification)
        except Exception as e:
            print(f"[ERROR] Delivery of notification {notification['id']} crashed: {e}", file=sys.stderr)
            traceback.print_exc()
            error = f"unexpected error: {e}"

        now = utcnow_iso()
        if error is None:
            values = {"status": "sent", "sent_at": now, "error_message": None, "updated_at": now}
            sent += 1
        else:
            print(f"[WARN] Notification {notification['id']} failed: {error}", file=sys.stderr)
            values = {"status": "failed", "error_message": error, "updated_at": now}
            failed += 1
        with engine.begin() as conn:
            update_row(conn, "notifications", notification["id"], values)

    if batch:
        print(f"[notifications] Processed {len(batch)}: {sent} sent, {failed} failed")
    return {"processed": len(batch), "sent": sent, "failed": failed}


def list_notifications(
    engine,
    tenant_id: Optional[str],
    status: Optional[str] = None,
    limit: int = NOTIFICATION_LIST_LIMIT,
) -> List[Dict[str, Any]]:
    if status and status not in NOTIFICATION_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")

    clauses = []
    params: Dict[str, Any] = {"limit": limit}
    if tenant_id:
        clauses.append("tenant_id = :tenant_id")
        params["tenant_id"] = tenant_id
    if status:
        clauses.append("status = :status")
        params["status"] = status
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    with engine.connect() as conn:
        return fetch_all(
            conn,
            f"SELECT * FROM notifications {where} ORDER BY created_at DESC LIMIT :limit",
            params,
        )


def get_notification(engine, notification_id: str) -> Optional[Dict[str, Any]]:
    with engine.connect() as conn:
        return fetch_one(conn, "SELECT * FROM notifications WHERE id = :id", {"id": notification_id})
