"""
Appointment reminders.

Each tenant has one reminder configuration: which channels are enabled and
how many hours before the appointment each channel fires. Processing queues
one notification per appointment and channel; the appointment_reminders
table records what was already queued so reruns never repeat a reminder.
"""

import sys
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from vittasami.appointments import appointment_start
from vittasami.config import (
    DEFAULT_EMAIL_REMINDER_HOURS,
    DEFAULT_WHATSAPP_REMINDER_HOURS,
    MAX_REMINDER_HOURS,
)
from vittasami.database import fetch_all, fetch_one, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import PermissionDenied, ValidationError
from vittasami.feature_gating import get_required_plan, has_feature
from vittasami.notifications import queue_notification

# channel -> (plan feature, config flag, config hours column, recipient field)
CHANNELS = {
    "email": ("email_reminders", "email_enabled", "email_hours_before", "patient_email"),
    "whatsapp": ("whatsapp_reminders", "whatsapp_enabled", "whatsapp_hours_before", "patient_phone"),
}

DEFAULT_CONFIG = {
    "email_enabled": True,
    "whatsapp_enabled": False,
    "email_hours_before": DEFAULT_EMAIL_REMINDER_HOURS,
    "whatsapp_hours_before": DEFAULT_WHATSAPP_REMINDER_HOURS,
    "is_active": True,
}

UPCOMING_SQL = """
    SELECT a.id, a.tenant_id, a.appointment_date, a.start_time, a.status,
           p.first_name AS patient_first_name, p.email AS patient_email, p.phone AS patient_phone,
           s.name AS service_name, t.name AS tenant_name
    FROM appointments a
    JOIN patients p ON p.id = a.patient_id
    LEFT JOIN services s ON s.id = a.service_id
    LEFT JOIN tenants t ON t.id = a.tenant_id
    WHERE a.tenant_id = :tenant_id
      AND a.status IN ('pending', 'confirmed')
      AND a.appointment_date >= :from_date AND a.appointment_date <= :to_date
      AND NOT EXISTS (
          SELECT 1 FROM appointment_reminders r
          WHERE r.appointment_id = a.id AND r.channel = :channel
      )
    ORDER BY a.appointment_date, a.start_time
"""


def _normalise(config: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("email_enabled", "whatsapp_enabled", "is_active"):
        config[key] = bool(config[key])
    return config


def get_reminder_config(engine, tenant_id: str) -> Dict[str, Any]:
    """The tenant's stored configuration, or the defaults when none is saved."""
    with engine.connect() as conn:
        row = fetch_one(conn, "SELECT * FROM reminder_configurations WHERE tenant_id = :tenant_id",
                        {"tenant_id": tenant_id})
    if not row:
        return dict(DEFAULT_CONFIG, tenant_id=tenant_id, is_default=True)
    return dict(_normalise(row), is_default=False)


def _hours(value: Any, name: str) -> int:
    try:
        hours = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if not 1 <= hours <= MAX_REMINDER_HOURS:
        raise ValidationError(f"{name} must be between 1 and {MAX_REMINDER_HOURS}")
    return hours


def save_reminder_config(engine, tenant_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create or replace the tenant's configuration. Enabled channels must be in the plan."""
    current = get_reminder_config(engine, tenant_id)
    values = {
        "email_enabled": bool(data.get("email_enabled", current["email_enabled"])),
        "whatsapp_enabled": bool(data.get("whatsapp_enabled", current["whatsapp_enabled"])),
        "email_hours_before": _hours(data.get("email_hours_before", current["email_hours_before"]),
                                     "email_hours_before"),
        "whatsapp_hours_before": _hours(data.get("whatsapp_hours_before", current["whatsapp_hours_before"]),
                                        "whatsapp_hours_before"),
        "is_active": bool(data.get("is_active", current["is_active"])),
    }

    for channel, (feature, flag, _, _) in CHANNELS.items():
        if values[flag] and not has_feature(engine, tenant_id, feature):
            raise PermissionDenied("Feature not available in your current plan", {
                "code": "FEATURE_NOT_AVAILABLE",
                "feature": feature,
                "required_plan": get_required_plan(feature),
            })

    now = utcnow_iso()
    with engine.begin() as conn:
        if current["is_default"]:
            insert_row(conn, "reminder_configurations",
                       dict(values, id=new_id(), tenant_id=tenant_id, created_at=now, updated_at=now))
        else:
            update_row(conn, "reminder_configurations", current["id"], dict(values, updated_at=now))
    print(f"[notifications] Reminder configuration saved for tenant {tenant_id}")
    return get_reminder_config(engine, tenant_id)


def reminder_message(appointment: Dict[str, Any]) -> Dict[str, str]:
    start = appointment["start_time"][:5]
    return {
        "subject": f"Recordatorio de cita - {appointment['tenant_name'] or 'VittaSami'}",
        "content": (
            f"Hola {appointment['patient_first_name']}, te recordamos tu cita de "
            f"{appointment['service_name'] or 'consulta'} el {appointment['appointment_date']} "
            f"a las {start}."
        ),
    }


def _due(engine, tenant_id: str, channel: str, hours: int, now: datetime) -> List[Dict[str, Any]]:
    """Upcoming appointments starting within *hours* that have no reminder on *channel* yet."""
    horizon = now + timedelta(hours=hours)
    with engine.connect() as conn:
        rows = fetch_all(conn, UPCOMING_SQL, {
            "tenant_id": tenant_id,
            "channel": channel,
            "from_date": now.date().isoformat(),
            "to_date": horizon.date().isoformat(),
        })
    due = []
    for row in rows:
        if now < appointment_start(row) <= horizon:
            due.append(row)
    return due


def _queue_reminder(engine, appointment: Dict[str, Any], channel: str, recipient: str) -> bool:
    """Queue one reminder; False when another run already queued it."""
    message = reminder_message(appointment)
    try:
        with engine.begin() as conn:
            marker = insert_row(conn, "appointment_reminders", {
                "id": new_id(),
                "appointment_id": appointment["id"],
                "tenant_id": appointment["tenant_id"],
                "channel": channel,
                "notification_id": None,
                "created_at": utcnow_iso(),
            })
            notification = queue_notification(
                conn, appointment["tenant_id"], "appointment_reminder",
                message["subject"], message["content"],
                recipient_email=recipient if channel == "email" else None,
                recipient_phone=recipient if channel == "whatsapp" else None,
                appointment_id=appointment["id"],
            )
            update_row(conn, "appointment_reminders", marker["id"], {"notification_id": notification["id"]})
    except IntegrityError:
        return False
    return True


def queue_due_reminders(engine, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Queue reminders for the tenant's pending and confirmed appointments that
    fall inside each enabled channel's window. Channels the plan does not
    include are skipped.
    """
    now = now or datetime.now()
    config = get_reminder_config(engine, tenant_id)
    result: Dict[str, Any] = {"queued": 0, "skipped": 0, "channels": []}
    if not config["is_active"]:
        return result

    for channel, (feature, flag, hours_key, recipient_key) in CHANNELS.items():
        if not config[flag]:
            continue
        if not has_feature(engine, tenant_id, feature):
            print(f"[WARN] {channel} reminders disabled by plan for tenant {tenant_id}", file=sys.stderr)
            continue
        result["channels"].append(channel)

        for appointment in _due(engine, tenant_id, channel, config[hours_key], now):
            recipient = appointment[recipient_key]
            if recipient and _queue_reminder(engine, appointment, channel, recipient):
                result["queued"] += 1
            else:
                result["skipped"] += 1

    if result["queued"]:
        print(f"[notifications] Queued {result['queued']} reminders for tenant {tenant_id}")
    return result


def active_reminder_tenants(engine) -> List[str]:
    with engine.connect() as conn:
        rows = fetch_all(conn, "SELECT id FROM tenants WHERE is_active = :active ORDER BY name", {"active": True})
    return [r["id"] for r in rows]
