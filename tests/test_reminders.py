"""
Tests for per-tenant reminder configuration and reminder queueing.
"""

from datetime import datetime, time, timedelta

import pytest

from vittasami import notifications
from vittasami.appointments import change_status
from vittasami.database import fetch_all, update_row
from vittasami.errors import PermissionDenied, ValidationError
from vittasami.reminders import get_reminder_config, queue_due_reminders, save_reminder_config
from vittasami.tenants import create_tenant


# ── Helpers ──────────────────────────────────────────────────────────

def reminders(engine, appointment_id):
    with engine.connect() as conn:
        return fetch_all(
            conn,
            "SELECT * FROM notifications WHERE appointment_id = :id AND type = 'appointment_reminder' "
            "ORDER BY created_at",
            {"id": appointment_id},
        )


def hours_before(day, start, hours):
    return datetime.combine(day, start) - timedelta(hours=hours)


# ── Tests: configuration ─────────────────────────────────────────────

def test_default_config(engine, tenant):
    config = get_reminder_config(engine, tenant["id"])
    assert config["is_default"]
    assert config["email_enabled"] and not config["whatsapp_enabled"]
    assert (config["email_hours_before"], config["whatsapp_hours_before"]) == (24, 4)


def test_save_config_then_update(engine, tenant):
    saved = save_reminder_config(engine, tenant["id"], {"whatsapp_enabled": True, "whatsapp_hours_before": 2})
    assert not saved["is_default"]
    assert saved["whatsapp_enabled"] is True
    assert saved["whatsapp_hours_before"] == 2

    updated = save_reminder_config(engine, tenant["id"], {"email_hours_before": 48})
    assert updated["id"] == saved["id"]
    assert updated["email_hours_before"] == 48
    assert updated["whatsapp_hours_before"] == 2


@pytest.mark.parametrize("hours", [0, 169, "soon"])
def test_save_config_rejects_bad_hours(engine, tenant, hours):
    with pytest.raises(ValidationError):
        save_reminder_config(engine, tenant["id"], {"email_hours_before": hours})


def test_whatsapp_reminders_need_plan(engine):
    free = create_tenant(engine, "Consultorio Sur")
    with pytest.raises(PermissionDenied) as exc:
        save_reminder_config(engine, free["id"], {"whatsapp_enabled": True})
    assert exc.value.extra["feature"] == "whatsapp_reminders"
    assert exc.value.extra["required_plan"] == "pro"


# ── Tests: queueing ──────────────────────────────────────────────────

def test_queue_email_reminder_inside_window(engine, tenant, book, next_monday):
    appt = book(next_monday, "10:00")
    now = hours_before(next_monday, time(10, 0), 20)

    result = queue_due_reminders(engine, tenant["id"], now=now)
    assert result["queued"] == 1
    assert result["channels"] == ["email"]
    [reminder] = reminders(engine, appt["id"])
    assert reminder["recipient_email"] == "maria@example.com"
    assert reminder["recipient_phone"] is None
    assert next_monday.isoformat() in reminder["content"]


def test_queue_skips_outside_window(engine, tenant, book, next_monday):
    appt = book(next_monday, "10:00")
    assert queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 30))["queued"] == 0
    assert queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), -1))["queued"] == 0
    assert reminders(engine, appt["id"]) == []


def test_queue_is_idempotent(engine, tenant, book, next_monday):
    appt = book(next_monday, "10:00")
    now = hours_before(next_monday, time(10, 0), 3)
    assert queue_due_reminders(engine, tenant["id"], now=now)["queued"] == 1
    assert queue_due_reminders(engine, tenant["id"], now=now + timedelta(minutes=30))["queued"] == 0
    assert len(reminders(engine, appt["id"])) == 1


def test_whatsapp_channel_uses_phone_and_own_window(engine, tenant, book, next_monday):
    save_reminder_config(engine, tenant["id"], {"whatsapp_enabled": True, "whatsapp_hours_before": 4})
    appt = book(next_monday, "10:00", patient_phone="+51987654321")

    queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 20))
    assert [r["recipient_email"] for r in reminders(engine, appt["id"])] == ["maria@example.com"]

    result = queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))
    assert result["queued"] == 1
    whatsapp = [r for r in reminders(engine, appt["id"]) if r["recipient_phone"]]
    assert len(whatsapp) == 1
    assert whatsapp[0]["recipient_email"] is None


def test_whatsapp_without_phone_is_skipped(engine, tenant, book, next_monday):
    save_reminder_config(engine, tenant["id"], {"email_enabled": False, "whatsapp_enabled": True})
    book(next_monday, "10:00")
    result = queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))
    assert result == {"queued": 0, "skipped": 1, "channels": ["whatsapp"]}


def test_cancelled_appointments_get_no_reminder(engine, tenant, book, next_monday, receptionist, access):
    appt = book(next_monday, "10:00")
    ctx, policy = access(receptionist)
    change_status(engine, ctx, policy, appt["id"], "cancelled", reason="Paciente avisó")
    assert queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))["queued"] == 0


def test_confirmed_appointments_get_reminder(engine, tenant, book, next_monday, receptionist, access):
    appt = book(next_monday, "10:00")
    ctx, policy = access(receptionist)
    change_status(engine, ctx, policy, appt["id"], "confirmed")
    assert queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))["queued"] == 1


def test_plan_downgrade_stops_whatsapp(engine, tenant, book, next_monday):
    save_reminder_config(engine, tenant["id"], {"whatsapp_enabled": True})
    with engine.begin() as conn:
        update_row(conn, "tenants", tenant["id"], {"subscription_plan_key": "free"})
    book(next_monday, "10:00", patient_phone="+51987654321")
    result = queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))
    assert result["channels"] == ["email"]
    assert result["queued"] == 1


def test_inactive_config_queues_nothing(engine, tenant, book, next_monday):
    save_reminder_config(engine, tenant["id"], {"is_active": False})
    book(next_monday, "10:00")
    assert queue_due_reminders(engine, tenant["id"], now=hours_before(next_monday, time(10, 0), 2))["queued"] == 0


# ── Tests: endpoints ─────────────────────────────────────────────────

def test_config_endpoints(client, auth_headers, admin, receptionist, tenant):
    resp = client.get("/api/reminders/config", headers=auth_headers(receptionist))
    assert resp.status_code == 200
    assert resp.get_json()["config"]["is_default"]

    resp = client.put("/api/reminders/config", headers=auth_headers(receptionist), json={"email_hours_before": 12})
    assert resp.status_code == 403

    resp = client.put("/api/reminders/config", headers=auth_headers(admin), json={"email_hours_before": 12})
    assert resp.status_code == 200
    assert resp.get_json()["config"]["email_hours_before"] == 12


def test_process_reminders_endpoint(monkeypatch, client, auth_headers, receptionist, book, engine):
    subjects = []
    monkeypatch.setattr(notifications, "send_email", lambda to, subject, body: subjects.append(subject))
    start = datetime.now() + timedelta(hours=2)
    if start.date() != (datetime.now() + timedelta(hours=2, minutes=30)).date():
        pytest.skip("appointment would cross midnight")
    appt = book(start.date(), start.strftime("%H:%M"))

    resp = client.post("/api/notifications/process-reminders", headers=auth_headers(receptionist))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["queued"] == 1
    assert body["processed"]["sent"] >= 1
    assert any(s.startswith("Recordatorio de cita") for s in subjects)
    assert reminders(engine, appt["id"])[0]["status"] == "sent"


def test_process_reminders_requires_staff(client, auth_headers, patient_user, doctor):
    assert client.post("/api/notifications/process-reminders", headers=auth_headers(patient_user)).status_code == 403
    assert client.post("/api/notifications/process-reminders", headers=auth_headers(doctor)).status_code == 403
