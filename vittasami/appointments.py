"""
Appointment booking, listing and lifecycle.

Lifecycle:
    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled | no_show
    cancelled, completed, no_show are terminal.

Every status change is recorded in appointment_status_history.
"""

import sys
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from vittasami.availability import js_weekday, minutes_to_time, parse_date, parse_time, time_to_minutes
from vittasami.config import CANCELLATION_WINDOW_HOURS, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from vittasami.database import fetch_all, fetch_one, fetch_value, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import Conflict, NotFound, PermissionDenied, ValidationError
from vittasami.feature_gating import check_limit, current_count
from vittasami.models import AccessContext, Policy
from vittasami.notifications import queue_notification
from vittasami.patients import find_or_create_patient

STATUS_TRANSITION_RULES: Dict[str, tuple] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("completed", "cancelled", "no_show"),
    "cancelled": (),
    "completed": (),
    "no_show": (),
}
APPOINTMENT_STATUSES = tuple(STATUS_TRANSITION_RULES)
STATUS_CHANGE_ROLES = ("admin_tenant", "staff", "receptionist", "doctor", "super_admin")
RESCHEDULE_ROLES = ("admin_tenant", "staff", "receptionist", "doctor", "super_admin")
RESCHEDULABLE_STATUSES = ("pending", "confirmed")
HISTORY_PREVIEW = 5

BOOKING_REQUIRED_FIELDS = (
    "tenant_id", "doctor_id", "service_id", "appointment_date", "start_time",
    "patient_first_name", "patient_last_name", "patient_email",
)

APPOINTMENT_SELECT = """
    SELECT a.*,
           p.first_name AS patient_first_name, p.last_name AS patient_last_name,
           p.email AS patient_email, p.phone AS patient_phone,
           s.name AS service_name, s.duration_minutes AS service_duration,
           u.first_name AS doctor_first_name, u.last_name AS doctor_last_name
    FROM appointments a
    LEFT JOIN patients p ON p.id = a.patient_id
    LEFT JOIN services s ON s.id = a.service_id
    LEFT JOIN custom_users u ON u.id = a.doctor_id
"""


def compute_end_time(start_time: str, duration_minutes: int) -> str:
    end = time_to_minutes(start_time) + int(duration_minutes)
    if end > 24 * 60:
        raise ValidationError("Appointment must end on the same day")
    return minutes_to_time(end)


def appointment_start(appointment: Dict[str, Any]) -> datetime:
    return datetime.strptime(f"{appointment['appointment_date']} {appointment['start_time'][:5]}", "%Y-%m-%d %H:%M")


def find_conflicts(
    conn,
    tenant_id: str,
    doctor_id: str,
    appointment_date: str,
    start_time: str,
    end_time: str,
    exclude_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Non-cancelled appointments of the doctor that overlap the interval."""
    sql = """
        SELECT id, start_time, end_time FROM appointments
        WHERE tenant_id = :tenant_id AND doctor_id = :doctor_id
          AND appointment_date = :date AND status <> 'cancelled'
          AND start_time < :end AND end_time > :start
    """
    params = {"tenant_id": tenant_id, "doctor_id": doctor_id, "date": appointment_date,
              "start": start_time, "end": end_time}
    if exclude_id:
        sql += " AND id <> :exclude_id"
        params["exclude_id"] = exclude_id
    return fetch_all(conn, sql, params)


def check_schedule_fit(conn, tenant_id: str, doctor_id: str, appointment_date: str,
                       start_time: str, end_time: str) -> None:
    """
    When the doctor has availability for that weekday, the interval must fit
    inside one period and avoid every break. No availability rows means no
    restriction.
    """
    weekday = js_weekday(parse_date(appointment_date, "appointment_date"))
    params = {"tenant_id": tenant_id, "doctor_id": doctor_id, "dow": weekday, "active": True}
    where = ("tenant_id = :tenant_id AND doctor_id = :doctor_id "
             "AND day_of_week = :dow AND is_active = :active")
    periods = fetch_all(conn, f"SELECT start_time, end_time FROM doctor_availability WHERE {where}", params)
    if not periods:
        return

    start, end = time_to_minutes(start_time), time_to_minutes(end_time)
    if not any(time_to_minutes(p["start_time"]) <= start and end <= time_to_minutes(p["end_time"])
               for p in periods):
        raise ValidationError("Appointment time is outside the doctor's availability hours")

    breaks = fetch_all(conn, f"SELECT start_time, end_time, break_type FROM doctor_breaks WHERE {where}", params)
    for pause in breaks:
        if start < time_to_minutes(pause["end_time"]) and end > time_to_minutes(pause["start_time"]):
            raise ValidationError(
                f"Appointment time conflicts with the doctor's {pause['break_type'] or 'break'} period"
            )


def record_status_change(
    conn,
    appointment: Dict[str, Any],
    new_status: str,
    ctx: Optional[AccessContext],
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    automated: bool = False,
    change_source: str = "api",
) -> Dict[str, Any]:
    return insert_row(conn, "appointment_status_history", {
        "id": new_id(),
        "appointment_id": appointment["id"],
        "tenant_id": appointment["tenant_id"],
        "status": new_status,
        "previous_status": appointment.get("status"),
        "changed_by_user_id": ctx.user_id if ctx else None,
        "changed_by_role": ctx.role if ctx else None,
        "reason": reason,
        "notes": notes,
        "automated": automated,
        "change_source": change_source,
        "created_at": utcnow_iso(),
    })


def get_status_history(conn, appointment_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    sql = ("SELECT * FROM appointment_status_history WHERE appointment_id = :id "
           "ORDER BY created_at DESC")
    params: Dict[str, Any] = {"id": appointment_id}
    if limit:
        sql += " LIMIT :limit"
        params["limit"] = limit
    rows = fetch_all(conn, sql, params)
    for row in rows:
        row["automated"] = bool(row["automated"])
    return rows


# ── Booking ──────────────────────────────────────────────────────────

def create_appointment(engine, data: Dict[str, Any]) -> Dict[str, Any]:
    """Public booking. Finds or creates the patient by email within the tenant."""
    missing = [f for f in BOOKING_REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError("Missing required fields", {"missing_fields": missing})

    tenant_id = data["tenant_id"]
    doctor_id = data["doctor_id"]
    appointment_date = parse_date(data["appointment_date"], "appointment_date").isoformat()
    start_time = parse_time(data["start_time"], "start_time")

    usage = check_limit(engine, tenant_id, "max_appointments_per_month",
                        current_count(engine, tenant_id, "max_appointments_per_month"))
    if not usage.allowed:
        raise PermissionDenied(
            "Monthly appointment limit reached for the current plan",
            {"code": "LIMIT_REACHED", "limit": usage.limit, "current": usage.current},
        )

    with engine.begin() as conn:
        service = fetch_one(
            conn,
            "SELECT id, name, duration_minutes, price FROM services "
            "WHERE id = :id AND tenant_id = :tenant_id AND is_active = :active",
            {"id": data["service_id"], "tenant_id": tenant_id, "active": True},
        )
        if not service:
            raise NotFound("Service not found")

        doctor = fetch_one(
            conn,
            "SELECT id FROM custom_users WHERE id = :id AND tenant_id = :tenant_id "
            "AND role = 'doctor' AND is_active = :active",
            {"id": doctor_id, "tenant_id": tenant_id, "active": True},
        )
        if not doctor:
            raise NotFound("Doctor not found")

        end_time = compute_end_time(start_time, service["duration_minutes"])
        check_schedule_fit(conn, tenant_id, doctor_id, appointment_date, start_time, end_time)
        if find_conflicts(conn, tenant_id, doctor_id, appointment_date, start_time, end_time):
            raise Conflict("Time slot is no longer available")

        patient_id = find_or_create_patient(
            conn, tenant_id, data["patient_email"], data["patient_first_name"],
            data["patient_last_name"], data.get("patient_phone"),
        )

        now = utcnow_iso()
        appointment = insert_row(conn, "appointments", {
            "id": new_id(),
            "tenant_id": tenant_id,
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "service_id": service["id"],
            "appointment_date": appointment_date,
            "start_time": start_time,
            "end_time": end_time,
            "status": "pending",
            "total_amount": round(float(service["price"] or 0), 2),
            "paid_amount": 0.0,
            "payment_status": "pending",
            "stripe_payment_intent_id": None,
            "notes": data.get("notes"),
            "created_at": now,
            "updated_at": now,
        })
        record_status_change(conn, dict(appointment, status=None), "pending", None,
                             reason="Appointment booked", change_source="booking")

    try:
        with engine.begin() as conn:
            queue_notification(
                conn, tenant_id, "booking_confirmation",
                "Confirmación de cita - VittaSami",
                f"Hola {data['patient_first_name']}, tu cita de {service['name']} "
                f"está registrada para el {appointment_date} a las {start_time}.",
                recipient_email=data["patient_email"].strip().lower(),
                recipient_phone=data.get("patient_phone"),
                appointment_id=appointment["id"],
            )
    except (SQLAlchemyError, ValidationError) as e:
        print(f"[WARN] Booking confirmation not queued for {appointment['id']}: {e}", file=sys.stderr)

    print(f"[appointments] Booked {appointment['id']} for doctor {doctor_id} on {appointment_date} {start_time}")
    return appointment


# ── Reading ──────────────────────────────────────────────────────────

def _scope_clauses(policy: Policy, ctx: AccessContext, tenant_id: Optional[str]):
    """WHERE fragments restricting appointments to what the caller may see."""
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    if policy.role == "patient":
        clauses.append("LOWER(p.email) = :own_email")
        params["own_email"] = ctx.email.lower()
        return clauses, params

    scope = tenant_id if policy.role == "super_admin" else policy.tenant_id
    if scope:
        clauses.append("a.tenant_id = :tenant_id")
        params["tenant_id"] = scope
    if policy.role == "doctor":
        clauses.append("a.doctor_id = :own_doctor")
        params["own_doctor"] = ctx.user_id
    return clauses, params


def _shape(row: Dict[str, Any]) -> Dict[str, Any]:
    row["total_amount"] = round(float(row.get("total_amount") or 0), 2)
    row["paid_amount"] = round(float(row.get("paid_amount") or 0), 2)
    return row


def list_appointments(
    engine,
    ctx: AccessContext,
    policy: Policy,
    tenant_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status: Optional[str] = None,
    appointment_date: Optional[str] = None,
    include_history: bool = False,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> Dict[str, Any]:
    if status and status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")
    if appointment_date:
        appointment_date = parse_date(appointment_date).isoformat()
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))

    clauses, params = _scope_clauses(policy, ctx, tenant_id)
    base_clauses = list(clauses)
    for column, value in (("a.doctor_id", doctor_id), ("a.patient_id", patient_id),
                          ("a.appointment_date", appointment_date)):
        if value:
            key = column.split(".")[1]
            base_clauses.append(f"{column} = :f_{key}")
            params[f"f_{key}"] = value
    filtered = base_clauses + (["a.status = :f_status"] if status else [])
    if status:
        params["f_status"] = status

    def where(parts: List[str]) -> str:
        return f" WHERE {' AND '.join(parts)}" if parts else ""

    from_clause = """
        FROM appointments a
        LEFT JOIN patients p ON p.id = a.patient_id
    """
    with engine.connect() as conn:
        total = int(fetch_value(conn, f"SELECT COUNT(*) {from_clause}{where(filtered)}", params) or 0)
        rows = fetch_all(
            conn,
            f"{APPOINTMENT_SELECT}{where(filtered)} "
            "ORDER BY a.appointment_date, a.start_time LIMIT :limit OFFSET :offset",
            dict(params, limit=limit, offset=(page - 1) * limit),
        )
        distribution = fetch_all(
            conn,
            f"SELECT a.status AS status, COUNT(*) AS n {from_clause}{where(base_clauses)} GROUP BY a.status",
            params,
        )
        appointments = [_shape(r) for r in rows]
        if include_history:
            for appointment in appointments:
                history = get_status_history(conn, appointment["id"])
                appointment["status_history"] = history
                appointment["status_change_count"] = len(history)
                appointment["last_status_change"] = history[0] if history else None

    return {
        "appointments": appointments,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
        "filters": {
            "tenant_id": params.get("tenant_id"),
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "status": status,
            "date": appointment_date,
            "include_history": include_history,
        },
        "summary": {"status_distribution": {d["status"]: int(d["n"]) for d in distribution}},
    }


def load_scoped(conn, ctx: AccessContext, policy: Policy, appointment_id: str) -> Dict[str, Any]:
    appointment = fetch_one(conn, f"{APPOINTMENT_SELECT} WHERE a.id = :id", {"id": appointment_id})
    if not appointment:
        raise NotFound("Appointment not found")

    if policy.role == "patient":
        if (appointment.get("patient_email") or "").lower() != ctx.email.lower():
            raise PermissionDenied("You can only access your own appointments")
    elif policy.role != "super_admin":
        if policy.tenant_id and appointment["tenant_id"] != policy.tenant_id:
            raise NotFound("Appointment not found")
        if policy.role == "doctor" and appointment["doctor_id"] != ctx.user_id:
            raise PermissionDenied("You can only access your own appointments")
    return _shape(appointment)


def get_appointment(engine, ctx: AccessContext, policy: Policy, appointment_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        appointment = load_scoped(conn, ctx, policy, appointment_id)
        appointment["status_history"] = get_status_history(conn, appointment_id, HISTORY_PREVIEW)
    appointment["available_transitions"] = list(STATUS_TRANSITION_RULES.get(appointment["status"], ()))
    return appointment


def my_appointments(engine, ctx: AccessContext) -> List[Dict[str, Any]]:
    """Appointments booked under the caller's email, newest first."""
    with engine.connect() as conn:
        rows = fetch_all(
            conn,
            f"{APPOINTMENT_SELECT} WHERE LOWER(p.email) = :email "
            "ORDER BY a.appointment_date DESC, a.start_time DESC",
            {"email": ctx.email.lower()},
        )
    return [_shape(r) for r in rows]


# ── Lifecycle ────────────────────────────────────────────────────────

def change_status(
    engine,
    ctx: AccessContext,
    policy: Policy,
    appointment_id: str,
    new_status: Optional[str],
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    if not new_status:
        raise ValidationError("new_status is required")
    if new_status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Invalid status '{new_status}'")
    if ctx.role not in STATUS_CHANGE_ROLES:
        raise PermissionDenied(
            f"Role '{ctx.role}' is not authorized to change appointment status",
            {"required_roles": list(STATUS_CHANGE_ROLES)},
        )

    with engine.begin() as conn:
        appointment = load_scoped(conn, ctx, policy, appointment_id)
        current = appointment["status"]
        allowed = list(STATUS_TRANSITION_RULES.get(current, ()))
        if current == new_status:
            raise ValidationError(
                f"Appointment is already in '{new_status}' status",
                {"current_status": current, "allowed_transitions": allowed},
            )
        if new_status not in allowed:
            raise ValidationError(
                f"Status transition from '{current}' to '{new_status}' is not allowed",
                {"current_status": current, "allowed_transitions": allowed},
            )

        update_row(conn, "appointments", appointment_id, {"status": new_status, "updated_at": utcnow_iso()})
        record_status_change(conn, appointment, new_status, ctx, reason=reason, notes=notes)
        history = get_status_history(conn, appointment_id, HISTORY_PREVIEW)

    print(f"[appointments] {appointment_id}: {current} -> {new_status} by {ctx.role}")
    appointment.update(status=new_status)
    return {
        "appointment": appointment,
        "status_history": history,
        "available_transitions": list(STATUS_TRANSITION_RULES[new_status]),
    }


def cancel_appointment(
    engine,
    ctx: AccessContext,
    policy: Policy,
    appointment_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Patient self-cancellation, allowed up to the cancellation window before the start."""
    now = now or datetime.now()
    with engine.begin() as conn:
        appointment = load_scoped(conn, ctx, policy, appointment_id)
        if appointment["status"] == "cancelled":
            raise ValidationError("Appointment is already cancelled")
        if appointment["status"] == "completed":
            raise ValidationError("Cannot cancel a completed appointment")
        if appointment["status"] not in ("pending", "confirmed"):
            raise ValidationError(f"Cannot cancel an appointment in '{appointment['status']}' status")
        if appointment_start(appointment) - now < timedelta(hours=CANCELLATION_WINDOW_HOURS):
            raise ValidationError(
                f"Cannot cancel appointment less than {CANCELLATION_WINDOW_HOURS} hours in advance"
            )

        update_row(conn, "appointments", appointment_id, {"status": "cancelled", "updated_at": utcnow_iso()})
        record_status_change(conn, appointment, "cancelled", ctx,
                             reason=reason or "Cancelled by patient", change_source="patient")

        if appointment.get("patient_email") or appointment.get("patient_phone"):
            queue_notification(
                conn, appointment["tenant_id"], "appointment_cancelled",
                "Cita cancelada - VittaSami",
                f"Tu cita del {appointment['appointment_date']} a las {appointment['start_time']} "
                "ha sido cancelada.",
                recipient_email=appointment.get("patient_email"),
                recipient_phone=appointment.get("patient_phone"),
                appointment_id=appointment_id,
            )

    appointment["status"] = "cancelled"
    return appointment


def reschedule_appointment(
    engine,
    ctx: AccessContext,
    policy: Policy,
    appointment_id: str,
    new_date: Optional[str],
    new_start_time: Optional[str],
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Move an appointment to a new date/time, keeping its doctor and service."""
    if ctx.role not in RESCHEDULE_ROLES:
        raise PermissionDenied("You do not have permission to reschedule this appointment",
                               {"required_roles": list(RESCHEDULE_ROLES)})
    if not new_date or not new_start_time:
        raise ValidationError("appointment_date and start_time are required")
    new_date = parse_date(new_date, "appointment_date").isoformat()
    new_start_time = parse_time(new_start_time, "start_time")
    now = now or datetime.now()

    with engine.begin() as conn:
        appointment = load_scoped(conn, ctx, policy, appointment_id)
        if appointment["status"] not in RESCHEDULABLE_STATUSES:
            raise ValidationError(
                f"Cannot reschedule an appointment in '{appointment['status']}' status",
                {"allowed_statuses": list(RESCHEDULABLE_STATUSES)},
            )

        duration = appointment.get("service_duration") or (
            time_to_minutes(appointment["end_time"]) - time_to_minutes(appointment["start_time"])
        )
        new_end_time = compute_end_time(new_start_time, duration)
        if appointment_start({"appointment_date": new_date, "start_time": new_start_time}) <= now:
            raise ValidationError("The new time must be in the future")

        check_schedule_fit(conn, appointment["tenant_id"], appointment["doctor_id"],
                           new_date, new_start_time, new_end_time)
        if find_conflicts(conn, appointment["tenant_id"], appointment["doctor_id"],
                          new_date, new_start_time, new_end_time, exclude_id=appointment_id):
            raise Conflict("The selected time slot is not available")

        update_row(conn, "appointments", appointment_id, {
            "appointment_date": new_date,
            "start_time": new_start_time,
            "end_time": new_end_time,
            "updated_at": utcnow_iso(),
        })
        note = (f"Rescheduled from {appointment['appointment_date']} {appointment['start_time']} "
                f"to {new_date} {new_start_time}")
        record_status_change(conn, appointment, appointment["status"], ctx,
                             reason=reason or note, notes=note, change_source="reschedule")

    appointment.update(appointment_date=new_date, start_time=new_start_time, end_time=new_end_time)
    print(f"[appointments] {appointment_id} {note.lower()}")
    return appointment
