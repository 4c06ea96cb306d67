"""
Doctor weekly availability and the open-slot search used for booking suggestions.

Weekdays are numbered 0 (Sunday) to 6 (Saturday). Two intervals overlap when
``a_start < b_end and a_end > b_start`` (touching intervals do not).
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import text

from vittasami.config import DEFAULT_SLOT_MINUTES, DEFAULT_SLOTS_PER_DAY, SAME_DAY_BUFFER_MINUTES
from vittasami.database import fetch_all, fetch_one, insert_row, new_id
from vittasami.errors import NotFound, ValidationError
from vittasami.models import AvailableSlot

DAY_NAMES_ES = ("Domingo", "Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado")
SUGGESTION_TYPES = ("next_week", "two_weeks", "month")
NEXT_AVAILABLE_COUNT = 5
# After this hour a search starting today begins tomorrow.
END_OF_BUSINESS_HOUR = 18


# ── Time helpers ─────────────────────────────────────────────────────

def time_to_minutes(value: str) -> int:
    """'HH:MM' or 'HH:MM:SS' -> minutes since midnight."""
    parts = str(value).split(":")
    return int(parts[0]) * 60 + int(parts[1])


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(value: Any, field_name: str = "time") -> str:
    """Validate and normalise a 'HH:MM' string."""
    try:
        minutes = time_to_minutes(value)
    except (TypeError, ValueError, IndexError):
        raise ValidationError(f"{field_name} must be HH:MM")
    if not 0 <= minutes < 24 * 60:
        raise ValidationError(f"{field_name} must be HH:MM")
    return minutes_to_time(minutes)


def parse_date(value: Any, field_name: str = "date") -> date:
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field_name} must be YYYY-MM-DD")


def js_weekday(d: date) -> int:
    """Weekday with Sunday = 0."""
    return (d.weekday() + 1) % 7


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


def date_range_end(base: date, suggestion_type: str) -> date:
    if suggestion_type == "next_week":
        return base + timedelta(days=7)
    if suggestion_type == "two_weeks":
        return base + timedelta(days=14)
    if suggestion_type == "month":
        year = base.year + (base.month // 12)
        month = base.month % 12 + 1
        day = min(base.day, calendar.monthrange(year, month)[1])
        return base.replace(year=year, month=month, day=day)
    raise ValidationError(f"suggestion_type must be one of {', '.join(SUGGESTION_TYPES)}")


# ── Slot generation ──────────────────────────────────────────────────

def generate_day_slots(
    day: date,
    periods: Sequence[Dict[str, str]],
    breaks: Sequence[Dict[str, str]],
    booked: Sequence[Dict[str, str]],
    duration: int,
    max_slots: int,
    now_minutes: Optional[int] = None,
) -> List[AvailableSlot]:
    """
    Walk each availability period in *duration* steps and keep the slots that
    avoid breaks and booked appointments.

    *now_minutes* is set only when *day* is today; earlier slots (plus a buffer)
    are skipped.
    """
    weekday = js_weekday(day)
    slots: List[AvailableSlot] = []

    for period in periods:
        start = time_to_minutes(period["start_time"])
        end = time_to_minutes(period["end_time"])

        slot_start = start
        if now_minutes is not None and slot_start < now_minutes + SAME_DAY_BUFFER_MINUTES:
            earliest = now_minutes + SAME_DAY_BUFFER_MINUTES
            slot_start = -(-earliest // duration) * duration

        while slot_start + duration <= end and len(slots) < max_slots:
            slot_end = slot_start + duration
            blocked = any(
                overlaps(slot_start, slot_end, time_to_minutes(b["start_time"]), time_to_minutes(b["end_time"]))
                for b in list(breaks) + list(booked)
            )
            if not blocked:
                slots.append(AvailableSlot(
                    date=day.isoformat(),
                    day_of_week=weekday,
                    day_name=DAY_NAMES_ES[weekday],
                    start_time=minutes_to_time(slot_start),
                    end_time=minutes_to_time(slot_end),
                ))
            slot_start += duration

        if len(slots) >= max_slots:
            break

    return slots


def _group_by(rows: Iterable[Dict[str, Any]], key: str) -> Dict[Any, List[Dict[str, Any]]]:
    grouped: Dict[Any, List[Dict[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(row[key], []).append(row)
    return grouped


def find_available_slots(
    engine,
    tenant_id: str,
    doctor_id: str,
    base_date: Optional[date] = None,
    duration: int = DEFAULT_SLOT_MINUTES,
    suggestion_type: str = "next_week",
    max_per_day: int = DEFAULT_SLOTS_PER_DAY,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Open slots for a doctor over the suggestion range, grouped by day."""
    if not 5 <= duration <= 480:
        raise ValidationError("duration_minutes must be between 5 and 480")
    if not 1 <= max_per_day <= 50:
        raise ValidationError("max_per_day must be between 1 and 50")

    now = now or datetime.now()
    base = base_date or now.date()
    if base == now.date() and now.hour >= END_OF_BUSINESS_HOUR:
        base += timedelta(days=1)
    end = date_range_end(base, suggestion_type)

    periods = get_weekly_availability(engine, tenant_id, doctor_id)
    result: Dict[str, Any] = {
        "doctor_id": doctor_id,
        "tenant_id": tenant_id,
        "date_range": {"start": "", "end": ""},
        "duration_minutes": duration,
        "total_slots": 0,
        "days": [],
        "next_available": [],
    }
    if not periods["availability"]:
        return result

    with engine.connect() as conn:
        booked = fetch_all(
            conn,
            """
            SELECT appointment_date, start_time, end_time FROM appointments
            WHERE doctor_id = :doctor_id AND tenant_id = :tenant_id
              AND appointment_date >= :start AND appointment_date <= :end
              AND status <> 'cancelled'
            """,
            {"doctor_id": doctor_id, "tenant_id": tenant_id,
             "start": base.isoformat(), "end": end.isoformat()},
        )

    availability_by_day = _group_by(periods["availability"], "day_of_week")
    breaks_by_day = _group_by(periods["breaks"], "day_of_week")
    booked_by_date = _group_by(booked, "appointment_date")

    all_slots: List[AvailableSlot] = []
    day = base
    while day <= end:
        weekday = js_weekday(day)
        if weekday in availability_by_day:
            slots = generate_day_slots(
                day,
                availability_by_day[weekday],
                breaks_by_day.get(weekday, []),
                booked_by_date.get(day.isoformat(), []),
                duration,
                max_per_day,
                now_minutes=now.hour * 60 + now.minute if day == now.date() else None,
            )
            if slots:
                result["days"].append({
                    "date": day.isoformat(),
                    "day_of_week": weekday,
                    "day_name": DAY_NAMES_ES[weekday],
                    "slot_count": len(slots),
                    "slots": [s.to_dict() for s in slots],
                })
                all_slots.extend(slots)
        day += timedelta(days=1)

    next_available = []
    for index, slot in enumerate(all_slots[:NEXT_AVAILABLE_COUNT]):
        slot.is_preferred = index == 0
        next_available.append(slot.to_dict())

    result.update({
        "date_range": {"start": base.isoformat(), "end": end.isoformat()},
        "total_slots": len(all_slots),
        "next_available": next_available,
    })
    return result


# ── Weekly schedule ──────────────────────────────────────────────────

def get_doctor(engine, doctor_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        doctor = fetch_one(
            conn,
            "SELECT id, email, first_name, last_name, role, tenant_id FROM custom_users "
            "WHERE id = :id AND is_active = :active",
            {"id": doctor_id, "active": True},
        )
    if not doctor:
        raise NotFound("Doctor not found")
    return doctor


def get_weekly_availability(engine, tenant_id: str, doctor_id: str) -> Dict[str, List[Dict[str, Any]]]:
    params = {"tenant_id": tenant_id, "doctor_id": doctor_id, "active": True}
    where = "tenant_id = :tenant_id AND doctor_id = :doctor_id AND is_active = :active"
    with engine.connect() as conn:
        availability = fetch_all(
            conn,
            f"SELECT day_of_week, start_time, end_time FROM doctor_availability WHERE {where} "
            "ORDER BY day_of_week, start_time",
            params,
        )
        breaks = fetch_all(
            conn,
            f"SELECT day_of_week, start_time, end_time, break_type FROM doctor_breaks WHERE {where} "
            "ORDER BY day_of_week, start_time",
            params,
        )
    return {"availability": availability, "breaks": breaks}


def _validate_periods(entries: Any, label: str) -> List[Dict[str, Any]]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValidationError(f"{label} must be a list")
    cleaned = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError(f"{label} entries must be objects")
        try:
            day_of_week = int(entry.get("day_of_week"))
        except (TypeError, ValueError):
            raise ValidationError("day_of_week must be 0..6")
        if not 0 <= day_of_week <= 6:
            raise ValidationError("day_of_week must be 0..6")
        start = parse_time(entry.get("start_time"), "start_time")
        end = parse_time(entry.get("end_time"), "end_time")
        if time_to_minutes(end) <= time_to_minutes(start):
            raise ValidationError("end_time must be after start_time")
        cleaned.append({
            "day_of_week": day_of_week,
            "start_time": start,
            "end_time": end,
            "break_type": entry.get("break_type") or "break",
        })
    return cleaned


def replace_weekly_availability(
    engine,
    tenant_id: str,
    doctor_id: str,
    availability: Any,
    breaks: Any = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Replace a doctor's whole week of periods and breaks."""
    periods = _validate_periods(availability, "availability")
    pauses = _validate_periods(breaks, "breaks")

    params = {"tenant_id": tenant_id, "doctor_id": doctor_id}
    with engine.begin() as conn:
        for table in ("doctor_availability", "doctor_breaks"):
            conn.execute(
                text(f"DELETE FROM {table} WHERE tenant_id = :tenant_id AND doctor_id = :doctor_id"),
                params,
            )
        for period in periods:
            insert_row(conn, "doctor_availability", {
                "id": new_id(), "tenant_id": tenant_id, "doctor_id": doctor_id,
                "day_of_week": period["day_of_week"],
                "start_time": period["start_time"], "end_time": period["end_time"],
                "is_active": True,
            })
        for pause in pauses:
            insert_row(conn, "doctor_breaks", {
                "id": new_id(), "tenant_id": tenant_id, "doctor_id": doctor_id,
                "day_of_week": pause["day_of_week"],
                "start_time": pause["start_time"], "end_time": pause["end_time"],
                "break_type": pause["break_type"], "is_active": True,
            })
    print(f"[availability] Doctor {doctor_id}: {len(periods)} periods, {len(pauses)} breaks")
    return get_weekly_availability(engine, tenant_id, doctor_id)
