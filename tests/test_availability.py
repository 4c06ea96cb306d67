"""
Tests for weekly availability and the open-slot search.
"""

from datetime import date, datetime, timedelta

import pytest

from vittasami.availability import (
    date_range_end,
    find_available_slots,
    generate_day_slots,
    js_weekday,
    overlaps,
    parse_time,
    replace_weekly_availability,
)
from vittasami.errors import ValidationError

MONDAY = date(2030, 1, 7)


# ── Tests: helpers ───────────────────────────────────────────────────

def test_js_weekday_sunday_is_zero():
    assert js_weekday(date(2030, 1, 6)) == 0
    assert js_weekday(MONDAY) == 1
    assert js_weekday(date(2030, 1, 12)) == 6


def test_overlaps_half_open():
    assert overlaps(540, 570, 560, 600)
    assert not overlaps(540, 570, 570, 600)
    assert not overlaps(600, 630, 540, 600)


def test_parse_time():
    assert parse_time("9:05") == "09:05"
    assert parse_time("14:30:00") == "14:30"
    for bad in ("25:00", "ab:cd", None, "9"):
        with pytest.raises(ValidationError):
            parse_time(bad)


def test_date_range_end():
    assert date_range_end(MONDAY, "next_week") == date(2030, 1, 14)
    assert date_range_end(MONDAY, "two_weeks") == date(2030, 1, 21)
    assert date_range_end(date(2030, 1, 31), "month") == date(2030, 2, 28)
    assert date_range_end(date(2030, 12, 15), "month") == date(2031, 1, 15)
    with pytest.raises(ValidationError):
        date_range_end(MONDAY, "year")


# ── Tests: generate_day_slots ────────────────────────────────────────

def test_generate_day_slots_skips_breaks_and_bookings():
    slots = generate_day_slots(
        MONDAY,
        [{"start_time": "09:00", "end_time": "11:00"}],
        [{"start_time": "10:00", "end_time": "10:30"}],
        [{"start_time": "09:30", "end_time": "10:00"}],
        duration=30,
        max_slots=10,
    )
    assert [s.start_time for s in slots] == ["09:00", "10:30"]
    assert slots[0].day_name == "Lunes"


def test_generate_day_slots_respects_max_and_period_end():
    slots = generate_day_slots(MONDAY, [{"start_time": "09:00", "end_time": "10:40"}], [], [], 30, 10)
    assert [s.end_time for s in slots] == ["09:30", "10:00", "10:30"]
    assert len(generate_day_slots(MONDAY, [{"start_time": "09:00", "end_time": "17:00"}], [], [], 30, 4)) == 4


def test_generate_day_slots_today_uses_buffer():
    # now is 09:10, earliest start is 09:40 aligned up to the next 30 minute step
    slots = generate_day_slots(MONDAY, [{"start_time": "09:00", "end_time": "11:00"}], [], [], 30, 10,
                               now_minutes=9 * 60 + 10)
    assert [s.start_time for s in slots] == ["10:00", "10:30"]


# ── Tests: find_available_slots ──────────────────────────────────────

def test_find_available_slots_without_schedule(engine, tenant, doctor):
    result = find_available_slots(engine, tenant["id"], doctor["id"], base_date=MONDAY,
                                  now=datetime(2030, 1, 1, 8, 0))
    assert result["total_slots"] == 0
    assert result["days"] == []
    assert result["date_range"] == {"start": "", "end": ""}


def test_find_available_slots_week(engine, tenant, doctor, weekday_schedule, book):
    book(MONDAY, "09:00")
    result = find_available_slots(engine, tenant["id"], doctor["id"], base_date=MONDAY,
                                  now=datetime(2030, 1, 1, 8, 0))
    assert result["date_range"] == {"start": "2030-01-07", "end": "2030-01-14"}
    # Mon 7th .. Fri 11th plus Mon 14th
    assert [d["date"] for d in result["days"]] == [
        "2030-01-07", "2030-01-08", "2030-01-09", "2030-01-10", "2030-01-11", "2030-01-14",
    ]
    monday = result["days"][0]
    starts = [s["start_time"] for s in monday["slots"]]
    assert "09:00" not in starts
    assert "11:00" not in starts
    assert starts == ["09:30", "10:00", "10:30", "11:30", "12:00", "12:30"]

    assert len(result["next_available"]) == 5
    assert result["next_available"][0]["is_preferred"] is True
    assert "is_preferred" not in result["next_available"][1]
    assert result["total_slots"] == 6 + 7 * 5


def test_find_available_slots_cancelled_frees_slot(engine, tenant, doctor, weekday_schedule, book):
    from vittasami.database import update_row
    appointment = book(MONDAY, "09:00")
    with engine.begin() as conn:
        update_row(conn, "appointments", appointment["id"], {"status": "cancelled"})
    result = find_available_slots(engine, tenant["id"], doctor["id"], base_date=MONDAY,
                                  now=datetime(2030, 1, 1, 8, 0))
    assert result["days"][0]["slots"][0]["start_time"] == "09:00"


def test_find_available_slots_after_hours_starts_tomorrow(engine, tenant, doctor, weekday_schedule):
    now = datetime(2030, 1, 7, 19, 0)
    result = find_available_slots(engine, tenant["id"], doctor["id"], now=now)
    assert result["date_range"]["start"] == "2030-01-08"


def test_find_available_slots_validation(engine, tenant, doctor):
    with pytest.raises(ValidationError):
        find_available_slots(engine, tenant["id"], doctor["id"], duration=2)
    with pytest.raises(ValidationError):
        find_available_slots(engine, tenant["id"], doctor["id"], max_per_day=0)


def test_replace_weekly_availability(engine, tenant, doctor, weekday_schedule):
    schedule = replace_weekly_availability(
        engine, tenant["id"], doctor["id"],
        [{"day_of_week": 6, "start_time": "08:00", "end_time": "12:00"}],
    )
    assert schedule["availability"] == [{"day_of_week": 6, "start_time": "08:00", "end_time": "12:00"}]
    assert schedule["breaks"] == []


@pytest.mark.parametrize("entry", [
    {"day_of_week": 7, "start_time": "08:00", "end_time": "12:00"},
    {"day_of_week": 1, "start_time": "12:00", "end_time": "08:00"},
    {"day_of_week": 1, "start_time": "8am", "end_time": "12:00"},
])
def test_replace_weekly_availability_validation(engine, tenant, doctor, entry):
    with pytest.raises(ValidationError):
        replace_weekly_availability(engine, tenant["id"], doctor["id"], [entry])


# ── Tests: endpoints ─────────────────────────────────────────────────

def test_availability_endpoints(client, auth_headers, doctor, receptionist, weekday_schedule):
    url = f"/api/doctors/{doctor['id']}/availability"
    body = client.get(url, headers=auth_headers(receptionist)).get_json()
    assert len(body["availability"]) == 5
    assert body["doctor_id"] == doctor["id"]

    payload = {"availability": [{"day_of_week": 2, "start_time": "14:00", "end_time": "18:00"}]}
    assert client.put(url, json=payload, headers=auth_headers(receptionist)).status_code == 403
    resp = client.put(url, json=payload, headers=auth_headers(doctor))
    assert resp.status_code == 200
    assert resp.get_json()["availability"][0]["start_time"] == "14:00"


def test_available_slots_endpoint(client, auth_headers, doctor, receptionist, weekday_schedule):
    base = (date.today() + timedelta(days=10)).isoformat()
    resp = client.get(
        f"/api/doctors/{doctor['id']}/available-slots?base_date={base}&suggestion_type=two_weeks"
        "&duration_minutes=60&max_per_day=2",
        headers=auth_headers(receptionist),
    )
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["doctor_name"] == "Ana Rojas"
    assert data["duration_minutes"] == 60
    assert all(d["slot_count"] <= 2 for d in data["days"])

    bad = client.get(f"/api/doctors/{doctor['id']}/available-slots?suggestion_type=year",
                     headers=auth_headers(receptionist))
    assert bad.status_code == 400


def test_available_slots_other_tenant_denied(client, auth_headers, doctor, make_user, engine):
    from vittasami.tenants import create_tenant
    outsider = make_user("staff", tenant_id=create_tenant(engine, "Otra")["id"])
    resp = client.get(f"/api/doctors/{doctor['id']}/available-slots", headers=auth_headers(outsider))
    assert resp.status_code == 403


def test_available_slots_unknown_doctor(client, auth_headers, receptionist):
    resp = client.get("/api/doctors/missing/available-slots", headers=auth_headers(receptionist))
    assert resp.status_code == 404
