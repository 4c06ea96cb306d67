"""
Tenant dashboard statistics computed over the tenant's appointments.
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional

import pandas as pd

from vittasami.database import fetch_all, fetch_value

APPOINTMENT_COLUMNS = ["appointment_date", "status", "total_amount"]


def week_start(today: date) -> date:
    """Sunday on or before *today*."""
    return today - timedelta(days=(today.weekday() + 1) % 7)


def load_appointments_frame(engine, tenant_id: str) -> pd.DataFrame:
    with engine.connect() as conn:
        rows = fetch_all(
            conn,
            "SELECT appointment_date, status, total_amount FROM appointments WHERE tenant_id = :tenant_id",
            {"tenant_id": tenant_id},
        )
    df = pd.DataFrame(rows, columns=APPOINTMENT_COLUMNS)
    df["total_amount"] = pd.to_numeric(df["total_amount"], errors="coerce").fillna(0.0)
    return df


def compute_stats(df: pd.DataFrame, today: date) -> Dict[str, Any]:
    """
    Appointment counters over *df* (one row per appointment).
    Dates are compared as YYYY-MM-DD strings.
    """
    today_s = today.isoformat()
    week_s = week_start(today).isoformat()
    month_s = today.replace(day=1).isoformat()

    if df.empty:
        return {
            "today_appointments": 0,
            "week_appointments": 0,
            "month_revenue": 0,
            "pending_appointments": 0,
            "status_distribution": {},
        }

    dates = df["appointment_date"].astype(str)
    this_month = df[dates >= month_s]
    completed = this_month[this_month["status"] == "completed"]

    return {
        "today_appointments": int((dates == today_s).sum()),
        "week_appointments": int((dates >= week_s).sum()),
        "month_revenue": int(round(completed["total_amount"].sum())),
        "pending_appointments": int((df["status"] == "pending").sum()),
        "status_distribution": {
            str(k): int(v) for k, v in this_month["status"].value_counts().sort_index().items()
        },
    }


def dashboard_stats(engine, tenant_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    stats = compute_stats(load_appointments_frame(engine, tenant_id), today)
    with engine.connect() as conn:
        stats["active_patients"] = int(fetch_value(
            conn,
            "SELECT COUNT(*) FROM patients WHERE tenant_id = :tenant_id AND is_active = :active",
            {"tenant_id": tenant_id, "active": True},
        ) or 0)
    return stats
