"""
Subscription plans and feature gating.

A tenant's effective plan is its subscription_plan_key while the subscription
is active, and "free" otherwise. Limits use None for "unlimited".
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional, Union

from sqlalchemy import text

from vittasami.config import PROFESSIONAL_ROLES
from vittasami.models import LimitCheck

PLAN_ORDER = ("free", "care", "pro", "enterprise")
LIMIT_KEYS = ("max_professionals", "max_patients", "max_appointments_per_month")

FeatureValue = Union[bool, int, None]

PLAN_FEATURES: Dict[str, Dict[str, FeatureValue]] = {
    "free": {
        "unlimited_agenda": True,
        "online_booking": True,
        "email_reminders": True,
        "sms_reminders": False,
        "whatsapp_reminders": False,
        "multi_calendar": False,
        "patient_management": False,
        "medical_records": False,
        "voice_dictation": False,
        "ai_assistant": False,
        "ai_suggestions": False,
        "ai_predictive": False,
        "max_professionals": 1,
        "max_patients": 100,
        "max_appointments_per_month": None,
        "roles_permissions": False,
        "multi_locations": False,
        "integrated_payments": False,
        "financial_reports": False,
        "accounting_integration": False,
        "priority_support": False,
        "dedicated_manager": False,
        "custom_branding": False,
        "api_access": False,
    },
    "care": {
        "unlimited_agenda": True,
        "online_booking": True,
        "email_reminders": True,
        "sms_reminders": True,
        "whatsapp_reminders": False,
        "multi_calendar": False,
        "patient_management": True,
        "medical_records": True,
        "voice_dictation": True,
        "ai_assistant": True,
        "ai_suggestions": True,
        "ai_predictive": False,
        "max_professionals": 1,
        "max_patients": None,
        "max_appointments_per_month": None,
        "roles_permissions": False,
        "multi_locations": False,
        "integrated_payments": False,
        "financial_reports": False,
        "accounting_integration": False,
        "priority_support": True,
        "dedicated_manager": False,
        "custom_branding": False,
        "api_access": False,
    },
    "pro": {
        "unlimited_agenda": True,
        "online_booking": True,
        "email_reminders": True,
        "sms_reminders": True,
        "whatsapp_reminders": True,
        "multi_calendar": True,
        "patient_management": True,
        "medical_records": True,
        "voice_dictation": True,
        "ai_assistant": True,
        "ai_suggestions": True,
        "ai_predictive": False,
        "max_professionals": 5,
        "max_patients": None,
        "max_appointments_per_month": None,
        "roles_permissions": True,
        "multi_locations": False,
        "integrated_payments": True,
        "financial_reports": True,
        "accounting_integration": False,
        "priority_support": True,
        "dedicated_manager": False,
        "custom_branding": False,
        "api_access": True,
    },
    "enterprise": {
        "unlimited_agenda": True,
        "online_booking": True,
        "email_reminders": True,
        "sms_reminders": True,
        "whatsapp_reminders": True,
        "multi_calendar": True,
        "patient_management": True,
        "medical_records": True,
        "voice_dictation": True,
        "ai_assistant": True,
        "ai_suggestions": True,
        "ai_predictive": True,
        "max_professionals": None,
        "max_patients": None,
        "max_appointments_per_month": None,
        "roles_permissions": True,
        "multi_locations": True,
        "integrated_payments": True,
        "financial_reports": True,
        "accounting_integration": True,
        "priority_support": True,
        "dedicated_manager": True,
        "custom_branding": True,
        "api_access": True,
    },
}

FEATURE_KEYS = tuple(PLAN_FEATURES["free"])

# Monthly prices (PEN) shown by /api/subscription-plans.
PLAN_CATALOG = {
    "free": {"name": "Free", "monthly_price": 0, "annual_price": 0},
    "care": {"name": "Care", "monthly_price": 39, "annual_price": 390},
    "pro": {"name": "Pro", "monthly_price": 99, "annual_price": 990},
    "enterprise": {"name": "Enterprise", "monthly_price": None, "annual_price": None},
}


def effective_plan_key(tenant: Optional[Dict[str, Any]]) -> str:
    """Resolve the plan that applies to a tenant row."""
    if not tenant:
        return "free"
    if tenant.get("subscription_status") != "active":
        return "free"
    plan_key = tenant.get("subscription_plan_key") or "free"
    return plan_key if plan_key in PLAN_FEATURES else "free"


def _load_tenant(engine, tenant_id: str) -> Optional[Dict[str, Any]]:
    sql = text("""
        SELECT subscription_plan_key, subscription_status
        FROM tenants
        WHERE id = :id
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, {"id": tenant_id}).mappings().first()
    if not row:
        print(f"[FeatureGate] Tenant not found: {tenant_id}")
        return None
    return dict(row)


def has_feature(engine, tenant_id: str, feature: str) -> bool:
    """True when the tenant's effective plan includes *feature*."""
    tenant = _load_tenant(engine, tenant_id)
    if tenant is None:
        return False
    return bool(PLAN_FEATURES[effective_plan_key(tenant)].get(feature))


def check_limit(engine, tenant_id: str, limit_key: str, current: int) -> LimitCheck:
    """Compare *current* with the plan's quantitative limit."""
    if limit_key not in LIMIT_KEYS:
        raise ValueError(f"Invalid limit key '{limit_key}'")

    tenant = _load_tenant(engine, tenant_id)
    if tenant is None:
        return LimitCheck(allowed=False, limit=0, current=current)

    limit = PLAN_FEATURES[effective_plan_key(tenant)][limit_key]
    if limit is None:
        return LimitCheck(allowed=True, limit=None, current=current)
    return LimitCheck(allowed=current < int(limit), limit=int(limit), current=current)


def get_required_plan(feature: str) -> str:
    """Cheapest plan that includes *feature*."""
    for plan in PLAN_ORDER:
        if PLAN_FEATURES[plan].get(feature):
            return plan
    return "enterprise"


def get_tenant_features(engine, tenant_id: str) -> Dict[str, FeatureValue]:
    return dict(PLAN_FEATURES[effective_plan_key(_load_tenant(engine, tenant_id))])


def get_tenant_plan(engine, tenant_id: str) -> Dict[str, Any]:
    tenant = _load_tenant(engine, tenant_id)
    plan_key = effective_plan_key(tenant)
    return {
        "plan_key": plan_key,
        "status": (tenant or {}).get("subscription_status") or "active",
        "features": dict(PLAN_FEATURES[plan_key]),
    }


def current_count(engine, tenant_id: str, limit_key: str, today: Optional[date] = None) -> int:
    """Count what a limit applies to for *tenant_id*."""
    if limit_key == "max_professionals":
        placeholders = ", ".join(f":r{i}" for i in range(len(PROFESSIONAL_ROLES)))
        sql = (
            "SELECT COUNT(*) FROM custom_users "
            f"WHERE tenant_id = :tenant_id AND is_active = :active AND role IN ({placeholders})"
        )
        params = {"tenant_id": tenant_id, "active": True}
        params.update({f"r{i}": role for i, role in enumerate(PROFESSIONAL_ROLES)})
    elif limit_key == "max_patients":
        sql = "SELECT COUNT(*) FROM patients WHERE tenant_id = :tenant_id AND is_active = :active"
        params = {"tenant_id": tenant_id, "active": True}
    elif limit_key == "max_appointments_per_month":
        today = today or date.today()
        month_start = today.replace(day=1)
        next_month = (month_start.replace(day=28) + timedelta(days=4)).replace(day=1)
        sql = (
            "SELECT COUNT(*) FROM appointments WHERE tenant_id = :tenant_id "
            "AND appointment_date >= :start AND appointment_date < :end"
        )
        params = {"tenant_id": tenant_id, "start": month_start.isoformat(), "end": next_month.isoformat()}
    else:
        raise ValueError(f"Invalid limit key '{limit_key}'")

    with engine.connect() as conn:
        return int(conn.execute(text(sql), params).scalar() or 0)
