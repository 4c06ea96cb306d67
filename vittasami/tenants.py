"""
Tenants (clinics), their subscription and their bookable services.
"""

from typing import Any, Dict, List, Optional

from vittasami.database import fetch_all, fetch_one, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import NotFound, ValidationError
from vittasami.feature_gating import PLAN_FEATURES

SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due", "cancelled", "expired")


def _normalise(tenant: Dict[str, Any]) -> Dict[str, Any]:
    if tenant.get("is_active") is not None:
        tenant["is_active"] = bool(tenant["is_active"])
    return tenant


def create_tenant(
    engine,
    name: str,
    tenant_type: str = "clinic",
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    plan_key: str = "free",
) -> Dict[str, Any]:
    if not name or not name.strip():
        raise ValidationError("name is required")
    if plan_key not in PLAN_FEATURES:
        raise ValidationError(f"Invalid plan '{plan_key}'")

    now = utcnow_iso()
    with engine.begin() as conn:
        tenant = insert_row(conn, "tenants", {
            "id": new_id(),
            "name": name.strip(),
            "tenant_type": tenant_type,
            "email": email,
            "phone": phone,
            "address": address,
            "subscription_plan_key": plan_key,
            "subscription_status": "active",
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        })
    print(f"[tenants] Created tenant {tenant['id']} ({plan_key})")
    return _normalise(tenant)


def get_tenant(engine, tenant_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        tenant = fetch_one(conn, "SELECT * FROM tenants WHERE id = :id", {"id": tenant_id})
    if not tenant:
        raise NotFound("Tenant not found")
    return _normalise(tenant)


def list_tenants(engine, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """All tenants, or only *tenant_id* when given."""
    with engine.connect() as conn:
        if tenant_id:
            rows = fetch_all(conn, "SELECT * FROM tenants WHERE id = :id", {"id": tenant_id})
        else:
            rows = fetch_all(conn, "SELECT * FROM tenants ORDER BY name")
    return [_normalise(r) for r in rows]


def update_subscription(engine, tenant_id: str, plan_key: str, status: str = "active") -> Dict[str, Any]:
    if plan_key not in PLAN_FEATURES:
        raise ValidationError(f"Invalid plan '{plan_key}'")
    if status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Invalid subscription status '{status}'")

    with engine.begin() as conn:
        updated = update_row(conn, "tenants", tenant_id, {
            "subscription_plan_key": plan_key,
            "subscription_status": status,
            "updated_at": utcnow_iso(),
        })
    if not updated:
        raise NotFound("Tenant not found")
    return get_tenant(engine, tenant_id)


# ── Services ─────────────────────────────────────────────────────────

def list_services(engine, tenant_id: str, include_inactive: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM services WHERE tenant_id = :tenant_id"
    params: Dict[str, Any] = {"tenant_id": tenant_id}
    if not include_inactive:
        sql += " AND is_active = :active"
        params["active"] = True
    sql += " ORDER BY name"
    with engine.connect() as conn:
        return [_normalise(r) for r in fetch_all(conn, sql, params)]


def create_service(
    engine,
    tenant_id: str,
    name: str,
    duration_minutes: int,
    price: float,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    if not name:
        raise ValidationError("name is required")
    try:
        duration_minutes = int(duration_minutes)
        price = float(price)
    except (TypeError, ValueError):
        raise ValidationError("duration_minutes and price must be numbers")
    if not 5 <= duration_minutes <= 480:
        raise ValidationError("duration_minutes must be between 5 and 480")
    if price < 0:
        raise ValidationError("price must be >= 0")

    with engine.begin() as conn:
        service = insert_row(conn, "services", {
            "id": new_id(),
            "tenant_id": tenant_id,
            "name": name.strip(),
            "description": description,
            "duration_minutes": duration_minutes,
            "price": round(price, 2),
            "is_active": True,
            "created_at": utcnow_iso(),
        })
    return _normalise(service)
