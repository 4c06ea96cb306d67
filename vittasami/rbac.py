"""
Role-Based Access Control – loading user context and building policies.
"""

import json
from typing import Any, Dict, Optional

from sqlalchemy import text

from vittasami.config import ROLES, TENANT_STAFF_ROLES
from vittasami.database import new_id, utcnow_iso
from vittasami.errors import PermissionDenied
from vittasami.models import AccessContext, Policy


def load_access_context(engine, user_id: str) -> AccessContext:
    """Look up an active user by id and return their AccessContext."""
    sql = text("""
        SELECT id, email, first_name, last_name, role, tenant_id
        FROM custom_users
        WHERE id = :uid AND is_active = :active
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, {"uid": user_id, "active": True}).mappings().first()

    if not row:
        raise ValueError("User not found or inactive.")

    return context_from_row(row)


def context_from_row(row) -> AccessContext:
    role = str(row["role"]).strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unsupported role '{row['role']}' in custom_users.")

    return AccessContext(
        user_id=str(row["id"]),
        email=str(row["email"]),
        first_name=str(row["first_name"] or ""),
        last_name=str(row["last_name"] or ""),
        role=role,
        tenant_id=str(row["tenant_id"]) if row["tenant_id"] is not None else None,
    )


def build_policy(ctx: AccessContext) -> Policy:
    """Derive an RBAC Policy from an AccessContext."""

    if ctx.role == "super_admin":
        return Policy(
            role="super_admin",
            tenant_id=None,
            can_manage_tenants=True,
            can_manage_users=True,
            can_manage_billing=True,
            can_manage_appointments=True,
            can_manage_patients=True,
            own_appointments_only=False,
            notes="Super admin can access every tenant. Actions are audited.",
        )

    if ctx.role in TENANT_STAFF_ROLES:
        if ctx.tenant_id is None:
            raise ValueError(f"{ctx.role} user must have tenant_id set in custom_users.")
        is_admin = ctx.role == "admin_tenant"
        return Policy(
            role=ctx.role,
            tenant_id=ctx.tenant_id,
            can_manage_tenants=False,
            can_manage_users=is_admin,
            can_manage_billing=True,
            can_manage_appointments=True,
            can_manage_patients=True,
            own_appointments_only=False,
            notes=(
                "Tenant administrator: full access within the tenant." if is_admin
                else "Front-desk access within the tenant: agenda, patients and billing."
            ),
        )

    if ctx.role == "doctor":
        return Policy(
            role="doctor",
            tenant_id=ctx.tenant_id,
            can_manage_tenants=False,
            can_manage_users=False,
            can_manage_billing=False,
            can_manage_appointments=True,
            can_manage_patients=ctx.tenant_id is not None,
            own_appointments_only=True,
            notes="Doctor sees and manages only their own agenda.",
        )

    if ctx.role == "patient":
        return Policy(
            role="patient",
            tenant_id=ctx.tenant_id,
            can_manage_tenants=False,
            can_manage_users=False,
            can_manage_billing=False,
            can_manage_appointments=False,
            can_manage_patients=False,
            own_appointments_only=True,
            notes="Patient can book, view and cancel their own appointments.",
        )

    raise ValueError(f"Unknown role: {ctx.role}")


def get_redirect_path(ctx: AccessContext) -> str:
    """Landing page for a freshly logged-in user."""
    if ctx.role == "super_admin":
        return "/admin/manage-users"
    if ctx.role in TENANT_STAFF_ROLES:
        return f"/dashboard/{ctx.tenant_id}" if ctx.tenant_id else "/dashboard"
    if ctx.role == "doctor":
        return "/agenda"
    if ctx.role == "patient":
        return "/my-appointments"
    return "/dashboard"


def ensure_tenant_access(policy: Policy, tenant_id: Optional[str]) -> None:
    """Raise PermissionDenied unless *policy* may act on *tenant_id*."""
    if policy.tenant_id is None and policy.role == "super_admin":
        return
    if not tenant_id or policy.tenant_id != tenant_id:
        raise PermissionDenied("Access denied to this tenant")


def resolve_tenant_scope(policy: Policy, requested: Optional[str]) -> Optional[str]:
    """Pick the tenant a request operates on: super admins may choose, others are pinned."""
    if policy.role == "super_admin":
        return requested
    if requested and requested != policy.tenant_id:
        raise PermissionDenied("Access denied to this tenant")
    return policy.tenant_id


def log_audit_action(
    engine,
    ctx: AccessContext,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> bool:
    """Record a super admin action. Other roles are ignored."""
    if ctx.role != "super_admin":
        return False

    sql = text("""
        INSERT INTO audit_log
            (id, user_id, action, resource_type, resource_id, tenant_id,
             metadata, ip_address, user_agent, created_at)
        VALUES
            (:id, :user_id, :action, :resource_type, :resource_id, :tenant_id,
             :metadata, :ip_address, :user_agent, :created_at)
    """)
    with engine.begin() as conn:
        conn.execute(sql, {
            "id": new_id(),
            "user_id": ctx.user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "tenant_id": tenant_id,
            "metadata": json.dumps(metadata) if metadata else None,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": utcnow_iso(),
        })
    print(f"[audit] {ctx.email} {action} {resource_type or ''} {resource_id or ''}".rstrip())
    return True
