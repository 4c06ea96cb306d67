"""
Tenant, tenant user and service endpoints.
"""

from flask import jsonify, request

from vittasami.config import MIN_CHANGE_PASSWORD, PROFESSIONAL_ROLES, ROLES, TENANT_STAFF_ROLES
from vittasami.errors import PermissionDenied, ValidationError
from vittasami.feature_gating import check_limit, current_count
from vittasami.rbac import ensure_tenant_access, log_audit_action
from vittasami.tenants import create_service, create_tenant, get_tenant, list_services, list_tenants
from vittasami.users import create_user, list_tenant_users
from vittasami.api.auth import json_body, roles_required, token_required


def register_tenant_routes(app, engine):

    def audit(action, resource_type, resource_id, tenant_id, metadata=None):
        log_audit_action(
            engine, request.ctx, action, resource_type, resource_id, tenant_id, metadata,
            request.remote_addr, request.headers.get("User-Agent"),
        )

    # ── Tenants ──────────────────────────────────────────────────────

    @app.route("/api/tenants", methods=["POST"])
    @token_required
    @roles_required("super_admin")
    def new_tenant():
        data = json_body()
        tenant = create_tenant(
            engine,
            name=str(data.get("name") or ""),
            tenant_type=data.get("tenant_type") or "clinic",
            email=data.get("email"),
            phone=data.get("phone"),
            address=data.get("address"),
            plan_key=data.get("plan_key") or "free",
        )
        audit("create_tenant", "tenant", tenant["id"], tenant["id"], {"name": tenant["name"]})
        return jsonify({"success": True, "tenant": tenant}), 201

    @app.route("/api/tenants", methods=["GET"])
    @token_required
    def tenants_index():
        policy = request.policy
        if policy.role == "super_admin":
            return jsonify({"tenants": list_tenants(engine)}), 200
        if not policy.tenant_id:
            return jsonify({"tenants": []}), 200
        return jsonify({"tenants": list_tenants(engine, policy.tenant_id)}), 200

    @app.route("/api/tenants/<tenant_id>", methods=["GET"])
    @token_required
    def tenant_detail(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        return jsonify({"tenant": get_tenant(engine, tenant_id)}), 200

    # ── Users ────────────────────────────────────────────────────────

    @app.route("/api/tenants/<tenant_id>/users", methods=["GET"])
    @token_required
    @roles_required("super_admin", "admin_tenant")
    def tenant_users(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        role = request.args.get("role")
        if role and role not in ROLES:
            raise ValidationError(f"Invalid role '{role}'")
        return jsonify({"users": list_tenant_users(engine, tenant_id, role)}), 200

    @app.route("/api/tenants/<tenant_id>/users", methods=["POST"])
    @token_required
    @roles_required("super_admin", "admin_tenant")
    def add_tenant_user(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        get_tenant(engine, tenant_id)
        data = json_body()
        role = data.get("role") or "staff"
        if role not in TENANT_STAFF_ROLES + ("doctor", "patient"):
            raise ValidationError(f"Invalid role '{role}'")

        password = str(data.get("password") or "")
        for field in ("email", "first_name", "last_name"):
            if not str(data.get(field) or "").strip():
                raise ValidationError(f"{field} is required")
        if len(password) < MIN_CHANGE_PASSWORD:
            raise ValidationError(f"Password must be at least {MIN_CHANGE_PASSWORD} characters")

        if role in PROFESSIONAL_ROLES:
            usage = check_limit(engine, tenant_id, "max_professionals",
                                current_count(engine, tenant_id, "max_professionals"))
            if not usage.allowed:
                raise PermissionDenied(
                    "Professional limit reached for the current plan",
                    dict(usage.to_dict(), code="LIMIT_REACHED"),
                )

        user = create_user(
            engine, data["email"], password, data["first_name"], data["last_name"],
            role=role, tenant_id=tenant_id, phone=data.get("phone"),
            must_change_password=bool(data.get("must_change_password", True)),
        )
        audit("create_user", "user", user["id"], tenant_id, {"role": role})
        return jsonify({"success": True, "user": user}), 201

    # ── Services ─────────────────────────────────────────────────────

    @app.route("/api/tenants/<tenant_id>/services", methods=["GET"])
    def tenant_services(tenant_id):
        # Public: the booking page lists a clinic's services.
        return jsonify({"services": list_services(engine, tenant_id)}), 200

    @app.route("/api/tenants/<tenant_id>/services", methods=["POST"])
    @token_required
    @roles_required("super_admin", "admin_tenant", "staff")
    def add_service(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        get_tenant(engine, tenant_id)
        data = json_body()
        service = create_service(
            engine, tenant_id, str(data.get("name") or ""),
            data.get("duration_minutes"), data.get("price"), data.get("description"),
        )
        return jsonify({"success": True, "service": service}), 201
