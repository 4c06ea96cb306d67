"""
Subscription plan and feature-gating endpoints.
"""

from flask import jsonify, request

from vittasami.errors import PermissionDenied, ValidationError
from vittasami.feature_gating import (
    LIMIT_KEYS,
    PLAN_CATALOG,
    PLAN_FEATURES,
    PLAN_ORDER,
    check_limit,
    current_count,
    get_required_plan,
    get_tenant_features,
    get_tenant_plan,
    has_feature,
)
from vittasami.rbac import ensure_tenant_access, log_audit_action
from vittasami.tenants import update_subscription
from vittasami.api.auth import current_tenant, json_body, roles_required, token_required


def register_feature_routes(app, engine):

    @app.route("/api/features/check", methods=["GET"])
    @token_required
    def check_features():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        single = request.args.get("feature")
        many = request.args.get("features")

        if single:
            allowed = has_feature(engine, tenant_id, single)
            return jsonify({
                "feature": single,
                "has_access": allowed,
                "required_plan": None if allowed else get_required_plan(single),
            }), 200
        if many:
            names = [f.strip() for f in many.split(",") if f.strip()]
            return jsonify({
                "features": {name: has_feature(engine, tenant_id, name) for name in names},
            }), 200
        raise ValidationError("feature or features query parameter is required")

    @app.route("/api/features/limit", methods=["GET"])
    @token_required
    def check_feature_limit():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        key = request.args.get("key")
        if key not in LIMIT_KEYS:
            raise ValidationError("Invalid limit key", {"allowed_keys": list(LIMIT_KEYS)})

        current = request.args.get("current")
        if current in (None, ""):
            current = current_count(engine, tenant_id, key)
        else:
            try:
                current = int(current)
            except ValueError:
                raise ValidationError("current must be an integer")

        result = check_limit(engine, tenant_id, key, current).to_dict()
        result["key"] = key
        return jsonify(result), 200

    @app.route("/api/features/list", methods=["GET"])
    @token_required
    def list_features():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        return jsonify({"features": get_tenant_features(engine, tenant_id)}), 200

    @app.route("/api/features/plan", methods=["GET"])
    @token_required
    def tenant_plan():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        plan = get_tenant_plan(engine, tenant_id)
        plan.update(PLAN_CATALOG[plan["plan_key"]])
        return jsonify(plan), 200

    @app.route("/api/subscription-plans", methods=["GET"])
    def subscription_plans():
        plans = [
            dict(PLAN_CATALOG[key], plan_key=key, features=dict(PLAN_FEATURES[key]))
            for key in PLAN_ORDER
        ]
        return jsonify({"plans": plans}), 200

    @app.route("/api/tenants/<tenant_id>/subscription", methods=["PUT"])
    @token_required
    @roles_required("super_admin", "admin_tenant")
    def change_subscription(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        data = json_body()
        plan_key = data.get("plan_key")
        if not plan_key:
            raise ValidationError("plan_key is required")
        if request.ctx.role != "super_admin" and data.get("status") not in (None, "active"):
            raise PermissionDenied("Only platform administrators can change subscription status")

        tenant = update_subscription(engine, tenant_id, plan_key, data.get("status") or "active")
        log_audit_action(
            engine, request.ctx, "update_subscription", "tenant", tenant_id, tenant_id,
            {"plan_key": plan_key, "status": tenant["subscription_status"]},
            request.remote_addr, request.headers.get("User-Agent"),
        )
        return jsonify({"success": True, "tenant": tenant}), 200
