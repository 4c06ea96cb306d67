"""
Tenant dashboard statistics.
"""

from flask import jsonify, request

from vittasami.config import TENANT_STAFF_ROLES
from vittasami.dashboard import dashboard_stats
from vittasami.rbac import ensure_tenant_access
from vittasami.tenants import get_tenant
from vittasami.api.auth import roles_required, token_required


def register_dashboard_routes(app, engine):

    @app.route("/api/dashboard/<tenant_id>/stats", methods=["GET"])
    @token_required
    @roles_required("super_admin", "doctor", *TENANT_STAFF_ROLES)
    def tenant_dashboard(tenant_id):
        ensure_tenant_access(request.policy, tenant_id)
        get_tenant(engine, tenant_id)
        return jsonify(dashboard_stats(engine, tenant_id)), 200
