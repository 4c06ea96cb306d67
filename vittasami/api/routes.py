"""
Top-level route registration: service info, health, error handlers and
every resource blueprint function.
"""

import sys
import traceback

from flask import jsonify
from werkzeug.exceptions import HTTPException

from vittasami.database import check_connection
from vittasami.errors import ApiError
from vittasami.api.ai_routes import register_ai_routes
from vittasami.api.appointment_routes import register_appointment_routes
from vittasami.api.auth_routes import register_auth_routes
from vittasami.api.availability_routes import register_availability_routes
from vittasami.api.dashboard_routes import register_dashboard_routes
from vittasami.api.feature_routes import register_feature_routes
from vittasami.api.invoice_routes import register_invoice_routes
from vittasami.api.notification_routes import register_notification_routes
from vittasami.api.patient_routes import register_patient_routes
from vittasami.api.payment_routes import register_payment_routes
from vittasami.api.tenant_routes import register_tenant_routes

SERVICE_NAME = "VittaSami API"
SERVICE_VERSION = "1.0.0"


def register_routes(app, engine, llm):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "tenants": "/api/tenants",
                "features": "/api/features/check",
                "plans": "/api/subscription-plans",
                "patients": "/api/patients",
                "availability": "/api/doctors/<doctor_id>/available-slots",
                "appointments": "/api/appointments",
                "invoices": "/api/invoices",
                "payments": "/api/payments/create-payment-intent",
                "notifications": "/api/notifications",
                "reminders": "/api/reminders/config",
                "dashboard": "/api/dashboard/<tenant_id>/stats",
                "ai": "/api/ai/suggest-diagnosis",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": check_connection(engine), "llm": llm is not None}
        healthy = checks["database"]
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
        }), 200 if healthy else 503

    # ── Resources ────────────────────────────────────────────────────

    register_auth_routes(app, engine)
    register_tenant_routes(app, engine)
    register_feature_routes(app, engine)
    register_patient_routes(app, engine)
    register_availability_routes(app, engine)
    register_appointment_routes(app, engine)
    register_invoice_routes(app, engine)
    register_payment_routes(app, engine)
    register_notification_routes(app, engine)
    register_dashboard_routes(app, engine)
    register_ai_routes(app, llm)

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(ApiError)
    def api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(Exception)
    def unhandled(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.name, "message": e.description}), e.code
        print(f"[ERROR] Unhandled exception: {e}", file=sys.stderr)
        traceback.print_exc()
        return jsonify({"error": "Internal server error"}), 500
