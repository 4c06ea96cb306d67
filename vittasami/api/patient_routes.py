"""
Patient record endpoints (tenant-scoped, gated by the patient_management feature).
"""

from functools import wraps

from flask import jsonify, request

from vittasami.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from vittasami.errors import PermissionDenied
from vittasami.feature_gating import check_limit, current_count
from vittasami.patients import create_patient, deactivate_patient, get_patient, list_patients, update_patient
from vittasami.api.auth import current_tenant, feature_required, int_arg, json_body, token_required


def patients_access(f):
    """Callers whose policy may manage patients; apply below ``token_required``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not request.policy.can_manage_patients:
            return jsonify({"error": "Insufficient permissions"}), 403
        return f(*args, **kwargs)
    return decorated


def register_patient_routes(app, engine):

    @app.route("/api/patients", methods=["GET"])
    @token_required
    @patients_access
    @feature_required("patient_management")
    def patients_index():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        result = list_patients(
            engine, tenant_id,
            search=request.args.get("search"),
            include_inactive=request.args.get("include_inactive") == "true",
            page=max(1, int_arg("page", 1)),
            limit=max(1, min(int_arg("limit", DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)),
        )
        return jsonify(result), 200

    @app.route("/api/patients", methods=["POST"])
    @token_required
    @patients_access
    @feature_required("patient_management")
    def new_patient():
        data = json_body()
        tenant_id = current_tenant(data.get("tenant_id"), required=True)
        usage = check_limit(engine, tenant_id, "max_patients", current_count(engine, tenant_id, "max_patients"))
        if not usage.allowed:
            raise PermissionDenied(
                "Patient limit reached for the current plan",
                dict(usage.to_dict(), code="LIMIT_REACHED"),
            )
        return jsonify({"success": True, "patient": create_patient(engine, tenant_id, data)}), 201

    @app.route("/api/patients/<patient_id>", methods=["GET"])
    @token_required
    @patients_access
    @feature_required("patient_management")
    def patient_detail(patient_id):
        tenant_id = current_tenant(request.args.get("tenant_id"))
        return jsonify({"patient": get_patient(engine, tenant_id, patient_id)}), 200

    @app.route("/api/patients/<patient_id>", methods=["PUT"])
    @token_required
    @patients_access
    @feature_required("patient_management")
    def patient_update(patient_id):
        tenant_id = current_tenant(request.args.get("tenant_id"))
        patient = update_patient(engine, tenant_id, patient_id, json_body())
        return jsonify({"success": True, "patient": patient}), 200

    @app.route("/api/patients/<patient_id>", methods=["DELETE"])
    @token_required
    @patients_access
    @feature_required("patient_management")
    def patient_delete(patient_id):
        tenant_id = current_tenant(request.args.get("tenant_id"))
        patient = deactivate_patient(engine, tenant_id, patient_id)
        return jsonify({"success": True, "patient": patient}), 200
