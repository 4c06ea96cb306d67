"""
Doctor weekly schedule and open-slot suggestion endpoints.
"""

from flask import jsonify, request

from vittasami.availability import (
    SUGGESTION_TYPES,
    find_available_slots,
    get_doctor,
    get_weekly_availability,
    parse_date,
    replace_weekly_availability,
)
from vittasami.config import DEFAULT_SLOT_MINUTES, DEFAULT_SLOTS_PER_DAY
from vittasami.errors import NotFound, PermissionDenied, ValidationError
from vittasami.rbac import ensure_tenant_access
from vittasami.api.auth import int_arg, json_body, token_required


def register_availability_routes(app, engine):

    def doctor_tenant(doctor_id, requested=None):
        doctor = get_doctor(engine, doctor_id)
        tenant_id = requested or doctor["tenant_id"]
        if not tenant_id:
            raise NotFound("Doctor not assigned to any tenant")
        ensure_tenant_access(request.policy, tenant_id)
        return doctor, tenant_id

    @app.route("/api/doctors/<doctor_id>/availability", methods=["GET"])
    @token_required
    def doctor_availability(doctor_id):
        _, tenant_id = doctor_tenant(doctor_id, request.args.get("tenant_id"))
        schedule = get_weekly_availability(engine, tenant_id, doctor_id)
        return jsonify(dict(schedule, doctor_id=doctor_id, tenant_id=tenant_id)), 200

    @app.route("/api/doctors/<doctor_id>/availability", methods=["PUT"])
    @token_required
    def update_doctor_availability(doctor_id):
        data = json_body()
        _, tenant_id = doctor_tenant(doctor_id, data.get("tenant_id"))
        ctx = request.ctx
        if ctx.role not in ("super_admin", "admin_tenant") and ctx.user_id != doctor_id:
            raise PermissionDenied("Only the doctor or a tenant administrator can edit this schedule")

        schedule = replace_weekly_availability(
            engine, tenant_id, doctor_id, data.get("availability"), data.get("breaks"),
        )
        return jsonify(dict(schedule, success=True, doctor_id=doctor_id, tenant_id=tenant_id)), 200

    @app.route("/api/doctors/<doctor_id>/available-slots", methods=["GET"])
    @token_required
    def available_slots(doctor_id):
        doctor, tenant_id = doctor_tenant(doctor_id, request.args.get("tenant_id"))

        suggestion_type = request.args.get("suggestion_type") or "next_week"
        if suggestion_type not in SUGGESTION_TYPES:
            raise ValidationError(f"suggestion_type must be one of {', '.join(SUGGESTION_TYPES)}")
        base_date = request.args.get("base_date")

        result = find_available_slots(
            engine, tenant_id, doctor_id,
            base_date=parse_date(base_date, "base_date") if base_date else None,
            duration=int_arg("duration_minutes", DEFAULT_SLOT_MINUTES),
            suggestion_type=suggestion_type,
            max_per_day=int_arg("max_per_day", DEFAULT_SLOTS_PER_DAY),
        )
        result["doctor_name"] = f"{doctor['first_name']} {doctor['last_name']}".strip()
        return jsonify({"success": True, "data": result}), 200
