"""
Appointment booking and lifecycle endpoints.
"""

from flask import jsonify, request

from vittasami.appointments import (
    cancel_appointment,
    change_status,
    create_appointment,
    get_appointment,
    list_appointments,
    my_appointments,
    reschedule_appointment,
)
from vittasami.config import DEFAULT_PAGE_SIZE
from vittasami.api.auth import int_arg, json_body, roles_required, token_required


def register_appointment_routes(app, engine):

    @app.route("/api/appointments", methods=["POST"])
    def book_appointment():
        appointment = create_appointment(engine, json_body())
        return jsonify(appointment), 201

    @app.route("/api/appointments", methods=["GET"])
    @token_required
    def appointments_index():
        args = request.args
        result = list_appointments(
            engine, request.ctx, request.policy,
            tenant_id=args.get("tenant_id"),
            doctor_id=args.get("doctor_id"),
            patient_id=args.get("patient_id"),
            status=args.get("status"),
            appointment_date=args.get("date"),
            include_history=args.get("include_history") == "true",
            page=int_arg("page", 1),
            limit=int_arg("limit", DEFAULT_PAGE_SIZE),
        )
        return jsonify(result), 200

    @app.route("/api/appointments/my-appointments", methods=["GET"])
    @token_required
    def my_appointments_index():
        return jsonify({"appointments": my_appointments(engine, request.ctx)}), 200

    @app.route("/api/appointments/<appointment_id>", methods=["GET"])
    @token_required
    def appointment_detail(appointment_id):
        return jsonify(get_appointment(engine, request.ctx, request.policy, appointment_id)), 200

    @app.route("/api/appointments/<appointment_id>/status", methods=["PUT"])
    @token_required
    def appointment_status(appointment_id):
        data = json_body()
        result = change_status(
            engine, request.ctx, request.policy, appointment_id,
            data.get("new_status"), data.get("reason"), data.get("notes"),
        )
        return jsonify(dict(result, success=True)), 200

    @app.route("/api/appointments/<appointment_id>/cancel", methods=["PUT"])
    @token_required
    @roles_required("patient")
    def appointment_cancel(appointment_id):
        data = request.get_json(silent=True) or {}
        appointment = cancel_appointment(
            engine, request.ctx, request.policy, appointment_id, data.get("reason"),
        )
        return jsonify({"success": True, "appointment": appointment}), 200

    @app.route("/api/appointments/<appointment_id>/reschedule", methods=["PUT"])
    @token_required
    def appointment_reschedule(appointment_id):
        data = json_body()
        appointment = reschedule_appointment(
            engine, request.ctx, request.policy, appointment_id,
            data.get("appointment_date"), data.get("start_time"), data.get("reason"),
        )
        return jsonify({"success": True, "appointment": appointment}), 200
