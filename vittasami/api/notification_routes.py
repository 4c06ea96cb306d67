"""
Notification queueing, batch delivery and listing endpoints.
"""

from flask import jsonify, request

from vittasami.config import NOTIFICATION_BATCH_SIZE, NOTIFICATION_LIST_LIMIT, TENANT_STAFF_ROLES
from vittasami.errors import ValidationError
from vittasami.notifications import list_notifications, process_pending, queue_notification
from vittasami.reminders import active_reminder_tenants, get_reminder_config, queue_due_reminders, save_reminder_config
from vittasami.rbac import ensure_tenant_access
from vittasami.api.auth import current_tenant, int_arg, json_body, roles_required, token_required


def register_notification_routes(app, engine):

    @app.route("/api/notifications/send", methods=["POST"])
    @token_required
    def send_notification():
        data = json_body()
        tenant_id = data.get("tenant_id")
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        ensure_tenant_access(request.policy, tenant_id)

        with engine.begin() as conn:
            notification = queue_notification(
                conn, tenant_id, data.get("type"), data.get("subject"), data.get("content"),
                recipient_email=data.get("recipient_email"),
                recipient_phone=data.get("recipient_phone"),
                appointment_id=data.get("appointment_id"),
            )
        result = process_pending(engine)
        return jsonify({"success": True, "notification_id": notification["id"], "processed": result}), 200

    @app.route("/api/notifications/process", methods=["POST"])
    @token_required
    @roles_required("super_admin", *TENANT_STAFF_ROLES)
    def process_notifications():
        result = process_pending(engine, min(int_arg("limit", NOTIFICATION_BATCH_SIZE), NOTIFICATION_BATCH_SIZE))
        return jsonify(dict(result, success=True)), 200

    @app.route("/api/notifications", methods=["GET"])
    @token_required
    @roles_required("super_admin", *TENANT_STAFF_ROLES)
    def notifications_index():
        tenant_id = current_tenant(request.args.get("tenant_id"))
        notifications = list_notifications(
            engine, tenant_id, request.args.get("status"), NOTIFICATION_LIST_LIMIT,
        )
        return jsonify({"notifications": notifications}), 200

    @app.route("/api/notifications/process-reminders", methods=["POST"])
    @token_required
    @roles_required("super_admin", *TENANT_STAFF_ROLES)
    def process_reminders():
        tenant_id = current_tenant((request.get_json(silent=True) or {}).get("tenant_id") or request.args.get("tenant_id"))
        if tenant_id:
            tenant_ids = [tenant_id]
        elif request.policy.role == "super_admin":
            tenant_ids = active_reminder_tenants(engine)
        else:
            raise ValidationError("tenant_id is required")

        queued = skipped = 0
        for tid in tenant_ids:
            result = queue_due_reminders(engine, tid)
            queued += result["queued"]
            skipped += result["skipped"]
        processed = process_pending(engine)
        return jsonify({
            "success": True,
            "tenants": len(tenant_ids),
            "queued": queued,
            "skipped": skipped,
            "processed": processed,
        }), 200

    @app.route("/api/reminders/config", methods=["GET"])
    @token_required
    @roles_required("super_admin", *TENANT_STAFF_ROLES)
    def reminder_config():
        tenant_id = current_tenant(request.args.get("tenant_id"), required=True)
        return jsonify({"config": get_reminder_config(engine, tenant_id)}), 200

    @app.route("/api/reminders/config", methods=["PUT"])
    @token_required
    @roles_required("super_admin", "admin_tenant")
    def update_reminder_config():
        data = json_body()
        tenant_id = current_tenant(data.get("tenant_id"), required=True)
        return jsonify({"success": True, "config": save_reminder_config(engine, tenant_id, data)}), 200
