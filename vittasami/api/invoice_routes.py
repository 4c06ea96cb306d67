"""
Invoice and invoice-payment endpoints for tenant billing staff.
"""

from flask import jsonify, request

from vittasami.config import DEFAULT_PAGE_SIZE
from vittasami.invoices import create_invoice, get_invoice, list_invoices, list_payments, record_payment, update_invoice
from vittasami.api.auth import current_tenant, int_arg, json_body, roles_required, token_required

BILLING_ROLES = ("super_admin", "admin_tenant", "staff", "receptionist")


def register_invoice_routes(app, engine):

    @app.route("/api/invoices", methods=["POST"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def new_invoice():
        data = json_body()
        tenant_id = current_tenant(data.get("tenant_id"), required=True)
        invoice = create_invoice(engine, tenant_id, data, created_by=request.ctx.user_id)
        return jsonify({"success": True, "invoice": invoice}), 201

    @app.route("/api/invoices", methods=["GET"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def invoices_index():
        args = request.args
        result = list_invoices(
            engine,
            current_tenant(args.get("tenant_id")),
            status=args.get("status"),
            patient_id=args.get("patient_id"),
            date_from=args.get("from"),
            date_to=args.get("to"),
            page=int_arg("page", 1),
            limit=int_arg("limit", DEFAULT_PAGE_SIZE),
        )
        return jsonify(result), 200

    @app.route("/api/invoices/<invoice_id>", methods=["GET"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def invoice_detail(invoice_id):
        tenant_id = current_tenant(request.args.get("tenant_id"))
        return jsonify({"invoice": get_invoice(engine, tenant_id, invoice_id)}), 200

    @app.route("/api/invoices/<invoice_id>", methods=["PUT"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def invoice_update(invoice_id):
        data = json_body()
        tenant_id = current_tenant(data.get("tenant_id"))
        invoice = update_invoice(engine, tenant_id, invoice_id, data)
        return jsonify({"success": True, "invoice": invoice}), 200

    # ── Payments ─────────────────────────────────────────────────────

    @app.route("/api/invoices/<invoice_id>/payments", methods=["POST"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def invoice_payment(invoice_id):
        data = json_body()
        tenant_id = current_tenant(data.get("tenant_id"))
        result = record_payment(engine, tenant_id, invoice_id, data, received_by=request.ctx.user_id)
        return jsonify(dict(result, success=True)), 201

    @app.route("/api/invoices/<invoice_id>/payments", methods=["GET"])
    @token_required
    @roles_required(*BILLING_ROLES)
    def invoice_payments(invoice_id):
        tenant_id = current_tenant(request.args.get("tenant_id"))
        return jsonify({"payments": list_payments(engine, tenant_id, invoice_id)}), 200
