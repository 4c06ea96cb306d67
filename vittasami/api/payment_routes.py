"""
Stripe payment intent creation and webhook receiver.
"""

from flask import jsonify, request

from vittasami.payments import construct_event, create_payment_intent, handle_event
from vittasami.api.auth import json_body, token_required


def register_payment_routes(app, engine):

    @app.route("/api/payments/create-payment-intent", methods=["POST"])
    @token_required
    def payment_intent():
        data = json_body()
        result = create_payment_intent(
            engine, data.get("appointment_id"), data.get("amount"), request.ctx, request.policy,
        )
        return jsonify(result), 200

    @app.route("/api/payments/webhook", methods=["POST"])
    def payment_webhook():
        # Signature is computed over the raw body.
        event = construct_event(request.get_data(), request.headers.get("Stripe-Signature"))
        print(f"[payments] Webhook received: {event['type']}")
        handle_event(engine, event)
        return jsonify({"received": True}), 200
