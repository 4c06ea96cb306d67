"""
Online appointment payments through Stripe PaymentIntents.
"""

import sys
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vittasami.appointments import STATUS_TRANSITION_RULES, load_scoped, record_status_change
from vittasami.config import STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from vittasami.database import fetch_one, update_row, utcnow_iso
from vittasami.errors import Conflict, NotFound, ServiceUnavailable, ValidationError
from vittasami.invoices import on_payment_success
from vittasami.models import AccessContext, Policy
from vittasami.notifications import queue_notification

# Currencies Stripe expects in whole units rather than cents.
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}

PAYMENT_APPOINTMENT_SELECT = """
    SELECT a.id, a.tenant_id, a.status, a.total_amount, a.payment_status,
           p.first_name AS patient_first_name, p.last_name AS patient_last_name,
           p.email AS patient_email, p.phone AS patient_phone,
           s.name AS service_name
    FROM appointments a
    LEFT JOIN patients p ON p.id = a.patient_id
    LEFT JOIN services s ON s.id = a.service_id
"""


def is_configured() -> bool:
    return bool(STRIPE_SECRET_KEY)


def to_smallest_unit(amount: float, currency: str = STRIPE_CURRENCY) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(round(amount))
    return int(round(amount * 100))


def create_payment_intent(engine, appointment_id: Optional[str], amount: Any,
                          ctx: Optional[AccessContext] = None,
                          policy: Optional[Policy] = None) -> Dict[str, str]:
    """
    Create a PaymentIntent for an appointment. With *ctx* and *policy* the
    appointment must be visible to the caller: patients only reach their
    own, staff only their tenant's.
    """
    if not is_configured():
        raise ServiceUnavailable("Payment processing not configured")
    if not appointment_id or not amount:
        raise ValidationError("appointment_id and amount are required")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")
    if amount <= 0:
        raise ValidationError("amount must be > 0")

    with engine.connect() as conn:
        if policy is not None:
            load_scoped(conn, ctx, policy, appointment_id)
        appointment = fetch_one(conn, f"{PAYMENT_APPOINTMENT_SELECT} WHERE a.id = :id", {"id": appointment_id})
    if not appointment:
        raise NotFound("Appointment not found")
    if appointment["payment_status"] == "completed":
        raise Conflict("Appointment is already paid")

    patient_name = f"{appointment['patient_first_name'] or ''} {appointment['patient_last_name'] or ''}".strip()
    intent = stripe.PaymentIntent.create(
        api_key=STRIPE_SECRET_KEY,
        amount=to_smallest_unit(amount),
        currency=STRIPE_CURRENCY,
        automatic_payment_methods={"enabled": True},
        metadata={
            "appointment_id": appointment["id"],
            "tenant_id": appointment["tenant_id"],
            "patient_email": appointment["patient_email"] or "",
            "service_name": appointment["service_name"] or "",
        },
        description=f"Cita médica - {appointment['service_name']} para {patient_name}",
    )

    with engine.begin() as conn:
        update_row(conn, "appointments", appointment_id, {
            "stripe_payment_intent_id": intent["id"],
            "payment_status": "pending",
            "updated_at": utcnow_iso(),
        })
    print(f"[payments] PaymentIntent {intent['id']} created for appointment {appointment_id}")
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def construct_event(payload: bytes, signature: Optional[str]):
    """Verify a webhook payload; raises ValidationError on a bad signature."""
    if not signature:
        raise ValidationError("No signature")
    if not STRIPE_WEBHOOK_SECRET:
        raise ServiceUnavailable("Payment webhook not configured")
    try:
        return stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        print(f"[WARN] Rejected webhook: {e}", file=sys.stderr)
        raise ValidationError("Webhook error")


def _appointment_for_intent(conn, intent_id: str) -> Dict[str, Any]:
    appointment = fetch_one(
        conn, f"{PAYMENT_APPOINTMENT_SELECT} WHERE a.stripe_payment_intent_id = :pi", {"pi": intent_id}
    )
    if not appointment:
        print(f"[ERROR] No appointment for PaymentIntent {intent_id}", file=sys.stderr)
        raise NotFound("Appointment not found")
    return appointment


def _notify(conn, appointment: Dict[str, Any], kind: str, subject: str, content: str) -> None:
    if not appointment["patient_email"] and not appointment["patient_phone"]:
        return
    try:
        queue_notification(
            conn, appointment["tenant_id"], kind, subject, content,
            recipient_email=appointment["patient_email"],
            recipient_phone=appointment["patient_phone"],
            appointment_id=appointment["id"],
        )
    except (SQLAlchemyError, ValidationError) as e:
        print(f"[WARN] Could not queue {kind} notification: {e}", file=sys.stderr)


def handle_payment_succeeded(engine, intent_id: str) -> Dict[str, Any]:
    """
    Mark the appointment paid and invoice it. Stripe retries webhooks, so a
    repeated delivery for an already completed payment changes nothing.
    """
    with engine.begin() as conn:
        appointment = _appointment_for_intent(conn, intent_id)
        claimed = conn.execute(text(
            "UPDATE appointments SET payment_status = 'completed', paid_amount = :paid, updated_at = :now "
            "WHERE id = :id AND payment_status <> 'completed'"
        ), {"id": appointment["id"], "paid": appointment["total_amount"], "now": utcnow_iso()}).rowcount
        if not claimed:
            print(f"[payments] Duplicate success event for PaymentIntent {intent_id}; already processed")
            return appointment

        # Terminal appointments keep their status; only the payment is recorded.
        if "confirmed" in STATUS_TRANSITION_RULES.get(appointment["status"], ()):
            update_row(conn, "appointments", appointment["id"], {"status": "confirmed"})
            record_status_change(
                conn, appointment, "confirmed", None,
                reason="Payment received", notes=f"PaymentIntent {intent_id}",
                automated=True, change_source="stripe",
            )
        _notify(
            conn, appointment, "payment_success", "Pago confirmado - VittaSami",
            f"Tu pago para la cita de {appointment['service_name']} ha sido confirmado exitosamente.",
        )
    on_payment_success(engine, appointment["id"], intent_id)
    print(f"[payments] Payment succeeded for appointment {appointment['id']}")
    return appointment


def handle_payment_failed(engine, intent_id: str) -> Dict[str, Any]:
    with engine.begin() as conn:
        appointment = _appointment_for_intent(conn, intent_id)
        update_row(conn, "appointments", appointment["id"], {
            "payment_status": "failed",
            "updated_at": utcnow_iso(),
        })
        _notify(
            conn, appointment, "payment_failed", "Problema con el pago - VittaSami",
            f"Hubo un problema con tu pago para la cita de {appointment['service_name']}. "
            "Por favor intenta de nuevo.",
        )
    print(f"[payments] Payment failed for appointment {appointment['id']}")
    return appointment


def handle_event(engine, event) -> None:
    event_type = event["type"]
    if event_type == "payment_intent.succeeded":
        handle_payment_succeeded(engine, event["data"]["object"]["id"])
    elif event_type == "payment_intent.payment_failed":
        handle_payment_failed(engine, event["data"]["object"]["id"])
    else:
        print(f"[payments] Ignoring webhook event {event_type}")
