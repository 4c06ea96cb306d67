"""
Invoices, their line items and the payments recorded against them.

Invoice numbers are sequential per tenant and year: FAC-YYYY-NNNNN.
Totals are kept in application code: every recorded payment updates the
invoice's paid_amount, balance and status in the same transaction.
"""

import re
import sys
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from vittasami.availability import parse_date
from vittasami.config import DEFAULT_CURRENCY, DEFAULT_PAGE_SIZE, DEFAULT_TAX_RATE, MAX_PAGE_SIZE
from vittasami.database import fetch_all, fetch_one, fetch_value, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import Conflict, NotFound, ValidationError
from vittasami.models import ItemTotals

INVOICE_TYPES = ("invoice", "receipt", "credit_note", "debit_note", "proforma")
INVOICE_STATUSES = ("draft", "pending", "paid", "partial", "overdue", "cancelled", "refunded")
ITEM_TYPES = ("service", "product", "other")
PAYMENT_METHODS = ("cash", "card", "transfer", "yape", "plin", "culqi", "stripe", "other")
PAYABLE_STATUSES = ("pending", "partial", "overdue")

# Manual transitions; partial and paid are reached only by recording payments.
INVOICE_STATUS_TRANSITIONS = {
    "draft": ("pending", "cancelled"),
    "pending": ("overdue", "cancelled"),
    "partial": ("overdue", "cancelled"),
    "overdue": ("cancelled",),
    "paid": (),
    "cancelled": (),
    "refunded": (),
}

CUSTOMER_FIELDS = (
    "customer_name", "customer_email", "customer_phone", "customer_document_type",
    "customer_document_number", "customer_address",
)
NUMBER_PATTERN = re.compile(r"FAC-\d{4}-(\d+)")


def calculate_item_totals(
    quantity: float,
    unit_price: float,
    discount_percent: float = 0,
    tax_rate: float = DEFAULT_TAX_RATE,
    tax_included: bool = True,
) -> ItemTotals:
    """
    Line totals. With *tax_included* the unit price already carries the tax
    and the subtotal is extracted from it; otherwise tax is added on top.
    """
    gross = quantity * unit_price
    discount = gross * discount_percent / 100
    net = gross - discount

    if tax_included:
        subtotal = net / (1 + tax_rate / 100)
        tax = net - subtotal
        total = net
    else:
        subtotal = net
        tax = subtotal * tax_rate / 100
        total = subtotal + tax

    return ItemTotals(
        subtotal=round(subtotal, 2),
        tax_amount=round(tax, 2),
        total=round(total, 2),
        discount_amount=round(discount, 2),
    )


def next_invoice_number(conn, tenant_id: str, year: Optional[int] = None) -> str:
    year = year or date.today().year
    prefix = f"FAC-{year}-"
    last = fetch_value(
        conn,
        "SELECT invoice_number FROM invoices WHERE tenant_id = :tenant_id "
        "AND invoice_number LIKE :prefix "
        "ORDER BY LENGTH(invoice_number) DESC, invoice_number DESC LIMIT 1",
        {"tenant_id": tenant_id, "prefix": f"{prefix}%"},
    )
    number = 1
    if last:
        match = NUMBER_PATTERN.match(last)
        if match:
            number = int(match.group(1)) + 1
    return f"{prefix}{number:05d}"


# ── Validation ───────────────────────────────────────────────────────

def _number(value: Any, name: str, minimum: float = None, maximum: float = None,
            exclusive_min: bool = False) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if minimum is not None and (value <= minimum if exclusive_min else value < minimum):
        raise ValidationError(f"{name} must be {'>' if exclusive_min else '>='} {minimum:g}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} must be <= {maximum:g}")
    return value


def validate_items(items: Any, tax_rate: float) -> List[Dict[str, Any]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Items must be objects")
        description = str(item.get("description") or "").strip()
        if not description:
            raise ValidationError(f"items[{index}].description is required")
        item_type = item.get("item_type") or "service"
        if item_type not in ITEM_TYPES:
            raise ValidationError(f"items[{index}].item_type must be one of {', '.join(ITEM_TYPES)}")

        quantity = _number(item.get("quantity", 1), f"items[{index}].quantity", 0, exclusive_min=True)
        unit_price = _number(item.get("unit_price"), f"items[{index}].unit_price", 0)
        discount_percent = _number(item.get("discount_percent", 0), f"items[{index}].discount_percent", 0, 100)
        tax_included = bool(item.get("tax_included", True))

        totals = calculate_item_totals(quantity, unit_price, discount_percent, tax_rate, tax_included)
        cleaned.append({
            "item_type": item_type,
            "description": description,
            "service_id": item.get("service_id"),
            "quantity": quantity,
            "unit_price": unit_price,
            "discount_percent": discount_percent,
            "discount_amount": totals.discount_amount,
            "tax_included": tax_included,
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "total": totals.total,
            "sort_order": index,
        })
    return cleaned


def _optional_date(value: Any, name: str) -> Optional[str]:
    if value in (None, ""):
        return None
    return parse_date(value, name).isoformat()


# ── Invoices ─────────────────────────────────────────────────────────

def _normalise(invoice: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("subtotal", "tax_rate", "tax_amount", "discount_amount", "total", "paid_amount", "balance"):
        if invoice.get(key) is not None:
            invoice[key] = round(float(invoice[key]), 2)
    return invoice


def create_invoice(engine, tenant_id: str, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
    invoice_type = data.get("invoice_type") or "invoice"
    if invoice_type not in INVOICE_TYPES:
        raise ValidationError(f"invoice_type must be one of {', '.join(INVOICE_TYPES)}")
    tax_rate = _number(data.get("tax_rate", DEFAULT_TAX_RATE), "tax_rate", 0, 100)
    discount_amount = _number(data.get("discount_amount", 0), "discount_amount", 0)
    issue_date = _optional_date(data.get("issue_date"), "issue_date") or date.today().isoformat()
    due_date = _optional_date(data.get("due_date"), "due_date")
    items = validate_items(data.get("items"), tax_rate)

    subtotal = round(sum(i["subtotal"] for i in items), 2)
    tax_amount = round(sum(i["tax_amount"] for i in items), 2)
    total = round(sum(i["total"] for i in items) - discount_amount, 2)
    if total < 0:
        raise ValidationError("discount_amount cannot exceed the invoice total")

    customer = {k: data.get(k) for k in CUSTOMER_FIELDS}
    now = utcnow_iso()
    with engine.begin() as conn:
        patient_id = data.get("patient_id")
        if patient_id:
            patient = fetch_one(
                conn,
                "SELECT * FROM patients WHERE id = :id AND tenant_id = :tenant_id",
                {"id": patient_id, "tenant_id": tenant_id},
            )
            if not patient:
                raise NotFound("Patient not found")
            customer["customer_name"] = customer["customer_name"] or (
                f"{patient['first_name']} {patient['last_name']}".strip()
            )
            customer["customer_email"] = customer["customer_email"] or patient.get("email")
            customer["customer_phone"] = customer["customer_phone"] or patient.get("phone")
            customer["customer_document_type"] = customer["customer_document_type"] or patient.get("document_type")
            customer["customer_document_number"] = (
                customer["customer_document_number"] or patient.get("document_number")
            )
            customer["customer_address"] = customer["customer_address"] or patient.get("address")

        invoice = insert_row(conn, "invoices", dict(
            customer,
            id=new_id(),
            tenant_id=tenant_id,
            patient_id=patient_id,
            appointment_id=data.get("appointment_id"),
            invoice_number=next_invoice_number(conn, tenant_id, int(issue_date[:4])),
            invoice_type=invoice_type,
            status="draft",
            issue_date=issue_date,
            due_date=due_date,
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            discount_amount=round(discount_amount, 2),
            total=total,
            paid_amount=0.0,
            balance=total,
            currency=data.get("currency") or DEFAULT_CURRENCY,
            payment_method=None,
            payment_reference=None,
            notes=data.get("notes"),
            internal_notes=data.get("internal_notes"),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        ))
        for item in items:
            insert_row(conn, "invoice_items", dict(item, id=new_id(), invoice_id=invoice["id"]))

    print(f"[invoices] Created {invoice['invoice_number']} ({total:.2f} {invoice['currency']})")
    invoice["items"] = items
    return _normalise(invoice)


def load_invoice(conn, tenant_id: Optional[str], invoice_id: str) -> Dict[str, Any]:
    """Invoice row with its items, read on an open connection."""
    sql = "SELECT * FROM invoices WHERE id = :id"
    params = {"id": invoice_id}
    if tenant_id:
        sql += " AND tenant_id = :tenant_id"
        params["tenant_id"] = tenant_id
    invoice = fetch_one(conn, sql, params)
    if not invoice:
        raise NotFound("Invoice not found")
    items = fetch_all(
        conn, "SELECT * FROM invoice_items WHERE invoice_id = :id ORDER BY sort_order", {"id": invoice_id}
    )
    for item in items:
        item["tax_included"] = bool(item["tax_included"])
    invoice["items"] = items
    return _normalise(invoice)


def get_invoice(engine, tenant_id: Optional[str], invoice_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        return load_invoice(conn, tenant_id, invoice_id)


def list_invoices(
    engine,
    tenant_id: Optional[str],
    status: Optional[str] = None,
    patient_id: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> Dict[str, Any]:
    if status and status not in INVOICE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))

    clauses, params = [], {}
    if tenant_id:
        clauses.append("tenant_id = :tenant_id")
        params["tenant_id"] = tenant_id
    if status:
        clauses.append("status = :status")
        params["status"] = status
    if patient_id:
        clauses.append("patient_id = :patient_id")
        params["patient_id"] = patient_id
    if date_from:
        clauses.append("issue_date >= :date_from")
        params["date_from"] = parse_date(date_from, "from").isoformat()
    if date_to:
        clauses.append("issue_date <= :date_to")
        params["date_to"] = parse_date(date_to, "to").isoformat()
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    with engine.connect() as conn:
        summary = fetch_one(
            conn,
            "SELECT COUNT(*) AS count, COALESCE(SUM(total), 0) AS total, "
            f"COALESCE(SUM(paid_amount), 0) AS paid, COALESCE(SUM(balance), 0) AS balance FROM invoices{where}",
            params,
        )
        rows = fetch_all(
            conn,
            f"SELECT * FROM invoices{where} ORDER BY issue_date DESC, invoice_number DESC "
            "LIMIT :limit OFFSET :offset",
            dict(params, limit=limit, offset=(page - 1) * limit),
        )

    total_count = int(summary["count"] or 0)
    return {
        "invoices": [_normalise(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total_count,
            "total_pages": (total_count + limit - 1) // limit,
        },
        "summary": {
            "total_invoiced": round(float(summary["total"]), 2),
            "total_paid": round(float(summary["paid"]), 2),
            "total_outstanding": round(float(summary["balance"]), 2),
        },
    }


def _version(invoice: Dict[str, Any]) -> Dict[str, Any]:
    # updated_at is rewritten on every change and serves as the row version.
    return {"status": invoice["status"], "updated_at": invoice["updated_at"]}


def _save_invoice(conn, invoice: Dict[str, Any], values: Dict[str, Any]) -> None:
    """Write *values* only if the invoice is unchanged since it was read."""
    if not update_row(conn, "invoices", invoice["id"], values, expected=_version(invoice)):
        raise Conflict("Invoice was modified by another request, please retry")


def update_invoice(engine, tenant_id: Optional[str], invoice_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Edit notes and due date of drafts; issue (draft -> pending) or void (-> cancelled)."""
    with engine.begin() as conn:
        invoice = load_invoice(conn, tenant_id, invoice_id)
        values: Dict[str, Any] = {}

        editable = {k: data[k] for k in ("notes", "internal_notes", "due_date") if k in data}
        if editable:
            if invoice["status"] != "draft":
                raise ValidationError("Only draft invoices can be edited")
            if "due_date" in editable:
                editable["due_date"] = _optional_date(editable["due_date"], "due_date")
            values.update(editable)

        new_status = data.get("status")
        if new_status:
            if new_status not in INVOICE_STATUSES:
                raise ValidationError(f"Invalid status '{new_status}'")
            allowed = INVOICE_STATUS_TRANSITIONS.get(invoice["status"], ())
            if new_status not in allowed:
                raise ValidationError(
                    f"Cannot transition from {invoice['status']} to {new_status}",
                    {"allowed_transitions": list(allowed)},
                )
            values["status"] = new_status

        if not values:
            raise ValidationError("No updatable fields provided")

        values["updated_at"] = utcnow_iso()
        _save_invoice(conn, invoice, values)

    if new_status:
        print(f"[invoices] {invoice['invoice_number']}: {invoice['status']} -> {new_status}")
    return get_invoice(engine, tenant_id, invoice_id)


# ── Payments ─────────────────────────────────────────────────────────

def apply_payment(conn, invoice: Dict[str, Any], amount: float, method: str,
                  reference: Optional[str] = None) -> Dict[str, Any]:
    """
    Add *amount* to a payable invoice read on *conn*. The write is guarded by
    the invoice version, so a concurrent payment makes it raise Conflict
    instead of overwriting the other payment's totals.
    """
    if invoice["status"] not in PAYABLE_STATUSES:
        raise ValidationError(
            f"Cannot record payments on a {invoice['status']} invoice",
            {"allowed_statuses": list(PAYABLE_STATUSES)},
        )
    if amount > invoice["balance"] + 0.005:
        raise ValidationError(
            "Payment amount exceeds the outstanding balance", {"balance": invoice["balance"]}
        )

    paid_amount = round(invoice["paid_amount"] + amount, 2)
    balance = round(max(invoice["total"] - paid_amount, 0.0), 2)
    status = "paid" if balance == 0 else "partial"
    _save_invoice(conn, invoice, {
        "paid_amount": paid_amount,
        "balance": balance,
        "status": status,
        "payment_method": method,
        "payment_reference": reference,
        "updated_at": utcnow_iso(),
    })
    return {"id": invoice["id"], "paid_amount": paid_amount, "balance": balance, "status": status}


def record_payment(
    engine,
    tenant_id: Optional[str],
    invoice_id: str,
    data: Dict[str, Any],
    received_by: Optional[str] = None,
) -> Dict[str, Any]:
    amount = round(_number(data.get("amount"), "amount", 0, exclusive_min=True), 2)
    method = data.get("payment_method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    payment_date = _optional_date(data.get("payment_date"), "payment_date") or date.today().isoformat()

    with engine.begin() as conn:
        invoice = load_invoice(conn, tenant_id, invoice_id)
        totals = apply_payment(conn, invoice, amount, method, data.get("reference"))
        payment = insert_row(conn, "invoice_payments", {
            "id": new_id(),
            "invoice_id": invoice_id,
            "amount": amount,
            "payment_method": method,
            "payment_date": payment_date,
            "reference": data.get("reference"),
            "notes": data.get("notes"),
            "received_by": received_by,
            "created_at": utcnow_iso(),
        })

    print(f"[invoices] Payment {amount:.2f} on {invoice['invoice_number']} -> {totals['status']}")
    return {"payment": payment, "invoice": totals}


def list_payments(engine, tenant_id: Optional[str], invoice_id: str) -> List[Dict[str, Any]]:
    get_invoice(engine, tenant_id, invoice_id)
    with engine.connect() as conn:
        return fetch_all(
            conn,
            "SELECT * FROM invoice_payments WHERE invoice_id = :id ORDER BY payment_date, created_at",
            {"id": invoice_id},
        )


def generate_invoice_from_payment(
    conn,
    tenant_id: str,
    patient_id: Optional[str],
    service_name: str,
    service_price: float,
    appointment_id: Optional[str] = None,
    payment_reference: Optional[str] = None,
    payment_method: str = "stripe",
    quantity: int = 1,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an already-paid invoice (tax 0) for a completed online payment."""
    today = date.today().isoformat()
    total = round(float(service_price) * quantity, 2)
    now = utcnow_iso()
    invoice = insert_row(conn, "invoices", {
        "id": new_id(),
        "tenant_id": tenant_id,
        "patient_id": patient_id,
        "appointment_id": appointment_id,
        "invoice_number": next_invoice_number(conn, tenant_id),
        "invoice_type": "invoice",
        "status": "paid",
        "issue_date": today,
        "due_date": today,
        "subtotal": total,
        "tax_rate": 0.0,
        "tax_amount": 0.0,
        "discount_amount": 0.0,
        "total": total,
        "paid_amount": total,
        "balance": 0.0,
        "currency": DEFAULT_CURRENCY,
        "payment_method": payment_method,
        "payment_reference": payment_reference,
        "notes": notes,
        "created_at": now,
        "updated_at": now,
    })
    insert_row(conn, "invoice_items", {
        "id": new_id(),
        "invoice_id": invoice["id"],
        "item_type": "service",
        "description": service_name,
        "quantity": quantity,
        "unit_price": round(float(service_price), 2),
        "discount_percent": 0.0,
        "discount_amount": 0.0,
        "tax_included": True,
        "subtotal": total,
        "tax_amount": 0.0,
        "total": total,
        "sort_order": 0,
    })
    print(f"[invoices] Invoice {invoice['invoice_number']} generated for payment {payment_reference}")
    return invoice


def on_payment_success(engine, appointment_id: str, payment_reference: str) -> Optional[Dict[str, Any]]:
    """
    Invoice a paid appointment once. An appointment that already has an
    invoice gets that invoice back. Failures are logged and return None.
    """
    try:
        with engine.begin() as conn:
            existing = fetch_one(
                conn,
                "SELECT * FROM invoices WHERE appointment_id = :id ORDER BY created_at LIMIT 1",
                {"id": appointment_id},
            )
            if existing:
                print(f"[invoices] Appointment {appointment_id} already invoiced as {existing['invoice_number']}")
                return _normalise(existing)

            appointment = fetch_one(
                conn,
                "SELECT a.id, a.tenant_id, a.patient_id, s.name AS service_name, s.price AS service_price "
                "FROM appointments a LEFT JOIN services s ON s.id = a.service_id WHERE a.id = :id",
                {"id": appointment_id},
            )
            if not appointment or appointment["service_name"] is None:
                print(f"[WARN] Cannot invoice appointment {appointment_id}: appointment or service missing",
                      file=sys.stderr)
                return None
            return generate_invoice_from_payment(
                conn,
                appointment["tenant_id"],
                appointment["patient_id"],
                appointment["service_name"],
                appointment["service_price"] or 0,
                appointment_id=appointment_id,
                payment_reference=payment_reference,
            )
    except SQLAlchemyError as e:
        print(f"[ERROR] Invoice generation failed for appointment {appointment_id}: {e}", file=sys.stderr)
        return None
