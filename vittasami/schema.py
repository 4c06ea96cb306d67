"""
Relational table definitions.

Dates are stored as YYYY-MM-DD strings, times as HH:MM and timestamps as
ISO-8601 UTC strings so the same SQL runs on Postgres and SQLite.
"""

from sqlalchemy import (
    Boolean, Column, Float, ForeignKey, Integer, MetaData, String, Table, Text,
    UniqueConstraint,
)

metadata = MetaData()

ID = String(36)
DATE = String(10)
TIME = String(5)
TIMESTAMP = String(32)


tenants = Table(
    "tenants", metadata,
    Column("id", ID, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("tenant_type", String(50), nullable=False, default="clinic"),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("address", Text),
    Column("subscription_plan_key", String(20), nullable=False, default="free"),
    Column("subscription_status", String(20), nullable=False, default="active"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

custom_users = Table(
    "custom_users", metadata,
    Column("id", ID, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(100)),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("phone", String(50)),
    Column("role", String(20), nullable=False),
    Column("tenant_id", ID, ForeignKey("tenants.id")),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("must_change_password", Boolean, nullable=False, default=False),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

services = Table(
    "services", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("duration_minutes", Integer, nullable=False),
    Column("price", Float, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP, nullable=False),
)

patients = Table(
    "patients", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("document_type", String(20)),
    Column("document_number", String(50)),
    Column("address", Text),
    Column("date_of_birth", DATE),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

doctor_availability = Table(
    "doctor_availability", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("doctor_id", ID, ForeignKey("custom_users.id"), nullable=False),
    Column("day_of_week", Integer, nullable=False),  # 0 = Sunday
    Column("start_time", TIME, nullable=False),
    Column("end_time", TIME, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

doctor_breaks = Table(
    "doctor_breaks", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("doctor_id", ID, ForeignKey("custom_users.id"), nullable=False),
    Column("day_of_week", Integer, nullable=False),
    Column("start_time", TIME, nullable=False),
    Column("end_time", TIME, nullable=False),
    Column("break_type", String(20), nullable=False, default="break"),
    Column("is_active", Boolean, nullable=False, default=True),
)

appointments = Table(
    "appointments", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("doctor_id", ID, ForeignKey("custom_users.id"), nullable=False),
    Column("patient_id", ID, ForeignKey("patients.id"), nullable=False),
    Column("service_id", ID, ForeignKey("services.id"), nullable=False),
    Column("appointment_date", DATE, nullable=False),
    Column("start_time", TIME, nullable=False),
    Column("end_time", TIME, nullable=False),
    Column("status", String(20), nullable=False, default="pending"),
    Column("total_amount", Float, nullable=False, default=0),
    Column("paid_amount", Float, nullable=False, default=0),
    Column("payment_status", String(20), nullable=False, default="pending"),
    Column("stripe_payment_intent_id", String(100)),
    Column("notes", Text),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

appointment_status_history = Table(
    "appointment_status_history", metadata,
    Column("id", ID, primary_key=True),
    Column("appointment_id", ID, ForeignKey("appointments.id"), nullable=False),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("status", String(20), nullable=False),
    Column("previous_status", String(20)),
    Column("changed_by_user_id", ID),
    Column("changed_by_role", String(20)),
    Column("reason", Text),
    Column("notes", Text),
    Column("automated", Boolean, nullable=False, default=False),
    Column("change_source", String(20), nullable=False, default="api"),
    Column("created_at", TIMESTAMP, nullable=False),
)

invoices = Table(
    "invoices", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("patient_id", ID, ForeignKey("patients.id")),
    Column("appointment_id", ID, ForeignKey("appointments.id")),
    Column("invoice_number", String(20), nullable=False),
    Column("invoice_type", String(20), nullable=False, default="invoice"),
    Column("status", String(20), nullable=False, default="draft"),
    Column("issue_date", DATE, nullable=False),
    Column("due_date", DATE),
    Column("subtotal", Float, nullable=False, default=0),
    Column("tax_rate", Float, nullable=False, default=0),
    Column("tax_amount", Float, nullable=False, default=0),
    Column("discount_amount", Float, nullable=False, default=0),
    Column("total", Float, nullable=False, default=0),
    Column("paid_amount", Float, nullable=False, default=0),
    Column("balance", Float, nullable=False, default=0),
    Column("currency", String(3), nullable=False, default="PEN"),
    Column("customer_name", String(200)),
    Column("customer_email", String(255)),
    Column("customer_phone", String(50)),
    Column("customer_document_type", String(20)),
    Column("customer_document_number", String(50)),
    Column("customer_address", Text),
    Column("payment_method", String(20)),
    Column("payment_reference", String(100)),
    Column("notes", Text),
    Column("internal_notes", Text),
    Column("created_by", ID),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
    UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_number_per_tenant"),
)

invoice_items = Table(
    "invoice_items", metadata,
    Column("id", ID, primary_key=True),
    Column("invoice_id", ID, ForeignKey("invoices.id"), nullable=False),
    Column("item_type", String(20), nullable=False, default="service"),
    Column("description", Text, nullable=False),
    Column("service_id", ID),
    Column("quantity", Float, nullable=False),
    Column("unit_price", Float, nullable=False),
    Column("discount_percent", Float, nullable=False, default=0),
    Column("discount_amount", Float, nullable=False, default=0),
    Column("tax_included", Boolean, nullable=False, default=True),
    Column("subtotal", Float, nullable=False),
    Column("tax_amount", Float, nullable=False),
    Column("total", Float, nullable=False),
    Column("sort_order", Integer, nullable=False, default=0),
)

invoice_payments = Table(
    "invoice_payments", metadata,
    Column("id", ID, primary_key=True),
    Column("invoice_id", ID, ForeignKey("invoices.id"), nullable=False),
    Column("amount", Float, nullable=False),
    Column("payment_method", String(20), nullable=False),
    Column("payment_date", DATE, nullable=False),
    Column("reference", String(100)),
    Column("notes", Text),
    Column("received_by", ID),
    Column("created_at", TIMESTAMP, nullable=False),
)

notifications = Table(
    "notifications", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("type", String(50), nullable=False),
    Column("recipient_email", String(255)),
    Column("recipient_phone", String(50)),
    Column("subject", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("appointment_id", ID),
    Column("status", String(20), nullable=False, default="pending"),
    Column("error_message", Text),
    Column("sent_at", TIMESTAMP),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

audit_log = Table(
    "audit_log", metadata,
    Column("id", ID, primary_key=True),
    Column("user_id", ID, nullable=False),
    Column("action", String(100), nullable=False),
    Column("resource_type", String(50)),
    Column("resource_id", String(36)),
    Column("tenant_id", ID),
    Column("metadata", Text),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", TIMESTAMP, nullable=False),
)

reminder_configurations = Table(
    "reminder_configurations", metadata,
    Column("id", ID, primary_key=True),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False, unique=True),
    Column("email_enabled", Boolean, nullable=False, default=True),
    Column("whatsapp_enabled", Boolean, nullable=False, default=False),
    Column("email_hours_before", Integer, nullable=False, default=24),
    Column("whatsapp_hours_before", Integer, nullable=False, default=4),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TIMESTAMP, nullable=False),
    Column("updated_at", TIMESTAMP, nullable=False),
)

appointment_reminders = Table(
    "appointment_reminders", metadata,
    Column("id", ID, primary_key=True),
    Column("appointment_id", ID, ForeignKey("appointments.id"), nullable=False),
    Column("tenant_id", ID, ForeignKey("tenants.id"), nullable=False),
    Column("channel", String(20), nullable=False),
    Column("notification_id", ID),
    Column("created_at", TIMESTAMP, nullable=False),
    UniqueConstraint("appointment_id", "channel", name="uq_reminder_per_channel"),
)
