"""
Patient records, scoped per tenant. Deletion is soft (is_active = false).
"""

from typing import Any, Dict, List, Optional

from vittasami.database import fetch_all, fetch_one, fetch_value, insert_row, new_id, update_row, utcnow_iso
from vittasami.errors import NotFound, ValidationError

EDITABLE_FIELDS = (
    "first_name", "last_name", "email", "phone", "document_type",
    "document_number", "address", "date_of_birth",
)


def _normalise(patient: Dict[str, Any]) -> Dict[str, Any]:
    if patient.get("is_active") is not None:
        patient["is_active"] = bool(patient["is_active"])
    return patient


def validate_patient_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Return the cleaned subset of *data* that may be stored."""
    cleaned = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    if not partial:
        for required in ("first_name", "last_name"):
            if not str(cleaned.get(required) or "").strip():
                raise ValidationError(f"{required} is required")
    for key in ("first_name", "last_name"):
        if key in cleaned:
            if not str(cleaned[key] or "").strip():
                raise ValidationError(f"{key} cannot be empty")
            cleaned[key] = str(cleaned[key]).strip()
    if cleaned.get("email"):
        email = str(cleaned["email"]).strip().lower()
        if "@" not in email or "." not in email.split("@")[-1]:
            raise ValidationError("email is invalid")
        cleaned["email"] = email
    return cleaned


def find_or_create_patient(
    conn,
    tenant_id: str,
    email: str,
    first_name: str,
    last_name: str,
    phone: Optional[str] = None,
) -> str:
    """Return the id of the tenant's patient with *email*, creating one if needed."""
    existing = fetch_one(
        conn,
        "SELECT id FROM patients WHERE tenant_id = :tenant_id AND LOWER(email) = :email",
        {"tenant_id": tenant_id, "email": email.strip().lower()},
    )
    if existing:
        return existing["id"]

    now = utcnow_iso()
    patient = insert_row(conn, "patients", {
        "id": new_id(),
        "tenant_id": tenant_id,
        "first_name": first_name.strip(),
        "last_name": last_name.strip(),
        "email": email.strip().lower(),
        "phone": phone,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    })
    return patient["id"]


def create_patient(engine, tenant_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = validate_patient_fields(data)
    now = utcnow_iso()
    with engine.begin() as conn:
        patient = insert_row(conn, "patients", dict(
            fields,
            id=new_id(),
            tenant_id=tenant_id,
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
    return _normalise(patient)


def get_patient(engine, tenant_id: Optional[str], patient_id: str) -> Dict[str, Any]:
    sql = "SELECT * FROM patients WHERE id = :id"
    params = {"id": patient_id}
    if tenant_id:
        sql += " AND tenant_id = :tenant_id"
        params["tenant_id"] = tenant_id
    with engine.connect() as conn:
        patient = fetch_one(conn, sql, params)
    if not patient:
        raise NotFound("Patient not found")
    return _normalise(patient)


def list_patients(
    engine,
    tenant_id: str,
    search: Optional[str] = None,
    include_inactive: bool = False,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    where = "tenant_id = :tenant_id"
    params: Dict[str, Any] = {"tenant_id": tenant_id}
    if not include_inactive:
        where += " AND is_active = :active"
        params["active"] = True
    if search:
        where += (
            " AND (LOWER(first_name) LIKE :q OR LOWER(last_name) LIKE :q"
            " OR LOWER(email) LIKE :q OR document_number LIKE :q)"
        )
        params["q"] = f"%{search.strip().lower()}%"

    with engine.connect() as conn:
        total = int(fetch_value(conn, f"SELECT COUNT(*) FROM patients WHERE {where}", params) or 0)
        rows = fetch_all(
            conn,
            f"SELECT * FROM patients WHERE {where} ORDER BY last_name, first_name "
            "LIMIT :limit OFFSET :offset",
            dict(params, limit=limit, offset=(page - 1) * limit),
        )
    return {"patients": [_normalise(r) for r in rows], "total": total, "page": page, "limit": limit}


def update_patient(engine, tenant_id: str, patient_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = validate_patient_fields(data, partial=True)
    if not fields:
        raise ValidationError("No updatable fields provided")
    get_patient(engine, tenant_id, patient_id)
    with engine.begin() as conn:
        update_row(conn, "patients", patient_id, dict(fields, updated_at=utcnow_iso()))
    return get_patient(engine, tenant_id, patient_id)


def deactivate_patient(engine, tenant_id: str, patient_id: str) -> Dict[str, Any]:
    get_patient(engine, tenant_id, patient_id)
    with engine.begin() as conn:
        update_row(conn, "patients", patient_id, {"is_active": False, "updated_at": utcnow_iso()})
    return get_patient(engine, tenant_id, patient_id)
