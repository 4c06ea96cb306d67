"""
Tests for tenants, tenant users, services and patient records.
"""

import pytest
from sqlalchemy import text

from vittasami.errors import NotFound, ValidationError
from vittasami.patients import (
    create_patient,
    deactivate_patient,
    find_or_create_patient,
    get_patient,
    list_patients,
    update_patient,
    validate_patient_fields,
)
from vittasami.tenants import create_service, create_tenant, list_services


# ── Tests: tenants / services (domain) ───────────────────────────────

def test_create_tenant_defaults(engine):
    t = create_tenant(engine, "  Clínica Norte ")
    assert t["name"] == "Clínica Norte"
    assert t["subscription_plan_key"] == "free"
    assert t["subscription_status"] == "active"


def test_create_tenant_validation(engine):
    with pytest.raises(ValidationError):
        create_tenant(engine, " ")
    with pytest.raises(ValidationError):
        create_tenant(engine, "X", plan_key="gold")


@pytest.mark.parametrize("duration,price", [(3, 10), (500, 10), (30, -1), ("abc", 10)])
def test_create_service_validation(engine, tenant, duration, price):
    with pytest.raises(ValidationError):
        create_service(engine, tenant["id"], "Consulta", duration, price)


def test_list_services_hides_inactive(engine, tenant, service):
    extra = create_service(engine, tenant["id"], "Ecografía", 45, 150)
    with engine.begin() as conn:
        conn.execute(text("UPDATE services SET is_active = :f WHERE id = :id"), {"f": False, "id": extra["id"]})
    assert [s["name"] for s in list_services(engine, tenant["id"])] == ["Consulta general"]
    assert len(list_services(engine, tenant["id"], include_inactive=True)) == 2


# ── Tests: patients (domain) ─────────────────────────────────────────

def test_validate_patient_fields():
    cleaned = validate_patient_fields({"first_name": " Juan ", "last_name": "Pérez",
                                       "email": "JUAN@Mail.com", "is_active": False})
    assert cleaned == {"first_name": "Juan", "last_name": "Pérez", "email": "juan@mail.com"}
    with pytest.raises(ValidationError):
        validate_patient_fields({"first_name": "Juan"})
    with pytest.raises(ValidationError):
        validate_patient_fields({"first_name": "Juan", "last_name": "P", "email": "nope"})
    assert validate_patient_fields({"phone": "999"}, partial=True) == {"phone": "999"}


def test_find_or_create_patient_reuses_email(engine, tenant):
    with engine.begin() as conn:
        first = find_or_create_patient(conn, tenant["id"], "Luz@Mail.com", "Luz", "Vega")
        again = find_or_create_patient(conn, tenant["id"], "luz@mail.com", "Luz", "Vega")
    assert first == again
    other = create_tenant(engine, "Otra")
    with engine.begin() as conn:
        assert find_or_create_patient(conn, other["id"], "luz@mail.com", "Luz", "Vega") != first


def test_patient_crud_is_tenant_scoped(engine, tenant):
    p = create_patient(engine, tenant["id"], {"first_name": "Juan", "last_name": "Pérez",
                                               "document_number": "45678912"})
    assert get_patient(engine, tenant["id"], p["id"])["first_name"] == "Juan"

    other = create_tenant(engine, "Otra")
    with pytest.raises(NotFound):
        get_patient(engine, other["id"], p["id"])

    updated = update_patient(engine, tenant["id"], p["id"], {"phone": "+51999888777"})
    assert updated["phone"] == "+51999888777"

    assert deactivate_patient(engine, tenant["id"], p["id"])["is_active"] is False
    assert list_patients(engine, tenant["id"])["total"] == 0
    assert list_patients(engine, tenant["id"], include_inactive=True)["total"] == 1


def test_list_patients_search_and_paging(engine, tenant):
    for first, last in [("Ana", "Díaz"), ("Bruno", "Ríos"), ("Carla", "Díaz")]:
        create_patient(engine, tenant["id"], {"first_name": first, "last_name": last})
    result = list_patients(engine, tenant["id"], search="díaz")
    assert result["total"] == 2
    page = list_patients(engine, tenant["id"], page=2, limit=2)
    assert page["total"] == 3
    assert len(page["patients"]) == 1


# ── Tests: tenant endpoints ──────────────────────────────────────────

def test_create_tenant_requires_super_admin(client, auth_headers, admin, super_admin):
    resp = client.post("/api/tenants", json={"name": "Sede Sur"}, headers=auth_headers(admin))
    assert resp.status_code == 403
    assert resp.get_json()["required_roles"] == ["super_admin"]

    resp = client.post("/api/tenants", json={"name": "Sede Sur", "plan_key": "care"},
                       headers=auth_headers(super_admin))
    assert resp.status_code == 201
    assert resp.get_json()["tenant"]["subscription_plan_key"] == "care"


def test_create_tenant_writes_audit_log(client, auth_headers, super_admin, engine):
    client.post("/api/tenants", json={"name": "Sede Sur"}, headers=auth_headers(super_admin))
    with engine.connect() as conn:
        actions = [r[0] for r in conn.execute(text("SELECT action FROM audit_log"))]
    assert actions == ["create_tenant"]


def test_list_tenants_scoped(client, auth_headers, admin, super_admin, engine, tenant):
    create_tenant(engine, "Otra")
    assert len(client.get("/api/tenants", headers=auth_headers(super_admin)).get_json()["tenants"]) == 2
    mine = client.get("/api/tenants", headers=auth_headers(admin)).get_json()["tenants"]
    assert [t["id"] for t in mine] == [tenant["id"]]


def test_tenant_detail_access(client, auth_headers, admin, engine):
    other = create_tenant(engine, "Otra")
    assert client.get(f"/api/tenants/{other['id']}", headers=auth_headers(admin)).status_code == 403
    assert client.get(f"/api/tenants/{admin['tenant_id']}", headers=auth_headers(admin)).status_code == 200


def test_tenant_users(client, auth_headers, admin, doctor, tenant):
    url = f"/api/tenants/{tenant['id']}/users"
    resp = client.post(url, headers=auth_headers(admin), json={
        "email": "caja@central.pe", "password": "temporal-123", "first_name": "Rosa",
        "last_name": "León", "role": "receptionist",
    })
    assert resp.status_code == 201
    assert resp.get_json()["user"]["must_change_password"] is True

    resp = client.post(url, headers=auth_headers(admin), json={
        "email": "x@central.pe", "password": "short", "first_name": "X", "last_name": "Y",
    })
    assert resp.status_code == 400

    users = client.get(f"{url}?role=doctor", headers=auth_headers(admin)).get_json()["users"]
    assert [u["id"] for u in users] == [doctor["id"]]

    assert client.get(url, headers=auth_headers(doctor)).status_code == 403


def test_tenant_users_professional_limit(client, auth_headers, super_admin, engine):
    small = create_tenant(engine, "Consultorio", plan_key="free")
    url = f"/api/tenants/{small['id']}/users"
    payload = {"password": "temporal-123", "first_name": "Doc", "last_name": "Tor", "role": "doctor"}
    first = client.post(url, headers=auth_headers(super_admin), json=dict(payload, email="d1@x.pe"))
    assert first.status_code == 201
    second = client.post(url, headers=auth_headers(super_admin), json=dict(payload, email="d2@x.pe"))
    assert second.status_code == 403
    assert second.get_json()["code"] == "LIMIT_REACHED"


def test_services_endpoints(client, auth_headers, admin, tenant, service):
    resp = client.get(f"/api/tenants/{tenant['id']}/services")
    assert resp.status_code == 200
    assert resp.get_json()["services"][0]["name"] == "Consulta general"

    resp = client.post(f"/api/tenants/{tenant['id']}/services", headers=auth_headers(admin),
                       json={"name": "Control", "duration_minutes": 20, "price": 50})
    assert resp.status_code == 201
    assert resp.get_json()["service"]["duration_minutes"] == 20


# ── Tests: patient endpoints ─────────────────────────────────────────

def test_patient_endpoints(client, auth_headers, receptionist):
    headers = auth_headers(receptionist)
    resp = client.post("/api/patients", headers=headers,
                       json={"first_name": "Juan", "last_name": "Pérez", "email": "juan@mail.com"})
    assert resp.status_code == 201
    patient_id = resp.get_json()["patient"]["id"]

    listing = client.get("/api/patients?search=juan", headers=headers).get_json()
    assert listing["total"] == 1

    resp = client.put(f"/api/patients/{patient_id}", headers=headers, json={"phone": "987654321"})
    assert resp.get_json()["patient"]["phone"] == "987654321"

    resp = client.delete(f"/api/patients/{patient_id}", headers=headers)
    assert resp.get_json()["patient"]["is_active"] is False

    assert client.get("/api/patients/missing", headers=headers).status_code == 404


def test_patients_forbidden_for_patients(client, auth_headers, patient_user):
    assert client.get("/api/patients", headers=auth_headers(patient_user)).status_code == 403


def test_patients_gated_by_plan(client, auth_headers, make_user, engine):
    small = create_tenant(engine, "Consultorio", plan_key="free")
    staff = make_user("staff", tenant_id=small["id"])
    resp = client.get("/api/patients", headers=auth_headers(staff))
    assert resp.status_code == 403
    body = resp.get_json()
    assert body["code"] == "FEATURE_NOT_AVAILABLE"
    assert body["required_plan"] == "care"
