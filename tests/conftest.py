"""
Shared fixtures: an in-memory SQLite database with the full schema, seeded
tenants/users/services, and a Flask test client bound to that database.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from vittasami.appointments import create_appointment
from vittasami.availability import replace_weekly_availability
from vittasami.database import init_schema
from vittasami.rbac import build_policy, context_from_row
from vittasami.tenants import create_service, create_tenant
from vittasami.users import create_user
from vittasami.api.app import create_app
from vittasami.api.auth import generate_token

PASSWORD = "secret-pass-1"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr("vittasami.users.BCRYPT_ROUNDS", 4)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def tenant(engine):
    return create_tenant(engine, "Clínica Central", email="contacto@central.pe", plan_key="pro")


@pytest.fixture
def make_user(engine, tenant):
    counter = {"n": 0}

    def _make(role, tenant_id="default", email=None, password=PASSWORD, **kwargs):
        counter["n"] += 1
        if tenant_id == "default":
            tenant_id = None if role == "super_admin" else tenant["id"]
        return create_user(
            engine,
            email or f"{role}{counter['n']}@example.com",
            password,
            kwargs.pop("first_name", role.title()),
            kwargs.pop("last_name", f"User{counter['n']}"),
            role=role,
            tenant_id=tenant_id,
            **kwargs,
        )

    return _make


@pytest.fixture
def super_admin(make_user):
    return make_user("super_admin", email="root@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("admin_tenant", email="admin@central.pe")


@pytest.fixture
def receptionist(make_user):
    return make_user("receptionist", email="front@central.pe")


@pytest.fixture
def doctor(make_user):
    return make_user("doctor", email="dra.rojas@central.pe", first_name="Ana", last_name="Rojas")


@pytest.fixture
def patient_user(make_user):
    return make_user("patient", email="maria@example.com", first_name="María", last_name="Quispe")


@pytest.fixture
def service(engine, tenant):
    return create_service(engine, tenant["id"], "Consulta general", 30, 80.0)


@pytest.fixture
def weekday_schedule(engine, tenant, doctor):
    """Monday to Friday 09:00-13:00 with a coffee break at 11:00-11:30."""
    return replace_weekly_availability(
        engine, tenant["id"], doctor["id"],
        [{"day_of_week": d, "start_time": "09:00", "end_time": "13:00"} for d in range(1, 6)],
        [{"day_of_week": d, "start_time": "11:00", "end_time": "11:30", "break_type": "break"}
         for d in range(1, 6)],
    )


@pytest.fixture
def next_monday():
    """A Monday at least three days away."""
    day = date.today() + timedelta(days=3)
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day


@pytest.fixture
def book(engine, tenant, doctor, service):
    def _book(day, start_time, email="maria@example.com", **extra):
        data = {
            "tenant_id": tenant["id"],
            "doctor_id": doctor["id"],
            "service_id": service["id"],
            "appointment_date": day.isoformat() if isinstance(day, date) else day,
            "start_time": start_time,
            "patient_first_name": "María",
            "patient_last_name": "Quispe",
            "patient_email": email,
        }
        data.update(extra)
        return create_appointment(engine, data)

    return _book


@pytest.fixture
def access():
    """(ctx, policy) for a user profile."""
    def _access(user):
        ctx = context_from_row(user)
        return ctx, build_policy(ctx)

    return _access


@pytest.fixture
def app(engine):
    app = create_app(engine=engine, llm=None)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_token(context_from_row(user))}"}

    return _headers
