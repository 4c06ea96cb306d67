"""
User accounts: password hashing, credential checks and account creation.
"""

from typing import Any, Dict, List, Optional

import bcrypt
from sqlalchemy import text

from vittasami.config import BCRYPT_ROUNDS, ROLES
from vittasami.database import fetch_all, fetch_one, insert_row, new_id, utcnow_iso
from vittasami.errors import Conflict, NotFound, ValidationError

PUBLIC_USER_COLUMNS = (
    "id, email, first_name, last_name, phone, role, tenant_id, "
    "is_active, must_change_password, created_at, updated_at"
)


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash of *password*."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database.
        return False


def safe_profile(row: Dict[str, Any]) -> Dict[str, Any]:
    """Strip secrets and normalise flags on a custom_users row."""
    profile = {k: v for k, v in row.items() if k != "password_hash"}
    for flag in ("is_active", "must_change_password"):
        if flag in profile and profile[flag] is not None:
            profile[flag] = bool(profile[flag])
    return profile


def authenticate_user(engine, email: str, password: str) -> Optional[Dict[str, Any]]:
    """Return the user row when *email*/*password* match an active account."""
    with engine.connect() as conn:
        user = fetch_one(
            conn,
            "SELECT * FROM custom_users WHERE LOWER(email) = :email",
            {"email": email.strip().lower()},
        )

    if not user:
        print("[auth] Unknown email on login attempt")
        return None
    if not user.get("is_active"):
        print(f"[auth] Login attempt on inactive account {user['id']}")
        return None
    if not user.get("password_hash"):
        print(f"[auth] Account {user['id']} has no password set")
        return None
    if not verify_password(password, user["password_hash"]):
        print(f"[auth] Invalid password for account {user['id']}")
        return None

    return user


def get_user(engine, user_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        user = fetch_one(conn, "SELECT * FROM custom_users WHERE id = :id", {"id": user_id})
    if not user:
        raise NotFound("User not found")
    return user


def create_user(
    engine,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str = "patient",
    tenant_id: Optional[str] = None,
    phone: Optional[str] = None,
    must_change_password: bool = False,
) -> Dict[str, Any]:
    """Create an account and return its safe profile."""
    if role not in ROLES:
        raise ValidationError(f"Invalid role '{role}'")
    email = email.strip().lower()

    now = utcnow_iso()
    with engine.begin() as conn:
        existing = fetch_one(
            conn, "SELECT id FROM custom_users WHERE LOWER(email) = :email", {"email": email}
        )
        if existing:
            raise Conflict("User already exists")

        if tenant_id:
            tenant = fetch_one(conn, "SELECT id FROM tenants WHERE id = :id", {"id": tenant_id})
            if not tenant:
                raise NotFound("Tenant not found")

        user = insert_row(conn, "custom_users", {
            "id": new_id(),
            "email": email,
            "password_hash": hash_password(password),
            "first_name": first_name.strip(),
            "last_name": last_name.strip(),
            "phone": phone,
            "role": role,
            "tenant_id": tenant_id,
            "is_active": True,
            "must_change_password": must_change_password,
            "created_at": now,
            "updated_at": now,
        })

    print(f"[users] Created {role} account {user['id']}")
    return safe_profile(user)


def update_password(engine, user_id: str, new_password: str) -> None:
    with engine.begin() as conn:
        result = conn.execute(
            text("""
                UPDATE custom_users
                SET password_hash = :hash, must_change_password = :mcp, updated_at = :now
                WHERE id = :id
            """),
            {"hash": hash_password(new_password), "mcp": False, "now": utcnow_iso(), "id": user_id},
        )
    if result.rowcount == 0:
        raise NotFound("User not found")


def list_tenant_users(engine, tenant_id: str, role: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = f"SELECT {PUBLIC_USER_COLUMNS} FROM custom_users WHERE tenant_id = :tenant_id"
    params = {"tenant_id": tenant_id}
    if role:
        sql += " AND role = :role"
        params["role"] = role
    sql += " ORDER BY last_name, first_name"
    with engine.connect() as conn:
        return [safe_profile(r) for r in fetch_all(conn, sql, params)]
