"""
Database engine initialisation, schema creation and small row helpers.
"""

import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text

from vittasami.config import get_env
from vittasami.schema import metadata


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


def init_schema(engine) -> List[str]:
    """Create any missing tables and return the table names."""
    metadata.create_all(engine)
    return sorted(metadata.tables)


def check_connection(engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        print(f"[WARN] Database check failed: {e}", file=sys.stderr)
        return False


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def today_iso() -> str:
    return utcnow().date().isoformat()


def fetch_one(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Run *sql* and return the first row as a plain dict (or None)."""
    row = conn.execute(text(sql), params or {}).mappings().first()
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return [dict(r) for r in conn.execute(text(sql), params or {}).mappings().all()]


def fetch_value(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
    return conn.execute(text(sql), params or {}).scalar()


def insert_row(conn, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Insert *values* into *table* and return them (ids are generated client-side)."""
    columns = ", ".join(values)
    placeholders = ", ".join(f":{k}" for k in values)
    conn.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"), values)
    return dict(values)


def update_row(conn, table: str, row_id: str, values: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> int:
    """
    Update one row by id and return the affected row count.

    *expected* adds ``column = value`` guards, so a row changed by another
    transaction since it was read is left untouched (rowcount 0).
    """
    assignments = ", ".join(f"{k} = :{k}" for k in values)
    params = dict(values, _id=row_id)
    sql = f"UPDATE {table} SET {assignments} WHERE id = :_id"
    for k, v in (expected or {}).items():
        sql += f" AND {k} = :_expected_{k}"
        params[f"_expected_{k}"] = v
    return conn.execute(text(sql), params).rowcount
