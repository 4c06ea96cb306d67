"""
JWT authentication helpers and route decorators for the Flask API.

Sessions are stateless: the signed token travels in the ``Authorization:
Bearer`` header or in the HTTP-only auth cookie, and the user is reloaded
from the database on every request.
"""

import sys
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, jsonify, request

from vittasami.config import (
    COOKIE_NAME,
    JWT_ALGORITHM,
    SECRET_KEY,
    TOKEN_EXPIRY_DAYS,
    is_development,
)
from vittasami.errors import ValidationError
from vittasami.feature_gating import get_required_plan, has_feature
from vittasami.models import AccessContext
from vittasami.rbac import build_policy, load_access_context, resolve_tenant_scope


def generate_token(ctx: AccessContext) -> str:
    """Generate a JWT token for an authenticated user."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": ctx.user_id,
        "email": ctx.email,
        "role": ctx.role,
        "tenant_id": ctx.tenant_id,
        "iat": now,
        "exp": now + timedelta(days=TOKEN_EXPIRY_DAYS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def set_auth_cookie(response, token: str):
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=TOKEN_EXPIRY_DAYS * 24 * 3600,
        httponly=True,
        secure=not is_development(),
        samesite="Lax",
        path="/",
    )
    return response


def clear_auth_cookie(response):
    response.delete_cookie(COOKIE_NAME, path="/", httponly=True, samesite="Lax",
                           secure=not is_development())
    return response


def extract_token() -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header:
        parts = auth_header.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
            return parts[1]
    return request.cookies.get(COOKIE_NAME)


def token_required(f):
    """Decorator that protects endpoints with JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = extract_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        payload = verify_token(token)
        if not payload or not payload.get("user_id"):
            return jsonify({"error": "Invalid or expired token"}), 401

        engine = current_app.config["ENGINE"]
        try:
            ctx = load_access_context(engine, payload["user_id"])
        except ValueError as e:
            print(f"[auth] Rejected token for {payload['user_id']}: {e}", file=sys.stderr)
            return jsonify({"error": "User not found or inactive"}), 401

        try:
            policy = build_policy(ctx)
        except ValueError as e:
            return jsonify({"error": str(e)}), 403

        request.ctx = ctx
        request.policy = policy
        request.token = token
        return f(*args, **kwargs)

    return decorated


def roles_required(*roles):
    """Restrict an endpoint to *roles*; apply below ``token_required``."""
    def wrapper(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if request.ctx.role not in roles:
                return jsonify({
                    "error": "Insufficient permissions",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated
    return wrapper


def feature_required(feature: str):
    """
    Require the caller's tenant plan to include *feature*; apply below
    ``token_required``. Super admins are not gated.
    """
    def wrapper(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            policy = request.policy
            if policy.role != "super_admin":
                engine = current_app.config["ENGINE"]
                if not policy.tenant_id or not has_feature(engine, policy.tenant_id, feature):
                    return jsonify({
                        "error": "Feature not available in your current plan",
                        "code": "FEATURE_NOT_AVAILABLE",
                        "feature": feature,
                        "required_plan": get_required_plan(feature),
                    }), 403
            return f(*args, **kwargs)
        return decorated
    return wrapper


def json_body() -> Dict[str, Any]:
    """The request's JSON object body, or a 400."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Content-Type must be application/json")
    return data


def current_tenant(requested: Optional[str] = None, required: bool = False) -> Optional[str]:
    """Tenant the request operates on; super admins may pick one with *requested*."""
    tenant_id = resolve_tenant_scope(request.policy, requested)
    if required and not tenant_id:
        raise ValidationError("tenant_id is required")
    return tenant_id


def int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
