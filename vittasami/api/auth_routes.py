"""
Authentication endpoints: login, registration, logout, profile, password change.
"""

from flask import jsonify, make_response, request

from vittasami.config import MIN_CHANGE_PASSWORD, MIN_REGISTER_PASSWORD, SELF_REGISTER_ROLES
from vittasami.errors import AuthenticationError, ValidationError
from vittasami.rbac import context_from_row, get_redirect_path
from vittasami.users import (
    authenticate_user,
    create_user,
    get_user,
    safe_profile,
    update_password,
    verify_password,
)
from vittasami.api.auth import (
    clear_auth_cookie,
    generate_token,
    json_body,
    set_auth_cookie,
    token_required,
)


def _valid_email(email: str) -> bool:
    local, _, domain = email.partition("@")
    return bool(local) and "." in domain and not domain.startswith(".")


def register_auth_routes(app, engine):

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = json_body()
        email = str(data.get("email") or "").strip()
        password = str(data.get("password") or "")
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = authenticate_user(engine, email, password)
        if not user:
            raise AuthenticationError("Invalid credentials")

        ctx = context_from_row(user)
        token = generate_token(ctx)
        response = make_response(jsonify({
            "success": True,
            "token": token,
            "redirect_path": get_redirect_path(ctx),
            "user": safe_profile(user),
        }), 200)
        print(f"[auth] Login {ctx.user_id} ({ctx.role})")
        return set_auth_cookie(response, token)

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        data = json_body()
        first_name = str(data.get("first_name") or "").strip()
        last_name = str(data.get("last_name") or "").strip()
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        role = data.get("role") or "patient"

        if not first_name:
            raise ValidationError("first_name is required")
        if not last_name:
            raise ValidationError("last_name is required")
        if not _valid_email(email):
            raise ValidationError("A valid email is required")
        if len(password) < MIN_REGISTER_PASSWORD:
            raise ValidationError(f"Password must be at least {MIN_REGISTER_PASSWORD} characters")
        if role not in SELF_REGISTER_ROLES:
            raise ValidationError(
                "Invalid role", {"allowed_roles": list(SELF_REGISTER_ROLES)}
            )

        user = create_user(engine, email, password, first_name, last_name, role=role,
                           phone=data.get("phone"))
        return jsonify({"success": True, "user": user}), 201

    @app.route("/api/auth/logout", methods=["POST"])
    def logout():
        response = make_response(jsonify({"success": True, "message": "Logged out successfully"}), 200)
        return clear_auth_cookie(response)

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def me():
        user = safe_profile(get_user(engine, request.ctx.user_id))
        return jsonify({
            "user": user,
            "policy": {"role": request.policy.role, "notes": request.policy.notes},
            "redirect_path": get_redirect_path(request.ctx),
        }), 200

    @app.route("/api/auth/change-password", methods=["POST"])
    @token_required
    def change_password():
        data = json_body()
        current = str(data.get("current_password") or "")
        new = str(data.get("new_password") or "")
        if not current or not new:
            raise ValidationError("current_password and new_password are required")
        if len(new) < MIN_CHANGE_PASSWORD:
            raise ValidationError(f"New password must be at least {MIN_CHANGE_PASSWORD} characters")

        user = get_user(engine, request.ctx.user_id)
        if not user.get("password_hash") or not verify_password(current, user["password_hash"]):
            raise AuthenticationError("Current password is incorrect")

        update_password(engine, user["id"], new)
        print(f"[auth] Password changed for {user['id']}")
        return jsonify({"success": True, "message": "Password updated"}), 200
