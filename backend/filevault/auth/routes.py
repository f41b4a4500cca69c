from __future__ import annotations

import re
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, jwt_required
from sqlalchemy import func

from ..common.audit import audit, request_ip
from ..common.auth import current_user
from ..common.errors import APIError
from ..common.rate_limit import login_rate_limiter
from ..extensions import db
from ..models import User


auth_bp = Blueprint("auth", __name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def _validate_username(value: Any) -> str:
    username = str(value or "").strip()
    if len(username) < 3:
        raise APIError(400, "INVALID_USERNAME", "Username must be at least 3 characters.")
    if len(username) > 120:
        raise APIError(400, "INVALID_USERNAME", "Username must be <= 120 characters.")
    return username


def _validate_email(value: Any) -> str:
    email = str(value or "").strip()
    if not EMAIL_PATTERN.match(email) or len(email) > 255:
        raise APIError(400, "INVALID_EMAIL", "A valid email address is required.")
    return email


def _validate_password(value: Any) -> str:
    password = str(value or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise APIError(
            400, "INVALID_PASSWORD", f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
    return password


def assert_identity_available(username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    if username is not None:
        query = User.query.filter(func.lower(User.username) == username.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first() is not None:
            raise APIError(409, "USER_EXISTS", "Username is already taken.")
    if email is not None:
        query = User.query.filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first() is not None:
            raise APIError(409, "EMAIL_EXISTS", "Email is already registered.")


def apply_profile_changes(user: User, payload: dict[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    username = _validate_username(payload["username"]) if "username" in payload else None
    email = _validate_email(payload["email"]) if "email" in payload else None
    assert_identity_available(username, email, exclude_id=user.id)

    if username is not None and username != user.username:
        user.username = username
        changes["username"] = username
    if email is not None and email != user.email:
        user.email = email
        changes["email"] = email
    return changes


def _credentials() -> tuple[str, str]:
    if request.form:
        source: dict[str, Any] = request.form.to_dict()
    else:
        source = request.get_json(silent=True) or {}
    return str(source.get("username") or "").strip(), str(source.get("password") or "")


@auth_bp.post("/register")
def register():
    if not current_app.config["ALLOW_REGISTRATION"]:
        raise APIError(403, "REGISTRATION_DISABLED", "Registration is disabled.")

    payload = request.get_json(silent=True) or {}
    username = _validate_username(payload.get("username"))
    email = _validate_email(payload.get("email"))
    password = _validate_password(payload.get("password"))

    assert_identity_available(username, email)

    user = User(username=username, email=email, is_active=True, is_admin=False)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    audit(
        action="auth.register",
        actor=user,
        target_type="user",
        target_id=str(user.id),
        details={"username": username},
    )
    db.session.commit()

    return jsonify(user.to_dict()), 201


@auth_bp.post("/token")
def issue_token():
    username, password = _credentials()
    if not username or not password:
        raise APIError(400, "INVALID_CREDENTIALS", "Username and password are required.")

    remote_ip = request_ip() or "unknown"
    rate_limit_key = f"{remote_ip}:{username.lower()}"

    if login_rate_limiter.is_blocked(
        rate_limit_key,
        current_app.config["LOGIN_RATE_LIMIT_WINDOW_SECONDS"],
        current_app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"],
    ):
        current_app.logger.warning("Login rate limited for %s", rate_limit_key)
        raise APIError(429, "RATE_LIMITED", "Too many login attempts. Please try again later.")

    user = User.query.filter(func.lower(User.username) == username.lower()).one_or_none()
    if user is None or not user.is_active or not user.verify_password(password):
        login_rate_limiter.add_failure(rate_limit_key)
        audit(
            action="auth.login_failed",
            actor=user,
            target_type="user",
            target_id=str(user.id) if user is not None else None,
            details={"username": username},
        )
        db.session.commit()
        raise APIError(401, "INVALID_CREDENTIALS", "Incorrect username or password.")

    login_rate_limiter.clear(rate_limit_key)
    access_token = create_access_token(identity=str(user.id), additional_claims={"is_admin": user.is_admin})
    return jsonify({"access_token": access_token, "token_type": "bearer"})


@auth_bp.get("/users/me")
@jwt_required()
def me():
    user = current_user(required=True)
    assert user is not None
    return jsonify(user.to_dict())


@auth_bp.patch("/users/me")
@jwt_required()
def update_me():
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    changes = apply_profile_changes(user, payload)
    if changes:
        audit(action="users.profile_update", actor=user, target_type="user", target_id=str(user.id), details=changes)
    db.session.commit()

    return jsonify(user.to_dict())


@auth_bp.patch("/users/me/password")
@jwt_required()
def change_password():
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    if not user.verify_password(str(payload.get("current_password") or "")):
        raise APIError(400, "INVALID_PASSWORD", "Current password is incorrect.")
    user.set_password(_validate_password(payload.get("new_password")))

    audit(action="users.password_change", actor=user, target_type="user", target_id=str(user.id))
    db.session.commit()

    return jsonify({"updated": True})
