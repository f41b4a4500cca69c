from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..auth.routes import apply_profile_changes
from ..common.audit import audit
from ..common.auth import admin_required, current_user
from ..common.errors import APIError, NotFoundError
from ..extensions import db
from ..models import FileNode, FileVersion, User
from ..versions.service import purge_unreferenced_blobs


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


@admin_bp.get("/users")
@jwt_required()
@admin_required
def list_users():
    users = User.query.order_by(User.id.asc()).all()
    return jsonify([user.to_dict() for user in users])


@admin_bp.patch("/users/<int:user_id>")
@jwt_required()
@admin_required
def update_user(user_id: int):
    actor = current_user(required=True)
    assert actor is not None

    user = _get_user(user_id)
    payload = request.get_json(silent=True) or {}

    changes = apply_profile_changes(user, payload)
    for flag in ("is_admin", "is_active"):
        if flag not in payload:
            continue
        value = bool(payload[flag])
        if user.id == actor.id and not value:
            raise APIError(400, "INVALID_OPERATION", f"You cannot remove {flag} from your own account.")
        if getattr(user, flag) != value:
            setattr(user, flag, value)
            changes[flag] = value

    if changes:
        audit(action="admin.user_update", actor=actor, target_type="user", target_id=str(user.id), details=changes)
    db.session.commit()

    return jsonify(user.to_dict())


@admin_bp.delete("/users/<int:user_id>")
@jwt_required()
@admin_required
def delete_user(user_id: int):
    actor = current_user(required=True)
    assert actor is not None

    user = _get_user(user_id)
    if user.id == actor.id:
        raise APIError(400, "INVALID_OPERATION", "You cannot delete your own account.")

    storage_paths = [
        path
        for (path,) in db.session.query(FileVersion.storage_path)
        .join(FileNode, FileVersion.file_id == FileNode.id)
        .filter(FileNode.owner_id == user.id)
        .all()
    ]

    username = user.username
    db.session.delete(user)
    audit(
        action="admin.user_delete",
        actor=actor,
        target_type="user",
        target_id=str(user_id),
        details={"username": username},
    )
    db.session.commit()
    purge_unreferenced_blobs(storage_paths)

    return jsonify({"deleted": True})
