from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.auth import current_user
from ..common.errors import APIError
from ..common.params import parse_limit
from ..extensions import db
from ..models import isoformat_utc
from . import service
from .service import SharedEntry


shares_bp = Blueprint("shares", __name__, url_prefix="/files")


def _entry_payload(entry: SharedEntry, nested: bool = True) -> dict[str, Any]:
    payload = entry.node.to_dict()
    owner = entry.node.owner
    payload.update(
        {
            "permission": entry.permission.value,
            "shared_at": isoformat_utc(entry.share.created_at) if entry.share else None,
            "shared_by_id": owner.id if owner else None,
            "username": owner.username if owner else None,
            "email": owner.email if owner else None,
        }
    )
    if nested:
        payload["children"] = [_entry_payload(child) for child in entry.children]
    return payload


def _grantee_email(payload: dict[str, Any]) -> str:
    email = (payload.get("shared_with_email") or payload.get("email") or "").strip()
    if "@" not in email:
        raise APIError(400, "INVALID_PARAMETER", "shared_with_email must be an email address.")
    return email


@shares_bp.post("/<int:node_id>/share")
@jwt_required()
def share_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    share, created = service.grant_share(user, node_id, _grantee_email(payload), payload.get("permission"))
    db.session.commit()

    return jsonify({**share.to_dict(), "created": created}), 201 if created else 200


@shares_bp.get("/<int:node_id>/shares")
@jwt_required()
def list_file_shares(node_id: int):
    user = current_user(required=True)
    assert user is not None

    shares = service.list_shares(user, node_id)
    return jsonify([share.to_dict() for share in shares])


@shares_bp.delete("/<int:node_id>/share")
@jwt_required()
def revoke_file_share(node_id: int):
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    if "shared_with_email" not in payload and request.args.get("shared_with_email"):
        payload = {"shared_with_email": request.args.get("shared_with_email")}

    revoked = service.revoke_share(user, node_id, _grantee_email(payload))
    db.session.commit()

    return jsonify({"revoked": revoked})


@shares_bp.get("/shared-with-me")
@jwt_required()
def shared_with_me():
    user = current_user(required=True)
    assert user is not None

    entries = service.list_shared_with_me(user)
    return jsonify([_entry_payload(entry) for entry in entries])


@shares_bp.get("/recent-shared")
@jwt_required()
def recent_shared():
    user = current_user(required=True)
    assert user is not None

    limit = parse_limit(request.args.get("limit"), current_app.config["RECENT_SHARED_LIMIT"])
    entries = service.list_recent_shared_with_me(user, limit)
    return jsonify([_entry_payload(entry, nested=False) for entry in entries])
