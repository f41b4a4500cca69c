from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.access import AccessLevel
from ..common.auth import current_user
from ..common.errors import APIError
from ..common.params import parse_nullable_int
from ..common.responses import content_response, node_payload
from ..extensions import db
from ..versions.service import get_version, purge_unreferenced_blobs
from . import service


files_bp = Blueprint("files", __name__, url_prefix="/files")
folders_bp = Blueprint("folders", __name__, url_prefix="/folders")


@files_bp.get("/")
@jwt_required()
def list_files():
    user = current_user(required=True)
    assert user is not None

    parent_id = parse_nullable_int(request.args.get("parent_id"), "parent_id")
    items = service.list_children(user, parent_id)
    return jsonify([node_payload(user, item) for item in items])


@files_bp.get("/all")
@jwt_required()
def list_all_files():
    user = current_user(required=True)
    assert user is not None

    items = service.list_all(user)
    return jsonify([node_payload(user, item, AccessLevel.OWNER) for item in items])


@files_bp.get("/<int:node_id>")
@jwt_required()
def get_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    node, level = service.get_node(user, node_id)
    return jsonify(node_payload(user, node, level))


@files_bp.post("/upload")
@jwt_required()
def upload_file():
    user = current_user(required=True)
    assert user is not None

    file_obj = request.files.get("file")
    if file_obj is None:
        raise APIError(400, "INVALID_FILE", "Multipart field 'file' is required.")

    parent_id = parse_nullable_int(request.form.get("parent_id"), "parent_id")
    comment = (request.form.get("comment") or "").strip() or None

    node = service.create_file(user, parent_id, file_obj, comment)
    db.session.commit()

    return jsonify(node_payload(user, node)), 201


@folders_bp.post("/")
@jwt_required()
def create_folder():
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    parent_id = parse_nullable_int(payload.get("parent_id"), "parent_id")

    node = service.create_folder(user, parent_id, payload.get("name") or "")
    db.session.commit()

    return jsonify(node_payload(user, node)), 201


@files_bp.patch("/<int:node_id>")
@jwt_required()
def rename_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    if "name" not in payload:
        raise APIError(400, "INVALID_PARAMETER", "name is required.")

    node = service.rename_node(user, node_id, payload.get("name") or "")
    db.session.commit()

    return jsonify(node_payload(user, node))


@files_bp.patch("/<int:node_id>/move")
@jwt_required()
def move_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    payload = request.get_json(silent=True) or {}
    if "target_parent_id" not in payload:
        raise APIError(400, "INVALID_PARAMETER", "target_parent_id is required (null moves to the root).")
    target_parent_id = parse_nullable_int(payload.get("target_parent_id"), "target_parent_id")

    node = service.move_node(user, node_id, target_parent_id)
    db.session.commit()

    return jsonify(node_payload(user, node))


@files_bp.delete("/<int:node_id>")
@jwt_required()
def delete_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    deleted_count, storage_paths = service.delete_node(user, node_id)
    db.session.commit()
    purge_unreferenced_blobs(storage_paths)

    return jsonify({"deleted_count": deleted_count})


@files_bp.get("/<int:node_id>/content")
@jwt_required()
def file_content(node_id: int):
    user = current_user(required=True)
    assert user is not None

    return content_response(get_version(user, node_id))


@files_bp.get("/<int:node_id>/download")
@jwt_required()
def download_file(node_id: int):
    user = current_user(required=True)
    assert user is not None

    return content_response(get_version(user, node_id), as_attachment=True)
