from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.auth import current_user
from ..common.errors import APIError
from ..common.responses import content_response
from ..extensions import db
from . import service


versions_bp = Blueprint("versions", __name__, url_prefix="/files")


@versions_bp.post("/<int:file_id>/versions")
@jwt_required()
def create_version(file_id: int):
    user = current_user(required=True)
    assert user is not None

    file_obj = request.files.get("file")
    if file_obj is None:
        raise APIError(400, "INVALID_FILE", "Multipart field 'file' is required.")
    comment = (request.form.get("comment") or "").strip() or None

    version = service.add_version(user, file_id, file_obj, comment)
    db.session.commit()

    return jsonify(version.to_dict()), 201


@versions_bp.get("/<int:file_id>/versions")
@jwt_required()
def list_versions(file_id: int):
    user = current_user(required=True)
    assert user is not None

    versions = service.list_versions(user, file_id)
    return jsonify([version.to_dict() for version in versions])


@versions_bp.get("/<int:file_id>/versions/<int:version_number>/content")
@jwt_required()
def version_content(file_id: int, version_number: int):
    user = current_user(required=True)
    assert user is not None

    return content_response(service.get_version(user, file_id, version_number))


@versions_bp.post("/<int:file_id>/versions/<int:version_number>/restore")
@jwt_required()
def restore_version(file_id: int, version_number: int):
    user = current_user(required=True)
    assert user is not None

    version = service.restore_version(user, file_id, version_number)
    db.session.commit()

    return jsonify(version.to_dict()), 201


@versions_bp.post("/versions/<int:version_id>/restore")
@jwt_required()
def restore_version_by_id(version_id: int):
    user = current_user(required=True)
    assert user is not None

    version = service.restore_version_by_id(user, version_id)
    db.session.commit()

    return jsonify(version.to_dict()), 201


@versions_bp.delete("/<int:file_id>/versions/<int:version_number>")
@jwt_required()
def delete_version(file_id: int, version_number: int):
    user = current_user(required=True)
    assert user is not None

    storage_path = service.delete_version(user, file_id, version_number)
    db.session.commit()
    service.purge_unreferenced_blobs([storage_path])

    return jsonify({"deleted": True, "version_number": version_number})
