from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from flask import current_app
from sqlalchemy import func
from werkzeug.datastructures import FileStorage

from ..common.access import AccessLevel, require_access
from ..common.audit import audit
from ..common.content import detect_mime_type
from ..common.errors import APIError, InvalidOperationError, NotFoundError
from ..common.storage import blob_age_seconds, delete_storage_path, resolve_storage_path, save_blob, storage_root
from ..extensions import db
from ..models import FileNode, FileVersion, User, utc_now


@dataclass(frozen=True)
class StoredContent:
    storage_path: str
    checksum_sha256: str
    size_bytes: int
    mime_type: str


def store_upload(upload: FileStorage) -> StoredContent:
    if not upload.filename:
        raise APIError(400, "INVALID_FILE", "File name is required.")

    stream = upload.stream
    current = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(current)

    if size > current_app.config["MAX_UPLOAD_SIZE_BYTES"]:
        raise APIError(413, "UPLOAD_TOO_LARGE", "File exceeds max upload size.")

    relative_path, written, checksum = save_blob(stream, storage_root())
    return StoredContent(
        storage_path=relative_path,
        checksum_sha256=checksum,
        size_bytes=written,
        mime_type=detect_mime_type(Path(upload.filename).name, upload.mimetype),
    )


def _file_node(actor: User, file_id: int, needed: AccessLevel) -> FileNode:
    node, _ = require_access(actor, file_id, needed)
    if node.is_folder:
        raise InvalidOperationError("Folders do not have versions.")
    return node


def _find_version(file_id: int, version_number: int) -> FileVersion:
    version = FileVersion.query.filter_by(file_id=file_id, version_number=version_number).one_or_none()
    if version is None:
        raise NotFoundError("Version not found.")
    return version


def _set_current(node: FileNode, version: FileVersion) -> None:
    # Only path that changes which version of a file is current.
    node.current_version_number = version.version_number
    node.size_bytes = version.size_bytes
    node.mime_type = version.mime_type or node.mime_type
    node.updated_at = utc_now()


def append_version(
    node: FileNode,
    content: StoredContent,
    actor: User,
    comment: str | None = None,
) -> FileVersion:
    # Row lock serializes concurrent appends on databases that support it;
    # the unique (file_id, version_number) constraint catches the rest.
    db.session.refresh(node, with_for_update=True)

    latest = (
        db.session.query(func.max(FileVersion.version_number)).filter(FileVersion.file_id == node.id).scalar() or 0
    )
    version = FileVersion(
        file=node,
        version_number=latest + 1,
        storage_path=content.storage_path,
        checksum_sha256=content.checksum_sha256,
        size_bytes=content.size_bytes,
        mime_type=content.mime_type,
        comment=comment or None,
        uploaded_by_id=actor.id,
    )
    db.session.add(version)
    db.session.flush()

    _set_current(node, version)
    db.session.flush()
    return version


def add_version(actor: User, file_id: int, upload: FileStorage, comment: str | None = None) -> FileVersion:
    node = _file_node(actor, file_id, AccessLevel.EDIT)
    content = store_upload(upload)
    version = append_version(node, content, actor, comment)

    audit(
        action="versions.create",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"version_number": version.version_number, "size": version.size_bytes},
    )
    return version


def list_versions(actor: User, file_id: int) -> list[FileVersion]:
    node = _file_node(actor, file_id, AccessLevel.READ)
    return (
        FileVersion.query.filter_by(file_id=node.id)
        .order_by(FileVersion.version_number.desc())
        .all()
    )


def get_version(actor: User, file_id: int, version_number: int | None = None) -> FileVersion:
    """Return ``version_number`` of a file, or its current version when omitted."""
    node = _file_node(actor, file_id, AccessLevel.READ)
    if version_number is None:
        if node.current_version_number is None:
            raise NotFoundError("File has no content.")
        version_number = node.current_version_number
    return _find_version(node.id, version_number)


def restore_version(actor: User, file_id: int, version_number: int) -> FileVersion:
    node = _file_node(actor, file_id, AccessLevel.EDIT)
    source = _find_version(node.id, version_number)
    content = StoredContent(
        storage_path=source.storage_path,
        checksum_sha256=source.checksum_sha256,
        size_bytes=source.size_bytes,
        mime_type=source.mime_type or node.mime_type or "",
    )
    version = append_version(node, content, actor, comment=f"Restored from version {version_number}")

    current_app.logger.info(
        "Restored file %s from version %s as version %s", node.id, version_number, version.version_number
    )
    audit(
        action="versions.restore",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"restored_from": version_number, "version_number": version.version_number},
    )
    return version


def restore_version_by_id(actor: User, version_id: int) -> FileVersion:
    source = db.session.get(FileVersion, version_id)
    if source is None:
        raise NotFoundError("Version not found.")
    return restore_version(actor, source.file_id, source.version_number)


def delete_version(actor: User, file_id: int, version_number: int) -> str:
    """Delete a non-current version and return its blob path for cleanup after commit."""
    node = _file_node(actor, file_id, AccessLevel.EDIT)
    db.session.refresh(node, with_for_update=True)

    version = _find_version(node.id, version_number)
    if version.version_number == node.current_version_number:
        raise InvalidOperationError(
            "The current version cannot be deleted. Restore or upload another version first."
        )

    storage_path = version.storage_path
    db.session.delete(version)
    db.session.flush()

    audit(
        action="versions.delete",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"version_number": version_number},
    )
    return storage_path


def _within_grace(path: Path, grace: int) -> bool:
    if grace <= 0:
        return False
    try:
        return blob_age_seconds(path) < grace
    except FileNotFoundError:
        return True


def sweep_orphan_blobs(dry_run: bool = False) -> list[str]:
    """Remove every blob on disk that no version references, plus abandoned upload temp files.

    Anything modified within ``BLOB_GRACE_SECONDS`` is skipped, since an upload
    may still be about to reference it. Returns the relative paths that were
    (or, with ``dry_run``, would be) removed.
    """
    root = storage_root()
    if not root.exists():
        return []

    grace = current_app.config["BLOB_GRACE_SECONDS"]
    referenced = {path for (path,) in db.session.query(FileVersion.storage_path).distinct()}
    orphans: list[str] = []
    for candidate in sorted(root.glob("*/*")):
        if not candidate.is_file():
            continue
        relative_path = candidate.relative_to(root).as_posix()
        if relative_path in referenced or _within_grace(candidate, grace):
            continue
        if not dry_run:
            candidate.unlink(missing_ok=True)
        orphans.append(relative_path)

    if orphans and not dry_run:
        current_app.logger.info("Removed %s orphaned blob(s)", len(orphans))
    return orphans


def purge_unreferenced_blobs(storage_paths: list[str]) -> int:
    """Unlink blobs no version references any more.

    Recently staged blobs and failures are left for a later sweep.
    """
    root = storage_root()
    grace = current_app.config["BLOB_GRACE_SECONDS"]
    removed = 0
    for storage_path in sorted(set(storage_paths)):
        if FileVersion.query.filter_by(storage_path=storage_path).first() is not None:
            continue
        try:
            if _within_grace(resolve_storage_path(root, storage_path), grace):
                continue
            delete_storage_path(root, storage_path)
        except OSError:
            current_app.logger.warning("Could not remove blob %s", storage_path, exc_info=True)
            continue
        removed += 1
    return removed
