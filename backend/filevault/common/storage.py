from __future__ import annotations

import hashlib
import os
import re
import tempfile
import time
from pathlib import Path
from typing import BinaryIO

from flask import current_app

from .errors import APIError, StorageUnavailableError


INVALID_NAME_PATTERN = re.compile(r"[\\/\x00]")
CHUNK_SIZE = 1024 * 1024
INCOMING_DIR = ".incoming"


def validate_node_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise APIError(400, "INVALID_NAME", "Name cannot be empty.")
    if len(cleaned) > 255:
        raise APIError(400, "INVALID_NAME", "Name must be <= 255 characters.")
    if INVALID_NAME_PATTERN.search(cleaned):
        raise APIError(400, "INVALID_NAME", "Name contains invalid characters.")
    if cleaned in {".", ".."}:
        raise APIError(400, "INVALID_NAME", "Reserved name.")
    return cleaned


def storage_root() -> Path:
    return Path(current_app.config["STORAGE_ROOT"]).resolve()


def _safe_resolve(root: Path, relative_path: str) -> Path:
    resolved_root = root.resolve()
    candidate = (resolved_root / relative_path).resolve()
    if os.path.commonpath([str(resolved_root), str(candidate)]) != str(resolved_root):
        raise APIError(400, "INVALID_PATH", "Invalid storage path.")
    return candidate


def blob_path_for(checksum: str) -> str:
    return f"{checksum[:2]}/{checksum}"


def save_blob(stream: BinaryIO, root: Path) -> tuple[str, int, str]:
    """Stream bytes into the blob store and return (relative_path, size, sha256).

    Blobs are addressed by their SHA-256 digest, so identical contents land on
    the same path. The staged copy always replaces the stored one, which refreshes
    its mtime and keeps a blob that a pending upload is about to reference out of
    reach of the purge grace window.
    """
    digest = hashlib.sha256()
    size = 0
    try:
        incoming = root / INCOMING_DIR
        incoming.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=incoming)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as output:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    digest.update(chunk)
                    size += len(chunk)
                    output.write(chunk)

            checksum = digest.hexdigest()
            relative_path = blob_path_for(checksum)
            target_path = _safe_resolve(root, relative_path)
            target_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, target_path)
        finally:
            temp_path.unlink(missing_ok=True)
    except OSError as error:
        current_app.logger.warning("Blob write failed under %s", root, exc_info=True)
        raise StorageUnavailableError("Could not store file content.") from error

    return relative_path, size, checksum


def read_blob(root: Path, relative_path: str) -> bytes:
    target_path = resolve_storage_path(root, relative_path)
    try:
        return target_path.read_bytes()
    except FileNotFoundError as error:
        raise APIError(404, "FILE_MISSING", "File data not found on disk.") from error
    except OSError as error:
        raise StorageUnavailableError("Could not read file content.") from error


def delete_storage_path(root: Path, relative_path: str | None) -> None:
    if not relative_path:
        return

    target_path = _safe_resolve(root, relative_path)
    if target_path.exists():
        target_path.unlink()


def resolve_storage_path(root: Path, relative_path: str) -> Path:
    return _safe_resolve(root, relative_path)


def blob_age_seconds(path: Path) -> float:
    return time.time() - path.stat().st_mtime
