from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

from ..models import FileVersion
from .errors import APIError
from .storage import read_blob, resolve_storage_path, storage_root


DEFAULT_MIME_TYPE = "application/octet-stream"

INLINE_TEXT_MIME_TYPES = frozenset(
    {
        "application/json",
        "application/xml",
        "application/javascript",
        "application/x-javascript",
        "text/css",
        "text/html",
    }
)


@dataclass(frozen=True)
class InlineText:
    text: str
    mime_type: str
    size_bytes: int


@dataclass(frozen=True)
class BlobStream:
    path: Path
    mime_type: str
    size_bytes: int


def normalize_mime_type(value: str | None) -> str:
    cleaned = (value or "").split(";", 1)[0].strip().lower()
    return cleaned or DEFAULT_MIME_TYPE


def detect_mime_type(filename: str, declared: str | None) -> str:
    mime = normalize_mime_type(declared)
    if mime != DEFAULT_MIME_TYPE:
        return mime
    guessed, _ = mimetypes.guess_type(filename)
    return normalize_mime_type(guessed)


def is_inline_text(mime_type: str | None) -> bool:
    mime = normalize_mime_type(mime_type)
    if mime.startswith("text/") or mime in INLINE_TEXT_MIME_TYPES:
        return True
    return mime.endswith("+json") or mime.endswith("+xml")


def locate(version: FileVersion) -> BlobStream:
    path = resolve_storage_path(storage_root(), version.storage_path)
    if not path.exists():
        raise APIError(404, "FILE_MISSING", "File data not found on disk.")
    return BlobStream(path=path, mime_type=normalize_mime_type(version.mime_type), size_bytes=version.size_bytes)


def resolve(version: FileVersion) -> InlineText | BlobStream:
    """Resolve a version to decoded text or to a streamable file on disk.

    The split is decided here rather than by the client: text types are
    returned inline, everything else is streamed.
    """
    mime = normalize_mime_type(version.mime_type)
    if not is_inline_text(mime):
        return locate(version)

    raw = read_blob(storage_root(), version.storage_path)
    return InlineText(text=raw.decode("utf-8", errors="replace"), mime_type=mime, size_bytes=version.size_bytes)
