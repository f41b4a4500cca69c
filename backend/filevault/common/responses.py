from __future__ import annotations

from typing import Any

from flask import jsonify, send_file

from ..models import FileNode, FileVersion, User
from .access import AccessLevel, access_level
from .content import InlineText, locate, resolve


def node_payload(user: User, node: FileNode, level: AccessLevel | None = None) -> dict[str, Any]:
    payload = node.to_dict()
    level = level or access_level(user, node)
    payload["permission"] = level.value if level else None
    return payload


def content_response(version: FileVersion, as_attachment: bool = False):  # type: ignore[no-untyped-def]
    node = version.file
    if as_attachment:
        blob = locate(version)
        return send_file(blob.path, as_attachment=True, download_name=node.name, mimetype=blob.mime_type)

    resolved = resolve(version)
    if isinstance(resolved, InlineText):
        return jsonify(
            {
                "file_id": node.id,
                "filename": node.name,
                "version_number": version.version_number,
                "mime_type": resolved.mime_type,
                "size_bytes": resolved.size_bytes,
                "content": resolved.text,
            }
        )
    return send_file(resolved.path, as_attachment=False, download_name=node.name, mimetype=resolved.mime_type)
