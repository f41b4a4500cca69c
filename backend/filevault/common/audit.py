from __future__ import annotations

from typing import Any

from flask import current_app, has_request_context, request
from sqlalchemy.exc import InvalidRequestError, OperationalError, ProgrammingError

from ..extensions import db
from ..models import AuditLog, User


def request_ip() -> str | None:
    """Client address of the current request, honouring the first X-Forwarded-For hop."""
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For") or ""
    if forwarded.strip():
        return forwarded.split(",")[0].strip()[:64]
    return request.remote_addr or None


def audit(
    action: str,
    actor: User | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    entry = AuditLog(
        actor_user_id=actor.id if actor else None,
        actor_ip=request_ip(),
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details or {},
    )
    # Audit must never break the primary action (e.g. delete/upload).
    try:
        with db.session.begin_nested():
            db.session.add(entry)
            db.session.flush([entry])
    except (OperationalError, ProgrammingError):
        current_app.logger.warning("Audit entry for %s skipped", action, exc_info=True)
        try:
            db.session.expunge(entry)
        except InvalidRequestError:
            pass
        return None

    return entry
