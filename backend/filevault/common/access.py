from __future__ import annotations

import enum

from flask import current_app

from ..extensions import db
from ..models import FileNode, FileShare, SharePermission, User
from .errors import ForbiddenError, NotFoundError


class AccessLevel(str, enum.Enum):
    READ = "read"
    EDIT = "edit"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def allows(self, needed: "AccessLevel") -> bool:
        return self.rank >= needed.rank


_RANKS = {AccessLevel.READ: 1, AccessLevel.EDIT: 2, AccessLevel.OWNER: 3}


def level_for_permission(permission: SharePermission) -> AccessLevel:
    return AccessLevel.EDIT if permission == SharePermission.EDIT else AccessLevel.READ


def strongest(*permissions: SharePermission | None) -> SharePermission | None:
    present = [permission for permission in permissions if permission is not None]
    if not present:
        return None
    if SharePermission.EDIT in present:
        return SharePermission.EDIT
    return SharePermission.READ


def ancestor_chain(node: FileNode) -> list[FileNode]:
    """Return ``node`` followed by its ancestors up to the owner's root."""
    max_depth = current_app.config["MAX_TREE_DEPTH"]
    chain: list[FileNode] = []
    cursor: FileNode | None = node
    while cursor is not None and len(chain) <= max_depth:
        chain.append(cursor)
        cursor = cursor.parent
    return chain


def shared_permission(user: User, node: FileNode) -> SharePermission | None:
    ancestor_ids = [item.id for item in ancestor_chain(node)]
    shares = FileShare.query.filter(
        FileShare.grantee_id == user.id,
        FileShare.node_id.in_(ancestor_ids),
    ).all()
    return strongest(*(share.permission for share in shares))


def access_level(user: User, node: FileNode) -> AccessLevel | None:
    if node.owner_id == user.id:
        return AccessLevel.OWNER
    permission = shared_permission(user, node)
    if permission is None:
        return None
    return level_for_permission(permission)


def require_access(user: User, node_id: int, needed: AccessLevel) -> tuple[FileNode, AccessLevel]:
    # Callers without any access get NotFound so node ids never leak.
    node = db.session.get(FileNode, node_id)
    if node is None:
        raise NotFoundError()
    level = access_level(user, node)
    if level is None:
        raise NotFoundError()
    if not level.allows(needed):
        raise ForbiddenError("You do not have permission to modify this item.")
    return node, level
