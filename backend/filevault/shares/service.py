from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func

from ..common.access import AccessLevel, ancestor_chain, require_access, shared_permission
from ..common.audit import audit
from ..common.errors import APIError, ForbiddenError, InvalidOperationError, NotFoundError
from ..extensions import db
from ..models import FileNode, FileShare, SharePermission, User


@dataclass
class SharedEntry:
    node: FileNode
    permission: SharePermission
    share: FileShare | None = None
    children: list["SharedEntry"] = field(default_factory=list)


def parse_permission(value: str | None) -> SharePermission:
    normalized = (value or "read").strip().lower()
    for permission in SharePermission:
        if permission.value == normalized:
            return permission
    raise APIError(400, "INVALID_PERMISSION", "Permission must be 'read' or 'edit'.")


def _owned_node(actor: User, node_id: int) -> FileNode:
    node, level = require_access(actor, node_id, AccessLevel.READ)
    if level != AccessLevel.OWNER:
        raise ForbiddenError("Only the owner can manage sharing for this item.")
    return node


def _find_account(email: str) -> User | None:
    cleaned = (email or "").strip().lower()
    if not cleaned:
        return None
    return User.query.filter(func.lower(User.email) == cleaned).one_or_none()


def grant_share(actor: User, node_id: int, grantee_email: str, permission: str | None) -> tuple[FileShare, bool]:
    node = _owned_node(actor, node_id)
    access = parse_permission(permission)

    grantee = _find_account(grantee_email)
    if grantee is None or not grantee.is_active:
        raise NotFoundError("User not found.")
    if grantee.id == node.owner_id:
        raise InvalidOperationError("The owner already has full access.")

    share = FileShare.query.filter_by(node_id=node.id, grantee_id=grantee.id).one_or_none()
    created = share is None
    if share is None:
        share = FileShare(node_id=node.id, grantee_id=grantee.id, permission=access)
        db.session.add(share)
    else:
        share.permission = access
    db.session.flush()

    audit(
        action="shares.grant",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"grantee_id": grantee.id, "permission": access.value, "created": created},
    )
    return share, created


def revoke_share(actor: User, node_id: int, grantee_email: str) -> bool:
    node = _owned_node(actor, node_id)
    grantee = _find_account(grantee_email)
    if grantee is None:
        return False

    share = FileShare.query.filter_by(node_id=node.id, grantee_id=grantee.id).one_or_none()
    if share is None:
        return False

    db.session.delete(share)
    db.session.flush()
    audit(
        action="shares.revoke",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"grantee_id": grantee.id},
    )
    return True


def list_shares(actor: User, node_id: int) -> list[FileShare]:
    node = _owned_node(actor, node_id)
    return FileShare.query.filter_by(node_id=node.id).order_by(FileShare.created_at.desc(), FileShare.id.desc()).all()


def _received_shares(grantee: User) -> list[FileShare]:
    return (
        FileShare.query.filter_by(grantee_id=grantee.id)
        .order_by(FileShare.created_at.desc(), FileShare.id.desc())
        .all()
    )


def _sorted_children(node: FileNode) -> list[FileNode]:
    return sorted(node.children, key=lambda child: (not child.is_folder, child.name, child.id))


def list_shared_with_me(grantee: User) -> list[SharedEntry]:
    """Directly shared nodes that are not already under another shared node, each with its subtree.

    Every node appears once and carries the strongest permission granted on it
    or on any shared ancestor.
    """
    shares = _received_shares(grantee)
    by_node = {share.node_id: share for share in shares}

    seen: set[int] = set()
    entries: list[SharedEntry] = []

    def build(node: FileNode, inherited: SharePermission) -> SharedEntry | None:
        if node.id in seen:
            return None
        seen.add(node.id)
        direct = by_node.get(node.id)
        # EDIT on a node overrides a READ inherited from above.
        permission = SharePermission.EDIT if direct and direct.permission == SharePermission.EDIT else inherited
        entry = SharedEntry(node=node, permission=permission, share=direct)
        for child in _sorted_children(node):
            child_entry = build(child, permission)
            if child_entry is not None:
                entry.children.append(child_entry)
        return entry

    for share in shares:
        node = share.node
        if node is None or node.owner_id == grantee.id:
            continue
        if any(ancestor.id in by_node for ancestor in ancestor_chain(node)[1:]):
            continue
        entry = build(node, share.permission)
        if entry is not None:
            entries.append(entry)
    return entries


def list_recent_shared_with_me(grantee: User, limit: int) -> list[SharedEntry]:
    entries: list[SharedEntry] = []
    for share in _received_shares(grantee):
        if len(entries) >= limit:
            break
        node = share.node
        if node is None or node.owner_id == grantee.id:
            continue
        permission = shared_permission(grantee, node) or share.permission
        entries.append(SharedEntry(node=node, permission=permission, share=share))
    return entries
