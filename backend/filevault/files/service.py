from __future__ import annotations

from pathlib import Path

from flask import current_app
from sqlalchemy import case
from werkzeug.datastructures import FileStorage

from ..common.access import AccessLevel, require_access
from ..common.audit import audit
from ..common.errors import ForbiddenError, InvalidMoveError, NameConflictError, NotFoundError
from ..common.storage import validate_node_name
from ..extensions import db
from ..models import FileNode, FileNodeType, User, utc_now
from ..versions.service import append_version, store_upload


def _ordering():
    folders_first = case((FileNode.type == FileNodeType.FOLDER, 0), else_=1)
    return folders_first, FileNode.name.asc(), FileNode.id.asc()


def _assert_name_available(owner_id: int, parent_id: int | None, name: str, exclude_id: int | None = None) -> None:
    query = FileNode.query.filter_by(owner_id=owner_id, parent_id=parent_id, name=name)
    if exclude_id is not None:
        query = query.filter(FileNode.id != exclude_id)
    if query.first() is not None:
        raise NameConflictError(f"A file or folder named '{name}' already exists here.", {"name": name})


def _writable_parent(actor: User, parent_id: int | None) -> FileNode | None:
    if parent_id is None:
        return None
    parent, _ = require_access(actor, parent_id, AccessLevel.EDIT)
    if not parent.is_folder:
        raise NotFoundError("Parent folder not found.")
    return parent


def collect_subtree(root: FileNode) -> list[FileNode]:
    stack = [root]
    collected: list[FileNode] = []
    while stack:
        current = stack.pop()
        collected.append(current)
        stack.extend(current.children)
    return collected


def create_folder(actor: User, parent_id: int | None, name: str) -> FileNode:
    name = validate_node_name(name)
    parent = _writable_parent(actor, parent_id)
    # Items created inside a shared folder belong to the folder's owner.
    owner_id = parent.owner_id if parent is not None else actor.id

    _assert_name_available(owner_id=owner_id, parent_id=parent_id, name=name)

    node = FileNode(name=name, type=FileNodeType.FOLDER, owner_id=owner_id, parent_id=parent_id)
    db.session.add(node)
    db.session.flush()

    audit(
        action="files.folder_create",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"name": name, "parent_id": parent_id},
    )
    return node


def create_file(actor: User, parent_id: int | None, upload: FileStorage, comment: str | None = None) -> FileNode:
    name = validate_node_name(Path(upload.filename or "").name)
    parent = _writable_parent(actor, parent_id)
    owner_id = parent.owner_id if parent is not None else actor.id

    _assert_name_available(owner_id=owner_id, parent_id=parent_id, name=name)

    content = store_upload(upload)
    node = FileNode(
        name=name,
        type=FileNodeType.FILE,
        owner_id=owner_id,
        parent_id=parent_id,
        mime_type=content.mime_type,
        size_bytes=content.size_bytes,
    )
    db.session.add(node)
    db.session.flush()
    append_version(node, content, actor, comment)

    audit(
        action="files.upload",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"name": name, "size": content.size_bytes, "parent_id": parent_id},
    )
    return node


def list_children(actor: User, parent_id: int | None) -> list[FileNode]:
    if parent_id is None:
        query = FileNode.query.filter(FileNode.owner_id == actor.id, FileNode.parent_id.is_(None))
        return query.order_by(*_ordering()).all()

    parent, _ = require_access(actor, parent_id, AccessLevel.READ)
    if not parent.is_folder:
        raise NotFoundError("Parent folder not found.")
    return FileNode.query.filter(FileNode.parent_id == parent.id).order_by(*_ordering()).all()


def list_all(actor: User) -> list[FileNode]:
    return FileNode.query.filter(FileNode.owner_id == actor.id).order_by(*_ordering()).all()


def get_node(actor: User, node_id: int) -> tuple[FileNode, AccessLevel]:
    return require_access(actor, node_id, AccessLevel.READ)


def rename_node(actor: User, node_id: int, new_name: str) -> FileNode:
    node, _ = require_access(actor, node_id, AccessLevel.EDIT)
    name = validate_node_name(new_name)
    if name == node.name:
        return node

    _assert_name_available(node.owner_id, node.parent_id, name, exclude_id=node.id)
    previous = node.name
    node.name = name
    node.updated_at = utc_now()
    db.session.flush()

    audit(
        action="files.rename",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"from": previous, "to": name},
    )
    return node


def _assert_not_into_own_subtree(node: FileNode, target: FileNode) -> None:
    """Walk parent pointers from ``target`` to the root and reject if ``node`` is on the path."""
    max_depth = current_app.config["MAX_TREE_DEPTH"]
    cursor: FileNode | None = target
    depth = 0
    while cursor is not None:
        if cursor.id == node.id:
            raise InvalidMoveError(
                "A folder cannot be moved into itself or one of its subfolders.",
                {"node_id": node.id, "target_parent_id": target.id},
            )
        depth += 1
        if depth > max_depth:
            raise InvalidMoveError("Folder hierarchy is too deep.", {"max_depth": max_depth})
        # Lock each ancestor so a concurrent move cannot invalidate the walk.
        db.session.refresh(cursor, with_for_update=True)
        cursor = cursor.parent


def move_node(actor: User, node_id: int | None, target_parent_id: int | None) -> FileNode:
    if node_id is None:
        raise InvalidMoveError("The root folder cannot be moved.")

    node, level = require_access(actor, node_id, AccessLevel.EDIT)
    db.session.refresh(node, with_for_update=True)

    if target_parent_id == node.parent_id:
        return node
    if target_parent_id == node.id:
        raise InvalidMoveError("An item cannot be moved into itself.", {"node_id": node.id})

    if target_parent_id is None:
        if level != AccessLevel.OWNER:
            raise ForbiddenError("Only the owner can move items to the root folder.")
    else:
        target, _ = require_access(actor, target_parent_id, AccessLevel.EDIT)
        if not target.is_folder:
            raise InvalidMoveError("Target must be a folder.", {"target_parent_id": target.id})
        if target.owner_id != node.owner_id:
            raise InvalidMoveError("Cannot move items across different owners.")
        _assert_not_into_own_subtree(node, target)

    _assert_name_available(node.owner_id, target_parent_id, node.name, exclude_id=node.id)

    previous_parent_id = node.parent_id
    node.parent_id = target_parent_id
    node.updated_at = utc_now()
    db.session.flush()

    audit(
        action="files.move",
        actor=actor,
        target_type="file_node",
        target_id=str(node.id),
        details={"from_parent_id": previous_parent_id, "to_parent_id": target_parent_id},
    )
    return node


def delete_node(actor: User, node_id: int) -> tuple[int, list[str]]:
    """Delete a node with its whole subtree, versions and shares.

    Returns the number of removed nodes and the blob paths their versions used;
    blobs are unlinked by the caller once the transaction has committed.
    """
    node, _ = require_access(actor, node_id, AccessLevel.EDIT)

    subtree = collect_subtree(node)
    storage_paths = [version.storage_path for item in subtree for version in item.versions]

    db.session.delete(node)
    db.session.flush()

    if len(subtree) > 1:
        current_app.logger.info("Deleted node %s with %s descendants", node_id, len(subtree) - 1)
    audit(
        action="files.delete",
        actor=actor,
        target_type="file_node",
        target_id=str(node_id),
        details={"deleted_count": len(subtree)},
    )
    return len(subtree), storage_paths
