from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from .extensions import db


pwd_hasher = PasswordHasher()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class FileNodeType(str, enum.Enum):
    FILE = "file"
    FOLDER = "folder"


class SharePermission(str, enum.Enum):
    READ = "read"
    EDIT = "edit"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    files = db.relationship("FileNode", back_populates="owner", cascade="all, delete-orphan")
    received_shares = db.relationship(
        "FileShare",
        back_populates="grantee",
        foreign_keys="FileShare.grantee_id",
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = pwd_hasher.hash(password)

    def verify_password(self, password: str) -> bool:
        try:
            return pwd_hasher.verify(self.password_hash, password)
        except VerifyMismatchError:
            return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class FileNode(db.Model):
    __tablename__ = "file_nodes"

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("file_nodes.id", ondelete="CASCADE"), nullable=True, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.Enum(FileNodeType), nullable=False, default=FileNodeType.FILE)
    size_bytes = db.Column(db.BigInteger, nullable=True)
    mime_type = db.Column(db.String(255), nullable=True)
    current_version_number = db.Column(db.Integer, nullable=True)
    revision = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    parent = db.relationship("FileNode", remote_side=[id], back_populates="children")
    children = db.relationship("FileNode", back_populates="parent", cascade="all, delete-orphan")
    owner = db.relationship("User", back_populates="files")
    versions = db.relationship(
        "FileVersion",
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="FileVersion.version_number.desc()",
    )
    shares = db.relationship("FileShare", back_populates="node", cascade="all, delete-orphan")

    __table_args__ = (db.UniqueConstraint("owner_id", "parent_id", "name", name="uq_file_owner_parent_name"),)
    __mapper_args__ = {"version_id_col": revision}

    @property
    def is_folder(self) -> bool:
        return self.type == FileNodeType.FOLDER

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "parent_id": self.parent_id,
            "owner_id": self.owner_id,
            "owner_username": self.owner.username if self.owner else None,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "current_version": self.current_version_number,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
            # Field names read by the web client.
            "filename": self.name,
            "file_type": self.mime_type,
            "file_size": self.size_bytes,
            "upload_date": isoformat_utc(self.created_at),
        }


class FileVersion(db.Model):
    __tablename__ = "file_versions"

    id = db.Column(db.Integer, primary_key=True)
    file_id = db.Column(db.Integer, db.ForeignKey("file_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False)
    storage_path = db.Column(db.String(512), nullable=False, index=True)
    checksum_sha256 = db.Column(db.String(64), nullable=False)
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    mime_type = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.String(500), nullable=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    file = db.relationship("FileNode", back_populates="versions")

    __table_args__ = (db.UniqueConstraint("file_id", "version_number", name="uq_file_version_number"),)

    @property
    def is_current(self) -> bool:
        return self.file is not None and self.file.current_version_number == self.version_number

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_id": self.file_id,
            "version_number": self.version_number,
            "size_bytes": self.size_bytes,
            "file_size": self.size_bytes,
            "mime_type": self.mime_type,
            "checksum_sha256": self.checksum_sha256,
            "comment": self.comment,
            "uploaded_by_id": self.uploaded_by_id,
            "is_current": self.is_current,
            "created_at": isoformat_utc(self.created_at),
        }


class FileShare(db.Model):
    __tablename__ = "file_shares"

    id = db.Column(db.Integer, primary_key=True)
    node_id = db.Column(db.Integer, db.ForeignKey("file_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    grantee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission = db.Column(db.Enum(SharePermission), nullable=False, default=SharePermission.READ)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    node = db.relationship("FileNode", back_populates="shares")
    grantee = db.relationship("User", back_populates="received_shares", foreign_keys=[grantee_id])

    __table_args__ = (db.UniqueConstraint("node_id", "grantee_id", name="uq_file_share_node_grantee"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "node_id": self.node_id,
            "grantee_id": self.grantee_id,
            "shared_with_username": self.grantee.username if self.grantee else None,
            "shared_with_email": self.grantee.email if self.grantee else None,
            "permission": self.permission.value,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    actor_ip = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(128), nullable=False, index=True)
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.String(128), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
