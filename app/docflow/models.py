from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.docflow.utils import isoformat, utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="Viewer")  # Admin / Staff / Viewer
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }


class AuditEvent(Base):
    """
    Append-only audit trail entry.

    document_title is captured at action time; document_id is a plain string (no FK)
    so entries outlive hard-deleted documents.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_action_type_created", "action_type", "created_at"),
        Index("idx_audit_document_created", "document_id", "created_at"),
        Index("idx_audit_actor_created", "actor", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor: Mapped[str] = mapped_column(String(150), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "Upload", "Approve"
    action_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # e.g. "create", "share"

    document_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document_title: Mapped[str] = mapped_column(String(255), nullable=False)
    document_status: Mapped[str | None] = mapped_column(String(128), nullable=True)

    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string

    @property
    def details(self) -> dict:
        return json.loads(self.details_json) if self.details_json else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": isoformat(self.created_at),
            "request_id": self.request_id,
            "user": self.actor,
            "action": self.action,
            "action_type": self.action_type,
            "document_id": self.document_id,
            "doc": self.document_title,
            "status": self.document_status,
            "details": self.details,
        }


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.docflow.modules.documents.models import (  # noqa: E402,F401
    ApprovalRow,
    DocumentRow,
    DocumentVersionRow,
    ShareLinkRow,
)
