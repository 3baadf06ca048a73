"""
Persistence rows for the documents module.

The `revision` column on documents is the optimistic-concurrency token: every store
increments it, and a store carrying a stale expected revision is rejected.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.docflow.constants import DECISION_PENDING
from app.docflow.models import Base
from app.docflow.utils import utcnow


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_category", "category"),
        Index("idx_documents_status", "status"),
        Index("idx_documents_uploaded_at", "uploaded_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(128), nullable=False)
    tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    logs_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    uploaded_by: Mapped[str] = mapped_column(String(150), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    last_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(String(150), nullable=True)

    file_storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    file_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    approval_configured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approval_type: Mapped[str] = mapped_column(String(16), nullable=False, default="single")
    approval_levels_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    approval_current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    versions: Mapped[list["DocumentVersionRow"]] = relationship(
        "DocumentVersionRow",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentVersionRow.version",
    )
    approvals: Mapped[list["ApprovalRow"]] = relationship(
        "ApprovalRow",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ApprovalRow.id",
    )
    share_links: Mapped[list["ShareLinkRow"]] = relationship(
        "ShareLinkRow",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ShareLinkRow.id",
    )


class DocumentVersionRow(Base):
    """Immutable once inserted."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    author: Mapped[str] = mapped_column(String(150), nullable=False)
    change_summary: Mapped[str] = mapped_column(String(512), nullable=False, default="")

    # Snapshot of the metadata at this version
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(128), nullable=False)
    tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    logs_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    document: Mapped[DocumentRow] = relationship("DocumentRow", back_populates="versions")


class ApprovalRow(Base):
    __tablename__ = "document_approvals"
    __table_args__ = (
        UniqueConstraint("document_id", "approver", name="uq_document_approver"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    approver: Mapped[str] = mapped_column(String(150), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False, default=DECISION_PENDING)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    document: Mapped[DocumentRow] = relationship("DocumentRow", back_populates="approvals")


class ShareLinkRow(Base):
    __tablename__ = "share_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    # Unique across all documents: lookup by token must resolve to exactly one document.
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False, default="view")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by: Mapped[str] = mapped_column(String(150), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    document: Mapped[DocumentRow] = relationship("DocumentRow", back_populates="share_links")
