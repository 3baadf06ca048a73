"""Initial docflow schema: users, audit trail, documents with versions/approvals/share links.

Revision ID: a7c3e9d1f2b4
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(150), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="Viewer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor", sa.String(150), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=True),
        sa.Column("document_id", sa.String(64), nullable=True),
        sa.Column("document_title", sa.String(255), nullable=False),
        sa.Column("document_status", sa.String(128), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_action_type_created", "audit_events", ["action_type", "created_at"])
    op.create_index("idx_audit_document_created", "audit_events", ["document_id", "created_at"])
    op.create_index("idx_audit_actor_created", "audit_events", ["actor", "created_at"])

    op.create_table(
        "documents",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("category", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(128), nullable=False),
        sa.Column("tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("logs_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("uploaded_by", sa.String(150), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("last_modified", sa.DateTime(timezone=False), nullable=True),
        sa.Column("last_modified_by", sa.String(150), nullable=True),
        sa.Column("file_storage_key", sa.String(512), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_content_type", sa.String(128), nullable=True),
        sa.Column("file_sha256", sa.String(64), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("approval_configured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("approval_type", sa.String(16), nullable=False, server_default="single"),
        sa.Column("approval_levels_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("approval_current_level", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_documents_category", "documents", ["category"])
    op.create_index("idx_documents_status", "documents", ["status"])
    op.create_index("idx_documents_uploaded_at", "documents", ["uploaded_at"])

    op.create_table(
        "document_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.String(32), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("previous_version", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("author", sa.String(150), nullable=False),
        sa.Column("change_summary", sa.String(512), nullable=False, server_default=""),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("category", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(128), nullable=False),
        sa.Column("tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("logs_json", sa.Text(), nullable=False, server_default="[]"),
        sa.UniqueConstraint("document_id", "version", name="uq_document_version"),
    )

    op.create_table(
        "document_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.String(32), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("approver", sa.String(150), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("decision", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("signature", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.UniqueConstraint("document_id", "approver", name="uq_document_approver"),
    )

    op.create_table(
        "share_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.String(32), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(64), nullable=False, unique=True),
        sa.Column("access_level", sa.String(16), nullable=False, server_default="view"),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("created_by", sa.String(150), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )


def downgrade() -> None:
    op.drop_table("share_links")
    op.drop_table("document_approvals")
    op.drop_table("document_versions")
    op.drop_index("idx_documents_uploaded_at", table_name="documents")
    op.drop_index("idx_documents_status", table_name="documents")
    op.drop_index("idx_documents_category", table_name="documents")
    op.drop_table("documents")
    op.drop_index("idx_audit_actor_created", table_name="audit_events")
    op.drop_index("idx_audit_document_created", table_name="audit_events")
    op.drop_index("idx_audit_action_type_created", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("users")
