from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from app.docflow.modules.documents.approvals import ApprovalFlow
from app.docflow.modules.documents.metadata import FileRef, Metadata
from app.docflow.modules.documents.sharing import ShareLink, ShareLinkManager
from app.docflow.modules.documents.versions import VersionChain, revert_summary
from app.docflow.utils import isoformat, utcnow


@dataclass(frozen=True)
class Document:
    """
    Immutable snapshot of one document aggregate.

    Every operation returns a new snapshot; current_version is read through from the
    version chain rather than stored alongside it.
    """

    id: str
    metadata: Metadata
    uploaded_by: str
    uploaded_at: datetime
    versions: VersionChain
    approval: ApprovalFlow = field(default_factory=ApprovalFlow)
    links: ShareLinkManager = field(default_factory=ShareLinkManager)
    is_public: bool = False
    file: FileRef | None = None
    last_modified: datetime | None = None
    last_modified_by: str | None = None

    @classmethod
    def new(
        cls,
        *,
        doc_id: str,
        metadata: Metadata,
        uploader: str,
        file: FileRef | None = None,
        is_public: bool = False,
        at: datetime | None = None,
    ) -> "Document":
        at = at or utcnow()
        chain = VersionChain().append(metadata, uploader, "Initial version", at=at)
        return cls(
            id=doc_id,
            metadata=metadata,
            uploaded_by=uploader,
            uploaded_at=at,
            versions=chain,
            is_public=is_public,
            file=file,
            last_modified=at,
            last_modified_by=uploader,
        )

    @property
    def current_version(self) -> int:
        return self.versions.current_version

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def status(self) -> str:
        return self.metadata.status

    def with_metadata(self, metadata: Metadata, *, author: str, summary: str, at: datetime | None = None) -> "Document":
        """The single write path for versioned fields."""
        at = at or utcnow()
        return replace(
            self,
            metadata=metadata,
            versions=self.versions.append(metadata, author, summary, at=at),
            last_modified=at,
            last_modified_by=author,
        )

    def revert_to(self, version: int, *, author: str, at: datetime | None = None) -> "Document":
        target = self.versions.get(version)
        return self.with_metadata(target.snapshot, author=author, summary=revert_summary(version), at=at)

    def with_approval(self, flow: ApprovalFlow) -> "Document":
        return replace(self, approval=flow)

    def with_links(self, links: ShareLinkManager) -> "Document":
        return replace(self, links=links)

    def with_visibility(self, is_public: bool, *, author: str, at: datetime | None = None) -> "Document":
        return replace(self, is_public=is_public, last_modified=at or utcnow(), last_modified_by=author)

    def to_dict(self, *, include_history: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            **self.metadata.to_dict(),
            "uploadedBy": self.uploaded_by,
            "uploadedAt": isoformat(self.uploaded_at),
            "currentVersion": self.current_version,
            "isPublic": self.is_public,
            "file": self.file.to_dict() if self.file else None,
            "lastModified": isoformat(self.last_modified),
            "lastModifiedBy": self.last_modified_by,
            "approvalFlow": self.approval.to_dict(),
        }
        if include_history:
            out["versions"] = [v.to_dict() for v in self.versions.newest_first()]
            out["approvals"] = [a.to_dict() for a in self.approval.approvals]
        return out


@dataclass(frozen=True)
class SharedView:
    """What an anonymous share-link holder may see."""

    document_id: str
    title: str
    description: str
    category: str
    uploaded_by: str
    uploaded_at: datetime
    access_level: str
    expires_at: datetime | None
    file: FileRef | None

    @classmethod
    def of(cls, doc: Document, link: ShareLink) -> "SharedView":
        return cls(
            document_id=doc.id,
            title=doc.metadata.title,
            description=doc.metadata.description,
            category=doc.metadata.category,
            uploaded_by=doc.uploaded_by,
            uploaded_at=doc.uploaded_at,
            access_level=link.access_level,
            expires_at=link.expires_at,
            file=doc.file if link.allows_download else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "uploadedBy": self.uploaded_by,
            "uploadedAt": isoformat(self.uploaded_at),
            "file": self.file.to_dict() if self.file else None,
            "accessLevel": self.access_level,
            "expiresAt": isoformat(self.expires_at),
        }
