"""
SQLAlchemy-backed document repository.

load() returns a snapshot together with its revision token. store() is a
compare-and-swap: the documents row is updated only where the stored revision still
equals the caller's expected revision, otherwise ConflictError is raised and the
caller's transaction is left for it to roll back.
"""

from __future__ import annotations

import json
import logging
from typing import NamedTuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.docflow.errors import ConflictError, InternalConsistencyError, NotFoundError
from app.docflow.modules.documents.approvals import ApprovalFlow, ApprovalLevel, ApprovalRecord
from app.docflow.modules.documents.document import Document
from app.docflow.modules.documents.metadata import FileRef, Metadata
from app.docflow.modules.documents.models import ApprovalRow, DocumentRow, DocumentVersionRow, ShareLinkRow
from app.docflow.modules.documents.sharing import ShareLink, ShareLinkManager
from app.docflow.modules.documents.versions import VersionChain, VersionEntry

logger = logging.getLogger(__name__)


class Loaded(NamedTuple):
    document: Document
    revision: int


def _dump(values) -> str:
    return json.dumps(list(values))


def _load_list(raw: str | None) -> tuple[str, ...]:
    return tuple(json.loads(raw)) if raw else ()


def _row_columns(doc: Document) -> dict:
    m = doc.metadata
    f = doc.file
    flow = doc.approval
    return {
        "title": m.title,
        "category": m.category,
        "description": m.description,
        "status": m.status,
        "tags_json": _dump(m.tags),
        "logs_json": _dump(m.logs),
        "is_public": doc.is_public,
        "uploaded_by": doc.uploaded_by,
        "uploaded_at": doc.uploaded_at,
        "last_modified": doc.last_modified,
        "last_modified_by": doc.last_modified_by,
        "file_storage_key": f.storage_key if f else None,
        "file_name": f.filename if f else None,
        "file_content_type": f.content_type if f else None,
        "file_sha256": f.sha256 if f else None,
        "file_size_bytes": f.size_bytes if f else None,
        "approval_configured": flow.configured,
        "approval_type": flow.type,
        "approval_levels_json": json.dumps([lv.to_dict() for lv in flow.levels]),
        "approval_current_level": flow.current_level,
    }


def _version_row(doc_id: str, e: VersionEntry) -> DocumentVersionRow:
    s = e.snapshot
    return DocumentVersionRow(
        document_id=doc_id,
        version=e.version,
        previous_version=e.previous_version,
        created_at=e.created_at,
        author=e.author,
        change_summary=e.change_summary,
        title=s.title,
        category=s.category,
        description=s.description,
        status=s.status,
        tags_json=_dump(s.tags),
        logs_json=_dump(s.logs),
    )


def _approval_row(doc_id: str, a: ApprovalRecord) -> ApprovalRow:
    return ApprovalRow(
        document_id=doc_id,
        approver=a.approver,
        role=a.role,
        decision=a.decision,
        comment=a.comment,
        level=a.level,
        signature=a.signature,
        created_at=a.created_at,
    )


def _link_row(doc_id: str, link: ShareLink) -> ShareLinkRow:
    return ShareLinkRow(
        document_id=doc_id,
        token=link.token,
        access_level=link.access_level,
        expires_at=link.expires_at,
        created_by=link.created_by,
        created_at=link.created_at,
        is_active=link.is_active,
    )


def to_domain(row: DocumentRow) -> Document:
    chain = VersionChain(
        tuple(
            VersionEntry(
                version=v.version,
                created_at=v.created_at,
                author=v.author,
                snapshot=Metadata(
                    title=v.title,
                    category=v.category,
                    description=v.description or "",
                    status=v.status,
                    tags=_load_list(v.tags_json),
                    logs=_load_list(v.logs_json),
                ),
                previous_version=v.previous_version,
                change_summary=v.change_summary,
            )
            for v in sorted(row.versions, key=lambda v: v.version)
        )
    )
    # Fails loudly on a stored history with gaps or duplicates.
    chain.check()

    flow = ApprovalFlow(
        type=row.approval_type,
        levels=tuple(ApprovalLevel(role=lv["role"], order=lv["order"]) for lv in json.loads(row.approval_levels_json or "[]")),
        current_level=row.approval_current_level,
        approvals=tuple(
            ApprovalRecord(
                approver=a.approver,
                role=a.role,
                decision=a.decision,
                comment=a.comment,
                created_at=a.created_at,
                signature=a.signature,
                level=a.level,
            )
            for a in sorted(row.approvals, key=lambda a: a.id)
        ),
        configured=row.approval_configured,
    )
    links = ShareLinkManager(
        tuple(
            ShareLink(
                token=lk.token,
                access_level=lk.access_level,
                expires_at=lk.expires_at,
                created_by=lk.created_by,
                created_at=lk.created_at,
                is_active=lk.is_active,
            )
            for lk in sorted(row.share_links, key=lambda lk: lk.id)
        )
    )
    file = None
    if row.file_storage_key:
        file = FileRef(
            storage_key=row.file_storage_key,
            filename=row.file_name or "document.bin",
            content_type=row.file_content_type or "application/octet-stream",
            sha256=row.file_sha256 or "",
            size_bytes=row.file_size_bytes or 0,
        )
    return Document(
        id=row.id,
        metadata=Metadata(
            title=row.title,
            category=row.category,
            description=row.description or "",
            status=row.status,
            tags=_load_list(row.tags_json),
            logs=_load_list(row.logs_json),
        ),
        uploaded_by=row.uploaded_by,
        uploaded_at=row.uploaded_at,
        versions=chain,
        approval=flow,
        links=links,
        is_public=row.is_public,
        file=file,
        last_modified=row.last_modified,
        last_modified_by=row.last_modified_by,
    )


class DocumentRepository:
    def __init__(self, s: Session) -> None:
        self.s = s

    def _fetch(self, doc_id: str) -> DocumentRow | None:
        stmt = select(DocumentRow).where(DocumentRow.id == doc_id).execution_options(populate_existing=True)
        return self.s.execute(stmt).scalar_one_or_none()

    def _get(self, doc_id: str) -> DocumentRow:
        row = self._fetch(doc_id)
        if row is None:
            raise NotFoundError("Document not found")
        return row

    def load(self, doc_id: str) -> Loaded:
        row = self._get(doc_id)
        return Loaded(to_domain(row), row.revision)

    def store(self, doc: Document, expected_revision: int | None) -> int:
        """
        Persist `doc`. expected_revision=None inserts a new document at revision 1.
        Returns the new revision. Does not commit.
        """
        doc.versions.check()
        if expected_revision is None:
            row = DocumentRow(id=doc.id, revision=1, **_row_columns(doc))
            row.versions = [_version_row(doc.id, e) for e in doc.versions.entries]
            row.approvals = [_approval_row(doc.id, a) for a in doc.approval.approvals]
            row.share_links = [_link_row(doc.id, lk) for lk in doc.links.links]
            self.s.add(row)
            self.s.flush()
            return 1

        new_revision = expected_revision + 1
        res = self.s.execute(
            update(DocumentRow)
            .where(DocumentRow.id == doc.id, DocumentRow.revision == expected_revision)
            .values(revision=new_revision, **_row_columns(doc))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            actual = self.s.execute(select(DocumentRow.revision).where(DocumentRow.id == doc.id)).scalar_one_or_none()
            if actual is None:
                raise NotFoundError("Document not found")
            logger.warning(
                "Revision conflict on document %s: expected=%s actual=%s", doc.id, expected_revision, actual
            )
            raise ConflictError(doc.id, expected_revision, actual)

        row = self._get(doc.id)
        self._sync_versions(row, doc)
        self._sync_approvals(row, doc)
        self._sync_links(row, doc)
        self.s.flush()
        return new_revision

    def _sync_versions(self, row: DocumentRow, doc: Document) -> None:
        stored = sorted(v.version for v in row.versions)
        if stored != list(range(1, len(stored) + 1)) or len(stored) > len(doc.versions):
            logger.critical("Stored version history for %s is not a prefix of the new chain: %s", doc.id, stored)
            raise InternalConsistencyError(f"Version history for document {doc.id} would be rewritten")
        for e in doc.versions.entries[len(stored):]:
            row.versions.append(_version_row(doc.id, e))

    def _sync_approvals(self, row: DocumentRow, doc: Document) -> None:
        stored = [(a.approver, a.signature) for a in row.approvals]
        wanted = [(a.approver, a.signature) for a in doc.approval.approvals]
        if wanted[: len(stored)] != stored:
            # setup() replaced the flow: drop prior rows before inserting the new set.
            row.approvals.clear()
            self.s.flush()
            stored = []
        for a in doc.approval.approvals[len(stored):]:
            row.approvals.append(_approval_row(doc.id, a))

    def _sync_links(self, row: DocumentRow, doc: Document) -> None:
        by_token = {lk.token: lk for lk in row.share_links}
        for link in doc.links.links:
            existing = by_token.get(link.token)
            if existing is None:
                row.share_links.append(_link_row(doc.id, link))
            elif existing.is_active != link.is_active:
                if link.is_active:
                    raise InternalConsistencyError(f"Share link {link.token[:8]}… cannot be reactivated")
                existing.is_active = False

    def delete(self, doc_id: str) -> None:
        row = self._get(doc_id)
        self.s.delete(row)
        self.s.flush()

    def find_by_share_token(self, token: str) -> Loaded:
        doc_id = self.s.execute(select(ShareLinkRow.document_id).where(ShareLinkRow.token == token)).scalar_one_or_none()
        if doc_id is None:
            raise NotFoundError("Shared link not found or inactive")
        return self.load(doc_id)

    def token_exists(self, token: str) -> bool:
        return self.s.execute(select(ShareLinkRow.id).where(ShareLinkRow.token == token)).first() is not None

    def search(
        self,
        *,
        tags: list[str] | None = None,
        category: str | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> list[Loaded]:
        stmt = select(DocumentRow)
        if category:
            stmt = stmt.where(DocumentRow.category == category)
        if status:
            stmt = stmt.where(DocumentRow.status == status)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(DocumentRow.title.ilike(like) | DocumentRow.description.ilike(like))
        stmt = stmt.order_by(DocumentRow.uploaded_at.desc()).execution_options(populate_existing=True)
        rows = self.s.execute(stmt).scalars().all()
        out = [Loaded(to_domain(r), r.revision) for r in rows]
        if tags:
            wanted = set(tags)
            out = [item for item in out if wanted & set(item.document.metadata.tags)]
        return out

    def pending_for(self, role: str) -> list[Loaded]:
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.approval_configured.is_(True))
            .order_by(DocumentRow.uploaded_at.desc())
            .execution_options(populate_existing=True)
        )
        rows = self.s.execute(stmt).scalars().all()
        loaded = [Loaded(to_domain(r), r.revision) for r in rows]
        return [item for item in loaded if item.document.approval.is_pending_for(role)]
