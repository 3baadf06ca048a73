"""
Document aggregate: the only writable surface for documents.

Every mutating operation follows the same path:
    load (document + revision) -> validate -> build new snapshot
    -> repository compare-and-swap store -> one audit entry -> commit.
Store and audit share one transaction; if either fails both are rolled back.
A validation failure raises before anything is written, so it leaves no audit entry.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, BinaryIO, Callable, TypeVar

from sqlalchemy.orm import Session

from app.docflow.audit import AuditEntry, AuditTrail
from app.docflow.constants import (
    ANONYMOUS_ACTOR,
    DECISION_APPROVED,
    ROLE_ADMIN,
    ROLES,
)
from app.docflow.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.docflow.modules.documents.approvals import ApprovalFlow, ApprovalRecord
from app.docflow.modules.documents.document import Document, SharedView
from app.docflow.modules.documents.metadata import (
    FileRef,
    UploadedFile,
    apply_fields,
    build_metadata,
)
from app.docflow.modules.documents.repository import DocumentRepository, Loaded
from app.docflow.modules.documents.sharing import ShareLink, share_url
from app.docflow.modules.documents.versions import VersionEntry
from app.docflow.security import new_share_token
from app.docflow.storage import Storage, StorageError, file_digest_and_size, sanitize_upload_filename
from app.docflow.utils import clean_text, isoformat, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TOKEN_ATTEMPTS = 3


def _require(**values: Any) -> dict[str, str]:
    cleaned = {name: clean_text(value, name) for name, value in values.items()}
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise ValidationError.missing(missing)
    return cleaned


class DocumentService:
    def __init__(
        self,
        s: Session,
        *,
        storage: Storage | None = None,
        base_url: str = "",
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.s = s
        self.repo = DocumentRepository(s)
        self.trail = AuditTrail(s)
        self.storage = storage
        self.base_url = base_url
        self.clock = clock
        self.id_factory = id_factory

    # ---------------- internals ----------------

    def _commit(self, write: Callable[[], T], entry: AuditEntry) -> T:
        """Run the write, append exactly one audit entry, commit. Roll back on any failure."""
        try:
            result = write()
            self.trail.append(entry, at=self.clock())
            self.s.commit()
        except Exception:
            self.s.rollback()
            raise
        return result

    def _load(self, doc_id: str, expected_revision: int | None = None) -> Loaded:
        loaded = self.repo.load(doc_id)
        if expected_revision is not None and loaded.revision != expected_revision:
            logger.warning(
                "Stale revision for document %s: caller has %s, stored %s", doc_id, expected_revision, loaded.revision
            )
            raise ConflictError(doc_id, expected_revision, loaded.revision)
        return loaded

    def _store(self, doc: Document, revision: int, entry: AuditEntry) -> Loaded:
        new_revision = self._commit(lambda: self.repo.store(doc, revision), entry)
        return Loaded(doc, new_revision)

    def _put_file(self, doc_id: str, upload: UploadedFile) -> FileRef:
        if self.storage is None:
            raise StorageError("No storage backend configured for file uploads.")
        filename = sanitize_upload_filename(upload.filename)
        sha256, size_bytes = file_digest_and_size(upload.data)
        key = f"documents/{doc_id}/{filename}"
        self.storage.put_bytes(key, upload.data, content_type=upload.content_type)
        return FileRef(
            storage_key=key,
            filename=filename,
            content_type=(upload.content_type or "application/octet-stream").strip(),
            sha256=sha256,
            size_bytes=size_bytes,
        )

    def _open_blob(self, file: FileRef) -> BinaryIO:
        if self.storage is None:
            raise StorageError("No storage backend configured for file downloads.")
        return self.storage.open(file.storage_key)

    def _discard_blob(self, file: FileRef) -> None:
        if self.storage is None:
            return
        try:
            self.storage.delete(file.storage_key)
        except Exception:
            logger.exception("Could not remove orphaned blob %s", file.storage_key)

    def _commit_download(self, file: FileRef, entry: AuditEntry) -> BinaryIO:
        """Open the blob, then audit the download. The handle is closed if the audit fails."""
        fobj = self._open_blob(file)
        try:
            self._commit(lambda: None, entry)
        except Exception:
            fobj.close()
            raise
        return fobj

    def _fresh_token(self) -> str:
        for _ in range(_TOKEN_ATTEMPTS):
            token = new_share_token()
            if not self.repo.token_exists(token):
                return token
            logger.error("Share token collision detected; regenerating")
        raise StorageError("Could not mint a unique share token.")

    @staticmethod
    def _entry(doc: Document, action: str, actor: str, action_type: str, **details: Any) -> AuditEntry:
        return AuditEntry(
            action=action,
            actor=actor,
            document_title=doc.title,
            action_type=action_type,
            document_id=doc.id,
            document_status=doc.status,
            details=details,
        )

    # ---------------- documents ----------------

    def create(
        self,
        *,
        title: str | None,
        category: str | None,
        uploader: str | None,
        description: str | None = None,
        file: UploadedFile | None = None,
        status: str | None = None,
        tags: Any = None,
        logs: Any = None,
        is_public: bool = False,
    ) -> Loaded:
        uploader = _require(title=title, category=category, uploadedBy=uploader)["uploadedBy"]
        metadata = build_metadata(
            title=title, category=category, description=description, status=status, tags=tags, logs=logs
        )
        doc_id = self.id_factory()
        file_ref = self._put_file(doc_id, file) if file is not None else None
        doc = Document.new(
            doc_id=doc_id,
            metadata=metadata,
            uploader=uploader,
            file=file_ref,
            is_public=bool(is_public),
            at=self.clock(),
        )
        try:
            revision = self._commit(
                lambda: self.repo.store(doc, None),
                self._entry(doc, "Upload", doc.uploaded_by, "create", version=1),
            )
        except Exception:
            if file_ref is not None:
                self._discard_blob(file_ref)
            raise
        logger.info("Document created id=%s title=%r by=%s", doc.id, doc.title, doc.uploaded_by)
        return Loaded(doc, revision)

    def get(self, doc_id: str) -> Loaded:
        return self.repo.load(doc_id)

    def list_documents(
        self,
        *,
        tags: list[str] | None = None,
        category: str | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> list[Loaded]:
        return self.repo.search(tags=tags, category=category, status=status, search=search)

    def update(
        self,
        doc_id: str,
        fields: dict[str, Any],
        *,
        actor: str | None,
        expected_revision: int | None = None,
    ) -> Loaded:
        if not fields:
            raise ValidationError("No fields to update.")
        actor = _require(user=actor)["user"]
        doc, revision = self._load(doc_id, expected_revision)
        metadata = apply_fields(doc.metadata, fields)
        changes = metadata.changes_from(doc.metadata)
        if not changes:
            raise ValidationError("Update does not change any field.")

        updated = doc.with_metadata(
            metadata,
            author=actor,
            summary=f"Updated {', '.join(changes)} by {actor}",
            at=self.clock(),
        )
        details: dict[str, Any] = {"version": updated.current_version, "changes": changes}
        if len(changes) == 1:
            name, change = next(iter(changes.items()))
            details.update(field=name, old_value=change["old"], new_value=change["new"])
        # Title as it was when the edit was made.
        entry = self._entry(doc, "Edit", actor, "update", **details)
        return self._store(updated, revision, entry)

    def delete(self, doc_id: str, *, actor_role: str | None, actor: str | None) -> None:
        if actor_role != ROLE_ADMIN:
            logger.warning("Delete refused for %s (role=%s) on document %s", actor, actor_role, doc_id)
            raise ForbiddenError("Only admins can delete documents")
        actor = _require(user=actor)["user"]
        doc, _ = self.repo.load(doc_id)
        self._commit(lambda: self.repo.delete(doc_id), self._entry(doc, "Delete", actor, "delete"))
        logger.info("Document deleted id=%s title=%r by=%s", doc.id, doc.title, actor)

    def set_visibility(
        self,
        doc_id: str,
        *,
        is_public: bool,
        actor: str | None,
        expected_revision: int | None = None,
    ) -> Loaded:
        actor = _require(user=actor)["user"]
        doc, revision = self._load(doc_id, expected_revision)
        updated = doc.with_visibility(bool(is_public), author=actor, at=self.clock())
        entry = self._entry(
            updated,
            f"Make Document {'Public' if is_public else 'Private'}",
            actor,
            "status_change",
            field="visibility",
            old_value="public" if doc.is_public else "private",
            new_value="public" if is_public else "private",
        )
        return self._store(updated, revision, entry)

    def open_file(self, doc_id: str, *, actor: str) -> tuple[FileRef, BinaryIO]:
        doc, _ = self.repo.load(doc_id)
        if doc.file is None:
            raise NotFoundError("Document has no attached file")
        entry = self._entry(doc, "Download", actor, "download", filename=doc.file.filename, version=doc.current_version)
        return doc.file, self._commit_download(doc.file, entry)

    # ---------------- versions ----------------

    def get_version(self, doc_id: str, version: int) -> VersionEntry:
        doc, _ = self.repo.load(doc_id)
        return doc.versions.get(version)

    def compare_versions(self, doc_id: str, v1: int, v2: int) -> dict[str, Any]:
        doc, _ = self.repo.load(doc_id)
        try:
            a, b = doc.versions.get(v1), doc.versions.get(v2)
        except NotFoundError:
            raise NotFoundError("One or both versions not found") from None
        return {
            "diff": doc.versions.diff(v1, v2),
            "version1": a.header(),
            "version2": b.header(),
        }

    def revert(
        self,
        doc_id: str,
        version: int,
        *,
        actor: str | None,
        expected_revision: int | None = None,
    ) -> Loaded:
        actor = _require(user=actor)["user"]
        doc, revision = self._load(doc_id, expected_revision)
        reverted = doc.revert_to(version, author=actor, at=self.clock())
        entry = self._entry(
            reverted,
            "Revert",
            actor,
            "version",
            version=version,
            field="revert",
            old_value=str(doc.current_version),
            new_value=str(version),
            new_version=reverted.current_version,
        )
        return self._store(reverted, revision, entry)

    # ---------------- approvals ----------------

    def setup_approval(
        self,
        doc_id: str,
        *,
        flow_type: str | None,
        levels: Any,
        actor: str | None,
        expected_revision: int | None = None,
    ) -> Loaded:
        actor = _require(user=actor)["user"]
        flow = ApprovalFlow.setup(flow_type, levels)
        doc, revision = self._load(doc_id, expected_revision)
        updated = doc.with_approval(flow)
        entry = self._entry(
            updated,
            "Setup Approval Flow",
            actor,
            "status_change",
            field="approvalFlow",
            new_value=flow.type,
            levels=[lv.to_dict() for lv in flow.levels],
        )
        return self._store(updated, revision, entry)

    def submit_approval(
        self,
        doc_id: str,
        *,
        approver: str | None,
        role: str | None,
        decision: str | None,
        comment: str | None = None,
        expected_revision: int | None = None,
    ) -> tuple[Loaded, ApprovalRecord]:
        req = _require(user=approver, role=role, status=decision)
        approver, role, decision = req["user"], req["role"], req["status"]
        doc, revision = self._load(doc_id, expected_revision)
        flow, record = doc.approval.submit(
            document_id=doc.id,
            approver=approver,
            role=role,
            decision=decision,
            comment=comment,
            at=self.clock(),
        )
        approved = decision == DECISION_APPROVED
        entry = self._entry(
            doc,
            "Approve" if approved else "Reject",
            record.approver,
            "approve" if approved else "reject",
            approval_level=flow.current_level,
            field="approval",
            new_value=decision,
            signature=record.signature,
        )
        return self._store(doc.with_approval(flow), revision, entry), record

    def verify_signature(self, doc_id: str, *, approver: str, signature: str) -> ApprovalRecord | None:
        doc, _ = self.repo.load(doc_id)
        return doc.approval.verify(approver, signature)

    def pending_for(self, role: str) -> list[Loaded]:
        if role not in ROLES:
            raise ValidationError(f"role must be one of: {', '.join(ROLES)}", fields=["role"])
        return self.repo.pending_for(role)

    # ---------------- share links ----------------

    def create_share_link(
        self,
        doc_id: str,
        *,
        access_level: str | None,
        expires_at: datetime | None,
        creator: str | None,
        expected_revision: int | None = None,
    ) -> tuple[Loaded, ShareLink, str]:
        doc, revision = self._load(doc_id, expected_revision)
        links, link = doc.links.create(
            access_level=access_level,
            expires_at=expires_at,
            creator=(creator or "").strip(),
            now=self.clock(),
            token_factory=self._fresh_token,
        )
        entry = self._entry(
            doc,
            "Share Document",
            link.created_by,
            "share",
            share_token=link.token,
            field="shareableLink",
            new_value=link.access_level,
            expires_at=isoformat(link.expires_at),
        )
        loaded = self._store(doc.with_links(links), revision, entry)
        logger.info("Share link created for document %s (access=%s)", doc.id, link.access_level)
        return loaded, link, share_url(self.base_url, link.token)

    def list_share_links(self, doc_id: str) -> list[ShareLink]:
        doc, _ = self.repo.load(doc_id)
        return doc.links.list_active(now=self.clock())

    def deactivate_share_link(
        self,
        doc_id: str,
        token: str,
        *,
        actor: str | None,
        expected_revision: int | None = None,
    ) -> Loaded:
        actor = _require(user=actor)["user"]
        doc, revision = self._load(doc_id, expected_revision)
        links, revoked = doc.links.deactivate(token)
        entry = self._entry(
            doc,
            "Deactivate Share Link",
            actor,
            "share",
            share_token=token,
            field="shareableLink",
            old_value="active" if doc.links.find(token).is_active else "inactive",
            new_value="inactive",
        )
        return self._store(doc.with_links(links), revision, entry)

    def _resolve_link(self, token: str) -> tuple[Document, ShareLink]:
        doc, _ = self.repo.find_by_share_token(token)
        return doc, doc.links.resolve(token, now=self.clock())

    def resolve_shared(
        self,
        token: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SharedView:
        doc, link = self._resolve_link(token)
        view = SharedView.of(doc, link)
        self._commit(
            lambda: None,
            self._entry(
                doc,
                "Access Shared Document",
                ANONYMOUS_ACTOR,
                "view",
                share_token=token,
                ip_address=ip_address,
                user_agent=user_agent,
            ),
        )
        return view

    def open_shared_file(
        self,
        token: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[FileRef, BinaryIO]:
        doc, link = self._resolve_link(token)
        if not link.allows_download:
            raise ForbiddenError("This link does not grant download access")
        if doc.file is None:
            raise NotFoundError("Document has no attached file")
        entry = self._entry(
            doc,
            "Download Shared Document",
            ANONYMOUS_ACTOR,
            "download",
            share_token=token,
            filename=doc.file.filename,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return doc.file, self._commit_download(doc.file, entry)
