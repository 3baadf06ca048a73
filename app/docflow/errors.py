"""
Engine error taxonomy.

Every failure raised by the document lifecycle engine carries exactly one
stable ``category``. Mapping categories to transport status codes is done by
the HTTP layer (see ``app.docflow.create_app``).
"""

from __future__ import annotations


class DocflowError(Exception):
    category = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "category": self.category}


class ValidationError(DocflowError):
    """Missing or malformed input. Nothing has been applied."""

    category = "validation"

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        self.fields = list(fields or [])
        super().__init__(message)

    @classmethod
    def missing(cls, fields: list[str]) -> "ValidationError":
        return cls(f"Missing required fields: {', '.join(fields)}", fields=fields)

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.fields:
            out["fields"] = self.fields
        return out


class NotFoundError(DocflowError):
    category = "not_found"


class ForbiddenError(DocflowError):
    category = "forbidden"


class ConflictError(DocflowError):
    """
    Optimistic concurrency collision: the stored revision moved since load.

    Recoverable. The caller should reload the document and decide whether to
    retry; the engine never retries on its own.
    """

    category = "conflict"

    def __init__(self, document_id: str, expected_revision: int, actual_revision: int | None = None) -> None:
        self.document_id = document_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        msg = f"Document {document_id} was modified concurrently (expected revision {expected_revision}"
        if actual_revision is not None:
            msg += f", found {actual_revision}"
        super().__init__(msg + ")")


class DuplicateApprovalError(DocflowError):
    category = "duplicate_approval"

    def __init__(self, approver: str) -> None:
        self.approver = approver
        super().__init__(f"User {approver} has already submitted approval for this document")


class ExpiredError(DocflowError):
    """The share link exists but its expiry has passed."""

    category = "expired"


class InternalConsistencyError(DocflowError):
    """Append-only invariant already violated. Indicates a bug, never user error."""

    category = "internal_consistency"
