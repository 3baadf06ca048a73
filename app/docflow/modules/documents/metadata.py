"""
Versioned document metadata and the category-keyed status rule.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from app.docflow.constants import CATEGORY_EMBEDDED, DEFAULT_STATUS, EMBEDDED_STEPS
from app.docflow.errors import ValidationError
from app.docflow.utils import as_list, clean_text, normalize_tags

# Fields compared by VersionChain.diff()
TRACKED_FIELDS = ("title", "description", "category", "status", "tags")

# Fields a caller may change through update()
EDITABLE_FIELDS = ("title", "category", "description", "status", "tags", "logs")


@dataclass(frozen=True)
class Metadata:
    """Snapshot of the mutable, versioned fields of a document."""

    title: str
    category: str
    description: str = ""
    status: str = DEFAULT_STATUS
    tags: tuple[str, ...] = ()
    logs: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "tags": list(self.tags),
            "logs": list(self.logs),
        }

    def changes_from(self, other: "Metadata") -> dict[str, dict[str, Any]]:
        """Per-field {old, new} for every editable field that differs from `other`."""
        out: dict[str, dict[str, Any]] = {}
        for name in EDITABLE_FIELDS:
            old, new = getattr(other, name), getattr(self, name)
            if name == "tags":
                differs = set(old) != set(new)
            else:
                differs = old != new
            if differs:
                out[name] = {
                    "old": list(old) if isinstance(old, tuple) else old,
                    "new": list(new) if isinstance(new, tuple) else new,
                }
        return out


@dataclass(frozen=True)
class FileRef:
    """Pointer to an opaque blob held by the storage backend."""

    storage_key: str
    filename: str
    content_type: str
    sha256: str
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"


def validate_status(category: str, status: str) -> None:
    """
    Status is freeform for ordinary categories; for Embedded System Design it must be
    one of the seven process steps.
    """
    if category == CATEGORY_EMBEDDED:
        if status not in EMBEDDED_STEPS:
            raise ValidationError(
                f"Invalid status for {CATEGORY_EMBEDDED}. Must be one of: {', '.join(EMBEDDED_STEPS)}",
                fields=["status"],
            )
    elif not status.strip():
        raise ValidationError("Status must not be blank.", fields=["status"])


def build_metadata(
    *,
    title: str | None,
    category: str | None,
    description: str | None = None,
    status: str | None = None,
    tags: Any = None,
    logs: Any = None,
) -> Metadata:
    title = clean_text(title, "title")
    category = clean_text(category, "category")
    missing = [name for name, value in (("title", title), ("category", category)) if not value]
    if missing:
        raise ValidationError.missing(missing)
    status = clean_text(status, "status")
    if not status and category != CATEGORY_EMBEDDED:
        status = DEFAULT_STATUS
    meta = Metadata(
        title=title,
        category=category,
        description=clean_text(description, "description"),
        status=status,
        tags=normalize_tags(tags),
        logs=tuple(as_list(logs)),
    )
    validate_status(meta.category, meta.status)
    return meta


def apply_fields(current: Metadata, fields: dict[str, Any]) -> Metadata:
    """Overlay only the provided editable fields on `current` and re-validate."""
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}", fields=unknown)

    updates: dict[str, Any] = {}
    for name in ("title", "category"):
        if name in fields:
            value = clean_text(fields[name], name)
            if not value:
                raise ValidationError(f"{name} must not be blank.", fields=[name])
            updates[name] = value
    if "description" in fields:
        updates["description"] = clean_text(fields["description"], "description")
    if "status" in fields:
        updates["status"] = clean_text(fields["status"], "status")
    if "tags" in fields:
        updates["tags"] = normalize_tags(fields["tags"])
    if "logs" in fields:
        updates["logs"] = tuple(as_list(fields["logs"]))

    meta = replace(current, **updates)
    validate_status(meta.category, meta.status)
    return meta
