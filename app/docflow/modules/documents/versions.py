"""
Version chain: the dense, append-only history of a document's metadata.

Version numbers run 1..N with no gaps. Nothing is ever renumbered or removed;
a revert is recorded as a new head version carrying an older snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.docflow.errors import InternalConsistencyError, NotFoundError
from app.docflow.modules.documents.metadata import TRACKED_FIELDS, Metadata
from app.docflow.utils import isoformat, utcnow

logger = logging.getLogger(__name__)

INITIAL_SUMMARY = "Initial version"


@dataclass(frozen=True)
class VersionEntry:
    version: int
    created_at: datetime
    author: str
    snapshot: Metadata
    previous_version: int | None
    change_summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "date": isoformat(self.created_at),
            "by": self.author,
            "changes": self.snapshot.to_dict(),
            "previousVersion": self.previous_version,
            "changeSummary": self.change_summary,
        }

    def header(self) -> dict[str, Any]:
        return {"version": self.version, "date": isoformat(self.created_at), "by": self.author}


def revert_summary(version: int) -> str:
    return f"Reverted to version {version}"


@dataclass(frozen=True)
class VersionChain:
    entries: tuple[VersionEntry, ...] = ()

    @property
    def head(self) -> VersionEntry | None:
        return self.entries[-1] if self.entries else None

    @property
    def current_version(self) -> int:
        return self.entries[-1].version if self.entries else 0

    def __len__(self) -> int:
        return len(self.entries)

    def check(self) -> None:
        """Raise InternalConsistencyError unless versions are exactly 1..N in order."""
        for idx, entry in enumerate(self.entries, start=1):
            expected_prev = None if idx == 1 else idx - 1
            if entry.version != idx or entry.previous_version != expected_prev:
                logger.critical(
                    "Version chain broken at position %s (version=%s previous=%s)",
                    idx,
                    entry.version,
                    entry.previous_version,
                )
                raise InternalConsistencyError(
                    f"Version history is not dense: position {idx} holds version {entry.version}"
                )
        if self.entries and self.entries[0].change_summary != INITIAL_SUMMARY:
            raise InternalConsistencyError("Version 1 must be the initial version")

    def append(self, snapshot: Metadata, author: str, summary: str, *, at: datetime | None = None) -> "VersionChain":
        self.check()
        prev = self.current_version
        entry = VersionEntry(
            version=prev + 1,
            created_at=at or utcnow(),
            author=author,
            snapshot=snapshot,
            previous_version=prev or None,
            change_summary=INITIAL_SUMMARY if prev == 0 else summary,
        )
        return VersionChain(self.entries + (entry,))

    def get(self, version: int) -> VersionEntry:
        if 1 <= version <= len(self.entries):
            entry = self.entries[version - 1]
            if entry.version == version:
                return entry
            self.check()
        raise NotFoundError(f"Version {version} not found")

    def diff(self, v1: int, v2: int) -> dict[str, dict[str, Any] | None]:
        """
        Field-by-field comparison. Each tracked field maps to None when unchanged,
        otherwise {"old": <v1 value>, "new": <v2 value>}. Tags compare as whole sets.
        """
        a, b = self.get(v1).snapshot, self.get(v2).snapshot
        out: dict[str, dict[str, Any] | None] = {}
        for name in TRACKED_FIELDS:
            old, new = getattr(a, name), getattr(b, name)
            if name == "tags":
                out[name] = None if set(old) == set(new) else {"old": list(old), "new": list(new)}
            else:
                out[name] = None if old == new else {"old": old, "new": new}
        return out

    def newest_first(self) -> list[VersionEntry]:
        return list(reversed(self.entries))
