from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.docflow.models import AuditEvent
from app.docflow.utils import utcnow


@dataclass(frozen=True)
class AuditEntry:
    """An audit record drafted by the engine, appended once the mutation is stored."""

    action: str
    actor: str
    document_title: str
    action_type: str | None = None
    document_id: str | None = None
    document_status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AuditTrail:
    """
    Append-only sink bound to a session.

    append() only adds to the session; the caller's transaction decides whether the
    entry lands, so an entry is never committed without its mutation.
    """

    def __init__(self, s: Session) -> None:
        self.s = s

    def append(self, entry: AuditEntry, *, request_id: str | None = None, at: datetime | None = None) -> AuditEvent:
        rid = request_id
        if rid is None and has_request_context():
            rid = getattr(g, "request_id", None)
        details = {k: v for k, v in entry.details.items() if v is not None}
        ev = AuditEvent(
            created_at=at or utcnow(),
            request_id=rid,
            actor=entry.actor,
            action=entry.action,
            action_type=entry.action_type,
            document_id=entry.document_id,
            document_title=entry.document_title,
            document_status=entry.document_status,
            details_json=json.dumps(details, sort_keys=True, default=str) if details else None,
        )
        self.s.add(ev)
        self.s.flush()
        return ev

    def get(self, event_id: int) -> AuditEvent | None:
        return self.s.get(AuditEvent, event_id)

    def query(
        self,
        *,
        action: str | None = None,
        actor: str | None = None,
        action_type: str | None = None,
        document_id: str | None = None,
        limit: int = 200,
    ) -> list[AuditEvent]:
        q = self.s.query(AuditEvent)
        if action:
            q = q.filter(AuditEvent.action.like(f"%{action}%"))
        if actor:
            q = q.filter(AuditEvent.actor == actor)
        if action_type:
            q = q.filter(AuditEvent.action_type == action_type)
        if document_id:
            q = q.filter(AuditEvent.document_id == document_id)
        return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def record_event(
    s: Session,
    *,
    actor: str,
    action: str,
    action_type: str | None = None,
    subject: str = "-",
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Audit helper for events outside the document engine (login/logout, user admin).
    """
    return AuditTrail(s).append(
        AuditEntry(
            action=action,
            actor=actor,
            document_title=subject,
            action_type=action_type,
            details=details or {},
        )
    )
