"""
Approval workflow.

A flow is unconfigured until setup() is called. A multi-level flow walks its levels
in order; completion is inferred from current_level reaching len(levels).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from app.docflow.constants import (
    FLOW_MULTI,
    FLOW_SINGLE,
    FLOW_TYPES,
    ROLES,
    SUBMITTABLE_DECISIONS,
)
from app.docflow.errors import DuplicateApprovalError, ValidationError
from app.docflow.security import approval_fingerprint, fingerprints_match
from app.docflow.utils import clean_text, isoformat, utcnow


@dataclass(frozen=True)
class ApprovalLevel:
    role: str
    order: int

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "order": self.order}


@dataclass(frozen=True)
class ApprovalRecord:
    approver: str
    role: str
    decision: str
    comment: str | None
    created_at: datetime
    signature: str
    level: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver": self.approver,
            "role": self.role,
            "status": self.decision,
            "comment": self.comment,
            "timestamp": isoformat(self.created_at),
            "signature": self.signature,
            "level": self.level,
        }


def parse_levels(raw: Any) -> tuple[ApprovalLevel, ...]:
    """Accept [{"role": ..., "order": ...}, ...]; returns levels sorted by order."""
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("levels must be a list.", fields=["levels"])
    levels: list[ApprovalLevel] = []
    for i, item in enumerate(raw):
        if isinstance(item, ApprovalLevel):
            levels.append(item)
            continue
        if not isinstance(item, dict):
            raise ValidationError(f"levels[{i}] must be an object.", fields=["levels"])
        role = item.get("role")
        if role is not None and not isinstance(role, str):
            raise ValidationError(f"levels[{i}].role must be a string.", fields=["levels"])
        role = (role or "").strip()
        if role not in ROLES:
            raise ValidationError(f"levels[{i}].role must be one of: {', '.join(ROLES)}", fields=["levels"])
        try:
            order = int(item.get("order", i))
        except (TypeError, ValueError):
            raise ValidationError(f"levels[{i}].order must be an integer.", fields=["levels"]) from None
        levels.append(ApprovalLevel(role=role, order=order))
    orders = [lv.order for lv in levels]
    if len(set(orders)) != len(orders):
        raise ValidationError("Level orders must be unique.", fields=["levels"])
    return tuple(sorted(levels, key=lambda lv: lv.order))


def advance_level(flow: "ApprovalFlow", decision: str) -> int:
    """
    Level-advance policy.

    Multi-level flows advance on every recorded decision, rejections included;
    callers decide whether a rejection halts downstream processing.
    """
    if flow.type == FLOW_MULTI:
        return flow.current_level + 1
    return flow.current_level


@dataclass(frozen=True)
class ApprovalFlow:
    type: str = FLOW_SINGLE
    levels: tuple[ApprovalLevel, ...] = ()
    current_level: int = 0
    approvals: tuple[ApprovalRecord, ...] = ()
    configured: bool = False

    @classmethod
    def setup(cls, flow_type: str | None, levels: Any) -> "ApprovalFlow":
        """Build a fresh flow. Prior approvals are not carried over."""
        flow_type = clean_text(flow_type, "type") or FLOW_SINGLE
        if flow_type not in FLOW_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(FLOW_TYPES)}", fields=["type"])
        parsed = parse_levels(levels)
        if flow_type == FLOW_MULTI and not parsed:
            raise ValidationError("A multi-level flow needs at least one level.", fields=["levels"])
        return cls(type=flow_type, levels=parsed, current_level=0, approvals=(), configured=True)

    @property
    def complete(self) -> bool:
        if not self.configured:
            return False
        if self.type == FLOW_MULTI:
            return self.current_level >= len(self.levels)
        return bool(self.approvals)

    @property
    def state(self) -> str:
        if not self.configured:
            return "unconfigured"
        if self.complete:
            return "complete"
        return "configured" if self.current_level == 0 else "advancing"

    @property
    def current_role(self) -> str | None:
        if 0 <= self.current_level < len(self.levels):
            return self.levels[self.current_level].role
        return None

    def has_submitted(self, approver: str) -> bool:
        return any(a.approver == approver for a in self.approvals)

    def submit(
        self,
        *,
        document_id: str,
        approver: str,
        role: str,
        decision: str,
        comment: str | None = None,
        at: datetime | None = None,
    ) -> tuple["ApprovalFlow", ApprovalRecord]:
        approver = clean_text(approver, "user")
        if not approver:
            raise ValidationError.missing(["user"])
        if decision not in SUBMITTABLE_DECISIONS:
            raise ValidationError(
                f"status must be one of: {', '.join(SUBMITTABLE_DECISIONS)}", fields=["status"]
            )
        if self.has_submitted(approver):
            raise DuplicateApprovalError(approver)

        at = at or utcnow()
        record = ApprovalRecord(
            approver=approver,
            role=role,
            decision=decision,
            comment=clean_text(comment, "comment") or None,
            created_at=at,
            signature=approval_fingerprint(approver, document_id, at),
            level=self.current_level,
        )
        flow = replace(
            self,
            approvals=self.approvals + (record,),
            current_level=advance_level(self, decision),
        )
        return flow, record

    def verify(self, approver: str, signature: str) -> ApprovalRecord | None:
        for a in self.approvals:
            if a.approver == approver and fingerprints_match(a.signature, signature):
                return a
        return None

    def is_pending_for(self, role: str) -> bool:
        if self.current_role != role:
            return False
        return not any(a.role == role and a.level == self.current_level for a in self.approvals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "levels": [lv.to_dict() for lv in self.levels],
            "currentLevel": self.current_level,
            "configured": self.configured,
            "state": self.state,
            "complete": self.complete,
        }
