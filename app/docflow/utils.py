from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.docflow.errors import ValidationError


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(s: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; aware values are converted to naive UTC."""
    if s is None:
        return None
    if not isinstance(s, str):
        raise TypeError(f"expected an ISO-8601 string, got {type(s).__name__}")
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def as_list(value: Any) -> list[str]:
    """Accept a list, a single value or None (form fields and JSON both land here)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def normalize_tags(value: Any) -> tuple[str, ...]:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    raw = value.split(",") if isinstance(value, str) else as_list(value)
    out: list[str] = []
    for t in raw:
        t = t.strip()
        if t and t not in out:
            out.append(t)
    return tuple(out)


def isoformat(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def clean_text(value: Any, name: str) -> str:
    """Stripped string field; None reads as blank, any other non-string is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string.", fields=[name])
    return value.strip()
