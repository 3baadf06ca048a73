import hashlib
import secrets
from datetime import datetime

from app.docflow.constants import SHARE_TOKEN_BYTES


def new_share_token() -> str:
    """Return a 256-bit random bearer token (hex encoded)."""
    return secrets.token_hex(SHARE_TOKEN_BYTES)


def approval_fingerprint(approver: str, document_id: str, submitted_at: datetime) -> str:
    """
    Tamper-evidence hash for an approval record.

    Not a signature: anyone who knows the three inputs can recompute it.
    """
    h = hashlib.sha256()
    h.update(f"{approver}{document_id}{submitted_at.isoformat()}".encode("utf-8"))
    return h.hexdigest()


def fingerprints_match(stored: str | None, presented: str | None) -> bool:
    if not stored or not presented:
        return False
    return secrets.compare_digest(stored, presented)
