"""
Share links: bearer tokens granting time-bounded, capability-scoped access.

Expiry is evaluated whenever a link is read; nothing sweeps expired links.
Deactivation is terminal. A revoked link is never reactivated; mint a new one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from app.docflow.constants import ACCESS_DOWNLOAD, ACCESS_LEVELS, ACCESS_VIEW
from app.docflow.errors import ExpiredError, NotFoundError, ValidationError
from app.docflow.security import new_share_token
from app.docflow.utils import clean_text, isoformat, utcnow


@dataclass(frozen=True)
class ShareLink:
    token: str
    access_level: str
    expires_at: datetime | None
    created_by: str
    created_at: datetime
    is_active: bool = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)

    @property
    def allows_download(self) -> bool:
        return self.access_level == ACCESS_DOWNLOAD

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "accessLevel": self.access_level,
            "expiresAt": isoformat(self.expires_at),
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "isActive": self.is_active,
        }


def share_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/shared/{token}"


@dataclass(frozen=True)
class ShareLinkManager:
    links: tuple[ShareLink, ...] = ()

    def find(self, token: str) -> ShareLink | None:
        for link in self.links:
            if link.token == token:
                return link
        return None

    def create(
        self,
        *,
        access_level: str | None,
        expires_at: datetime | None,
        creator: str,
        now: datetime | None = None,
        token_factory: Callable[[], str] = new_share_token,
    ) -> tuple["ShareLinkManager", ShareLink]:
        access_level = clean_text(access_level, "accessLevel") or ACCESS_VIEW
        if access_level not in ACCESS_LEVELS:
            raise ValidationError(f"accessLevel must be one of: {', '.join(ACCESS_LEVELS)}", fields=["accessLevel"])
        if not (creator or "").strip():
            raise ValidationError.missing(["createdBy"])
        token = token_factory()
        if self.find(token) is not None:
            raise ValidationError("Generated share token collided; retry.", fields=["token"])
        link = ShareLink(
            token=token,
            access_level=access_level,
            expires_at=expires_at,
            created_by=creator,
            created_at=now or utcnow(),
            is_active=True,
        )
        return ShareLinkManager(self.links + (link,)), link

    def resolve(self, token: str, *, now: datetime | None = None) -> ShareLink:
        """
        Unknown and inactive tokens raise NotFoundError; a recognised but time-barred
        token raises ExpiredError.
        """
        link = self.find(token)
        if link is None or not link.is_active:
            raise NotFoundError("Shared link not found or inactive")
        if link.is_expired(now or utcnow()):
            raise ExpiredError("Shareable link has expired")
        return link

    def list_active(self, *, now: datetime | None = None) -> list[ShareLink]:
        now = now or utcnow()
        return [link for link in self.links if link.is_usable(now)]

    def deactivate(self, token: str) -> tuple["ShareLinkManager", ShareLink]:
        link = self.find(token)
        if link is None:
            raise NotFoundError("Shareable link not found")
        revoked = replace(link, is_active=False)
        links = tuple(revoked if lk.token == token else lk for lk in self.links)
        return ShareLinkManager(links), revoked
