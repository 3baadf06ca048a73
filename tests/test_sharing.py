from datetime import datetime, timedelta

import pytest

from app.docflow.errors import ExpiredError, NotFoundError, ValidationError
from app.docflow.modules.documents.document import Document, SharedView
from app.docflow.modules.documents.metadata import FileRef, build_metadata
from app.docflow.modules.documents.sharing import ShareLinkManager, share_url

NOW = datetime(2026, 5, 1, 8, 0, 0)


def _tokens(*values):
    it = iter(values)
    return lambda: next(it)


def test_create_and_resolve_view_link_without_expiry():
    mgr, link = ShareLinkManager().create(
        access_level="view", expires_at=None, creator="alice", now=NOW, token_factory=_tokens("tok1")
    )
    assert link.is_active
    assert mgr.resolve("tok1", now=NOW + timedelta(days=3650)) == link
    assert not link.allows_download


def test_default_access_level_is_view():
    _, link = ShareLinkManager().create(access_level=None, expires_at=None, creator="alice", now=NOW)
    assert link.access_level == "view"
    assert len(link.token) == 64


def test_invalid_access_level_and_missing_creator():
    with pytest.raises(ValidationError):
        ShareLinkManager().create(access_level="edit", expires_at=None, creator="alice", now=NOW)
    with pytest.raises(ValidationError):
        ShareLinkManager().create(access_level="view", expires_at=None, creator=" ", now=NOW)


def test_expired_is_distinguished_from_unknown():
    mgr, _ = ShareLinkManager().create(
        access_level="download", expires_at=NOW - timedelta(seconds=1), creator="alice", now=NOW,
        token_factory=_tokens("old"),
    )
    with pytest.raises(ExpiredError):
        mgr.resolve("old", now=NOW)
    with pytest.raises(NotFoundError):
        mgr.resolve("nope", now=NOW)


def test_expiry_boundary_is_exclusive():
    mgr, _ = ShareLinkManager().create(
        access_level="view", expires_at=NOW, creator="alice", now=NOW, token_factory=_tokens("edge")
    )
    assert mgr.resolve("edge", now=NOW).token == "edge"
    with pytest.raises(ExpiredError):
        mgr.resolve("edge", now=NOW + timedelta(microseconds=1))


def test_deactivated_link_is_not_found_and_not_listed():
    mgr, _ = ShareLinkManager().create(
        access_level="view", expires_at=None, creator="alice", now=NOW, token_factory=_tokens("t1")
    )
    mgr, revoked = mgr.deactivate("t1")
    assert not revoked.is_active
    with pytest.raises(NotFoundError):
        mgr.resolve("t1", now=NOW)
    assert mgr.list_active(now=NOW) == []
    # still on record
    assert mgr.find("t1") is not None
    with pytest.raises(NotFoundError):
        mgr.deactivate("missing")


def test_shared_view_exposes_file_for_download_links_only():
    meta = build_metadata(title="Spec", category="Normal File", description="d")
    ref = FileRef("documents/d1/spec.pdf", "spec.pdf", "application/pdf", "ab" * 32, 11)
    doc = Document.new(doc_id="d1", metadata=meta, uploader="alice", file=ref, at=NOW)

    links, view_link = doc.links.create(access_level="view", expires_at=None, creator="alice", now=NOW)
    links, dl_link = links.create(access_level="download", expires_at=None, creator="alice", now=NOW)

    assert SharedView.of(doc, view_link).file is None
    assert SharedView.of(doc, view_link).to_dict()["file"] is None
    assert SharedView.of(doc, dl_link).file == ref


def test_share_url_joins_base_and_token():
    assert share_url("https://docs.example.com/", "abc") == "https://docs.example.com/shared/abc"
