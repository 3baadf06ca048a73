from datetime import datetime, timedelta

import pytest

from app.docflow.errors import InternalConsistencyError, NotFoundError, ValidationError
from app.docflow.modules.documents.document import Document
from app.docflow.modules.documents.metadata import Metadata, apply_fields, build_metadata
from app.docflow.modules.documents.versions import VersionChain, VersionEntry

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _doc() -> Document:
    meta = build_metadata(title="Spec v1", category="Normal File", description="first", tags=["a", "b"])
    return Document.new(doc_id="d1", metadata=meta, uploader="alice", at=T0)


def test_new_document_starts_at_version_one():
    d = _doc()
    assert d.current_version == 1
    assert len(d.versions) == 1
    head = d.versions.head
    assert head.version == 1
    assert head.previous_version is None
    assert head.change_summary == "Initial version"
    assert head.author == "alice"


def test_updates_append_dense_versions():
    d = _doc()
    for i in range(2, 6):
        meta = apply_fields(d.metadata, {"description": f"rev {i}"})
        d = d.with_metadata(meta, author="bob", summary=f"edit {i}", at=T0 + timedelta(minutes=i))
        assert d.current_version == i
        assert [e.version for e in d.versions.entries] == list(range(1, i + 1))
        assert d.versions.head.previous_version == i - 1


def test_revert_appends_copy_of_target_snapshot():
    d = _doc()
    d = d.with_metadata(apply_fields(d.metadata, {"description": "second"}), author="bob", summary="x", at=T0)
    d = d.with_metadata(apply_fields(d.metadata, {"title": "Spec v3"}), author="bob", summary="y", at=T0)

    reverted = d.revert_to(1, author="carol", at=T0)

    assert reverted.current_version == 4
    assert reverted.metadata == d.versions.get(1).snapshot
    assert reverted.versions.head.change_summary == "Reverted to version 1"
    assert reverted.versions.head.author == "carol"
    # history untouched
    assert reverted.versions.entries[:3] == d.versions.entries


def test_revert_to_unknown_version_raises_not_found():
    d = _doc()
    with pytest.raises(NotFoundError):
        d.revert_to(7, author="carol")


def test_diff_reports_changed_fields_only_and_compares_tags_as_sets():
    d = _doc()
    d = d.with_metadata(
        apply_fields(d.metadata, {"description": "changed", "tags": ["b", "a"]}), author="bob", summary="x", at=T0
    )
    diff = d.versions.diff(1, 2)
    assert diff["description"] == {"old": "first", "new": "changed"}
    assert diff["tags"] is None
    assert diff["title"] is None
    assert set(diff) == {"title", "description", "category", "status", "tags"}


def test_check_rejects_gapped_history():
    meta = Metadata(title="t", category="Normal File")
    chain = VersionChain(
        (
            VersionEntry(1, T0, "a", meta, None, "Initial version"),
            VersionEntry(3, T0, "a", meta, 1, "skipped"),
        )
    )
    with pytest.raises(InternalConsistencyError):
        chain.check()


def test_embedded_category_requires_a_process_step():
    with pytest.raises(ValidationError):
        build_metadata(title="Board", category="Embedded System Design", status="active")

    meta = build_metadata(title="Board", category="Embedded System Design", status="Detailed Design")
    assert meta.status == "Detailed Design"

    # switching category re-validates the existing status
    with pytest.raises(ValidationError):
        apply_fields(Metadata(title="t", category="Normal File"), {"category": "Embedded System Design"})


def test_missing_title_and_category_are_reported_together():
    with pytest.raises(ValidationError) as ei:
        build_metadata(title=" ", category=None)
    assert ei.value.fields == ["title", "category"]


def test_unknown_update_fields_are_rejected():
    with pytest.raises(ValidationError) as ei:
        apply_fields(Metadata(title="t", category="Normal File"), {"currentVersion": 9})
    assert ei.value.fields == ["currentVersion"]
