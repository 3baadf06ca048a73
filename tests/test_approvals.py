from datetime import datetime

import pytest

from app.docflow.errors import DuplicateApprovalError, ValidationError
from app.docflow.modules.documents.approvals import ApprovalFlow
from app.docflow.security import approval_fingerprint

T0 = datetime(2026, 3, 1, 9, 30, 0)


def _multi() -> ApprovalFlow:
    return ApprovalFlow.setup("multi", [{"role": "Admin", "order": 1}, {"role": "Staff", "order": 0}])


def test_setup_sorts_levels_by_order():
    flow = _multi()
    assert [lv.role for lv in flow.levels] == ["Staff", "Admin"]
    assert flow.configured
    assert flow.state == "configured"
    assert flow.current_role == "Staff"


def test_setup_rejects_bad_input():
    with pytest.raises(ValidationError):
        ApprovalFlow.setup("parallel", [])
    with pytest.raises(ValidationError):
        ApprovalFlow.setup("multi", [])
    with pytest.raises(ValidationError):
        ApprovalFlow.setup("multi", [{"role": "Owner", "order": 0}])
    with pytest.raises(ValidationError):
        ApprovalFlow.setup("multi", [{"role": "Staff", "order": 0}, {"role": "Admin", "order": 0}])
    with pytest.raises(ValidationError):
        ApprovalFlow.setup("multi", [{"role": 1, "order": 0}])
    with pytest.raises(ValidationError):
        ApprovalFlow.setup(2, [])


def test_multi_level_walk_and_duplicate_submission():
    flow = _multi()
    flow, rec1 = flow.submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    assert flow.current_level == 1
    assert rec1.level == 0
    assert flow.state == "advancing"

    flow, rec2 = flow.submit(document_id="d1", approver="ada", role="Admin", decision="approved", at=T0)
    assert flow.current_level == 2
    assert flow.complete
    assert flow.state == "complete"

    with pytest.raises(DuplicateApprovalError):
        flow.submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    assert len(flow.approvals) == 2


def test_rejection_still_advances_level():
    flow = _multi()
    flow, rec = flow.submit(document_id="d1", approver="sam", role="Staff", decision="rejected", comment="no", at=T0)
    assert flow.current_level == 1
    assert rec.decision == "rejected"
    assert rec.comment == "no"


def test_single_flow_does_not_advance():
    flow = ApprovalFlow.setup("single", None)
    flow, _ = flow.submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    assert flow.current_level == 0
    assert flow.complete


def test_only_approved_or_rejected_are_submittable():
    with pytest.raises(ValidationError):
        _multi().submit(document_id="d1", approver="sam", role="Staff", decision="pending", at=T0)


def test_signature_is_sha256_of_approver_document_and_timestamp():
    flow, rec = _multi().submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    assert rec.signature == approval_fingerprint("sam", "d1", T0)
    assert len(rec.signature) == 64
    assert flow.verify("sam", rec.signature) == rec
    assert flow.verify("sam", "0" * 64) is None
    assert flow.verify("ada", rec.signature) is None


def test_pending_for_tracks_current_level_role():
    flow = _multi()
    assert flow.is_pending_for("Staff")
    assert not flow.is_pending_for("Admin")
    flow, _ = flow.submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    assert not flow.is_pending_for("Staff")
    assert flow.is_pending_for("Admin")


def test_setup_replaces_prior_flow():
    flow, _ = _multi().submit(document_id="d1", approver="sam", role="Staff", decision="approved", at=T0)
    fresh = ApprovalFlow.setup("single", [])
    assert fresh.approvals == ()
    assert fresh.current_level == 0
    assert flow.approvals  # earlier snapshot untouched
