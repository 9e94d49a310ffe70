"""Jurisdiction pipeline registration and ordering."""

import pytest

from app.db.models import ReviewerKind
from app.services import reviewer_directory
from app.services.reviewer_directory import Approver, FinalAuthority
from app.utils.exceptions import ConflictError, ForbiddenError, PreconditionFailedError


def test_ordered_reviewers_puts_final_authority_last(db, pipeline):
    first, second = pipeline.approvers

    slots = reviewer_directory.ordered_reviewers(db, pipeline.jurisdiction.id)

    assert [s.reviewer_id for s in slots] == [first.id, second.id, pipeline.authority.id]
    assert slots[0].kind == Approver(position=1)
    assert slots[1].kind == Approver(position=2)
    assert slots[2].is_final_authority
    assert slots[2].kind == FinalAuthority(signature_required=True)
    assert reviewer_directory.ordered_reviewers(db, pipeline.jurisdiction.id) == slots


def test_approver_requires_final_authority(db, jurisdiction):
    with pytest.raises(PreconditionFailedError, match="final authority"):
        reviewer_directory.register_approver(db, jurisdiction.id, "Surveyor", "surveyor@lagos.gov")


def test_final_authority_needs_numeric_capacity(db, jurisdiction):
    with pytest.raises(PreconditionFailedError, match="capacity"):
        reviewer_directory.register_final_authority(db, jurisdiction.id, "Governor", "gov@lagos.gov", 0)


def test_one_final_authority_per_jurisdiction(db, pipeline):
    with pytest.raises(ConflictError):
        reviewer_directory.register_final_authority(
            db, pipeline.jurisdiction.id, "Deputy", "deputy@lagos.gov", approver_capacity=2
        )


def test_approver_capacity_is_enforced(db, jurisdiction):
    reviewer_directory.register_final_authority(db, jurisdiction.id, "Governor", "gov@lagos.gov", 1)
    reviewer_directory.register_approver(db, jurisdiction.id, "Surveyor", "surveyor@lagos.gov")

    with pytest.raises(PreconditionFailedError, match="capacity"):
        reviewer_directory.register_approver(db, jurisdiction.id, "Planner", "planner@lagos.gov")


def test_explicit_position_collision_conflicts(db, pipeline):
    with pytest.raises(ConflictError):
        reviewer_directory.register_approver(
            db, pipeline.jurisdiction.id, "Planner", "planner@lagos.gov", position=1
        )


def test_default_position_goes_to_the_end(db, pipeline):
    third = reviewer_directory.register_approver(db, pipeline.jurisdiction.id, "Planner", "planner@lagos.gov")

    assert third.kind == ReviewerKind.approver
    assert third.position == 3


def test_reorder_approvers(db, pipeline):
    first, second = pipeline.approvers

    reordered = reviewer_directory.reorder_approvers(db, pipeline.jurisdiction.id, [second.id, first.id])

    assert [(r.id, r.position) for r in reordered] == [(second.id, 1), (first.id, 2)]
    slots = reviewer_directory.ordered_reviewers(db, pipeline.jurisdiction.id)
    assert [s.reviewer_id for s in slots][:2] == [second.id, first.id]


def test_reorder_must_name_every_approver(db, pipeline):
    with pytest.raises(PreconditionFailedError):
        reviewer_directory.reorder_approvers(db, pipeline.jurisdiction.id, [pipeline.approvers[0].id])


def test_deactivation_compacts_positions(db, pipeline):
    first, second = pipeline.approvers

    reviewer_directory.deactivate_reviewer(db, first.id)

    db.refresh(second)
    assert first.is_active is False
    assert first.position is None
    assert second.position == 1
    assert [s.reviewer_id for s in reviewer_directory.ordered_reviewers(db, pipeline.jurisdiction.id)] == [
        second.id, pipeline.authority.id,
    ]


def test_deactivation_blocked_by_pending_reviews(db, workflow, pipeline, make_applicant, make_case, pdf):
    from app.core.security import Actor, ROLE_APPLICANT

    applicant = make_applicant()
    case = make_case(applicant, pipeline.jurisdiction)
    workflow.submit(db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), case.id, [pdf()], [{"type": "deed"}])

    with pytest.raises(PreconditionFailedError, match="pending reviews"):
        reviewer_directory.deactivate_reviewer(db, pipeline.approvers[0].id)


def test_signature_upload_for_final_authority(db, pipeline, fake_storage, monkeypatch):
    monkeypatch.setattr(reviewer_directory, "storage_service", fake_storage)
    pipeline.authority.signature_url = None
    db.commit()

    reviewer = reviewer_directory.upload_signature(
        db, pipeline.authority.id, b"\x89PNG signature", "signature.png", "image/png"
    )

    assert reviewer.signature_url == "https://files.test/signatures/1_signature.png"
    assert fake_storage.calls == [("signatures", "signature.png")]


def test_approvers_do_not_keep_signatures(db, pipeline, fake_storage, monkeypatch):
    monkeypatch.setattr(reviewer_directory, "storage_service", fake_storage)

    with pytest.raises(ForbiddenError):
        reviewer_directory.upload_signature(
            db, pipeline.approvers[0].id, b"\x89PNG signature", "signature.png", "image/png"
        )
    assert fake_storage.calls == []


def test_duplicate_jurisdiction_name_conflicts(db, jurisdiction):
    with pytest.raises(ConflictError):
        reviewer_directory.create_jurisdiction(db, "Lagos")


def test_deactivation_blocked_while_correction_is_outstanding(
    db, workflow, pipeline, make_applicant, make_case, pdf
):
    from app.core.security import Actor, ROLE_APPLICANT, ROLE_REVIEWER
    from app.db.models import Decision

    applicant = make_applicant()
    case = make_case(applicant, pipeline.jurisdiction)
    workflow.submit(db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), case.id, [pdf()], [{"type": "deed"}])
    first = pipeline.approvers[0]
    workflow.review(db, Actor(actor_id=first.id, role=ROLE_REVIEWER), case.id, Decision.REJECTED, "Deed unsigned")

    with pytest.raises(PreconditionFailedError, match="sent back for correction"):
        reviewer_directory.deactivate_reviewer(db, first.id)

    db.refresh(first)
    assert first.is_active is True
    assert first.position == 1
