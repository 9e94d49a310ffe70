"""Final authority batch signing."""

import uuid

import pytest

from app.core.security import Actor, ROLE_APPLICANT, ROLE_REVIEWER
from app.db.models import CaseStatus, Decision, InboxEntry, InboxStatus
from app.services import case_store, reviewer_directory
from app.utils.exceptions import ForbiddenError, NotFoundError, PreconditionFailedError


def as_reviewer(reviewer):
    return Actor(actor_id=reviewer.id, role=ROLE_REVIEWER)


@pytest.fixture
def applicant(make_applicant):
    return make_applicant(email="chidi@example.com", full_name="Chidi Eze")


@pytest.fixture
def at_final_authority(db, workflow, pipeline, applicant, make_case, pdf):
    """Factory for cases that have cleared every approver."""

    def factory(stop_after=None):
        case = make_case(applicant, pipeline.jurisdiction)
        workflow.submit(
            db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), case.id, [pdf()], [{"type": "deed"}]
        )
        for approver in pipeline.approvers[:stop_after]:
            workflow.review(db, as_reviewer(approver), case.id, Decision.APPROVED)
        return case

    return factory


def test_batch_signs_every_case(db, workflow, pipeline, at_final_authority):
    cases = [at_final_authority(), at_final_authority()]

    outcome = workflow.batch_finalize(db, as_reviewer(pipeline.authority), [c.id for c in cases], "Signed in council")

    assert outcome.succeeded == 2
    numbers = [r.case_number for r in outcome.results]
    assert numbers[0].endswith("-000001")
    assert numbers[1].endswith("-000002")
    for case in cases:
        db.refresh(case)
        assert case.status == CaseStatus.APPROVED
        assert case.certificate_url is not None
        assert case_store.stage_logs(db, case.id)[-1].message == "Signed in council"
    assert {i.target for i in outcome.intents} == {"chidi@example.com"}
    assert len(outcome.intents) == 2


def test_duplicate_ids_are_signed_once(db, workflow, pipeline, at_final_authority):
    case = at_final_authority()

    outcome = workflow.batch_finalize(db, as_reviewer(pipeline.authority), [case.id, case.id])

    assert len(outcome.results) == 1
    assert outcome.succeeded == 1


def test_case_outside_jurisdiction_rejects_whole_batch(db, workflow, pipeline, at_final_authority, make_applicant, make_case):
    lagos_case = at_final_authority()
    abuja = reviewer_directory.create_jurisdiction(db, "Abuja")
    abuja_case = make_case(make_applicant(), abuja)

    with pytest.raises(ForbiddenError, match="do not belong to your jurisdiction"):
        workflow.batch_finalize(db, as_reviewer(pipeline.authority), [lagos_case.id, abuja_case.id])

    db.refresh(lagos_case)
    assert lagos_case.status == CaseStatus.IN_REVIEW
    assert lagos_case.case_number is None
    pending = (
        db.query(InboxEntry)
        .filter(InboxEntry.case_id == lagos_case.id, InboxEntry.status == InboxStatus.pending)
        .one()
    )
    assert pending.receiver_id == pipeline.authority.id


def test_case_not_at_final_stage_rejects_whole_batch(db, workflow, pipeline, at_final_authority):
    ready = at_final_authority()
    early = at_final_authority(stop_after=1)

    with pytest.raises(PreconditionFailedError, match="not awaiting your signature"):
        workflow.batch_finalize(db, as_reviewer(pipeline.authority), [ready.id, early.id])

    db.refresh(ready)
    assert ready.status == CaseStatus.IN_REVIEW


def test_unknown_case_id_is_not_found(db, workflow, pipeline, at_final_authority):
    case = at_final_authority()

    with pytest.raises(NotFoundError):
        workflow.batch_finalize(db, as_reviewer(pipeline.authority), [case.id, uuid.uuid4()])


def test_only_final_authority_can_batch_sign(db, workflow, pipeline, at_final_authority):
    case = at_final_authority()

    with pytest.raises(ForbiddenError):
        workflow.batch_finalize(db, as_reviewer(pipeline.approvers[0]), [case.id])


def test_batch_sign_requires_signature_on_file(db, workflow, pipeline, at_final_authority):
    case = at_final_authority()
    pipeline.authority.signature_url = None
    db.commit()

    with pytest.raises(PreconditionFailedError, match="signature"):
        workflow.batch_finalize(db, as_reviewer(pipeline.authority), [case.id])


def test_one_failing_case_does_not_undo_the_others(db, workflow, pipeline, at_final_authority, monkeypatch):
    first, second = at_final_authority(), at_final_authority()
    finalize = workflow._finalize_in_transaction

    def flaky(db, case, authority):
        if case.id == second.id:
            raise RuntimeError("counter table locked")
        return finalize(db, case, authority)

    monkeypatch.setattr(workflow, "_finalize_in_transaction", flaky)

    outcome = workflow.batch_finalize(db, as_reviewer(pipeline.authority), [first.id, second.id])

    assert outcome.succeeded == 1
    failed = outcome.results[1]
    assert failed.ok is False
    assert "counter table locked" in failed.error
    db.refresh(first)
    db.refresh(second)
    assert first.status == CaseStatus.APPROVED
    assert second.status == CaseStatus.IN_REVIEW
    assert len(case_store.stage_logs(db, second.id)) == 2
