"""Ownership transfer verification and final authority decision."""

from datetime import timedelta

import pytest

from app.core.security import Actor, ROLE_APPLICANT, ROLE_REVIEWER
from app.db.models import Land, OwnershipHistory, TransferAuditLog, TransferStatus, TransferVerification
from app.services.transfer_service import TransferService
from app.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
)
from app.utils.helpers import utcnow


@pytest.fixture
def service(fake_storage):
    return TransferService(storage=fake_storage)


@pytest.fixture
def owner(make_applicant):
    return make_applicant(email="seller@example.com", full_name="Bola Adeyemi")


@pytest.fixture
def owner_actor(owner):
    return Actor(actor_id=owner.id, role=ROLE_APPLICANT)


@pytest.fixture
def land(db, owner, pipeline):
    land = Land(
        owner_id=owner.id,
        jurisdiction_id=pipeline.jurisdiction.id,
        address="14 Awolowo Road, Ikoyi",
        plot_number="PLOT-914",
        square_meters=900,
        purpose="Residential",
    )
    db.add(land)
    db.commit()
    db.refresh(land)
    return land


def codes_by_target(db, transfer_id):
    rows = db.query(TransferVerification).filter(TransferVerification.transfer_id == transfer_id).all()
    return {row.target: row.code for row in rows}


@pytest.fixture
def initiated(db, service, owner_actor, land):
    return service.initiate(
        db, owner_actor, land.id,
        new_owner_email="buyer@example.com",
        emails=["seller@example.com"],
    )


@pytest.fixture
def verified(db, service, owner_actor, initiated):
    for target, code in codes_by_target(db, initiated.transfer.id).items():
        service.verify_code(db, owner_actor, initiated.transfer.id, target, code)
    return initiated.transfer


@pytest.fixture
def pending_governor(db, service, owner_actor, verified, pdf):
    service.submit_documents(db, owner_actor, verified.id, [pdf("deed-of-assignment.pdf")], [{"type": "deed"}])
    db.refresh(verified)
    return verified


def test_initiate_issues_one_code_per_channel(db, initiated):
    transfer = initiated.transfer

    assert transfer.status == TransferStatus.INITIATED
    assert set(codes_by_target(db, transfer.id)) == {"seller@example.com", "buyer@example.com"}
    assert {i.target for i in initiated.intents} == {"seller@example.com", "buyer@example.com"}
    assert initiated.all_verified is False


def test_both_channels_must_verify(db, service, owner_actor, initiated):
    transfer_id = initiated.transfer.id
    codes = codes_by_target(db, transfer_id)

    first = service.verify_code(db, owner_actor, transfer_id, "seller@example.com", codes["seller@example.com"])
    assert first.all_verified is False
    assert first.transfer.status == TransferStatus.INITIATED

    second = service.verify_code(db, owner_actor, transfer_id, "BUYER@example.com", codes["buyer@example.com"])
    assert second.all_verified is True
    assert second.transfer.status == TransferStatus.VERIFIED_BY_PARTIES


def test_wrong_code_and_repeat_verification(db, service, owner_actor, initiated):
    transfer_id = initiated.transfer.id
    code = codes_by_target(db, transfer_id)["seller@example.com"]

    with pytest.raises(PreconditionFailedError, match="Invalid code"):
        service.verify_code(db, owner_actor, transfer_id, "seller@example.com", "000000")

    service.verify_code(db, owner_actor, transfer_id, "seller@example.com", code)
    with pytest.raises(PreconditionFailedError, match="Already verified"):
        service.verify_code(db, owner_actor, transfer_id, "seller@example.com", code)


def test_unknown_target_is_not_found(db, service, owner_actor, initiated):
    with pytest.raises(NotFoundError):
        service.verify_code(db, owner_actor, initiated.transfer.id, "stranger@example.com", "123456")


def test_only_the_owner_can_verify(db, service, initiated, make_applicant):
    stranger = make_applicant()

    with pytest.raises(ForbiddenError):
        service.verify_code(
            db, Actor(actor_id=stranger.id, role=ROLE_APPLICANT), initiated.transfer.id, "seller@example.com", "123456"
        )


def test_second_transfer_for_same_land_conflicts(db, service, owner_actor, land, initiated):
    with pytest.raises(ConflictError):
        service.initiate(db, owner_actor, land.id, new_owner_email="other@example.com")


def test_only_the_land_owner_can_initiate(db, service, land, make_applicant):
    stranger = make_applicant()

    with pytest.raises(ForbiddenError):
        service.initiate(db, Actor(actor_id=stranger.id, role=ROLE_APPLICANT), land.id, "buyer@example.com")


def test_invalid_contact_is_rejected(db, service, owner_actor, land):
    with pytest.raises(PreconditionFailedError, match="Invalid phone"):
        service.initiate(db, owner_actor, land.id, "buyer@example.com", phones=["12"])


def test_expired_transfer_cannot_be_verified(db, service, owner_actor, initiated):
    transfer = initiated.transfer
    code = codes_by_target(db, transfer.id)["seller@example.com"]
    transfer.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(PreconditionFailedError, match="expired"):
        service.verify_code(db, owner_actor, transfer.id, "seller@example.com", code)

    db.refresh(transfer)
    assert transfer.status == TransferStatus.EXPIRED


def test_expired_transfer_frees_the_land(db, service, owner_actor, land, initiated):
    initiated.transfer.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    outcome = service.initiate(db, owner_actor, land.id, new_owner_email="other@example.com")

    assert outcome.transfer.id != initiated.transfer.id


def test_resend_respects_cooldown(db, service, owner_actor, initiated):
    with pytest.raises(PreconditionFailedError) as exc_info:
        service.resend_code(db, owner_actor, initiated.transfer.id, "seller@example.com")

    assert 0 < exc_info.value.extra["retry_after_seconds"] <= 61


def test_resend_issues_a_new_code(db, service, owner_actor, initiated):
    transfer_id = initiated.transfer.id
    row = (
        db.query(TransferVerification)
        .filter(TransferVerification.transfer_id == transfer_id, TransferVerification.target == "seller@example.com")
        .one()
    )
    row.issued_at = utcnow() - timedelta(minutes=5)
    db.commit()

    outcome = service.resend_code(db, owner_actor, transfer_id, "seller@example.com")

    db.refresh(row)
    assert len(outcome.intents) == 1
    assert row.code in outcome.intents[0].body
    assert row.issued_at > utcnow() - timedelta(minutes=1)


def test_documents_hand_off_to_final_authority(db, pipeline, pending_governor, fake_storage):
    assert pending_governor.status == TransferStatus.PENDING_GOVERNOR
    assert pending_governor.governor_id == pipeline.authority.id
    assert fake_storage.calls == [("transfer_documents", "deed-of-assignment.pdf")]
    assert len(pending_governor.documents) == 1


def test_documents_require_all_parties_verified(db, service, owner_actor, initiated, pdf, fake_storage):
    with pytest.raises(PreconditionFailedError, match="verify"):
        service.submit_documents(db, owner_actor, initiated.transfer.id, [pdf()], [{"type": "deed"}])
    assert fake_storage.calls == []


def test_approval_moves_ownership(db, service, pipeline, pending_governor, land, owner, make_applicant):
    buyer = make_applicant(email="buyer@example.com", full_name="Kemi Balogun")
    governor = Actor(actor_id=pipeline.authority.id, role=ROLE_REVIEWER)

    outcome = service.approve(db, governor, pending_governor.id, comment="Consent granted")

    assert outcome.transfer.status == TransferStatus.APPROVED
    assert outcome.transfer.new_owner_id == buyer.id
    db.refresh(land)
    assert land.owner_id == buyer.id
    history = db.query(OwnershipHistory).filter(OwnershipHistory.land_id == land.id).one()
    assert history.from_owner_id == owner.id
    assert history.to_owner_id == buyer.id
    assert history.authorized_by_id == pipeline.authority.id
    assert {i.target for i in outcome.intents} == {"buyer@example.com", "seller@example.com"}

    with pytest.raises(PreconditionFailedError):
        service.approve(db, governor, pending_governor.id)


def test_approval_needs_registered_new_owner(db, service, pipeline, pending_governor):
    governor = Actor(actor_id=pipeline.authority.id, role=ROLE_REVIEWER)

    with pytest.raises(NotFoundError, match="register"):
        service.approve(db, governor, pending_governor.id)


def test_only_assigned_governor_decides(db, service, pipeline, pending_governor):
    approver = Actor(actor_id=pipeline.approvers[0].id, role=ROLE_REVIEWER)

    with pytest.raises(ForbiddenError):
        service.reject(db, approver, pending_governor.id, "Not mine to decide")


def test_rejection_requires_reason(db, service, pipeline, pending_governor):
    governor = Actor(actor_id=pipeline.authority.id, role=ROLE_REVIEWER)

    with pytest.raises(PreconditionFailedError, match="reason"):
        service.reject(db, governor, pending_governor.id, "   ")

    outcome = service.reject(db, governor, pending_governor.id, "Survey plan does not match")
    assert outcome.transfer.status == TransferStatus.REJECTED
    assert outcome.transfer.rejection_reason == "Survey plan does not match"
    actions = {
        row.action
        for row in db.query(TransferAuditLog).filter(TransferAuditLog.transfer_id == pending_governor.id)
    }
    assert actions == {"INITIATED", "VERIFIED_BY_PARTIES", "DOCUMENTS_SUBMITTED", "REJECTED"}


def test_pending_list_for_governor(db, service, pipeline, pending_governor):
    governor = Actor(actor_id=pipeline.authority.id, role=ROLE_REVIEWER)

    assert [t.id for t in service.pending_for_governor(db, governor)] == [pending_governor.id]


def test_progress_masks_targets(db, service, owner_actor, initiated):
    transfer_id = initiated.transfer.id
    code = codes_by_target(db, transfer_id)["seller@example.com"]
    service.verify_code(db, owner_actor, transfer_id, "seller@example.com", code)

    progress = service.progress(db, owner_actor, transfer_id)

    assert progress["total_channels"] == 2
    assert progress["verified_channels"] == 1
    assert progress["all_verified"] is False
    targets = {c["target"] for c in progress["channels"]}
    assert targets == {"se***@example.com", "bu***@example.com"}
