"""
Reviewer Directory
==================
Resolves a jurisdiction's review pipeline: active approvers in ascending
position, then the single active final authority. Registration rules live
here too, so the workflow engine never has to re-check them at decision time.

Callers:
  - workflow_engine  -> ordered_reviewers / final_authority_for
  - transfer_service -> final_authority_for
  - endpoints/reviewers.py -> register_* / reorder_approvers / deactivate_reviewer
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import Case, CaseStatus, Jurisdiction, Reviewer, ReviewerKind
from app.services import inbox_service
from app.services.document_service import document_service
from app.services.storage_service import storage_service
from app.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    PreconditionFailedError,
    not_found,
)
from app.utils.helpers import normalize_email

logger = logging.getLogger(__name__)

_POSITION_RETRIES = 3


@dataclass(frozen=True)
class Approver:
    position: int


@dataclass(frozen=True)
class FinalAuthority:
    signature_required: bool


ReviewerRole = Union[Approver, FinalAuthority]


@dataclass(frozen=True)
class ReviewerSlot:
    reviewer_id: uuid.UUID
    kind: ReviewerRole

    @property
    def is_final_authority(self) -> bool:
        return isinstance(self.kind, FinalAuthority)


def role_of(reviewer: Reviewer) -> ReviewerRole:
    if reviewer.kind == ReviewerKind.final_authority:
        return FinalAuthority(signature_required=bool(reviewer.requires_signature))
    return Approver(position=reviewer.position)


# ============================================================================
# Lookups
# ============================================================================

def get_jurisdiction(db: Session, jurisdiction_id: uuid.UUID) -> Jurisdiction:
    jurisdiction = db.query(Jurisdiction).filter(Jurisdiction.id == jurisdiction_id).first()
    if jurisdiction is None:
        raise not_found("Jurisdiction", jurisdiction_id)
    return jurisdiction


def get_reviewer(db: Session, reviewer_id: uuid.UUID) -> Reviewer:
    reviewer = db.query(Reviewer).filter(Reviewer.id == reviewer_id).first()
    if reviewer is None:
        raise not_found("Reviewer", reviewer_id)
    return reviewer


def active_approvers(db: Session, jurisdiction_id: uuid.UUID) -> list[Reviewer]:
    return (
        db.query(Reviewer)
        .filter(
            Reviewer.jurisdiction_id == jurisdiction_id,
            Reviewer.kind == ReviewerKind.approver,
            Reviewer.is_active.is_(True),
        )
        .order_by(Reviewer.position.asc())
        .all()
    )


def final_authority_for(db: Session, jurisdiction_id: uuid.UUID) -> Optional[Reviewer]:
    return (
        db.query(Reviewer)
        .filter(
            Reviewer.jurisdiction_id == jurisdiction_id,
            Reviewer.kind == ReviewerKind.final_authority,
            Reviewer.is_active.is_(True),
        )
        .first()
    )


def ordered_reviewers(db: Session, jurisdiction_id: uuid.UUID) -> list[ReviewerSlot]:
    """Approvers by ascending position, then the final authority if registered."""
    slots = [ReviewerSlot(r.id, role_of(r)) for r in active_approvers(db, jurisdiction_id)]
    authority = final_authority_for(db, jurisdiction_id)
    if authority is not None:
        slots.append(ReviewerSlot(authority.id, role_of(authority)))
    return slots


def is_member(reviewer: Optional[Reviewer], jurisdiction_id: uuid.UUID) -> bool:
    return bool(reviewer and reviewer.is_active and reviewer.jurisdiction_id == jurisdiction_id)


# ============================================================================
# Registration
# ============================================================================

def create_jurisdiction(db: Session, name: str) -> Jurisdiction:
    jurisdiction = Jurisdiction(name=name.strip())
    db.add(jurisdiction)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"Jurisdiction '{name}' already exists") from exc
    db.refresh(jurisdiction)
    return jurisdiction


def register_final_authority(
    db: Session,
    jurisdiction_id: uuid.UUID,
    name: str,
    email: str,
    approver_capacity: Optional[int],
    phone: Optional[str] = None,
    requires_signature: bool = True,
) -> Reviewer:
    get_jurisdiction(db, jurisdiction_id)
    if not isinstance(approver_capacity, int) or isinstance(approver_capacity, bool) or approver_capacity < 1:
        raise PreconditionFailedError(
            "A final authority must declare a numeric approver capacity of at least 1"
        )
    if final_authority_for(db, jurisdiction_id) is not None:
        raise ConflictError("This jurisdiction already has a final authority")

    reviewer = Reviewer(
        jurisdiction_id=jurisdiction_id,
        name=name,
        email=normalize_email(email),
        phone=phone,
        kind=ReviewerKind.final_authority,
        approver_capacity=approver_capacity,
        requires_signature=requires_signature,
    )
    db.add(reviewer)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("This jurisdiction already has a final authority, or the email is taken") from exc
    db.refresh(reviewer)
    logger.info("final_authority_registered jurisdiction=%s reviewer=%s", jurisdiction_id, reviewer.id)
    return reviewer


def _max_position(db: Session, jurisdiction_id: uuid.UUID) -> int:
    current = (
        db.query(func.max(Reviewer.position))
        .filter(Reviewer.jurisdiction_id == jurisdiction_id)
        .scalar()
    )
    return current or 0


def register_approver(
    db: Session,
    jurisdiction_id: uuid.UUID,
    name: str,
    email: str,
    position: Optional[int] = None,
    phone: Optional[str] = None,
) -> Reviewer:
    """
    Add an approver to a jurisdiction.

    ``position`` is optional; when omitted the approver goes to the end of the
    line. Defaulted positions retry on a uniqueness collision, explicit ones
    fail with ConflictError.
    """
    get_jurisdiction(db, jurisdiction_id)
    authority = final_authority_for(db, jurisdiction_id)
    if authority is None:
        raise PreconditionFailedError(
            "Register the jurisdiction's final authority before adding approvers"
        )
    if len(active_approvers(db, jurisdiction_id)) >= (authority.approver_capacity or 0):
        raise PreconditionFailedError(
            f"Approver capacity of {authority.approver_capacity} reached for this jurisdiction"
        )
    if position is not None and position < 1:
        raise PreconditionFailedError("Approver position must be 1 or greater")

    for attempt in range(_POSITION_RETRIES):
        reviewer = Reviewer(
            jurisdiction_id=jurisdiction_id,
            name=name,
            email=normalize_email(email),
            phone=phone,
            kind=ReviewerKind.approver,
            position=position if position is not None else _max_position(db, jurisdiction_id) + 1,
            requires_signature=False,
        )
        db.add(reviewer)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if position is not None:
                raise ConflictError(
                    f"Position {position} is already taken in this jurisdiction, or the email is in use"
                ) from exc
            logger.warning(
                "approver_position_collision jurisdiction=%s attempt=%s", jurisdiction_id, attempt + 1
            )
            continue
        db.refresh(reviewer)
        logger.info(
            "approver_registered jurisdiction=%s reviewer=%s position=%s",
            jurisdiction_id, reviewer.id, reviewer.position,
        )
        return reviewer
    raise ConflictError("Could not allocate an approver position, please retry")


def reorder_approvers(db: Session, jurisdiction_id: uuid.UUID, reviewer_ids: list[uuid.UUID]) -> list[Reviewer]:
    """Rewrite positions 1..n in the given order. Must name every active approver."""
    approvers = {r.id: r for r in active_approvers(db, jurisdiction_id)}
    if len(reviewer_ids) != len(set(reviewer_ids)) or set(reviewer_ids) != set(approvers):
        raise PreconditionFailedError(
            "Reorder must list every active approver of the jurisdiction exactly once"
        )
    try:
        # Two passes so the (jurisdiction, position) constraint never sees a duplicate.
        for index, reviewer_id in enumerate(reviewer_ids, start=1):
            approvers[reviewer_id].position = -index
        db.flush()
        for index, reviewer_id in enumerate(reviewer_ids, start=1):
            approvers[reviewer_id].position = index
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Approver positions changed concurrently, please retry") from exc
    return active_approvers(db, jurisdiction_id)


def _compact_positions(db: Session, jurisdiction_id: uuid.UUID) -> None:
    approvers = active_approvers(db, jurisdiction_id)
    for index, reviewer in enumerate(approvers, start=1):
        reviewer.position = -index
    db.flush()
    for index, reviewer in enumerate(approvers, start=1):
        reviewer.position = index


def deactivate_reviewer(db: Session, reviewer_id: uuid.UUID) -> Reviewer:
    reviewer = get_reviewer(db, reviewer_id)
    if not reviewer.is_active:
        return reviewer
    if inbox_service.count_pending_for_reviewer(db, reviewer.id):
        raise PreconditionFailedError(
            "Reviewer still has pending reviews; reassign or decide them first"
        )
    awaiting_correction = (
        db.query(Case)
        .filter(Case.rejected_by_id == reviewer.id, Case.status == CaseStatus.NEEDS_CORRECTION)
        .count()
    )
    if awaiting_correction:
        raise PreconditionFailedError(
            f"Reviewer is waiting on {awaiting_correction} application(s) sent back for correction; "
            "they return to this reviewer on resubmission"
        )
    try:
        reviewer.is_active = False
        reviewer.position = None
        db.flush()
        if reviewer.kind == ReviewerKind.approver:
            _compact_positions(db, reviewer.jurisdiction_id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Approver positions changed concurrently, please retry") from exc
    db.refresh(reviewer)
    logger.info("reviewer_deactivated reviewer=%s", reviewer.id)
    return reviewer


def upload_signature(
    db: Session,
    reviewer_id: uuid.UUID,
    content: bytes,
    filename: str,
    mime_type: str,
) -> Reviewer:
    reviewer = get_reviewer(db, reviewer_id)
    if reviewer.kind != ReviewerKind.final_authority:
        raise ForbiddenError("Only a final authority keeps a signature on file")
    result = document_service.validate(content, filename, mime_type)
    if not result.valid:
        raise PreconditionFailedError(result.error or "Invalid signature file")
    stored = storage_service.store(content, filename, mime_type, settings.SIGNATURE_FOLDER)
    reviewer.signature_url = stored.url
    db.commit()
    db.refresh(reviewer)
    logger.info("signature_uploaded reviewer=%s", reviewer.id)
    return reviewer


def require_reviewer(db: Session, reviewer_id: uuid.UUID) -> Reviewer:
    """Active reviewer behind an authenticated actor, or Forbidden."""
    reviewer = db.query(Reviewer).filter(Reviewer.id == reviewer_id).first()
    if reviewer is None or not reviewer.is_active:
        raise ForbiddenError("Only active internal reviewers can perform this action")
    return reviewer
