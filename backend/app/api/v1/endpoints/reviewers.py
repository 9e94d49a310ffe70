"""
Jurisdiction and reviewer administration
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_actor, read_uploads, require_admin
from app.core.security import Actor
from app.db.database import get_db
from app.db.models import Reviewer
from app.db.schemas import (
    ApproverCreate,
    FinalAuthorityCreate,
    JurisdictionCreate,
    JurisdictionResponse,
    ReorderApproversRequest,
    ReviewerResponse,
    ReviewerSlotResponse,
)
from app.services import reviewer_directory
from app.services.reviewer_directory import FinalAuthority
from app.utils.exceptions import ForbiddenError, PreconditionFailedError

router = APIRouter()


# ============================================================================
# Jurisdictions
# ============================================================================

@router.post("/jurisdictions", response_model=JurisdictionResponse, status_code=status.HTTP_201_CREATED)
def create_jurisdiction(
    request: JurisdictionCreate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return reviewer_directory.create_jurisdiction(db, request.name)


@router.get("/jurisdictions/{jurisdiction_id}/pipeline", response_model=List[ReviewerSlotResponse])
def get_pipeline(
    jurisdiction_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Review order for new submissions: approvers by position, then the final authority."""
    reviewer_directory.get_jurisdiction(db, jurisdiction_id)
    slots = []
    for slot in reviewer_directory.ordered_reviewers(db, jurisdiction_id):
        if isinstance(slot.kind, FinalAuthority):
            slots.append(ReviewerSlotResponse(
                reviewer_id=slot.reviewer_id,
                kind="final_authority",
                signature_required=slot.kind.signature_required,
            ))
        else:
            slots.append(ReviewerSlotResponse(
                reviewer_id=slot.reviewer_id,
                kind="approver",
                position=slot.kind.position,
            ))
    return slots


@router.get("/jurisdictions/{jurisdiction_id}/reviewers", response_model=List[ReviewerResponse])
def list_reviewers(
    jurisdiction_id: UUID,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reviewer_directory.get_jurisdiction(db, jurisdiction_id)
    return (
        db.query(Reviewer)
        .filter(Reviewer.jurisdiction_id == jurisdiction_id)
        .order_by(Reviewer.kind.asc(), Reviewer.position.asc(), Reviewer.created_at.asc())
        .all()
    )


# ============================================================================
# Reviewer registration
# ============================================================================

@router.post(
    "/jurisdictions/{jurisdiction_id}/final-authority",
    response_model=ReviewerResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_final_authority(
    jurisdiction_id: UUID,
    request: FinalAuthorityCreate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return reviewer_directory.register_final_authority(
        db,
        jurisdiction_id,
        name=request.name,
        email=request.email,
        approver_capacity=request.approver_capacity,
        phone=request.phone,
        requires_signature=request.requires_signature,
    )


@router.post(
    "/jurisdictions/{jurisdiction_id}/approvers",
    response_model=ReviewerResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_approver(
    jurisdiction_id: UUID,
    request: ApproverCreate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return reviewer_directory.register_approver(
        db,
        jurisdiction_id,
        name=request.name,
        email=request.email,
        position=request.position,
        phone=request.phone,
    )


@router.put("/jurisdictions/{jurisdiction_id}/approvers/order", response_model=List[ReviewerResponse])
def reorder_approvers(
    jurisdiction_id: UUID,
    request: ReorderApproversRequest,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Only affects cases submitted or advanced after the change."""
    return reviewer_directory.reorder_approvers(db, jurisdiction_id, request.reviewer_ids)


@router.post("/{reviewer_id}/deactivate", response_model=ReviewerResponse)
def deactivate_reviewer(
    reviewer_id: UUID,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return reviewer_directory.deactivate_reviewer(db, reviewer_id)


@router.post("/{reviewer_id}/signature", response_model=ReviewerResponse)
async def upload_signature(
    reviewer_id: UUID,
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """A final authority uploads their own signature; admins can upload on their behalf."""
    if not (actor.is_admin or actor.actor_id == reviewer_id):
        raise ForbiddenError("You can only upload your own signature")
    uploads = await read_uploads([file])
    if not uploads or not uploads[0].content:
        raise PreconditionFailedError("Signature file is empty")
    upload = uploads[0]
    return reviewer_directory.upload_signature(
        db, reviewer_id, upload.content, upload.filename, upload.mime_type
    )
