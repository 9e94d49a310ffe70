"""
Ownership transfer endpoints

POST   /transfers                              → start a transfer, codes sent to every channel
POST   /transfers/{transfer_id}/verify         → confirm one channel's code
POST   /transfers/{transfer_id}/resend         → new code for one channel (cooldown applies)
GET    /transfers/{transfer_id}/progress       → verified vs remaining channels
POST   /transfers/{transfer_id}/documents      → hand the verified transfer to the final authority
GET    /transfers/pending                      → final authority's queue
POST   /transfers/{transfer_id}/approve
POST   /transfers/{transfer_id}/reject
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_actor, parse_documents_meta, read_uploads, require_applicant, require_reviewer
from app.core.security import Actor
from app.db.database import get_db
from app.db.schemas import (
    ResendCodeRequest,
    TransferActionResponse,
    TransferDecisionRequest,
    TransferInitiateRequest,
    TransferProgressResponse,
    TransferRejectRequest,
    TransferResponse,
    VerifyCodeRequest,
)
from app.services.notification_service import notification_service
from app.services.transfer_service import TransferOutcome, transfer_service

router = APIRouter()


def _to_response(outcome: TransferOutcome) -> TransferActionResponse:
    return TransferActionResponse(
        message=outcome.message,
        transfer=TransferResponse.model_validate(outcome.transfer),
        all_verified=outcome.all_verified,
    )


@router.post("/", response_model=TransferActionResponse, status_code=status.HTTP_201_CREATED)
def initiate_transfer(
    request: TransferInitiateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    outcome = transfer_service.initiate(
        db,
        actor,
        request.land_id,
        request.new_owner_email,
        emails=list(request.emails),
        phones=list(request.phones),
        new_owner_phone=request.new_owner_phone,
    )
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)


@router.get("/pending", response_model=List[TransferResponse])
def list_pending_transfers(
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    return transfer_service.pending_for_governor(db, actor)


@router.post("/{transfer_id}/verify", response_model=TransferActionResponse)
def verify_code(
    transfer_id: UUID,
    request: VerifyCodeRequest,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    outcome = transfer_service.verify_code(db, actor, transfer_id, request.target, request.code)
    return _to_response(outcome)


@router.post("/{transfer_id}/resend", response_model=TransferActionResponse)
def resend_code(
    transfer_id: UUID,
    request: ResendCodeRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    outcome = transfer_service.resend_code(db, actor, transfer_id, request.target)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)


@router.get("/{transfer_id}/progress", response_model=TransferProgressResponse)
def get_progress(
    transfer_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return transfer_service.progress(db, actor, transfer_id)


@router.post("/{transfer_id}/documents", response_model=TransferActionResponse)
async def submit_transfer_documents(
    transfer_id: UUID,
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    documents_meta: str = Form("[]", alias="documentsMeta"),
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    meta = parse_documents_meta(documents_meta)
    uploads = await read_uploads(files)
    outcome = transfer_service.submit_documents(db, actor, transfer_id, uploads, meta)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)


@router.post("/{transfer_id}/approve", response_model=TransferActionResponse)
def approve_transfer(
    transfer_id: UUID,
    request: TransferDecisionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    outcome = transfer_service.approve(db, actor, transfer_id, request.comment)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)


@router.post("/{transfer_id}/reject", response_model=TransferActionResponse)
def reject_transfer(
    transfer_id: UUID,
    request: TransferRejectRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    outcome = transfer_service.reject(db, actor, transfer_id, request.reason)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)
