"""
Reviewer endpoints

GET    /reviews/inbox                                → caller's pending inbox entries
POST   /reviews/{case_id}/decision                   → APPROVE / REJECT the current stage
POST   /reviews/{case_id}/documents/{document_id}    → approve / reject a single document
POST   /reviews/batch-sign                           → final authority signs many cases
POST   /reviews/{case_id}/certificate                → re-render a missing certificate
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_actor, require_reviewer
from app.core.security import Actor
from app.db.database import get_db
from app.db.models import InboxStatus
from app.db.schemas import (
    BatchItemResponse,
    BatchSignRequest,
    BatchSignResponse,
    CaseResponse,
    DocumentResponse,
    DocumentReviewRequest,
    InboxEntryResponse,
    ReviewRequest,
    WorkflowResponse,
)
from app.services import inbox_service, reviewer_directory
from app.services.idempotency_service import get_idempotent_response, store_idempotent_response
from app.services.notification_service import notification_service
from app.services.workflow_engine import workflow_engine

router = APIRouter()


@router.get("/inbox", response_model=List[InboxEntryResponse])
def get_inbox(
    status: Optional[InboxStatus] = Query(InboxStatus.pending, description="Filter by entry status"),
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    reviewer = reviewer_directory.require_reviewer(db, actor.actor_id)
    return inbox_service.list_for_reviewer(db, reviewer.id, status)


@router.post("/{case_id}/decision", response_model=WorkflowResponse)
def decide(
    case_id: UUID,
    request: ReviewRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    """
    Approve forwards the case to the next reviewer, or finalizes it when the
    caller is the final authority. Reject sends it back to the applicant and
    requires a message.
    """
    outcome = workflow_engine.review(db, actor, case_id, request.action.to_decision(), request.message)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return WorkflowResponse(
        message=outcome.message,
        case=CaseResponse.model_validate(outcome.case),
        warnings=outcome.warnings,
    )


@router.post("/{case_id}/documents/{document_id}", response_model=DocumentResponse)
def review_document(
    case_id: UUID,
    document_id: UUID,
    request: DocumentReviewRequest,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    return workflow_engine.review_document(
        db, actor, case_id, document_id, request.action.to_decision(), request.message
    )


@router.post("/batch-sign", response_model=BatchSignResponse)
def batch_sign(
    request: BatchSignRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
):
    """All-or-nothing validation, then each case is finalized in its own transaction."""
    cached = get_idempotent_response(idempotency_key, actor.actor_id, db)
    if cached:
        status_code, body = cached
        return JSONResponse(body, status_code=status_code)

    outcome = workflow_engine.batch_finalize(db, actor, request.case_ids, request.comment)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)

    response = BatchSignResponse(
        message=f"{outcome.succeeded} of {len(outcome.results)} application(s) signed",
        succeeded=outcome.succeeded,
        results=[BatchItemResponse.model_validate(item) for item in outcome.results],
    )
    store_idempotent_response(
        idempotency_key, actor.actor_id, 200, response.model_dump(mode="json"), db,
        endpoint="reviews/batch-sign",
    )
    return response


@router.post("/{case_id}/certificate", response_model=WorkflowResponse)
def regenerate_certificate(
    case_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    outcome = workflow_engine.regenerate_certificate(db, actor, case_id)
    return WorkflowResponse(
        message=outcome.message,
        case=CaseResponse.model_validate(outcome.case),
        warnings=outcome.warnings,
    )
