"""
CofO application endpoints (applicant side)

POST   /cases/{case_id}/submit      → DRAFT -> IN_REVIEW (multipart files + documentsMeta)
POST   /cases/{case_id}/resubmit    → NEEDS_CORRECTION -> RESUBMITTED
POST   /cases/{case_id}/withdraw    → any open state -> WITHDRAWN
GET    /cases                       → the caller's applications
GET    /cases/{case_id}             → one application with its active documents
GET    /cases/{case_id}/history     → stage log + audit trail
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_actor, parse_documents_meta, read_uploads, require_applicant
from app.core.security import Actor
from app.db.database import get_db
from app.db.models import Case
from app.db.schemas import (
    CaseDetailResponse,
    CaseHistoryResponse,
    CaseResponse,
    DocumentResponse,
    WithdrawRequest,
    WorkflowResponse,
)
from app.services import case_store, reviewer_directory
from app.services.idempotency_service import get_idempotent_response, store_idempotent_response
from app.services.notification_service import notification_service
from app.services.workflow_engine import WorkflowOutcome, workflow_engine
from app.utils.exceptions import ForbiddenError

router = APIRouter()


def _to_response(outcome: WorkflowOutcome) -> WorkflowResponse:
    return WorkflowResponse(
        message=outcome.message,
        case=CaseResponse.model_validate(outcome.case),
        warnings=outcome.warnings,
    )


def _require_visible(db: Session, actor: Actor, case: Case) -> None:
    if actor.is_admin or case.applicant_id == actor.actor_id:
        return
    if reviewer_directory.is_member(case_store.get_reviewer(db, actor.actor_id), case.jurisdiction_id):
        return
    raise ForbiddenError("You cannot view this application")


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/{case_id}/submit", response_model=WorkflowResponse)
async def submit_application(
    case_id: UUID,
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    documents_meta: str = Form("[]", alias="documentsMeta"),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    """Submit a paid DRAFT application with its supporting documents."""
    cached = get_idempotent_response(idempotency_key, actor.actor_id, db)
    if cached:
        status_code, body = cached
        return JSONResponse(body, status_code=status_code)

    meta = parse_documents_meta(documents_meta)
    uploads = await read_uploads(files)
    outcome = workflow_engine.submit(db, actor, case_id, uploads, meta)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)

    response = _to_response(outcome)
    store_idempotent_response(
        idempotency_key, actor.actor_id, 200, response.model_dump(mode="json"), db,
        endpoint=f"cases/{case_id}/submit",
    )
    return response


@router.post("/{case_id}/resubmit", response_model=WorkflowResponse)
async def resubmit_application(
    case_id: UUID,
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    documents_meta: str = Form("[]", alias="documentsMeta"),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    """
    Replace the documents a reviewer asked to correct. Each documentsMeta item
    carries the ``doc_id`` it replaces; the case goes back to that reviewer.
    """
    cached = get_idempotent_response(idempotency_key, actor.actor_id, db)
    if cached:
        status_code, body = cached
        return JSONResponse(body, status_code=status_code)

    meta = parse_documents_meta(documents_meta)
    uploads = await read_uploads(files)
    outcome = workflow_engine.resubmit(db, actor, case_id, uploads, meta)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)

    response = _to_response(outcome)
    store_idempotent_response(
        idempotency_key, actor.actor_id, 200, response.model_dump(mode="json"), db,
        endpoint=f"cases/{case_id}/resubmit",
    )
    return response


@router.post("/{case_id}/withdraw", response_model=WorkflowResponse)
def withdraw_application(
    case_id: UUID,
    request: WithdrawRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    outcome = workflow_engine.withdraw(db, actor, case_id, request.reason)
    background_tasks.add_task(notification_service.dispatch, outcome.intents)
    return _to_response(outcome)


@router.get("/", response_model=List[CaseResponse])
def list_my_applications(
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    """Get all applications for the authenticated applicant"""
    return (
        db.query(Case)
        .filter(Case.applicant_id == actor.actor_id)
        .order_by(Case.created_at.desc())
        .all()
    )


@router.get("/{case_id}", response_model=CaseDetailResponse)
def get_application(
    case_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    case = case_store.get_case(db, case_id)
    _require_visible(db, actor, case)
    documents = [DocumentResponse.model_validate(d) for d in case_store.active_documents(db, case.id)]
    return CaseDetailResponse(**CaseResponse.model_validate(case).model_dump(), documents=documents)


@router.get("/{case_id}/history", response_model=CaseHistoryResponse)
def get_application_history(
    case_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Chronological stage decisions and the full audit trail."""
    case = case_store.get_case(db, case_id)
    _require_visible(db, actor, case)
    return case_store.history(db, case.id)
