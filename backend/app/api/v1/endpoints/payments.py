"""
CofO application fee endpoints
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.v1.deps import require_applicant
from app.core.security import Actor
from app.db.database import get_db
from app.db.schemas import CaseResponse, PaymentConfirmResponse, PaymentInitRequest, PaymentResponse
from app.services.payment_service import payment_service

router = APIRouter()


@router.post("/initialize", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def initialize_payment(
    request: PaymentInitRequest,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    """Start checkout for a land parcel the caller owns."""
    return payment_service.initialize_payment(db, actor, request.land_id)


@router.get("/verify", response_model=PaymentConfirmResponse)
def verify_payment(
    reference: str = Query(..., min_length=4, description="Gateway transaction reference"),
    db: Session = Depends(get_db),
):
    """
    Gateway callback target. The reference is checked with the gateway before
    the DRAFT application is created; repeating the call returns the same case.
    """
    case = payment_service.confirm_payment(db, reference)
    return PaymentConfirmResponse(
        message="Payment verified, application created",
        case=CaseResponse.model_validate(case),
    )
