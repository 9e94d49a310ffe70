"""
Land parcel endpoints
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_actor, require_applicant
from app.core.security import Actor
from app.db.database import get_db
from app.db.schemas import LandCreate, LandResponse, LandSearchResponse
from app.services.land_service import land_service

router = APIRouter()


@router.post("/", response_model=LandResponse, status_code=status.HTTP_201_CREATED)
def register_land(
    request: LandCreate,
    actor: Actor = Depends(require_applicant),
    db: Session = Depends(get_db),
):
    """Put a parcel on record for the caller. Duplicate plots return 409."""
    return land_service.register_land(
        db,
        actor,
        request.jurisdiction_id,
        request.address,
        plot_number=request.plot_number,
        square_meters=request.square_meters,
        purpose=request.purpose,
    )


@router.get("/search", response_model=LandSearchResponse)
def search_land(
    jurisdiction_id: Optional[UUID] = Query(None),
    plot_number: Optional[str] = Query(None),
    address: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    lands = land_service.search_existence(db, jurisdiction_id, plot_number, address)
    return LandSearchResponse(
        exists=bool(lands),
        count=len(lands),
        lands=[LandResponse.model_validate(land) for land in lands],
    )
