"""
Land Service: parcel registration
==================================
A parcel has to be on record before its owner can pay for a CofO. Plot
numbers are unique within a jurisdiction and addresses are compared after
whitespace and case folding, so the same parcel cannot be registered twice.
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import Actor
from app.db.models import Applicant, Jurisdiction, Land
from app.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    PreconditionFailedError,
    not_found,
)

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return re.sub(r"\s+", " ", (address or "").strip())


def normalize_plot_number(plot_number: Optional[str]) -> Optional[str]:
    cleaned = re.sub(r"\s+", "", plot_number or "").upper()
    return cleaned or None


class LandService:

    def _matching(self, db: Session, jurisdiction_id: Optional[uuid.UUID], plot_number: Optional[str], address: Optional[str]):
        criteria = []
        if plot_number:
            criteria.append(Land.plot_number == plot_number)
        if address:
            criteria.append(func.lower(Land.address) == address.lower())
        query = db.query(Land).filter(or_(*criteria))
        if jurisdiction_id is not None:
            query = query.filter(Land.jurisdiction_id == jurisdiction_id)
        return query

    def register_land(
        self,
        db: Session,
        actor: Actor,
        jurisdiction_id: uuid.UUID,
        address: str,
        plot_number: Optional[str] = None,
        square_meters: Optional[int] = None,
        purpose: Optional[str] = None,
    ) -> Land:
        address = normalize_address(address)
        plot_number = normalize_plot_number(plot_number)
        if not address:
            raise PreconditionFailedError("Land address is required")
        if square_meters is not None and square_meters <= 0:
            raise PreconditionFailedError("Land size must be a positive number of square meters")

        owner = db.query(Applicant).filter(Applicant.id == actor.actor_id).first()
        if owner is None:
            raise ForbiddenError("Only registered applicants can register land")
        if db.query(Jurisdiction).filter(Jurisdiction.id == jurisdiction_id).first() is None:
            raise not_found("Jurisdiction", jurisdiction_id)

        existing = self._matching(db, jurisdiction_id, plot_number, address).first()
        if existing is not None:
            logger.warning("land_duplicate jurisdiction=%s plot=%s existing=%s", jurisdiction_id, plot_number, existing.id)
            raise ConflictError("This parcel is already registered", extra={"land_id": str(existing.id)})

        land = Land(
            owner_id=owner.id,
            jurisdiction_id=jurisdiction_id,
            address=address,
            plot_number=plot_number,
            square_meters=square_meters,
            purpose=purpose,
        )
        try:
            db.add(land)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning("land_duplicate_race jurisdiction=%s plot=%s", jurisdiction_id, plot_number)
            raise ConflictError("This parcel is already registered") from exc
        db.refresh(land)
        logger.info("land_registered land=%s owner=%s jurisdiction=%s", land.id, owner.id, jurisdiction_id)
        return land

    def search_existence(
        self,
        db: Session,
        jurisdiction_id: Optional[uuid.UUID] = None,
        plot_number: Optional[str] = None,
        address: Optional[str] = None,
    ) -> List[Land]:
        """Parcels already on record under this plot number or address."""
        plot_number = normalize_plot_number(plot_number)
        address = normalize_address(address)
        if not plot_number and not address:
            raise PreconditionFailedError("A plot number or address is required")
        return self._matching(db, jurisdiction_id, plot_number, address).order_by(Land.created_at).all()


land_service = LandService()
