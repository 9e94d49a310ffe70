"""
Case Store
==========
Loaders and append-only writers for the authoritative case record: the case
row itself, its documents, the stage log and the per-jurisdiction case number
counter. Callers own the transaction; nothing here commits.
"""
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func, insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import (
    ActorRole,
    Case,
    CaseNumberCounter,
    Decision,
    ReviewDocument,
    Reviewer,
    StageLog,
)
from app.services.audit_service import audit_service
from app.utils.exceptions import ConfigurationError, not_found
from app.utils.validators import validate_case_number


def get_case(db: Session, case_id: uuid.UUID, for_update: bool = False) -> Case:
    query = db.query(Case).filter(Case.id == case_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    case = query.first()
    if case is None:
        raise not_found("Case", case_id)
    return case


def get_reviewer(db: Session, reviewer_id: uuid.UUID) -> Optional[Reviewer]:
    return db.query(Reviewer).filter(Reviewer.id == reviewer_id).first()


def active_documents(db: Session, case_id: uuid.UUID) -> list[ReviewDocument]:
    return (
        db.query(ReviewDocument)
        .filter(ReviewDocument.case_id == case_id, ReviewDocument.retired_at.is_(None))
        .order_by(ReviewDocument.created_at.asc())
        .all()
    )


def append_stage_log(
    db: Session,
    case_id: uuid.UUID,
    reviewer_id: uuid.UUID,
    role: ActorRole,
    decision: Decision,
    message: Optional[str],
    arrived_at,
) -> StageLog:
    current = db.query(func.max(StageLog.sequence)).filter(StageLog.case_id == case_id).scalar()
    entry = StageLog(
        case_id=case_id,
        sequence=(current or 0) + 1,
        reviewer_id=reviewer_id,
        reviewer_role=role,
        decision=decision,
        message=message,
        arrived_at=arrived_at,
    )
    db.add(entry)
    db.flush()
    return entry


def stage_logs(db: Session, case_id: uuid.UUID) -> list[StageLog]:
    return (
        db.query(StageLog)
        .filter(StageLog.case_id == case_id)
        .order_by(StageLog.sequence.asc())
        .all()
    )


def history(db: Session, case_id: uuid.UUID) -> dict:
    get_case(db, case_id)
    return {
        "stages": stage_logs(db, case_id),
        "audit": audit_service.case_trail(db, case_id),
    }


# ============================================================================
# Case numbers
# ============================================================================

def format_case_number(year: int, value: int, prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.CASE_NUMBER_PREFIX}-{year}-{value:06d}"


def _highest_issued(db: Session, jurisdiction_id: uuid.UUID, year: int, prefix: str) -> int:
    issued = (
        db.query(Case.case_number)
        .filter(
            Case.jurisdiction_id == jurisdiction_id,
            Case.case_number.like(f"{prefix}-{year}-%"),
        )
        .all()
    )
    highest = 0
    for (number,) in issued:
        tail = number.rsplit("-", 1)[-1]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest


def _seed_counter(db: Session, jurisdiction_id: uuid.UUID, year: int, seed: int) -> None:
    values = {"jurisdiction_id": jurisdiction_id, "year": year, "last_value": seed}
    dialect = db.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        db.execute(
            insert_fn(CaseNumberCounter)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["jurisdiction_id", "year"])
        )
        return
    savepoint = db.begin_nested()
    try:
        db.execute(insert(CaseNumberCounter).values(**values))
        savepoint.commit()
    except IntegrityError:
        savepoint.rollback()


def next_case_number(db: Session, jurisdiction_id: uuid.UUID, year: int) -> str:
    """
    Allocate the next number for a jurisdiction-year.

    The counter row is seeded from the highest number already issued, then
    bumped with a single UPDATE so concurrent finalizations serialize on the
    row. The unique (jurisdiction_id, case_number) constraint is the backstop.
    """
    prefix = settings.CASE_NUMBER_PREFIX
    _seed_counter(db, jurisdiction_id, year, _highest_issued(db, jurisdiction_id, year, prefix))
    db.execute(
        update(CaseNumberCounter)
        .where(
            CaseNumberCounter.jurisdiction_id == jurisdiction_id,
            CaseNumberCounter.year == year,
        )
        .values(last_value=CaseNumberCounter.last_value + 1)
    )
    value = (
        db.query(CaseNumberCounter.last_value)
        .filter(
            CaseNumberCounter.jurisdiction_id == jurisdiction_id,
            CaseNumberCounter.year == year,
        )
        .scalar()
    )
    number = format_case_number(year, value, prefix)
    if not validate_case_number(number, prefix):
        raise ConfigurationError(
            f"Case number sequence for {year} is exhausted; {number} does not fit the registry format"
        )
    return number
