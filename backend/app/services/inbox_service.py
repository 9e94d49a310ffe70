"""
Inbox Service
=============
Per-reviewer queue of cases awaiting a decision. A pending row is the only
proof that it is a reviewer's turn on a case; the partial unique index on
``inbox_entries`` keeps that to one pending row per case.

Resolution is a guarded UPDATE keyed on the row still being pending, so of
two concurrent decisions on the same entry exactly one succeeds and the other
gets ConflictError.
"""
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.models import Case, InboxEntry, InboxStatus
from app.utils.exceptions import ConflictError
from app.utils.helpers import utcnow


def message_link(case: Case) -> str:
    return f"CofO/{case.application_number}"


def create_pending(db: Session, receiver_id: uuid.UUID, case: Case) -> InboxEntry:
    case_id = case.id
    entry = InboxEntry(
        receiver_id=receiver_id,
        case_id=case_id,
        status=InboxStatus.pending,
        message_link=message_link(case),
    )
    # Savepoint keeps the caller's transaction usable after a duplicate.
    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError as exc:
        logger.warning("inbox_duplicate_pending case=%s receiver=%s", case_id, receiver_id)
        raise ConflictError(
            "Another review is already pending for this application"
        ) from exc
    return entry


def find_pending(db: Session, case_id: uuid.UUID) -> Optional[InboxEntry]:
    return (
        db.query(InboxEntry)
        .filter(InboxEntry.case_id == case_id, InboxEntry.status == InboxStatus.pending)
        .first()
    )


def find_pending_for(db: Session, case_id: uuid.UUID, receiver_id: uuid.UUID) -> Optional[InboxEntry]:
    return (
        db.query(InboxEntry)
        .filter(
            InboxEntry.case_id == case_id,
            InboxEntry.receiver_id == receiver_id,
            InboxEntry.status == InboxStatus.pending,
        )
        .first()
    )


def resolve(db: Session, entry_id: uuid.UUID, outcome: InboxStatus) -> None:
    """Move a pending entry to completed/rejected exactly once."""
    if outcome == InboxStatus.pending:
        raise ValueError("an inbox entry cannot be resolved back to pending")
    result = db.execute(
        update(InboxEntry)
        .where(InboxEntry.id == entry_id, InboxEntry.status == InboxStatus.pending)
        .values(status=outcome, resolved_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("This review has already been decided")


def complete_all_pending(db: Session, case_id: uuid.UUID) -> int:
    result = db.execute(
        update(InboxEntry)
        .where(InboxEntry.case_id == case_id, InboxEntry.status == InboxStatus.pending)
        .values(status=InboxStatus.completed, resolved_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def count_pending_for_reviewer(db: Session, reviewer_id: uuid.UUID) -> int:
    return (
        db.query(InboxEntry)
        .filter(InboxEntry.receiver_id == reviewer_id, InboxEntry.status == InboxStatus.pending)
        .count()
    )


def list_for_reviewer(
    db: Session,
    reviewer_id: uuid.UUID,
    status: Optional[InboxStatus] = InboxStatus.pending,
) -> list[InboxEntry]:
    query = db.query(InboxEntry).filter(InboxEntry.receiver_id == reviewer_id)
    if status is not None:
        query = query.filter(InboxEntry.status == status)
    return query.order_by(InboxEntry.created_at.asc()).all()
