"""
Idempotency Service
===================
Replays the stored response when a side-effecting request (application
submission, resubmission, batch signing) is retried with the same
Idempotency-Key, so a client retry after a dropped connection cannot submit
twice.

Usage in an endpoint:
    cached = get_idempotent_response(key, actor.actor_id, db)
    if cached:
        status_code, body = cached
        return JSONResponse(body, status_code=status_code)

    result = do_the_work()

    store_idempotent_response(key, actor.actor_id, 200, result, db)
    return result
"""
from __future__ import annotations

import uuid
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.db.models import IdempotencyRecord
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def get_idempotent_response(
    key: Optional[str],
    actor_id: uuid.UUID,
    db: Session,
) -> Optional[tuple[int, dict]]:
    """
    Return (status_code, response_body) if a non-expired record exists for
    this (key, actor_id) pair, otherwise None.
    """
    if not key:
        return None

    row: Optional[IdempotencyRecord] = (
        db.query(IdempotencyRecord)
        .filter(
            IdempotencyRecord.idempotency_key == key,
            IdempotencyRecord.actor_id == actor_id,
            IdempotencyRecord.expires_at > utcnow(),
        )
        .first()
    )

    if row is None:
        return None

    logger.info(
        "idempotency_hit key=%s actor=%s endpoint=%s",
        key, actor_id, row.endpoint,
    )
    return (row.status_code, row.response_body)


def store_idempotent_response(
    key: Optional[str],
    actor_id: uuid.UUID,
    status_code: int,
    response_body: dict,
    db: Session,
    endpoint: str = "",
    ttl_hours: Optional[int] = None,
) -> None:
    """
    Persist the result of a side-effecting operation.
    On a duplicate key the first writer wins.
    """
    if not key:
        return

    now = utcnow()
    row = IdempotencyRecord(
        idempotency_key=key,
        actor_id=actor_id,
        endpoint=endpoint,
        status_code=status_code,
        response_body=response_body,
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours or settings.IDEMPOTENCY_TTL_HOURS),
    )
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("idempotency_duplicate_ignored key=%s actor=%s", key, actor_id)


def delete_expired_idempotency_records(db: Session) -> int:
    """Sweep expired rows. Called by a periodic background task."""
    deleted = (
        db.query(IdempotencyRecord)
        .filter(IdempotencyRecord.expires_at < utcnow())
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
