# app/services/audit_service.py

from typing import Optional
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.models import ActorRole, AuditAction, CaseAuditLog, TransferAuditLog


class AuditService:
    """
    Append-only audit trail for cases and ownership transfers.

    Rows are written inside the caller's transaction so an audit entry
    commits or rolls back together with the transition it records.
    """

    def next_sequence(self, db: Session, case_id: uuid.UUID) -> int:
        current = (
            db.query(func.max(CaseAuditLog.sequence))
            .filter(CaseAuditLog.case_id == case_id)
            .scalar()
        )
        return (current or 0) + 1

    def log_case_event(
        self,
        db: Session,
        case_id: uuid.UUID,
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        role: ActorRole,
        comment: Optional[str] = None,
    ) -> CaseAuditLog:
        entry = CaseAuditLog(
            case_id=case_id,
            sequence=self.next_sequence(db, case_id),
            action=action,
            performed_by_id=actor_id,
            performed_by_role=role,
            comment=comment,
        )
        db.add(entry)
        db.flush()
        logger.info(
            "case_audit case=%s seq=%s action=%s actor=%s role=%s",
            case_id, entry.sequence, action.value, actor_id, role.value,
        )
        return entry

    def log_transfer_event(
        self,
        db: Session,
        transfer_id: uuid.UUID,
        action: str,
        actor_id: Optional[uuid.UUID],
        role: ActorRole,
        comment: Optional[str] = None,
    ) -> TransferAuditLog:
        entry = TransferAuditLog(
            transfer_id=transfer_id,
            action=action,
            performed_by_id=actor_id,
            performed_by_role=role,
            comment=comment,
        )
        db.add(entry)
        db.flush()
        logger.info("transfer_audit transfer=%s action=%s actor=%s", transfer_id, action, actor_id)
        return entry

    def case_trail(self, db: Session, case_id: uuid.UUID) -> list[CaseAuditLog]:
        return (
            db.query(CaseAuditLog)
            .filter(CaseAuditLog.case_id == case_id)
            .order_by(CaseAuditLog.sequence.asc())
            .all()
        )


audit_service = AuditService()
