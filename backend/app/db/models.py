"""
SQLAlchemy ORM Models

Jurisdictions, their reviewers, CofO cases and the review pipeline
(documents, inbox, stage/audit history), ownership transfers and payments.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.orm import relationship

from app.db.database import Base
from app.utils.helpers import utcnow

# ============================================================================
# Enums
# ============================================================================

class CaseStatus(str, enum.Enum):
    """CofO application status"""
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    NEEDS_CORRECTION = "NEEDS_CORRECTION"
    RESUBMITTED = "RESUBMITTED"
    APPROVED = "APPROVED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"


class ReviewerKind(str, enum.Enum):
    """Reviewer role within a jurisdiction pipeline"""
    approver = "approver"
    final_authority = "final_authority"


class DocumentStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class InboxStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    rejected = "rejected"


class Decision(str, enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AuditAction(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESUBMITTED = "RESUBMITTED"
    FINALIZED = "FINALIZED"
    CERTIFICATE_FAILED = "CERTIFICATE_FAILED"
    DOCUMENT_APPROVED = "DOCUMENT_APPROVED"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"


class ActorRole(str, enum.Enum):
    APPLICANT = "APPLICANT"
    APPROVER = "APPROVER"
    FINAL_AUTHORITY = "FINAL_AUTHORITY"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class TransferStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    VERIFIED_BY_PARTIES = "VERIFIED_BY_PARTIES"
    PENDING_GOVERNOR = "PENDING_GOVERNOR"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ChannelType(str, enum.Enum):
    email = "email"
    phone = "phone"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# ============================================================================
# Jurisdictions & people
# ============================================================================

class Jurisdiction(Base):
    __tablename__ = "jurisdictions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    reviewers = relationship("Reviewer", back_populates="jurisdiction")


class Applicant(Base):
    __tablename__ = "applicants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32))
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Reviewer(Base):
    """
    Internal user in a jurisdiction's pipeline.

    Approvers carry a position (unique per jurisdiction, cleared on
    deactivation). The single active final authority carries the approver
    capacity and the signature artifact.
    """
    __tablename__ = "reviewers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    jurisdiction_id = Column(Uuid, ForeignKey("jurisdictions.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(32))
    kind = Column(SQLEnum(ReviewerKind, name="reviewer_kind"), nullable=False)
    position = Column(Integer)
    approver_capacity = Column(Integer)
    requires_signature = Column(Boolean, default=True, nullable=False)
    signature_url = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    jurisdiction = relationship("Jurisdiction", back_populates="reviewers")

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "position", name="uq_reviewer_position"),
        Index(
            "uq_one_final_authority_per_jurisdiction",
            "jurisdiction_id",
            unique=True,
            sqlite_where=text("kind = 'final_authority' AND is_active = 1"),
            postgresql_where=text("kind = 'final_authority' AND is_active"),
        ),
    )


class Land(Base):
    __tablename__ = "lands"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False, index=True)
    jurisdiction_id = Column(Uuid, ForeignKey("jurisdictions.id"), nullable=False)
    address = Column(Text, nullable=False)
    plot_number = Column(String(64))
    square_meters = Column(Integer)
    purpose = Column(String(64))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    jurisdiction = relationship("Jurisdiction")
    owner = relationship("Applicant")

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "plot_number", name="uq_land_plot_per_jurisdiction"),
    )


# ============================================================================
# CofO cases
# ============================================================================

class Case(Base):
    __tablename__ = "cases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_number = Column(String(64), nullable=False, unique=True)
    applicant_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False, index=True)
    land_id = Column(Uuid, ForeignKey("lands.id"), nullable=False)
    jurisdiction_id = Column(Uuid, ForeignKey("jurisdictions.id"), nullable=False, index=True)
    status = Column(SQLEnum(CaseStatus, name="case_status"), default=CaseStatus.DRAFT, nullable=False)
    current_custodian_id = Column(Uuid, ForeignKey("reviewers.id"))
    rejected_by_id = Column(Uuid, ForeignKey("reviewers.id"))
    approved_by_id = Column(Uuid, ForeignKey("reviewers.id"))
    case_number = Column(String(32))
    signature_url = Column(Text)
    certificate_url = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    submitted_at = Column(DateTime)
    signed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    applicant = relationship("Applicant")
    land = relationship("Land")
    jurisdiction = relationship("Jurisdiction")
    current_custodian = relationship("Reviewer", foreign_keys=[current_custodian_id])
    rejected_by = relationship("Reviewer", foreign_keys=[rejected_by_id])
    approved_by = relationship("Reviewer", foreign_keys=[approved_by_id])
    documents = relationship("ReviewDocument", back_populates="case", order_by="ReviewDocument.created_at")

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "case_number", name="uq_case_number_per_jurisdiction"),
    )


class ReviewDocument(Base):
    __tablename__ = "review_documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    doc_type = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    status = Column(SQLEnum(DocumentStatus, name="document_status"), default=DocumentStatus.pending, nullable=False)
    rejection_message = Column(Text)
    superseded_by_id = Column(Uuid, ForeignKey("review_documents.id"))
    retired_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    case = relationship("Case", back_populates="documents")


class InboxEntry(Base):
    """A reviewer owes a decision on a case while this row is pending."""
    __tablename__ = "inbox_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    receiver_id = Column(Uuid, ForeignKey("reviewers.id"), nullable=False, index=True)
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    status = Column(SQLEnum(InboxStatus, name="inbox_status"), default=InboxStatus.pending, nullable=False)
    message_link = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    resolved_at = Column(DateTime)

    case = relationship("Case")

    __table_args__ = (
        Index(
            "uq_one_pending_inbox_entry_per_case",
            "case_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class StageLog(Base):
    __tablename__ = "stage_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    reviewer_id = Column(Uuid, ForeignKey("reviewers.id"), nullable=False)
    reviewer_role = Column(SQLEnum(ActorRole, name="actor_role"), nullable=False)
    decision = Column(SQLEnum(Decision, name="decision"), nullable=False)
    message = Column(Text)
    arrived_at = Column(DateTime, nullable=False)
    decided_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("case_id", "sequence", name="uq_stage_log_sequence"),
    )


class CaseAuditLog(Base):
    __tablename__ = "case_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    action = Column(SQLEnum(AuditAction, name="audit_action"), nullable=False)
    performed_by_id = Column(Uuid)
    performed_by_role = Column(SQLEnum(ActorRole, name="actor_role"), nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("case_id", "sequence", name="uq_case_audit_sequence"),
    )


class CaseNumberCounter(Base):
    __tablename__ = "case_number_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    jurisdiction_id = Column(Uuid, ForeignKey("jurisdictions.id"), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "year", name="uq_case_number_counter"),
    )


def _reject_history_rewrite(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} rows are append-only")


for _history_model in (CaseAuditLog, StageLog):
    event.listen(_history_model, "before_update", _reject_history_rewrite)
    event.listen(_history_model, "before_delete", _reject_history_rewrite)


# ============================================================================
# Payments
# ============================================================================

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    applicant_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False, index=True)
    land_id = Column(Uuid, ForeignKey("lands.id"), nullable=False)
    case_id = Column(Uuid, ForeignKey("cases.id"))
    reference = Column(String(64), nullable=False, unique=True)
    amount = Column(Integer, nullable=False)
    provider = Column(String(32), nullable=False)
    status = Column(SQLEnum(PaymentStatus, name="payment_status"), default=PaymentStatus.PENDING, nullable=False)
    authorization_url = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    confirmed_at = Column(DateTime)


# ============================================================================
# Ownership transfers
# ============================================================================

class OwnershipTransfer(Base):
    __tablename__ = "ownership_transfers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    land_id = Column(Uuid, ForeignKey("lands.id"), nullable=False, index=True)
    current_owner_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False)
    new_owner_email = Column(String(255), nullable=False)
    new_owner_phone = Column(String(32))
    new_owner_id = Column(Uuid, ForeignKey("applicants.id"))
    status = Column(SQLEnum(TransferStatus, name="transfer_status"), default=TransferStatus.INITIATED, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    governor_id = Column(Uuid, ForeignKey("reviewers.id"))
    governor_comment = Column(Text)
    rejection_reason = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    land = relationship("Land")
    verifications = relationship("TransferVerification", back_populates="transfer", order_by="TransferVerification.issued_at")
    documents = relationship("TransferDocument", back_populates="transfer")


class TransferVerification(Base):
    __tablename__ = "transfer_verifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transfer_id = Column(Uuid, ForeignKey("ownership_transfers.id"), nullable=False, index=True)
    channel_type = Column(SQLEnum(ChannelType, name="channel_type"), nullable=False)
    target = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    verified_at = Column(DateTime)

    transfer = relationship("OwnershipTransfer", back_populates="verifications")

    __table_args__ = (
        UniqueConstraint("transfer_id", "target", name="uq_transfer_verification_target"),
    )


class TransferDocument(Base):
    __tablename__ = "transfer_documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transfer_id = Column(Uuid, ForeignKey("ownership_transfers.id"), nullable=False, index=True)
    doc_type = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    transfer = relationship("OwnershipTransfer", back_populates="documents")


class TransferAuditLog(Base):
    __tablename__ = "transfer_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transfer_id = Column(Uuid, ForeignKey("ownership_transfers.id"), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    performed_by_id = Column(Uuid)
    performed_by_role = Column(SQLEnum(ActorRole, name="actor_role"), nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class OwnershipHistory(Base):
    __tablename__ = "ownership_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    land_id = Column(Uuid, ForeignKey("lands.id"), nullable=False, index=True)
    from_owner_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False)
    to_owner_id = Column(Uuid, ForeignKey("applicants.id"), nullable=False)
    transfer_id = Column(Uuid, ForeignKey("ownership_transfers.id"), nullable=False)
    authorized_by_id = Column(Uuid, ForeignKey("reviewers.id"), nullable=False)
    transferred_at = Column(DateTime, default=utcnow, nullable=False)


event.listen(TransferAuditLog, "before_update", _reject_history_rewrite)
event.listen(TransferAuditLog, "before_delete", _reject_history_rewrite)


# ============================================================================
# Idempotency
# ============================================================================

class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    idempotency_key = Column(String(128), nullable=False)
    actor_id = Column(Uuid, nullable=False)
    endpoint = Column(String(255), nullable=False, default="")
    status_code = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("idempotency_key", "actor_id", name="uq_idempotency_key_actor"),
    )
