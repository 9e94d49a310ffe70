"""
Pydantic validation schemas
"""
import enum
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from app.db.models import (
    CaseStatus,
    ChannelType,
    Decision,
    DocumentStatus,
    InboxStatus,
    PaymentStatus,
    ReviewerKind,
    TransferStatus,
)


class ReviewAction(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"

    def to_decision(self) -> Decision:
        return Decision.APPROVED if self == ReviewAction.APPROVE else Decision.REJECTED


# ============================================================================
# Jurisdiction & Reviewer Schemas
# ============================================================================

class JurisdictionCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)


class JurisdictionResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class FinalAuthorityCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = None
    approver_capacity: int = Field(..., ge=1, description="Maximum number of approvers in this jurisdiction")
    requires_signature: bool = True


class ApproverCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = None
    position: Optional[int] = Field(None, ge=1, description="Defaults to the end of the line")


class ReviewerResponse(BaseModel):
    id: UUID
    jurisdiction_id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    kind: ReviewerKind
    position: Optional[int] = None
    approver_capacity: Optional[int] = None
    requires_signature: bool
    signature_url: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class ReorderApproversRequest(BaseModel):
    reviewer_ids: List[UUID] = Field(..., min_length=1)


class ReviewerSlotResponse(BaseModel):
    reviewer_id: UUID
    kind: ReviewerKind
    position: Optional[int] = None
    signature_required: Optional[bool] = None


# ============================================================================
# Case Schemas
# ============================================================================

class DocumentResponse(BaseModel):
    id: UUID
    doc_type: str
    title: str
    url: str
    status: DocumentStatus
    rejection_message: Optional[str] = None
    superseded_by_id: Optional[UUID] = None
    retired_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CaseResponse(BaseModel):
    id: UUID
    application_number: str
    applicant_id: UUID
    land_id: UUID
    jurisdiction_id: UUID
    status: CaseStatus
    current_custodian_id: Optional[UUID] = None
    rejected_by_id: Optional[UUID] = None
    approved_by_id: Optional[UUID] = None
    case_number: Optional[str] = None
    signature_url: Optional[str] = None
    certificate_url: Optional[str] = None
    created_at: datetime
    submitted_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CaseDetailResponse(CaseResponse):
    documents: List[DocumentResponse] = []


class WorkflowResponse(BaseModel):
    message: str
    case: CaseResponse
    warnings: List[str] = []


class ReviewRequest(BaseModel):
    action: ReviewAction
    message: Optional[str] = Field(None, max_length=4000)


class DocumentReviewRequest(BaseModel):
    action: ReviewAction
    message: Optional[str] = Field(None, max_length=4000)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class BatchSignRequest(BaseModel):
    case_ids: List[UUID] = Field(..., min_length=1, max_length=200)
    comment: Optional[str] = None


class BatchItemResponse(BaseModel):
    case_id: UUID
    ok: bool
    case_number: Optional[str] = None
    certificate_url: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = []

    class Config:
        from_attributes = True


class BatchSignResponse(BaseModel):
    message: str
    succeeded: int
    results: List[BatchItemResponse]


class InboxEntryResponse(BaseModel):
    id: UUID
    case_id: UUID
    status: InboxStatus
    message_link: str
    created_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StageLogResponse(BaseModel):
    sequence: int
    reviewer_id: UUID
    reviewer_role: str
    decision: Decision
    message: Optional[str] = None
    arrived_at: datetime
    decided_at: datetime

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    sequence: int
    action: str
    performed_by_id: Optional[UUID] = None
    performed_by_role: str
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CaseHistoryResponse(BaseModel):
    stages: List[StageLogResponse]
    audit: List[AuditLogResponse]


# ============================================================================
# Ownership Transfer Schemas
# ============================================================================

class TransferInitiateRequest(BaseModel):
    land_id: UUID
    new_owner_email: EmailStr
    new_owner_phone: Optional[str] = None
    emails: List[EmailStr] = []
    phones: List[str] = []


class VerifyCodeRequest(BaseModel):
    target: str = Field(..., min_length=3)
    code: str = Field(..., min_length=6, max_length=6)


class ResendCodeRequest(BaseModel):
    target: str = Field(..., min_length=3)


class TransferDecisionRequest(BaseModel):
    comment: Optional[str] = None


class TransferRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=4000)


class TransferResponse(BaseModel):
    id: UUID
    land_id: UUID
    current_owner_id: UUID
    new_owner_email: str
    new_owner_id: Optional[UUID] = None
    status: TransferStatus
    expires_at: datetime
    governor_id: Optional[UUID] = None
    governor_comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransferActionResponse(BaseModel):
    message: str
    transfer: TransferResponse
    all_verified: Optional[bool] = None


class ChannelProgress(BaseModel):
    channel_type: ChannelType
    target: str
    is_verified: bool


class TransferProgressResponse(BaseModel):
    transfer_id: UUID
    status: TransferStatus
    total_channels: int
    verified_channels: int
    remaining_channels: int
    all_verified: bool
    expires_at: datetime
    channels: List[ChannelProgress]


# ============================================================================
# Payment Schemas
# ============================================================================

class PaymentInitRequest(BaseModel):
    land_id: UUID


class PaymentResponse(BaseModel):
    id: UUID
    reference: str
    amount: int
    provider: str
    status: PaymentStatus
    authorization_url: Optional[str] = None
    case_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentConfirmResponse(BaseModel):
    message: str
    case: CaseResponse


# ============================================================================
# Land Schemas
# ============================================================================

class LandCreate(BaseModel):
    jurisdiction_id: UUID
    address: str = Field(..., min_length=3)
    plot_number: Optional[str] = Field(None, max_length=64)
    square_meters: Optional[int] = None
    purpose: Optional[str] = Field(None, max_length=64)


class LandResponse(BaseModel):
    id: UUID
    owner_id: UUID
    jurisdiction_id: UUID
    address: str
    plot_number: Optional[str] = None
    square_meters: Optional[int] = None
    purpose: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LandSearchResponse(BaseModel):
    exists: bool
    count: int
    lands: List[LandResponse]
