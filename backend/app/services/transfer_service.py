"""
Ownership Transfer Service
==========================
Multi-party verification gate for land ownership transfers:

    INITIATED -> VERIFIED_BY_PARTIES -> PENDING_GOVERNOR -> {APPROVED | REJECTED}

with EXPIRED reachable from the first two states once ``expires_at`` passes.
Expiry is applied lazily whenever a transfer is touched.

Each contact channel (owner emails/phones plus the new owner's contact) gets
its own one-time code. The transfer leaves INITIATED only when no unverified
channel remains; the transfer row is locked while a code is checked so two
parallel verifications cannot both miss the last-channel transition.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import Actor
from app.db.models import (
    ActorRole,
    Applicant,
    ChannelType,
    Land,
    OwnershipHistory,
    OwnershipTransfer,
    TransferDocument,
    TransferStatus,
    TransferVerification,
)
from app.services import reviewer_directory
from app.services.audit_service import audit_service
from app.services.document_service import UploadedFile, document_service
from app.services.notification_service import CHANNEL_EMAIL, CHANNEL_SMS, NotificationIntent
from app.services.storage_service import storage_service
from app.utils.exceptions import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    UpstreamFailureError,
    not_found,
)
from app.utils.helpers import generate_code, mask_target, normalize_email, normalize_phone, utcnow
from app.utils.validators import validate_email, validate_phone

logger = logging.getLogger(__name__)

OPEN_STATES = (TransferStatus.INITIATED, TransferStatus.VERIFIED_BY_PARTIES)


@dataclass
class TransferOutcome:
    transfer: OwnershipTransfer
    message: str
    intents: List[NotificationIntent] = field(default_factory=list)
    all_verified: Optional[bool] = None


def _code_intent(channel_type: ChannelType, target: str, code: str, land_id: uuid.UUID) -> NotificationIntent:
    minutes = settings.TRANSFER_CODE_TTL_MINUTES
    body = (
        f"Authorization code for the ownership transfer of land {land_id}: {code}. "
        f"It expires in {minutes} minutes. Do not share this code."
    )
    return NotificationIntent(
        channel=CHANNEL_EMAIL if channel_type == ChannelType.email else CHANNEL_SMS,
        target=target,
        subject="Land Ownership Transfer Authorization",
        body=body,
    )


class TransferService:

    def __init__(self, storage=None, validator=None):
        self.storage = storage or storage_service
        self.validator = validator or document_service

    # ------------------------------------------------------------------
    # loading helpers
    # ------------------------------------------------------------------

    def _get(self, db: Session, transfer_id: uuid.UUID, for_update: bool = False) -> OwnershipTransfer:
        query = db.query(OwnershipTransfer).filter(OwnershipTransfer.id == transfer_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        transfer = query.first()
        if transfer is None:
            raise not_found("Transfer", transfer_id)
        return transfer

    def _require_owner(self, transfer: OwnershipTransfer, actor: Actor) -> None:
        if transfer.current_owner_id != actor.actor_id:
            raise ForbiddenError("Only the current owner can act on this transfer")

    def _expire_if_due(self, db: Session, transfer: OwnershipTransfer) -> None:
        if transfer.status in OPEN_STATES and transfer.expires_at <= utcnow():
            transfer.status = TransferStatus.EXPIRED
            audit_service.log_transfer_event(db, transfer.id, "EXPIRED", None, ActorRole.SYSTEM)
            db.commit()
            logger.info("transfer_expired transfer=%s", transfer.id)
        if transfer.status == TransferStatus.EXPIRED:
            raise PreconditionFailedError("This transfer has expired; please start a new one")

    def _channels(
        self,
        emails: List[str],
        phones: List[str],
        new_owner_email: str,
        new_owner_phone: Optional[str],
    ) -> List[tuple[ChannelType, str]]:
        channels: List[tuple[ChannelType, str]] = []
        seen = set()
        for raw in [*emails, new_owner_email]:
            target = normalize_email(raw)
            if not validate_email(target):
                raise PreconditionFailedError(f"Invalid email address: {raw}")
            if target not in seen:
                seen.add(target)
                channels.append((ChannelType.email, target))
        for raw in [*phones, *([new_owner_phone] if new_owner_phone else [])]:
            target = normalize_phone(raw)
            if not validate_phone(target):
                raise PreconditionFailedError(f"Invalid phone number: {raw}")
            if target not in seen:
                seen.add(target)
                channels.append((ChannelType.phone, target))
        return channels

    # ------------------------------------------------------------------
    # verification phase
    # ------------------------------------------------------------------

    def initiate(
        self,
        db: Session,
        actor: Actor,
        land_id: uuid.UUID,
        new_owner_email: str,
        emails: Optional[List[str]] = None,
        phones: Optional[List[str]] = None,
        new_owner_phone: Optional[str] = None,
    ) -> TransferOutcome:
        land = db.query(Land).filter(Land.id == land_id).first()
        if land is None:
            raise not_found("Land", land_id)
        if land.owner_id != actor.actor_id:
            raise ForbiddenError("You are not the owner of this land.")
        channels = self._channels(emails or [], phones or [], new_owner_email, new_owner_phone)
        active = (
            db.query(OwnershipTransfer)
            .filter(
                OwnershipTransfer.land_id == land.id,
                or_(
                    and_(OwnershipTransfer.status.in_(OPEN_STATES), OwnershipTransfer.expires_at > utcnow()),
                    OwnershipTransfer.status == TransferStatus.PENDING_GOVERNOR,
                ),
            )
            .first()
        )
        if active is not None:
            raise ConflictError("A transfer for this land is already in progress")

        now = utcnow()
        expires_at = now + timedelta(minutes=settings.TRANSFER_CODE_TTL_MINUTES)
        intents: List[NotificationIntent] = []
        try:
            transfer = OwnershipTransfer(
                land_id=land.id,
                current_owner_id=actor.actor_id,
                new_owner_email=normalize_email(new_owner_email),
                new_owner_phone=normalize_phone(new_owner_phone) if new_owner_phone else None,
                status=TransferStatus.INITIATED,
                expires_at=expires_at,
            )
            db.add(transfer)
            db.flush()
            for channel_type, target in channels:
                code = generate_code()
                db.add(TransferVerification(
                    transfer_id=transfer.id,
                    channel_type=channel_type,
                    target=target,
                    code=code,
                    issued_at=now,
                    expires_at=expires_at,
                ))
                intents.append(_code_intent(channel_type, target, code, land.id))
            audit_service.log_transfer_event(
                db, transfer.id, "INITIATED", actor.actor_id, ActorRole.APPLICANT,
                f"{len(channels)} channel(s) to verify",
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to initiate transfer for land {land_id}: {str(e)}")
            raise
        db.refresh(transfer)
        logger.info("transfer_initiated transfer=%s channels=%d", transfer.id, len(channels))
        return TransferOutcome(
            transfer=transfer,
            message="Authorization codes sent to all selected channels.",
            intents=intents,
            all_verified=False,
        )

    def verify_code(
        self,
        db: Session,
        actor: Actor,
        transfer_id: uuid.UUID,
        target: str,
        code: str,
    ) -> TransferOutcome:
        transfer = self._get(db, transfer_id, for_update=True)
        self._require_owner(transfer, actor)
        self._expire_if_due(db, transfer)
        verification = self._find_verification(db, transfer.id, target)
        if verification.is_verified:
            raise PreconditionFailedError("Already verified")
        if verification.code != (code or "").strip():
            raise PreconditionFailedError("Invalid code")
        if verification.expires_at <= utcnow():
            raise PreconditionFailedError("Code expired")
        if transfer.status != TransferStatus.INITIATED:
            raise PreconditionFailedError(f"Transfer is {transfer.status.value}; codes can no longer be verified")

        try:
            verification.is_verified = True
            verification.verified_at = utcnow()
            db.flush()
            remaining = (
                db.query(TransferVerification)
                .filter(
                    TransferVerification.transfer_id == transfer.id,
                    TransferVerification.is_verified.is_(False),
                )
                .count()
            )
            if remaining == 0:
                transfer.status = TransferStatus.VERIFIED_BY_PARTIES
                audit_service.log_transfer_event(
                    db, transfer.id, "VERIFIED_BY_PARTIES", actor.actor_id, ActorRole.APPLICANT
                )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to verify code for transfer {transfer_id}: {str(e)}")
            raise
        db.refresh(transfer)
        logger.info(
            "transfer_code_verified transfer=%s target=%s remaining=%d",
            transfer.id, mask_target(verification.target), remaining,
        )
        return TransferOutcome(
            transfer=transfer,
            message="Code verified successfully.",
            all_verified=remaining == 0,
        )

    def _find_verification(self, db: Session, transfer_id: uuid.UUID, target: str) -> TransferVerification:
        raw = (target or "").strip()
        candidates = {raw, normalize_email(raw)}
        if not validate_email(normalize_email(raw)):
            candidates.add(normalize_phone(raw))
        verification = (
            db.query(TransferVerification)
            .filter(
                TransferVerification.transfer_id == transfer_id,
                TransferVerification.target.in_(candidates),
            )
            .first()
        )
        if verification is None:
            raise NotFoundError("Verification not found")
        return verification

    def resend_code(
        self,
        db: Session,
        actor: Actor,
        transfer_id: uuid.UUID,
        target: str,
    ) -> TransferOutcome:
        transfer = self._get(db, transfer_id, for_update=True)
        self._require_owner(transfer, actor)
        self._expire_if_due(db, transfer)
        verification = self._find_verification(db, transfer.id, target)
        if verification.is_verified:
            raise PreconditionFailedError("Already verified")
        now = utcnow()
        ready_at = verification.issued_at + timedelta(seconds=settings.TRANSFER_RESEND_COOLDOWN_SECONDS)
        if now < ready_at:
            wait = int((ready_at - now).total_seconds()) + 1
            raise PreconditionFailedError(
                f"Please wait {wait} seconds before requesting a new code",
                extra={"retry_after_seconds": wait},
            )

        code = generate_code()
        try:
            verification.code = code
            verification.issued_at = now
            verification.expires_at = now + timedelta(minutes=settings.TRANSFER_CODE_TTL_MINUTES)
            if transfer.expires_at < verification.expires_at:
                transfer.expires_at = verification.expires_at
            audit_service.log_transfer_event(
                db, transfer.id, "CODE_RESENT", actor.actor_id, ActorRole.APPLICANT,
                mask_target(verification.target),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to resend code for transfer {transfer_id}: {str(e)}")
            raise
        db.refresh(transfer)
        return TransferOutcome(
            transfer=transfer,
            message="A new code has been sent.",
            intents=[_code_intent(verification.channel_type, verification.target, code, transfer.land_id)],
        )

    # ------------------------------------------------------------------
    # hand-off to the final authority
    # ------------------------------------------------------------------

    def submit_documents(
        self,
        db: Session,
        actor: Actor,
        transfer_id: uuid.UUID,
        files: List[UploadedFile],
        documents_meta: List[dict],
    ) -> TransferOutcome:
        if not files:
            raise PreconditionFailedError("No files uploaded")
        if len(documents_meta) != len(files):
            raise PreconditionFailedError("Documents metadata count must match the number of uploaded files")
        validation = self.validator.validate_all(files)
        if not validation.valid:
            raise PreconditionFailedError("One or more documents failed validation", extra={"errors": validation.errors})

        transfer = self._get(db, transfer_id)
        self._require_owner(transfer, actor)
        self._expire_if_due(db, transfer)
        if transfer.status != TransferStatus.VERIFIED_BY_PARTIES:
            raise PreconditionFailedError("All parties must verify the transfer before documents can be submitted")
        land = db.query(Land).filter(Land.id == transfer.land_id).first()
        authority = reviewer_directory.final_authority_for(db, land.jurisdiction_id)
        if authority is None:
            raise ConfigurationError(
                "No final authority is configured for this jurisdiction; ownership transfers cannot be reviewed"
            )

        stored = []
        for item in files:
            try:
                stored.append(self.storage.store(item.content, item.filename, item.mime_type, "transfer_documents"))
            except Exception as exc:
                logger.error("transfer_document_upload_failed file=%s error=%s", item.filename, exc)
                raise UpstreamFailureError(f"Document upload failed for {item.filename}") from exc

        try:
            result = db.execute(
                update(OwnershipTransfer)
                .where(
                    OwnershipTransfer.id == transfer.id,
                    OwnershipTransfer.status == TransferStatus.VERIFIED_BY_PARTIES,
                )
                .values(status=TransferStatus.PENDING_GOVERNOR, governor_id=authority.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("Transfer documents were already submitted")
            for meta, obj, item in zip(documents_meta, stored, files):
                db.add(TransferDocument(
                    transfer_id=transfer.id,
                    doc_type=(meta.get("type") or "other").strip(),
                    title=(meta.get("title") or item.filename).strip(),
                    url=obj.url,
                ))
            audit_service.log_transfer_event(
                db, transfer.id, "DOCUMENTS_SUBMITTED", actor.actor_id, ActorRole.APPLICANT,
                f"{len(files)} document(s)",
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to submit transfer documents for {transfer_id}: {str(e)}")
            raise
        db.refresh(transfer)
        return TransferOutcome(
            transfer=transfer,
            message="Documents submitted for final authority review",
            intents=[NotificationIntent(
                channel=CHANNEL_EMAIL,
                target=authority.email,
                subject="Ownership transfer awaiting your decision",
                body=f"Ownership transfer {transfer.id} for land {transfer.land_id} is awaiting your review.",
            )],
        )

    def _require_governor(self, db: Session, actor: Actor, transfer: OwnershipTransfer):
        reviewer = reviewer_directory.require_reviewer(db, actor.actor_id)
        if transfer.governor_id != reviewer.id:
            raise ForbiddenError("This transfer is not assigned to you")
        if transfer.status != TransferStatus.PENDING_GOVERNOR:
            raise PreconditionFailedError(f"Transfer is {transfer.status.value} and cannot be decided")
        return reviewer

    def _decide(self, db: Session, transfer: OwnershipTransfer, status: TransferStatus, **values) -> None:
        result = db.execute(
            update(OwnershipTransfer)
            .where(
                OwnershipTransfer.id == transfer.id,
                OwnershipTransfer.status == TransferStatus.PENDING_GOVERNOR,
            )
            .values(status=status, reviewed_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("This transfer has already been decided")

    def approve(
        self,
        db: Session,
        actor: Actor,
        transfer_id: uuid.UUID,
        comment: Optional[str] = None,
    ) -> TransferOutcome:
        transfer = self._get(db, transfer_id)
        governor = self._require_governor(db, actor, transfer)
        new_owner = db.query(Applicant).filter(Applicant.email == transfer.new_owner_email).first()
        if new_owner is None:
            raise NotFoundError("New owner not found; they must register before the transfer can be approved")
        comment = (comment or "").strip() or None

        previous_owner_id = transfer.current_owner_id
        try:
            self._decide(
                db, transfer, TransferStatus.APPROVED,
                governor_comment=comment, new_owner_id=new_owner.id,
            )
            land = db.query(Land).filter(Land.id == transfer.land_id).with_for_update().first()
            land.owner_id = new_owner.id
            db.add(OwnershipHistory(
                land_id=land.id,
                from_owner_id=previous_owner_id,
                to_owner_id=new_owner.id,
                transfer_id=transfer.id,
                authorized_by_id=governor.id,
            ))
            audit_service.log_transfer_event(
                db, transfer.id, "APPROVED", governor.id, ActorRole.FINAL_AUTHORITY, comment
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to approve transfer {transfer_id}: {str(e)}")
            raise
        db.refresh(transfer)
        previous_owner = db.query(Applicant).filter(Applicant.id == previous_owner_id).first()
        body = f"The ownership transfer of land {transfer.land_id} has been approved."
        intents = [
            NotificationIntent(CHANNEL_EMAIL, new_owner.email, "Ownership transfer approved", body),
        ]
        if previous_owner is not None:
            intents.append(NotificationIntent(CHANNEL_EMAIL, previous_owner.email, "Ownership transfer approved", body))
        logger.info("transfer_approved transfer=%s new_owner=%s", transfer.id, new_owner.id)
        return TransferOutcome(transfer=transfer, message="Ownership transfer approved", intents=intents)

    def reject(
        self,
        db: Session,
        actor: Actor,
        transfer_id: uuid.UUID,
        reason: str,
    ) -> TransferOutcome:
        reason = (reason or "").strip()
        transfer = self._get(db, transfer_id)
        governor = self._require_governor(db, actor, transfer)
        if not reason:
            raise PreconditionFailedError("A reason is required when rejecting a transfer")
        try:
            self._decide(db, transfer, TransferStatus.REJECTED, rejection_reason=reason)
            audit_service.log_transfer_event(
                db, transfer.id, "REJECTED", governor.id, ActorRole.FINAL_AUTHORITY, reason
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to reject transfer {transfer_id}: {str(e)}")
            raise
        db.refresh(transfer)
        owner = db.query(Applicant).filter(Applicant.id == transfer.current_owner_id).first()
        intents = []
        if owner is not None:
            intents.append(NotificationIntent(
                CHANNEL_EMAIL, owner.email, "Ownership transfer rejected",
                f"Your ownership transfer for land {transfer.land_id} was rejected. Reason: {reason}",
            ))
        return TransferOutcome(transfer=transfer, message="Ownership transfer rejected", intents=intents)

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------

    def progress(self, db: Session, actor: Actor, transfer_id: uuid.UUID) -> dict:
        transfer = self._get(db, transfer_id)
        if not (actor.is_admin or actor.actor_id in (transfer.current_owner_id, transfer.governor_id)):
            raise ForbiddenError("You cannot view this transfer")
        if transfer.status in OPEN_STATES and transfer.expires_at <= utcnow():
            transfer.status = TransferStatus.EXPIRED
            audit_service.log_transfer_event(db, transfer.id, "EXPIRED", None, ActorRole.SYSTEM)
            db.commit()
            db.refresh(transfer)
        verifications = transfer.verifications
        verified = sum(1 for v in verifications if v.is_verified)
        return {
            "transfer_id": transfer.id,
            "status": transfer.status,
            "total_channels": len(verifications),
            "verified_channels": verified,
            "remaining_channels": len(verifications) - verified,
            "all_verified": bool(verifications) and verified == len(verifications),
            "expires_at": transfer.expires_at,
            "channels": [
                {
                    "channel_type": v.channel_type,
                    "target": mask_target(v.target),
                    "is_verified": v.is_verified,
                }
                for v in verifications
            ],
        }

    def pending_for_governor(self, db: Session, actor: Actor) -> List[OwnershipTransfer]:
        reviewer = reviewer_directory.require_reviewer(db, actor.actor_id)
        return (
            db.query(OwnershipTransfer)
            .filter(
                OwnershipTransfer.governor_id == reviewer.id,
                OwnershipTransfer.status == TransferStatus.PENDING_GOVERNOR,
            )
            .order_by(OwnershipTransfer.created_at.asc())
            .all()
        )


transfer_service = TransferService()
