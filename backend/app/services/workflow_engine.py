"""
Workflow Engine
===============
State machine for CofO applications:

    DRAFT -> IN_REVIEW -> {NEEDS_CORRECTION -> RESUBMITTED -> IN_REVIEW}* -> APPROVED

Every operation validates first (no side effects on failure), mutates inside
one transaction, commits, and only then returns notification intents for the
caller to deliver. Certificate rendering happens after the finalization
commit and can only add a warning.

Callers:
  - endpoints/cases.py, endpoints/reviews.py
  - jobs/stale_case_job.py -> expire_stale_cases
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import Actor
from app.db.models import (
    ActorRole,
    AuditAction,
    Case,
    CaseStatus,
    Decision,
    DocumentStatus,
    InboxEntry,
    InboxStatus,
    ReviewDocument,
    Reviewer,
)
from app.services import case_store, inbox_service, reviewer_directory
from app.services.audit_service import audit_service
from app.services.certificate_service import CertificateData, certificate_service
from app.services.document_service import UploadedFile, document_service
from app.services.notification_service import NotificationIntent, notification_service
from app.services.reviewer_directory import Approver, FinalAuthority, ReviewerSlot
from app.services.storage_service import StoredObject, storage_service
from app.utils.exceptions import (
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    UpstreamFailureError,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

REVIEWABLE = (CaseStatus.IN_REVIEW, CaseStatus.RESUBMITTED)
TERMINAL = (CaseStatus.APPROVED, CaseStatus.WITHDRAWN, CaseStatus.EXPIRED)

SIGNATURE_MISSING = "Final authority signature not found. Please upload your signature before approving."
NO_FINAL_AUTHORITY = (
    "Cannot approve: no final authority is configured for this jurisdiction to finalize the "
    "certificate. Register one before continuing."
)


@dataclass
class WorkflowOutcome:
    case: Case
    message: str
    intents: List[NotificationIntent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchItemResult:
    case_id: uuid.UUID
    ok: bool
    case_number: Optional[str] = None
    certificate_url: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchOutcome:
    results: List[BatchItemResult]
    intents: List[NotificationIntent] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)


def _email(target: Optional[str], subject: str, body: str) -> List[NotificationIntent]:
    if not target:
        return []
    return [NotificationIntent(channel="email", target=target, subject=subject, body=body)]


def _portal_link(case: Case) -> str:
    return f"{settings.PORTAL_BASE_URL.rstrip('/')}/{inbox_service.message_link(case)}"


def _actor_role(reviewer: Reviewer) -> ActorRole:
    role = reviewer_directory.role_of(reviewer)
    if isinstance(role, FinalAuthority):
        return ActorRole.FINAL_AUTHORITY
    if isinstance(role, Approver):
        return ActorRole.APPROVER
    raise TypeError(f"Unhandled reviewer role {role!r}")


class WorkflowEngine:
    """
    Collaborators are injectable so tests can swap storage and rendering.
    """

    def __init__(self, storage=None, validator=None, certificates=None, notifier=None):
        self.storage = storage or storage_service
        self.validator = validator or document_service
        self.certificates = certificates or certificate_service
        self.notifier = notifier or notification_service

    # ------------------------------------------------------------------
    # shared checks
    # ------------------------------------------------------------------

    def _check_uploads(self, files: List[UploadedFile], documents_meta: List[dict]) -> None:
        if not files:
            raise PreconditionFailedError("No files uploaded")
        if len(documents_meta) != len(files):
            raise PreconditionFailedError(
                f"Documents metadata count ({len(documents_meta)}) must match the number of "
                f"uploaded files ({len(files)})"
            )
        validation = self.validator.validate_all(files)
        if not validation.valid:
            raise PreconditionFailedError(
                "One or more documents failed validation",
                extra={"errors": validation.errors},
            )

    def _upload_all(self, files: List[UploadedFile]) -> List[StoredObject]:
        stored = []
        for item in files:
            try:
                stored.append(
                    self.storage.store(item.content, item.filename, item.mime_type, settings.DOCUMENT_FOLDER)
                )
            except Exception as exc:
                logger.error("document_upload_failed file=%s error=%s", item.filename, exc)
                raise UpstreamFailureError(f"Document upload failed for {item.filename}") from exc
        return stored

    def _require_applicant(self, case: Case, actor: Actor) -> None:
        if case.applicant_id != actor.actor_id:
            raise ForbiddenError("You can only act on your own application")

    def _require_turn(self, db: Session, case: Case, actor: Actor) -> tuple[Reviewer, InboxEntry]:
        reviewer = case_store.get_reviewer(db, actor.actor_id)
        if reviewer is None or not reviewer.is_active:
            raise ForbiddenError("Only internal reviewers can review CofO applications")
        if not reviewer_directory.is_member(reviewer, case.jurisdiction_id):
            raise ForbiddenError("You are not a reviewer for this jurisdiction")
        entry = inbox_service.find_pending_for(db, case.id, reviewer.id)
        if entry is None:
            raise ForbiddenError("No pending review found for you for this application")
        return reviewer, entry

    def _require_signature(self, reviewer: Reviewer) -> None:
        role = reviewer_directory.role_of(reviewer)
        if isinstance(role, FinalAuthority) and role.signature_required and not reviewer.signature_url:
            raise PreconditionFailedError(SIGNATURE_MISSING)

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    def submit(
        self,
        db: Session,
        actor: Actor,
        case_id: uuid.UUID,
        files: List[UploadedFile],
        documents_meta: List[dict],
    ) -> WorkflowOutcome:
        self._check_uploads(files, documents_meta)
        case = case_store.get_case(db, case_id)
        self._require_applicant(case, actor)
        if case.status != CaseStatus.DRAFT:
            raise PreconditionFailedError(
                f"Application is {case.status.value}; only DRAFT applications can be submitted"
            )
        slots = reviewer_directory.ordered_reviewers(db, case.jurisdiction_id)
        if not slots:
            raise ConfigurationError(
                "No approvers configured for this jurisdiction's CofO workflow. "
                "An administrator must register reviewers before applications can be submitted."
            )

        stored = self._upload_all(files)

        try:
            case = case_store.get_case(db, case_id, for_update=True)
            if case.status != CaseStatus.DRAFT:
                raise PreconditionFailedError("Application was submitted by another request")
            for meta, obj, upload in zip(documents_meta, stored, files):
                db.add(ReviewDocument(
                    case_id=case.id,
                    doc_type=(meta.get("type") or "other").strip(),
                    title=(meta.get("title") or upload.filename).strip(),
                    url=obj.url,
                    status=DocumentStatus.pending,
                ))
            first = slots[0]
            case.status = CaseStatus.IN_REVIEW
            case.current_custodian_id = first.reviewer_id
            case.submitted_at = utcnow()
            inbox_service.create_pending(db, first.reviewer_id, case)
            audit_service.log_case_event(db, case.id, AuditAction.SUBMITTED, actor.actor_id, ActorRole.APPLICANT)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to submit application {case_id}: {str(e)}")
            raise

        db.refresh(case)
        first_reviewer = case_store.get_reviewer(db, first.reviewer_id)
        logger.info("case_submitted case=%s custodian=%s", case.id, first.reviewer_id)
        return WorkflowOutcome(
            case=case,
            message="Application submitted for review",
            intents=_email(
                first_reviewer.email,
                f"New CofO application {case.application_number} awaiting your review",
                f"Application {case.application_number} is waiting for your review: {_portal_link(case)}",
            ),
        )

    # ------------------------------------------------------------------
    # review decision
    # ------------------------------------------------------------------

    def review(
        self,
        db: Session,
        actor: Actor,
        case_id: uuid.UUID,
        decision: Decision,
        comment: Optional[str] = None,
    ) -> WorkflowOutcome:
        comment = (comment or "").strip() or None
        case = case_store.get_case(db, case_id, for_update=True)
        reviewer, entry = self._require_turn(db, case, actor)
        if case.status not in REVIEWABLE:
            raise PreconditionFailedError(f"Application is {case.status.value} and cannot be reviewed")
        if decision == Decision.REJECTED and not comment:
            raise PreconditionFailedError("A reason is required when rejecting an application")

        next_slot: Optional[ReviewerSlot] = None
        finalizing = False
        if decision == Decision.APPROVED:
            role = reviewer_directory.role_of(reviewer)
            if isinstance(role, FinalAuthority):
                self._require_signature(reviewer)
                finalizing = True
            elif isinstance(role, Approver):
                next_slot = self._next_slot(db, case, reviewer)
            else:
                raise TypeError(f"Unhandled reviewer role {role!r}")

        role = _actor_role(reviewer)
        try:
            case_store.append_stage_log(
                db, case.id, reviewer.id, role, decision, comment, arrived_at=entry.created_at
            )
            if decision == Decision.REJECTED:
                inbox_service.resolve(db, entry.id, InboxStatus.rejected)
                case.status = CaseStatus.NEEDS_CORRECTION
                case.rejected_by_id = reviewer.id
                case.current_custodian_id = reviewer.id
                audit_service.log_case_event(db, case.id, AuditAction.REJECTED, reviewer.id, role, comment)
            else:
                inbox_service.resolve(db, entry.id, InboxStatus.completed)
                audit_service.log_case_event(db, case.id, AuditAction.APPROVED, reviewer.id, role, comment)
                if finalizing:
                    self._finalize_in_transaction(db, case, reviewer)
                else:
                    case.status = CaseStatus.IN_REVIEW
                    case.current_custodian_id = next_slot.reviewer_id
                    inbox_service.create_pending(db, next_slot.reviewer_id, case)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Review of application {case_id} by {actor.actor_id} failed: {str(e)}")
            raise

        db.refresh(case)
        applicant_email = case.applicant.email if case.applicant else None

        if decision == Decision.REJECTED:
            logger.info("case_rejected case=%s reviewer=%s", case.id, reviewer.id)
            return WorkflowOutcome(
                case=case,
                message="Application returned to the applicant for correction",
                intents=_email(
                    applicant_email,
                    f"Action required: corrections needed for CofO {case.application_number}",
                    f"Your application {case.application_number} requires corrections. "
                    f"Reviewer comment: {comment}",
                ),
            )

        if finalizing:
            warnings = self._issue_certificate(db, case, reviewer)
            return WorkflowOutcome(
                case=case,
                message="Application approved and signed",
                intents=self._finalized_intents(case, applicant_email),
                warnings=warnings,
            )

        next_reviewer = case_store.get_reviewer(db, next_slot.reviewer_id)
        logger.info("case_advanced case=%s from=%s to=%s", case.id, reviewer.id, next_slot.reviewer_id)
        return WorkflowOutcome(
            case=case,
            message="Application forwarded to the next reviewer",
            intents=_email(
                next_reviewer.email,
                f"CofO application {case.application_number} awaiting your review",
                f"Application {case.application_number} has been forwarded to you: {_portal_link(case)}",
            ),
        )

    def _next_slot(self, db: Session, case: Case, reviewer: Reviewer) -> ReviewerSlot:
        slots = reviewer_directory.ordered_reviewers(db, case.jurisdiction_id)
        index = next((i for i, slot in enumerate(slots) if slot.reviewer_id == reviewer.id), -1)
        if index == -1:
            raise ConfigurationError(
                "Reviewer is not part of this jurisdiction's pipeline; check reviewer registration"
            )
        if index + 1 >= len(slots):
            raise ConfigurationError(NO_FINAL_AUTHORITY)
        return slots[index + 1]

    # ------------------------------------------------------------------
    # finalization
    # ------------------------------------------------------------------

    def _finalize_in_transaction(self, db: Session, case: Case, authority: Reviewer) -> None:
        now = utcnow()
        if case.case_number is None:
            case.case_number = case_store.next_case_number(db, case.jurisdiction_id, now.year)
        case.status = CaseStatus.APPROVED
        case.current_custodian_id = None
        case.rejected_by_id = None
        case.approved_by_id = authority.id
        case.signed_at = now
        case.signature_url = authority.signature_url
        leftover = inbox_service.complete_all_pending(db, case.id)
        if leftover:
            logger.warning("finalize_closed_pending_entries case=%s count=%s", case.id, leftover)
        audit_service.log_case_event(
            db, case.id, AuditAction.FINALIZED, authority.id, ActorRole.FINAL_AUTHORITY,
            f"Certificate number {case.case_number}",
        )

    def _certificate_data(self, case: Case, authority: Reviewer) -> CertificateData:
        land = case.land
        return CertificateData(
            application_number=case.application_number,
            case_number=case.case_number,
            holder_name=case.applicant.full_name,
            holder_email=case.applicant.email,
            jurisdiction_name=case.jurisdiction.name,
            land_address=land.address,
            plot_number=land.plot_number,
            square_meters=land.square_meters,
            purpose=land.purpose,
            signed_at=case.signed_at,
            signed_by=authority.name,
            signature_url=case.signature_url,
        )

    def _issue_certificate(self, db: Session, case: Case, authority: Reviewer) -> List[str]:
        """Render and attach the certificate. Failures leave certificate_url empty."""
        case_id = case.id
        try:
            url = self.certificates.render(self._certificate_data(case, authority))
            case.certificate_url = url
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception("certificate_generation_failed case=%s", case_id)
            audit_service.log_case_event(
                db, case_id, AuditAction.CERTIFICATE_FAILED,
                authority.id if authority else None, ActorRole.FINAL_AUTHORITY,
                exc.__class__.__name__,
            )
            db.commit()
            return [f"Certificate generation failed ({exc.__class__.__name__}); it can be regenerated later"]
        return []

    def _finalized_intents(self, case: Case, applicant_email: Optional[str]) -> List[NotificationIntent]:
        body = f"Your Certificate of Occupancy {case.case_number} has been approved and signed."
        if case.certificate_url:
            body += f" Download it here: {case.certificate_url}"
        return _email(applicant_email, f"CofO {case.application_number} approved", body)

    def regenerate_certificate(self, db: Session, actor: Actor, case_id: uuid.UUID) -> WorkflowOutcome:
        case = case_store.get_case(db, case_id)
        if case.status != CaseStatus.APPROVED:
            raise PreconditionFailedError("Only approved applications have a certificate")
        if not actor.is_admin:
            reviewer = case_store.get_reviewer(db, actor.actor_id)
            if reviewer is None or reviewer.id != case.approved_by_id:
                raise ForbiddenError("Only the signing authority or an administrator can regenerate certificates")
        authority = case_store.get_reviewer(db, case.approved_by_id)
        warnings = self._issue_certificate(db, case, authority)
        db.refresh(case)
        return WorkflowOutcome(case=case, message="Certificate regenerated", warnings=warnings)

    # ------------------------------------------------------------------
    # batch finalization
    # ------------------------------------------------------------------

    def batch_finalize(
        self,
        db: Session,
        actor: Actor,
        case_ids: List[uuid.UUID],
        comment: Optional[str] = None,
    ) -> BatchOutcome:
        ids = list(dict.fromkeys(case_ids))
        if not ids:
            raise PreconditionFailedError("No applications selected for signing")

        authority = reviewer_directory.require_reviewer(db, actor.actor_id)
        if not isinstance(reviewer_directory.role_of(authority), FinalAuthority):
            raise ForbiddenError("Only the final authority can batch-sign applications")
        self._require_signature(authority)

        cases = db.query(Case).filter(Case.id.in_(ids)).all()
        found = {c.id for c in cases}
        missing = [str(i) for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Applications not found: {', '.join(missing)}")
        if any(c.jurisdiction_id != authority.jurisdiction_id for c in cases):
            raise ForbiddenError("One or more applications do not belong to your jurisdiction")
        for c in cases:
            if c.status not in REVIEWABLE or inbox_service.find_pending_for(db, c.id, authority.id) is None:
                raise PreconditionFailedError(
                    f"Application {c.application_number} is not awaiting your signature"
                )

        note = (comment or "").strip() or "Batch-signed by final authority"
        outcome = BatchOutcome(results=[])
        for case_id in ids:
            outcome.results.append(self._finalize_one(db, authority, case_id, note, outcome.intents))
        logger.info(
            "batch_finalize authority=%s requested=%d succeeded=%d",
            authority.id, len(ids), outcome.succeeded,
        )
        return outcome

    def _finalize_one(
        self,
        db: Session,
        authority: Reviewer,
        case_id: uuid.UUID,
        note: str,
        intents: List[NotificationIntent],
    ) -> BatchItemResult:
        try:
            case = case_store.get_case(db, case_id, for_update=True)
            entry = inbox_service.find_pending_for(db, case.id, authority.id)
            if entry is None or case.status not in REVIEWABLE:
                raise PreconditionFailedError("Application is no longer awaiting your signature")
            case_store.append_stage_log(
                db, case.id, authority.id, ActorRole.FINAL_AUTHORITY, Decision.APPROVED, note,
                arrived_at=entry.created_at,
            )
            inbox_service.resolve(db, entry.id, InboxStatus.completed)
            audit_service.log_case_event(
                db, case.id, AuditAction.APPROVED, authority.id, ActorRole.FINAL_AUTHORITY, note
            )
            self._finalize_in_transaction(db, case, authority)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Batch finalization failed for application {case_id}: {str(e)}")
            return BatchItemResult(case_id=case_id, ok=False, error=getattr(e, "message", None) or str(e))

        db.refresh(case)
        warnings = self._issue_certificate(db, case, authority)
        intents.extend(self._finalized_intents(case, case.applicant.email if case.applicant else None))
        return BatchItemResult(
            case_id=case_id,
            ok=True,
            case_number=case.case_number,
            certificate_url=case.certificate_url,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # resubmission
    # ------------------------------------------------------------------

    def resubmit(
        self,
        db: Session,
        actor: Actor,
        case_id: uuid.UUID,
        files: List[UploadedFile],
        documents_meta: List[dict],
    ) -> WorkflowOutcome:
        self._check_uploads(files, documents_meta)
        case = case_store.get_case(db, case_id)
        self._require_applicant(case, actor)
        if case.status != CaseStatus.NEEDS_CORRECTION:
            raise PreconditionFailedError("Application not editable; only applications needing correction can be resubmitted")
        if case.rejected_by_id is None:
            raise PreconditionFailedError("No reviewer found to resend to")
        reviewer = case_store.get_reviewer(db, case.rejected_by_id)
        if not reviewer_directory.is_member(reviewer, case.jurisdiction_id):
            raise ConfigurationError(
                "The reviewer who requested corrections is no longer active in this jurisdiction"
            )

        current = {doc.id: doc for doc in case_store.active_documents(db, case.id)}
        replaced: List[ReviewDocument] = []
        for meta in documents_meta:
            try:
                doc_id = uuid.UUID(str(meta.get("doc_id") or meta.get("docId")))
            except ValueError:
                raise ForbiddenError("One or more document ids are invalid for this application")
            if doc_id not in current:
                raise ForbiddenError("One or more document ids are invalid for this application")
            replaced.append(current[doc_id])
        if len({doc.id for doc in replaced}) != len(replaced):
            raise PreconditionFailedError("Each document can only be replaced once per resubmission")

        stored = self._upload_all(files)

        try:
            case = case_store.get_case(db, case_id, for_update=True)
            if case.status != CaseStatus.NEEDS_CORRECTION:
                raise PreconditionFailedError("Application was resubmitted by another request")
            now = utcnow()
            for meta, obj, old in zip(documents_meta, stored, replaced):
                new_doc = ReviewDocument(
                    case_id=case.id,
                    doc_type=(meta.get("type") or old.doc_type).strip(),
                    title=(meta.get("title") or old.title).strip(),
                    url=obj.url,
                    status=DocumentStatus.pending,
                )
                db.add(new_doc)
                db.flush()
                old.retired_at = now
                old.superseded_by_id = new_doc.id
            case.status = CaseStatus.RESUBMITTED
            case.current_custodian_id = reviewer.id
            case.rejected_by_id = None
            inbox_service.create_pending(db, reviewer.id, case)
            audit_service.log_case_event(
                db, case.id, AuditAction.RESUBMITTED, actor.actor_id, ActorRole.APPLICANT,
                f"{len(replaced)} document(s) replaced",
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to resubmit application {case_id}: {str(e)}")
            raise

        db.refresh(case)
        logger.info("case_resubmitted case=%s custodian=%s", case.id, reviewer.id)
        return WorkflowOutcome(
            case=case,
            message="Application resubmitted to the reviewer who requested corrections",
            intents=_email(
                reviewer.email,
                f"CofO application {case.application_number} resubmitted",
                f"The applicant has addressed your comments on {case.application_number}: {_portal_link(case)}",
            ),
        )

    # ------------------------------------------------------------------
    # per-document review
    # ------------------------------------------------------------------

    def review_document(
        self,
        db: Session,
        actor: Actor,
        case_id: uuid.UUID,
        document_id: uuid.UUID,
        decision: Decision,
        message: Optional[str] = None,
    ) -> ReviewDocument:
        message = (message or "").strip() or None
        case = case_store.get_case(db, case_id)
        reviewer, _ = self._require_turn(db, case, actor)
        document = (
            db.query(ReviewDocument)
            .filter(
                ReviewDocument.id == document_id,
                ReviewDocument.case_id == case.id,
                ReviewDocument.retired_at.is_(None),
            )
            .first()
        )
        if document is None:
            raise NotFoundError(f"Document {document_id} not found on this application")
        if decision == Decision.REJECTED and not message:
            raise PreconditionFailedError("A message is required when rejecting a document")

        try:
            if decision == Decision.REJECTED:
                document.status = DocumentStatus.rejected
                document.rejection_message = message
                action = AuditAction.DOCUMENT_REJECTED
            else:
                document.status = DocumentStatus.approved
                document.rejection_message = None
                action = AuditAction.DOCUMENT_APPROVED
            audit_service.log_case_event(
                db, case.id, action, reviewer.id, _actor_role(reviewer),
                f"{document.title}: {message}" if message else document.title,
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Document review failed for {document_id}: {str(e)}")
            raise
        db.refresh(document)
        return document

    # ------------------------------------------------------------------
    # withdrawal and expiry
    # ------------------------------------------------------------------

    def withdraw(
        self,
        db: Session,
        actor: Actor,
        case_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> WorkflowOutcome:
        case = case_store.get_case(db, case_id, for_update=True)
        self._require_applicant(case, actor)
        if case.status in TERMINAL:
            raise PreconditionFailedError(f"Application is already {case.status.value}")

        custodian = case_store.get_reviewer(db, case.current_custodian_id) if case.current_custodian_id else None
        had_pending = case.status in REVIEWABLE
        try:
            inbox_service.complete_all_pending(db, case.id)
            case.status = CaseStatus.WITHDRAWN
            case.current_custodian_id = None
            case.rejected_by_id = None
            audit_service.log_case_event(
                db, case.id, AuditAction.WITHDRAWN, actor.actor_id, ActorRole.APPLICANT, reason
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to withdraw application {case_id}: {str(e)}")
            raise
        db.refresh(case)
        intents = []
        if custodian is not None and had_pending:
            intents = _email(
                custodian.email,
                f"CofO application {case.application_number} withdrawn",
                f"The applicant withdrew {case.application_number}; no further action is needed.",
            )
        return WorkflowOutcome(case=case, message="Application withdrawn", intents=intents)

    def expire_stale_cases(self, db: Session, sla_days: Optional[int] = None, now=None) -> List[WorkflowOutcome]:
        """
        Expire applications whose pending review is older than the SLA.
        Disabled unless REVIEW_SLA_DAYS (or ``sla_days``) is set.
        """
        sla_days = sla_days if sla_days is not None else settings.REVIEW_SLA_DAYS
        if not sla_days:
            return []
        cutoff = (now or utcnow()) - timedelta(days=sla_days)
        stale_ids = [
            row.case_id
            for row in db.query(InboxEntry.case_id)
            .filter(InboxEntry.status == InboxStatus.pending, InboxEntry.created_at < cutoff)
            .all()
        ]
        outcomes = []
        for case_id in stale_ids:
            try:
                case = case_store.get_case(db, case_id, for_update=True)
                if case.status not in REVIEWABLE:
                    db.rollback()
                    continue
                inbox_service.complete_all_pending(db, case.id)
                case.status = CaseStatus.EXPIRED
                case.current_custodian_id = None
                audit_service.log_case_event(
                    db, case.id, AuditAction.EXPIRED, None, ActorRole.SYSTEM,
                    f"No decision within {sla_days} days",
                )
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("stale_case_expiry_failed case=%s", case_id)
                continue
            db.refresh(case)
            outcomes.append(WorkflowOutcome(
                case=case,
                message="Application expired",
                intents=_email(
                    case.applicant.email if case.applicant else None,
                    f"CofO application {case.application_number} expired",
                    f"Your application {case.application_number} expired after {sla_days} days without a decision.",
                ),
            ))
        if outcomes:
            logger.info("stale_cases_expired count=%d sla_days=%s", len(outcomes), sla_days)
        return outcomes

    # ------------------------------------------------------------------
    # delivery
    # ------------------------------------------------------------------

    def deliver(self, intents: Iterable[NotificationIntent]) -> List[str]:
        """Synchronous best-effort delivery; returns warnings for failed sends."""
        return self.notifier.dispatch(intents)


workflow_engine = WorkflowEngine()
