"""
Payment Service: CofO application fee
======================================
A CofO case only enters existence once the application fee is paid. The
gateway is consulted for the verdict; a successful reference creates exactly
one DRAFT case, however many times it is confirmed.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import Actor
from app.db.models import Applicant, Case, CaseStatus, Land, Payment, PaymentStatus
from app.utils.exceptions import (
    ForbiddenError,
    PreconditionFailedError,
    UpstreamFailureError,
    not_found,
)
from app.utils.helpers import generate_reference, utcnow

logger = logging.getLogger(__name__)


@dataclass
class GatewayCheckout:
    reference: str
    authorization_url: str


class DevGateway:
    """Accepts every payment. Local development and tests only."""
    name = "dev"

    def initialize(self, email: str, amount: int, reference: str, metadata: dict) -> GatewayCheckout:
        logger.info("[DEV PAYMENT] init reference=%s amount=%s", reference, amount)
        return GatewayCheckout(reference, f"{settings.PORTAL_BASE_URL.rstrip('/')}/payments/{reference}")

    def verify(self, reference: str) -> bool:
        return True


class PaystackGateway:
    name = "paystack"

    def __init__(self) -> None:
        self.base_url = settings.PAYSTACK_BASE_URL.rstrip("/")

    def _headers(self) -> dict:
        key = (settings.PAYSTACK_SECRET_KEY or "").strip()
        if not key:
            raise UpstreamFailureError("Paystack config missing (PAYSTACK_SECRET_KEY)")
        return {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}

    def initialize(self, email: str, amount: int, reference: str, metadata: dict) -> GatewayCheckout:
        payload = {"email": email, "amount": amount, "reference": reference, "metadata": metadata}
        try:
            with httpx.Client(timeout=20.0) as client:
                resp = client.post(f"{self.base_url}/transaction/initialize", json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamFailureError(f"Payment initialization failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamFailureError(f"Payment initialization failed: {resp.status_code} {resp.text[:200]}")
        data = resp.json().get("data") or {}
        return GatewayCheckout(data.get("reference") or reference, data.get("authorization_url") or "")

    def verify(self, reference: str) -> bool:
        try:
            with httpx.Client(timeout=20.0) as client:
                resp = client.get(f"{self.base_url}/transaction/verify/{reference}", headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamFailureError(f"Payment verification failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamFailureError(f"Payment verification failed: {resp.status_code} {resp.text[:200]}")
        data = resp.json().get("data") or {}
        return data.get("status") == "success"


def _gateway_for(provider: str):
    provider = (provider or "dev").strip().lower()
    if provider == "dev":
        return DevGateway()
    if provider == "paystack":
        return PaystackGateway()
    raise ValueError(f"Unsupported PAYMENT_PROVIDER: {provider}")


class PaymentService:

    def __init__(self, gateway=None):
        self._gateway = gateway

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = _gateway_for(settings.PAYMENT_PROVIDER)
        return self._gateway

    def initialize_payment(self, db: Session, actor: Actor, land_id: uuid.UUID, amount: Optional[int] = None) -> Payment:
        land = db.query(Land).filter(Land.id == land_id).first()
        if land is None:
            raise not_found("Land", land_id)
        if land.owner_id != actor.actor_id:
            raise ForbiddenError("You can only apply for land you own")
        applicant = db.query(Applicant).filter(Applicant.id == actor.actor_id).first()
        if applicant is None:
            raise ForbiddenError("Only registered applicants can pay for a CofO application")

        amount = amount or settings.COFO_APPLICATION_FEE
        reference = generate_reference("PAY")
        checkout = self.gateway.initialize(
            applicant.email, amount, reference, {"land_id": str(land.id), "applicant_id": str(applicant.id)}
        )
        payment = Payment(
            applicant_id=applicant.id,
            land_id=land.id,
            reference=checkout.reference,
            amount=amount,
            provider=self.gateway.name,
            status=PaymentStatus.PENDING,
            authorization_url=checkout.authorization_url,
        )
        try:
            db.add(payment)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record payment {reference}: {str(e)}")
            raise
        db.refresh(payment)
        logger.info("payment_initialized reference=%s land=%s", payment.reference, land.id)
        return payment

    def confirm_payment(self, db: Session, reference: str) -> Case:
        """
        React to a verified "payment succeeded" signal by creating the DRAFT
        case. Safe to call repeatedly for the same reference.
        """
        payment = db.query(Payment).filter(Payment.reference == reference).first()
        if payment is None:
            raise not_found("Payment", reference)
        if payment.status == PaymentStatus.SUCCESS and payment.case_id:
            return db.query(Case).filter(Case.id == payment.case_id).first()

        if not self.gateway.verify(reference):
            raise PreconditionFailedError("Payment not successful")

        land = db.query(Land).filter(Land.id == payment.land_id).first()
        try:
            claimed = db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
                .values(status=PaymentStatus.SUCCESS, confirmed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                db.refresh(payment)
                if payment.case_id:
                    return db.query(Case).filter(Case.id == payment.case_id).first()
                raise PreconditionFailedError(f"Payment is {payment.status.value}")
            case = Case(
                application_number=generate_reference("APP"),
                applicant_id=payment.applicant_id,
                land_id=land.id,
                jurisdiction_id=land.jurisdiction_id,
                status=CaseStatus.DRAFT,
            )
            db.add(case)
            db.flush()
            payment.case_id = case.id
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to confirm payment {reference}: {str(e)}")
            raise
        db.refresh(case)
        logger.info("payment_confirmed reference=%s case=%s", reference, case.id)
        return case


payment_service = PaymentService()
