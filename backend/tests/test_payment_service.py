"""Application fee payment and case creation."""

import pytest
from unittest.mock import MagicMock

from app.core.security import Actor, ROLE_APPLICANT
from app.db.models import Case, CaseStatus, Land, PaymentStatus
from app.services.payment_service import DevGateway, GatewayCheckout, PaymentService
from app.utils.exceptions import ForbiddenError, NotFoundError, PreconditionFailedError


@pytest.fixture
def applicant(make_applicant):
    return make_applicant(email="tunde@example.com", full_name="Tunde Bakare")


@pytest.fixture
def land(db, applicant, jurisdiction):
    land = Land(
        owner_id=applicant.id,
        jurisdiction_id=jurisdiction.id,
        address="3 Adeola Odeku Street, Victoria Island",
        plot_number="PLOT-221",
        square_meters=480,
        purpose="Commercial",
    )
    db.add(land)
    db.commit()
    db.refresh(land)
    return land


def test_initialize_records_pending_payment(db, applicant, land):
    service = PaymentService(gateway=DevGateway())

    payment = service.initialize_payment(db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), land.id)

    assert payment.status == PaymentStatus.PENDING
    assert payment.provider == "dev"
    assert payment.reference.startswith("PAY-")
    assert payment.reference in payment.authorization_url
    assert payment.case_id is None


def test_initialize_requires_land_owner(db, land, make_applicant):
    stranger = make_applicant()
    service = PaymentService(gateway=DevGateway())

    with pytest.raises(ForbiddenError):
        service.initialize_payment(db, Actor(actor_id=stranger.id, role=ROLE_APPLICANT), land.id)


def test_confirm_creates_one_draft_case(db, applicant, land):
    service = PaymentService(gateway=DevGateway())
    payment = service.initialize_payment(db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), land.id)

    case = service.confirm_payment(db, payment.reference)
    again = service.confirm_payment(db, payment.reference)

    assert case.status == CaseStatus.DRAFT
    assert case.land_id == land.id
    assert case.jurisdiction_id == land.jurisdiction_id
    assert again.id == case.id
    assert db.query(Case).filter(Case.land_id == land.id).count() == 1
    db.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.case_id == case.id


def test_unsuccessful_payment_creates_nothing(db, applicant, land):
    gateway = MagicMock()
    gateway.name = "paystack"
    gateway.initialize.side_effect = lambda email, amount, reference, metadata: GatewayCheckout(
        reference, f"https://checkout.test/{reference}"
    )
    gateway.verify.return_value = False
    service = PaymentService(gateway=gateway)
    payment = service.initialize_payment(db, Actor(actor_id=applicant.id, role=ROLE_APPLICANT), land.id)

    with pytest.raises(PreconditionFailedError, match="not successful"):
        service.confirm_payment(db, payment.reference)

    gateway.verify.assert_called_once_with(payment.reference)
    assert db.query(Case).count() == 0


def test_unknown_reference_is_not_found(db):
    with pytest.raises(NotFoundError):
        PaymentService(gateway=DevGateway()).confirm_payment(db, "PAY-2026-MISSING")
