"""Land parcel registration and duplicate detection."""

import uuid

import pytest

from app.core.security import Actor, ROLE_APPLICANT
from app.db.models import Land
from app.services.land_service import LandService
from app.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
)


@pytest.fixture
def service():
    return LandService()


@pytest.fixture
def owner(make_applicant):
    return make_applicant(email="owner@example.com", full_name="Tunde Bakare")


@pytest.fixture
def owner_actor(owner):
    return Actor(actor_id=owner.id, role=ROLE_APPLICANT)


@pytest.fixture
def registered(db, service, owner_actor, jurisdiction):
    return service.register_land(
        db, owner_actor, jurisdiction.id, "3  Adeola Odeku Street,  Victoria Island",
        plot_number="plot 12", square_meters=450, purpose="Commercial",
    )


def test_registration_normalises_address_and_plot(db, registered, owner, jurisdiction):
    assert registered.owner_id == owner.id
    assert registered.jurisdiction_id == jurisdiction.id
    assert registered.address == "3 Adeola Odeku Street, Victoria Island"
    assert registered.plot_number == "PLOT12"
    assert db.query(Land).count() == 1


def test_same_plot_in_same_jurisdiction_conflicts(db, service, owner_actor, jurisdiction, registered):
    with pytest.raises(ConflictError) as exc_info:
        service.register_land(db, owner_actor, jurisdiction.id, "Another address", plot_number="PLOT 12")

    assert exc_info.value.extra["land_id"] == str(registered.id)
    assert db.query(Land).count() == 1


def test_same_address_conflicts_regardless_of_case(db, service, make_applicant, jurisdiction, registered):
    other = make_applicant()

    with pytest.raises(ConflictError):
        service.register_land(
            db, Actor(actor_id=other.id, role=ROLE_APPLICANT), jurisdiction.id,
            "3 ADEOLA ODEKU STREET, VICTORIA ISLAND",
        )


def test_same_plot_in_another_jurisdiction_is_allowed(db, service, owner_actor, registered):
    from app.services import reviewer_directory

    abuja = reviewer_directory.create_jurisdiction(db, "Abuja")

    land = service.register_land(db, owner_actor, abuja.id, "Plot 12, Wuse II", plot_number="PLOT12")

    assert land.id != registered.id


def test_unknown_jurisdiction_is_not_found(db, service, owner_actor):
    with pytest.raises(NotFoundError):
        service.register_land(db, owner_actor, uuid.uuid4(), "1 Broad Street, Lagos")


def test_only_registered_applicants_can_register(db, service, jurisdiction):
    with pytest.raises(ForbiddenError):
        service.register_land(
            db, Actor(actor_id=uuid.uuid4(), role=ROLE_APPLICANT), jurisdiction.id, "1 Broad Street, Lagos"
        )


def test_size_must_be_positive(db, service, owner_actor, jurisdiction):
    with pytest.raises(PreconditionFailedError, match="square meters"):
        service.register_land(db, owner_actor, jurisdiction.id, "1 Broad Street, Lagos", square_meters=0)


def test_search_finds_registered_parcels(db, service, jurisdiction, registered):
    by_plot = service.search_existence(db, jurisdiction.id, plot_number="plot12")
    by_address = service.search_existence(db, address="3 adeola odeku street, victoria island")
    missing = service.search_existence(db, jurisdiction.id, plot_number="PLOT99")

    assert [land.id for land in by_plot] == [registered.id]
    assert [land.id for land in by_address] == [registered.id]
    assert missing == []


def test_search_needs_a_plot_or_address(db, service):
    with pytest.raises(PreconditionFailedError):
        service.search_existence(db, plot_number="  ", address="")
