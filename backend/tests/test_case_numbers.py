"""Case number allocation."""

import pytest

from app.services import case_store, reviewer_directory
from app.utils.exceptions import ConfigurationError
from app.utils.validators import validate_case_number


def test_format_is_zero_padded():
    assert case_store.format_case_number(2026, 42, prefix="COFO") == "COFO-2026-000042"
    assert validate_case_number("COFO-2026-000042")
    assert not validate_case_number("COFO-26-42")
    assert not validate_case_number("LAG-2026-000042")
    assert validate_case_number("LAG-2026-000042", prefix="LAG")


def test_numbers_are_sequential_within_a_jurisdiction_year(db, jurisdiction):
    first = case_store.next_case_number(db, jurisdiction.id, 2026)
    second = case_store.next_case_number(db, jurisdiction.id, 2026)
    db.commit()

    assert first == "COFO-2026-000001"
    assert second == "COFO-2026-000002"


def test_each_year_and_jurisdiction_has_its_own_sequence(db, jurisdiction):
    abuja = reviewer_directory.create_jurisdiction(db, "Abuja")

    case_store.next_case_number(db, jurisdiction.id, 2026)
    assert case_store.next_case_number(db, jurisdiction.id, 2027) == "COFO-2027-000001"
    assert case_store.next_case_number(db, abuja.id, 2026) == "COFO-2026-000001"


def test_sequence_continues_from_numbers_already_issued(db, jurisdiction, make_applicant, make_case):
    case = make_case(make_applicant(), jurisdiction)
    case.case_number = "COFO-2026-000041"
    db.commit()

    assert case_store.next_case_number(db, jurisdiction.id, 2026) == "COFO-2026-000042"


def test_exhausted_sequence_is_a_configuration_error(db, jurisdiction, make_applicant, make_case):
    case = make_case(make_applicant(), jurisdiction)
    case.case_number = "COFO-2026-999999"
    db.commit()

    with pytest.raises(ConfigurationError, match="exhausted"):
        case_store.next_case_number(db, jurisdiction.id, 2026)
