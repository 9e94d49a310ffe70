"""Pytest configuration and shared fixtures."""

import os
import tempfile
from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock

# Set required environment variables for testing BEFORE importing app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("STORAGE_PROVIDER", "dev")
os.environ.setdefault("LOCAL_STORAGE_DIR", tempfile.mkdtemp(prefix="cofo-test-storage-"))
os.environ.setdefault("NOTIFY_EMAIL_PROVIDER", "dev")
os.environ.setdefault("NOTIFY_SMS_PROVIDER", "dev")
os.environ.setdefault("PAYMENT_PROVIDER", "dev")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.main import app
from app.core.security import ROLE_ADMIN, ROLE_APPLICANT, ROLE_REVIEWER, create_access_token
from app.db.database import get_db, init_db
from app.db.models import Applicant, Case, CaseStatus, Land
from app.services import reviewer_directory
from app.services.document_service import UploadedFile
from app.services.storage_service import StoredObject
from app.services.workflow_engine import WorkflowEngine


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite per test so partial unique indexes behave like production."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cofo.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# Collaborator fakes
# ============================================================================

class FakeStorage:
    """Records every store() call instead of writing anywhere. Set fail_at to make the Nth call raise."""

    def __init__(self):
        self.calls = []
        self.fail_at = None

    def store(self, content, filename, mime_type, folder):
        self.calls.append((folder, filename))
        if self.fail_at == len(self.calls):
            raise RuntimeError("object store unavailable")
        key = f"{folder}/{len(self.calls)}_{filename}"
        return StoredObject(url=f"https://files.test/{key}", key=key)


class FakeCertificates:
    def __init__(self, fail=False):
        self.fail = fail
        self.rendered = []

    def render(self, data):
        if self.fail:
            raise RuntimeError("renderer unavailable")
        self.rendered.append(data)
        return f"https://files.test/certificates/{data.case_number}.pdf"


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_certificates():
    return FakeCertificates()


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.dispatch.return_value = []
    return mock


@pytest.fixture
def workflow(fake_storage, fake_certificates, notifier):
    return WorkflowEngine(storage=fake_storage, certificates=fake_certificates, notifier=notifier)


# ============================================================================
# Domain factories
# ============================================================================

@pytest.fixture
def make_applicant(db):
    counter = {"n": 0}

    def factory(email=None, full_name="Ada Okafor"):
        counter["n"] += 1
        applicant = Applicant(
            email=email or f"applicant{counter['n']}@example.com",
            full_name=full_name,
            phone="+2348030000000",
        )
        db.add(applicant)
        db.commit()
        db.refresh(applicant)
        return applicant

    return factory


@pytest.fixture
def jurisdiction(db):
    return reviewer_directory.create_jurisdiction(db, "Lagos")


@pytest.fixture
def pipeline(db, jurisdiction):
    """Jurisdiction with two approvers and a signing final authority."""
    authority = reviewer_directory.register_final_authority(
        db, jurisdiction.id, "Governor Lagos", "governor@lagos.gov", approver_capacity=3
    )
    authority.signature_url = "https://files.test/signatures/governor.png"
    db.commit()
    first = reviewer_directory.register_approver(db, jurisdiction.id, "Surveyor", "surveyor@lagos.gov")
    second = reviewer_directory.register_approver(db, jurisdiction.id, "Commissioner", "commissioner@lagos.gov")
    return SimpleNamespace(jurisdiction=jurisdiction, authority=authority, approvers=[first, second])


@pytest.fixture
def make_case(db):
    counter = {"n": 0}

    def factory(applicant, jurisdiction, status=CaseStatus.DRAFT):
        counter["n"] += 1
        land = Land(
            owner_id=applicant.id,
            jurisdiction_id=jurisdiction.id,
            address=f"{counter['n']} Marina Road, Lagos Island",
            plot_number=f"PLOT-{counter['n']:03d}",
            square_meters=650,
            purpose="Residential",
        )
        db.add(land)
        db.flush()
        case = Case(
            application_number=f"APP-TEST-{counter['n']:04d}",
            applicant_id=applicant.id,
            land_id=land.id,
            jurisdiction_id=jurisdiction.id,
            status=status,
        )
        db.add(case)
        db.commit()
        db.refresh(case)
        return case

    return factory


@pytest.fixture
def pdf():
    def factory(filename="deed.pdf"):
        return UploadedFile(content=b"%PDF-1.4 test document", filename=filename, mime_type="application/pdf")
    return factory


# ============================================================================
# API
# ============================================================================

@pytest.fixture
def test_client(session_factory) -> TestClient:
    """FastAPI test client bound to the per-test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def auth_headers():
    def factory(actor_id, role):
        token = create_access_token({"sub": str(actor_id), "role": role})
        return {"Authorization": f"Bearer {token}"}

    factory.applicant = lambda actor_id: factory(actor_id, ROLE_APPLICANT)
    factory.reviewer = lambda actor_id: factory(actor_id, ROLE_REVIEWER)
    factory.admin = lambda actor_id: factory(actor_id, ROLE_ADMIN)
    return factory
