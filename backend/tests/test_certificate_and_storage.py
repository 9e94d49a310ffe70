"""Certificate PDF rendering and local object storage."""

from datetime import datetime

import pytest

from app.services import certificate_service as certificate_module
from app.services.certificate_service import CertificateData, CertificateService
from app.services.storage_service import LocalStorageBackend, StorageError, StorageService


@pytest.fixture
def certificate_data():
    return CertificateData(
        application_number="APP-2026-5F3A9C1B",
        case_number="COFO-2026-000007",
        holder_name="Ada Okafor",
        holder_email="ada@example.com",
        jurisdiction_name="Lagos",
        land_address="1 Marina Road, Lagos Island",
        plot_number="PLOT-001",
        square_meters=650,
        purpose="Residential",
        signed_at=datetime(2026, 3, 14, 10, 30),
        signed_by="Governor Lagos",
        signature_url=None,
    )


def test_build_pdf_produces_a_pdf(certificate_data):
    pdf = CertificateService().build_pdf(certificate_data)

    assert pdf.startswith(b"%PDF")


def test_render_stores_under_certificate_folder(certificate_data, fake_storage, monkeypatch):
    monkeypatch.setattr(certificate_module, "storage_service", fake_storage)

    url = CertificateService().render(certificate_data)

    assert fake_storage.calls == [("certificates", "COFO-2026-000007.pdf")]
    assert url == "https://files.test/certificates/1_COFO-2026-000007.pdf"


def test_local_backend_writes_file(tmp_path):
    url = LocalStorageBackend(str(tmp_path)).put("docs/a.pdf", b"%PDF-1.4", "application/pdf")

    assert (tmp_path / "docs" / "a.pdf").read_bytes() == b"%PDF-1.4"
    assert url.startswith("file://")


def test_storage_service_sanitises_keys(tmp_path):
    service = StorageService()
    service.provider = "dev"
    service._backend = LocalStorageBackend(str(tmp_path))

    stored = service.store(b"data", "../../etc/pass wd.pdf", "application/pdf", "cofo_documents")

    assert stored.key.startswith("cofo_documents/")
    assert stored.key.endswith("_pass_wd.pdf")
    assert ".." not in stored.key


def test_unknown_provider_fails():
    service = StorageService()
    service.provider = "ftp"

    with pytest.raises(StorageError):
        service.store(b"data", "a.pdf", "application/pdf", "docs")
