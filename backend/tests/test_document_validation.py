"""Upload validation rules."""

from app.services.document_service import DocumentService, UploadedFile


def test_accepts_allowed_document():
    result = DocumentService().validate(b"%PDF-1.4", "survey.pdf", "application/pdf")

    assert result.valid
    assert result.error is None


def test_rejects_disallowed_extension():
    result = DocumentService().validate(b"MZ", "payload.exe", "application/pdf")

    assert not result.valid
    assert ".exe" in result.error


def test_rejects_mismatched_content_type():
    result = DocumentService().validate(b"%PDF-1.4", "survey.pdf", "application/x-msdownload")

    assert not result.valid
    assert "content type" in result.error


def test_rejects_empty_and_oversized_files():
    service = DocumentService(max_bytes=1024 * 1024)

    assert "empty" in service.validate(b"", "survey.pdf", "application/pdf").error
    assert "1MB" in service.validate(b"x" * (1024 * 1024 + 1), "survey.pdf", "application/pdf").error


def test_validate_all_collects_every_error():
    outcome = DocumentService().validate_all([
        UploadedFile(b"%PDF-1.4", "deed.pdf", "application/pdf"),
        UploadedFile(b"MZ", "tool.exe", "application/octet-stream"),
        UploadedFile(b"", "plan.png", "image/png"),
    ])

    assert not outcome.valid
    assert len(outcome.errors) == 2
