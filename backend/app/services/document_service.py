# app/services/document_service.py

import os
from dataclasses import dataclass, field
from typing import List, Optional

from app.core.config import settings
from app.core.logger import logger


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


@dataclass
class UploadedFile:
    """A file received from the client, before it is stored."""
    content: bytes
    filename: str
    mime_type: str


@dataclass
class BatchValidation:
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class DocumentService:
    """
    Format/size/type gate for uploaded evidence.
    Allow-lists and the size cap come from settings.
    """

    def __init__(
        self,
        allowed_extensions: Optional[List[str]] = None,
        allowed_mime_types: Optional[List[str]] = None,
        max_bytes: Optional[int] = None,
    ):
        self.allowed_extensions = allowed_extensions or settings.allowed_extensions_list
        self.allowed_mime_types = allowed_mime_types or settings.allowed_mime_types_list
        self.max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES

    def validate(self, content: bytes, filename: str, mime_type: str) -> ValidationResult:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in self.allowed_extensions:
            return ValidationResult(False, f"{filename}: file type {ext or '(none)'} is not allowed")
        if (mime_type or "").lower() not in self.allowed_mime_types:
            return ValidationResult(False, f"{filename}: content type {mime_type} is not allowed")
        if not content:
            return ValidationResult(False, f"{filename}: file is empty")
        if len(content) > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            return ValidationResult(False, f"{filename}: file exceeds the {limit_mb}MB limit")
        return ValidationResult(True)

    def validate_all(self, files: List[UploadedFile]) -> BatchValidation:
        outcome = BatchValidation()
        for item in files:
            result = self.validate(item.content, item.filename, item.mime_type)
            if not result.valid:
                outcome.errors.append(result.error)
        if outcome.errors:
            logger.info("document_validation_failed count=%d", len(outcome.errors))
        return outcome


document_service = DocumentService()
