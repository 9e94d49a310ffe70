"""
Custom exception classes

Workflow failures are raised as HTTPException subclasses so routes can let
them propagate unchanged. ``code`` is stable for clients; ``detail`` is the
human-readable message.
"""
from typing import Any, Optional

from fastapi import HTTPException


class WorkflowError(HTTPException):
    """Base class for workflow failures"""
    code = "WORKFLOW_ERROR"
    status = 400

    def __init__(self, message: str, extra: Optional[dict] = None):
        self.message = message
        self.extra = extra or {}
        super().__init__(status_code=self.status, detail=message)

    def to_dict(self) -> dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.extra:
            body.update(self.extra)
        return body


class NotFoundError(WorkflowError):
    """Raised when a case, document, reviewer or transfer doesn't exist"""
    code = "NOT_FOUND"
    status = 404


class ForbiddenError(WorkflowError):
    """Raised for the wrong actor, wrong jurisdiction or an out-of-turn decision"""
    code = "FORBIDDEN"
    status = 403


class PreconditionFailedError(WorkflowError):
    """Raised when the case is in the wrong state or input is incomplete"""
    code = "PRECONDITION_FAILED"
    status = 400


class ConflictError(WorkflowError):
    """Raised when a concurrent decision already consumed the inbox entry"""
    code = "CONFLICT"
    status = 409


class ConfigurationError(WorkflowError):
    """Raised when a jurisdiction pipeline is missing approvers or a final authority"""
    code = "CONFIGURATION"
    status = 500


class UpstreamFailureError(WorkflowError):
    """Raised when storage or a payment gateway fails"""
    code = "UPSTREAM_FAILURE"
    status = 502


def not_found(entity: str, entity_id: Any) -> NotFoundError:
    return NotFoundError(f"{entity} {entity_id} not found")
