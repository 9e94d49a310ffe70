"""
Token helpers and the authenticated actor passed into every service call.

Tokens are issued by the identity service; this module only decodes them
(and mints them for local development and tests).
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt

from app.core.config import settings
from app.utils.helpers import utcnow

ROLE_APPLICANT = "applicant"
ROLE_REVIEWER = "reviewer"
ROLE_ADMIN = "admin"
ROLES = (ROLE_APPLICANT, ROLE_REVIEWER, ROLE_ADMIN)


@dataclass(frozen=True)
class Actor:
    actor_id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    payload = dict(data)
    payload["exp"] = utcnow() + (expires_delta or timedelta(hours=24))
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Actor:
    """Raises jwt.PyJWTError or ValueError for unusable tokens."""
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    subject = payload.get("user_id") or payload.get("sub")
    role = (payload.get("role") or "").lower()
    if not subject or role not in ROLES:
        raise ValueError("token is missing subject or role")
    return Actor(actor_id=uuid.UUID(str(subject)), role=role)
