# app/api/v1/deps.py

import json
from typing import List, Optional

from fastapi import Depends, HTTPException, UploadFile, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.core.security import Actor, ROLE_ADMIN, ROLE_APPLICANT, ROLE_REVIEWER, decode_access_token
from app.services.document_service import UploadedFile

security = HTTPBearer()

# ============================================================================
# JWT Dependency
# ============================================================================

def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Decode the bearer token into the acting identity. Membership and ownership
    checks happen in the services.
    """
    try:
        return decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired"
        )
    except (jwt.PyJWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )


def _require_role(*roles: str):
    def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your role cannot perform this action"
            )
        return actor
    return checker


require_applicant = _require_role(ROLE_APPLICANT)
require_reviewer = _require_role(ROLE_REVIEWER)
require_admin = _require_role(ROLE_ADMIN)


# ============================================================================
# Multipart helpers
# ============================================================================

def parse_documents_meta(raw: Optional[str]) -> List[dict]:
    """documentsMeta arrives as a JSON string alongside the multipart files."""
    try:
        parsed = json.loads(raw or "[]")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid documents metadata")
    if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
        raise HTTPException(status_code=400, detail="Documents metadata must be a list of objects")
    return parsed


async def read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    uploads = []
    for item in files or []:
        uploads.append(UploadedFile(
            content=await item.read(),
            filename=item.filename or "upload",
            mime_type=item.content_type or "application/octet-stream",
        ))
    return uploads
