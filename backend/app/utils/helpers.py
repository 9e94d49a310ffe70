"""
Utility helper functions
"""
from datetime import datetime, timezone
import re
import secrets
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_reference(prefix: str) -> str:
    """Short unique reference, e.g. APP-2026-5F3A9C1B"""
    return f"{prefix}-{utcnow().year}-{uuid.uuid4().hex[:8].upper()}"


def generate_code(digits: int = 6) -> str:
    """Numeric one-time code with no leading zero"""
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


def normalize_phone(phone: str) -> str:
    """E.164-ish normalisation; local 11-digit numbers get the +234 prefix."""
    raw = (phone or "").strip()
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 11 and digits.startswith("0"):
        return f"+234{digits[1:]}"
    if raw.startswith("+"):
        return f"+{digits}"
    return f"+{digits}" if digits else raw


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def mask_target(target: str) -> str:
    """Hide most of an email/phone for logs and responses"""
    if "@" in target:
        name, _, domain = target.partition("@")
        return f"{name[:2]}***@{domain}"
    return f"{target[:4]}***{target[-2:]}" if len(target) > 6 else "***"
