"""
Custom validators
"""
import re


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email or ""))


def validate_phone(phone: str) -> bool:
    """
    Validate a normalised phone number
    Accepts: +2348012345678
    """
    pattern = r'^\+\d{10,15}$'
    return bool(re.match(pattern, phone or ""))


def validate_case_number(case_number: str, prefix: str = "COFO") -> bool:
    """
    Validate case number format
    Example: COFO-2026-000042
    """
    pattern = rf'^{re.escape(prefix)}-\d{{4}}-\d{{6}}$'
    return bool(re.match(pattern, case_number or ""))
