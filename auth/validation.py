"""
auth/validation.py -- Field rules for identity requests.

The request models in api/models.py only fix the JSON shape (which fields,
which types). The rules below are the actual contract -- length bounds and
shapes -- and run inside the workflows so they hold for every caller, not
just HTTP. Each check_* function returns every failing field at once
(no early abort), then require_valid() raises one ValidationError carrying
the full list.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import re

from core.errors import FieldError, ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PASSWORD_MIN = 6
PASSWORD_MAX = 128
NAME_MIN = 2
NAME_MAX = 50
EMAIL_MAX = 255


def email_errors(email: str, field: str = "email") -> list[FieldError]:
    value = email.strip()
    if not value:
        return [FieldError(field, "Email is required")]
    if len(value) > EMAIL_MAX or not EMAIL_PATTERN.match(value):
        return [FieldError(field, "Please provide a valid email address")]
    return []


def password_errors(password: str, field: str = "password") -> list[FieldError]:
    if not password:
        return [FieldError(field, "Password is required")]
    if len(password) < PASSWORD_MIN:
        return [FieldError(field, f"Password must be at least {PASSWORD_MIN} characters long")]
    if len(password) > PASSWORD_MAX:
        return [FieldError(field, f"Password cannot exceed {PASSWORD_MAX} characters")]
    return []


def name_errors(name: str, field: str = "name") -> list[FieldError]:
    value = name.strip()
    if not value:
        return [FieldError(field, "Name is required")]
    if len(value) < NAME_MIN:
        return [FieldError(field, f"Name must be at least {NAME_MIN} characters long")]
    if len(value) > NAME_MAX:
        return [FieldError(field, f"Name cannot exceed {NAME_MAX} characters")]
    return []


def otp_errors(otp: str, length: int, field: str = "otp") -> list[FieldError]:
    if not otp:
        return [FieldError(field, "OTP is required")]
    if len(otp) != length:
        return [FieldError(field, f"OTP must be exactly {length} digits")]
    if not otp.isascii() or not otp.isdigit():
        return [FieldError(field, "OTP must contain only numbers")]
    return []


def require_valid(errors: list[FieldError]) -> None:
    """Raise ValidationError with every collected field error, if any."""
    if errors:
        raise ValidationError(errors=errors)


# ---------------------------------------------------------------------------
# Per-request checks
# ---------------------------------------------------------------------------


def check_registration(email: str, password: str, name: str) -> None:
    require_valid(email_errors(email) + password_errors(password) + name_errors(name))


def check_login(email: str, password: str) -> None:
    errors = email_errors(email)
    if not password:
        errors.append(FieldError("password", "Password is required"))
    require_valid(errors)


def check_otp_request(email: str, otp: str, length: int) -> None:
    require_valid(email_errors(email) + otp_errors(otp, length))


def check_email(email: str) -> None:
    require_valid(email_errors(email))
