"""
Credential Validators.

Pure, side-effect-free gates applied before any network call.  They are
advisory: a ``True`` result only means the input is worth sending to the
identity backend.
"""

from __future__ import annotations

import re

from brewnet.models.auth_models import ValidationResult

__all__ = [
    "MIN_PASSWORD_LENGTH",
    "validate_email",
    "validate_name",
    "validate_password_length",
    "validate_phone",
]

MIN_PASSWORD_LENGTH: int = 6

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}"
)
_NON_DIGIT_RE: re.Pattern[str] = re.compile(r"[^0-9]")

# Matches C0 controls (U+0000-U+001F), DEL (U+007F), and C1 controls (U+0080-U+009F).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def validate_email(email: str) -> bool:
    """``True`` when *email* fully matches the conservative address grammar."""
    if not email:
        return False
    return _EMAIL_RE.fullmatch(email) is not None


def validate_phone(phone: str) -> bool:
    """``True`` when *phone* carries between 7 and 15 digits.

    Formatting characters (spaces, dashes, parentheses, a leading ``+``)
    are ignored.
    """
    digits: str = _NON_DIGIT_RE.sub("", phone or "")
    return 7 <= len(digits) <= 15


def validate_password_length(password: str) -> bool:
    return len(password or "") >= MIN_PASSWORD_LENGTH


def validate_name(name: str) -> ValidationResult:
    """Validate a display name supplied at registration.

    Rejects blank names and control characters (newlines, tabs) so that
    names cannot corrupt log lines or the UI.
    """
    stripped: str = (name or "").strip()
    if not stripped:
        return ValidationResult(is_valid=False, error_message="Name is required.")
    if _CONTROL_CHAR_RE.search(stripped):
        return ValidationResult(
            is_valid=False,
            error_message="Name contains invalid characters.",
        )
    return ValidationResult(is_valid=True)
