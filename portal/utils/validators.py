"""
Client-side Field Validation.

Pure checks run before any network call.  Each returns a
``ValidationResult``; callers turn a failed result into a
``ValidationError`` carried on their flow state.
"""

from __future__ import annotations

import re

from portal.models.auth_models import ValidationResult

__all__ = [
    "normalize_email",
    "validate_login_fields",
    "validate_totp_code",
    "validate_backup_code",
    "validate_email",
    "validate_password",
    "validate_name",
]

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

# ASCII digits only: str.isdigit() would accept "١٢٣٤٥٦".
_TOTP_RE: re.Pattern[str] = re.compile(r"[0-9]{6}")

# Backup codes are 4 random bytes, hex encoded.
_BACKUP_CODE_RE: re.Pattern[str] = re.compile(r"[0-9A-Fa-f]{8}")

# Matches C0 controls (U+0000–U+001F), DEL (U+007F), and C1 controls (U+0080–U+009F).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x1f\x7f-\x9f]")

_PASSWORD_SPECIALS_RE: re.Pattern[str] = re.compile(r"[@$!%*?&]")


def normalize_email(email: str) -> str:
    """Normalise an email address: strip whitespace and lowercase."""
    return email.strip().lower()


def validate_login_fields(email: str, password: str) -> ValidationResult:
    """Presence check for the sign-in form.  Format is the server's call."""
    if not email or not email.strip() or not password:
        return ValidationResult(
            is_valid=False,
            error_message="Please fill in all fields",
        )
    return ValidationResult(is_valid=True)


def validate_totp_code(code: str) -> ValidationResult:
    """Accept exactly six ASCII digits, nothing else."""
    if not isinstance(code, str) or not _TOTP_RE.fullmatch(code):
        return ValidationResult(
            is_valid=False,
            error_message="Please enter a valid 6-digit code",
        )
    return ValidationResult(is_valid=True)


def validate_backup_code(code: str) -> ValidationResult:
    """Accept one 8-character hexadecimal backup code, either case."""
    if not isinstance(code, str) or not _BACKUP_CODE_RE.fullmatch(code):
        return ValidationResult(
            is_valid=False,
            error_message="Please enter a valid 8-character backup code",
        )
    return ValidationResult(is_valid=True)


def validate_email(email: str) -> ValidationResult:
    """Validate an email address against a simplified RFC 5322 regex."""
    if not email or not email.strip():
        return ValidationResult(
            is_valid=False,
            error_message="Email address is required.",
        )
    if not _EMAIL_RE.match(email.strip()):
        return ValidationResult(
            is_valid=False,
            error_message="Please enter a valid email address.",
        )
    return ValidationResult(is_valid=True)


def validate_password(password: str) -> ValidationResult:
    """Enforce the registration password policy.

    Policy: minimum 8 characters, at least 1 uppercase letter,
    1 lowercase letter, 1 digit, and 1 of ``@$!%*?&``.
    """
    if len(password) < 8:
        return ValidationResult(
            is_valid=False,
            error_message="Password must be at least 8 characters.",
        )
    if not re.search(r"[A-Z]", password):
        return ValidationResult(
            is_valid=False,
            error_message="Password must contain at least one uppercase letter.",
        )
    if not re.search(r"[a-z]", password):
        return ValidationResult(
            is_valid=False,
            error_message="Password must contain at least one lowercase letter.",
        )
    if not re.search(r"\d", password):
        return ValidationResult(
            is_valid=False,
            error_message="Password must contain at least one digit.",
        )
    if not _PASSWORD_SPECIALS_RE.search(password):
        return ValidationResult(
            is_valid=False,
            error_message="Password must contain at least one special character (@$!%*?&).",
        )
    return ValidationResult(is_valid=True)


def validate_name(name: str, field_label: str) -> ValidationResult:
    """Validate a first or last name.

    Rejects control characters (including newlines and tabs) to prevent
    log injection and display corruption.
    """
    stripped = name.strip()
    if not stripped:
        return ValidationResult(
            is_valid=False,
            error_message=f"{field_label} is required.",
        )
    if _CONTROL_CHAR_RE.search(stripped):
        return ValidationResult(
            is_valid=False,
            error_message=(
                f"{field_label} contains invalid characters. "
                "Only printable characters are allowed."
            ),
        )
    return ValidationResult(is_valid=True)
