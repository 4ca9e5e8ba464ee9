"""
Authentication Data Models.

Pydantic models for everything that crosses the backend boundary or is
held by the session store.  Backend payloads are normalised to snake_case
(see ``portal.utils.string_helpers``) before validation, so the models
accept both ``firstName`` and ``first_name`` spellings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from portal.models.enums import UserRole
from portal.utils.string_helpers import JsonValue, normalize_keys


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Identity & session
# ---------------------------------------------------------------------------

class Identity(BaseModel):
    """The authenticated user as last reported by the server.

    ``first_name`` / ``last_name`` default to empty strings because the
    second-factor login response only carries ``id`` and ``email``; the
    profile refresh fills them in afterwards.

    Attributes
    ----------
    id:
        Backend user id (integers are coerced to ``str``).
    email:
        Login email address.
    role:
        Explicit capability field, when the backend includes it.
    """

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    account_verified: bool = False
    created_at: Optional[datetime] = None
    role: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True, "extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("account_verified", mode="before")
    @classmethod
    def _none_to_false(cls, value: object) -> object:
        return False if value is None else value

    @classmethod
    def from_payload(cls, payload: dict[str, JsonValue]) -> "Identity":
        """Validate a raw backend user object (camelCase or snake_case)."""
        return cls.model_validate(normalize_keys(payload))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> Optional[bool]:
        """``None`` when the payload carried no role, else the admin flag."""
        if self.role is None:
            return None
        return self.role.lower() == UserRole.ADMIN


class Session(BaseModel):
    """A fully authenticated session.

    Created only after every required factor succeeded, or hydrated from
    the durable token entry at start-up (``user`` is then ``None`` until
    the first profile fetch).
    """

    token: str = Field(min_length=1)
    user: Optional[Identity] = None
    issued_at: datetime = Field(default_factory=_utc_now)

    model_config = {"frozen": True}

    def with_user(self, user: Identity) -> "Session":
        return self.model_copy(update={"user": user})


class LoginChallenge(BaseModel):
    """First-factor success on an account with 2FA enabled.

    The challenge token is not proof of identity; it only authorises one
    second-factor round trip.
    """

    challenge_token: str = Field(min_length=1)
    user: Optional[Identity] = None

    model_config = {"frozen": True}


LoginOutcome = Union[Session, LoginChallenge]


class StoredToken(BaseModel):
    """The decrypted durable token entry.

    Attributes
    ----------
    token:
        The bearer token as last committed.
    stored_at:
        UTC time the entry was written; the session age is measured from it.
    """

    token: str = Field(min_length=1)
    stored_at: datetime

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"StoredToken(token=***, stored_at={self.stored_at.isoformat()})"


class SecondFactorResult(BaseModel):
    """Successful second-factor login: the session plus any server warning
    (e.g. a backup code was consumed)."""

    session: Session
    warning: Optional[str] = None


# ---------------------------------------------------------------------------
# Two-factor models
# ---------------------------------------------------------------------------

class TwoFactorStatus(BaseModel):
    """Server truth about the account's second factor."""

    enabled: bool = False
    setup_initiated: bool = False
    backup_codes_remaining: int = 0
    last_used: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("enabled", "setup_initiated", mode="before")
    @classmethod
    def _none_to_false(cls, value: object) -> object:
        return False if value is None else value

    @field_validator("backup_codes_remaining", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0 if value is None else value


class EnrollmentMaterial(BaseModel):
    """QR payload and manual key for one setup attempt.  Never persisted."""

    qr_code: str
    manual_entry_key: str

    model_config = {"frozen": True, "extra": "ignore"}

    def __repr__(self) -> str:
        return "EnrollmentMaterial(qr_code=***, manual_entry_key=***)"


class BackupCodeBatch(BaseModel):
    """A freshly generated set of backup codes replacing all previous ones."""

    backup_codes: list[str]
    warning: Optional[str] = None

    model_config = {"frozen": True, "extra": "ignore"}


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes the validation rule.
    error_message:
        Human-readable description of the failure, or ``None`` on success.
    """

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}
