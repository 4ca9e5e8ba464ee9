"""
Shared Enumerations for the Auth Flow Models.

StrEnum values compare equal to their string equivalents, so a UI layer
can match on ``state.phase == "second_factor_required"`` directly.
"""

from __future__ import annotations
from enum import StrEnum


class LoginPhase(StrEnum):
    """Discriminator for the login state machine."""

    IDLE = "idle"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    SECOND_FACTOR_REQUIRED = "second_factor_required"
    SECOND_FACTOR_SUBMITTED = "second_factor_submitted"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class TwoFactorPhase(StrEnum):
    """Discriminator for the 2FA enrollment / disablement flow.

    ``STATUS_UNKNOWN`` precedes the first successful status fetch and
    follows any failed one; neither sub-flow is reachable from it.
    """

    STATUS_UNKNOWN = "status_unknown"
    INACTIVE = "inactive"
    SETUP_REQUESTED = "setup_requested"
    AWAITING_SETUP_CONFIRMATION = "awaiting_setup_confirmation"
    ENABLED = "enabled"
    AWAITING_DISABLE_CONFIRMATION = "awaiting_disable_confirmation"


class UserRole(StrEnum):
    """Roles the backend may report on an identity payload."""

    ADMIN = "admin"
    CLIENT = "client"
