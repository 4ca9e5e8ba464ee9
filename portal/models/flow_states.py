"""
Flow State Models.

Tagged-union states for the login state machine and the 2FA
enrollment / disablement flow.  Each state is an immutable model whose
``phase`` field is the discriminator; data that only makes sense in one
phase (challenge token, enrollment material) exists only on that phase's
model, so combinations such as "awaiting confirmation without material"
cannot be constructed.

States that can display a failure carry it in ``error``.  The error is
the typed exception instance itself, so the UI can branch on its class
and show ``error.message`` verbatim.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from portal.errors import PortalError
from portal.models.auth_models import EnrollmentMaterial, Session
from portal.models.enums import LoginPhase, TwoFactorPhase


class _FlowState(BaseModel):
    """Shared configuration for every flow state."""

    error: Optional[PortalError] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    def without_error(self) -> "_FlowState":
        """Return the same state with the displayed error dropped."""
        if self.error is None:
            return self
        return self.model_copy(update={"error": None})

    def with_error(self, error: PortalError) -> "_FlowState":
        return self.model_copy(update={"error": error})


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class Idle(_FlowState):
    phase: Literal[LoginPhase.IDLE] = LoginPhase.IDLE


class CredentialsSubmitted(_FlowState):
    phase: Literal[LoginPhase.CREDENTIALS_SUBMITTED] = LoginPhase.CREDENTIALS_SUBMITTED
    email: str


class SecondFactorRequired(_FlowState):
    """First factor accepted; the challenge token is held for one retry loop."""

    phase: Literal[LoginPhase.SECOND_FACTOR_REQUIRED] = LoginPhase.SECOND_FACTOR_REQUIRED
    email: str
    challenge_token: str = Field(min_length=1, repr=False)


class SecondFactorSubmitted(_FlowState):
    phase: Literal[LoginPhase.SECOND_FACTOR_SUBMITTED] = LoginPhase.SECOND_FACTOR_SUBMITTED
    email: str
    challenge_token: str = Field(min_length=1, repr=False)


class Authenticated(_FlowState):
    phase: Literal[LoginPhase.AUTHENTICATED] = LoginPhase.AUTHENTICATED
    session: Session = Field(repr=False)
    warning: Optional[str] = None


class Failed(_FlowState):
    phase: Literal[LoginPhase.FAILED] = LoginPhase.FAILED
    error: PortalError


LoginState = Union[
    Idle,
    CredentialsSubmitted,
    SecondFactorRequired,
    SecondFactorSubmitted,
    Authenticated,
    Failed,
]


# ---------------------------------------------------------------------------
# Two-factor enrollment / disablement
# ---------------------------------------------------------------------------

class StatusUnknown(_FlowState):
    phase: Literal[TwoFactorPhase.STATUS_UNKNOWN] = TwoFactorPhase.STATUS_UNKNOWN


class Inactive(_FlowState):
    phase: Literal[TwoFactorPhase.INACTIVE] = TwoFactorPhase.INACTIVE


class SetupRequested(_FlowState):
    phase: Literal[TwoFactorPhase.SETUP_REQUESTED] = TwoFactorPhase.SETUP_REQUESTED


class AwaitingSetupConfirmation(_FlowState):
    phase: Literal[TwoFactorPhase.AWAITING_SETUP_CONFIRMATION] = (
        TwoFactorPhase.AWAITING_SETUP_CONFIRMATION
    )
    material: EnrollmentMaterial


class Enabled(_FlowState):
    """2FA is on.  ``backup_codes`` holds a just-generated batch for display."""

    phase: Literal[TwoFactorPhase.ENABLED] = TwoFactorPhase.ENABLED
    backup_codes: Optional[tuple[str, ...]] = Field(default=None, repr=False)


class AwaitingDisableConfirmation(_FlowState):
    phase: Literal[TwoFactorPhase.AWAITING_DISABLE_CONFIRMATION] = (
        TwoFactorPhase.AWAITING_DISABLE_CONFIRMATION
    )


TwoFactorState = Union[
    StatusUnknown,
    Inactive,
    SetupRequested,
    AwaitingSetupConfirmation,
    Enabled,
    AwaitingDisableConfirmation,
]
