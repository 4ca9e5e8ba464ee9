from __future__ import annotations

"""
Data Models Package.

Re-exports the auth data models and flow states:
    from portal.models import Identity, Session, TwoFactorStatus
    from portal.models import LoginPhase, SecondFactorRequired, AwaitingSetupConfirmation
"""

from portal.models.enums import LoginPhase, TwoFactorPhase, UserRole
from portal.models.auth_models import (
    BackupCodeBatch,
    EnrollmentMaterial,
    Identity,
    LoginChallenge,
    LoginOutcome,
    SecondFactorResult,
    StoredToken,
    Session,
    TwoFactorStatus,
    ValidationResult,
)
from portal.models.flow_states import (
    Authenticated,
    AwaitingDisableConfirmation,
    AwaitingSetupConfirmation,
    CredentialsSubmitted,
    Enabled,
    Failed,
    Idle,
    Inactive,
    LoginState,
    SecondFactorRequired,
    SecondFactorSubmitted,
    SetupRequested,
    StatusUnknown,
    TwoFactorState,
)

__all__ = [
    "LoginPhase",
    "TwoFactorPhase",
    "UserRole",
    "BackupCodeBatch",
    "EnrollmentMaterial",
    "Identity",
    "LoginChallenge",
    "LoginOutcome",
    "SecondFactorResult",
    "StoredToken",
    "Session",
    "TwoFactorStatus",
    "ValidationResult",
    "Authenticated",
    "AwaitingDisableConfirmation",
    "AwaitingSetupConfirmation",
    "CredentialsSubmitted",
    "Enabled",
    "Failed",
    "Idle",
    "Inactive",
    "LoginState",
    "SecondFactorRequired",
    "SecondFactorSubmitted",
    "SetupRequested",
    "StatusUnknown",
    "TwoFactorState",
]
