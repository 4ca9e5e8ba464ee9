"""
Authentication Error Taxonomy.

Every failure the auth core can surface is one of the classes below.
Server-originated errors carry the backend's message verbatim in
``message``; the UI displays it without reinterpretation.

``ValidationError`` is raised (or recorded on a flow state) before any
network call.  ``NoSessionError`` and ``FlowStateError`` indicate a
caller defect and also subclass ``RuntimeError``.
"""

from __future__ import annotations

from typing import Optional


class PortalError(Exception):
    """Base class for all auth-core errors.

    Parameters
    ----------
    message:
        Human-readable text, passed through unchanged from the server
        where one was supplied.
    status_code:
        HTTP status of the failed response, or ``None`` for local errors.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.status_code: Optional[int] = status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code!r})"


class ValidationError(PortalError):
    """Local input rejected before reaching the network."""


class CredentialError(PortalError):
    """Email/password rejected by the credential verifier."""


class SecondFactorError(PortalError):
    """Second-factor code rejected during login."""


class RegistrationError(PortalError):
    """Account creation rejected by the backend."""


class SetupError(PortalError):
    """The backend failed to issue 2FA enrollment material."""


class VerificationError(PortalError):
    """A 2FA confirmation code was rejected (enable, disable, backup codes)."""


class UpdateError(PortalError):
    """A profile update was rejected."""


class RequestError(PortalError):
    """A generic authenticated request (verification, email) failed."""


class TwoFactorStatusUnknownError(PortalError):
    """The 2FA status could not be fetched; the cached status is unknown."""


class TransportError(PortalError):
    """The backend could not be reached (connection failure or timeout)."""


class SessionExpiredError(PortalError):
    """The server (or the local age limit) rejected the current session.

    By the time this is raised the session store has already been cleared.
    """


class NoSessionError(PortalError, RuntimeError):
    """An operation that requires a session was invoked without one."""


class FlowStateError(PortalError, RuntimeError):
    """A flow operation was invoked in a state that does not permit it."""
