"""
Backend API Boundary.

One coroutine per backend route used by the auth core.  Each method
sends the request, maps a non-2xx answer onto the route's error class
(message verbatim from the server), and validates a 2xx body into the
matching model.

The two login verifiers (``login`` and ``complete_two_factor_login``) talk
to the HTTP client directly: they run before a session exists and their
401s mean "wrong password / wrong code", not "session expired".  Every
other route goes through the ``RequestGate``.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError as ModelValidationError

from portal.errors import (
    CredentialError,
    PortalError,
    RegistrationError,
    RequestError,
    SecondFactorError,
    SetupError,
    TransportError,
    TwoFactorStatusUnknownError,
    UpdateError,
    VerificationError,
)
from portal.logger import StructuredLogger
from portal.models.auth_models import (
    BackupCodeBatch,
    EnrollmentMaterial,
    Identity,
    LoginChallenge,
    LoginOutcome,
    SecondFactorResult,
    Session,
    TwoFactorStatus,
)
from portal.services.request_gate import (
    NETWORK_ERROR_MESSAGE,
    TIMEOUT_MESSAGE,
    RequestGate,
    extract_error_message,
)
from portal.utils.string_helpers import JsonValue, denormalize_keys, normalize_keys

# Fallback texts, used only when the server sent no message.
LOGIN_FAILED: str = "Login failed. Please try again."
SECOND_FACTOR_FAILED: str = "Invalid 2FA code. Please try again."
REGISTRATION_FAILED: str = "Registration failed. Please try again."
STATUS_FAILED: str = "Failed to fetch 2FA status"
SETUP_FAILED: str = "Failed to setup 2FA"
VERIFICATION_FAILED: str = "Verification failed"
BACKUP_CODES_FAILED: str = "Failed to generate backup codes"
PROFILE_LOAD_FAILED: str = "Failed to load profile data"
PROFILE_UPDATE_FAILED: str = "Failed to update profile"
REQUEST_FAILED: str = "Request failed. Please try again."


class BackendApi:
    """Typed wrapper around the lending portal REST routes.

    Parameters
    ----------
    gate:
        The ``RequestGate`` for every session-bearing route.
    client:
        The same ``httpx.AsyncClient`` the gate wraps; used unguarded for
        the two login verifiers only.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        gate: RequestGate,
        client: httpx.AsyncClient,
        logger: StructuredLogger,
    ) -> None:
        self._gate: RequestGate = gate
        self._client: httpx.AsyncClient = client
        self._logger: StructuredLogger = logger

    # ------------------------------------------------------------------
    # Login verifiers (unguarded)
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginOutcome:
        """``POST /auth/login``.

        Returns a ``Session`` for accounts without 2FA, or a
        ``LoginChallenge`` carrying the one-shot challenge token.

        Raises:
            CredentialError: Rejected credentials, or an answer that
                carries neither a token nor a challenge.
            TransportError: The backend could not be reached.
        """
        response = await self._post_unguarded(
            "/auth/login", {"email": email, "password": password},
        )
        if response.is_error:
            raise CredentialError(
                extract_error_message(response, LOGIN_FAILED),
                status_code=response.status_code,
            )

        body = self._json_object(response, CredentialError, LOGIN_FAILED)
        user = self._optional_identity(body.get("user"))

        if body.get("requires_2fa"):
            challenge = body.get("session_token")
            if not isinstance(challenge, str) or not challenge:
                self._logger.warning("Login challenge arrived without a challenge token.")
                raise CredentialError(LOGIN_FAILED, status_code=response.status_code)
            return LoginChallenge(challenge_token=challenge, user=user)

        token = body.get("token")
        if not isinstance(token, str) or not token:
            self._logger.warning("Login succeeded without a session token.")
            raise CredentialError(LOGIN_FAILED, status_code=response.status_code)
        return Session(token=token, user=user)

    async def complete_two_factor_login(
        self, challenge_token: str, code: str,
    ) -> SecondFactorResult:
        """``POST /auth/complete-2fa-login``.

        Raises:
            SecondFactorError: Wrong code, or an expired/used challenge.
            TransportError: The backend could not be reached.
        """
        response = await self._post_unguarded(
            "/auth/complete-2fa-login",
            {"session_token": challenge_token, "totp_token": code},
        )
        if response.is_error:
            raise SecondFactorError(
                extract_error_message(response, SECOND_FACTOR_FAILED),
                status_code=response.status_code,
            )

        body = self._json_object(response, SecondFactorError, SECOND_FACTOR_FAILED)
        token = body.get("token")
        if not isinstance(token, str) or not token:
            raise SecondFactorError(SECOND_FACTOR_FAILED, status_code=response.status_code)
        warning = body.get("warning")
        return SecondFactorResult(
            session=Session(token=token, user=self._optional_identity(body.get("user"))),
            warning=warning if isinstance(warning, str) and warning else None,
        )

    # ------------------------------------------------------------------
    # Account (gated)
    # ------------------------------------------------------------------

    async def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
    ) -> Session:
        """``POST /auth/register``; the new account is signed in directly."""
        payload: dict[str, JsonValue] = {
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
        }
        if phone:
            payload["phone"] = phone
        response = await self._gate.request(
            "POST", "/auth/register", json=denormalize_keys(payload), requires_auth=False,
        )
        body = self._checked(response, RegistrationError, REGISTRATION_FAILED)
        token = body.get("token")
        if not isinstance(token, str) or not token:
            raise RegistrationError(REGISTRATION_FAILED, status_code=response.status_code)
        return Session(token=token, user=self._optional_identity(body.get("user")))

    async def logout(self) -> None:
        """``POST /auth/logout``.  Server-side session teardown only."""
        response = await self._gate.request("POST", "/auth/logout")
        self._checked(response, RequestError, REQUEST_FAILED)

    async def get_profile(self) -> Identity:
        response = await self._gate.request("GET", "/user/profile")
        body = self._checked(response, RequestError, PROFILE_LOAD_FAILED)
        return self._identity(body, RequestError, PROFILE_LOAD_FAILED)

    async def update_profile(self, fields: dict[str, JsonValue]) -> Identity:
        """``PUT /user/profile`` with camelCase keys; returns the stored identity."""
        response = await self._gate.request(
            "PUT", "/user/profile", json=denormalize_keys(fields),
        )
        body = self._checked(response, UpdateError, PROFILE_UPDATE_FAILED)
        return self._identity(body, UpdateError, PROFILE_UPDATE_FAILED)

    async def request_account_verification(self) -> str:
        return await self._acknowledged("/user/request-account-verification")

    async def send_email_verification(self) -> str:
        return await self._acknowledged("/user/send-email-verification")

    async def verify_email(self, token: str) -> str:
        return await self._acknowledged("/user/verify-email", {"token": token})

    async def probe_admin(self) -> bool:
        """``GET /admin/users``: ``True`` only on a 2xx answer."""
        response = await self._gate.request("GET", "/admin/users")
        return response.is_success

    # ------------------------------------------------------------------
    # Two-factor (gated)
    # ------------------------------------------------------------------

    async def get_two_factor_status(self) -> TwoFactorStatus:
        response = await self._gate.request("GET", "/2fa/status")
        body = self._checked(response, TwoFactorStatusUnknownError, STATUS_FAILED)
        try:
            return TwoFactorStatus.model_validate(body)
        except ModelValidationError as exc:
            raise TwoFactorStatusUnknownError(STATUS_FAILED) from exc

    async def setup_two_factor(self) -> EnrollmentMaterial:
        response = await self._gate.request("POST", "/2fa/setup")
        body = self._checked(response, SetupError, SETUP_FAILED)
        try:
            return EnrollmentMaterial.model_validate(body)
        except ModelValidationError as exc:
            raise SetupError(SETUP_FAILED, status_code=response.status_code) from exc

    async def verify_two_factor_setup(self, code: str) -> None:
        response = await self._gate.request("POST", "/2fa/verify-setup", json={"token": code})
        self._checked(response, VerificationError, VERIFICATION_FAILED)

    async def disable_two_factor(self, code: str) -> None:
        response = await self._gate.request("POST", "/2fa/disable", json={"token": code})
        self._checked(response, VerificationError, VERIFICATION_FAILED)

    async def generate_backup_codes(self, code: str) -> BackupCodeBatch:
        response = await self._gate.request(
            "POST", "/2fa/generate-backup-codes", json={"token": code},
        )
        body = self._checked(response, VerificationError, BACKUP_CODES_FAILED)
        try:
            return BackupCodeBatch.model_validate(body)
        except ModelValidationError as exc:
            raise VerificationError(BACKUP_CODES_FAILED) from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _post_unguarded(self, path: str, body: dict[str, JsonValue]) -> httpx.Response:
        try:
            return await self._client.post(path, json=body)
        except httpx.TimeoutException as exc:
            self._logger.warning("POST %s timed out: %s", path, exc)
            raise TransportError(TIMEOUT_MESSAGE) from exc
        except httpx.RequestError as exc:
            self._logger.warning("POST %s failed: %s", path, exc)
            raise TransportError(NETWORK_ERROR_MESSAGE) from exc

    async def _acknowledged(self, path: str, body: Optional[dict[str, JsonValue]] = None) -> str:
        """POST a request whose success answer is just a message."""
        response = await self._gate.request("POST", path, json=body)
        payload = self._checked(response, RequestError, REQUEST_FAILED)
        message = payload.get("message")
        return message if isinstance(message, str) else ""

    def _checked(
        self,
        response: httpx.Response,
        error_cls: type[PortalError],
        default: str,
    ) -> dict[str, JsonValue]:
        if response.is_error:
            raise error_cls(
                extract_error_message(response, default),
                status_code=response.status_code,
            )
        return self._json_object(response, error_cls, default)

    def _json_object(
        self,
        response: httpx.Response,
        error_cls: type[PortalError],
        default: str,
    ) -> dict[str, JsonValue]:
        """Decode a success body into a snake_case dict (empty body -> ``{}``)."""
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            self._logger.warning("Non-JSON success body from %s", response.request.url.path)
            raise error_cls(default, status_code=response.status_code) from exc
        if not isinstance(body, dict):
            raise error_cls(default, status_code=response.status_code)
        return normalize_keys(body)

    def _optional_identity(self, payload: JsonValue) -> Optional[Identity]:
        if not isinstance(payload, dict):
            return None
        try:
            return Identity.from_payload(payload)
        except ModelValidationError as exc:
            self._logger.warning("Ignoring malformed user payload: %s", exc)
            return None

    def _identity(
        self,
        body: dict[str, JsonValue],
        error_cls: type[PortalError],
        default: str,
    ) -> Identity:
        """The profile routes answer either ``{user: {...}}`` or the bare user."""
        payload = body.get("user")
        if not isinstance(payload, dict):
            payload = body
        try:
            return Identity.from_payload(payload)
        except ModelValidationError as exc:
            raise error_cls(default) from exc
