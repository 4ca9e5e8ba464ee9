"""
Login State Machine.

Drives the two-phase sign-in (password, then an optional 6-digit code or
a one-time backup code) as a sequence of immutable states from
``portal.models.flow_states``::

    Idle ─▶ CredentialsSubmitted ─┬─▶ Authenticated
      ▲                           ├─▶ SecondFactorRequired ─▶ SecondFactorSubmitted ─┬─▶ Authenticated
      │                           │          ▲                                      │
      └──── Failed ◀──────────────┘          └────────── (wrong code) ◀─────────────┘

Expected failures are captured on the returned state (``state.error``)
for display; calling an operation from a state that does not allow it
raises ``FlowStateError``.

Only one backend call may be outstanding per machine.  ``cancel()``
bumps a generation counter so a response that arrives after the user
left the view is discarded instead of committing a session.
"""

from __future__ import annotations

from typing import Optional

from portal.auth import SessionStore
from portal.errors import (
    CredentialError,
    FlowStateError,
    SecondFactorError,
    TransportError,
    ValidationError,
)
from portal.logger import StructuredLogger
from portal.models.auth_models import LoginChallenge, Session, ValidationResult
from portal.models.flow_states import (
    Authenticated,
    CredentialsSubmitted,
    Failed,
    Idle,
    LoginState,
    SecondFactorRequired,
    SecondFactorSubmitted,
)
from portal.services.backend_api import BackendApi
from portal.utils.audit import log_audit_event
from portal.utils.validators import (
    normalize_email,
    validate_backup_code,
    validate_login_fields,
    validate_totp_code,
)


class LoginStateMachine:
    """One sign-in attempt, from the empty form to an authenticated session.

    Parameters
    ----------
    api:
        Backend boundary providing the two login verifiers.
    store:
        The ``SessionStore`` a successful sign-in commits into.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        api: BackendApi,
        store: SessionStore,
        logger: StructuredLogger,
    ) -> None:
        self._api: BackendApi = api
        self._store: SessionStore = store
        self._logger: StructuredLogger = logger
        self._state: LoginState = Idle()
        self._generation: int = 0
        self._in_flight: bool = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoginState:
        return self._state

    @property
    def can_submit_credentials(self) -> bool:
        """Whether the sign-in button should be enabled."""
        return not self._in_flight and isinstance(self._state, (Idle, Failed))

    @property
    def can_submit_second_factor(self) -> bool:
        """Whether the code input should be enabled."""
        return not self._in_flight and isinstance(self._state, SecondFactorRequired)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def submit_credentials(self, email: str, password: str) -> LoginState:
        """Verify email and password.

        Returns ``Idle`` with a ``ValidationError`` (no network call) for
        a blank field, ``Authenticated`` for an account without 2FA,
        ``SecondFactorRequired`` when a code is needed, and ``Failed``
        on rejection.

        Raises:
            FlowStateError: A call is outstanding, or the machine is past
                the credentials step.
        """
        self._ensure_idle_call("submit_credentials")
        if not isinstance(self._state, (Idle, Failed)):
            raise FlowStateError(
                f"Credentials cannot be submitted in state '{self._state.phase}'."
            )

        check = validate_login_fields(email, password)
        if not check.is_valid:
            self._state = Idle(error=ValidationError(check.error_message or ""))
            return self._state

        normalized = normalize_email(email)
        self._state = CredentialsSubmitted(email=normalized)
        generation = self._begin_call()
        try:
            outcome = await self._api.login(normalized, password)
        except (CredentialError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._logger.warning(
                "Login rejected: %s", exc.message,
                extra={"event": "LOGIN_FAILED", "email": normalized},
            )
            self._state = Failed(error=exc)
            return self._state
        finally:
            self._end_call(generation)

        if self._is_stale(generation):
            self._logger.info("Discarding a login response that arrived after cancel.")
            return self._state

        if isinstance(outcome, LoginChallenge):
            self._logger.info(
                "Second factor required for %s", normalized,
                extra={"event": "LOGIN_2FA_REQUIRED", "email": normalized},
            )
            self._state = SecondFactorRequired(
                email=normalized, challenge_token=outcome.challenge_token,
            )
            return self._state

        return self._authenticate(outcome, normalized, second_factor=False)

    async def submit_second_factor(self, code: str) -> LoginState:
        """Verify the 6-digit code against the held challenge token.

        A wrong code returns to ``SecondFactorRequired`` with the same
        token so the user can retry without re-entering credentials.

        Raises:
            FlowStateError: A call is outstanding, or no challenge is held
                (including after the challenge was already used).
        """
        return await self._submit_code("submit_second_factor", code, validate_totp_code(code))

    async def submit_backup_code(self, code: str) -> LoginState:
        """Answer the challenge with a one-time backup code instead.

        Takes an 8-character hex code (either case).  On success the
        server's remaining-codes notice is carried on
        ``Authenticated.warning``.  Otherwise behaves like
        ``submit_second_factor``.
        """
        return await self._submit_code(
            "submit_backup_code", code.strip().upper(), validate_backup_code(code.strip()),
        )

    async def _submit_code(
        self, operation: str, code: str, check: ValidationResult,
    ) -> LoginState:
        self._ensure_idle_call(operation)
        state = self._state
        if not isinstance(state, SecondFactorRequired):
            raise FlowStateError(
                f"A second factor cannot be submitted in state '{state.phase}'."
            )

        if not check.is_valid:
            self._state = state.with_error(ValidationError(check.error_message or ""))
            return self._state

        self._state = SecondFactorSubmitted(
            email=state.email, challenge_token=state.challenge_token,
        )
        generation = self._begin_call()
        try:
            result = await self._api.complete_two_factor_login(state.challenge_token, code)
        except (SecondFactorError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._logger.warning(
                "Second factor rejected: %s", exc.message,
                extra={"event": "LOGIN_2FA_FAILED", "email": state.email},
            )
            self._state = SecondFactorRequired(
                email=state.email, challenge_token=state.challenge_token, error=exc,
            )
            return self._state
        finally:
            self._end_call(generation)

        if self._is_stale(generation):
            self._logger.info("Discarding a 2FA response that arrived after cancel.")
            return self._state

        return self._authenticate(
            result.session, state.email, second_factor=True, warning=result.warning,
        )

    def clear_error(self) -> LoginState:
        """Drop the displayed error after an input change.

        The phase is kept, except that ``Failed`` (which only exists to
        carry an error) becomes ``Idle``.
        """
        if isinstance(self._state, Failed):
            self._state = Idle()
        else:
            self._state = self._state.without_error()
        return self._state

    def cancel(self) -> LoginState:
        """Leave the sign-in view: forget the challenge, ignore late answers."""
        self._generation += 1
        self._in_flight = False
        self._state = Idle()
        return self._state

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _authenticate(
        self,
        session: Session,
        email: str,
        *,
        second_factor: bool,
        warning: Optional[str] = None,
    ) -> LoginState:
        self._store.commit(session)
        log_audit_event(
            self._logger,
            "LOGIN",
            session.user.id if session.user is not None else None,
            {"email": email, "second_factor": second_factor},
        )
        if warning:
            self._logger.warning(
                "Sign-in used a backup code: %s", warning,
                extra={"event": "BACKUP_CODE_USED", "email": email},
            )
        self._state = Authenticated(session=session, warning=warning)
        return self._state

    def _ensure_idle_call(self, operation: str) -> None:
        if self._in_flight:
            raise FlowStateError(
                f"{operation} rejected: a sign-in request is already in progress."
            )

    def _begin_call(self) -> int:
        self._in_flight = True
        return self._generation

    def _end_call(self, generation: int) -> None:
        if generation == self._generation:
            self._in_flight = False

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation
