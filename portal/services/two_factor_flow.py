"""
Second-Factor Enrollment / Disablement Flow.

An account-security toggle on top of an existing session.  Which
sub-flow is reachable depends on the cached ``TwoFactorStatus``::

    enrollment:   Inactive ─▶ SetupRequested ─▶ AwaitingSetupConfirmation ─▶ Enabled
    disablement:  Enabled  ─▶ AwaitingDisableConfirmation ─▶ Inactive

``TwoFactorStatus.enabled`` flips only after the server confirmed a code,
and always does once it has, even if the dialog was cancelled meanwhile.
Enrollment material lives only on ``AwaitingSetupConfirmation`` and is
never reused once the dialog is cancelled.  The flow never touches the
session itself.
"""

from __future__ import annotations

from typing import Optional, Union

from portal.auth import SessionStore
from portal.errors import (
    FlowStateError,
    SessionExpiredError,
    SetupError,
    TransportError,
    TwoFactorStatusUnknownError,
    ValidationError,
    VerificationError,
)
from portal.logger import StructuredLogger
from portal.models.auth_models import TwoFactorStatus
from portal.models.flow_states import (
    AwaitingDisableConfirmation,
    AwaitingSetupConfirmation,
    Enabled,
    Inactive,
    SetupRequested,
    StatusUnknown,
    TwoFactorState,
)
from portal.services.backend_api import BackendApi
from portal.session_guard import requires_session
from portal.utils.audit import log_audit_event
from portal.utils.validators import validate_totp_code


class TwoFactorFlow:
    """State holder for the 2FA settings dialog.

    Parameters
    ----------
    api:
        Backend boundary (all routes used here are gated).
    store:
        The shared ``SessionStore``; read only, to require a session.
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
        self._state: TwoFactorState = StatusUnknown()
        self._status: Optional[TwoFactorStatus] = None
        self._generation: int = 0
        self._in_flight: bool = False

    @property
    def state(self) -> TwoFactorState:
        return self._state

    @property
    def status(self) -> Optional[TwoFactorStatus]:
        """Last server truth, or ``None`` while unknown."""
        return self._status

    @property
    def busy(self) -> bool:
        return self._in_flight

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @requires_session
    async def refresh_status(self) -> TwoFactorState:
        """Fetch ``GET /2fa/status`` and settle on ``Inactive`` or ``Enabled``.

        On failure the status becomes unknown (``StatusUnknown`` carrying a
        ``TwoFactorStatusUnknownError``) and neither sub-flow is offered.
        """
        self._require_settled("refresh_status", (StatusUnknown, Inactive, Enabled))
        generation = self._begin_call()
        try:
            status = await self._api.get_two_factor_status()
        except (TwoFactorStatusUnknownError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._status = None
            self._state = StatusUnknown(
                error=TwoFactorStatusUnknownError(exc.message, status_code=exc.status_code),
            )
            return self._state
        except SessionExpiredError:
            self._reset_after_expiry(generation)
            raise
        finally:
            self._end_call(generation)

        if self._is_stale(generation):
            return self._state
        self._status = status
        self._state = self._settled_state()
        return self._state

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    @requires_session
    async def request_setup(self) -> TwoFactorState:
        """Ask the server for a new secret (``POST /2fa/setup``).

        If the dialog is cancelled before the answer arrives, the answer
        is dropped and no material is shown.
        """
        self._require_settled("request_setup", (Inactive,))
        self._state = SetupRequested()
        generation = self._begin_call()
        try:
            material = await self._api.setup_two_factor()
        except (SetupError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._state = Inactive(error=SetupError(exc.message, status_code=exc.status_code))
            return self._state
        except SessionExpiredError:
            self._reset_after_expiry(generation)
            raise
        finally:
            self._end_call(generation)

        if self._is_stale(generation):
            self._logger.info("Discarding 2FA enrollment material that arrived after cancel.")
            return self._state
        self._state = AwaitingSetupConfirmation(material=material)
        return self._state

    @requires_session
    async def confirm_setup(self, code: str) -> TwoFactorState:
        """Confirm enrollment with the first code from the authenticator app.

        A rejected code keeps the same material on screen; a new secret
        needs an explicit ``cancel()`` plus ``request_setup()``.
        """
        state = self._state
        if not isinstance(state, AwaitingSetupConfirmation) or self._in_flight:
            raise FlowStateError(
                f"confirm_setup is not allowed in state '{state.phase}'."
            )

        check = validate_totp_code(code)
        if not check.is_valid:
            self._state = state.with_error(ValidationError(check.error_message or ""))
            return self._state

        generation = self._begin_call()
        try:
            await self._api.verify_two_factor_setup(code)
        except (VerificationError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._state = state.with_error(
                VerificationError(exc.message, status_code=exc.status_code),
            )
            return self._state
        except SessionExpiredError:
            self._reset_after_expiry(generation)
            raise
        finally:
            self._end_call(generation)

        self._status = self._current_status().model_copy(
            update={"enabled": True, "setup_initiated": False},
        )
        self._audit("2FA_ENABLED")
        if self._is_stale(generation):
            return self._apply_late_toggle()
        self._state = Enabled()
        return self._state

    # ------------------------------------------------------------------
    # Disablement
    # ------------------------------------------------------------------

    @requires_session
    def begin_disable(self) -> TwoFactorState:
        """Open the disable confirmation (local, no request)."""
        self._require_settled("begin_disable", (Enabled,))
        self._state = AwaitingDisableConfirmation()
        return self._state

    @requires_session
    async def confirm_disable(self, code: str) -> TwoFactorState:
        state = self._state
        if not isinstance(state, AwaitingDisableConfirmation) or self._in_flight:
            raise FlowStateError(
                f"confirm_disable is not allowed in state '{state.phase}'."
            )

        check = validate_totp_code(code)
        if not check.is_valid:
            self._state = state.with_error(ValidationError(check.error_message or ""))
            return self._state

        generation = self._begin_call()
        try:
            await self._api.disable_two_factor(code)
        except (VerificationError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._state = state.with_error(
                VerificationError(exc.message, status_code=exc.status_code),
            )
            return self._state
        except SessionExpiredError:
            self._reset_after_expiry(generation)
            raise
        finally:
            self._end_call(generation)

        self._status = self._current_status().model_copy(
            update={"enabled": False, "setup_initiated": False, "backup_codes_remaining": 0},
        )
        self._audit("2FA_DISABLED")
        if self._is_stale(generation):
            return self._apply_late_toggle()
        self._state = Inactive()
        return self._state

    # ------------------------------------------------------------------
    # Backup codes
    # ------------------------------------------------------------------

    @requires_session
    async def generate_backup_codes(self, code: str) -> TwoFactorState:
        """Replace all backup codes; the new batch is shown on ``Enabled``."""
        state = self._state
        if not isinstance(state, Enabled) or self._in_flight:
            raise FlowStateError(
                f"generate_backup_codes is not allowed in state '{state.phase}'."
            )

        check = validate_totp_code(code)
        if not check.is_valid:
            self._state = Enabled(error=ValidationError(check.error_message or ""))
            return self._state

        generation = self._begin_call()
        try:
            batch = await self._api.generate_backup_codes(code)
        except (VerificationError, TransportError) as exc:
            if self._is_stale(generation):
                return self._state
            self._state = Enabled(
                error=VerificationError(exc.message, status_code=exc.status_code),
            )
            return self._state
        except SessionExpiredError:
            self._reset_after_expiry(generation)
            raise
        finally:
            self._end_call(generation)

        if self._is_stale(generation):
            return self._state
        self._status = self._current_status().model_copy(
            update={"backup_codes_remaining": len(batch.backup_codes)},
        )
        self._audit("2FA_BACKUP_CODES_REGENERATED", {"count": len(batch.backup_codes)})
        self._state = Enabled(backup_codes=tuple(batch.backup_codes))
        return self._state

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self) -> TwoFactorState:
        """Close the dialog: drop material and codes, ignore late answers."""
        self._generation += 1
        self._in_flight = False
        self._state = self._settled_state()
        return self._state

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _settled_state(self) -> Union[StatusUnknown, Inactive, Enabled]:
        if self._status is None:
            return StatusUnknown()
        return Enabled() if self._status.enabled else Inactive()

    def _apply_late_toggle(self) -> TwoFactorState:
        """Show a server-confirmed toggle that arrived after ``cancel()``.

        The dialog stays closed; only a settled state is replaced.
        """
        if not self._in_flight and isinstance(self._state, (StatusUnknown, Inactive, Enabled)):
            self._state = self._settled_state()
        return self._state

    def _current_status(self) -> TwoFactorStatus:
        return self._status if self._status is not None else TwoFactorStatus()

    def _require_settled(self, operation: str, allowed: tuple[type, ...]) -> None:
        if self._in_flight or not isinstance(self._state, allowed):
            raise FlowStateError(
                f"{operation} is not allowed in state '{self._state.phase}'"
                + (" while a request is in progress." if self._in_flight else ".")
            )

    def _reset_after_expiry(self, generation: int) -> None:
        if self._is_stale(generation):
            return
        self._status = None
        self._state = StatusUnknown()

    def _audit(self, action: str, details: Optional[dict[str, int]] = None) -> None:
        session = self._store.current()
        log_audit_event(
            self._logger,
            action,
            session.user.id if session is not None and session.user is not None else None,
            details,
        )

    def _begin_call(self) -> int:
        self._in_flight = True
        return self._generation

    def _end_call(self, generation: int) -> None:
        if generation == self._generation:
            self._in_flight = False

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation
