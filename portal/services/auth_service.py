"""
Authentication Service.

Account-level entry points around the session store: start-up
hydration, a fresh ``LoginStateMachine`` per sign-in view, registration
and logout.

Registration is validated locally first (same rules as the backend's
validators) so a malformed form never reaches the network.
"""

from __future__ import annotations

from typing import Optional

from portal.auth import SessionStore
from portal.errors import PortalError, ValidationError
from portal.logger import StructuredLogger
from portal.models.auth_models import Session
from portal.services.backend_api import BackendApi
from portal.services.login_flow import LoginStateMachine
from portal.utils.audit import log_audit_event
from portal.utils.validators import (
    normalize_email,
    validate_email,
    validate_name,
    validate_password,
)


class AuthService:
    """Handles sign-in bootstrapping, registration and sign-out.

    Parameters
    ----------
    api:
        Backend boundary.
    store:
        The shared ``SessionStore``.
    logger:
        Structured JSON logger for audit-grade logging.
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

    # ==================================================================
    # Start-up
    # ==================================================================

    def restore_session(self) -> Optional[Session]:
        """Hydrate from the durable entry without contacting the server."""
        return self._store.hydrate()

    def new_login(self) -> LoginStateMachine:
        """Return a fresh state machine for one sign-in view."""
        return LoginStateMachine(api=self._api, store=self._store, logger=self._logger)

    # ==================================================================
    # Registration
    # ==================================================================

    async def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
    ) -> Session:
        """Create an account and sign it in.

        Parameters
        ----------
        first_name, last_name:
            Display names; control characters are rejected.
        email:
            Normalised (trimmed, lower-cased) before sending.
        password:
            Must satisfy the password policy (8+ chars, upper, lower,
            digit, one of ``@$!%*?&``).
        phone:
            Optional contact number.

        Raises
        ------
        ValidationError
            A field failed local validation; nothing was sent.
        RegistrationError
            The backend refused the account (message verbatim).
        TransportError
            The backend could not be reached.
        """
        email = normalize_email(email)
        for check in (
            validate_name(first_name, "First name"),
            validate_name(last_name, "Last name"),
            validate_email(email),
            validate_password(password),
        ):
            if not check.is_valid:
                raise ValidationError(check.error_message or "")

        session = await self._api.register(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            password=password,
            phone=phone.strip() if phone and phone.strip() else None,
        )
        self._store.commit(session)
        self._logger.info(
            "User registered: %s", email,
            extra={
                "event": "REGISTER",
                "email": email,
                "user_id": session.user.id if session.user is not None else "unknown",
            },
        )
        return session

    # ==================================================================
    # Logout
    # ==================================================================

    async def logout(self) -> None:
        """Server-side sign-out, then clear local state.

        The server call is best effort: a failure (including an already
        expired session) is logged and the local session is cleared
        regardless.
        """
        session = self._store.current()
        if session is None:
            self._store.clear()
            return

        user_id = session.user.id if session.user is not None else None
        try:
            await self._api.logout()
        except PortalError as exc:
            self._logger.warning("Server-side logout failed: %s", exc.message)

        self._store.clear(reason="logout")
        log_audit_event(self._logger, "LOGOUT", user_id)
