"""
Profile Service.

Identity reads and writes for the signed-in user.  Every change the
server confirms is written through into the session via
``SessionStore.patch_identity`` so the UI never shows stale names.
"""

from __future__ import annotations

from typing import Optional

from portal.auth import SessionStore
from portal.errors import PortalError, SessionExpiredError, ValidationError
from portal.logger import StructuredLogger
from portal.models.auth_models import Identity
from portal.services.backend_api import BackendApi
from portal.session_guard import requires_session
from portal.utils.string_helpers import JsonValue
from portal.utils.validators import validate_name

_EDITABLE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "phone"})

_FIELD_LABELS: dict[str, str] = {
    "first_name": "First name",
    "last_name": "Last name",
}


class ProfileService:
    """Reads and updates the current user's profile.

    Parameters
    ----------
    api:
        Backend boundary.
    store:
        The shared ``SessionStore``.
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

    @requires_session
    async def refresh_identity(self) -> Identity:
        """Fetch ``GET /user/profile`` and write it into the session.

        Used after start-up hydration (the durable entry holds only the
        token) and after a 2FA sign-in, whose payload carries just the id
        and email.  This is also the first authorized call that proves a
        hydrated token is still valid.
        """
        sent_token = self._store.token
        identity = await self._api.get_profile()
        return self._write_through(sent_token, identity)

    @requires_session
    async def update_profile(self, **fields: JsonValue) -> Identity:
        """Update ``first_name``, ``last_name`` and/or ``phone``.

        Raises:
            ValidationError: Unknown field or an invalid name (no request
                is sent).
            UpdateError: The server rejected the update.
        """
        unknown = sorted(set(fields) - _EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported profile field(s): {', '.join(unknown)}")
        if not fields:
            raise ValidationError("Nothing to update.")

        for key, label in _FIELD_LABELS.items():
            if key in fields:
                value = fields[key]
                check = validate_name(value if isinstance(value, str) else "", label)
                if not check.is_valid:
                    raise ValidationError(check.error_message or "")
                fields[key] = str(value).strip()

        sent_token = self._store.token
        identity = await self._api.update_profile(dict(fields))
        patched = self._write_through(sent_token, identity)
        self._logger.info(
            "Profile updated: %s", ", ".join(sorted(fields)),
            extra={"event": "PROFILE_UPDATED", "user_id": patched.id},
        )
        return patched

    @requires_session
    async def request_account_verification(self) -> str:
        """Ask an administrator to verify the account; returns the server message."""
        return await self._api.request_account_verification()

    @requires_session
    async def send_email_verification(self) -> str:
        return await self._api.send_email_verification()

    @requires_session
    async def verify_email(self, token: str) -> str:
        if not token or not token.strip():
            raise ValidationError("Verification token is required.")
        message = await self._api.verify_email(token.strip())
        # The verified flag lives on the profile; re-read it, best effort.
        try:
            await self.refresh_identity()
        except SessionExpiredError:
            raise
        except PortalError as exc:
            self._logger.warning("Profile refresh after email verification failed: %s", exc)
        return message

    @requires_session
    async def has_admin_capability(self) -> bool:
        """Whether admin affordances should be shown.

        Uses the identity's explicit ``role`` when the backend sent one.
        Otherwise probes an admin-only route; any failure other than an
        expired session means "no capability".  Only ever toggles UI.
        """
        session = self._store.require()
        if session.user is not None and session.user.is_admin is not None:
            return session.user.is_admin

        try:
            allowed = await self._api.probe_admin()
        except SessionExpiredError:
            raise
        except PortalError as exc:
            self._logger.debug("Admin capability probe failed: %s", exc)
            return False

        self._logger.debug("Admin capability probe: %s", allowed)
        return allowed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _write_through(self, sent_token: Optional[str], identity: Identity) -> Identity:
        """Patch *identity* into the session the request was sent for.

        When that session was cleared or replaced while the request was
        outstanding, the identity is returned without touching the store.
        """
        if sent_token is None or self._store.token != sent_token:
            self._logger.info("Discarding a profile response for a session that has ended.")
            return identity
        return self._store.patch_identity(identity.model_dump())
