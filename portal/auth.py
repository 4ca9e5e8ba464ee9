"""
Session Store.

Provides an injectable ``SessionStore`` that owns the authenticated
``Session`` for the lifetime of the client process, and mirrors its
bearer token into the one durable entry managed by ``TokenStorage``.

Usage::

    from portal.auth import SessionStore
    from portal.models import Session

    store = SessionStore(storage=token_storage, logger=logger)
    store.hydrate()                       # start-up: lazy, no verification
    store.commit(Session(token="abc", user=identity))
    store.current()                       # -> Session
    store.clear()                         # logout / rejected token
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Optional

from portal.errors import NoSessionError
from portal.logger import StructuredLogger
from portal.models.auth_models import Identity, Session
from portal.token_storage import TokenStorage
from portal.utils.audit import log_audit_event
from portal.utils.string_helpers import normalize_keys


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionStore:
    """Single owner of the current session and its durable token.

    Every read and write goes through this object; nothing else touches
    the token.  Pass one ``SessionStore`` through the composition root so
    the request gate and every flow share it.

    Parameters
    ----------
    storage:
        Durable token entry (encrypted, one row).
    logger:
        A ``StructuredLogger`` instance.
    max_age_seconds:
        Local session age limit measured from ``Session.issued_at``;
        ``None`` leaves expiry entirely to the server.
    clock:
        Returns the current UTC time.  Injected by tests.
    """

    def __init__(
        self,
        storage: TokenStorage,
        logger: StructuredLogger,
        max_age_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._storage: TokenStorage = storage
        self._logger: StructuredLogger = logger
        self._max_age: Optional[timedelta] = (
            timedelta(seconds=max_age_seconds) if max_age_seconds else None
        )
        self._clock: Callable[[], datetime] = clock
        self._session: Optional[Session] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current(self) -> Optional[Session]:
        """Return the current session, or ``None``.  Pure read."""
        with self._lock:
            return self._session

    def require(self) -> Session:
        """Return the current session.

        Raises:
            NoSessionError: If no session is present.
        """
        with self._lock:
            if self._session is None:
                raise NoSessionError(
                    "No active session. Sign in before performing this action."
                )
            return self._session

    @property
    def token(self) -> Optional[str]:
        with self._lock:
            return self._session.token if self._session is not None else None

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a session (verified or merely hydrated) is present."""
        with self._lock:
            return self._session is not None

    def is_expired(self, session: Optional[Session] = None) -> bool:
        """``True`` when *session* (default: current) is past the local age limit."""
        with self._lock:
            target = session if session is not None else self._session
            if target is None or self._max_age is None:
                return False
            return self._clock() >= target.issued_at + self._max_age

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit(self, session: Session) -> None:
        """Set *session* as current and persist its token."""
        with self._lock:
            self._session = session
            self._storage.write(session.token, stored_at=session.issued_at)
        log_audit_event(
            self._logger,
            "SESSION_COMMITTED",
            session.user.id if session.user is not None else None,
        )

    def clear(self, expected_token: Optional[str] = None, reason: str = "logout") -> bool:
        """Remove the session and the durable entry.  Idempotent.

        Parameters
        ----------
        expected_token:
            When given, clear only if this is still the current token.  A
            caller reacting to a rejected token passes the token it sent,
            so a session committed in the meantime survives and several
            concurrent rejections clear only once.
        reason:
            Recorded on the audit event.

        Returns
        -------
        bool
            ``True`` if a session was present and has been removed.
        """
        with self._lock:
            if expected_token is not None and (
                self._session is None or self._session.token != expected_token
            ):
                return False
            cleared: Optional[Session] = self._session
            self._session = None
            self._storage.remove()

        if cleared is not None:
            log_audit_event(
                self._logger,
                "SESSION_CLEARED",
                cleared.user.id if cleared.user is not None else None,
                {"reason": reason},
            )
        return cleared is not None

    def patch_identity(self, partial: Mapping[str, object]) -> Identity:
        """Merge *partial* (camelCase or snake_case keys) into the identity.

        The token and issue time are kept; only ``Session.user`` changes.

        Raises:
            NoSessionError: If no session is present (a caller defect).
            pydantic.ValidationError: If the merge produces an invalid
                identity (e.g. a hydrated session patched without ``id``).
        """
        with self._lock:
            session = self.require()
            merged: dict[str, object] = (
                session.user.model_dump() if session.user is not None else {}
            )
            merged.update(normalize_keys(dict(partial)))
            identity = Identity.model_validate(merged)
            self._session = session.with_user(identity)
            return identity

    def hydrate(self) -> Optional[Session]:
        """Restore a session from the durable entry at start-up.

        The token is trusted until the first authorized call proves
        otherwise; no network call happens here.  An entry older than the
        local age limit is dropped.
        """
        with self._lock:
            if self._session is not None:
                return self._session

            stored = self._storage.read()
            if stored is None:
                return None

            session = Session(token=stored.token, user=None, issued_at=stored.stored_at)
            if self.is_expired(session):
                self._logger.info(
                    "Stored session from %s exceeded the local age limit; discarded.",
                    stored.stored_at.isoformat(),
                )
                self._storage.remove()
                return None

            self._session = session
            self._logger.info("Session hydrated from durable storage.")
            return session
