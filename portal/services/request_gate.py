"""
Request Gate.

Every backend call other than the two login verifiers goes through
``RequestGate.request``.  The gate:

- attaches ``Authorization: Bearer <token>`` when a session exists;
- fails fast with ``NoSessionError`` for calls that require one;
- turns a rejected or locally aged-out token into exactly one
  ``SessionStore.clear`` plus a ``SessionExpiredError``;
- maps transport failures to ``TransportError``.

It never retries and never navigates.  Anything else (4xx/5xx that is
not a session rejection) is returned to the caller, who maps it onto its
own error class.
"""

from __future__ import annotations

from typing import Optional

import httpx

from portal.auth import SessionStore
from portal.errors import NoSessionError, SessionExpiredError, TransportError
from portal.logger import StructuredLogger
from portal.utils.audit import log_audit_event
from portal.utils.string_helpers import JsonValue

SESSION_EXPIRED_MESSAGE: str = "Your session has expired. Please sign in again."
NETWORK_ERROR_MESSAGE: str = "Network error. Please try again."
TIMEOUT_MESSAGE: str = "The server took too long to respond. Please try again."


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

def extract_error_message(response: httpx.Response, default: str) -> str:
    """Return the server's error text verbatim, or *default* for an empty body.

    ``{"errors": [{"msg": ...}, ...]}`` (validator output) is joined with
    ``", "``; ``{"error": "..."}`` is used as-is.
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or default

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts: list[str] = []
            for item in errors:
                if isinstance(item, dict):
                    msg = item.get("msg") or item.get("message")
                    if msg:
                        parts.append(str(msg))
                elif item:
                    parts.append(str(item))
            if parts:
                return ", ".join(parts)
        for key in ("error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return default


def is_session_rejection(response: httpx.Response) -> bool:
    """``True`` for 401, or 403 whose message is about the token.

    A 403 for missing permissions (e.g. "Admin access required") is an
    authorization answer about the *user*, not the session.
    """
    if response.status_code == 401:
        return True
    if response.status_code == 403:
        return "token" in extract_error_message(response, "").lower()
    return False


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class RequestGate:
    """Attaches the session token and polices session rejections.

    Parameters
    ----------
    client:
        An ``httpx.AsyncClient`` whose ``base_url`` points at the backend
        API root.  Timeouts are the client's policy.
    store:
        The shared ``SessionStore``.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: SessionStore,
        logger: StructuredLogger,
    ) -> None:
        self._client: httpx.AsyncClient = client
        self._store: SessionStore = store
        self._logger: StructuredLogger = logger

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[JsonValue] = None,
        params: Optional[dict[str, str]] = None,
        requires_auth: bool = True,
    ) -> httpx.Response:
        """Send one request through the gate.

        Raises
        ------
        NoSessionError
            *requires_auth* is set and no session exists.  No request is
            sent.
        SessionExpiredError
            The session aged out locally (no request is sent) or the
            server rejected its token.  The store has been cleared.
        TransportError
            The backend could not be reached or timed out.
        """
        session = self._store.current()
        if session is None and requires_auth:
            raise NoSessionError(
                f"{method} {path} requires an active session."
            )

        headers: dict[str, str] = {}
        sent_token: Optional[str] = None
        if session is not None:
            if self._store.is_expired(session):
                self._expire(session.token, "max_age")
                raise SessionExpiredError(SESSION_EXPIRED_MESSAGE)
            sent_token = session.token
            headers["Authorization"] = f"Bearer {sent_token}"

        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers,
            )
        except httpx.TimeoutException as exc:
            self._logger.warning("%s %s timed out: %s", method, path, exc)
            raise TransportError(TIMEOUT_MESSAGE) from exc
        except httpx.RequestError as exc:
            self._logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportError(NETWORK_ERROR_MESSAGE) from exc

        if sent_token is not None and is_session_rejection(response):
            message = extract_error_message(response, SESSION_EXPIRED_MESSAGE)
            self._expire(sent_token, f"http_{response.status_code}")
            raise SessionExpiredError(message, status_code=response.status_code)

        self._logger.debug(
            "%s %s -> %d", method, path, response.status_code,
        )
        return response

    def _expire(self, token: str, reason: str) -> None:
        session = self._store.current()
        user_id = session.user.id if session is not None and session.user is not None else None
        if self._store.clear(expected_token=token, reason=reason):
            log_audit_event(
                self._logger, "SESSION_EXPIRED", user_id, {"reason": reason},
            )
