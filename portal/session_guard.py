"""
Session Guard Decorator.

Gates flow and service methods behind an active session.  The decorated
method's owner must expose its ``SessionStore`` as ``self._store``.

Usage::

    from portal.session_guard import requires_session

    class ProfileService:
        def __init__(self, store: SessionStore) -> None:
            self._store = store

        @requires_session
        async def refresh_identity(self) -> Identity:
            ...  # only reachable with a session
"""

from __future__ import annotations

import inspect
from functools import wraps
from typing import Any, Awaitable, Callable, Protocol, TypeVar, cast

from portal.auth import SessionStore
from portal.errors import NoSessionError

F = TypeVar("F", bound=Callable[..., Any])


class _HasStore(Protocol):
    _store: SessionStore


def _check(owner: _HasStore, name: str) -> None:
    if not owner._store.is_authenticated:
        raise NoSessionError(
            f"{name} requires an active session. Sign in before "
            "performing this action."
        )


def requires_session(func: F) -> F:
    """Raise :class:`NoSessionError` when ``self._store`` holds no session.

    Works on both plain and ``async`` methods; for coroutines the check
    runs when the coroutine starts, not when it is created.
    """
    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(self: _HasStore, *args: Any, **kwargs: Any) -> Any:
            _check(self, func.__name__)
            return await cast(Callable[..., Awaitable[Any]], func)(self, *args, **kwargs)

        return cast(F, async_wrapper)

    @wraps(func)
    def wrapper(self: _HasStore, *args: Any, **kwargs: Any) -> Any:
        _check(self, func.__name__)
        return func(self, *args, **kwargs)

    return cast(F, wrapper)
