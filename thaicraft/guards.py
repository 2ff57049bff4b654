"""
Session Guard Decorator.

Gates calls that need a signed-in user (lesson progress sync, rank
refresh) behind the in-memory session, and counts each guarded call as
user activity so the rolling inactivity timeout keeps sliding.

Usage::

    from thaicraft.guards import require_session

    session_guard = require_session(session_manager)

    @session_guard
    async def sync_progress(lesson_id: str) -> None:
        ...
"""

from __future__ import annotations

from functools import wraps
from typing import Awaitable, Callable, ParamSpec, TypeVar

from thaicraft.errors import AuthenticationRequiredError, SessionExpiredError
from thaicraft.services.session_manager import SessionManager

P = ParamSpec("P")
R = TypeVar("R")


def require_session(
    sessions: SessionManager,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Return a decorator that enforces an established session.

    The returned decorator checks ``sessions.is_authenticated`` before
    every call to the wrapped coroutine function and refreshes the
    activity timestamp.  If nobody is signed in, an
    :class:`AuthenticationRequiredError` is raised; a session past the
    inactivity window raises :class:`SessionExpiredError` and is left for
    the caller to sign out.

    Args:
        sessions: The ``SessionManager`` holding the current session.

    Returns:
        A decorator suitable for wrapping async callables.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not sessions.is_authenticated:
                raise AuthenticationRequiredError(
                    "Authentication required. Please connect your wallet "
                    "before performing this action."
                )
            if sessions.is_inactive:
                raise SessionExpiredError(
                    "Your session has expired. Please reconnect your wallet."
                )
            sessions.touch()
            return await func(*args, **kwargs)

        return wrapper

    return decorator
