"""
Error Classifier & Reporter.

Turns raw failures (exceptions, server text) into the short title and
message the UI collaborator shows in a dismissable notification.  Raw
exception text is often unsuitable for end users, so it is triaged:

1. Known substrings map to a fixed, user-appropriate message.
2. Otherwise a short message (under 100 characters) that does not look
   like an internal value dump is passed through verbatim.
3. Anything else gets a generic fallback.

Typed exceptions from :mod:`thaicraft.errors` supply the category when
substring triage does not.  The full message and stack are kept on the
:class:`ErrorRecord` for the "technical details" expansion only.

:class:`ErrorReporter` is the instance-scoped replacement for a global
error handler: the UI registers one callback and every flow reports
through it.
"""

from __future__ import annotations

import functools
import time
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from thaicraft.errors import ThaiCraftAuthError
from thaicraft.logger import StructuredLogger
from thaicraft.models.enums import ErrorCategory, ErrorContext
from thaicraft.models.error_models import ClassifiedError, ErrorRecord

RawError = Union[BaseException, ErrorRecord, str, None]
ErrorCallback = Callable[[ClassifiedError], None]

T = TypeVar("T")

GENERIC_MESSAGE: str = (
    "An unexpected error occurred. Please try again or restart the app "
    "if the problem persists."
)
_PASS_THROUGH_LIMIT: int = 100

# Checked in order; the first matching row wins.
_TRIAGE_RULES: tuple[tuple[tuple[str, ...], ErrorCategory, str], ...] = (
    (
        ("network", "fetch"),
        ErrorCategory.CONNECTIVITY,
        "Unable to connect to the server. Please check your internet connection and try again.",
    ),
    (
        ("timeout", "timed out"),
        ErrorCategory.TIMEOUT,
        "The request took too long to complete. Please try again.",
    ),
    (
        ("authentication", "unauthorized"),
        ErrorCategory.AUTHENTICATION,
        "Authentication failed. Please reconnect your wallet and try again.",
    ),
    (
        ("wallet",),
        ErrorCategory.WALLET,
        "There was an issue with your wallet connection. Please try reconnecting.",
    ),
    (
        ("game",),
        ErrorCategory.GAME,
        "A game error occurred. Your progress has been saved. Please restart the game.",
    ),
)

# Wallet adapter failures with a dedicated explanation.
_WALLET_CONNECTION_RULES: tuple[tuple[str, str], ...] = (
    (
        "no wallet found",
        "No compatible wallet app found. Please install a Solana wallet app like Phantom Mobile.",
    ),
    ("user declined", "Connection was cancelled by user."),
)

_CONTEXT_TITLES: dict[str, str] = {
    ErrorContext.WALLET_CONNECTION: "Connection Failed",
    ErrorContext.REGISTRATION: "Registration Failed",
    ErrorContext.SESSION: "Session Expired",
}


# ---------------------------------------------------------------------------
# Pure functions
# ---------------------------------------------------------------------------

def capture(
    raw: RawError,
    context: Optional[str] = None,
    boundary: bool = False,
) -> ErrorRecord:
    """Build an :class:`ErrorRecord` from whatever was caught."""
    if isinstance(raw, ErrorRecord):
        return raw

    stack: Optional[str] = None
    if isinstance(raw, BaseException):
        message = str(raw) or type(raw).__name__
        if raw.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(raw), raw, raw.__traceback__))
    elif isinstance(raw, str) and raw:
        message = raw
    else:
        message = "An unknown error occurred"

    return ErrorRecord(
        message=message,
        stack=stack,
        timestamp=int(time.time() * 1000),
        boundary_flag=boundary,
        context=context,
    )


def title_for(context: Optional[str], boundary: bool = False) -> str:
    if boundary:
        return "Something went wrong"
    if context:
        return _CONTEXT_TITLES.get(context, f"Error in {context}")
    return "Unexpected Error"


def triage(message: str, category_hint: Optional[ErrorCategory] = None) -> tuple[ErrorCategory, str]:
    """Map a raw *message* to ``(category, user-facing message)``."""
    lowered = message.lower()
    for needles, category, friendly in _TRIAGE_RULES:
        if any(needle in lowered for needle in needles):
            return category, friendly

    category = category_hint or ErrorCategory.UNKNOWN
    if (
        len(message) < _PASS_THROUGH_LIMIT
        and "undefined" not in message
        and "null" not in message
    ):
        return category, message
    return category, GENERIC_MESSAGE


def classify(
    raw: RawError,
    context: Optional[str] = None,
    boundary: bool = False,
) -> ClassifiedError:
    """Classify a raw failure for display.  Pure; never raises."""
    record = capture(raw, context, boundary)
    hint: Optional[ErrorCategory] = None
    if isinstance(raw, ThaiCraftAuthError):
        hint = raw.category

    if record.context == ErrorContext.WALLET_CONNECTION:
        lowered = record.message.lower()
        for needle, friendly in _WALLET_CONNECTION_RULES:
            if needle in lowered:
                return ClassifiedError(
                    title=title_for(record.context, record.boundary_flag),
                    message=friendly,
                    category=ErrorCategory.WALLET_REJECTION,
                    record=record,
                )

    category, message = triage(record.message, hint)
    return ClassifiedError(
        title=title_for(record.context, record.boundary_flag),
        message=message,
        category=category,
        record=record,
    )


def user_notice(
    message: str,
    context: Optional[str] = None,
    category: ErrorCategory = ErrorCategory.SERVER_VERIFICATION,
) -> ClassifiedError:
    """A message already written for end users (server refusal text or
    our own copy); shown verbatim."""
    record = capture(message, context)
    return ClassifiedError(
        title=title_for(context),
        message=message,
        category=category,
        record=record,
    )


def format_details(record: ErrorRecord) -> str:
    """Multi-line diagnostics text for the "technical details" expansion."""
    lines = [
        f"Time: {datetime.fromtimestamp(record.timestamp / 1000).strftime('%H:%M:%S')}",
        f"Context: {record.context or 'none'}",
        f"Message: {record.message}",
    ]
    if record.stack:
        lines.append("Technical Details:")
        lines.append(record.stack.rstrip())
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------

class ErrorReporter:
    """Routes classified failures to the registered UI callback.

    Parameters
    ----------
    logger:
        Structured logger instance; every report is logged.
    callback:
        Optional initial callback.  Replace it with :meth:`set_callback`.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        callback: Optional[ErrorCallback] = None,
    ) -> None:
        self._logger = logger
        self._callback = callback

    def set_callback(self, callback: Optional[ErrorCallback]) -> None:
        self._callback = callback

    def report(self, classified: ClassifiedError) -> ClassifiedError:
        """Log *classified* and hand it to the callback."""
        self._logger.warning(
            "%s: %s", classified.title, classified.record.message if classified.record else classified.message,
            extra={
                "event": "ERROR_REPORTED",
                "category": classified.category.value,
                "context": (classified.record.context if classified.record else None) or "",
            },
        )
        if self._callback is not None:
            try:
                self._callback(classified)
            except Exception:
                # Callback failures never reach the reporting flow.
                self._logger.error("Error callback raised.", exc_info=True)
        return classified

    def handle_error(
        self,
        error: RawError,
        context: Optional[str] = None,
        boundary: bool = False,
    ) -> ClassifiedError:
        return self.report(classify(error, context, boundary))

    def handle_async_error(self, error: RawError, context: Optional[str] = None) -> ClassifiedError:
        return self.handle_error(error, context or ErrorContext.ASYNC)

    def handle_network_error(self, error: RawError, context: Optional[str] = None) -> ClassifiedError:
        return self.handle_error(
            _with_default(error, "Network request failed"), context or ErrorContext.NETWORK,
        )

    def handle_game_error(self, error: RawError, context: Optional[str] = None) -> ClassifiedError:
        return self.handle_error(
            _with_default(error, "Game error occurred"), context or ErrorContext.GAME,
        )

    def handle_auth_error(self, error: RawError, context: Optional[str] = None) -> ClassifiedError:
        return self.handle_error(
            _with_default(error, "Authentication failed"), context or ErrorContext.AUTHENTICATION,
        )

    def wrap_async(
        self,
        fn: Callable[..., Awaitable[T]],
        context: Optional[str] = None,
    ) -> Callable[..., Awaitable[T]]:
        """Report any exception raised by *fn*, then re-raise it."""

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                self.handle_async_error(exc, context)
                raise

        return wrapper

    def wrap_sync(
        self,
        fn: Callable[..., T],
        context: Optional[str] = None,
    ) -> Callable[..., T]:
        """Synchronous counterpart of :meth:`wrap_async`."""

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                self.handle_error(exc, context)
                raise

        return wrapper


def _with_default(error: RawError, default: str) -> RawError:
    if error is None or (isinstance(error, (str, BaseException)) and not str(error)):
        return default
    return error
