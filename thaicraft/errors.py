"""
Exception taxonomy for the authentication core.

Every failure that an external collaborator (network, wallet, auth
server, local store) can cause is expressed as a subclass of
``ThaiCraftAuthError`` carrying an :class:`ErrorCategory`.  The error
classifier uses the category when message triage alone is inconclusive.
"""

from __future__ import annotations

from typing import Optional

from thaicraft.models.enums import ErrorCategory


class ThaiCraftAuthError(Exception):
    """Base class for all auth-core failures."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class ConnectivityError(ThaiCraftAuthError):
    """The auth server could not be reached or answered without a body."""

    category = ErrorCategory.CONNECTIVITY


class WalletTimeoutError(ThaiCraftAuthError, TimeoutError):
    """The wallet round trip exceeded its bound."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Wallet connection timed out after {timeout_s:g} seconds")
        self.timeout_s = timeout_s


class WalletRejectedError(ThaiCraftAuthError):
    """The user declined, no wallet was available, or approval was empty."""

    category = ErrorCategory.WALLET_REJECTION


class ServerVerificationError(ThaiCraftAuthError):
    """The auth server refused a verify or register request.

    ``detail`` holds the server-provided text when there was one.
    """

    category = ErrorCategory.SERVER_VERIFICATION

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.detail = detail
        self.status_code = status_code


class SessionExpiredError(ThaiCraftAuthError):
    """The session is no longer valid, locally or server-side."""

    category = ErrorCategory.SESSION_EXPIRED


class IllegalTransitionError(ThaiCraftAuthError):
    """An event arrived that the current controller state cannot accept."""


class AuthenticationRequiredError(ThaiCraftAuthError):
    """Raised when a guarded call is made without an established session."""

    category = ErrorCategory.AUTHENTICATION
