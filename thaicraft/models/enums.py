"""
Shared Enumerations for Thai Craft Auth Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so
``if category == "timeout"`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum


class PolicyName(StrEnum):
    """The three legal documents a user must accept before signing in."""

    TERMS = "terms"
    PRIVACY = "privacy"
    CONTENT = "content"


class ErrorCategory(StrEnum):
    """User-facing failure categories produced by the error classifier."""

    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    WALLET = "wallet"
    WALLET_REJECTION = "wallet_rejection"
    SERVER_VERIFICATION = "server_verification"
    SESSION_EXPIRED = "session_expired"
    GAME = "game"
    UNKNOWN = "unknown"


class AuthStage(StrEnum):
    """Discriminator values for the controller's tagged-union state."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_POLICY_CONSENT = "awaiting_policy_consent"
    AWAITING_WALLET_APPROVAL = "awaiting_wallet_approval"
    VERIFYING_WITH_SERVER = "verifying_with_server"
    AWAITING_USERNAME = "awaiting_username"
    AUTHENTICATED = "authenticated"


class VerificationStep(StrEnum):
    """Which server exchange a ``VerifyingWithServer`` state is waiting on."""

    VERIFY = "verify"
    REGISTER = "register"


class ErrorContext(StrEnum):
    """Where a reported failure originated; drives the notification title."""

    WALLET_CONNECTION = "wallet_connection"
    REGISTRATION = "registration"
    SESSION = "session"
    NETWORK = "Network Request"
    AUTHENTICATION = "Authentication"
    GAME = "Game Engine"
    ASYNC = "Async Operation"


class StoreKey(StrEnum):
    """Keys of the persistent key/value store."""

    SESSION_ID = "sessionId"
    USER_DATA = "userData"
    LAST_ACTIVITY = "lastActivity"
    WALLET_AUTH_TOKEN = "mwaAuthToken"
    WALLET_ADDRESS = "mwaBase64Address"
    ACCEPTED_POLICIES = "policyAcceptedVersions"
    # Left behind by the lesson/game screens; wiped with the session.
    GAME_SESSION_TOKEN = "gameSessionToken"
    GAME_SESSION_ID = "gameSessionId"
    CURRENT_GAME_SESSION = "currentGameSession"
    PLAYER_NAME = "playerName"
