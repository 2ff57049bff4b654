"""
Authentication Pipeline Models.

Pydantic models for the session, the wallet credential cache, and the
request/response contracts of the auth server's ``/api/auth/*``
endpoints.

The auth server speaks camelCase JSON; every wire model therefore uses a
camelCase alias generator while Python code keeps snake_case attribute
names.  Dump with ``by_alias=True`` before sending.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, JsonValue, field_validator
from pydantic.alias_generators import to_camel

from thaicraft.models.policy_models import AcceptedPolicySet
from thaicraft.models.wallet_models import SignInPayload


class WireModel(BaseModel):
    """Base for camelCase JSON payloads exchanged with the auth server."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------

class UserRecord(WireModel):
    """The signed-in user as issued by the auth server.

    Stored verbatim (camelCase JSON) under the ``userData`` key.  Extra
    server fields such as rank or progress counters are preserved so a
    server-issued update round-trips through the store unchanged.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    id: str
    username: str
    wallet_address: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        # Some server builds emit numeric ids.
        if isinstance(value, int):
            return str(value)
        return value


class Session(BaseModel):
    """A server-recognised session restored from the local store.

    Attributes
    ----------
    session_id:
        Opaque handle sent as ``Authorization: Session <id>``.
    user:
        The user the session belongs to.
    last_activity_at:
        Epoch milliseconds of the last user-initiated interaction, or
        ``None`` when no activity has been recorded yet.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    user: UserRecord
    last_activity_at: Optional[int] = None


class PendingRegistration(BaseModel):
    """Verified wallet awaiting a username; held in memory only."""

    model_config = ConfigDict(frozen=True)

    temp_token: str
    wallet_address: Optional[str] = None


class CachedWalletCredential(BaseModel):
    """Wallet ``auth_token`` kept to skip the approval dialog on reconnect."""

    model_config = ConfigDict(frozen=True)

    auth_token: str
    wallet_address: str


class SessionStatus(BaseModel):
    """Outcome of a local load or a server validation pass."""

    is_valid: bool
    session_id: Optional[str] = None


# ---------------------------------------------------------------------------
# /api/auth/verify
# ---------------------------------------------------------------------------

class VerifyRequest(WireModel):
    sign_in_input: SignInPayload
    sign_in_output: dict[str, JsonValue]
    accepted_policies: AcceptedPolicySet


class VerifyResponse(WireModel):
    """Body of a 2xx verify response.

    ``is_new_user`` selects between the registration path (``temp_token``
    and ``wallet_address`` set) and the login path (``session_id`` and
    ``user`` set).
    """

    success: bool = False
    is_new_user: bool = False
    temp_token: Optional[str] = None
    wallet_address: Optional[str] = None
    session_id: Optional[str] = None
    user: Optional[UserRecord] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# /api/auth/register-username
# ---------------------------------------------------------------------------

class RegisterRequest(WireModel):
    username: str
    accepted_policies: AcceptedPolicySet


class RegisterResponse(WireModel):
    success: bool = False
    session_id: Optional[str] = None
    user: Optional[UserRecord] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# /api/auth/validate, /api/auth/extend-session, /api/auth/logout
# ---------------------------------------------------------------------------

class ValidateResponse(WireModel):
    success: bool = False
    valid: bool = False


class SuccessResponse(WireModel):
    success: bool = False
