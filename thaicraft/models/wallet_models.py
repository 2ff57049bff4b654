"""
Wallet Transport contract models.

These mirror the Mobile Wallet Adapter ``authorize`` request and result.
Field names are the adapter's own snake_case keys, so no aliasing is
applied.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class AppIdentity(BaseModel):
    """How the app presents itself inside the wallet's approval dialog."""

    name: str
    uri: str
    icon: str


class SignInPayload(BaseModel):
    """Sign-In message the wallet asks the user to sign."""

    domain: str
    statement: str
    uri: str


class AuthorizationRequest(BaseModel):
    cluster: str
    identity: AppIdentity
    sign_in_payload: SignInPayload
    # Cached credential; lets the wallet skip its approval dialog.
    auth_token: Optional[str] = None


class WalletAccount(BaseModel):
    model_config = ConfigDict(extra="allow")

    address: str
    label: Optional[str] = None


class AuthorizationResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    accounts: list[WalletAccount] = Field(default_factory=list)
    auth_token: Optional[str] = None
    sign_in_result: Optional[dict[str, JsonValue]] = None
