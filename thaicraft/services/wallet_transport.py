"""
Wallet Transport contract.

The external wallet app (reached via the Mobile Wallet Adapter) is a
collaborator, not part of this package: it owns keys and signing.  The
controller only needs the two calls described by :class:`WalletTransport`.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from thaicraft.config import AppConfig
from thaicraft.errors import WalletRejectedError
from thaicraft.models.wallet_models import (
    AppIdentity,
    AuthorizationRequest,
    AuthorizationResult,
    SignInPayload,
)


@runtime_checkable
class WalletTransport(Protocol):
    """Session with an external wallet app.

    ``authorize`` shows the wallet's approval dialog (or silently
    re-authorises when a valid ``auth_token`` is supplied) and raises
    when the user declines or no wallet is installed.  ``deauthorize``
    revokes a previously issued ``auth_token``.
    """

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult: ...

    async def deauthorize(self, auth_token: str) -> None: ...


class UnavailableWalletTransport:
    """Transport for hosts with no wallet app (CLI, server-side tooling).

    ``authorize`` always fails the way a device without a wallet does;
    ``deauthorize`` is a no-op so logout still completes.
    """

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        raise WalletRejectedError("No wallet found")

    async def deauthorize(self, auth_token: str) -> None:
        return None


def build_sign_in_payload(config: AppConfig) -> SignInPayload:
    return SignInPayload(
        domain=config.sign_in_domain,
        statement=config.SIGN_IN_STATEMENT,
        uri=config.sign_in_uri,
    )


def build_authorization_request(
    config: AppConfig,
    auth_token: Optional[str] = None,
) -> AuthorizationRequest:
    """Assemble the ``authorize`` call for the configured cluster and identity."""
    return AuthorizationRequest(
        cluster=config.cluster,
        identity=AppIdentity(
            name=config.APP_IDENTITY_NAME,
            uri=config.APP_IDENTITY_URI,
            icon=config.APP_IDENTITY_ICON,
        ),
        sign_in_payload=build_sign_in_payload(config),
        auth_token=auth_token,
    )
