"""
Auth Core Services Package.

The ``create_services()`` factory wires the store, the auth server
client, and every service together, returning a typed dict that the
application layer (screens / CLI) can consume without knowing the
internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

import httpx

from thaicraft.config import AppConfig
from thaicraft.database import DatabaseManager
from thaicraft.logger import get_logger
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.credential_cipher import CredentialCipher
from thaicraft.services.error_classifier import ErrorCallback, ErrorReporter
from thaicraft.services.key_value_store import KeyValueStore
from thaicraft.services.policy_gate import PolicyGate
from thaicraft.services.session_manager import SessionManager
from thaicraft.services.wallet_auth import WalletAuthController
from thaicraft.services.wallet_transport import WalletTransport


class ServiceContainer(TypedDict):
    """Typed container for all auth core services."""

    # --- Infrastructure ---
    key_value_store: KeyValueStore
    auth_api: AuthApiClient

    # --- Leaf services ---
    error_reporter: ErrorReporter
    policy_gate: PolicyGate
    session_manager: SessionManager

    # --- Orchestration ---
    wallet_auth: WalletAuthController


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    wallet: WalletTransport,
    error_callback: Optional[ErrorCallback] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    cipher: Optional[CredentialCipher] = None,
) -> ServiceContainer:
    """
    Wire the store, the API client, and every service together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup.

    Args:
        db: Initialised DatabaseManager with the schema applied.
        config: Application configuration.
        wallet: Wallet transport for the current platform.
        error_callback: Receives every classified failure (the UI's
            notification hook).
        http_transport: Optional ``httpx`` transport override (tests).
        cipher: Optional credential cipher.  When omitted and
            ``ENCRYPT_CREDENTIALS`` is set, a machine-bound cipher is
            created.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
        The caller owns ``auth_api`` and must ``aclose()`` it.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Infrastructure
    # ------------------------------------------------------------------
    if cipher is None and config.ENCRYPT_CREDENTIALS:
        cipher = CredentialCipher(logger=logger)
    store = KeyValueStore(db=db, logger=logger, cipher=cipher)
    auth_api = AuthApiClient(
        base_url=config.server_url,
        logger=logger,
        timeout=config.HTTP_TIMEOUT_S,
        transport=http_transport,
    )

    # ------------------------------------------------------------------
    # 2. Leaf services
    # ------------------------------------------------------------------
    error_reporter = ErrorReporter(logger=logger, callback=error_callback)
    policy_gate = PolicyGate(store=store, api=auth_api, logger=logger, db=db)
    session_manager = SessionManager(
        store=store,
        api=auth_api,
        logger=logger,
        timeout_ms=config.session_timeout_ms,
        db=db,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration
    # ------------------------------------------------------------------
    wallet_auth = WalletAuthController(
        config=config,
        wallet=wallet,
        api=auth_api,
        sessions=session_manager,
        policies=policy_gate,
        store=store,
        reporter=error_reporter,
        logger=logger,
        db=db,
    )

    return ServiceContainer(
        key_value_store=store,
        auth_api=auth_api,
        error_reporter=error_reporter,
        policy_gate=policy_gate,
        session_manager=session_manager,
        wallet_auth=wallet_auth,
    )
