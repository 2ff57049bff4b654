"""Tests for AppConfig derived values and the service factory."""

from __future__ import annotations

import httpx
import pytest

from conftest import SERVER_URL, FakeAuthServer
from thaicraft.config import AppConfig
from thaicraft.database import DatabaseManager
from thaicraft.errors import WalletRejectedError
from thaicraft.logger import StructuredLogger
from thaicraft.models.auth_state import Idle
from thaicraft.models.error_models import ClassifiedError
from thaicraft.services import create_services
from thaicraft.services.credential_cipher import CredentialCipher
from thaicraft.services.policy_gate import PolicyGate
from thaicraft.services.wallet_transport import (
    UnavailableWalletTransport,
    WalletTransport,
    build_authorization_request,
)


class TestAppConfig:
    """Tests for environment-dependent defaults."""

    def test_development_defaults(self) -> None:
        config = AppConfig(_env_file=None)

        assert config.server_url == "http://localhost:5001"
        assert config.cluster == "devnet"
        assert config.WALLET_TIMEOUT_S == 60.0
        assert config.session_timeout_ms == 24 * 60 * 60 * 1000

    def test_production_defaults(self) -> None:
        config = AppConfig(_env_file=None, APP_ENV="production")

        assert config.server_url == "https://learn-thai-api.onrender.com"
        assert config.cluster == "mainnet-beta"

    def test_explicit_values_win(self) -> None:
        config = AppConfig(_env_file=None, SERVER_URL="https://example.test/", SOLANA_CLUSTER="testnet")

        assert config.server_url == "https://example.test"
        assert config.cluster == "testnet"

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WALLET_TIMEOUT_S", "30")
        monkeypatch.setenv("SIGN_IN_DOMAIN", "thaicraft.test")

        config = AppConfig(_env_file=None)

        assert config.WALLET_TIMEOUT_S == 30.0
        assert config.sign_in_domain == "thaicraft.test"


class TestWalletTransport:
    """Tests for the wallet transport helpers."""

    def test_authorization_request(self, config: AppConfig) -> None:
        request = build_authorization_request(config, auth_token="cached")

        assert request.cluster == "devnet"
        assert request.identity.name == "Thai Craft"
        assert request.sign_in_payload.statement == config.SIGN_IN_STATEMENT
        assert request.auth_token == "cached"

    @pytest.mark.asyncio
    async def test_unavailable_transport_reports_missing_wallet(self, config: AppConfig) -> None:
        transport = UnavailableWalletTransport()

        assert isinstance(transport, WalletTransport)
        with pytest.raises(WalletRejectedError, match="No wallet found"):
            await transport.authorize(build_authorization_request(config))


class TestCreateServices:
    """Tests for the composition root."""

    @pytest.mark.asyncio
    async def test_wires_a_working_controller(
        self, db: DatabaseManager, logger: StructuredLogger
    ) -> None:
        server = FakeAuthServer()
        shown: list[ClassifiedError] = []
        services = create_services(
            db=db,
            config=AppConfig(_env_file=None, SERVER_URL=SERVER_URL),
            wallet=UnavailableWalletTransport(),
            error_callback=shown.append,
            http_transport=httpx.MockTransport(server.handle),
            cipher=CredentialCipher(logger=logger, key=bytes(32)),
        )
        try:
            services["policy_gate"].accept_versions(PolicyGate.local_versions())
            state = await services["wallet_auth"].connect()
        finally:
            await services["auth_api"].aclose()

        assert isinstance(state, Idle)
        assert shown[0].title == "Connection Failed"
        assert "Phantom" in shown[0].message
        assert services["key_value_store"].get("sessionId") is None

