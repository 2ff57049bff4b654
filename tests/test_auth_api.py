"""Tests for AuthApiClient against an in-process fake server."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import USER_JSON, FakeAuthServer
from thaicraft.errors import ConnectivityError, ServerVerificationError
from thaicraft.models.auth_models import RegisterRequest, VerifyRequest
from thaicraft.models.policy_models import AcceptedPolicySet
from thaicraft.models.wallet_models import SignInPayload
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.policy_gate import PolicyGate

ACCEPTED = AcceptedPolicySet.for_versions(PolicyGate.local_versions(), "2025-01-15T08:30:00.000Z")


def _verify_request() -> VerifyRequest:
    return VerifyRequest(
        sign_in_input=SignInPayload(
            domain="appname.onrender.com",
            statement="Sign in to Thai Craft",
            uri="https://appname.onrender.com",
        ),
        sign_in_output={"address": "addr1", "signature": "c2ln"},
        accepted_policies=ACCEPTED,
    )


class TestVerify:
    """Tests for POST /api/auth/verify."""

    @pytest.mark.asyncio
    async def test_sends_camel_case_body(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.reply("POST", "/api/auth/verify", {
            "success": True, "isNewUser": False, "sessionId": "s1", "user": USER_JSON,
        })

        result = await api.verify(_verify_request())

        body = json.loads(server.calls("POST", "/api/auth/verify")[0].content)
        assert set(body) == {"signInInput", "signInOutput", "acceptedPolicies"}
        assert body["acceptedPolicies"]["terms"]["acceptedAt"] == "2025-01-15T08:30:00.000Z"
        assert result.session_id == "s1"
        assert result.user is not None and result.user.wallet_address == "addr1"

    @pytest.mark.asyncio
    async def test_new_user_reply(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.reply("POST", "/api/auth/verify", {
            "success": True, "isNewUser": True, "tempToken": "abc", "walletAddress": "addr1",
        })

        result = await api.verify(_verify_request())

        assert result.is_new_user is True
        assert result.temp_token == "abc"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_server_text(
        self, api: AuthApiClient, server: FakeAuthServer
    ) -> None:
        server.reply("POST", "/api/auth/verify", "Invalid signature", status=401)

        with pytest.raises(ServerVerificationError) as excinfo:
            await api.verify(_verify_request())

        assert str(excinfo.value) == "Authentication verification failed: Invalid signature"
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail == "Invalid signature"

    @pytest.mark.asyncio
    async def test_malformed_json_raises(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.reply("POST", "/api/auth/verify", "<html>502</html>")
        with pytest.raises(ServerVerificationError, match="malformed JSON"):
            await api.verify(_verify_request())

    @pytest.mark.asyncio
    async def test_transport_failures_become_connectivity_errors(
        self, api: AuthApiClient, server: FakeAuthServer
    ) -> None:
        server.fail("POST", "/api/auth/verify", httpx.ConnectError)
        with pytest.raises(ConnectivityError, match="Network request failed"):
            await api.verify(_verify_request())

        server.fail("POST", "/api/auth/verify", httpx.ReadTimeout)
        with pytest.raises(ConnectivityError, match="timed out"):
            await api.verify(_verify_request())


class TestRegisterUsername:
    """Tests for POST /api/auth/register-username."""

    @pytest.mark.asyncio
    async def test_bearer_token_and_success(
        self, api: AuthApiClient, server: FakeAuthServer
    ) -> None:
        server.reply("POST", "/api/auth/register-username", {
            "success": True, "sessionId": "s1", "user": USER_JSON,
        })

        result = await api.register_username("abc", RegisterRequest(username="nok", accepted_policies=ACCEPTED))

        request = server.calls("POST", "/api/auth/register-username")[0]
        assert request.headers["Authorization"] == "Bearer abc"
        assert json.loads(request.content)["username"] == "nok"
        assert result.success is True
        assert result.session_id == "s1"

    @pytest.mark.asyncio
    async def test_refusal_carries_server_text(
        self, api: AuthApiClient, server: FakeAuthServer
    ) -> None:
        server.reply(
            "POST", "/api/auth/register-username",
            {"success": True, "error": "Username already taken"}, status=409,
        )

        result = await api.register_username("abc", RegisterRequest(username="nok", accepted_policies=ACCEPTED))

        assert result.success is False
        assert result.error == "Username already taken"


class TestSessionEndpoints:
    """Tests for validate / extend-session / logout."""

    @pytest.mark.asyncio
    async def test_validate_sends_session_header(
        self, api: AuthApiClient, server: FakeAuthServer
    ) -> None:
        server.reply("GET", "/api/auth/validate", {"success": True, "valid": True})

        result = await api.validate_session("s1")

        assert result.valid is True
        assert server.calls("GET", "/api/auth/validate")[0].headers["Authorization"] == "Session s1"

    @pytest.mark.asyncio
    async def test_validate_non_2xx_raises(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.reply("GET", "/api/auth/validate", {"success": False}, status=401)
        with pytest.raises(ServerVerificationError):
            await api.validate_session("s1")

    @pytest.mark.asyncio
    async def test_extend_non_2xx_is_false(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.reply("POST", "/api/auth/extend-session", {"success": True}, status=500)
        assert await api.extend_session("s1") is False

    @pytest.mark.asyncio
    async def test_logout(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        assert await api.logout("s1") is False
        server.reply("POST", "/api/auth/logout", {"success": True})
        assert await api.logout("s1") is True


class TestPolicies:
    """Tests for /api/policies."""

    @pytest.mark.asyncio
    async def test_list_policies_returns_raw_body(self, api: AuthApiClient) -> None:
        body = await api.list_policies()
        assert [item["name"] for item in body["data"]] == ["terms", "privacy", "content"]

    @pytest.mark.asyncio
    async def test_non_object_body_raises(self, api: AuthApiClient, server: FakeAuthServer) -> None:
        server.route("GET", "/api/policies", lambda request: httpx.Response(200, json=[1, 2]))
        with pytest.raises(ServerVerificationError, match="unexpected response shape"):
            await api.list_policies()
