"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import io
from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any, Optional, Union

import httpx
import pytest
import pytest_asyncio

from thaicraft.config import AppConfig
from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger
from thaicraft.models.error_models import ClassifiedError
from thaicraft.models.wallet_models import (
    AuthorizationRequest,
    AuthorizationResult,
    WalletAccount,
)
from thaicraft.schema import initialize_schema
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.error_classifier import ErrorReporter
from thaicraft.services.key_value_store import KeyValueStore
from thaicraft.services.policy_gate import PolicyGate
from thaicraft.services.session_manager import SessionManager
from thaicraft.services.wallet_auth import WalletAuthController

SERVER_URL = "http://auth.test"
USER_JSON: dict[str, str] = {"id": "u1", "username": "nok", "walletAddress": "addr1"}
POLICY_LIST: dict[str, Any] = {
    "success": True,
    "data": [
        {"name": "terms", "version": "1.0.0"},
        {"name": "privacy", "version": "1.0.0"},
        {"name": "content", "version": "1.0.0"},
    ],
}

Route = Callable[[httpx.Request], httpx.Response]


class FakeAuthServer:
    """In-process stand-in for the auth server, served via ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []
        self.reply("GET", "/api/policies", POLICY_LIST)

    def reply(
        self,
        method: str,
        path: str,
        body: Union[dict[str, Any], str],
        status: int = 200,
    ) -> None:
        if isinstance(body, str):
            self.routes[(method, path)] = lambda request: httpx.Response(status, text=body)
        else:
            self.routes[(method, path)] = lambda request: httpx.Response(status, json=body)

    def route(self, method: str, path: str, handler: Route) -> None:
        self.routes[(method, path)] = handler

    def fail(self, method: str, path: str, exc_type: type[httpx.TransportError]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc_type("simulated transport failure", request=request)

        self.routes[(method, path)] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"success": False, "error": "Not found"})
        return route(request)


class FakeWallet:
    """Scriptable wallet transport.

    Set ``error`` to make ``authorize`` raise, ``result`` to change what it
    returns, or ``gate`` to make it block until the event is set.
    ``deauthorize_error`` makes ``deauthorize`` raise.
    """

    def __init__(self) -> None:
        self.result = AuthorizationResult(
            accounts=[WalletAccount(address="addr1")],
            auth_token="wallet-token",
            sign_in_result={"address": "addr1", "signature": "c2ln", "signed_message": "bXNn"},
        )
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.requests: list[AuthorizationRequest] = []
        self.deauthorized: list[str] = []
        self.deauthorize_error: Optional[Exception] = None

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def deauthorize(self, auth_token: str) -> None:
        self.deauthorized.append(auth_token)
        if self.deauthorize_error is not None:
            raise self.deauthorize_error


class FakeClock:
    """Injectable epoch-millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="thaicraft.tests", stream=io.StringIO(), to_file=False)


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(_env_file=None, SERVER_URL=SERVER_URL)


@pytest.fixture
def db(logger: StructuredLogger) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def store(db: DatabaseManager, logger: StructuredLogger) -> KeyValueStore:
    return KeyValueStore(db=db, logger=logger)


@pytest.fixture
def server() -> FakeAuthServer:
    return FakeAuthServer()


@pytest_asyncio.fixture
async def api(
    server: FakeAuthServer,
    logger: StructuredLogger,
) -> AsyncGenerator[AuthApiClient, None]:
    client = AuthApiClient(
        base_url=SERVER_URL,
        logger=logger,
        transport=httpx.MockTransport(server.handle),
    )
    yield client
    await client.aclose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(
    store: KeyValueStore,
    api: AuthApiClient,
    logger: StructuredLogger,
    db: DatabaseManager,
    clock: FakeClock,
) -> SessionManager:
    return SessionManager(store=store, api=api, logger=logger, db=db, clock=clock)


@pytest.fixture
def policies(
    store: KeyValueStore,
    api: AuthApiClient,
    logger: StructuredLogger,
    db: DatabaseManager,
) -> PolicyGate:
    return PolicyGate(store=store, api=api, logger=logger, db=db)


@pytest.fixture
def reported() -> list[ClassifiedError]:
    return []


@pytest.fixture
def reporter(logger: StructuredLogger, reported: list[ClassifiedError]) -> ErrorReporter:
    return ErrorReporter(logger=logger, callback=reported.append)


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def controller(
    config: AppConfig,
    wallet: FakeWallet,
    api: AuthApiClient,
    sessions: SessionManager,
    policies: PolicyGate,
    store: KeyValueStore,
    reporter: ErrorReporter,
    logger: StructuredLogger,
    db: DatabaseManager,
) -> WalletAuthController:
    return WalletAuthController(
        config=config,
        wallet=wallet,
        api=api,
        sessions=sessions,
        policies=policies,
        store=store,
        reporter=reporter,
        logger=logger,
        db=db,
    )
