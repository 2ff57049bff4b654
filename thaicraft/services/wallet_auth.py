"""
Wallet Authentication Controller.

Drives the sign-in handshake end to end:

1. Policy consent check against the freshest policy versions.
2. Wallet ``authorize`` with a Sign-In payload (and the cached
   ``auth_token`` for silent re-authorisation), bounded by a timeout.
3. Server verification of the signed payload.
4. Either a new session (existing user) or username registration
   (new user) followed by a session.

All state lives in one :data:`~thaicraft.models.auth_state.AuthState`
value and only changes through the pure ``transition`` reducer.  Every
failure caused by a collaborator is caught at the step that produced
it, reported through the :class:`ErrorReporter`, and leaves the
controller in ``Idle`` (or ``AwaitingUsername`` for registration
errors) before control returns to the caller.

Each connect attempt carries a generation number.  ``disconnect()`` and
``cancel_registration()`` bump it, so a wallet or server reply that
arrives afterwards is dropped instead of resurrecting the session.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, TypeVar

from thaicraft.config import AppConfig
from thaicraft.database import DatabaseManager
from thaicraft.errors import (
    IllegalTransitionError,
    ServerVerificationError,
    ThaiCraftAuthError,
    WalletRejectedError,
    WalletTimeoutError,
)
from thaicraft.logger import StructuredLogger
from thaicraft.models.auth_models import (
    PendingRegistration,
    RegisterRequest,
    UserRecord,
    VerifyRequest,
)
from thaicraft.models.auth_state import (
    AuthEvent,
    AuthState,
    Authenticated,
    AwaitingUsername,
    ConnectFailed,
    ConnectRequested,
    ConsentPrompted,
    ConsentRequired,
    ConsentSatisfied,
    Disconnected,
    Idle,
    NewUserVerified,
    RegistrationCancelled,
    RegistrationFailed,
    SessionEstablished,
    SessionRestored,
    UsernameSubmitted,
    UserUpdated,
    WalletApproved,
    transition,
)
from thaicraft.models.enums import ErrorContext, StoreKey
from thaicraft.models.policy_models import AcceptedPolicySet, PolicyVersionSet
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.error_classifier import ErrorReporter, user_notice
from thaicraft.services.key_value_store import KeyValueStore
from thaicraft.services.policy_gate import PolicyGate
from thaicraft.services.session_manager import SessionManager
from thaicraft.services.wallet_transport import WalletTransport, build_authorization_request
from thaicraft.utils.audit import AuditAction, log_audit_event

StateListener = Callable[[AuthState], None]
AuthListener = Callable[[bool, Optional[UserRecord]], None]
ConsentListener = Callable[[PolicyVersionSet], None]
UserListener = Callable[[UserRecord], None]
Unsubscribe = Callable[[], None]

L = TypeVar("L")

_DEFAULT_CONNECT_ERROR: str = "Failed to connect to wallet."
_NO_ACCOUNTS: str = "No wallet accounts found or authorization failed"
_NO_SIGN_IN_RESULT: str = "No sign-in result from wallet"
_REGISTER_REFUSED: str = "Username registration failed. Please try again."
_REGISTER_UNREACHABLE: str = (
    "Failed to register username. Please check your connection and try again."
)
_EMPTY_USERNAME: str = "Please enter a username."


class WalletAuthController:
    """Sign-in state machine bound to its collaborators.

    Parameters
    ----------
    config:
        Application configuration (cluster, identity, sign-in payload,
        wallet timeout).
    wallet:
        Wallet transport.
    api:
        Auth server client.
    sessions:
        Session manager.
    policies:
        Policy gate.
    store:
        Persistent key/value store (cached wallet credential).
    reporter:
        Receives every classified failure.
    logger:
        Structured logger instance.
    db:
        Optional database manager for audit persistence.
    """

    def __init__(
        self,
        config: AppConfig,
        wallet: WalletTransport,
        api: AuthApiClient,
        sessions: SessionManager,
        policies: PolicyGate,
        store: KeyValueStore,
        reporter: ErrorReporter,
        logger: StructuredLogger,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        self._config = config
        self._wallet = wallet
        self._api = api
        self._sessions = sessions
        self._policies = policies
        self._store = store
        self._reporter = reporter
        self._logger = logger
        self._db = db

        self._state: AuthState = Idle()
        self._generation: int = 0
        self._versions: Optional[PolicyVersionSet] = None

        self._state_listeners: list[StateListener] = []
        self._auth_listeners: list[AuthListener] = []
        self._consent_listeners: list[ConsentListener] = []
        self._user_listeners: list[UserListener] = []

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._state, Authenticated)

    @property
    def current_user(self) -> Optional[UserRecord]:
        return self._state.user if isinstance(self._state, Authenticated) else None

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def add_state_listener(self, listener: StateListener) -> Unsubscribe:
        """Called with the new state after every state change."""
        return self._subscribe(self._state_listeners, listener)

    def add_auth_listener(self, listener: AuthListener) -> Unsubscribe:
        """Called with ``(True, user)`` on sign-in, ``(False, None)`` on sign-out."""
        return self._subscribe(self._auth_listeners, listener)

    def add_consent_listener(self, listener: ConsentListener) -> Unsubscribe:
        """Called with the required versions when consent must be collected."""
        return self._subscribe(self._consent_listeners, listener)

    def add_user_listener(self, listener: UserListener) -> Unsubscribe:
        """Called with the new record after a server-issued user update."""
        return self._subscribe(self._user_listeners, listener)

    # ------------------------------------------------------------------
    # App start
    # ------------------------------------------------------------------

    async def restore(self) -> AuthState:
        """Restore a persisted session at app start.

        Lands in ``Authenticated`` when the stored session is locally
        fresh and confirmed by the server, otherwise stays ``Idle``.
        Auth listeners are told the outcome either way.
        """
        if not isinstance(self._state, Idle):
            return self._state

        generation = self._generation
        try:
            status = await self._sessions.load()
        except Exception as exc:
            self._logger.error("Session restore failed: %s", exc, exc_info=True)
            self._sessions.clear()
            if not self._is_stale(generation):
                self._reporter.handle_error(exc, ErrorContext.SESSION)
                self._notify(self._auth_listeners, False, None)
            return self._state
        if self._is_stale(generation):
            return self._state

        user = self._sessions.current_user
        session_id = self._sessions.current_session_id
        if status.is_valid and user is not None and session_id is not None:
            self._apply(SessionRestored(session_id=session_id, user=user))
            self._notify(self._auth_listeners, True, user)
        else:
            self._notify(self._auth_listeners, False, None)
        return self._state

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self) -> AuthState:
        """Run one sign-in attempt.

        A no-op unless the controller is ``Idle``; at most one attempt is
        ever in flight.  Returns the state the attempt settled in.
        """
        if not isinstance(self._state, Idle):
            self._logger.info(
                "connect() ignored while in stage '%s'.", self._state.stage,
            )
            return self._state

        self._generation += 1
        generation = self._generation
        self._apply(ConnectRequested())

        try:
            await self._run_connect(generation)
        except Exception as exc:
            self._logger.error("Unexpected failure during wallet connect.", exc_info=True)
            if not self._is_stale(generation):
                self._apply(Disconnected())
                self._reporter.handle_error(exc, ErrorContext.WALLET_CONNECTION)
        return self._state

    async def _run_connect(self, generation: int) -> None:
        versions = await self._policies.current_versions()
        if self._is_stale(generation):
            return
        self._versions = versions

        if self._policies.needs_acceptance(versions, self._policies.accepted()):
            self._logger.info("Policy consent required before connecting.")
            self._apply(ConsentRequired(versions=versions))
            self._notify(self._consent_listeners, versions)
            self._apply(ConsentPrompted())
            return
        self._apply(ConsentSatisfied())

        request = build_authorization_request(
            self._config, self._store.get(StoreKey.WALLET_AUTH_TOKEN),
        )
        timeout_s = self._config.WALLET_TIMEOUT_S
        try:
            authorization = await asyncio.wait_for(
                self._wallet.authorize(request), timeout=timeout_s,
            )
        except TimeoutError:
            if not self._is_stale(generation):
                # A slow wallet says nothing about the cached credential.
                self._fail_connect(WalletTimeoutError(timeout_s), clear_credential=False)
            return
        except Exception as exc:
            if not self._is_stale(generation):
                self._fail_connect(_as_wallet_rejection(exc), clear_credential=True)
            return

        if self._is_stale(generation):
            return
        if not authorization.accounts:
            self._fail_connect(WalletRejectedError(_NO_ACCOUNTS), clear_credential=True)
            return
        if authorization.sign_in_result is None:
            self._fail_connect(WalletRejectedError(_NO_SIGN_IN_RESULT), clear_credential=True)
            return

        wallet_address = authorization.accounts[0].address
        self._apply(WalletApproved(wallet_address=wallet_address))

        verify_request = VerifyRequest(
            sign_in_input=request.sign_in_payload,
            sign_in_output=authorization.sign_in_result,
            accepted_policies=self._policies.acceptance_for_request(versions),
        )
        try:
            verified = await self._api.verify(verify_request)
        except ThaiCraftAuthError as exc:
            if not self._is_stale(generation):
                self._fail_connect(exc, clear_credential=True)
            return

        if self._is_stale(generation):
            return
        if not verified.success:
            error = verified.error or "Authentication failed"
            self._fail_connect(
                ServerVerificationError(error, detail=verified.error), clear_credential=True,
            )
            return

        if authorization.auth_token:
            self._cache_credential(authorization.auth_token, wallet_address)

        if verified.is_new_user:
            if not verified.temp_token:
                self._fail_connect(
                    ServerVerificationError("Server did not issue a registration token"),
                    clear_credential=True,
                )
                return
            pending = PendingRegistration(
                temp_token=verified.temp_token,
                wallet_address=verified.wallet_address or wallet_address,
            )
            self._apply(NewUserVerified(pending=pending))
            self._logger.info("New wallet verified; awaiting username.")
            return

        if not verified.session_id or verified.user is None:
            self._fail_connect(
                ServerVerificationError("Server did not issue a session"),
                clear_credential=True,
            )
            return
        self._establish(verified.session_id, verified.user, AuditAction.LOGIN)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def submit_username(self, username: str) -> AuthState:
        """Register *username* for the verified wallet.

        Only valid in ``AwaitingUsername``.  A refusal keeps the pending
        registration so the user can try another name.
        """
        state = self._state
        if not isinstance(state, AwaitingUsername):
            self._logger.warning(
                "submit_username() ignored while in stage '%s'.", state.stage,
            )
            return state

        name = username.strip()
        if not name:
            self._reporter.report(user_notice(_EMPTY_USERNAME, ErrorContext.REGISTRATION))
            return state

        generation = self._generation
        pending = state.pending
        self._apply(UsernameSubmitted(username=name))

        try:
            await self._run_register(generation, name, pending)
        except Exception as exc:
            self._logger.error("Unexpected failure during registration.", exc_info=True)
            if not self._is_stale(generation):
                self._apply(RegistrationFailed(reason=str(exc)))
                self._reporter.report(user_notice(_REGISTER_UNREACHABLE, ErrorContext.REGISTRATION))
        return self._state

    async def _run_register(
        self,
        generation: int,
        name: str,
        pending: PendingRegistration,
    ) -> None:
        versions = self._versions or self._policies.local_versions()
        request = RegisterRequest(
            username=name,
            accepted_policies=self._policies.acceptance_for_request(versions),
        )
        try:
            result = await self._api.register_username(pending.temp_token, request)
        except ThaiCraftAuthError as exc:
            if self._is_stale(generation):
                return
            self._logger.warning("Username registration failed: %s", exc)
            self._apply(RegistrationFailed(reason=str(exc)))
            self._reporter.report(
                user_notice(_REGISTER_UNREACHABLE, ErrorContext.REGISTRATION, category=exc.category),
            )
            return

        if self._is_stale(generation):
            return
        if not result.success or not result.session_id or result.user is None:
            message = result.error or _REGISTER_REFUSED
            self._logger.info("Username '%s' refused: %s", name, message)
            self._apply(RegistrationFailed(reason=message))
            self._reporter.report(user_notice(message, ErrorContext.REGISTRATION))
            return

        self._establish(result.session_id, result.user, AuditAction.REGISTER)
        if pending.wallet_address and not self._store.get(StoreKey.WALLET_AUTH_TOKEN):
            self._store.set(StoreKey.WALLET_ADDRESS, pending.wallet_address)

    def cancel_registration(self) -> AuthState:
        """Abandon a pending registration and forget the wallet credential."""
        try:
            self._apply(RegistrationCancelled())
        except IllegalTransitionError as exc:
            self._logger.info("cancel_registration() ignored: %s", exc)
            return self._state

        self._generation += 1
        self._clear_credential()
        self._notify(self._auth_listeners, False, None)
        return self._state

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def accept_policies(
        self,
        versions: Optional[PolicyVersionSet] = None,
        reconnect: bool = False,
    ) -> AcceptedPolicySet:
        """Record the user's consent, optionally retrying the connection.

        *versions* defaults to the set the last connect attempt asked
        for, then to the bundled versions.
        """
        versions = versions or self._versions or self._policies.local_versions()
        accepted = self._policies.accept_versions(versions)
        if reconnect:
            await self.connect()
        return accepted

    # ------------------------------------------------------------------
    # Signed-in helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Record user activity so the rolling timeout keeps sliding."""
        if isinstance(self._state, Authenticated):
            self._sessions.touch()

    def apply_user_update(self, user: UserRecord) -> bool:
        """Adopt a server-issued update of the signed-in user (e.g. rank).

        Returns ``False`` when nobody is signed in or the update is for a
        different user.
        """
        state = self._state
        if not isinstance(state, Authenticated):
            self._logger.warning("User update for %s ignored; nobody is signed in.", user.id)
            return False
        if state.user.id != user.id:
            self._logger.warning(
                "User update for %s ignored; signed in as %s.", user.id, state.user.id,
            )
            return False

        self._sessions.update_user(user)
        self._apply(UserUpdated(user=user))
        self._notify(self._user_listeners, user)
        return True

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def disconnect(self) -> AuthState:
        """Sign out from any state.

        Wallet deauthorisation and server logout are best-effort; the
        local wipe always happens, whatever either remote call raises.
        """
        self._generation += 1
        user = self._sessions.current_user
        auth_token = self._store.get(StoreKey.WALLET_AUTH_TOKEN)
        session_id = self._sessions.current_session_id or self._store.get(StoreKey.SESSION_ID)

        try:
            if auth_token:
                await self._deauthorize_wallet(auth_token)
            if session_id:
                await self._logout_server(session_id)
        finally:
            self._sessions.clear()
            self._apply(Disconnected())

        log_audit_event(
            logger=self._logger,
            action=AuditAction.LOGOUT,
            entity_type="Session",
            entity_id=user.id if user else "none",
            user_id=user.id if user else "anonymous",
            db=self._db,
        )
        self._notify(self._auth_listeners, False, None)
        return self._state

    async def _deauthorize_wallet(self, auth_token: str) -> None:
        try:
            await asyncio.wait_for(
                self._wallet.deauthorize(auth_token), timeout=self._config.WALLET_TIMEOUT_S,
            )
            self._logger.info("Wallet deauthorized.")
        except Exception as exc:
            self._logger.warning("Wallet deauthorization failed (non-critical): %s", exc)

    async def _logout_server(self, session_id: str) -> None:
        try:
            logged_out = await self._api.logout(session_id)
            self._logger.info("Server logout %s.", "succeeded" if logged_out else "was refused")
        except Exception as exc:
            self._logger.warning("Server logout request failed (non-critical): %s", exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _apply(self, event: AuthEvent) -> AuthState:
        previous = self._state
        self._state = transition(previous, event)
        if self._state != previous:
            self._logger.debug(
                "Auth stage %s -> %s (%s).",
                previous.stage,
                self._state.stage,
                type(event).__name__,
            )
            self._notify(self._state_listeners, self._state)
        return self._state

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _fail_connect(self, exc: BaseException, clear_credential: bool) -> None:
        if clear_credential:
            self._clear_credential()
        self._apply(ConnectFailed(reason=str(exc)))
        self._reporter.handle_error(exc, ErrorContext.WALLET_CONNECTION)

    def _establish(self, session_id: str, user: UserRecord, action: str) -> None:
        # A failed store write still signs the user in for this run.
        self._sessions.save(session_id, user)
        self._apply(SessionEstablished(session_id=session_id, user=user))
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type="Session",
            entity_id=user.id,
            user_id=user.id,
            details={"username": user.username, "wallet_address": user.wallet_address},
            db=self._db,
        )
        self._notify(self._auth_listeners, True, user)

    def _cache_credential(self, auth_token: str, wallet_address: str) -> None:
        stored = self._store.set(StoreKey.WALLET_AUTH_TOKEN, auth_token) and self._store.set(
            StoreKey.WALLET_ADDRESS, wallet_address,
        )
        if not stored:
            self._logger.warning("Wallet credential could not be cached; next connect will prompt.")

    def _clear_credential(self) -> None:
        failed = self._store.remove_each((StoreKey.WALLET_AUTH_TOKEN, StoreKey.WALLET_ADDRESS))
        if failed:
            self._logger.warning("Could not clear cached wallet credential keys: %s", failed)

    def _subscribe(self, listeners: list[L], listener: L) -> Unsubscribe:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: list[Callable[..., None]], *args: object) -> None:
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception:
                self._logger.error("Auth listener %r raised.", listener, exc_info=True)


def _as_wallet_rejection(exc: Exception) -> ThaiCraftAuthError:
    """Normalise whatever the wallet adapter raised."""
    if isinstance(exc, ThaiCraftAuthError):
        return exc
    rejection = WalletRejectedError(str(exc) or _DEFAULT_CONNECT_ERROR)
    rejection.__cause__ = exc
    return rejection
