"""
Session Manager.

Owns the persisted session: restoring it at app start, confirming it
with the auth server, refreshing the rolling inactivity timestamp, and
wiping it.

Two clocks govern a session:

1. **Client-side inactivity**: ``lastActivity`` (epoch milliseconds) is
   refreshed on every validation pass and user interaction.  A session
   idle for more than ``timeout_ms`` (24 hours by default, matching the
   server) is treated as expired without asking the server.
2. **Server-side expiry**: pushed forward by ``extend-session`` each
   time the session is validated.

Every failure path fails closed: an unparseable record, an unreachable
server, or a ``valid: false`` answer all leave the device signed out.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from pydantic import ValidationError

from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger
from thaicraft.models.auth_models import Session, SessionStatus, UserRecord
from thaicraft.models.enums import StoreKey
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.key_value_store import KeyValueStore
from thaicraft.utils.audit import AuditAction, log_audit_event

DEFAULT_SESSION_TIMEOUT_MS: int = 24 * 60 * 60 * 1000

# Keys wiped atomically when a stored session turns out to be unusable.
CORE_SESSION_KEYS: tuple[str, ...] = (
    StoreKey.SESSION_ID,
    StoreKey.USER_DATA,
    StoreKey.LAST_ACTIVITY,
)

# Everything ``clear()`` removes: the session, the cached wallet
# credential, and state the game screens keep alongside the session.
ALL_SESSION_KEYS: tuple[str, ...] = CORE_SESSION_KEYS + (
    StoreKey.GAME_SESSION_TOKEN,
    StoreKey.GAME_SESSION_ID,
    StoreKey.CURRENT_GAME_SESSION,
    StoreKey.PLAYER_NAME,
    StoreKey.WALLET_AUTH_TOKEN,
    StoreKey.WALLET_ADDRESS,
)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class SessionManager:
    """Persisted session lifecycle.

    Also serves as the in-memory session holder: after a successful
    :meth:`load` or :meth:`save`, :attr:`current_user` answers without
    touching the store.

    Parameters
    ----------
    store:
        Persistent key/value store.
    api:
        Auth server client for validate / extend.
    logger:
        Structured logger instance.
    timeout_ms:
        Rolling inactivity timeout.
    db:
        Optional database manager for audit persistence.
    clock:
        Returns the current time in epoch milliseconds; injectable so
        the timeout boundary can be tested exactly.
    """

    def __init__(
        self,
        store: KeyValueStore,
        api: AuthApiClient,
        logger: StructuredLogger,
        timeout_ms: int = DEFAULT_SESSION_TIMEOUT_MS,
        db: Optional[DatabaseManager] = None,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._store = store
        self._api = api
        self._logger = logger
        self._timeout_ms = timeout_ms
        self._db = db
        self._clock = clock
        self._current: Optional[Session] = None

    # ------------------------------------------------------------------
    # In-memory holder
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None

    @property
    def current_user(self) -> Optional[UserRecord]:
        return self._current.user if self._current else None

    @property
    def current_session_id(self) -> Optional[str]:
        return self._current.session_id if self._current else None

    @property
    def is_inactive(self) -> bool:
        """``True`` when the in-memory session has sat idle past the timeout."""
        if self._current is None or self._current.last_activity_at is None:
            return False
        return (self._clock() - self._current.last_activity_at) > self._timeout_ms

    # ------------------------------------------------------------------
    # Restore / validate
    # ------------------------------------------------------------------

    async def load(self) -> SessionStatus:
        """Restore the persisted session at app start.

        Returns a valid status only when the stored record parses, is
        within the inactivity window, and the server confirms it.  Any
        local problem triggers a full wipe; a server refusal is handled
        by :meth:`validate_and_extend`.
        """
        session = self.current()
        if session is None:
            self._logger.info("No usable stored session.")
            self._wipe()
            return SessionStatus(is_valid=False)

        if self.is_session_expired():
            self._logger.info("Stored session expired after inactivity.")
            self._audit_expired(session.user, reason="inactivity")
            self._wipe()
            return SessionStatus(is_valid=False)

        status = await self.validate_and_extend()
        if status.is_valid:
            self._current = session.model_copy(update={"last_activity_at": self._clock()})
            self._logger.info("Session restored for %s.", session.user.username)
        return status

    async def validate_and_extend(self) -> SessionStatus:
        """Confirm the stored session with the server and extend it.

        ``success && valid`` extends the server-side expiry and refreshes
        ``lastActivity``.  Every other outcome, including transport
        failures and malformed replies, clears the session.
        """
        session_id = self._store.get(StoreKey.SESSION_ID)
        if not session_id:
            return SessionStatus(is_valid=False)

        try:
            result = await self._api.validate_session(session_id)
        except Exception as exc:
            self._logger.warning("Session validation failed: %s", exc)
            self.clear()
            return SessionStatus(is_valid=False)

        if not (result.success and result.valid):
            self._logger.info("Server reports session invalid.")
            session = self._current or self.current()
            if session is not None:
                self._audit_expired(session.user, reason="server")
            self.clear()
            return SessionStatus(is_valid=False)

        await self.extend(session_id)
        self.touch()
        return SessionStatus(is_valid=True, session_id=session_id)

    async def extend(self, session_id: Optional[str] = None) -> bool:
        """Push the server-side expiry forward.  Never raises."""
        session_id = session_id or self._store.get(StoreKey.SESSION_ID)
        if not session_id:
            return False
        try:
            extended = await self._api.extend_session(session_id)
        except Exception as exc:
            self._logger.warning("Session extension failed: %s", exc)
            return False
        if not extended:
            self._logger.warning("Server declined to extend the session.")
        return extended

    def is_session_expired(self, now_ms: Optional[int] = None) -> bool:
        """Client-side inactivity check.

        A session without a recorded activity timestamp gets one now and
        counts as fresh.  No session, or a store read that fails or
        yields garbage, counts as expired.
        """
        session_id = self._store.get(StoreKey.SESSION_ID)
        last_raw = self._store.get(StoreKey.LAST_ACTIVITY)

        if session_id and not last_raw:
            self._logger.info("Session has no lastActivity; initialising timestamp.")
            self.touch()
            return False
        if not session_id or not last_raw:
            return True

        try:
            last_activity = int(last_raw)
        except ValueError:
            self._logger.warning("Unreadable lastActivity value %r.", last_raw)
            return True

        now = self._clock() if now_ms is None else now_ms
        expired = (now - last_activity) > self._timeout_ms
        if expired:
            self._logger.info(
                "Session expired: %d minutes since last activity.",
                round((now - last_activity) / 60000),
            )
        return expired

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    def current(self) -> Optional[Session]:
        """The stored session, or ``None`` if absent or unparseable."""
        session_id = self._store.get(StoreKey.SESSION_ID)
        user_raw = self._store.get(StoreKey.USER_DATA)
        if not session_id or not user_raw:
            return None

        try:
            user = UserRecord.model_validate_json(user_raw)
        except ValidationError as exc:
            self._logger.warning("Stored user data is malformed: %s", exc)
            return None

        last_raw = self._store.get(StoreKey.LAST_ACTIVITY)
        last_activity: Optional[int] = None
        if last_raw:
            try:
                last_activity = int(last_raw)
            except ValueError:
                last_activity = None
        return Session(session_id=session_id, user=user, last_activity_at=last_activity)

    def save(self, session_id: str, user: UserRecord) -> bool:
        """Persist a freshly issued session and make it current.

        The in-memory session is set even when a store write fails, so
        the signed-in user can carry on; it just won't survive a restart.
        """
        now = self._clock()
        stored = all([
            self._store.set(StoreKey.SESSION_ID, session_id),
            self._store.set(StoreKey.USER_DATA, user.model_dump_json(by_alias=True)),
            self._store.set(StoreKey.LAST_ACTIVITY, str(now)),
        ])
        if not stored:
            self._logger.error("Session for %s could not be fully persisted.", user.username)
        self._current = Session(session_id=session_id, user=user, last_activity_at=now)
        return stored

    def update_user(self, user: UserRecord) -> bool:
        """Replace the stored user record with a server-issued update."""
        if self._current is not None:
            self._current = self._current.model_copy(update={"user": user})
        return self._store.set(StoreKey.USER_DATA, user.model_dump_json(by_alias=True))

    def touch(self) -> bool:
        """Refresh ``lastActivity`` to now."""
        now = self._clock()
        if self._current is not None:
            self._current = self._current.model_copy(update={"last_activity_at": now})
        return self._store.set(StoreKey.LAST_ACTIVITY, str(now))

    def clear(self) -> None:
        """Remove every session and wallet-credential key.  Never raises.

        Each key is removed independently; one failure does not stop the
        others.
        """
        self._current = None
        failed = self._store.remove_each(ALL_SESSION_KEYS)
        if failed:
            self._logger.warning("Session clear left %d keys behind: %s", len(failed), failed)
        else:
            self._logger.info("Session cleared; all auth and game data removed.")

    # ------------------------------------------------------------------
    # Game session helpers
    # ------------------------------------------------------------------

    def has_active_game_session(self) -> bool:
        return bool(
            self._store.get(StoreKey.GAME_SESSION_TOKEN)
            and self._store.get(StoreKey.GAME_SESSION_ID)
        )

    @staticmethod
    def generate_game_session_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _wipe(self) -> None:
        self.clear()
        if not self._store.remove_many(CORE_SESSION_KEYS):
            self._logger.error("Atomic removal of core session keys failed.")

    def _audit_expired(self, user: UserRecord, reason: str) -> None:
        log_audit_event(
            logger=self._logger,
            action=AuditAction.SESSION_EXPIRED,
            entity_type="Session",
            entity_id=user.id,
            user_id=user.id,
            details={"reason": reason, "username": user.username},
            db=self._db,
        )
