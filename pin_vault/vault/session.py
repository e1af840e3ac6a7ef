"""
Session Manager — time-boxed unlocked state after a successful verification.

State machine:
    UNINITIALIZED → VALID      (setup / verify success)
    VALID → INVALID            (expiry, explicit lock, PIN change, wipe)
    INVALID → VALID            (next successful verify)

The session lives in process memory. A snapshot is persisted for
visibility only; on load its ``isValid`` flag is advisory and expiry is
always re-checked against the clock.
"""
import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ..conf import SESSION_KEY
from ..exceptions import SessionCreationFailed, SessionExpired
from .crypto import generate_session_id
from .models import Session

logger = logging.getLogger("pin_vault")

Listener = Callable[[str], None]


class SessionManager:
    """Holds the current session and notifies listeners when it ends."""

    def __init__(
        self,
        storage: Any,
        clock: Callable[[], int],
        timeout_ms: int,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self.timeout_ms = timeout_ms
        self._session: Optional[Session] = None
        self._listeners: list[Listener] = []

    def __repr__(self) -> str:
        return f"<SessionManager valid={self.is_valid()}>"

    @property
    def current(self) -> Optional[Session]:
        return self._session

    def add_listener(self, listener: Listener) -> None:
        """Register ``listener(reason)``, called whenever the session ends."""
        self._listeners.append(listener)

    def _notify(self, reason: str) -> None:
        for listener in self._listeners:
            listener(reason)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_valid(self) -> bool:
        """True while a session exists, is flagged valid and has not expired."""
        session = self._session
        if session is None or not session.is_valid:
            return False
        if not session.is_active(self._clock()):
            logger.debug("Session expired: %s", session.session_id)
            self.invalidate("expired")
            return False
        return True

    def remaining(self) -> int:
        """Remaining session time in milliseconds (0 when invalid)."""
        if not self.is_valid():
            return 0
        return self._session.remaining(self._clock())

    def invalidate(self, reason: str = "invalidated") -> None:
        """Mark the session invalid in memory and notify listeners."""
        if self._session is not None and self._session.is_valid:
            self._session.is_valid = False
            logger.debug(
                "Session invalidated (%s): %s", reason, self._session.session_id
            )
        self._notify(reason)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _save(self) -> None:
        if self._session is not None:
            await self._storage.set({SESSION_KEY: self._session.dump()})

    async def create(self) -> Session:
        """Start a new session of ``timeout_ms``.

        Raises:
            SessionCreationFailed: If the snapshot cannot be persisted.
        """
        now = self._clock()
        self._session = Session(
            session_id=generate_session_id(),
            created_at=now,
            expires_at=now + self.timeout_ms,
            is_valid=True,
        )
        try:
            await self._save()
        except Exception as err:
            logger.error("Failed to persist session: %s", err)
            self._session.is_valid = False
            raise SessionCreationFailed() from err
        logger.debug("Valid session created: %s", self._session.session_id)
        return self._session

    async def extend(self) -> Session:
        """Push the expiry of the current session to ``now + timeout_ms``.

        Raises:
            SessionExpired: If there is no valid session.
            SessionCreationFailed: If the snapshot cannot be persisted.
        """
        if not self.is_valid():
            raise SessionExpired("No valid session to extend")
        self._session.expires_at = self._clock() + self.timeout_ms
        try:
            await self._save()
        except Exception as err:
            logger.error("Failed to extend session: %s", err)
            raise SessionCreationFailed("Failed to extend session") from err
        logger.debug("Session extended: %s", self._session.session_id)
        return self._session

    async def lock(self, reason: str = "locked") -> None:
        """Invalidate the session and delete its persisted snapshot."""
        self.invalidate(reason)
        await self._storage.remove([SESSION_KEY])

    async def restore(self) -> Optional[Session]:
        """Load the persisted snapshot, keeping it only if still unexpired."""
        data = await self._storage.get([SESSION_KEY])
        stored = data.get(SESSION_KEY)
        if not stored:
            self._session = None
            return None
        try:
            session = Session.model_validate(stored)
        except ValidationError as err:
            logger.warning("Invalid persisted session, discarding: %s", err)
            session = None
        if session is None or not session.is_active(self._clock()):
            self._session = None
            await self._storage.remove([SESSION_KEY])
            return None
        self._session = session
        logger.debug("Session restored: %s", session.session_id)
        return session
