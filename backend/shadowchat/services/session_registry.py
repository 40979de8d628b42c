# shadowchat/services/session_registry.py

import asyncio
import threading
from typing import Awaitable, Callable, Protocol

from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)


class Session(Protocol):
    """A live connection the server can push text frames to."""

    async def send(self, text: str) -> None: ...


class SessionRegistry:
    """
    Maps a user id to the set of live sessions of that user (zero, one, or many
    devices/tabs). Owned by the application; create one per app or per test.
    """

    def __init__(self):
        self._sessions: dict[int, set[Session]] = {}
        self._lock = threading.Lock()

    def add_session(self, user_id: int, session: Session) -> None:
        with self._lock:
            self._sessions.setdefault(user_id, set()).add(session)
        logger.debug(f"Session attached for user {user_id}")

    def remove_session(self, user_id: int, session: Session) -> None:
        with self._lock:
            sessions = self._sessions.get(user_id)
            if sessions is None:
                return
            sessions.discard(session)
            if not sessions:
                del self._sessions[user_id]
        logger.debug(f"Session detached for user {user_id}")

    def sessions(self, user_id: int) -> tuple[Session, ...]:
        """Snapshot of the user's sessions; safe to iterate while others connect/disconnect"""
        with self._lock:
            return tuple(self._sessions.get(user_id, ()))

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            return bool(self._sessions.get(user_id))

    def online_users(self) -> list[int]:
        with self._lock:
            return list(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    async def for_each_session(
        self,
        user_id: int,
        action: Callable[[Session], Awaitable[None]],
    ) -> int:
        """
        Run `action` on every session of the user concurrently.
        A failing session is skipped; returns how many succeeded.
        """
        snapshot = self.sessions(user_id)
        if not snapshot:
            return 0
        results = await asyncio.gather(*(self._run(action, session, user_id) for session in snapshot))
        return sum(results)

    @staticmethod
    async def _run(action, session: Session, user_id: int) -> bool:
        try:
            await action(session)
            return True
        except Exception as e:
            # Dead socket; the disconnect handler will detach it
            logger.debug(f"Skipping unreachable session of user {user_id}: {e}")
            return False
