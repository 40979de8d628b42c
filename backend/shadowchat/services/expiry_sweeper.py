# shadowchat/services/expiry_sweeper.py

import asyncio
from datetime import datetime

from starlette.concurrency import run_in_threadpool

from shadowchat.core import message
from shadowchat.core.config import BURN_SWEEP_INTERVAL_SECONDS
from shadowchat.core.message_logic import utcnow
from shadowchat.infra.postgres import db_session
from shadowchat.models.message import FILE_MESSAGE_TYPES
from shadowchat.services.distribution import Outbound, deliver, distribute_message
from shadowchat.services.file_storage import FileStorage
from shadowchat.services.session_registry import SessionRegistry
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)


class ExpirySweeper:
    """
    Deletes burn-after-read messages once their deadline has passed and tells
    the chat members, who receive the message again as a silent empty TEXT.
    """

    def __init__(
        self,
        session_factory,
        registry: SessionRegistry,
        files: FileStorage,
        interval: float = BURN_SWEEP_INTERVAL_SECONDS,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.files = files
        self.interval = interval
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="expiry-sweeper")
            logger.info(f"Expiry sweeper started (interval {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def run(self) -> None:
        while True:
            try:
                events = await run_in_threadpool(self.sweep_once)
                if events:
                    await deliver(self.registry, events)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Next tick retries whatever was left behind
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(self.interval)

    def sweep_once(self, now: datetime | None = None) -> list[Outbound]:
        """One pass: every expired row is handled in its own transaction."""
        now = now or utcnow()
        with db_session(self.session_factory) as db:
            expired = message.find_expired(db, now)

        events = []
        for item in expired:
            try:
                events += self._burn(item)
            except Exception as e:
                logger.error(f"Failed to burn message {item.message_id}: {e}")
        if expired:
            logger.debug(f"Burned {len(expired)} message(s)")
        return events

    def _burn(self, item: message.ExpiredMessage) -> list[Outbound]:
        with db_session(self.session_factory) as db:
            view = message.edit_message(db, item.message_id, None)
            if view is None:
                # Deleted by someone else since the query
                return []
            events = distribute_message(db, view, silent=True)

        if item.type in FILE_MESSAGE_TYPES:
            try:
                self.files.delete_file(item.message_id)
            except OSError as e:
                logger.warning(f"Failed to delete file for message {item.message_id}: {e}")
        return events
