# shadowchat/packets/dispatcher.py

import json

from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import SQLAlchemyError

from shadowchat.core.errors import AuthorizationError, ChatError, InfrastructureError
from shadowchat.infra.postgres import db_session
from shadowchat.models.user import User
from shadowchat.packets.base import HANDLERS, Handler, PacketContext
from shadowchat.services.distribution import Outbound, notify_error
from shadowchat.services.file_storage import FileStorage
from shadowchat.utils.logger import get_logger

# Handler modules register themselves on import
from shadowchat.packets import chat, group, moment, user  # noqa: F401, E402

logger = get_logger(__name__)


def parse_frame(text: str) -> tuple[str, str]:
    """Split a `<packet_name>\\n<json>` frame; the JSON part may be absent."""
    name, _, body = text.partition("\n")
    return name.strip(), body.strip()


class PacketDispatcher:
    """
    Runs one inbound packet inside its own transaction and returns the events
    to deliver. Nothing is delivered for a packet whose transaction failed.
    Blocking: call it from a worker thread.
    """

    def __init__(self, session_factory, files: FileStorage):
        self.session_factory = session_factory
        self.files = files

    def dispatch(self, user_id: int, name: str, raw: str | None) -> list[Outbound]:
        handler = HANDLERS.get(name)
        if handler is None:
            logger.debug(f"Unknown packet from user {user_id}: {name}")
            return [notify_error(f"Unknown packet: {name}")]

        try:
            payload = handler.schema.model_validate(json.loads(raw) if raw else {})
        except (PayloadError, json.JSONDecodeError, TypeError):
            return [notify_error(f"{handler.label} failed: Invalid packet format")]

        try:
            events, after_commit = self._run(handler, user_id, payload)
        except ChatError as e:
            logger.debug(f"{name} rejected for user {user_id}: {e.reason}")
            return [notify_error(f"{handler.label} failed: {e.reason}")]

        for fn, args in after_commit:
            try:
                fn(*args)
            except Exception as e:
                logger.warning(f"Post-commit task after {name} failed: {e}")
        return events

    def _run(self, handler: Handler, user_id: int, payload) -> tuple[list[Outbound], list]:
        """Run the handler in one transaction; anything but a ChatError becomes InfrastructureError."""
        try:
            with db_session(self.session_factory) as db:
                user = db.get(User, user_id)
                if user is None:
                    raise AuthorizationError("Session user no longer exists")
                ctx = PacketContext(db=db, user=user, files=self.files)
                events = handler.func(ctx, payload)
                return events, ctx.after_commit
        except ChatError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Database error while handling {handler.name} for user {user_id}")
            raise InfrastructureError("Internal server error") from e
        except Exception as e:
            logger.exception(f"Unexpected error while handling {handler.name} for user {user_id}")
            raise InfrastructureError("Internal server error") from e
