# shadowchat/api/socket.py

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError as PayloadError
from starlette.concurrency import run_in_threadpool

from shadowchat.core import user as users
from shadowchat.core.config import SEND_TIMEOUT_SECONDS
from shadowchat.core.errors import ChatError
from shadowchat.core.security import authenticate
from shadowchat.infra.postgres import db_session
from shadowchat.packets.dispatcher import parse_frame
from shadowchat.services.distribution import deliver
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class LoginSchema(BaseModel):
    username: str
    timestamp: str
    signature: str


class WebSocketSession:
    """Serializes writes so concurrent broadcasts never interleave frames."""

    def __init__(self, websocket: WebSocket, timeout: float = SEND_TIMEOUT_SECONDS):
        self.websocket = websocket
        self.timeout = timeout
        self._lock = asyncio.Lock()

    async def send(self, text: str) -> None:
        # A stalled client raises TimeoutError and gets skipped by the registry
        await asyncio.wait_for(self._send(text), self.timeout)

    async def _send(self, text: str) -> None:
        async with self._lock:
            await self.websocket.send_text(text)


def _login(session_factory, frame: str) -> dict:
    """Verify the login frame; returns the login_result payload."""
    name, body = parse_frame(frame)
    if name != "login":
        return {"success": False, "error": "Login failed: Please log in first"}
    try:
        credentials = LoginSchema.model_validate_json(body)
    except PayloadError:
        return {"success": False, "error": "Login failed: Invalid packet format"}

    try:
        with db_session(session_factory) as db:
            user = authenticate(db, credentials.username, credentials.timestamp, credentials.signature)
            return {"success": True, "user": users.to_view(user).dump()}
    except ChatError as e:
        return {"success": False, "error": e.reason}


@router.websocket("/socket")
async def socket_endpoint(websocket: WebSocket):
    state = websocket.app.state
    await websocket.accept()
    session = WebSocketSession(websocket)
    user_id = None

    try:
        # First frame must be a login; anything else ends the connection
        result = await run_in_threadpool(_login, state.session_factory, await websocket.receive_text())
        if result["success"]:
            # Session is live before login_result goes out
            user_id = result["user"]["id"]
            state.registry.add_session(user_id, session)
            logger.info(f"User {result['user']['username']} connected")

        await session.send(json.dumps({"packet": "login_result", **result}, ensure_ascii=False))
        if not result["success"]:
            await websocket.close()
            return

        # One frame at a time per connection; other connections run concurrently
        while True:
            name, body = parse_frame(await websocket.receive_text())
            if not name:
                continue
            events = await run_in_threadpool(state.dispatcher.dispatch, user_id, name, body or None)
            await deliver(state.registry, events, origin=session)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception(f"Socket error for user {user_id}")
    finally:
        if user_id is not None:
            state.registry.remove_session(user_id, session)
            logger.info(f"User {user_id} disconnected")
