# shadowchat/services/distribution.py
#
# Builds outbound events from persisted state and pushes them to live sessions.
# Builders run inside the request's DB session; delivery runs after commit.

import asyncio
import json
from dataclasses import dataclass

from sqlalchemy.orm import Session as DbSession

from shadowchat.core import chats, membership
from shadowchat.models.chat import Chat
from shadowchat.models.views import MessageView
from shadowchat.services.session_registry import Session, SessionRegistry
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Outbound:
    """One event for the wire. `to_users=None` addresses the requesting session only."""

    packet: str
    payload: dict
    to_users: tuple[int, ...] | None = None

    def encode(self) -> str:
        return json.dumps({"packet": self.packet, **self.payload}, ensure_ascii=False)


def reply(packet: str, **payload) -> Outbound:
    return Outbound(packet, payload)


def to_users(user_ids, packet: str, **payload) -> Outbound:
    return Outbound(packet, payload, tuple(dict.fromkeys(user_ids)))


def notify_error(message: str) -> Outbound:
    return reply("notify", type="ERROR", message=message)


def notify_info(message: str) -> Outbound:
    return reply("notify", type="INFO", message=message)


# =========================
# EVENT BUILDERS
# =========================

def unread_count_event(chat_id: int, user_id: int, unread: int, mentioned: bool) -> Outbound:
    return to_users([user_id], "unread_count", chatId=chat_id, unread=unread, mentioned=mentioned)


def chat_list_events(db: DbSession, user_ids) -> list[Outbound]:
    return [
        to_users([uid], "chats_list", chats=[c.dump() for c in membership.get_user_chats(db, uid)])
        for uid in dict.fromkeys(user_ids)
    ]


def chat_details_event(db: DbSession, chat: Chat, user_ids=None) -> Outbound:
    members = membership.list_members(db, chat.id)
    payload = {
        "chat": chats.to_view(chat).dump(),
        "members": [m.dump() for m in members],
    }
    if user_ids is None:
        return Outbound("chat_details", payload)
    return Outbound("chat_details", payload, tuple(dict.fromkeys(user_ids)))


def distribute_message(db: DbSession, message: MessageView, silent: bool) -> list[Outbound]:
    """
    Fan a message out to every member of its chat.

    Silent updates (edits, read receipts, reactions, deletions) go to all
    members including the actor and never touch unread counters. A new message
    goes to everyone except its sender, followed by each recipient's fresh
    unread count; the sender's own sessions get `message_sent`.
    """
    member_ids = membership.get_member_ids(db, message.chat_id)
    body = message.dump()

    if silent:
        return [to_users(member_ids, "receive_message", message=body, silent=True)]

    recipients = [uid for uid in member_ids if uid != message.sender_id]
    events = [to_users(recipients, "receive_message", message=body, silent=False)]

    unread = membership.get_unread_by_member(db, message.chat_id)
    for uid in recipients:
        count, mentioned = unread.get(uid, (0, False))
        events.append(unread_count_event(message.chat_id, uid, count, mentioned))

    if message.sender_id is not None and message.sender_id in member_ids:
        events.append(to_users([message.sender_id], "message_sent", message=body))
    return events


def moment_edited_events(db: DbSession, message: MessageView) -> list[Outbound]:
    viewers = membership.get_member_ids(db, message.chat_id)
    return [
        to_users(
            viewers,
            "moment_edited",
            messageId=message.id,
            content=message.content,
            reactions=[r.dump() for r in message.reactions],
        )
    ]


# =========================
# DELIVERY
# =========================

async def deliver(registry: SessionRegistry, events: list[Outbound], origin: Session | None = None) -> None:
    """
    Send events in order. Each event goes to all of its recipients at once, so
    one slow recipient does not hold up the others. Unreachable sessions are skipped.
    """
    for event in events:
        text = event.encode()

        async def send(session: Session, text=text) -> None:
            await session.send(text)

        if event.to_users is None:
            if origin is None:
                logger.debug(f"Dropping {event.packet}: no requesting session")
                continue
            try:
                await origin.send(text)
            except Exception as e:
                logger.debug(f"Requesting session unreachable for {event.packet}: {e}")
            continue

        await asyncio.gather(*(registry.for_each_session(user_id, send) for user_id in event.to_users))
