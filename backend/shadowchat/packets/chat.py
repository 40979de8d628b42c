# shadowchat/packets/chat.py

from pydantic import Field

from shadowchat.core import chats, membership, message
from shadowchat.core.config import MAX_BURN_TIME_MS, MAX_PAGE_SIZE, MAX_TIMESTAMP_MS
from shadowchat.core.errors import AuthorizationError, ValidationError
from shadowchat.core.message_logic import burn_deadline, from_millis, utcnow
from shadowchat.models.message import FILE_MESSAGE_TYPES, MessageType
from shadowchat.packets.base import Payload, packet
from shadowchat.services.distribution import (
    chat_details_event,
    chat_list_events,
    distribute_message,
    moment_edited_events,
    notify_info,
    reply,
    unread_count_event,
)


class ChatRef(Payload):
    chat_id: int


class MessageRef(Payload):
    message_id: int


class GetMessages(Payload):
    chat_id: int
    before: int | None = Field(None, ge=0, le=MAX_TIMESTAMP_MS)
    offset: int = Field(0, ge=0)
    count: int = Field(50, ge=1)


class SendMessage(Payload):
    chat_id: int
    message: str = ""
    type: MessageType = MessageType.TEXT
    reply_to: int | None = None
    at_user_ids: list[int] = []


class EditMessage(Payload):
    message_id: int
    message: str | None
    at_user_ids: list[int] = []


class ToggleReaction(Payload):
    message_id: int
    emoji: str = Field(min_length=1, max_length=32)


class RenameChat(Payload):
    chat_id: int
    new_name: str = Field(max_length=255)


class SetDoNotDisturb(Payload):
    chat_id: int
    do_not_disturb: bool


class SetBurnTime(Payload):
    chat_id: int
    burn_time: int | None = Field(None, le=MAX_BURN_TIME_MS)


def _mark_mentions(ctx, chat_id: int, user_ids: list[int]) -> None:
    members = set(membership.get_member_ids(ctx.db, chat_id))
    for uid in dict.fromkeys(user_ids):
        if uid in members and uid != ctx.user.id:
            membership.set_mention_marker(ctx.db, chat_id, uid)


@packet("get_chats")
def get_chats(ctx, data):
    summaries = membership.get_user_chats(ctx.db, ctx.user.id)
    return [reply("chats_list", chats=[s.dump() for s in summaries])]


@packet("get_messages", GetMessages)
def get_messages(ctx, data: GetMessages):
    membership.require_member(ctx.db, data.chat_id, ctx.user.id)

    before = from_millis(data.before) if data.before is not None else None
    page = message.get_chat_messages(
        ctx.db, data.chat_id, before, data.offset, min(data.count, MAX_PAGE_SIZE)
    )

    events = []
    if before is None and data.offset == 0:
        # Opening the newest page counts as reading the chat
        membership.reset_unread(ctx.db, data.chat_id, ctx.user.id)
        events.append(unread_count_event(data.chat_id, ctx.user.id, 0, False))
    events.append(reply("messages_list", chatId=data.chat_id, messages=[m.dump() for m in page]))
    return events


@packet("send_message", SendMessage)
def send_message(ctx, data: SendMessage):
    chat = chats.require_chat(ctx.db, data.chat_id)
    if chat.is_moment and chat.owner_id != ctx.user.id:
        raise AuthorizationError("Only the owner can post to their moments")
    membership.require_member(ctx.db, chat.id, ctx.user.id)

    message_id = message.add_message(
        ctx.db, chat.id, ctx.user.id, data.message, data.type, data.reply_to
    )
    chats.touch(ctx.db, chat.id)
    membership.increment_unread(ctx.db, chat.id, ctx.user.id)
    _mark_mentions(ctx, chat.id, data.at_user_ids)

    view = message.get_message(ctx.db, message_id)
    return distribute_message(ctx.db, view, silent=False)


@packet("edit_message", EditMessage)
def edit_message(ctx, data: EditMessage):
    row = message.require_message(ctx.db, data.message_id)
    message_id, chat_id, kind = row.id, row.chat_id, row.type

    if row.sender_id != ctx.user.id:
        raise AuthorizationError("You can only edit your own messages")
    membership.require_member(ctx.db, chat_id, ctx.user.id)
    if data.message is not None and kind != MessageType.TEXT:
        raise ValidationError("Only text messages can be edited")

    chat = chats.require_chat(ctx.db, chat_id)
    if data.message is None and kind in FILE_MESSAGE_TYPES:
        ctx.defer(ctx.files.delete_file, message_id)

    view = message.edit_message(ctx.db, message_id, data.message)
    _mark_mentions(ctx, chat_id, data.at_user_ids)

    if chat.is_moment:
        return moment_edited_events(ctx.db, view)
    return distribute_message(ctx.db, view, silent=True)


@packet("mark_message_read", MessageRef)
def mark_message_read(ctx, data: MessageRef):
    row = message.require_message(ctx.db, data.message_id)
    chat = chats.require_chat(ctx.db, row.chat_id)
    membership.require_member(ctx.db, chat.id, ctx.user.id)

    # Receipts exist for the other side of a private chat, and only the first one counts
    if not chat.private or row.sender_id in (None, ctx.user.id) or row.read_at is not None:
        return []

    now = utcnow()
    view = message.mark_read(ctx.db, row.id, now, burn_deadline(now, chat.burn_time))
    return distribute_message(ctx.db, view, silent=True)


@packet("toggle_reaction", ToggleReaction)
def toggle_reaction(ctx, data: ToggleReaction):
    row = message.require_message(ctx.db, data.message_id)
    chat = chats.require_chat(ctx.db, row.chat_id)
    membership.require_member(ctx.db, chat.id, ctx.user.id)

    message.toggle_reaction(ctx.db, row.id, ctx.user.id, data.emoji)
    view = message.get_message(ctx.db, row.id)
    if chat.is_moment:
        return moment_edited_events(ctx.db, view)
    return distribute_message(ctx.db, view, silent=True)


@packet("get_chat_details", ChatRef)
def get_chat_details(ctx, data: ChatRef):
    chat = chats.require_chat(ctx.db, data.chat_id)
    membership.require_member(ctx.db, chat.id, ctx.user.id)
    return [chat_details_event(ctx.db, chat)]


@packet("rename_chat", RenameChat)
def rename_chat(ctx, data: RenameChat):
    chat = chats.require_chat(ctx.db, data.chat_id)
    if chat.owner_id != ctx.user.id:
        raise AuthorizationError("Only owner can rename chat")
    new_name = data.new_name.strip()
    if not new_name:
        raise ValidationError("Chat name must not be empty")

    chats.rename_chat(ctx.db, chat.id, new_name)
    system_id = message.add_system_message(
        ctx.db, chat.id, f'{ctx.user.username} changed the chat name to "{new_name}"'
    )

    member_ids = membership.get_member_ids(ctx.db, chat.id)
    events = [notify_info("Chat renamed successfully")]
    events += chat_list_events(ctx.db, member_ids)
    events += distribute_message(ctx.db, message.get_message(ctx.db, system_id), silent=False)
    return events


@packet("set_do_not_disturb", SetDoNotDisturb)
def set_do_not_disturb(ctx, data: SetDoNotDisturb):
    if not membership.set_do_not_disturb(ctx.db, data.chat_id, ctx.user.id, data.do_not_disturb):
        raise AuthorizationError("You are not a member of this chat")
    return [notify_info(f"Do Not Disturb set to {str(data.do_not_disturb).lower()}")] + chat_list_events(
        ctx.db, [ctx.user.id]
    )


@packet("set_burn_time", SetBurnTime)
def set_burn_time(ctx, data: SetBurnTime):
    chat = chats.require_chat(ctx.db, data.chat_id)
    membership.require_member(ctx.db, chat.id, ctx.user.id)
    if not chat.private:
        raise ValidationError("Burn after read is only available for private chats")

    chats.set_burn_time(ctx.db, chat.id, data.burn_time)
    message.rebase_burn_deadlines(ctx.db, chat.id, data.burn_time)

    if data.burn_time is not None:
        info = f"Burn time set to {data.burn_time // 1000} seconds"
    else:
        info = "Burn after read disabled"
    return [notify_info(info)] + chat_list_events(ctx.db, membership.get_member_ids(ctx.db, chat.id))
