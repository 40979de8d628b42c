# shadowchat/packets/group.py

from pydantic import Field

from shadowchat.core import chats, membership, message, user as users
from shadowchat.core.config import MIN_GROUP_MEMBERS
from shadowchat.core.errors import AuthorizationError, StateConflict, ValidationError
from shadowchat.packets.base import Payload, packet
from shadowchat.services.distribution import (
    chat_details_event,
    chat_list_events,
    distribute_message,
    notify_info,
)


class CreateGroup(Payload):
    name: str | None = Field(None, max_length=255)
    member_usernames: list[str]
    encrypted_keys: dict[str, str]


class AddMember(Payload):
    chat_id: int
    username: str
    encrypted_key: str


class KickMember(Payload):
    chat_id: int
    username: str


@packet("create_group", CreateGroup)
def create_group(ctx, data: CreateGroup):
    usernames = [u for u in dict.fromkeys(u.strip() for u in data.member_usernames) if u]
    if ctx.user.username not in usernames:
        usernames.append(ctx.user.username)

    members = []
    for username in usernames:
        member = users.get_user_by_username(ctx.db, username)
        if member is None:
            raise ValidationError("One or more users not found")
        members.append(member)

    missing = [u for u in usernames if u not in data.encrypted_keys]
    if missing:
        raise ValidationError(f"Missing keys for: {', '.join(missing)}")

    name = (data.name or "").strip() or "New Group"
    chat = chats.create_chat(ctx.db, name, ctx.user.id)
    for member in members:
        membership.add_member(ctx.db, chat.id, member.id, data.encrypted_keys[member.username])

    return [notify_info("Group created successfully")] + chat_list_events(
        ctx.db, [m.id for m in members]
    )


@packet("add_member_to_chat", AddMember)
def add_member_to_chat(ctx, data: AddMember):
    chat = chats.require_chat(ctx.db, data.chat_id)
    if chat.is_moment and chat.owner_id != ctx.user.id:
        raise AuthorizationError("Only the owner can invite viewers to their moments")
    if not chat.is_moment:
        membership.require_member(ctx.db, chat.id, ctx.user.id)
    if chat.private:
        raise StateConflict("Private chats always have exactly two members")

    target = users.require_user_by_username(ctx.db, data.username)
    if not membership.add_member(ctx.db, chat.id, target.id, data.encrypted_key):
        raise StateConflict(f"{target.username} is already a member")

    if chat.is_moment:
        return [notify_info("Viewer added successfully")]

    system_id = message.add_system_message(
        ctx.db, chat.id, f"{ctx.user.username} invited {target.username} to the chat"
    )
    member_ids = membership.get_member_ids(ctx.db, chat.id)
    events = [notify_info("Member added successfully"), chat_details_event(ctx.db, chat, member_ids)]
    events += chat_list_events(ctx.db, [target.id])
    events += distribute_message(ctx.db, message.get_message(ctx.db, system_id), silent=True)
    return events


@packet("kick_member_from_chat", KickMember)
def kick_member_from_chat(ctx, data: KickMember):
    chat = chats.require_chat(ctx.db, data.chat_id)
    if chat.is_moment and chat.owner_id != ctx.user.id:
        raise AuthorizationError("Only the owner can remove viewers from their moments")

    is_owner = chat.owner_id == ctx.user.id
    leaving = data.username == ctx.user.username

    # Leaving a private chat, or the owner leaving, takes the whole chat down
    if chat.private or (is_owner and leaving):
        member_ids = membership.get_member_ids(ctx.db, chat.id)
        if ctx.user.id not in member_ids:
            raise AuthorizationError("You are not a member of this chat")
        for message_id in message.get_file_message_ids(ctx.db, chat.id):
            ctx.defer(ctx.files.delete_file, message_id)
        chats.delete_chat(ctx.db, chat.id)
        return [notify_info("Chat deleted successfully")] + chat_list_events(ctx.db, member_ids)

    if not is_owner and not leaving:
        raise AuthorizationError("Only owner can kick members")
    if not chat.is_moment:
        # A moment owner manages viewers without being a member of the feed
        membership.require_member(ctx.db, chat.id, ctx.user.id)

    target = users.require_user_by_username(ctx.db, data.username)
    if not membership.is_member(ctx.db, chat.id, target.id):
        raise ValidationError(f"{target.username} is not a member of this chat")

    remaining = [uid for uid in membership.get_member_ids(ctx.db, chat.id) if uid != target.id]
    if not chat.is_moment and len(remaining) < MIN_GROUP_MEMBERS:
        raise StateConflict(f"Cannot kick member: Chat must have at least {MIN_GROUP_MEMBERS} members")

    membership.remove_member(ctx.db, chat.id, target.id)
    if chat.is_moment:
        return [notify_info("Viewer removed successfully")]

    if leaving:
        text = f"{ctx.user.username} left the chat"
    else:
        text = f"{ctx.user.username} removed {target.username} from the chat"
    system_id = message.add_system_message(ctx.db, chat.id, text)

    events = [notify_info("Member kicked successfully"), chat_details_event(ctx.db, chat, remaining)]
    events += chat_list_events(ctx.db, [target.id])
    events += distribute_message(ctx.db, message.get_message(ctx.db, system_id), silent=True)
    return events
