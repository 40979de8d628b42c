# shadowchat/packets/moment.py
#
# A user's moments live in a single moment chat they own. Viewers are members
# of that chat holding their own copy of the feed key; posts are root messages
# by the owner, comments are replies to them.

from pydantic import Field

from shadowchat.core import chats, friends, membership, message, user as users
from shadowchat.core.config import MAX_PAGE_SIZE, MAX_TIMESTAMP_MS
from shadowchat.core.errors import AuthorizationError, ValidationError
from shadowchat.core.message_logic import from_millis
from shadowchat.models.message import FILE_MESSAGE_TYPES, MessageType
from shadowchat.models.views import MomentItem
from shadowchat.packets.base import Payload, packet
from shadowchat.services.distribution import moment_edited_events, notify_info, reply, to_users


class GetMoments(Payload):
    offset: int = Field(0, ge=0)
    count: int = Field(50, ge=1)


class PostMoment(Payload):
    content: str = ""
    type: MessageType = MessageType.TEXT
    key: str | None = None


class EditMoment(Payload):
    message_id: int
    content: str | None


class CommentMoment(Payload):
    message_id: int
    content: str = Field(min_length=1)


class MomentRef(Payload):
    message_id: int


class GetUserMoments(Payload):
    user_id: int
    before: int | None = Field(None, ge=0, le=MAX_TIMESTAMP_MS)
    count: int = Field(50, ge=1)


class ToggleMomentPermission(Payload):
    friend_id: int
    can_view: bool


class GetMomentPermission(Payload):
    friend_id: int
    encrypted_key: str | None = None


def _require_root_moment(ctx, message_id: int):
    """Resolve a moment post and its chat; comments and ordinary messages are rejected."""
    row = message.require_message(ctx.db, message_id)
    chat = chats.require_chat(ctx.db, row.chat_id)
    if not chat.is_moment or row.reply_to_id is not None or row.sender_id != chat.owner_id:
        raise ValidationError("Moment not found")
    return row, chat


def _require_viewer(ctx, chat) -> None:
    if chat.owner_id != ctx.user.id:
        membership.require_member(ctx.db, chat.id, ctx.user.id)


def _require_friend(ctx, friend_id: int) -> None:
    if not friends.are_friends(ctx.db, ctx.user.id, friend_id):
        raise ValidationError("User is not your friend")


@packet("get_moments", GetMoments)
def get_moments(ctx, data: GetMoments):
    feed = message.get_moment_feed(ctx.db, ctx.user.id, data.offset, min(data.count, MAX_PAGE_SIZE))
    return [reply("moments_list", moments=[m.dump() for m in feed])]


@packet("post_moment", PostMoment)
def post_moment(ctx, data: PostMoment):
    if data.type == MessageType.SYSTEM:
        raise ValidationError("Only the server can send system messages")

    chat = chats.get_or_create_moment_chat(ctx.db, ctx.user.id, ctx.user.username)
    if not membership.is_member(ctx.db, chat.id, ctx.user.id):
        if data.key is None:
            raise ValidationError("Key required for first moment")
        membership.add_member(ctx.db, chat.id, ctx.user.id, data.key)

    message_id = message.add_message(ctx.db, chat.id, ctx.user.id, data.content, data.type)
    chats.touch(ctx.db, chat.id)
    return [
        reply("moment_posted", messageId=message_id, chatId=chat.id),
        notify_info("Moment posted successfully"),
    ]


@packet("edit_moment", EditMoment)
def edit_moment(ctx, data: EditMoment):
    row, chat = _require_root_moment(ctx, data.message_id)
    if chat.owner_id != ctx.user.id:
        raise AuthorizationError("Only the owner can edit their moments")
    message_id, kind = row.id, row.type
    if data.content is not None and kind != MessageType.TEXT:
        raise ValidationError("Only text moments can be edited")

    if data.content is None:
        message.delete_replies(ctx.db, message_id)
        if kind in FILE_MESSAGE_TYPES:
            ctx.defer(ctx.files.delete_file, message_id)

    view = message.edit_message(ctx.db, message_id, data.content)
    return moment_edited_events(ctx.db, view)


@packet("comment_moment", CommentMoment)
def comment_moment(ctx, data: CommentMoment):
    row, chat = _require_root_moment(ctx, data.message_id)
    _require_viewer(ctx, chat)

    comment_id = message.add_message(
        ctx.db, chat.id, ctx.user.id, data.content, MessageType.TEXT, reply_to=row.id
    )
    comment = message.get_message(ctx.db, comment_id)
    viewers = set(membership.get_member_ids(ctx.db, chat.id)) | {chat.owner_id}
    return [to_users(sorted(viewers), "moment_commented", messageId=row.id, comment=comment.dump())]


@packet("get_moment_comments", MomentRef)
def get_moment_comments(ctx, data: MomentRef):
    row, chat = _require_root_moment(ctx, data.message_id)
    _require_viewer(ctx, chat)
    comments = message.get_moment_comments(ctx.db, row.id)
    return [reply("moment_comments", messageId=row.id, comments=[c.dump() for c in comments])]


@packet("get_user_moments", GetUserMoments)
def get_user_moments(ctx, data: GetUserMoments):
    owner = users.get_user(ctx.db, data.user_id)
    if owner is None:
        raise ValidationError("User not found")

    chat = chats.get_moment_chat_by_owner(ctx.db, owner.id)
    if chat is None:
        return [reply("user_moments_list", userId=owner.id, username=owner.username, moments=[])]

    key = membership.get_member_key(ctx.db, chat.id, ctx.user.id)
    if key is None and owner.id != ctx.user.id:
        raise AuthorizationError("You are not a viewer of this user's moments")

    before = from_millis(data.before) if data.before is not None else None
    posts = message.get_owner_moments(ctx.db, chat.id, owner.id, before, min(data.count, MAX_PAGE_SIZE))
    moments = [
        MomentItem(
            message_id=post.id,
            content=post.content,
            type=post.type,
            owner_id=owner.id,
            owner_name=owner.username,
            time=post.time,
            key=key or "",
            owner_is_donor=owner.is_donor,
            reactions=post.reactions,
        ).dump()
        for post in posts
    ]
    return [reply("user_moments_list", userId=owner.id, username=owner.username, moments=moments)]


@packet("toggle_moment_permission", ToggleMomentPermission)
def toggle_moment_permission(ctx, data: ToggleMomentPermission):
    _require_friend(ctx, data.friend_id)

    # Granting needs the friend's copy of the key, which comes in through get_moment_permission
    if not data.can_view:
        chat = chats.get_moment_chat_by_owner(ctx.db, ctx.user.id)
        if chat is not None:
            membership.remove_member(ctx.db, chat.id, data.friend_id)
        info = "Friend can no longer view your moments"
    else:
        info = "Send the friend's encrypted key with get_moment_permission to grant access"

    return [
        reply("moment_permission_updated", friendId=data.friend_id, canView=data.can_view),
        notify_info(info),
    ]


@packet("get_moment_permission", GetMomentPermission)
def get_moment_permission(ctx, data: GetMomentPermission):
    _require_friend(ctx, data.friend_id)

    if data.encrypted_key is not None:
        chat = chats.get_or_create_moment_chat(ctx.db, ctx.user.id, ctx.user.username)
        membership.add_member(ctx.db, chat.id, data.friend_id, data.encrypted_key)

    mine = chats.get_moment_chat_by_owner(ctx.db, ctx.user.id)
    theirs = chats.get_moment_chat_by_owner(ctx.db, data.friend_id)
    return [
        reply(
            "moment_permission_status",
            friendId=data.friend_id,
            canFriendViewMine=mine is not None and membership.is_member(ctx.db, mine.id, data.friend_id),
            canIViewFriends=theirs is not None and membership.is_member(ctx.db, theirs.id, ctx.user.id),
        )
    ]


@packet("get_my_moment_key")
def get_my_moment_key(ctx, data):
    chat = chats.get_moment_chat_by_owner(ctx.db, ctx.user.id)
    if chat is None:
        return [reply("my_moment_key", exists=False, key=None)]
    key = membership.get_member_key(ctx.db, chat.id, ctx.user.id)
    return [reply("my_moment_key", exists=True, chatId=chat.id, key=key)]
