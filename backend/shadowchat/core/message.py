# shadowchat/core/message.py
#
# Sole writer of messages / message_reactions rows.

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session, aliased

from shadowchat.core.errors import ValidationError
from shadowchat.core.message_logic import burn_deadline, to_millis, utcnow
from shadowchat.models.chat import Chat
from shadowchat.models.chat_member import ChatMember
from shadowchat.models.message import FILE_MESSAGE_TYPES, Message, MessageType
from shadowchat.models.reaction import MessageReaction
from shadowchat.models.user import User
from shadowchat.models.views import MessageView, MomentItem, ReactionView, ReplyInfo


@dataclass(frozen=True)
class ExpiredMessage:
    message_id: int
    chat_id: int
    type: MessageType


# =========================
# WRITES
# =========================

def add_message(
    db: Session,
    chat_id: int,
    sender_id: int | None,
    content: str,
    type: MessageType = MessageType.TEXT,
    reply_to: int | None = None,
) -> int:
    """Store a message and return its id. Ids are assigned here and define display order."""
    if sender_id is not None and type == MessageType.SYSTEM:
        raise ValidationError("Only the server can send system messages")

    if reply_to is not None:
        target = db.get(Message, reply_to)
        if target is None or target.chat_id != chat_id or target.sender_id is None:
            raise ValidationError(
                "Replied message not found or not in this chat or is a system message"
            )

    message = Message(
        # File payloads go to file storage, never into the row
        content=content if type in (MessageType.TEXT, MessageType.SYSTEM) else "",
        type=type,
        chat_id=chat_id,
        sender_id=sender_id,
        time=utcnow(),
        reply_to_id=reply_to,
    )
    db.add(message)
    db.flush()
    return message.id


def add_system_message(db: Session, chat_id: int, content: str) -> int:
    return add_message(db, chat_id, None, content, MessageType.SYSTEM)


def edit_message(db: Session, message_id: int, new_content: str | None) -> MessageView | None:
    """
    Replace the content, or delete the message when new_content is None.
    Returns the view to broadcast; a deleted message goes out as an empty TEXT.
    """
    view = get_message(db, message_id)
    if view is None:
        return None

    if new_content is None:
        delete_message(db, message_id)
        return view.model_copy(update={"content": "", "type": MessageType.TEXT, "reactions": []})

    db.query(Message).filter(Message.id == message_id).update(
        {Message.content: new_content}
    )
    return view.model_copy(update={"content": new_content})


def mark_read(
    db: Session,
    message_id: int,
    read_at: datetime,
    burn_at: datetime | None = None,
) -> MessageView | None:
    """First read wins; later calls leave read_at and burn_at alone."""
    (
        db.query(Message)
        .filter(Message.id == message_id, Message.read_at.is_(None))
        .update({Message.read_at: read_at, Message.burn_at: burn_at})
    )
    return get_message(db, message_id)


def toggle_reaction(db: Session, message_id: int, user_id: int, emoji: str) -> str | None:
    """
    A user holds at most one reaction per message. Same emoji again clears it,
    a different emoji replaces it. Returns the user's reaction afterwards.
    """
    existing = db.get(MessageReaction, (message_id, user_id))
    if existing is not None:
        previous = existing.emoji
        db.delete(existing)
        db.flush()
        if previous == emoji:
            return None

    db.add(MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji))
    db.flush()
    return emoji


def delete_message(db: Session, message_id: int) -> None:
    # Replies keep living with reply_to_id set to NULL
    db.query(Message).filter(Message.id == message_id).delete()


def delete_replies(db: Session, message_id: int) -> int:
    """Comments die with the moment they hang off."""
    return db.query(Message).filter(Message.reply_to_id == message_id).delete()


def delete_chat_messages(db: Session, chat_id: int) -> None:
    db.query(Message).filter(Message.chat_id == chat_id).delete()


def rebase_burn_deadlines(db: Session, chat_id: int, burn_time: int | None) -> int:
    """Keep burn_at == read_at + burn_time for already-read messages after the window changes."""
    rows = (
        db.query(Message.id, Message.read_at)
        .filter(Message.chat_id == chat_id, Message.read_at.isnot(None))
        .all()
    )
    for row in rows:
        db.query(Message).filter(Message.id == row.id).update(
            {Message.burn_at: burn_deadline(row.read_at, burn_time)}
        )
    return len(rows)


# =========================
# READS
# =========================

def get_message_row(db: Session, message_id: int) -> Message | None:
    return db.get(Message, message_id)


def require_message(db: Session, message_id: int) -> Message:
    message = get_message_row(db, message_id)
    if message is None:
        raise ValidationError("Message not found")
    return message


def get_reactions(db: Session, message_ids: list[int]) -> dict[int, list[ReactionView]]:
    reactions = defaultdict(list)
    if not message_ids:
        return reactions
    for row in (
        db.query(MessageReaction)
        .filter(MessageReaction.message_id.in_(message_ids))
        .order_by(MessageReaction.user_id)
    ):
        reactions[row.message_id].append(ReactionView(user_id=row.user_id, emoji=row.emoji))
    return reactions


def _resolved_query(db: Session):
    sender = aliased(User)
    reply = aliased(Message)
    reply_sender = aliased(User)
    query = (
        db.query(
            Message,
            sender.username.label("sender_name"),
            sender.is_donor.label("sender_is_donor"),
            reply.id.label("reply_id"),
            reply.content.label("reply_content"),
            reply.sender_id.label("reply_sender_id"),
            reply.type.label("reply_type"),
            reply_sender.username.label("reply_sender_name"),
        )
        .outerjoin(sender, sender.id == Message.sender_id)
        .outerjoin(reply, reply.id == Message.reply_to_id)
        .outerjoin(reply_sender, reply_sender.id == reply.sender_id)
        .populate_existing()
    )
    return query


def _to_views(db: Session, rows) -> list[MessageView]:
    reactions = get_reactions(db, [row.Message.id for row in rows])
    views = []
    for row in rows:
        message = row.Message
        reply_info = None
        if row.reply_id is not None:
            reply_info = ReplyInfo(
                message_id=row.reply_id,
                content=row.reply_content,
                sender_id=row.reply_sender_id,
                sender_name=row.reply_sender_name,
                type=row.reply_type,
            )
        views.append(
            MessageView(
                id=message.id,
                content=message.content,
                type=message.type,
                chat_id=message.chat_id,
                sender_id=message.sender_id,
                sender_name=row.sender_name,
                time=to_millis(message.time),
                reply_to=reply_info,
                read_at=to_millis(message.read_at),
                burn_at=to_millis(message.burn_at),
                sender_is_donor=bool(row.sender_is_donor),
                reactions=reactions.get(message.id, []),
            )
        )
    return views


def get_message(db: Session, message_id: int) -> MessageView | None:
    rows = _resolved_query(db).filter(Message.id == message_id).all()
    views = _to_views(db, rows)
    return views[0] if views else None


def get_chat_messages(
    db: Session,
    chat_id: int,
    before: datetime | None = None,
    offset: int = 0,
    count: int = 50,
) -> list[MessageView]:
    """One page walking backwards from `before` (or the newest), returned oldest first."""
    query = _resolved_query(db).filter(Message.chat_id == chat_id)
    if before is not None:
        query = query.filter(Message.time < before)
    rows = query.order_by(Message.id.desc()).offset(offset).limit(count).all()
    return list(reversed(_to_views(db, rows)))


def get_file_message_ids(db: Session, chat_id: int) -> list[int]:
    return [
        row.id
        for row in db.query(Message.id).filter(
            Message.chat_id == chat_id, Message.type.in_(FILE_MESSAGE_TYPES)
        )
    ]


# ====== Moments ======

def get_moment_feed(db: Session, viewer_id: int, offset: int = 0, count: int = 50) -> list[MomentItem]:
    """
    Root posts of every moment chat the viewer belongs to, newest first, each
    carrying the viewer's own copy of the feed key.
    """
    owner = aliased(User)
    rows = (
        db.query(Message, ChatMember.key, Chat.owner_id, owner.username, owner.is_donor)
        .select_from(ChatMember)
        .join(Chat, Chat.id == ChatMember.chat_id)
        .join(Message, Message.chat_id == Chat.id)
        .join(owner, owner.id == Chat.owner_id)
        .filter(
            ChatMember.user_id == viewer_id,
            Chat.is_moment.is_(True),
            Message.reply_to_id.is_(None),
            Message.sender_id == Chat.owner_id,
        )
        .order_by(Message.id.desc())
        .offset(offset)
        .limit(count)
        .all()
    )
    reactions = get_reactions(db, [row.Message.id for row in rows])
    return [
        MomentItem(
            message_id=row.Message.id,
            content=row.Message.content,
            type=row.Message.type,
            owner_id=row.owner_id,
            owner_name=row.username,
            time=to_millis(row.Message.time),
            key=row.key,
            owner_is_donor=row.is_donor,
            reactions=reactions.get(row.Message.id, []),
        )
        for row in rows
    ]


def get_owner_moments(
    db: Session,
    chat_id: int,
    owner_id: int,
    before: datetime | None = None,
    count: int = 50,
) -> list[MessageView]:
    """Root posts of one moment chat, newest first."""
    query = _resolved_query(db).filter(
        Message.chat_id == chat_id,
        Message.sender_id == owner_id,
        Message.reply_to_id.is_(None),
    )
    if before is not None:
        query = query.filter(Message.time < before)
    return _to_views(db, query.order_by(Message.id.desc()).limit(count).all())


def get_moment_comments(db: Session, moment_message_id: int) -> list[MessageView]:
    rows = (
        _resolved_query(db)
        .filter(Message.reply_to_id == moment_message_id)
        .order_by(Message.id.asc())
        .all()
    )
    return _to_views(db, rows)


# ====== Burn after read ======

def find_expired(db: Session, now: datetime | None = None) -> list[ExpiredMessage]:
    """
    Messages whose burn window has elapsed: private chat, burn time enabled,
    read, and read_at + burn_time (stored as burn_at) not in the future.
    """
    now = now or utcnow()
    rows = (
        db.query(Message.id, Message.chat_id, Message.type)
        .join(Chat, Chat.id == Message.chat_id)
        .filter(
            Chat.private.is_(True),
            Chat.burn_time.isnot(None),
            Message.read_at.isnot(None),
            Message.burn_at <= now,
        )
        .order_by(Message.id)
        .all()
    )
    return [ExpiredMessage(message_id=row.id, chat_id=row.chat_id, type=row.type) for row in rows]


# ====== Aggregates (weekly summary) ======

def get_top_active_users(db: Session, after: datetime, limit: int = 10) -> list[tuple[str, int]]:
    total = func.count(Message.id)
    rows = (
        db.query(User.username, total.label("total"))
        .join(Message, Message.sender_id == User.id)
        .filter(Message.time > after)
        .group_by(User.id, User.username)
        .order_by(total.desc(), User.username)
        .limit(limit)
        .all()
    )
    return [(row.username, row.total) for row in rows]


def get_top_active_chats(db: Session, after: datetime, limit: int = 10) -> list[tuple[str, int]]:
    total = func.count(Message.id)
    rows = (
        db.query(Chat.name, total.label("total"))
        .join(Message, Message.chat_id == Chat.id)
        .filter(Message.time > after, Chat.private.is_(False), Chat.is_moment.is_(False))
        .group_by(Chat.id, Chat.name)
        .order_by(total.desc(), Chat.name)
        .limit(limit)
        .all()
    )
    return [(row.name or "", row.total) for row in rows]
