# shadowchat/core/membership.py
#
# Sole writer of chat_members rows. Counter updates are single UPDATE
# statements so concurrent increments and resets never lose each other.

from collections import defaultdict

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from shadowchat.core.errors import AuthorizationError
from shadowchat.models.chat import Chat
from shadowchat.models.chat_member import ChatMember
from shadowchat.models.user import User
from shadowchat.models.views import ChatMemberView, ChatSummary

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def add_member(db: Session, chat_id: int, user_id: int, key: str) -> bool:
    """Insert the membership row; already being a member is not an error.
    Returns True when a row was actually created."""
    insert = _INSERTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = (
            insert(ChatMember)
            .values(chat_id=chat_id, user_id=user_id, key=key, unread=0, mentioned=False, do_not_disturb=False)
            .on_conflict_do_nothing(index_elements=["chat_id", "user_id"])
        )
        return db.execute(stmt).rowcount > 0

    if is_member(db, chat_id, user_id):
        return False
    db.add(ChatMember(chat_id=chat_id, user_id=user_id, key=key))
    db.flush()
    return True


def remove_member(db: Session, chat_id: int, user_id: int) -> bool:
    """Caller decides whether the chat itself has to go afterwards."""
    deleted = (
        db.query(ChatMember)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .delete()
    )
    return deleted > 0


def is_member(db: Session, chat_id: int, user_id: int) -> bool:
    return (
        db.query(ChatMember.user_id)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .first()
        is not None
    )


def require_member(db: Session, chat_id: int, user_id: int) -> None:
    if not is_member(db, chat_id, user_id):
        raise AuthorizationError("You are not a member of this chat")


def get_member_ids(db: Session, chat_id: int) -> list[int]:
    return [
        row.user_id
        for row in db.query(ChatMember.user_id).filter(ChatMember.chat_id == chat_id)
    ]


def list_members(db: Session, chat_id: int) -> list[ChatMemberView]:
    rows = (
        db.query(User.id, User.username, User.signature, User.is_donor)
        .join(ChatMember, ChatMember.user_id == User.id)
        .filter(ChatMember.chat_id == chat_id)
        .all()
    )
    return [
        ChatMemberView(id=row.id, name=row.username, signature=row.signature, is_donor=row.is_donor)
        for row in rows
    ]


def get_member_key(db: Session, chat_id: int, user_id: int) -> str | None:
    row = (
        db.query(ChatMember.key)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .one_or_none()
    )
    return row.key if row else None


def get_user_chats(db: Session, user_id: int) -> list[ChatSummary]:
    """Chat list for one user, most recently active first. Moment chats are not chats."""
    own_rows = (
        db.query(
            ChatMember.chat_id,
            ChatMember.key,
            ChatMember.unread,
            ChatMember.mentioned,
            ChatMember.do_not_disturb,
            Chat.name,
            Chat.private,
            Chat.burn_time,
            Chat.last_activity_at,
        )
        .join(Chat, Chat.id == ChatMember.chat_id)
        .filter(ChatMember.user_id == user_id, Chat.is_moment.is_(False))
        .order_by(Chat.last_activity_at.desc(), Chat.id.desc())
        .all()
    )
    if not own_rows:
        return []

    chat_ids = [row.chat_id for row in own_rows]
    members = defaultdict(list)
    for row in (
        db.query(ChatMember.chat_id, User.id, User.username, User.signature, User.is_donor)
        .join(User, User.id == ChatMember.user_id)
        .filter(ChatMember.chat_id.in_(chat_ids))
        .order_by(User.id)
    ):
        members[row.chat_id].append(
            ChatMemberView(id=row.id, name=row.username, signature=row.signature, is_donor=row.is_donor)
        )

    summaries = []
    for row in own_rows:
        chat_members = members[row.chat_id]
        others = [m for m in chat_members if m.id != user_id]
        if row.private:
            name = others[0].name if others else "Private Chat"
        elif row.name and row.name.strip():
            name = row.name
        else:
            name = ", ".join(m.name for m in others) or "Group Chat"

        summaries.append(
            ChatSummary(
                chat_id=row.chat_id,
                name=name,
                key=row.key,
                members=chat_members,
                is_private=row.private,
                unread_count=row.unread,
                mentioned=row.mentioned,
                do_not_disturb=row.do_not_disturb,
                burn_time=row.burn_time,
                other_user_is_donor=row.private and any(m.is_donor for m in others),
            )
        )
    return summaries


# ====== Unread tracking ======

def increment_unread(db: Session, chat_id: int, sender_id: int | None) -> None:
    """+1 for everyone but the sender. Mention state is a separate column, so it survives."""
    query = db.query(ChatMember).filter(ChatMember.chat_id == chat_id)
    if sender_id is not None:
        query = query.filter(ChatMember.user_id != sender_id)
    query.update({ChatMember.unread: ChatMember.unread + 1})


def reset_unread(db: Session, chat_id: int, user_id: int) -> None:
    # Reading the chat also acknowledges mentions
    (
        db.query(ChatMember)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .update({ChatMember.unread: 0, ChatMember.mentioned: False})
    )


def set_mention_marker(db: Session, chat_id: int, user_id: int) -> bool:
    updated = (
        db.query(ChatMember)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .update({ChatMember.mentioned: True})
    )
    return updated > 0


def get_unread(db: Session, chat_id: int, user_id: int) -> tuple[int, bool]:
    row = (
        db.query(ChatMember.unread, ChatMember.mentioned)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .one_or_none()
    )
    if row is None:
        return 0, False
    return row.unread, row.mentioned


def get_unread_by_member(db: Session, chat_id: int) -> dict[int, tuple[int, bool]]:
    return {
        row.user_id: (row.unread, row.mentioned)
        for row in db.query(ChatMember.user_id, ChatMember.unread, ChatMember.mentioned)
        .filter(ChatMember.chat_id == chat_id)
    }


def set_do_not_disturb(db: Session, chat_id: int, user_id: int, do_not_disturb: bool) -> bool:
    updated = (
        db.query(ChatMember)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
        .update({ChatMember.do_not_disturb: do_not_disturb})
    )
    return updated > 0
