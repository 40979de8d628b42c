# shadowchat/core/chats.py

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shadowchat.core.config import MAX_BURN_TIME_MS
from shadowchat.core.errors import ValidationError
from shadowchat.core.message_logic import to_millis, utcnow
from shadowchat.models.chat import Chat
from shadowchat.models.views import ChatView


def to_view(chat: Chat) -> ChatView:
    return ChatView(
        id=chat.id,
        name=chat.name,
        owner=chat.owner_id,
        private=chat.private,
        is_moment=chat.is_moment,
        burn_time=chat.burn_time,
        last_activity_at=to_millis(chat.last_activity_at),
    )


def create_chat(db: Session, name: str | None, owner_id: int, private: bool = False) -> Chat:
    chat = Chat(
        name=name,
        owner_id=owner_id,
        private=private,
        is_moment=False,
        last_activity_at=utcnow(),
    )
    db.add(chat)
    db.flush()
    return chat


def get_chat(db: Session, chat_id: int) -> Chat | None:
    return db.get(Chat, chat_id)


def require_chat(db: Session, chat_id: int) -> Chat:
    chat = get_chat(db, chat_id)
    if chat is None:
        raise ValidationError(f"Chat not found: {chat_id}")
    return chat


def is_chat_owner(db: Session, chat_id: int, user_id: int) -> bool:
    return (
        db.query(Chat.id)
        .filter(Chat.id == chat_id, Chat.owner_id == user_id)
        .first()
        is not None
    )


def rename_chat(db: Session, chat_id: int, new_name: str) -> None:
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.name: new_name})


def touch(db: Session, chat_id: int) -> None:
    """Bump last activity so the chat sorts to the top of chat lists"""
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.last_activity_at: utcnow()})


def set_burn_time(db: Session, chat_id: int, burn_time: int | None) -> None:
    if burn_time is not None and burn_time <= 0:
        raise ValidationError("Burn time must be a positive number of milliseconds")
    if burn_time is not None and burn_time > MAX_BURN_TIME_MS:
        raise ValidationError(f"Burn time must not exceed {MAX_BURN_TIME_MS} milliseconds")
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.burn_time: burn_time})


def delete_chat(db: Session, chat_id: int) -> None:
    # Members, messages and reactions go with it (ON DELETE CASCADE)
    db.query(Chat).filter(Chat.id == chat_id).delete()


# ====== Moments ======

def get_moment_chat_by_owner(db: Session, owner_id: int) -> Chat | None:
    return (
        db.query(Chat)
        .filter(Chat.owner_id == owner_id, Chat.is_moment.is_(True))
        .one_or_none()
    )


def get_or_create_moment_chat(db: Session, owner_id: int, username: str) -> Chat:
    """
    Return the owner's moment chat, creating it on first use.
    The partial unique index on (owner_id) WHERE is_moment guarantees a single
    row even when two requests race; the loser re-reads the winner's row.
    """
    existing = get_moment_chat_by_owner(db, owner_id)
    if existing is not None:
        return existing

    chat = Chat(
        name=f"{username}'s Moments",
        owner_id=owner_id,
        private=False,
        is_moment=True,
        last_activity_at=utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(chat)
    except IntegrityError:
        return get_moment_chat_by_owner(db, owner_id)
    return chat
