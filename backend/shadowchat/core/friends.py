# shadowchat/core/friends.py

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from shadowchat.core.errors import StateConflict, ValidationError
from shadowchat.models.chat import Chat
from shadowchat.models.chat_member import ChatMember
from shadowchat.models.friend import Friendship
from shadowchat.models.user import User
from shadowchat.models.views import FriendView


def _ordered(user_id: int, other_id: int) -> tuple[int, int]:
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def are_friends(db: Session, user_id: int, other_id: int) -> bool:
    if user_id == other_id:
        return False
    a, b = _ordered(user_id, other_id)
    return db.get(Friendship, (a, b)) is not None


def add_friend(db: Session, user_id: int, other_id: int) -> None:
    if user_id == other_id:
        raise ValidationError("You cannot add yourself as a friend")
    if are_friends(db, user_id, other_id):
        raise StateConflict("You are already friends")
    a, b = _ordered(user_id, other_id)
    db.add(Friendship(user_a_id=a, user_b_id=b))
    db.flush()


def remove_friend(db: Session, user_id: int, other_id: int) -> bool:
    a, b = _ordered(user_id, other_id)
    deleted = (
        db.query(Friendship)
        .filter(Friendship.user_a_id == a, Friendship.user_b_id == b)
        .delete()
    )
    return deleted > 0


def find_private_chat(db: Session, user_id: int, other_id: int) -> int | None:
    """Id of the private chat both users are members of, if any."""
    mine = db.query(ChatMember.chat_id).filter(ChatMember.user_id == user_id).subquery()
    row = (
        db.query(Chat.id)
        .join(ChatMember, ChatMember.chat_id == Chat.id)
        .filter(
            Chat.private.is_(True),
            ChatMember.user_id == other_id,
            Chat.id.in_(db.query(mine.c.chat_id)),
        )
        .first()
    )
    return row.id if row else None


def list_friends(db: Session, user_id: int) -> list[FriendView]:
    rows = (
        db.query(User)
        .join(
            Friendship,
            or_(
                and_(Friendship.user_a_id == user_id, Friendship.user_b_id == User.id),
                and_(Friendship.user_b_id == user_id, Friendship.user_a_id == User.id),
            ),
        )
        .order_by(User.username)
        .all()
    )
    return [
        FriendView(
            id=user.id,
            username=user.username,
            signature=user.signature,
            is_donor=user.is_donor,
            chat_id=find_private_chat(db, user_id, user.id),
        )
        for user in rows
    ]
