# shadowchat/core/user.py

from sqlalchemy.orm import Session

from shadowchat.core.config import MAX_SIGNATURE_LENGTH
from shadowchat.core.errors import StateConflict, ValidationError
from shadowchat.models.user import User
from shadowchat.models.views import UserView


def to_view(user: User) -> UserView:
    return UserView(
        id=user.id,
        username=user.username,
        public_key=user.public_key,
        signature=user.signature,
        is_donor=user.is_donor,
    )


def register_user(db: Session, username: str, public_key: str) -> User:
    """Register a new user with their public key"""
    username = username.strip()
    if not username:
        raise ValidationError("Username must not be empty")

    existing = db.query(User).filter(User.username == username).first()
    if existing:
        # The key is the identity, so it is never swapped silently
        raise StateConflict(f"Username already taken: {username}")

    user = User(username=username, public_key=public_key, signature="", is_donor=False)
    db.add(user)
    db.flush()
    return user


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


def require_user_by_username(db: Session, username: str) -> User:
    user = get_user_by_username(db, username)
    if user is None:
        raise ValidationError(f"User not found: {username}")
    return user


def get_public_key(db: Session, username: str) -> str | None:
    """Get user's public key by username"""
    user = get_user_by_username(db, username)
    if user is None:
        return None
    return user.public_key


def update_signature(db: Session, user_id: int, signature: str) -> None:
    if len(signature) > MAX_SIGNATURE_LENGTH:
        raise ValidationError(f"Signature too long (max {MAX_SIGNATURE_LENGTH} characters)")
    db.query(User).filter(User.id == user_id).update({User.signature: signature})


def set_donor(db: Session, user_id: int, is_donor: bool) -> None:
    db.query(User).filter(User.id == user_id).update({User.is_donor: is_donor})
