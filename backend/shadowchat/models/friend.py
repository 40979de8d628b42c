# shadowchat/models/friend.py

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer

from shadowchat.models.base import Base


class Friendship(Base):
    __tablename__ = "friendships"

    # Stored once per pair, lower id first
    user_a_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    user_b_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("user_a_id < user_b_id", name="ck_friendships_ordered"),
    )
