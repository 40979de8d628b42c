# shadowchat/models/reaction.py

from sqlalchemy import Column, ForeignKey, Integer, String

from shadowchat.models.base import Base, BigId


class MessageReaction(Base):
    __tablename__ = "message_reactions"

    # One reaction per user per message
    message_id = Column(
        BigId,
        ForeignKey("messages.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    emoji = Column(String(32), nullable=False)
