# shadowchat/models/chat_member.py

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text

from shadowchat.models.base import Base


class ChatMember(Base):
    __tablename__ = "chat_members"

    chat_id = Column(
        Integer,
        ForeignKey("chats.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
        index=True,
    )

    # Chat key encrypted for this member only
    key = Column(Text, nullable=False)

    unread = Column(Integer, nullable=False, default=0)
    mentioned = Column(Boolean, nullable=False, default=False)
    do_not_disturb = Column(Boolean, nullable=False, default=False)
