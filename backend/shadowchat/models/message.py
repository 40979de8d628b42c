# shadowchat/models/message.py

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Text

from shadowchat.models.base import Base, BigId


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    FILE = "FILE"
    SYSTEM = "SYSTEM"


# Types whose payload lives in file storage instead of `content`
FILE_MESSAGE_TYPES = (MessageType.IMAGE, MessageType.VIDEO, MessageType.FILE)


class Message(Base):
    __tablename__ = "messages"

    id = Column(BigId, primary_key=True, autoincrement=True)

    # Ciphertext for TEXT, empty for file-backed types
    content = Column(Text, nullable=False, default="")
    type = Column(Enum(MessageType, name="message_type"), nullable=False, default=MessageType.TEXT)

    chat_id = Column(
        Integer,
        ForeignKey("chats.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL sender marks a system message
    sender_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=True,
        index=True,
    )
    time = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    reply_to_id = Column(
        BigId,
        ForeignKey("messages.id", ondelete="SET NULL", onupdate="CASCADE"),
        nullable=True,
        index=True,
    )

    read_at = Column(DateTime, nullable=True, index=True)
    burn_at = Column(DateTime, nullable=True, index=True)
