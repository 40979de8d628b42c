# shadowchat/models/chat.py

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from shadowchat.models.base import Base


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    owner_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    private = Column(Boolean, nullable=False, default=False)
    is_moment = Column(Boolean, nullable=False, default=False)

    # Burn-after-read window in milliseconds, NULL means disabled
    burn_time = Column(BigInteger, nullable=True)

    last_activity_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        # One moment chat per owner
        Index(
            "uq_chats_moment_owner",
            "owner_id",
            unique=True,
            postgresql_where=is_moment.is_(True),
            sqlite_where=is_moment.is_(True),
        ),
    )
