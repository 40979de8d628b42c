# shadowchat/models/user.py

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from shadowchat.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)

    # ASCII-armored PGP public key, passed through untouched
    public_key = Column(Text, nullable=False)

    signature = Column(String(100), nullable=False, default="")
    is_donor = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
