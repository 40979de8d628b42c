# shadowchat/models/base.py

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigId = BigInteger().with_variant(Integer, "sqlite")
