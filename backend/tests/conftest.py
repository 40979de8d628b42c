"""Common test fixtures for shadowchat tests."""

import json
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from shadowchat.core import chats, membership
from shadowchat.core.rate_limit import limiter
from shadowchat.core.user import register_user
from shadowchat.infra.postgres import db_session, init_db, make_engine
from shadowchat.packets.dispatcher import PacketDispatcher
from shadowchat.services.file_storage import FileStorage
from shadowchat.services.session_registry import SessionRegistry


class FakeSession:
    """Stands in for a websocket; records every frame pushed to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(text))

    def packets(self, name: str) -> list[dict]:
        return [frame for frame in self.sent if frame["packet"] == name]


@pytest.fixture
def engine(tmp_path: Path):
    """File-backed SQLite so every session gets its own connection."""
    engine = make_engine(
        f"sqlite:///{tmp_path / 'shadowchat.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def files(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / "data")


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def dispatcher(session_factory, files) -> PacketDispatcher:
    return PacketDispatcher(session_factory, files)


@pytest.fixture
def send(dispatcher):
    """send(user_id, "packet_name", camelCaseField=...) -> list of Outbound"""

    def _send(user_id: int, packet_name: str, /, **payload):
        return dispatcher.dispatch(user_id, packet_name, json.dumps(payload))

    return _send


@pytest.fixture
def users(session_factory) -> dict[str, int]:
    """Four committed users; maps username to id."""
    ids = {}
    with db_session(session_factory) as db:
        for name in ("alice", "bob", "carol", "dave"):
            ids[name] = register_user(db, name, f"-----KEY {name}-----").id
    return ids


@pytest.fixture
def private_chat(session_factory, users) -> int:
    """Private chat between alice and bob."""
    with db_session(session_factory) as db:
        chat = chats.create_chat(db, None, users["alice"], private=True)
        membership.add_member(db, chat.id, users["alice"], "key-alice")
        membership.add_member(db, chat.id, users["bob"], "key-bob")
        return chat.id


@pytest.fixture
def group_chat(session_factory, users) -> int:
    """Group 'Team' owned by alice with bob and carol."""
    with db_session(session_factory) as db:
        chat = chats.create_chat(db, "Team", users["alice"])
        for name in ("alice", "bob", "carol"):
            membership.add_member(db, chat.id, users[name], f"key-{name}")
        return chat.id


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
