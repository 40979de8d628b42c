# shadowchat/packets/base.py
#
# Packet handlers form a closed table keyed by packet name. A handler gets the
# request context plus its typed payload and returns the events to deliver.

from dataclasses import dataclass, field
from typing import Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from shadowchat.models.user import User
from shadowchat.services.distribution import Outbound
from shadowchat.services.file_storage import FileStorage


class Payload(BaseModel):
    """Inbound packet body. Clients send camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Empty(Payload):
    pass


@dataclass
class PacketContext:
    db: Session
    user: User
    files: FileStorage
    after_commit: list = field(default_factory=list)

    def defer(self, fn: Callable, *args) -> None:
        """Run fn(*args) once the transaction has committed (file cleanup etc.)"""
        self.after_commit.append((fn, args))


@dataclass(frozen=True)
class Handler:
    name: str
    schema: type[Payload]
    func: Callable[[PacketContext, Payload], list[Outbound]]

    @property
    def label(self) -> str:
        # "send_message" -> "Send message", used as the prefix of error reports
        return self.name.replace("_", " ").capitalize()


HANDLERS: dict[str, Handler] = {}


def packet(name: str, schema: type[Payload] = Empty):
    def register(func):
        if name in HANDLERS:
            raise RuntimeError(f"Duplicate packet handler: {name}")
        HANDLERS[name] = Handler(name, schema, func)
        return func

    return register
