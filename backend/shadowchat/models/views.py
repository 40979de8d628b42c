# shadowchat/models/views.py
#
# Read models handed to the transport layer. Field names go out in camelCase.

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shadowchat.models.message import MessageType


class View(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class UserView(View):
    id: int
    username: str
    public_key: str
    signature: str
    is_donor: bool


class ChatMemberView(View):
    id: int
    name: str
    signature: str = ""
    is_donor: bool = False


class ChatView(View):
    id: int
    name: str | None
    owner: int
    private: bool
    is_moment: bool
    burn_time: int | None
    last_activity_at: int


class ChatSummary(View):
    chat_id: int
    name: str
    key: str
    members: list[ChatMemberView]
    is_private: bool
    unread_count: int
    mentioned: bool
    do_not_disturb: bool
    burn_time: int | None
    other_user_is_donor: bool


class ReactionView(View):
    user_id: int
    emoji: str


class ReplyInfo(View):
    message_id: int
    content: str
    sender_id: int | None
    sender_name: str | None
    type: MessageType


class MessageView(View):
    id: int
    content: str
    type: MessageType
    chat_id: int
    sender_id: int | None
    sender_name: str | None
    time: int
    reply_to: ReplyInfo | None = None
    read_at: int | None = None
    burn_at: int | None = None
    sender_is_donor: bool = False
    reactions: list[ReactionView] = []


class MomentItem(View):
    message_id: int
    content: str
    type: MessageType
    owner_id: int
    owner_name: str
    time: int
    key: str
    owner_is_donor: bool = False
    reactions: list[ReactionView] = []


class FriendView(View):
    id: int
    username: str
    signature: str
    is_donor: bool
    chat_id: int | None = None
