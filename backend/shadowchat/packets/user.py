# shadowchat/packets/user.py

from shadowchat.core import chats, friends, membership, user as users
from shadowchat.packets.base import Payload, packet
from shadowchat.services.distribution import chat_list_events, notify_info, reply, to_users


class AddFriend(Payload):
    username: str
    my_key: str
    friend_key: str


class UsernameRef(Payload):
    username: str


class UpdateSignature(Payload):
    signature: str


@packet("add_friend", AddFriend)
def add_friend(ctx, data: AddFriend):
    target = users.require_user_by_username(ctx.db, data.username.strip())
    friends.add_friend(ctx.db, ctx.user.id, target.id)

    chat_id = friends.find_private_chat(ctx.db, ctx.user.id, target.id)
    if chat_id is None:
        chat = chats.create_chat(ctx.db, None, ctx.user.id, private=True)
        membership.add_member(ctx.db, chat.id, ctx.user.id, data.my_key)
        membership.add_member(ctx.db, chat.id, target.id, data.friend_key)
        chat_id = chat.id

    events = [
        to_users([ctx.user.id], "friend_added", chatId=chat_id, message=f"{target.username} is now your friend"),
        to_users([target.id], "friend_added", chatId=chat_id, message=f"{ctx.user.username} added you as a friend"),
    ]
    return events + chat_list_events(ctx.db, [ctx.user.id, target.id])


@packet("get_friends")
def get_friends(ctx, data):
    return [reply("friends_list", friends=[f.dump() for f in friends.list_friends(ctx.db, ctx.user.id)])]


@packet("get_public_key_by_username", UsernameRef)
def get_public_key_by_username(ctx, data: UsernameRef):
    target = users.require_user_by_username(ctx.db, data.username)
    # Username is echoed back so the client can match concurrent lookups
    return [reply("public_key_by_username", username=data.username, publicKey=target.public_key)]


@packet("update_signature", UpdateSignature)
def update_signature(ctx, data: UpdateSignature):
    users.update_signature(ctx.db, ctx.user.id, data.signature)
    return [
        reply("signature_updated", signature=data.signature),
        notify_info("Signature updated successfully"),
    ]
