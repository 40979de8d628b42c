"""Packet handler scenarios, run through the dispatcher against a real database."""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from shadowchat.core import chats, friends, membership, message


def events_named(events, name):
    return [e for e in events if e.packet == name]


def only(events, name):
    [event] = events_named(events, name)
    return event


def error_of(events):
    [event] = events
    assert event.packet == "notify" and event.payload["type"] == "ERROR"
    return event.payload["message"]


@pytest.fixture
def read(session_factory):
    """Run fn(db, *args) in a fresh read-only session and return its result."""

    def _read(fn, *args):
        db = session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    return _read


# =========================
# DISPATCH
# =========================

def test_unknown_packet(send, users):
    assert error_of(send(users["alice"], "teleport")) == "Unknown packet: teleport"


def test_invalid_payload(send, users, group_chat):
    assert error_of(send(users["alice"], "send_message", message="no chat id")) == (
        "Send message failed: Invalid packet format"
    )


def test_rejected_packet_leaves_no_partial_state(send, users, read):
    # The moment chat is created before the missing key is noticed
    events = send(users["alice"], "post_moment", content="hi", type="TEXT")

    assert error_of(events) == "Post moment failed: Key required for first moment"
    assert read(chats.get_moment_chat_by_owner, users["alice"]) is None


def test_out_of_range_timestamps_are_rejected(send, users, group_chat):
    assert error_of(send(users["alice"], "get_messages", chatId=group_chat, before=10**18)) == (
        "Get messages failed: Invalid packet format"
    )
    assert error_of(send(users["alice"], "get_user_moments", userId=users["alice"], before=10**18)) == (
        "Get user moments failed: Invalid packet format"
    )


def test_unexpected_handler_error_is_reported(send, users, group_chat, mocker):
    mocker.patch("shadowchat.core.message.get_chat_messages", side_effect=OverflowError("date value out of range"))

    assert error_of(send(users["alice"], "get_messages", chatId=group_chat)) == (
        "Get messages failed: Internal server error"
    )


def test_database_error_is_reported(send, users, group_chat, read, mocker):
    mocker.patch("shadowchat.core.chats.touch", side_effect=SQLAlchemyError("connection lost"))

    events = send(users["alice"], "send_message", chatId=group_chat, message="lost", type="TEXT")

    assert error_of(events) == "Send message failed: Internal server error"
    assert read(message.get_chat_messages, group_chat, None, 0, 50) == []


def test_missing_group_keys(send, users, read):
    events = send(
        users["alice"],
        "create_group",
        name="Half",
        memberUsernames=["bob", "carol"],
        encryptedKeys={"alice": "k", "bob": "k"},
    )

    assert error_of(events) == "Create group failed: Missing keys for: carol"
    assert read(membership.get_user_chats, users["alice"]) == []


def test_raw_frames_without_body(dispatcher, users):
    [event] = dispatcher.dispatch(users["alice"], "get_chats", None)
    assert event.packet == "chats_list"
    assert event.payload == {"chats": []}


# =========================
# MESSAGES
# =========================

def test_group_send_scenario(send, users, group_chat, read):
    events = send(users["alice"], "send_message", chatId=group_chat, message="hello", type="TEXT")

    delivery = only(events, "receive_message")
    assert set(delivery.to_users) == {users["bob"], users["carol"]}
    assert delivery.payload["silent"] is False
    assert delivery.payload["message"]["content"] == "hello"
    assert delivery.payload["message"]["senderName"] == "alice"

    counts = {e.to_users[0]: e.payload for e in events_named(events, "unread_count")}
    assert counts[users["bob"]] == {"chatId": group_chat, "unread": 1, "mentioned": False}
    assert counts[users["carol"]]["unread"] == 1
    assert users["alice"] not in counts

    assert only(events, "message_sent").to_users == (users["alice"],)
    assert read(membership.get_unread, group_chat, users["alice"]) == (0, False)


def test_mentions_mark_only_mentioned_members(send, users, group_chat):
    events = send(
        users["alice"], "send_message", chatId=group_chat, message="@bob", type="TEXT", atUserIds=[users["bob"]]
    )

    counts = {e.to_users[0]: e.payload for e in events_named(events, "unread_count")}
    assert counts[users["bob"]]["mentioned"] is True
    assert counts[users["carol"]]["mentioned"] is False


def test_mentions_of_non_members_are_ignored(send, users, group_chat, mocker):
    marker = mocker.spy(membership, "set_mention_marker")

    send(
        users["alice"],
        "send_message",
        chatId=group_chat,
        message="@dave @bob",
        type="TEXT",
        atUserIds=[users["dave"], users["bob"], users["alice"]],
    )

    assert [c.args[2] for c in marker.call_args_list] == [users["bob"]]


def test_opening_chat_resets_unread(send, users, group_chat, read):
    send(users["alice"], "send_message", chatId=group_chat, message="one", type="TEXT", atUserIds=[users["bob"]])
    send(users["alice"], "send_message", chatId=group_chat, message="two", type="TEXT")

    events = send(users["bob"], "get_messages", chatId=group_chat, count=50)

    assert [e.packet for e in events] == ["unread_count", "messages_list"]
    assert events[0].payload == {"chatId": group_chat, "unread": 0, "mentioned": False}
    assert [m["content"] for m in events[1].payload["messages"]] == ["one", "two"]
    assert read(membership.get_unread, group_chat, users["bob"]) == (0, False)


def test_older_page_keeps_unread(send, users, group_chat, read):
    send(users["alice"], "send_message", chatId=group_chat, message="one", type="TEXT")
    events = send(users["bob"], "get_messages", chatId=group_chat, count=50, offset=1)

    assert [e.packet for e in events] == ["messages_list"]
    assert read(membership.get_unread, group_chat, users["bob"]) == (1, False)


def test_non_member_cannot_send_or_read(send, users, group_chat):
    assert error_of(send(users["dave"], "send_message", chatId=group_chat, message="hi", type="TEXT")) == (
        "Send message failed: You are not a member of this chat"
    )
    assert error_of(send(users["dave"], "get_messages", chatId=group_chat, count=10)) == (
        "Get messages failed: You are not a member of this chat"
    )


def test_reply_to_message_in_other_chat(send, users, group_chat, private_chat, read):
    [sent] = events_named(
        send(users["bob"], "send_message", chatId=private_chat, message="psst", type="TEXT"), "message_sent"
    )
    foreign_id = sent.payload["message"]["id"]

    events = send(
        users["alice"], "send_message", chatId=group_chat, message="re", type="TEXT", replyTo=foreign_id
    )
    assert error_of(events).startswith("Send message failed: Replied message not found")


def test_edit_is_silent_and_sender_only(send, users, group_chat):
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=group_chat, message="typo", type="TEXT"), "message_sent"
    )
    message_id = sent.payload["message"]["id"]

    assert error_of(send(users["bob"], "edit_message", messageId=message_id, message="hacked")) == (
        "Edit message failed: You can only edit your own messages"
    )

    events = send(users["alice"], "edit_message", messageId=message_id, message="fixed")
    delivery = only(events, "receive_message")
    assert delivery.payload["silent"] is True
    assert delivery.payload["message"]["content"] == "fixed"
    assert set(delivery.to_users) == {users["alice"], users["bob"], users["carol"]}
    assert events_named(events, "unread_count") == []


def test_deleting_file_message_removes_payload(send, users, group_chat, files, read):
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=group_chat, message="", type="IMAGE"), "message_sent"
    )
    message_id = sent.payload["message"]["id"]
    files.save_file(message_id, b"ciphertext")

    events = send(users["alice"], "edit_message", messageId=message_id, message=None)

    delivery = only(events, "receive_message")
    assert delivery.payload["message"]["type"] == "TEXT"
    assert delivery.payload["message"]["content"] == ""
    assert not files.has_file(message_id)
    assert read(message.get_message, message_id) is None


def test_mark_read_in_private_chat_with_burn_time(send, users, private_chat):
    send(users["alice"], "set_burn_time", chatId=private_chat, burnTime=10_000)
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=private_chat, message="secret", type="TEXT"), "message_sent"
    )
    message_id = sent.payload["message"]["id"]

    # Reading your own message is not a receipt
    assert send(users["alice"], "mark_message_read", messageId=message_id) == []

    events = send(users["bob"], "mark_message_read", messageId=message_id)
    body = only(events, "receive_message").payload["message"]
    assert body["readAt"] is not None
    assert body["burnAt"] == body["readAt"] + 10_000

    assert send(users["bob"], "mark_message_read", messageId=message_id) == []


def test_mark_read_ignored_outside_private_chats(send, users, group_chat):
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=group_chat, message="hi", type="TEXT"), "message_sent"
    )
    assert send(users["bob"], "mark_message_read", messageId=sent.payload["message"]["id"]) == []


def test_burn_time_only_for_private_chats(send, users, group_chat, private_chat, read):
    assert error_of(send(users["alice"], "set_burn_time", chatId=group_chat, burnTime=5000)) == (
        "Set burn time failed: Burn after read is only available for private chats"
    )

    events = send(users["bob"], "set_burn_time", chatId=private_chat, burnTime=5000)
    assert events[0].payload["message"] == "Burn time set to 5 seconds"
    assert {e.to_users[0] for e in events_named(events, "chats_list")} == {users["alice"], users["bob"]}
    assert read(chats.require_chat, private_chat).burn_time == 5000

    events = send(users["bob"], "set_burn_time", chatId=private_chat, burnTime=None)
    assert events[0].payload["message"] == "Burn after read disabled"


def test_burn_time_has_an_upper_bound(send, users, private_chat, read):
    assert error_of(send(users["alice"], "set_burn_time", chatId=private_chat, burnTime=10**15)) == (
        "Set burn time failed: Invalid packet format"
    )
    assert read(chats.require_chat, private_chat).burn_time is None

    # Reading still works afterwards
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=private_chat, message="hi", type="TEXT"), "message_sent"
    )
    events = send(users["bob"], "mark_message_read", messageId=sent.payload["message"]["id"])
    assert only(events, "receive_message").payload["message"]["readAt"] is not None


def test_toggle_reaction_is_silent(send, users, group_chat):
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=group_chat, message="hi", type="TEXT"), "message_sent"
    )
    message_id = sent.payload["message"]["id"]

    events = send(users["bob"], "toggle_reaction", messageId=message_id, emoji="👍")
    delivery = only(events, "receive_message")
    assert delivery.payload["silent"] is True
    assert delivery.payload["message"]["reactions"] == [{"userId": users["bob"], "emoji": "👍"}]

    events = send(users["bob"], "toggle_reaction", messageId=message_id, emoji="👍")
    assert only(events, "receive_message").payload["message"]["reactions"] == []


# =========================
# CHATS & GROUPS
# =========================

def test_rename_is_owner_only(send, users, group_chat, read):
    assert error_of(send(users["bob"], "rename_chat", chatId=group_chat, newName="Mine")) == (
        "Rename chat failed: Only owner can rename chat"
    )

    events = send(users["alice"], "rename_chat", chatId=group_chat, newName="Crew")
    assert events[0].payload == {"type": "INFO", "message": "Chat renamed successfully"}
    assert len(events_named(events, "chats_list")) == 3
    system = only(events, "receive_message").payload["message"]
    assert system["type"] == "SYSTEM"
    assert system["content"] == 'alice changed the chat name to "Crew"'
    assert read(chats.require_chat, group_chat).name == "Crew"


def test_chat_details_members_only(send, users, group_chat):
    event = only(send(users["bob"], "get_chat_details", chatId=group_chat), "chat_details")
    assert event.to_users is None
    assert event.payload["chat"]["name"] == "Team"
    assert {m["name"] for m in event.payload["members"]} == {"alice", "bob", "carol"}

    assert error_of(send(users["dave"], "get_chat_details", chatId=group_chat)) == (
        "Get chat details failed: You are not a member of this chat"
    )


def test_do_not_disturb(send, users, group_chat):
    events = send(users["bob"], "set_do_not_disturb", chatId=group_chat, doNotDisturb=True)
    [summary] = only(events, "chats_list").payload["chats"]
    assert summary["doNotDisturb"] is True

    assert error_of(send(users["dave"], "set_do_not_disturb", chatId=group_chat, doNotDisturb=True)) == (
        "Set do not disturb failed: You are not a member of this chat"
    )


def test_create_group_of_two(send, users, read):
    events = send(
        users["alice"], "create_group", name="Duo", memberUsernames=["bob"], encryptedKeys={"alice": "k", "bob": "k"}
    )

    assert events[0].payload["message"] == "Group created successfully"
    [summary] = read(membership.get_user_chats, users["bob"])
    assert summary.name == "Duo"
    assert summary.is_private is False


def test_create_group(send, users, read):
    events = send(
        users["alice"],
        "create_group",
        name=None,
        memberUsernames=["bob", "carol"],
        encryptedKeys={"alice": "ka", "bob": "kb", "carol": "kc"},
    )

    assert events[0].payload["message"] == "Group created successfully"
    assert {e.to_users[0] for e in events_named(events, "chats_list")} == {
        users["alice"], users["bob"], users["carol"]
    }
    [summary] = read(membership.get_user_chats, users["carol"])
    assert summary.name == "New Group"
    assert summary.key == "kc"


def test_create_group_with_unknown_user(send, users):
    events = send(
        users["alice"], "create_group", memberUsernames=["bob", "mallory"], encryptedKeys={}
    )
    assert error_of(events) == "Create group failed: One or more users not found"


def test_add_member(send, users, group_chat, read):
    events = send(users["bob"], "add_member_to_chat", chatId=group_chat, username="dave", encryptedKey="kd")

    assert only(events, "chat_details").to_users is not None
    assert only(events, "chats_list").to_users == (users["dave"],)
    assert only(events, "receive_message").payload["message"]["content"] == "bob invited dave to the chat"
    assert read(membership.get_member_key, group_chat, users["dave"]) == "kd"

    assert error_of(
        send(users["bob"], "add_member_to_chat", chatId=group_chat, username="dave", encryptedKey="kd")
    ) == "Add member to chat failed: dave is already a member"


def test_kick_below_three_members_is_rejected(send, users, group_chat, read):
    events = send(users["alice"], "kick_member_from_chat", chatId=group_chat, username="carol")

    assert error_of(events) == "Kick member from chat failed: Cannot kick member: Chat must have at least 3 members"
    assert read(membership.is_member, group_chat, users["carol"])


def test_kick_with_enough_members(send, users, group_chat, read):
    send(users["alice"], "add_member_to_chat", chatId=group_chat, username="dave", encryptedKey="kd")

    assert error_of(send(users["bob"], "kick_member_from_chat", chatId=group_chat, username="carol")) == (
        "Kick member from chat failed: Only owner can kick members"
    )

    events = send(users["alice"], "kick_member_from_chat", chatId=group_chat, username="carol")
    assert events[0].payload["message"] == "Member kicked successfully"
    assert set(only(events, "chat_details").to_users) == {users["alice"], users["bob"], users["dave"]}
    assert only(events, "chats_list").to_users == (users["carol"],)
    assert not read(membership.is_member, group_chat, users["carol"])


def test_leaving_private_chat_deletes_it(send, users, private_chat, files, read):
    [sent] = events_named(
        send(users["alice"], "send_message", chatId=private_chat, message="", type="FILE"), "message_sent"
    )
    message_id = sent.payload["message"]["id"]
    files.save_file(message_id, b"blob")

    events = send(users["bob"], "kick_member_from_chat", chatId=private_chat, username="bob")

    assert events[0].payload["message"] == "Chat deleted successfully"
    assert {e.to_users[0] for e in events_named(events, "chats_list")} == {users["alice"], users["bob"]}
    assert read(chats.get_chat, private_chat) is None
    assert read(message.get_message, message_id) is None
    assert not files.has_file(message_id)


# =========================
# USERS & FRIENDS
# =========================

def test_add_friend_creates_private_chat(send, users, read):
    events = send(users["alice"], "add_friend", username="dave", myKey="ka", friendKey="kd")

    added = events_named(events, "friend_added")
    assert {e.to_users[0] for e in added} == {users["alice"], users["dave"]}
    chat_id = added[0].payload["chatId"]

    assert read(friends.are_friends, users["dave"], users["alice"])
    assert read(membership.get_member_key, chat_id, users["dave"]) == "kd"

    [friend] = only(send(users["alice"], "get_friends"), "friends_list").payload["friends"]
    assert friend["username"] == "dave"
    assert friend["chatId"] == chat_id

    assert error_of(send(users["dave"], "add_friend", username="alice", myKey="x", friendKey="y")) == (
        "Add friend failed: You are already friends"
    )


def test_cannot_befriend_yourself(send, users):
    assert error_of(send(users["alice"], "add_friend", username="alice", myKey="x", friendKey="y")) == (
        "Add friend failed: You cannot add yourself as a friend"
    )


def test_public_key_lookup(send, users):
    event = only(send(users["alice"], "get_public_key_by_username", username="bob"), "public_key_by_username")
    assert event.payload == {"username": "bob", "publicKey": "-----KEY bob-----"}

    assert error_of(send(users["alice"], "get_public_key_by_username", username="nobody")) == (
        "Get public key by username failed: User not found: nobody"
    )


def test_update_signature(send, users):
    events = send(users["alice"], "update_signature", signature="busy")
    assert only(events, "signature_updated").payload == {"signature": "busy"}

    assert error_of(send(users["alice"], "update_signature", signature="x" * 101)) == (
        "Update signature failed: Signature too long (max 100 characters)"
    )


# =========================
# MOMENTS
# =========================

@pytest.fixture
def alice_moment(send, users):
    """Alice and bob are friends; bob can view alice's moments, which hold one post."""
    send(users["alice"], "add_friend", username="bob", myKey="ka", friendKey="kb")
    send(users["alice"], "get_moment_permission", friendId=users["bob"], encryptedKey="bob-moment-key")
    events = send(users["alice"], "post_moment", content="sunrise", type="TEXT", key="alice-moment-key")
    return only(events, "moment_posted").payload


def test_first_moment_needs_key(send, users):
    assert error_of(send(users["alice"], "post_moment", content="hi", type="TEXT")) == (
        "Post moment failed: Key required for first moment"
    )


def test_moment_feed_for_viewer(send, users, alice_moment):
    [item] = only(send(users["bob"], "get_moments"), "moments_list").payload["moments"]
    assert item["messageId"] == alice_moment["messageId"]
    assert item["key"] == "bob-moment-key"
    assert item["ownerName"] == "alice"

    assert only(send(users["carol"], "get_moments"), "moments_list").payload["moments"] == []


def test_moment_permission_status(send, users, alice_moment):
    status = only(send(users["bob"], "get_moment_permission", friendId=users["alice"]), "moment_permission_status")
    assert status.payload["canIViewFriends"] is True
    assert status.payload["canFriendViewMine"] is False

    assert error_of(send(users["carol"], "get_moment_permission", friendId=users["alice"])) == (
        "Get moment permission failed: User is not your friend"
    )


def test_revoking_moment_permission(send, users, alice_moment):
    send(users["alice"], "toggle_moment_permission", friendId=users["bob"], canView=False)

    assert only(send(users["bob"], "get_moments"), "moments_list").payload["moments"] == []
    assert error_of(send(users["bob"], "get_user_moments", userId=users["alice"])) == (
        "Get user moments failed: You are not a viewer of this user's moments"
    )


def test_only_owner_posts_to_moment_chat(send, users, alice_moment):
    events = send(users["bob"], "send_message", chatId=alice_moment["chatId"], message="mine now", type="TEXT")
    assert error_of(events) == "Send message failed: Only the owner can post to their moments"


def test_moment_comments_and_reactions(send, users, alice_moment):
    moment_id = alice_moment["messageId"]

    event = only(send(users["bob"], "comment_moment", messageId=moment_id, content="lovely"), "moment_commented")
    assert set(event.to_users) == {users["alice"], users["bob"]}

    comments = only(send(users["alice"], "get_moment_comments", messageId=moment_id), "moment_comments")
    assert [c["content"] for c in comments.payload["comments"]] == ["lovely"]

    events = send(users["bob"], "toggle_reaction", messageId=moment_id, emoji="❤")
    edited = only(events, "moment_edited")
    assert edited.payload["reactions"] == [{"userId": users["bob"], "emoji": "❤"}]

    assert error_of(send(users["carol"], "get_moment_comments", messageId=moment_id)) == (
        "Get moment comments failed: You are not a member of this chat"
    )


def test_edit_and_delete_moment(send, users, alice_moment, read):
    moment_id = alice_moment["messageId"]
    send(users["bob"], "comment_moment", messageId=moment_id, content="lovely")

    assert error_of(send(users["bob"], "edit_moment", messageId=moment_id, content="x")) == (
        "Edit moment failed: Only the owner can edit their moments"
    )

    edited = only(send(users["alice"], "edit_moment", messageId=moment_id, content="sunset"), "moment_edited")
    assert edited.payload["content"] == "sunset"

    send(users["alice"], "edit_moment", messageId=moment_id, content=None)
    assert only(send(users["bob"], "get_moments"), "moments_list").payload["moments"] == []
    assert read(message.get_moment_comments, moment_id) == []


def test_user_moments_and_own_key(send, users, alice_moment):
    listing = only(send(users["bob"], "get_user_moments", userId=users["alice"]), "user_moments_list")
    assert listing.payload["username"] == "alice"
    assert [m["content"] for m in listing.payload["moments"]] == ["sunrise"]

    key = only(send(users["alice"], "get_my_moment_key"), "my_moment_key").payload
    assert key == {"exists": True, "chatId": alice_moment["chatId"], "key": "alice-moment-key"}

    assert only(send(users["carol"], "get_my_moment_key"), "my_moment_key").payload == {"exists": False, "key": None}


def test_system_message_type_rejected_for_moments(send, users):
    assert error_of(send(users["alice"], "post_moment", content="x", type="SYSTEM", key="k")) == (
        "Post moment failed: Only the server can send system messages"
    )
