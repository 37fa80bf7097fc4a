import pytest

from vaultchat.core.exceptions import (
    BackendUnavailable,
    InvalidArgument,
    NotAuthenticated,
    NotFound,
    PartialWriteFailure,
)


async def unread(store, user_id, chat_id="c1"):
    return (await store.get(f"users/{user_id}/chats/{chat_id}")).get("unreadCount")


class TestSend:
    @pytest.mark.asyncio
    async def test_hello_scenario(self, ash, store):
        chat_id = await ash.find_or_create_chat("b1", "Misty")

        message = await ash.send_message(chat_id, "b1", "Hello")

        assert (message.sender_id, message.sender_name, message.receiver_id) == ("a1", "Ash", "b1")
        assert message.chat_id == "c1"

        messages = await ash.fetch_messages("c1")
        assert [m.content for m in messages] == ["Hello"]
        assert await unread(store, "b1") == 1
        assert await unread(store, "a1") == 0
        assert (await store.get("chats/c1")).get("lastMessage") == "Hello"

        mine = (await store.get("users/a1/chats/c1")).data
        theirs = (await store.get("users/b1/chats/c1")).data
        assert mine["lastMessage"] == theirs["lastMessage"] == "Hello"
        assert mine["lastMessageTimestamp"] == theirs["lastMessageTimestamp"]

    @pytest.mark.asyncio
    async def test_unread_grows_by_one_per_message(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")

        await ash.send_message("c1", "b1", "Hello")
        await ash.send_message("c1", "b1", "Are you there?")
        await ash.send_message("c1", "b1", "Misty!")

        assert await unread(store, "b1") == 3
        assert await unread(store, "a1") == 0

    @pytest.mark.asyncio
    async def test_messages_are_in_send_order(self, ash, misty):
        await ash.find_or_create_chat("b1", "Misty")

        await ash.send_message("c1", "b1", "Hello")
        await misty.send_message("c1", "a1", "Hi Ash")
        await ash.send_message("c1", "b1", "Trade?")

        messages = await misty.fetch_messages("c1")
        assert [(m.sender_id, m.content) for m in messages] == [
            ("a1", "Hello"),
            ("b1", "Hi Ash"),
            ("a1", "Trade?"),
        ]
        assert [m.timestamp for m in messages] == sorted(m.timestamp for m in messages)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "\n\t "])
    async def test_blank_content_changes_nothing(self, ash, store, monkeypatch, content):
        await ash.find_or_create_chat("b1", "Misty")
        before = {path: (await store.get(path)).data for path in ("chats/c1", "users/a1/chats/c1", "users/b1/chats/c1")}

        async def no_backend(*args, **kwargs):
            raise AssertionError("store must not be touched")

        monkeypatch.setattr(store, "get", no_backend)
        monkeypatch.setattr(store, "commit", no_backend)

        with pytest.raises(InvalidArgument):
            await ash.send_message("c1", "b1", content)

        monkeypatch.undo()
        assert await store.query(store.collection("chats/c1/messages")) == []
        for path, data in before.items():
            assert (await store.get(path)).data == data

    @pytest.mark.asyncio
    async def test_requires_session(self, anonymous):
        with pytest.raises(NotAuthenticated):
            await anonymous.send_message("c1", "b1", "Hello")

    @pytest.mark.asyncio
    async def test_missing_receiver_reference_is_created(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")
        await store.delete("users/b1/chats/c1")

        await ash.send_message("c1", "b1", "Hello")

        reference = (await store.get("users/b1/chats/c1")).data
        assert reference["chatId"] == "c1"
        assert reference["otherUserId"] == "a1"
        assert reference["otherUserName"] == "Ash"
        assert reference["lastMessage"] == "Hello"
        assert reference["unreadCount"] == 1

    @pytest.mark.asyncio
    async def test_failure_after_receiver_write_is_partial(self, ash, store, monkeypatch):
        await ash.find_or_create_chat("b1", "Misty")
        await store.delete("users/b1/chats/c1")

        real_commit = store.commit
        commits = []

        async def fail_second_commit(ops):
            commits.append(ops)
            if len(commits) == 2:
                raise BackendUnavailable("connection reset")
            await real_commit(ops)

        monkeypatch.setattr(store, "commit", fail_second_commit)

        with pytest.raises(PartialWriteFailure):
            await ash.send_message("c1", "b1", "Hello")

        # the receiver's reference landed, the rest did not and is not rolled back
        assert await unread(store, "b1") == 1
        assert await store.query(store.collection("chats/c1/messages")) == []
        assert (await store.get("chats/c1")).get("lastMessage") == ""

    @pytest.mark.asyncio
    async def test_batch_failure_with_existing_reference_writes_nothing(self, ash, store, monkeypatch):
        await ash.find_or_create_chat("b1", "Misty")

        async def offline(ops):
            raise BackendUnavailable("offline")

        monkeypatch.setattr(store, "commit", offline)

        with pytest.raises(BackendUnavailable):
            await ash.send_message("c1", "b1", "Hello")

        monkeypatch.undo()
        assert await unread(store, "b1") == 0
        assert await store.query(store.collection("chats/c1/messages")) == []

    @pytest.mark.asyncio
    async def test_unknown_conversation_writes_nothing(self, ash, store):
        with pytest.raises(NotFound):
            await ash.send_message("nope", "b1", "Hello")

        assert not (await store.get("users/b1/chats/nope")).exists
        assert await store.query(store.collection("chats/nope/messages")) == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, ash, brock, store):
        await ash.find_or_create_chat("b1", "Misty")

        with pytest.raises(NotFound):
            await brock.send_message("c1", "a1", "Let me in")
        with pytest.raises(InvalidArgument):
            await brock.send_message("c1", "b2", "Let me in")

        assert await store.query(store.collection("chats/c1/messages")) == []
        assert not (await store.get("users/b2/chats/c1")).exists

    @pytest.mark.asyncio
    async def test_receiver_must_be_the_other_participant(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")

        with pytest.raises(InvalidArgument):
            await ash.send_message("c1", "b2", "Wrong chat, Brock")

        assert not (await store.get("users/b2/chats/c1")).exists
        assert await unread(store, "b1") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "chat_id, receiver_id",
        [("c1/messages/id1", "b1"), ("", "b1"), ("c1", "b1/chats/c1"), ("c1", "")],
    )
    async def test_ids_must_be_single_path_segments(self, ash, store, chat_id, receiver_id):
        await ash.find_or_create_chat("b1", "Misty")
        await ash.send_message("c1", "b1", "Original")
        original = (await store.get("chats/c1/messages/id1")).data

        with pytest.raises(InvalidArgument):
            await ash.send_message(chat_id, receiver_id, "Overwritten")

        assert (await store.get("chats/c1/messages/id1")).data == original


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscription_follows_new_messages(self, ash, misty):
        await ash.find_or_create_chat("b1", "Misty")
        subscription = await ash.subscribe_messages("c1")
        assert subscription.latest == []

        await ash.send_message("c1", "b1", "hi")

        last = subscription.latest[-1]
        assert (last.content, last.sender_id) == ("hi", "a1")

    @pytest.mark.asyncio
    async def test_opening_resets_unread(self, ash, misty, store):
        await ash.find_or_create_chat("b1", "Misty")
        await ash.send_message("c1", "b1", "Hello")
        await ash.send_message("c1", "b1", "Hello?")
        assert await unread(store, "b1") == 2

        await misty.subscribe_messages("c1")
        await misty.settle()

        assert await unread(store, "b1") == 0

    @pytest.mark.asyncio
    async def test_messages_arriving_while_open_are_read(self, ash, misty, store):
        await ash.find_or_create_chat("b1", "Misty")
        await misty.subscribe_messages("c1")
        await misty.settle()

        await ash.send_message("c1", "b1", "Hello")
        await misty.settle()

        assert await unread(store, "b1") == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_sends_no_read_receipts(self, ash, misty, store):
        await ash.find_or_create_chat("b1", "Misty")
        received = []
        subscription = await misty.subscribe_messages("c1", received.append)
        await misty.settle()
        on_messages = store._query_listeners[-1].callback

        subscription.close()
        await ash.send_message("c1", "b1", "Hello")
        # a refresh that was already in flight when the listener was removed
        on_messages(await store.query(store.collection("chats/c1/messages").order_by("timestamp")))
        await misty.settle()

        assert received == [[]]
        assert await unread(store, "b1") == 1

    @pytest.mark.asyncio
    async def test_only_one_message_subscription_per_caller(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")
        await ash.find_or_create_chat("b2", "Brock")

        first = await ash.subscribe_messages("c1")
        second = await ash.subscribe_messages("id1")

        assert first.closed
        assert not second.closed
        assert store.listener_count == 1

    @pytest.mark.asyncio
    async def test_outsider_cannot_subscribe(self, ash, brock, store):
        await ash.find_or_create_chat("b1", "Misty")

        with pytest.raises(NotFound):
            await brock.subscribe_messages("c1")

        assert store.listener_count == 0
        assert len(brock.subscriptions) == 0

    @pytest.mark.asyncio
    async def test_refused_subscription_keeps_the_open_one(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")
        current = await ash.subscribe_messages("c1")

        with pytest.raises(NotFound):
            await ash.subscribe_messages("nope")

        assert not current.closed

    @pytest.mark.asyncio
    async def test_read_receipt_failure_is_not_raised(self, ash, store, caplog):
        await ash.find_or_create_chat("b1", "Misty")
        # without a reference for this conversation, marking it read fails
        await store.delete("users/a1/chats/c1")

        subscription = await ash.subscribe_messages("c1")
        await ash.settle()

        assert subscription.latest == []
        assert "mark_as_read_failed" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_messages_are_skipped(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")
        await store.set(
            "chats/c1/messages/bad",
            {"id": "bad", "content": "no sender", "timestamp": "2025-03-29T12:00:00.000000Z"},
        )
        subscription = await ash.subscribe_messages("c1")

        assert subscription.latest == []


class TestFetchMessages:
    @pytest.mark.asyncio
    async def test_fetch_marks_read(self, ash, misty, store):
        await ash.find_or_create_chat("b1", "Misty")
        await ash.send_message("c1", "b1", "Hello")

        messages = await misty.fetch_messages("c1")

        assert [m.content for m in messages] == ["Hello"]
        assert await unread(store, "b1") == 0

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, ash, brock):
        await ash.find_or_create_chat("b1", "Misty")
        await ash.send_message("c1", "b1", "Secret base is behind the waterfall")

        with pytest.raises(NotFound):
            await brock.fetch_messages("c1")

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, ash):
        with pytest.raises(NotFound):
            await ash.fetch_messages("nope")
