import pytest

from conftest import ASH, MISTY
from vaultchat.auth.session import StaticSession
from vaultchat.chat.service import ChatService, new_id
from vaultchat.core.exceptions import NotAuthenticated


def test_new_id_is_uppercase_uuid():
    first, second = new_id(), new_id()

    assert first != second
    assert first == first.upper()
    assert len(first) == 36


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_releases_every_listener(self, ash, store):
        await ash.find_or_create_chat("b1", "Misty")
        chats = ash.watch_chats()
        messages = await ash.subscribe_messages("c1")
        assert store.listener_count == 3

        await ash.close()

        assert chats.closed and messages.closed
        assert store.listener_count == 0
        assert len(ash.subscriptions) == 0

    @pytest.mark.asyncio
    async def test_session_change_closes_subscriptions(self, store, clock, ids):
        session = StaticSession(ASH)
        service = ChatService(store, session, clock=clock, id_factory=ids)
        await service.find_or_create_chat("b1", "Misty")
        chats = service.watch_chats()

        session.sign_in(MISTY)

        assert chats.closed
        assert store.listener_count == 0
        # new reads follow the new session
        assert [chat.counterpart_name("b1") for chat in await service.list_chats()] == ["Ash"]
        await service.close()

    @pytest.mark.asyncio
    async def test_sign_out_ends_access(self, store, clock, ids):
        session = StaticSession(ASH)
        service = ChatService(store, session, clock=clock, id_factory=ids)

        session.sign_out()

        assert service.current_principal_id() is None
        with pytest.raises(NotAuthenticated):
            await service.list_chats()
        await service.close()

    @pytest.mark.asyncio
    async def test_closed_service_ignores_session_changes(self, store, clock, ids):
        session = StaticSession(ASH)
        service = ChatService(store, session, clock=clock, id_factory=ids)
        await service.close()

        session.sign_out()

        assert session._listeners == []


class TestIterateSubscription:
    @pytest.mark.asyncio
    async def test_async_iteration_yields_latest_list(self, ash, misty):
        await ash.find_or_create_chat("b1", "Misty")
        subscription = misty.watch_chats()

        first = await subscription.__anext__()
        assert [chat.id for chat in first] == ["c1"]

        await ash.send_message("c1", "b1", "Hi")
        await ash.send_message("c1", "b1", "Still there?")

        latest = await subscription.__anext__()
        assert latest[0].last_message == "Still there?"
        assert latest[0].unread_count == 2

        subscription.close()
        with pytest.raises(StopAsyncIteration):
            await subscription.__anext__()
