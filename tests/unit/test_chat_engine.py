from __future__ import annotations

import pytest

from chat_sync.application.exceptions import ValidationError
from chat_sync.domain.value_objects.enums import ConnectionState, DeliveryState
from chat_sync.infrastructure.auth.jwt_context import StaticAuthContext
from chat_sync.services.chat import ChatEngine, DisabledChat
from chat_sync.services.message_store import ChatState
from tests.conftest import make_profile, raw_message


@pytest.fixture
def engine(auth, transport, api, cache, clock, store) -> ChatEngine:
    return ChatEngine(auth=auth, transport=transport, api=api, cache=cache, clock=clock, store=store)


@pytest.mark.asyncio
async def test_start_connects_and_subscribes_inbox(engine, transport, store):
    assert await engine.start() is True

    assert transport.identity == "u1"
    assert [s.destination for s in transport.subscriptions] == ["/user/u1/queue/messages"]
    assert store.state.connection_state == ConnectionState.CONNECTED
    assert store.state.socket_available is True
    assert store.state.current_user.id == "u1"
    await engine.stop()


@pytest.mark.asyncio
async def test_start_without_identity_does_nothing(transport, api, cache, clock):
    engine = ChatEngine(auth=StaticAuthContext(None), transport=transport, api=api, cache=cache, clock=clock)
    assert await engine.start() is False
    assert transport.connect_calls == 0


@pytest.mark.asyncio
async def test_socket_failure_degrades_to_rest(engine, transport, store):
    transport.fail_connect = True

    await engine.start()

    assert store.state.socket_available is False
    assert store.state.connection_state == ConnectionState.DISCONNECTED
    await engine.stop()


@pytest.mark.asyncio
async def test_scenario_send_over_rest_when_disconnected(engine, transport, api, store):
    """U1 sends "hi" to U2 while the socket is down; the REST reply confirms it."""
    transport.fail_connect = True
    api.send_reply = raw_message(message_id=900, content="hi", sender="u1", receiver="u2")
    await engine.start()
    await engine.open_chat_with_user(make_profile("u2"))

    result = await engine.send_message("hi")

    assert [m.id for m in store.messages] == ["900"]
    assert result.state == DeliveryState.CONFIRMED
    assert [c.counterpart_id for c in store.state.conversations] == ["u2"]
    assert store.state.conversations[0].last_message.content == "hi"
    await engine.stop()


@pytest.mark.asyncio
async def test_scenario_inbound_for_other_conversation_flags_unread(engine, transport, store):
    """U1 has a chat with U3 open and the list closed; "hello" arrives from U2."""
    await engine.start()
    await engine.open_chat_with_user(make_profile("u3"))

    await transport.deliver(raw_message(message_id=77, content="hello", sender="u2", receiver="u1"))

    assert store.messages == ()
    assert store.state.has_unread is True
    preview = engine.index.get("u2")
    assert preview.last_message.content == "hello"
    assert preview.has_unread is True
    await engine.stop()


@pytest.mark.asyncio
async def test_redelivered_frame_does_not_raise_unread_again(engine, transport, api, store):
    frame = raw_message(message_id=77, content="hello", sender="u3")
    api.all_messages = [frame]
    await engine.start()
    await transport.deliver(frame)
    engine.toggle_conversation_list()
    engine.close_conversation_list()
    await engine.index.mark_read("u3")

    await transport.deliver(frame)

    assert store.state.has_unread is False
    assert engine.index.get("u3").has_unread is False
    await engine.stop()


@pytest.mark.asyncio
async def test_redelivered_frame_without_id_matches_preview(engine, transport, api, store):
    frame = raw_message(content="hello", at=3, sender="u3")
    api.all_messages = [raw_message(message_id=78, content="hello", at=3, sender="u3")]
    await engine.start()
    await transport.deliver(frame)
    engine.toggle_conversation_list()
    engine.close_conversation_list()
    await engine.index.mark_read("u3")

    await transport.deliver(frame)

    assert store.state.has_unread is False
    assert engine.index.get("u3").has_unread is False
    await engine.stop()


@pytest.mark.asyncio
async def test_new_message_after_replay_still_flags_unread(engine, transport, store):
    await engine.start()
    await transport.deliver(raw_message(message_id=77, content="hello", sender="u3"))
    engine.close_conversation_list()
    await engine.index.mark_read("u3")

    await transport.deliver(raw_message(message_id=78, content="again", at=1, sender="u3"))

    assert store.state.has_unread is True
    assert engine.index.get("u3").has_unread is True
    await engine.stop()


@pytest.mark.asyncio
async def test_inbound_for_active_conversation_is_shown(engine, transport, store):
    await engine.start()
    await engine.open_chat_with_user(make_profile("u2"))

    await transport.deliver(raw_message(message_id=5, content="hey", sender="u2"))
    await transport.deliver(raw_message(message_id=5, content="hey", sender="u2"))

    assert [m.id for m in store.messages] == ["5"]
    assert store.state.has_unread is False
    assert engine.index.get("u2").has_unread is False
    await engine.stop()


@pytest.mark.asyncio
async def test_echo_confirms_socket_send(engine, transport, store):
    await engine.start()
    await engine.open_chat_with_user(make_profile("u2"))

    await engine.send_message("hi")
    assert store.messages[0].is_pending_id

    await transport.deliver(raw_message(message_id=11, content="hi", sender="u1", receiver="u2"))

    assert [m.id for m in store.messages] == ["11"]
    assert store.messages[0].state == DeliveryState.CONFIRMED
    await engine.stop()


@pytest.mark.asyncio
async def test_malformed_frame_is_dropped(engine, transport, store):
    await engine.start()
    await transport.deliver({"content": "no sender"})
    assert store.messages == ()
    assert engine.index.list() == []
    await engine.stop()


@pytest.mark.asyncio
async def test_load_conversations_builds_previews(engine, api, store):
    api.directory = [{"userId": "u2", "fullName": "Bob"}]
    api.all_messages = [
        raw_message(message_id=1, content="old", at=0, sender="u2"),
        raw_message(message_id=2, content="new", at=10, sender="u1", receiver="u2"),
        raw_message(message_id=3, content="carol", at=5, sender="u3"),
    ]
    await engine.load_all_users()

    conversations = await engine.load_conversations()

    assert [c.counterpart_id for c in conversations] == ["u2", "u3"]
    assert conversations[0].last_message.content == "new"
    assert conversations[0].counterpart.display_name == "Bob"
    assert store.state.loading_conversations is False


@pytest.mark.asyncio
async def test_load_conversations_failure_keeps_list(engine, api, transport):
    await engine.start()
    await transport.deliver(raw_message(message_id=1, content="hello", sender="u2"))
    api.fail_all_messages = True

    conversations = await engine.load_conversations()

    assert [c.counterpart_id for c in conversations] == ["u2"]
    await engine.stop()


@pytest.mark.asyncio
async def test_toggle_list_clears_unread(engine, transport, store):
    await engine.start()
    await transport.deliver(raw_message(message_id=1, sender="u2"))
    assert store.state.has_unread is True

    assert engine.toggle_conversation_list() is True
    assert store.state.has_unread is False
    engine.close_conversation_list()
    assert store.state.is_list_open is False
    await engine.stop()


@pytest.mark.asyncio
async def test_open_chat_requires_identity(transport, api, cache, clock):
    engine = ChatEngine(auth=StaticAuthContext(None), transport=transport, api=api, cache=cache, clock=clock)
    with pytest.raises(ValidationError):
        await engine.open_chat_with_user("u2")
    assert engine.state.active_counterpart is None


@pytest.mark.asyncio
async def test_restore_session_reopens_last_chat(auth, transport, api, cache, clock):
    api.history[("u2", 0)] = [raw_message(message_id=1, content="bob", sender="u2")]
    first = ChatEngine(auth=auth, transport=transport, api=api, cache=cache, clock=clock)
    await first.start()
    await first.open_chat_with_user(make_profile("u2", "Bob"))
    await first.stop()

    second = ChatEngine(auth=auth, transport=transport, api=api, cache=cache, clock=clock)
    await second.start()

    assert second.state.active_counterpart.id == "u2"
    assert second.state.active_counterpart.display_name == "Bob"
    assert [m.content for m in second.state.messages] == ["bob"]
    await second.stop()


@pytest.mark.asyncio
async def test_logout_clears_state_and_disconnects(current_user, transport, api, cache, clock):
    auth = StaticAuthContext(current_user, token="t")
    engine = ChatEngine(auth=auth, transport=transport, api=api, cache=cache, clock=clock)
    await engine.start()
    await engine.open_chat_with_user(make_profile("u2"))

    auth.user = None
    await engine.handle_auth_change()

    assert transport.state == ConnectionState.DISCONNECTED
    assert engine.state == ChatState()
    assert await cache.read_active_chat() is None


@pytest.mark.asyncio
async def test_identity_switch_restarts_with_new_identity(current_user, transport, api, cache, clock):
    from chat_sync.application.dto.identity import CurrentUser

    auth = StaticAuthContext(current_user, token="t")
    engine = ChatEngine(auth=auth, transport=transport, api=api, cache=cache, clock=clock)
    await engine.start()

    auth.user = CurrentUser(id="u9", display_name="Zed")
    await engine.handle_auth_change()

    assert transport.identity == "u9"
    assert engine.state.current_user.id == "u9"
    await engine.stop()


@pytest.mark.asyncio
async def test_server_drop_is_reflected_in_state(engine, transport, store):
    await engine.start()
    transport.drop()
    assert store.state.connection_state == ConnectionState.DISCONNECTED
    await engine.stop()


def test_clear_error(engine, store):
    store.set_error("boom")
    engine.clear_error()
    assert store.state.error is None


@pytest.mark.asyncio
async def test_disabled_chat_is_inert():
    chat = DisabledChat()
    assert await chat.start() is False
    assert await chat.send_message("hi") is None
    assert await chat.load_conversations() == []
    assert chat.toggle_conversation_list() is False
    chat.subscribe(lambda _s: None)()
    assert chat.state == ChatState()
