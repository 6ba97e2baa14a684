"""End-to-end tests for the Bot: authentication, dispatch, statistics and shutdown."""

import asyncio
import json

import pytest
import pytest_asyncio

from directbot.bot import Bot
from directbot.dispatch.commands import PERMISSION_DENIED_TEXT
from directbot.errors import AuthenticationError, TransportError
from directbot.heartbeat.service import HeartbeatService
from directbot.modules.base import BotModule
from directbot.modules.core_commands import CoreCommandsModule
from directbot.transport.loopback import LoopbackClient
from directbot.transport.supervisor import ConnectionState

from tests.conftest import ADMIN_ID, USER_ID, eventually, make_message


class CountingModule(BotModule):
    name = "Counting"
    seen: list = []

    async def on_message(self, message):
        CountingModule.seen.append(message.text)


@pytest_asyncio.fixture
async def bare_bot(config, client, session):
    """Running bot without any modules."""
    bot = Bot(config, client, session=session, manifest={})
    await bot.initialize()
    yield bot
    await bot.graceful_shutdown()


@pytest_asyncio.fixture
async def core_bot(config, client, session):
    """Running bot with the core command module only."""
    config.modules.settings["core_commands"] = {"shutdownDelay": 0}
    bot = Bot(config, client, session=session, manifest={"core_commands": CoreCommandsModule})
    await bot.initialize()
    yield bot
    await bot.graceful_shutdown()


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_fresh_login_saves_state(self, config, client, session):
        bot = Bot(config, client, session=session, manifest={})
        ready = []
        bot.on("ready", lambda: ready.append(True))

        await bot.initialize()
        try:
            assert bot.user.username == "tester"
            assert bot.is_running
            assert ready == [True]
            assert session.has_state
            assert bot.connections.realtime.state is ConnectionState.CONNECTED
            assert bot.connections.push.state is ConnectionState.CONNECTED
        finally:
            await bot.graceful_shutdown()

    @pytest.mark.asyncio
    async def test_saved_state_skips_login(self, config, session):
        session.save_state(json.dumps({"user_id": "42", "username": "saved"}))
        config.account.password = "wrong"
        bot = Bot(config, LoopbackClient(password="right"), session=session, manifest={})

        await bot.initialize()
        try:
            assert bot.user.user_id == "42"
        finally:
            await bot.graceful_shutdown()

    @pytest.mark.asyncio
    async def test_invalid_state_without_fresh_login(self, config, client, session):
        session.save_state("not json")
        config.account.allow_fresh_login = False
        bot = Bot(config, client, session=session, manifest={})

        with pytest.raises(AuthenticationError):
            await bot.initialize()
        assert not bot.is_running
        assert not session.has_state

    @pytest.mark.asyncio
    async def test_password_required_for_fresh_login(self, config, client, session):
        config.account.password = ""
        bot = Bot(config, client, session=session, manifest={})
        with pytest.raises(AuthenticationError, match="Password required"):
            await bot.initialize()

    @pytest.mark.asyncio
    async def test_rejected_password(self, config, session):
        bot = Bot(config, LoopbackClient(password="right"), session=session, manifest={})
        with pytest.raises(AuthenticationError):
            await bot.initialize()
        assert bot.connections.realtime.state is ConnectionState.DISCONNECTED


class TestDispatch:

    @pytest.mark.asyncio
    async def test_ping_replies_pong_once(self, bare_bot, client):
        executed = []
        bare_bot.on("commandExecuted", executed.append)
        bare_bot.register_command("ping", lambda m, a: bare_bot.send_message(m.thread_id, "pong"))

        client.realtime.inject(make_message(".ping"))
        await eventually(lambda: bare_bot.stats.messages_received == 1)

        assert client.realtime.sent == [("thread-1", "pong")]
        assert len(executed) == 1
        assert bare_bot.stats.commands_executed == 1
        assert bare_bot.stats.messages_sent == 1

    @pytest.mark.asyncio
    async def test_non_admin_shutdown_is_denied(self, core_bot, client):
        client.realtime.inject(make_message(".shutdown"))
        await eventually(lambda: core_bot.stats.messages_received == 1)

        assert client.realtime.sent == [("thread-1", PERMISSION_DENIED_TEXT)]
        assert "commandExecuted" not in core_bot.events.get_stats()
        assert core_bot.is_running

    @pytest.mark.asyncio
    async def test_admin_list_changes_apply_at_runtime(self, core_bot, client, config):
        await core_bot.pipeline.handle(make_message(".modules"))
        config.bot.admin_users.append(USER_ID)
        await core_bot.pipeline.handle(make_message(".modules"))

        texts = [text for _, text in client.realtime.sent]
        assert texts[0] == PERMISSION_DENIED_TEXT
        assert texts[1].startswith("📦 **Loaded Modules (1)**")
        assert core_bot.is_admin(USER_ID)
        assert core_bot.commands.is_admin(USER_ID)
        assert core_bot.context.is_admin(USER_ID)

    @pytest.mark.asyncio
    async def test_admin_shutdown_stops_the_bot(self, core_bot, client):
        client.realtime.inject(make_message(".shutdown", sender_id=ADMIN_ID))
        await asyncio.wait_for(core_bot.wait_until_stopped(), timeout=2)

        assert client.realtime.sent == [("thread-1", "👋 Shutting down bot...")]
        assert not core_bot.is_running
        assert core_bot.modules.get_loaded_modules() == []
        assert not client.realtime.connected
        assert not client.push.connected

    @pytest.mark.asyncio
    async def test_false_middleware_silences_everything(self, config, client, session):
        CountingModule.seen = []
        bot = Bot(config, client, session=session, manifest={"counting": CountingModule})
        bot.use(lambda m: False)
        bot.register_command("ping", lambda m, a: bot.send_message(m.thread_id, "pong"))
        await bot.initialize()
        try:
            await bot.pipeline.handle(make_message("hello"))
            await bot.pipeline.handle(make_message(".ping"))
        finally:
            await bot.graceful_shutdown()

        assert client.realtime.sent == []
        assert CountingModule.seen == []

    @pytest.mark.asyncio
    async def test_failed_command_counts_error(self, bare_bot):
        def broken(message, args):
            raise RuntimeError("boom")

        bare_bot.register_command("broken", broken)
        await bare_bot.pipeline.handle(make_message(".broken"))
        assert bare_bot.stats.errors == 1
        assert bare_bot.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_isolated_failures_count_as_errors(self, config, client, session):
        bot = Bot(config, client, session=session, manifest={})
        calls = []

        def flaky_middleware(message):
            if message.text == "explode":
                raise RuntimeError("middleware failure")

        def broken_handler(message):
            calls.append(message.text)
            raise RuntimeError("handler failure")

        bot.use(flaky_middleware)
        bot.on_message(broken_handler)
        await bot.initialize()
        try:
            await bot.pipeline.handle(make_message("explode"))
            await bot.pipeline.handle(make_message("hello"))
            assert calls == ["hello"]
            assert bot.get_stats()["errors"] == 2
        finally:
            await bot.graceful_shutdown()

    @pytest.mark.asyncio
    async def test_non_message_events_reach_observers(self, bare_bot, client):
        typing = []
        bare_bot.on("typingIndicator", typing.append)
        client.realtime.inject_event("typingIndicator", {"user": "u", "active": True})
        await eventually(lambda: typing)
        assert typing == [{"user": "u", "active": True}]


class TestOutbound:

    @pytest.mark.asyncio
    async def test_send_helpers_emit_message_sent(self, bare_bot, client):
        sent = []
        bare_bot.on("messageSent", sent.append)

        await bare_bot.send_message("t", "hi")
        await bare_bot.send_photo("t", b"img", "caption")
        await bare_bot.send_voice("t", b"ogg")

        assert [s.get("type", "text") for s in sent] == ["text", "photo", "voice"]
        assert client.realtime.photos == [("t", b"img", "caption")]
        assert bare_bot.get_stats()["messages_sent"] == 3

    @pytest.mark.asyncio
    async def test_typing_and_seen(self, bare_bot, client):
        await bare_bot.send_typing("t", True)
        await bare_bot.mark_seen("t", "item-1")
        assert client.realtime.typing == [("t", True)]
        assert client.realtime.seen == [("t", "item-1")]

    @pytest.mark.asyncio
    async def test_send_failure_propagates(self, bare_bot, client):
        await client.realtime.disconnect()
        with pytest.raises(TransportError):
            await bare_bot.send_message("t", "hi")


class TestSessionPersistence:

    @pytest.mark.asyncio
    async def test_push_auth_saves_state(self, bare_bot, client, session):
        session.clear_session()
        client.push.inject_event("auth", {"token": "fresh"})
        await eventually(lambda: session.has_state)
        assert json.loads(session.load_state())["username"] == "tester"


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_order(self, config, client, session):
        bot = Bot(config, client, session=session, manifest={})
        await bot.initialize()
        order = []

        original_save = bot.session.save_state
        original_disconnect = bot.connections.disconnect_all
        original_unload = bot.modules.unload_all

        def save_state(state):
            order.append(("persist", bot.is_running))
            return original_save(state)

        async def disconnect_all():
            order.append(("disconnect", None))
            await original_disconnect()

        async def unload_all():
            order.append(("unload", None))
            await original_unload()

        bot.session.save_state = save_state
        bot.connections.disconnect_all = disconnect_all
        bot.modules.unload_all = unload_all

        await bot.graceful_shutdown()
        await bot.graceful_shutdown()

        assert order == [("persist", False), ("disconnect", None), ("unload", None)]


class TestHeartbeat:

    @pytest.mark.asyncio
    async def test_trigger_now_emits_stats(self, bare_bot):
        beats = []
        bare_bot.on("heartbeat", beats.append)
        stats = await bare_bot.heartbeat.trigger_now()
        assert beats == [stats]
        assert stats["is_running"] is True
        assert stats["connections"]["realtime"]["state"] == "connected"

    @pytest.mark.asyncio
    async def test_periodic_heartbeat(self, events):
        service = HeartbeatService(lambda: {"uptime": 0}, events, interval_ms=10)
        await service.start()
        try:
            await eventually(lambda: events.get_stats().get("heartbeat") and events.get_stats()["heartbeat"].count >= 2)
        finally:
            service.stop()
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_disabled_heartbeat_does_not_start(self, events):
        service = HeartbeatService(lambda: {}, events, interval_ms=0)
        await service.start()
        assert not service.is_running
