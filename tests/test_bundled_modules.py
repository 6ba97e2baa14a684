"""Tests for the bundled core_commands, auto_responder and media_handler modules."""

import pytest
import pytest_asyncio

from directbot.bot import Bot
from directbot.bus.events import ContentKind
from directbot.dispatch.commands import PERMISSION_DENIED_TEXT
from directbot.modules.auto_responder import AutoResponderModule
from directbot.modules.core_commands import CoreCommandsModule, format_uptime
from directbot.modules.media_handler import MediaHandlerModule

from tests.conftest import ADMIN_ID, make_message


class EagerResponder(AutoResponderModule):
    """Auto-responder whose dice always come up."""

    def __init__(self, context, config=None):
        super().__init__(context, config, rng=lambda: 0.0)


@pytest.fixture
def media_dir(tmp_path):
    return tmp_path / "media"


@pytest_asyncio.fixture
async def bot(config, client, session, media_dir):
    config.modules.settings["media_handler"] = {"mediaPath": str(media_dir)}
    bot = Bot(config, client, session=session, manifest={
        "core_commands": CoreCommandsModule,
        "auto_responder": EagerResponder,
        "media_handler": MediaHandlerModule,
    })
    await bot.initialize()
    yield bot
    await bot.graceful_shutdown()


def sent_texts(client) -> list[str]:
    return [text for _, text in client.realtime.sent]


async def say(bot, text, sender_id="user-1", **kwargs):
    await bot.pipeline.handle(make_message(text, sender_id=sender_id, **kwargs))


class TestCoreCommands:

    @pytest.mark.asyncio
    async def test_help_lists_commands(self, bot, client):
        await say(bot, ".help")
        text = sent_texts(client)[0]
        assert "🤖 **Available Commands**" in text
        assert "• `.ping`" in text
        assert "• `.sendphoto`" in text

    @pytest.mark.asyncio
    async def test_help_for_one_command(self, bot, client):
        await say(bot, ".help reload")
        text = sent_texts(client)[0]
        assert "📖 **reload**" in text
        assert "**Usage:** `.reload <module>`" in text
        assert "🔒 Admin only" in text

    @pytest.mark.asyncio
    async def test_help_for_unknown_command(self, bot, client):
        await say(bot, ".help ghost")
        assert sent_texts(client) == ["❓ Command 'ghost' not found."]

    @pytest.mark.asyncio
    async def test_ping_reports_latency(self, bot, client):
        await say(bot, ".ping")
        texts = sent_texts(client)
        assert texts[0] == "🏓 Pong!"
        assert texts[1].startswith("🏓 Pong! Latency: ")

    @pytest.mark.asyncio
    async def test_stats(self, bot, client):
        await say(bot, ".stats")
        text = sent_texts(client)[0]
        assert "👤 **User:** @tester" in text
        assert "📦 **Modules:** 3" in text
        assert "🔌 **Connected:** ✅" in text

    @pytest.mark.asyncio
    async def test_modules_requires_admin(self, bot, client):
        await say(bot, ".modules")
        assert sent_texts(client) == [PERMISSION_DENIED_TEXT]

    @pytest.mark.asyncio
    async def test_modules_lists_loaded(self, bot, client):
        await say(bot, ".modules", sender_id=ADMIN_ID)
        text = sent_texts(client)[0]
        assert text.startswith("📦 **Loaded Modules (3)**")
        assert "• **auto_responder** - Automatic message responses" in text

    @pytest.mark.asyncio
    async def test_reload(self, bot, client):
        before = bot.modules.get("auto_responder")
        await say(bot, ".reload auto_responder", sender_id=ADMIN_ID)
        assert sent_texts(client) == ["✅ Module 'auto_responder' reloaded successfully."]
        assert bot.modules.get("auto_responder") is not before

    @pytest.mark.asyncio
    async def test_reload_unknown_module(self, bot, client):
        await say(bot, ".reload ghost", sender_id=ADMIN_ID)
        assert sent_texts(client) == ["❌ Failed to reload module 'ghost'."]

    @pytest.mark.asyncio
    async def test_reload_without_argument(self, bot, client):
        await say(bot, ".reload", sender_id=ADMIN_ID)
        assert sent_texts(client) == ["❓ Please specify a module to reload."]

    def test_format_uptime(self):
        assert format_uptime(3_723_000) == "1h 2m 3s"
        assert format_uptime(0) == "0h 0m 0s"


class TestAutoResponder:

    @pytest.mark.asyncio
    async def test_responds_to_trigger(self, bot, client):
        await say(bot, "Hello there")
        assert sent_texts(client) == ["Hello! 👋 How can I help you?"]

    @pytest.mark.asyncio
    async def test_only_first_matching_rule_replies(self, bot, client):
        await say(bot, "hi, thanks")
        assert len(client.realtime.sent) == 1

    @pytest.mark.asyncio
    async def test_ignores_unmatched_and_textless_messages(self, bot, client):
        await say(bot, "what time is it")
        await say(bot, None, kind=ContentKind.MEDIA)
        assert client.realtime.sent == []

    @pytest.mark.asyncio
    async def test_probability_gate(self, bot, client):
        module = AutoResponderModule(
            bot.context,
            {"responses": [{"trigger": "hello", "response": "hey", "probability": 0.5}]},
            rng=lambda: 0.7,
        )
        await module.on_message(make_message("hello"))
        assert client.realtime.sent == []

    @pytest.mark.asyncio
    async def test_add_response(self, bot, client):
        await say(bot, ".addresponse weather+ | Always sunny", sender_id=ADMIN_ID)
        await say(bot, "weatherrr?")
        assert sent_texts(client) == ["✅ Auto-response added successfully!", "Always sunny"]

    @pytest.mark.asyncio
    async def test_add_response_rejects_bad_input(self, bot, client):
        await say(bot, ".addresponse only-a-trigger", sender_id=ADMIN_ID)
        await say(bot, ".addresponse ([ | broken", sender_id=ADMIN_ID)
        assert sent_texts(client) == [
            "❓ Usage: addresponse <trigger> | <response>",
            "❌ Invalid regex pattern.",
        ]

    @pytest.mark.asyncio
    async def test_list_responses(self, bot, client):
        await say(bot, ".listresponses", sender_id=ADMIN_ID)
        text = sent_texts(client)[0]
        assert text.startswith("📝 **Auto-Responses (3)**")
        assert '1. **hello|hi|hey** → "Hello! 👋 How can I help you?" (80%)' in text


class TestMediaHandler:

    @pytest.mark.asyncio
    async def test_media_directory_created(self, bot, media_dir):
        assert media_dir.is_dir()

    @pytest.mark.asyncio
    async def test_send_photo_from_file(self, bot, client, media_dir):
        (media_dir / "cat.jpg").write_bytes(b"\xff\xd8cat")
        await say(bot, ".sendphoto cat.jpg a sleepy cat")
        assert client.realtime.photos == [("thread-1", b"\xff\xd8cat", "a sleepy cat")]

    @pytest.mark.asyncio
    async def test_send_photo_missing_file(self, bot, client):
        await say(bot, ".sendphoto nothing.png")
        assert sent_texts(client) == ["❌ File not found."]

    @pytest.mark.asyncio
    async def test_send_photo_stays_inside_media_path(self, bot, client, tmp_path):
        (tmp_path / "secret.txt").write_text("classified")
        await say(bot, ".sendphoto ../secret.txt")
        assert sent_texts(client) == ["❌ File not found."]
        assert client.realtime.photos == []

    @pytest.mark.asyncio
    async def test_send_photo_requires_argument(self, bot, client):
        await say(bot, ".sendphoto")
        assert sent_texts(client) == ["❓ Please provide a URL or filename."]

    @pytest.mark.asyncio
    async def test_media_messages_do_not_reply(self, bot, client):
        await say(bot, None, kind=ContentKind.MEDIA)
        assert client.realtime.sent == []
