"""Tests for the ModuleRegistry lifecycle and external module files."""

import asyncio
import json
import textwrap

import pytest

from directbot.bot import Bot
from directbot.errors import ModuleLoadError
from directbot.modules.base import BotModule
from directbot.modules.registry import ModuleState

from tests.conftest import make_message

LIFECYCLE: list = []


class RecorderModule(BotModule):
    name = "Recorder"
    description = "Records lifecycle calls"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.register_command("rec", self.rec_command, description="Record a call")

    async def initialize(self):
        LIFECYCLE.append(("initialize", self.name))

    async def cleanup(self):
        LIFECYCLE.append(("cleanup", "rec" in self.context.commands))

    async def on_message(self, message):
        LIFECYCLE.append(("message", message.text))

    async def rec_command(self, message, args):
        LIFECYCLE.append(("command", args))


class SecondModule(BotModule):
    description = "Second in line"

    async def on_message(self, message):
        LIFECYCLE.append(("second", message.text))


class BrokenInitModule(BotModule):
    name = "BrokenInit"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.register_command("halfway", lambda m, a: None)

    async def initialize(self):
        raise RuntimeError("cannot start")


class BrokenConstructorModule(BotModule):
    name = "BrokenCtor"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.register_command("orphan", lambda m, a: None)
        raise ValueError("bad config")


class FailingCleanupModule(BotModule):
    name = "FailingCleanup"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.register_command("temp", lambda m, a: None)

    async def cleanup(self):
        raise RuntimeError("cleanup exploded")


MANIFEST = {
    "recorder": RecorderModule,
    "second": SecondModule,
    "broken_init": BrokenInitModule,
    "broken_ctor": BrokenConstructorModule,
    "failing_cleanup": FailingCleanupModule,
}

GREETER_SOURCE = textwrap.dedent('''
    from directbot.modules.base import BotModule

    MODULE_API_VERSION = 1


    class Greeter(BotModule):
        name = "Greeter"
        description = "Greets people"

        def __init__(self, context, config=None):
            super().__init__(context, config)
            self.register_command("{command}", self.greet)

        async def greet(self, message, args):
            await self.send_message(message.thread_id, self.config.get("greeting", "hi"))


    module_class = Greeter
''')


@pytest.fixture(autouse=True)
def reset_lifecycle():
    LIFECYCLE.clear()
    yield
    LIFECYCLE.clear()


@pytest.fixture
def bot(config, client, session):
    return Bot(config, client, session=session, manifest=MANIFEST)


@pytest.fixture
def registry(bot):
    return bot.modules


class TestLoadOne:

    @pytest.mark.asyncio
    async def test_load_marks_active_and_registers_commands(self, registry, bot):
        module = await registry.load_one("recorder")

        assert registry.is_loaded("recorder")
        assert registry.get("recorder") is module
        assert registry.get_entry("recorder").state is ModuleState.ACTIVE
        assert module.commands == ["rec"]
        assert bot.commands.get("rec").owner is module
        assert LIFECYCLE == [("initialize", "Recorder")]

    @pytest.mark.asyncio
    async def test_nameless_module_takes_identifier(self, registry):
        module = await registry.load_one("second")
        assert module.name == "second"

    @pytest.mark.asyncio
    async def test_initialize_failure_leaves_no_commands(self, registry, bot):
        with pytest.raises(ModuleLoadError) as exc:
            await registry.load_one("broken_init")

        assert exc.value.identifier == "broken_init"
        assert "halfway" not in bot.commands
        assert not registry.is_loaded("broken_init")

    @pytest.mark.asyncio
    async def test_constructor_failure_leaves_no_commands(self, registry, bot):
        with pytest.raises(ModuleLoadError):
            await registry.load_one("broken_ctor")
        assert "orphan" not in bot.commands

    @pytest.mark.asyncio
    async def test_unknown_module(self, registry):
        with pytest.raises(ModuleLoadError, match="not found"):
            await registry.load_one("ghost")

    @pytest.mark.asyncio
    async def test_loading_twice_is_rejected(self, registry):
        await registry.load_one("recorder")
        with pytest.raises(ModuleLoadError, match="already loaded"):
            await registry.load_one("recorder")


class TestLoadAll:

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, registry):
        loaded = await registry.load_all()

        assert loaded == 3
        assert registry.get_loaded_modules() == ["recorder", "second", "failing_cleanup"]

    @pytest.mark.asyncio
    async def test_enabled_modules_filter(self, registry, config):
        config.modules.enabled_modules = ["second"]
        assert await registry.load_all() == 1
        assert registry.get_loaded_modules() == ["second"]

    @pytest.mark.asyncio
    async def test_missing_modules_directory_is_created(self, registry):
        assert not registry.modules_path.exists()
        await registry.load_all()
        assert registry.modules_path.is_dir()

    @pytest.mark.asyncio
    async def test_fan_out_follows_load_order(self, registry, bot):
        config = bot.config
        config.modules.enabled_modules = ["second", "recorder"]
        await registry.load_all()

        await bot.pipeline.handle(make_message("hello"))
        assert [m.name for m in registry.modules] == ["Recorder", "second"]
        assert LIFECYCLE[-2:] == [("message", "hello"), ("second", "hello")]


class TestUnload:

    @pytest.mark.asyncio
    async def test_cleanup_once_before_command_removal(self, registry, bot):
        await registry.load_one("recorder")

        assert await registry.unload("recorder") is True
        assert await registry.unload("recorder") is False

        assert LIFECYCLE.count(("cleanup", True)) == 1
        assert ("cleanup", False) not in LIFECYCLE
        assert "rec" not in bot.commands
        assert not registry.is_loaded("recorder")

    @pytest.mark.asyncio
    async def test_unload_unknown_returns_false(self, registry):
        assert await registry.unload("ghost") is False

    @pytest.mark.asyncio
    async def test_cleanup_failure_still_removes_module(self, registry, bot):
        await registry.load_one("failing_cleanup")
        assert await registry.unload("failing_cleanup") is True
        assert "temp" not in bot.commands

    @pytest.mark.asyncio
    async def test_bot_commands_survive_module_unload(self, registry, bot):
        bot.register_command("core", lambda m, a: None)
        await registry.load_one("recorder")
        await registry.unload("recorder")
        assert "core" in bot.commands

    @pytest.mark.asyncio
    async def test_unload_all(self, registry):
        await registry.load_all()
        await registry.unload_all()
        assert registry.get_loaded_modules() == []

    @pytest.mark.asyncio
    async def test_in_flight_command_completes_after_unload(self, bot, registry):
        release = asyncio.Event()
        finished = []

        class SlowModule(BotModule):
            name = "Slow"

            def __init__(self, context, config=None):
                super().__init__(context, config)
                self.register_command("slow", self.slow)

            async def slow(self, message, args):
                await release.wait()
                finished.append("slow")

        registry._manifest["slow"] = SlowModule
        await registry.load_one("slow")

        in_flight = asyncio.create_task(bot.commands.dispatch(make_message(".slow")))
        await asyncio.sleep(0)
        await registry.unload("slow")
        release.set()

        assert (await in_flight).value == "executed"
        assert finished == ["slow"]
        assert (await bot.commands.dispatch(make_message(".slow"))).value == "unknown"


class TestReload:

    @pytest.mark.asyncio
    async def test_reload_creates_fresh_instance(self, registry, bot):
        first = await registry.load_one("recorder")
        assert await registry.reload("recorder") is True

        second = registry.get("recorder")
        assert second is not first
        assert bot.commands.get("rec").owner is second
        assert LIFECYCLE == [("initialize", "Recorder"), ("cleanup", True), ("initialize", "Recorder")]

    @pytest.mark.asyncio
    async def test_reload_failure_returns_false(self, registry):
        assert await registry.reload("broken_init") is False
        assert not registry.is_loaded("broken_init")


class TestFileModules:

    def _write(self, registry, name, source):
        registry.modules_path.mkdir(parents=True, exist_ok=True)
        (registry.modules_path / f"{name}.py").write_text(source)

    @pytest.mark.asyncio
    async def test_discovers_and_loads_file_module(self, registry, bot):
        self._write(registry, "greeter", GREETER_SOURCE.replace("{command}", "greet"))
        self._write(registry, "_private", "raise RuntimeError('never imported')\n")

        assert "greeter" in registry.discover()
        assert "_private" not in registry.discover()

        module = await registry.load_one("greeter")
        assert module.name == "Greeter"
        assert registry.get_entry("greeter").source.endswith("greeter.py")
        assert "greet" in bot.commands

    @pytest.mark.asyncio
    async def test_config_merges_settings_and_config_file(self, registry, config):
        config.modules.settings["greeter"] = {"greeting": "hello", "volume": 3}
        self._write(registry, "greeter", GREETER_SOURCE.replace("{command}", "greet"))
        (registry.modules_path / "greeter.config.json").write_text(json.dumps({"greeting": "howdy"}))

        await registry.load_one("greeter")
        assert registry.get_module_config("greeter") == {"greeting": "howdy", "volume": 3}

    @pytest.mark.asyncio
    async def test_wrong_api_version_is_rejected(self, registry):
        self._write(registry, "legacy", "MODULE_API_VERSION = 0\nmodule_class = object\n")
        with pytest.raises(ModuleLoadError, match="MODULE_API_VERSION"):
            await registry.load_one("legacy")

    @pytest.mark.asyncio
    async def test_module_class_must_be_bot_module(self, registry):
        self._write(registry, "plain", "MODULE_API_VERSION = 1\nmodule_class = dict\n")
        with pytest.raises(ModuleLoadError, match="module_class"):
            await registry.load_one("plain")

    @pytest.mark.asyncio
    async def test_import_error_is_wrapped(self, registry):
        self._write(registry, "syntax", "def broken(:\n")
        with pytest.raises(ModuleLoadError, match="import failed"):
            await registry.load_one("syntax")

    @pytest.mark.asyncio
    async def test_reload_picks_up_changes_on_disk(self, registry, bot):
        self._write(registry, "greeter", GREETER_SOURCE.replace("{command}", "greet"))
        await registry.load_one("greeter")

        self._write(registry, "greeter", GREETER_SOURCE.replace("{command}", "salute_everyone"))
        assert await registry.reload("greeter") is True
        assert "greet" not in bot.commands
        assert "salute_everyone" in bot.commands
