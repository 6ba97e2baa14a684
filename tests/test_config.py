"""Tests for config loading/saving and the session state store."""

import json

from directbot.config.loader import (
    camel_to_snake,
    convert_keys,
    load_config,
    save_config,
    snake_to_camel,
)
from directbot.config.schema import Config
from directbot.session.manager import SessionStore
from directbot.utils.helpers import truncate_string


class TestKeyConversion:

    def test_camel_and_snake(self):
        assert camel_to_snake("heartbeatInterval") == "heartbeat_interval"
        assert snake_to_camel("max_reconnect_attempts") == "maxReconnectAttempts"
        assert camel_to_snake("prefix") == "prefix"

    def test_module_settings_keep_their_keys(self):
        data = {"modules": {"settings": {"media_handler": {"mediaPath": "/tmp/m"}}}}
        converted = convert_keys(data)
        assert converted["modules"]["settings"]["media_handler"] == {"mediaPath": "/tmp/m"}


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.json")
        assert config.bot.prefix == "."
        assert config.bot.heartbeat_interval == 30000
        assert config.realtime.max_reconnect_attempts == 5
        assert "direct" in config.realtime.subscriptions

    def test_reads_camel_case_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "bot": {"prefix": "!", "adminUsers": ["42"], "heartbeatInterval": 0},
            "account": {"username": "bot", "allowFreshLogin": False},
            "modules": {"enabledModules": ["core_commands"],
                        "settings": {"core_commands": {"shutdownDelay": 2}}},
            "realtime": {"reconnectDelay": 100},
            "platform": {"client": "pkg.mod:make", "options": {"apiKey": "k"}},
        }))

        config = load_config(path)

        assert config.bot.prefix == "!"
        assert config.is_admin("42")
        assert not config.is_admin("43")
        assert config.account.allow_fresh_login is False
        assert config.modules.enabled_modules == ["core_commands"]
        assert config.modules.settings == {"core_commands": {"shutdownDelay": 2}}
        assert config.realtime.reconnect_delay == 100
        assert config.platform.options == {"apiKey": "k"}

    def test_broken_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_config(path).bot.prefix == "."

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = Config()
        config.bot.prefix = "/"
        config.modules.settings["auto_responder"] = {"responses": []}
        save_config(config, path)

        raw = json.loads(path.read_text())
        assert raw["bot"]["heartbeatInterval"] == 30000
        assert raw["modules"]["settings"] == {"auto_responder": {"responses": []}}

        loaded = load_config(path)
        assert loaded.bot.prefix == "/"
        assert loaded.modules.settings == {"auto_responder": {"responses": []}}

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DIRECTBOT_BOT__PREFIX", "!")
        assert Config().bot.prefix == "!"

    def test_environment_beats_config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"bot": {"prefix": "!", "adminUsers": ["42"]}}))
        monkeypatch.setenv("DIRECTBOT_BOT__PREFIX", "?")

        config = load_config(path)

        assert config.bot.prefix == "?"
        assert config.bot.admin_users == ["42"]


class TestSessionStore:

    def test_creates_directory(self, tmp_path):
        store = SessionStore(tmp_path / "a" / "b")
        assert store.session_path.is_dir()
        assert store.load_state() is None
        assert not store.has_state

    def test_save_and_load_verbatim(self, tmp_path):
        store = SessionStore(tmp_path)
        state = '{"cookies": "x", "device": {"id": 1}}'
        assert store.save_state(state)
        assert store.has_state
        assert store.load_state() == state

    def test_clear_removes_state_and_cookies(self, tmp_path):
        store = SessionStore(tmp_path)
        store.save_state("state")
        store.cookies_path.write_text("legacy")

        assert store.clear_session()
        assert not store.state_path.exists()
        assert not store.cookies_path.exists()

    def test_clear_without_files(self, tmp_path):
        assert SessionStore(tmp_path).clear_session()


def test_truncate_string():
    assert truncate_string("short") == "short"
    assert truncate_string("x" * 20, max_len=10) == "xxxxxxx..."
