from pathlib import Path

import pytest

from kai.config import Settings


def test_defaults_for_telegram():
    settings = Settings.from_env({"TELEGRAM_TOKEN": "abc"})
    assert settings.transport == "telegram"
    assert settings.token == "abc"
    assert settings.command_prefix == "."
    assert settings.settings_path == Path("settings.json")
    assert settings.reactions_path is None
    assert settings.presence_interval == 30.0
    assert settings.owner is None


def test_discord_with_overrides():
    settings = Settings.from_env(
        {
            "KAI_TRANSPORT": "Discord",
            "DISCORD_TOKEN": "tok",
            "KAI_OWNER": " 42 ",
            "KAI_PREFIX": "!",
            "KAI_REACTIONS_PATH": "custom.yaml",
            "KAI_PRESENCE_INTERVAL": "5",
            "LOG_LEVEL": "debug",
        }
    )
    assert settings.transport == "discord"
    assert settings.owner == "42"
    assert settings.command_prefix == "!"
    assert settings.reactions_path == Path("custom.yaml")
    assert settings.presence_interval == 5.0
    assert settings.log_level == "DEBUG"


def test_bad_interval_uses_default():
    settings = Settings.from_env({"TELEGRAM_TOKEN": "abc", "KAI_PRESENCE_INTERVAL": "soon"})
    assert settings.presence_interval == 30.0


def test_missing_token_exits():
    with pytest.raises(SystemExit):
        Settings.from_env({"KAI_TRANSPORT": "discord", "TELEGRAM_TOKEN": "abc"})


def test_unknown_transport_exits():
    with pytest.raises(SystemExit):
        Settings.from_env({"KAI_TRANSPORT": "irc"})
