import json

import pytest
import yaml

from core.errors import ConfigError
from utils.config import DEFAULT_SETTINGS, ConfigManager, deep_merge, validate_configuration

ENV_VARS = (
    "BOT_PREFIX", "PRESENCE_ENABLED", "PLAYBACK_MODE", "PLAYLIST_PATH", "LOCAL_FILE_PATH",
    "DEFAULT_VOLUME", "AUTO_RECONNECT", "MAX_RECONNECT_ATTEMPTS", "RECONNECT_PROBE_TIMEOUT",
    "RECONNECT_DELAY", "YOUTUBE_COOKIES_FILE", "LOG_LEVEL", "LOG_FILE", "MAX_LOG_FILES",
)

VALID_TOKEN = "MTIzNDU2Nzg5MDEyMzQ1Njc4.GAbCdE.abcdefghijklmnopqrstuvwxyz0123456789AB"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS + ("DISCORD_TOKEN",):
        monkeypatch.delenv(name, raising=False)


def write_settings(path, data):
    (path / "settings.yaml").write_text(yaml.safe_dump(data))


async def load(path):
    config = ConfigManager(path)
    await config.load()
    return config


async def test_missing_files_are_generated_with_defaults(tmp_path):
    config = await load(tmp_path)

    assert (tmp_path / "settings.yaml").exists()
    assert (tmp_path / "messages.yaml").exists()
    assert config.prefix == "!"
    assert config.section("reconnection")["max_attempts"] == 5


async def test_yaml_overrides_defaults(tmp_path):
    write_settings(tmp_path, {"prefix": "?", "audio": {"volume": 80}})
    config = await load(tmp_path)

    assert config.prefix == "?"
    assert config.section("audio")["volume"] == 80
    # Untouched sections keep their defaults
    assert config.section("reconnection")["enabled"] is True


async def test_env_overrides_yaml(tmp_path, monkeypatch):
    write_settings(tmp_path, {"prefix": "?", "reconnection": {"max_attempts": 3}})
    monkeypatch.setenv("BOT_PREFIX", "$")
    monkeypatch.setenv("MAX_RECONNECT_ATTEMPTS", "7")
    monkeypatch.setenv("AUTO_RECONNECT", "false")
    monkeypatch.setenv("RECONNECT_DELAY", "2500")
    monkeypatch.setenv("PLAYBACK_MODE", "LOCAL")
    monkeypatch.setenv("FAILURE_PASSES", "4")

    config = await load(tmp_path)

    assert config.prefix == "$"
    assert config.section("reconnection")["max_attempts"] == 7
    assert config.section("reconnection")["enabled"] is False
    assert config.section("reconnection")["rejoin_delay"] == 2.5
    assert config.playback_mode == "local"
    assert config.section("playback")["failure_passes"] == 4


async def test_invalid_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("DEFAULT_VOLUME", "loud")
    config = await load(tmp_path)
    assert config.section("audio")["volume"] == 50


async def test_out_of_range_values_are_clamped(tmp_path):
    write_settings(tmp_path, {
        "playback": {"failure_passes": 1},
        "audio": {"volume": 150},
        "reconnection": {"max_attempts": 99, "probe_timeout": 0},
        "logging": {"max_files": 0},
    })
    config = await load(tmp_path)

    assert config.section("playback")["failure_passes"] == 2
    assert config.section("audio")["volume"] == 100
    assert config.section("reconnection")["max_attempts"] == 20
    assert config.section("reconnection")["probe_timeout"] == 0.5
    assert config.section("logging")["max_files"] == 1


async def test_bad_values_fall_back_to_defaults(tmp_path):
    write_settings(tmp_path, {
        "prefix": "two words",
        "playback": {"mode": "spotify"},
        "reconnection": "yes please",
        "presence_enabled": "sometimes",
    })
    config = await load(tmp_path)

    assert config.prefix == "!"
    assert config.playback_mode == "youtube"
    assert config.section("reconnection") == DEFAULT_SETTINGS["reconnection"]
    assert config.get("presence_enabled") is True


async def test_null_values_restore_defaults(tmp_path):
    (tmp_path / "settings.yaml").write_text("audio:\n  volume:\n")
    config = await load(tmp_path)
    assert config.section("audio")["volume"] == 50


def test_deep_merge_does_not_share_defaults():
    merged = deep_merge({"audio": {"volume": 10}}, DEFAULT_SETTINGS)
    merged["reconnection"]["max_attempts"] = 0

    assert DEFAULT_SETTINGS["reconnection"]["max_attempts"] == 5
    assert merged["audio"]["volume"] == 10


def test_msg_formats_with_prefix(tmp_path):
    config = ConfigManager(tmp_path)

    assert config.msg("skipped", position=2, total=9) == "⏭️ Skipped to song 2 of 9."
    assert "`!play`" in config.msg("voice_lost")


def test_msg_with_bad_placeholder_returns_template(tmp_path):
    config = ConfigManager(tmp_path)
    config.messages["joined"] = {"text": "hello {nobody}", "enabled": True}

    assert config.msg("joined") == "hello {nobody}"


def test_is_enabled(tmp_path):
    config = ConfigManager(tmp_path)
    config.messages["now_playing"] = {"text": "x", "enabled": False}

    assert not config.is_enabled("now_playing")
    assert config.is_enabled("skipped")


def test_playlist_path_defaults_to_config_dir(tmp_path):
    assert ConfigManager(tmp_path).playlist_path() == tmp_path / "playlist.json"


class TestValidateConfiguration:
    @pytest.fixture
    def ffmpeg(self, monkeypatch):
        monkeypatch.setattr("utils.config.shutil.which", lambda name: "/usr/bin/ffmpeg")

    def test_valid_youtube_setup(self, tmp_path, monkeypatch, ffmpeg):
        monkeypatch.setenv("DISCORD_TOKEN", VALID_TOKEN)
        (tmp_path / "playlist.json").write_text(json.dumps(["https://youtu.be/aaaaaaaaaaa"]))

        store = validate_configuration(ConfigManager(tmp_path))
        assert store.entries == ("https://youtu.be/aaaaaaaaaaa",)

    def test_local_mode_uses_single_entry(self, tmp_path, monkeypatch, ffmpeg):
        monkeypatch.setenv("DISCORD_TOKEN", VALID_TOKEN)
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        config = ConfigManager(tmp_path)
        config.settings["playback"].update(mode="local", local_file=str(song))

        store = validate_configuration(config)
        assert store.entries == (str(song),)

    def test_reports_every_problem(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DISCORD_TOKEN", "not-a-token")
        monkeypatch.setattr("utils.config.shutil.which", lambda name: None)

        with pytest.raises(ConfigError) as excinfo:
            validate_configuration(ConfigManager(tmp_path))

        problems = " | ".join(excinfo.value.problems)
        assert len(excinfo.value.problems) == 3
        assert "DISCORD_TOKEN" in problems
        assert "ffmpeg" in problems
        assert "playlist" in problems

    def test_missing_token(self, tmp_path, ffmpeg):
        (tmp_path / "playlist.json").write_text(json.dumps(["https://youtu.be/aaaaaaaaaaa"]))

        with pytest.raises(ConfigError, match="DISCORD_TOKEN not set"):
            validate_configuration(ConfigManager(tmp_path))

    def test_missing_cookies_only_warns(self, tmp_path, monkeypatch, ffmpeg):
        monkeypatch.setenv("DISCORD_TOKEN", VALID_TOKEN)
        (tmp_path / "playlist.json").write_text(json.dumps(["https://youtu.be/aaaaaaaaaaa"]))
        config = ConfigManager(tmp_path)
        config.settings["youtube"]["cookies_file"] = str(tmp_path / "cookies.txt")

        assert len(validate_configuration(config)) == 1
