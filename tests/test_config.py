import configparser

import pytest

from vod_squirrel.exceptions import ConfigurationError
from vod_squirrel.models.config import PUBLIC_GQL_CLIENT_ID, AppConfig
from vod_squirrel.storage.config_manager import ConfigManager


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "config" / "config.ini"


def write_ini(path, **values):
    path.parent.mkdir(parents=True, exist_ok=True)
    parser = configparser.ConfigParser(interpolation=None)
    parser["DEFAULT"] = {key: str(value) for key, value in values.items()}
    with open(path, "w", encoding="utf-8") as f:
        parser.write(f)


def test_missing_file_yields_defaults(config_file):
    config = ConfigManager(config_file, environ={}).load_config()

    assert config.parallelism == 20
    assert config.twitch_client_id == PUBLIC_GQL_CLIENT_ID
    assert config.twitch_access_token == ""
    assert config.config_path == str(config_file)
    assert not config_file.exists()


def test_ini_values_are_loaded_and_missing_keys_migrated(config_file):
    write_ini(config_file, parallelism=8, cleanup="false", privacy_status="Private")

    config = ConfigManager(config_file, environ={}).load_config()

    assert config.parallelism == 8
    assert config.cleanup is False
    assert config.privacy_status == "private"

    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_file, encoding="utf-8")
    assert set(parser["DEFAULT"]) == AppConfig.get_ini_keys()
    assert parser["DEFAULT"]["parallelism"] == "8"


def test_environment_overrides_file(config_file):
    write_ini(config_file, twitch_access_token="from-file")
    environ = {"TWITCH_OAUTH_ACCESS_TOKEN": "from-env", "OAUTH_TOKEN": "yt"}

    config = ConfigManager(config_file, environ=environ).load_config()

    assert config.twitch_access_token == "from-env"
    assert config.youtube_oauth_token == "yt"


def test_cli_options_override_everything_except_none(config_file):
    write_ini(config_file, parallelism=8)
    environ = {"TWITCH_OAUTH_ACCESS_TOKEN": "from-env"}

    config = ConfigManager(config_file, environ=environ).load_config(
        {"parallelism": 4, "twitch_access_token": None}
    )

    assert config.parallelism == 4
    assert config.twitch_access_token == "from-env"


@pytest.mark.parametrize(
    "options",
    [
        {"parallelism": 0},
        {"segment_attempts": 11},
        {"privacy_status": "friends"},
        {"keepalive_timeout": 5},
        {"temp_dir": "/definitely/not/a/real/dir"},
    ],
)
def test_invalid_values_raise_configuration_error(config_file, options):
    with pytest.raises(ConfigurationError):
        ConfigManager(config_file, environ={}).load_config(options)


def test_save_then_load_round_trip(config_file, tmp_path):
    manager = ConfigManager(config_file, environ={})
    manager.save_new_config(
        {"twitch_access_token": "abc", "parallelism": 12, "temp_dir": str(tmp_path)}
    )

    config = ConfigManager(config_file, environ={}).load_config()

    assert config.twitch_access_token == "abc"
    assert config.parallelism == 12
    assert config.work_root == tmp_path
    assert config.cleanup is True


def test_require_tokens():
    config = AppConfig()
    with pytest.raises(ConfigurationError):
        config.require_twitch_token()
    with pytest.raises(ConfigurationError):
        config.require_youtube_token()

    assert AppConfig(twitch_access_token="t").require_twitch_token() == "t"
