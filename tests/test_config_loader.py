"""
Tests for configuration loading from environment variables and config.yaml.
"""

import pytest

from power_watch.config_loader import (
    DEFAULT_OUTAGE_URL,
    ConfigError,
    Timings,
    get_aws_config,
    load_config,
    parse_device_map,
)

CONFIG_YAML = """
telegram:
  bot_token: "123:abc"
  admin_chat_id: 555
tuya:
  endpoint: "https://openapi.tuyaeu.com"
  access_id: "id"
  access_key: "key"
  devices:
    "42": "bf0001"
outage_source:
  csrf_token: "csrf"
settings:
  timezone: "Europe/Kyiv"
  liveness_timeout: 240
  send_batch_size: "10"
  cities: ["Одеса", "Київ"]
aws:
  region: "eu-west-1"
  table_name: "my_table"
"""


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("TG_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("DDB_TABLE", "subscribers")
    for var in ("TUYA_ACCESS_ID", "TUYA_DEVICES", "TIMEZONE", "CITIES", "LIVENESS_TIMEOUT", "TG_ADMIN_CHAT_ID"):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestEnvironment:
    def test_minimal(self, env):
        config = load_config()
        assert config.telegram.bot_token == "123:abc"
        assert config.telegram.admin_chat_id is None
        assert config.ddb_table == "subscribers"
        assert config.timezone == "Europe/Kyiv"
        assert config.tuya is None
        assert config.outage_source.url == DEFAULT_OUTAGE_URL
        assert config.timings == Timings()

    def test_missing_table(self, env):
        env.delenv("DDB_TABLE")
        with pytest.raises(ConfigError):
            load_config()

    def test_tuya_and_timings(self, env):
        env.setenv("TUYA_ENDPOINT", "https://openapi.tuyaeu.com")
        env.setenv("TUYA_ACCESS_ID", "id")
        env.setenv("TUYA_ACCESS_KEY", "key")
        env.setenv("TUYA_DEVICES", "42:bf0001, 43:bf0002")
        env.setenv("LIVENESS_TIMEOUT", "300")
        env.setenv("CITIES", "Одеса, Київ")

        config = load_config()
        assert config.tuya.devices == {"42": "bf0001", "43": "bf0002"}
        assert config.timings.liveness_timeout == 300.0
        assert config.cities == ["Одеса", "Київ"]

    def test_invalid_timing(self, env):
        env.setenv("LIVENESS_TIMEOUT", "three minutes")
        with pytest.raises(ConfigError):
            load_config()


class TestYaml:
    def test_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        config = load_config(use_env=False, config_path=str(path))

        assert config.telegram.admin_chat_id == "555"
        assert config.ddb_table == "my_table"
        assert config.tuya.devices == {"42": "bf0001"}
        assert config.outage_source.csrf_token == "csrf"
        assert config.timings.liveness_timeout == 240.0
        assert config.timings.send_batch_size == 10
        assert config.timings.dedup_window == 10
        assert config.cities == ["Одеса", "Київ"]

    def test_missing_token(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("telegram: {}\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(use_env=False, config_path=str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(use_env=False, config_path=str(tmp_path / "nope.yaml"))

    def test_aws_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")
        aws = get_aws_config(str(path))
        assert aws == {"region": "eu-west-1", "stack_name": "power-watch", "table_name": "my_table"}


class TestDeviceMap:
    def test_empty(self):
        assert parse_device_map("") == {}
        assert parse_device_map(None) == {}

    def test_dict(self):
        assert parse_device_map({42: "bf0001"}) == {"42": "bf0001"}

    def test_invalid_entry(self):
        with pytest.raises(ConfigError):
            parse_device_map("42-bf0001")
