"""
Configuration loader for Power Watch.
Loads settings from config.yaml (local) or environment variables (Lambda).
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_OUTAGE_URL = "https://www.dtek-oem.com.ua/ua/ajax"


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""


@dataclass
class TelegramConfig:
    bot_token: str
    admin_chat_id: Optional[str] = None


@dataclass
class OutageSourceConfig:
    url: str = DEFAULT_OUTAGE_URL
    timeout: float = 15.0
    csrf_token: str = ""
    cookie: str = ""


@dataclass
class TuyaConfig:
    endpoint: str
    access_id: str
    access_key: str
    # subscriber_id -> Tuya device id
    devices: Dict[str, str] = field(default_factory=dict)


@dataclass
class Timings:
    """Interval constants, all in seconds unless noted."""

    liveness_timeout: float = 180
    evaluation_interval: float = 60
    startup_delay: float = 5
    outage_check_interval: float = 900
    outage_cache_ttl: float = 900
    mode_write_debounce: float = 2
    dedup_window: float = 10
    pinned_refresh_interval: float = 30
    store_cache_ttl: float = 15
    send_batch_size: int = 25
    send_batch_pause: float = 1
    concurrency: int = 20
    http_timeout: float = 10


@dataclass
class AppConfig:
    telegram: TelegramConfig
    ddb_table: str
    timezone: str = "Europe/Kyiv"
    outage_source: OutageSourceConfig = field(default_factory=OutageSourceConfig)
    tuya: Optional[TuyaConfig] = None
    timings: Timings = field(default_factory=Timings)
    # Known city names used to normalize /address input
    cities: list = field(default_factory=list)


# Environment variable name -> Timings field
TIMING_ENV_VARS = {
    "LIVENESS_TIMEOUT": "liveness_timeout",
    "EVALUATION_INTERVAL": "evaluation_interval",
    "STARTUP_DELAY": "startup_delay",
    "OUTAGE_CHECK_INTERVAL": "outage_check_interval",
    "OUTAGE_CACHE_TTL": "outage_cache_ttl",
    "MODE_WRITE_DEBOUNCE": "mode_write_debounce",
    "DEDUP_WINDOW": "dedup_window",
    "PINNED_REFRESH_INTERVAL": "pinned_refresh_interval",
    "STORE_CACHE_TTL": "store_cache_ttl",
    "SEND_BATCH_SIZE": "send_batch_size",
    "SEND_BATCH_PAUSE": "send_batch_pause",
    "CONCURRENCY": "concurrency",
    "HTTP_TIMEOUT": "http_timeout",
}


def load_yaml_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in project root.

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
    """
    if config_path is None:
        # Project root is two levels above src/power_watch/
        path = Path(__file__).resolve().parents[2] / "config.yaml"
    else:
        path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            f"Copy config.template.yaml to config.yaml and fill in your credentials."
        )

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_device_map(raw: Any) -> Dict[str, str]:
    """
    Parse the subscriber -> Tuya device mapping.

    Accepts a dict (YAML) or "chat_id:device_id,chat_id:device_id" (env var).
    """
    if not raw:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    devices = {}
    for pair in str(raw).split(","):
        pair = pair.strip()
        if not pair:
            continue
        if ":" not in pair:
            raise ConfigError(f"Invalid TUYA_DEVICES entry: {pair!r} (expected chat_id:device_id)")
        chat_id, device_id = pair.split(":", 1)
        devices[chat_id.strip()] = device_id.strip()
    return devices


def _coerce_timings(values: Dict[str, Any]) -> Timings:
    timings = Timings()
    for f in fields(Timings):
        if f.name not in values or values[f.name] in (None, ""):
            continue
        caster = int if f.type in (int, "int") else float
        try:
            setattr(timings, f.name, caster(values[f.name]))
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for {f.name}: {values[f.name]!r}")
    return timings


def load_config(use_env: bool = True, config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from environment variables or config file.

    Priority:
    1. Environment variables (for Lambda deployment)
    2. config.yaml file (for local development)

    Args:
        use_env: If True, try environment variables first
        config_path: Optional path to config file

    Returns:
        AppConfig object with all settings
    """
    if use_env and os.environ.get("TG_BOT_TOKEN"):
        return _config_from_env(os.environ)

    cfg = load_yaml_config(config_path)
    try:
        telegram = cfg["telegram"]
        bot_token = telegram["bot_token"]
    except (KeyError, TypeError):
        raise ConfigError("telegram.bot_token is required in config.yaml")

    tuya = None
    tuya_cfg = cfg.get("tuya") or {}
    if tuya_cfg.get("access_id"):
        tuya = TuyaConfig(
            endpoint=tuya_cfg["endpoint"],
            access_id=tuya_cfg["access_id"],
            access_key=tuya_cfg["access_key"],
            devices=parse_device_map(tuya_cfg.get("devices")),
        )

    outage_cfg = cfg.get("outage_source") or {}
    settings = cfg.get("settings") or {}
    admin_chat_id = telegram.get("admin_chat_id")

    return AppConfig(
        telegram=TelegramConfig(
            bot_token=bot_token,
            admin_chat_id=str(admin_chat_id) if admin_chat_id else None,
        ),
        ddb_table=cfg.get("aws", {}).get("table_name", "power_watch_subscribers"),
        timezone=settings.get("timezone", "Europe/Kyiv"),
        outage_source=OutageSourceConfig(
            url=outage_cfg.get("url", DEFAULT_OUTAGE_URL),
            timeout=float(outage_cfg.get("timeout", 15)),
            csrf_token=outage_cfg.get("csrf_token", ""),
            cookie=outage_cfg.get("cookie", ""),
        ),
        tuya=tuya,
        timings=_coerce_timings(settings),
        cities=list(settings.get("cities") or []),
    )


def _config_from_env(env: Dict[str, str]) -> AppConfig:
    table = env.get("DDB_TABLE")
    if not table:
        raise ConfigError("DDB_TABLE environment variable is required")

    tuya = None
    if env.get("TUYA_ACCESS_ID"):
        tuya = TuyaConfig(
            endpoint=env["TUYA_ENDPOINT"],
            access_id=env["TUYA_ACCESS_ID"],
            access_key=env["TUYA_ACCESS_KEY"],
            devices=parse_device_map(env.get("TUYA_DEVICES", "")),
        )

    timing_values = {name: env.get(var) for var, name in TIMING_ENV_VARS.items()}
    cities = [c.strip() for c in env.get("CITIES", "").split(",") if c.strip()]

    return AppConfig(
        telegram=TelegramConfig(
            bot_token=env["TG_BOT_TOKEN"],
            admin_chat_id=env.get("TG_ADMIN_CHAT_ID") or None,
        ),
        ddb_table=table,
        timezone=env.get("TIMEZONE", "Europe/Kyiv"),
        outage_source=OutageSourceConfig(
            url=env.get("OUTAGE_SOURCE_URL", DEFAULT_OUTAGE_URL),
            timeout=float(env.get("OUTAGE_SOURCE_TIMEOUT", "15")),
            csrf_token=env.get("OUTAGE_SOURCE_CSRF_TOKEN", ""),
            cookie=env.get("OUTAGE_SOURCE_COOKIE", ""),
        ),
        tuya=tuya,
        timings=_coerce_timings(timing_values),
        cities=cities,
    )


def get_aws_config(config_path: Optional[str] = None) -> Dict[str, str]:
    """
    Get AWS deployment configuration from config file.

    Returns:
        Dictionary with region, stack_name and table_name
    """
    cfg = load_yaml_config(config_path)
    aws_cfg = cfg.get("aws", {})

    return {
        "region": aws_cfg.get("region", "eu-central-1"),
        "stack_name": aws_cfg.get("stack_name", "power-watch"),
        "table_name": aws_cfg.get("table_name", "power_watch_subscribers"),
    }
