"""
Configuration loading for rheinpegel.

Loads config.toml and the environment on top of the built-in defaults in
constants.py. CLI flags are applied afterwards by the entry point via
Settings.with_overrides().
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from rheinpegel.constants import (
    AUTO_REFRESH_DEFAULT,
    CHART_HEIGHT,
    CHART_MAX_POINTS,
    CHART_WIDTH,
    DEFAULT_API_URL,
    DEFAULT_FALLBACK_URL,
    FETCH_MAX_RETRIES,
    FETCH_RETRY_DELAY_SEC,
    FETCH_TIMEOUT_SEC,
    HISTORY_MAX_AGE_HOURS,
    HISTORY_MAX_ENTRIES,
    REFRESH_INTERVAL_SEC,
    STATE_FILE_DEFAULT,
    STORAGE_KEY_DEFAULT,
    STORAGE_QUOTA_BYTES,
)
from rheinpegel.utils import coerce_float, coerce_int

CONFIG_ENV = "RHEINPEGEL_CONFIG"
STATE_FILE_ENV = "RHEINPEGEL_STATE_FILE"
LOG_LEVEL_ENV = "LOG_LEVEL"

# Config file path
CONFIG_PATH = Path(__file__).parent.parent / "config.toml"


def load_toml_config(path: Path) -> dict[str, Any]:
    """
    Read a TOML config file.

    Any read or parse error results in an empty config so the runtime can
    fall back to built-in defaults.
    """
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    fallback_url: str = DEFAULT_FALLBACK_URL
    timeout_sec: float = FETCH_TIMEOUT_SEC
    max_retries: int = FETCH_MAX_RETRIES
    retry_delay_sec: float = FETCH_RETRY_DELAY_SEC
    storage_key: str = STORAGE_KEY_DEFAULT
    state_file: str = str(STATE_FILE_DEFAULT)
    max_entries: int = HISTORY_MAX_ENTRIES
    max_age_hours: float = HISTORY_MAX_AGE_HOURS
    quota_bytes: int = STORAGE_QUOTA_BYTES
    refresh_interval_sec: float = REFRESH_INTERVAL_SEC
    auto_refresh: bool = AUTO_REFRESH_DEFAULT
    chart_max_points: int = CHART_MAX_POINTS
    chart_width: int = CHART_WIDTH
    chart_height: int = CHART_HEIGHT
    log_level: str = "INFO"
    log_file: str | None = None

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes) if changes else self


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = cfg.get(name)
    return value if isinstance(value, dict) else {}


def _str_value(section: Mapping[str, Any], key: str, default: str) -> str:
    value = section.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _bool_value(section: Mapping[str, Any], key: str, default: bool) -> bool:
    value = section.get(key)
    return value if isinstance(value, bool) else default


def settings_from_config(cfg: Mapping[str, Any]) -> Settings:
    """Build Settings from a parsed config mapping, keeping defaults for bad values."""
    base = Settings()
    api = _section(cfg, "api")
    storage = _section(cfg, "storage")
    refresh = _section(cfg, "refresh")
    chart = _section(cfg, "chart")
    logging_cfg = _section(cfg, "logging")

    log_file = logging_cfg.get("file")
    return Settings(
        api_url=_str_value(api, "url", base.api_url),
        fallback_url=_str_value(api, "fallback_url", base.fallback_url),
        timeout_sec=coerce_float(api.get("timeout_sec"), base.timeout_sec) or base.timeout_sec,
        max_retries=coerce_int(api.get("max_retries"), base.max_retries),
        retry_delay_sec=coerce_float(api.get("retry_delay_sec"), base.retry_delay_sec),
        storage_key=_str_value(storage, "key", base.storage_key),
        state_file=_str_value(storage, "state_file", base.state_file),
        max_entries=coerce_int(storage.get("max_entries"), base.max_entries),
        max_age_hours=coerce_float(storage.get("max_age_hours"), base.max_age_hours) or base.max_age_hours,
        quota_bytes=coerce_int(storage.get("quota_bytes"), base.quota_bytes),
        refresh_interval_sec=(
            coerce_float(refresh.get("interval_sec"), base.refresh_interval_sec)
            or base.refresh_interval_sec
        ),
        auto_refresh=_bool_value(refresh, "auto_refresh", base.auto_refresh),
        chart_max_points=coerce_int(chart.get("max_points"), base.chart_max_points),
        chart_width=coerce_int(chart.get("width"), base.chart_width),
        chart_height=coerce_int(chart.get("height"), base.chart_height),
        log_level=_str_value(logging_cfg, "level", base.log_level).upper(),
        log_file=log_file.strip() if isinstance(log_file, str) and log_file.strip() else None,
    )


def resolve_config_path(explicit: str | None = None, env: Mapping[str, str] | None = None) -> Path:
    """Pick the config file: explicit path, then $RHEINPEGEL_CONFIG, then the repo default."""
    env = os.environ if env is None else env
    if explicit:
        return Path(explicit).expanduser()
    from_env = env.get(CONFIG_ENV, "").strip()
    if from_env:
        return Path(from_env).expanduser()
    return CONFIG_PATH


def load_settings(
    config_path: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from config.toml and the environment.

    Precedence (lowest to highest): built-in defaults, config file,
    environment variables. CLI flags are layered on by the caller.
    """
    env = os.environ if env is None else env
    settings = settings_from_config(load_toml_config(resolve_config_path(config_path, env)))

    state_file = env.get(STATE_FILE_ENV, "").strip()
    log_level = env.get(LOG_LEVEL_ENV, "").strip().upper()
    return settings.with_overrides(
        state_file=state_file or None,
        log_level=log_level or None,
    )
