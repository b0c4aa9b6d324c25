"""Configuration helpers for fediverse-radar.

Settings come from (highest precedence first) explicit overrides, environment
variables, a key=value config file, and built-in defaults.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import dotenv_values, load_dotenv

from .errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"

# Load environment variables early so downstream modules can rely on them.
load_dotenv(ENV_PATH, override=False)

LOGGER = logging.getLogger(__name__)

TARGET_ACCOUNT_KEY = "TARGET_ACCOUNT"
CHECK_INSTANCE_KEY = "CHECK_INSTANCE"
WRITE_INSTANCE_KEY = "WRITE_INSTANCE"
FOLLOWING_EXPORT_KEY = "FOLLOWING_EXPORT"
FALLBACK_INSTANCES_KEY = "FALLBACK_INSTANCES"
CONCURRENCY_KEY = "CONCURRENCY"
REQUEST_TIMEOUT_KEY = "REQUEST_TIMEOUT"
REQUEST_PAUSE_KEY = "REQUEST_PAUSE_MS"
ROTATE_AFTER_KEY = "ROTATE_AFTER_CHECKS"
MAX_RATE_LIMIT_RETRIES_KEY = "MAX_RATE_LIMIT_RETRIES"
OUTPUT_DIR_KEY = "OUTPUT_DIR"

# Environment variable that overrides each config-file key.
ENV_OVERRIDES: Dict[str, str] = {
    TARGET_ACCOUNT_KEY: "RADAR_TARGET_ACCOUNT",
    CHECK_INSTANCE_KEY: "BSKY_CHECK_INSTANCE",
    WRITE_INSTANCE_KEY: "BSKY_WRITE_INSTANCE",
    FOLLOWING_EXPORT_KEY: "RADAR_FOLLOWING_EXPORT",
    FALLBACK_INSTANCES_KEY: "RADAR_FALLBACK_INSTANCES",
    CONCURRENCY_KEY: "RADAR_CONCURRENCY",
    REQUEST_TIMEOUT_KEY: "RADAR_REQUEST_TIMEOUT",
    REQUEST_PAUSE_KEY: "RADAR_REQUEST_PAUSE_MS",
    ROTATE_AFTER_KEY: "RADAR_ROTATE_AFTER_CHECKS",
    MAX_RATE_LIMIT_RETRIES_KEY: "RADAR_MAX_RATE_LIMIT_RETRIES",
    OUTPUT_DIR_KEY: "RADAR_OUTPUT_DIR",
}

DEFAULT_CONFIG_PATH = Path("radar.conf")
DEFAULT_CONCURRENCY = 10
DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_REQUEST_PAUSE_MS = 50
DEFAULT_ROTATE_AFTER_CHECKS = 299
DEFAULT_MAX_RATE_LIMIT_RETRIES = 5
DEFAULT_OUTPUT_DIR = Path(".")

BLUESKY_PUBLIC_API = "https://public.api.bsky.app"
BLUESKY_WEB = "https://bsky.app"


@dataclass(frozen=True)
class RadarConfig:
    """Resolved settings handed to the prober, runner and flows."""

    target_account: Optional[str] = None
    check_instance: Optional[str] = None
    write_instance: Optional[str] = None
    following_export: Optional[Path] = None
    fallback_instances: Tuple[str, ...] = ()
    concurrency: int = DEFAULT_CONCURRENCY
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    request_pause_seconds: float = DEFAULT_REQUEST_PAUSE_MS / 1000.0
    rotate_after_checks: int = DEFAULT_ROTATE_AFTER_CHECKS
    max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES
    rate_limit_backoff_seconds: float = 1.0
    transient_retries: int = 2
    output_dir: Path = DEFAULT_OUTPUT_DIR
    bluesky_api_base: str = BLUESKY_PUBLIC_API
    bluesky_web_base: str = BLUESKY_WEB
    user_agent: str = "FediverseRadar/1.0"

    @property
    def link_instance(self) -> Optional[str]:
        """Instance used for generated Mastodon links; falls back to the check instance."""
        return self.write_instance or self.check_instance

    @property
    def instances(self) -> Tuple[str, ...]:
        ordered = []
        for name in (self.check_instance, *self.fallback_instances):
            if name and name not in ordered:
                ordered.append(name)
        return tuple(ordered)

    def require_check_instance(self) -> str:
        if not self.check_instance:
            raise ConfigurationError(
                f"{CHECK_INSTANCE_KEY} is not configured. Set it in the config file, "
                f"export {ENV_OVERRIDES[CHECK_INSTANCE_KEY]}, or pass --check-instance."
            )
        return self.check_instance

    def require_target_account(self) -> str:
        if not self.target_account:
            raise ConfigurationError(
                f"{TARGET_ACCOUNT_KEY} is not configured. Set it in the config file, "
                f"export {ENV_OVERRIDES[TARGET_ACCOUNT_KEY]}, or pass --actor."
            )
        return self.target_account


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _clean_instance(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip()
    for prefix in ("https://", "http://"):
        if cleaned.lower().startswith(prefix):
            cleaned = cleaned[len(prefix):]
    cleaned = cleaned.strip("/").lower()
    return cleaned or None


def _parse_int(key: str, raw: Optional[str], default: int, *, minimum: int = 0) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer; received '{raw}'.") from exc
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}; received {value}.")
    return value


def _parse_float(key: str, raw: Optional[str], default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number; received '{raw}'.") from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive; received {value}.")
    return value


def read_config_file(path: Path) -> Dict[str, str]:
    """Parse a key=value config file; blank values are dropped."""

    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    if not path.is_file():
        raise ConfigurationError(f"Config path is not a file: {path}")
    values = dotenv_values(path)
    return {key.strip().upper(): value.strip() for key, value in values.items() if value}


def load_config(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Optional[str]]] = None,
) -> RadarConfig:
    """Resolve configuration from overrides, environment, config file and defaults.

    ``path`` is optional; when omitted, ``radar.conf`` in the working directory is
    read if present. ``overrides`` uses the config-file key names and skips
    ``None`` values, so argparse namespaces can be passed through directly.
    """

    file_values: Dict[str, str] = {}
    if path is not None:
        file_values = read_config_file(path)
    elif DEFAULT_CONFIG_PATH.is_file():
        file_values = read_config_file(DEFAULT_CONFIG_PATH)

    explicit = {k: str(v) for k, v in (overrides or {}).items() if v not in (None, "")}

    def lookup(key: str) -> Optional[str]:
        if key in explicit:
            return explicit[key]
        env_value = _get_env(ENV_OVERRIDES[key])
        if env_value is not None:
            return env_value
        return file_values.get(key)

    fallback_raw = lookup(FALLBACK_INSTANCES_KEY) or ""
    fallbacks = tuple(
        name for name in (_clean_instance(part) for part in fallback_raw.split(",")) if name
    )
    following_export = lookup(FOLLOWING_EXPORT_KEY)
    pause_ms = _parse_int(REQUEST_PAUSE_KEY, lookup(REQUEST_PAUSE_KEY), DEFAULT_REQUEST_PAUSE_MS)

    for key in sorted(set(file_values) - set(ENV_OVERRIDES)):
        LOGGER.warning("Ignoring unknown config key %s", key)

    return RadarConfig(
        target_account=lookup(TARGET_ACCOUNT_KEY),
        check_instance=_clean_instance(lookup(CHECK_INSTANCE_KEY)),
        write_instance=_clean_instance(lookup(WRITE_INSTANCE_KEY)),
        following_export=Path(following_export).expanduser() if following_export else None,
        fallback_instances=fallbacks,
        concurrency=_parse_int(CONCURRENCY_KEY, lookup(CONCURRENCY_KEY), DEFAULT_CONCURRENCY, minimum=1),
        request_timeout_seconds=_parse_float(
            REQUEST_TIMEOUT_KEY, lookup(REQUEST_TIMEOUT_KEY), DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
        request_pause_seconds=pause_ms / 1000.0,
        rotate_after_checks=_parse_int(
            ROTATE_AFTER_KEY, lookup(ROTATE_AFTER_KEY), DEFAULT_ROTATE_AFTER_CHECKS, minimum=1
        ),
        max_rate_limit_retries=_parse_int(
            MAX_RATE_LIMIT_RETRIES_KEY, lookup(MAX_RATE_LIMIT_RETRIES_KEY), DEFAULT_MAX_RATE_LIMIT_RETRIES
        ),
        output_dir=Path(lookup(OUTPUT_DIR_KEY) or DEFAULT_OUTPUT_DIR).expanduser(),
    )
