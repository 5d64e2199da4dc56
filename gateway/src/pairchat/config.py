from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .messages import DEFAULT_MAX_TEXT_LEN

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class GatewayConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    db_path: str | None = None
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    max_text_len: int = DEFAULT_MAX_TEXT_LEN
    log_level: str = "INFO"


def _parse_non_negative_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be non-negative")
    return parsed


def _parse_positive_int(name: str, default: int) -> int:
    parsed = _parse_non_negative_int(name, default)
    if parsed == 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_log_level(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    level = raw.upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"{name} must be one of {', '.join(LOG_LEVELS)}")
    return level


def load_config_from_env() -> GatewayConfig:
    defaults = GatewayConfig()
    return GatewayConfig(
        host=os.environ.get("PAIRCHAT_HOST") or defaults.host,
        port=_parse_positive_int("PAIRCHAT_PORT", defaults.port),
        db_path=os.environ.get("PAIRCHAT_DB_PATH") or None,
        ping_interval_s=_parse_positive_int("PAIRCHAT_PING_INTERVAL_S", defaults.ping_interval_s),
        ping_miss_limit=_parse_non_negative_int("PAIRCHAT_PING_MISS_LIMIT", defaults.ping_miss_limit),
        max_msg_size=_parse_positive_int("PAIRCHAT_MAX_MSG_SIZE", defaults.max_msg_size),
        max_text_len=_parse_positive_int("PAIRCHAT_MAX_TEXT_LEN", defaults.max_text_len),
        log_level=_parse_log_level("PAIRCHAT_LOG_LEVEL", defaults.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
