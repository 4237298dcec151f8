from __future__ import annotations

import os
from dataclasses import dataclass

import structlog
from dotenv import load_dotenv

_logger = structlog.get_logger(__name__)

DEFAULT_UPSTREAM_URL = "https://storage.googleapis.com/pple-media/hdy-flood/sos.json"
DEFAULT_CACHE_KEY = "request:data:raw"

# 说明：按 APP_ENV 选择环境文件；未设置时回退到 dev.env。已有环境变量优先，不覆盖
_base_dir: str = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
_config_dir: str = os.path.join(_base_dir, "config")
_env_name: str = (os.getenv("APP_ENV") or "").strip().lower()
if _env_name:
    _env_file: str = os.path.join(_config_dir, f"env.{_env_name}")
else:
    _env_file = os.path.join(_config_dir, "dev.env")
if load_dotenv(_env_file, override=False):
    _logger.info("dotenv_env_selected", app_env=_env_name or "(default:dev)", file=_env_file)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _logger.warning("config_value_invalid", key=name, raw=raw, default=default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        _logger.warning("config_value_invalid", key=name, raw=raw, default=default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class AppConfig:
    upstream_url: str
    upstream_timeout: float
    redis_url: str
    redis_password: str | None
    redis_socket_timeout: float
    cache_key: str
    cache_ttl_seconds: float
    memory_ttl_margin_seconds: float
    refresh_workers: int
    health_timeout: float
    log_json: bool
    log_level: str
    suppress_periodic_logs: bool = False

    @staticmethod
    def load_from_env() -> "AppConfig":
        redis_password = os.getenv("REDIS_PASSWORD")
        return AppConfig(
            upstream_url=os.getenv("SOS_UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
            upstream_timeout=_env_float("SOS_UPSTREAM_TIMEOUT", 5.0),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            redis_password=redis_password if redis_password else None,
            redis_socket_timeout=_env_float("REDIS_SOCKET_TIMEOUT", 5.0),
            cache_key=os.getenv("SOS_CACHE_KEY", DEFAULT_CACHE_KEY),
            cache_ttl_seconds=_env_float("SOS_CACHE_TTL_SECONDS", 60.0),
            memory_ttl_margin_seconds=_env_float("SOS_MEMORY_TTL_MARGIN_SECONDS", 5.0),
            refresh_workers=max(1, _env_int("SOS_REFRESH_WORKERS", 1)),
            health_timeout=_env_float("SOS_HEALTH_TIMEOUT", 1.0),
            log_json=_env_bool("LOG_JSON", False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            suppress_periodic_logs=_env_bool("SUPPRESS_PERIODIC_LOGS", False),
        )
