from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = _getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    ipfs_api_url: str | None = None
    anchor_webhook_url: str | None = None
    anchor_max_attempts: int = 3
    signing_timeout_seconds: int = 120
    authorized_issuers: frozenset[str] = frozenset()
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)
    jwt_private_key_file: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    def is_authorized_issuer(self, address: str) -> bool:
        return address.strip().lower() in self.authorized_issuers


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    issuers = frozenset(a.lower() for a in _getenv_list("AUTHORIZED_ISSUERS"))
    bad = sorted(a for a in issuers if not _ADDRESS_RE.match(a))
    if bad:
        raise ValueError(f"AUTHORIZED_ISSUERS contains invalid addresses: {bad}")

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None
    ipfs_api_url = _getenv("IPFS_API_URL", "") or None
    anchor_webhook_url = _getenv("ANCHOR_WEBHOOK_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        ipfs_api_url=ipfs_api_url,
        anchor_webhook_url=anchor_webhook_url,
        anchor_max_attempts=_getenv_int("ANCHOR_MAX_ATTEMPTS", 3, minimum=1),
        signing_timeout_seconds=_getenv_int(
            "SIGNING_TIMEOUT_SECONDS", 120, minimum=1
        ),
        authorized_issuers=issuers,
        cors_origins=_getenv_list("CORS_ORIGINS", "http://localhost:5173"),
        jwt_private_key_file=_getenv("JWT_PRIVATE_KEY_FILE", "") or None,
    )


SETTINGS = load_settings()
