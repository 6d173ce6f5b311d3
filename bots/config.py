"""Configuration helpers for the bot runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import overload

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


@overload
def env_int(name: str, *, default: int) -> int: ...


@overload
def env_int(name: str, *, default: None = None) -> int | None: ...


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    discord_token: str
    startgg_api_key: str
    tournament_table_name: str
    aws_region: str = "us-east-1"
    admin_role_id: int | None = None
    guild_id: int | None = None
    startgg_max_retries: int = 3
    cache_enabled: bool = True
    cache_ttl_seconds: int = 30
    cache_max_entries: int = 500
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> EnvironmentConfig:
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        startgg_api_key = need("STARTGG_API_KEY")
        tournament_table_name = need("TOURNAMENT_TABLE_NAME")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            startgg_api_key=startgg_api_key,
            tournament_table_name=tournament_table_name,
            aws_region=os.getenv("AWS_REGION") or "us-east-1",
            admin_role_id=env_int("TOURNAMENT_ADMIN_ROLE_ID"),
            guild_id=env_int("TOURNAMENT_GUILD_ID"),
            startgg_max_retries=env_int("STARTGG_MAX_RETRIES", default=3),
            cache_enabled=env_bool("STARTGG_CACHE_ENABLED", default=True),
            cache_ttl_seconds=env_int("STARTGG_CACHE_TTL_SECONDS", default=30),
            cache_max_entries=env_int("STARTGG_CACHE_MAX_ENTRIES", default=500),
            request_timeout_seconds=env_int("STARTGG_TIMEOUT_SECONDS", default=30),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )


__all__ = ["EnvironmentConfig", "env_bool", "env_int"]
