from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_UPSTREAM_URL = "https://registry.npmjs.org"


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v not in (None, "") else default


def _default_env_path() -> str:
    """
    Default: .env relative to the current working directory.
    """
    return str(Path(".env"))


def load_env_file(env_file: str | None = None) -> str:
    """
    Load env vars from .env.
    Priority:
      1) explicit env_file argument
      2) env var GUARD_ENV_FILE
      3) default .env
    Returns the path used.
    """
    path = env_file or _env("GUARD_ENV_FILE") or _default_env_path()
    load_dotenv(dotenv_path=path, override=False)
    return path


@dataclass(frozen=True)
class GuardSettings:
    # Server
    host: str = "127.0.0.1"
    port: int = 4873

    # Policy file (YAML)
    config_path: str = "security.yml"

    # Upstream registry
    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_timeout: float = 30.0

    log_level: str = "info"

    @staticmethod
    def from_env(env_file: str | None = None) -> "GuardSettings":
        load_env_file(env_file)

        host = _env("GUARD_HOST", "127.0.0.1") or "127.0.0.1"
        port = int(_env("GUARD_PORT", "4873") or "4873")

        config_path = _env("GUARD_CONFIG", "security.yml") or "security.yml"

        upstream_url = _env("GUARD_UPSTREAM_URL", DEFAULT_UPSTREAM_URL) or DEFAULT_UPSTREAM_URL
        upstream_timeout = float(_env("GUARD_UPSTREAM_TIMEOUT", "30") or "30")

        log_level = _env("GUARD_LOG_LEVEL", "info") or "info"

        return GuardSettings(
            host=host,
            port=port,
            config_path=config_path,
            upstream_url=upstream_url.rstrip("/"),
            upstream_timeout=upstream_timeout,
            log_level=log_level,
        )
