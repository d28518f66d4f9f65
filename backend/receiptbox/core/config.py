"""Simple configuration management.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order.  You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_BACKEND_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_BACKEND_ENV) and _BACKEND_ENV not in _candidate_envs:
    _candidate_envs.append(_BACKEND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    PROJECT_NAME: str = "Receiptbox"
    ENVIRONMENT: str = Field(default="development")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    # Use a local SQLite file when no DATABASE_URL is configured (dev only)
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=True)

    # Redis (filter cache + rate limiting)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # Auth
    SECRET_KEY: str = Field(default="changeme")
    JWT_ALGORITHM: str = Field(default="HS256")
    DEV_AUTH_BYPASS: bool = Field(default=False)

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    # Bulk operations
    # "redis", "memory" or "none". "memory" is per process, so only use it
    # with a single worker; "redis" is shared and invalidated across workers.
    FILTER_CACHE_BACKEND: str = Field(default="none")
    FILTER_CACHE_TTL_SECONDS: int = Field(default=120)
    MAX_BULK_RECEIPTS: int = Field(default=1000)
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    BULK_MUTATIONS_PER_MINUTE: int = Field(default=20)


# Instantiate global settings
settings = Settings()
