"""Configuration management.

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
# python-dotenv discovers from the current working directory.  As a last
# resort, a .env in the backend directory may be used.  Files are loaded in
# order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)

_DEFAULT_TEMPLATES_FILE = (_THIS_FILE.parent.parent / "data" / "bank_templates.yml").as_posix()


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
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Ledgerly"
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # OpenAI
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_EMBEDDING_MODEL: str = Field(default="text-embedding-3-small")
    OPENAI_CHAT_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_TIMEOUT_SECONDS: float = Field(default=30.0)

    # Auth is out of scope; the dev user is used when no user header is sent.
    DEV_AUTH_BYPASS: bool = Field(default=True)

    # CORS
    FRONTEND_BASE_URL: Optional[str] = Field(default=None)
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Background work
    DRAMATIQ_BROKER_URL: Optional[str] = Field(default=None)

    # Categorisation
    CATEGORY_CACHE_TTL_SECONDS: int = Field(default=3600)

    # Statements
    BANK_TEMPLATES_FILE: str = Field(default=_DEFAULT_TEMPLATES_FILE)
    SSE_POLL_INTERVAL_SECONDS: float = Field(default=0.5)
    SSE_MAX_DURATION_SECONDS: int = Field(default=300)

    # Workflows
    WORKFLOW_MAX_DELAY_SECONDS: int = Field(default=300)
    SCHEDULER_ENABLED: bool = Field(default=False)
    SCHEDULER_INTERVAL_SECONDS: int = Field(default=60)

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    @property
    def broker_url(self) -> str:
        return self.DRAMATIQ_BROKER_URL or self.REDIS_URL


# Instantiate global settings
settings = Settings()
