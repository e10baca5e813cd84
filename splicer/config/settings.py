"""
Branch Splicer - Unified Configuration

Single source of truth for runtime configuration. Both the intake API and
the CLI load settings through get_settings().

ENVIRONMENT VARIABLES:
----------------------
Environment control:
  ENVIRONMENT                      - dev | staging | prod (default: dev)
  LOG_LEVEL                        - DEBUG | INFO | WARNING | ERROR (default: INFO)

Storage:
  SPLICER_DB_URL                   - Postgres DSN; unset runs on the in-memory workbook
  SPLICER_DB_SCHEMA                - Schema holding the ledger tables (default: splice)
  SPLICER_ANALYTICS_LEDGER         - Name of the analytics ledger

Locking:
  SPLICER_LOCK_NAME                - Name of the coarse splice lock
  SPLICER_LOCK_TIMEOUT_MS          - Bounded wait per acquisition attempt
  SPLICER_LOCK_BACKOFF_MAX_SECONDS - Cap on the sleep between attempts

Routing:
  SPLICER_ROUTING_FILE             - JSON routing table; unset uses the built-in table

Intake:
  SPLICER_WEBHOOK_SECRET           - HMAC-SHA256 secret for X-Splicer-Signature

Usage:
------
    from splicer.config.settings import get_settings

    settings = get_settings()
    print(settings.SPLICER_LOCK_TIMEOUT_MS)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables with fallback to
    an env file (ENV_FILE, default .env).
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # STORAGE
    # =========================================================================

    SPLICER_DB_URL: str | None = Field(
        default=None,
        description="Postgres connection string; unset selects the in-memory workbook",
    )
    SPLICER_DB_SCHEMA: str = Field(
        default="splice",
        pattern=r"^[a-z_][a-z0-9_]*$",
        description="Schema holding ledger_rows and ledger_counters",
    )
    SPLICER_ANALYTICS_LEDGER: str = Field(
        default="ID Map & Analytics",
        description="Name of the analytics / identity map ledger",
    )

    # =========================================================================
    # LOCKING
    # =========================================================================

    SPLICER_LOCK_NAME: str = Field(default="splice", description="Coarse splice lock name")
    SPLICER_LOCK_TIMEOUT_MS: int = Field(
        default=20000,
        gt=0,
        description="Bounded wait per lock acquisition attempt",
    )
    SPLICER_LOCK_BACKOFF_MAX_SECONDS: float = Field(
        default=5.0,
        ge=0,
        description="Maximum sleep between lock acquisition attempts",
    )

    # =========================================================================
    # ROUTING / INTAKE
    # =========================================================================

    SPLICER_ROUTING_FILE: str | None = Field(
        default=None,
        description="Path to a JSON routing table",
    )
    SPLICER_WEBHOOK_SECRET: str | None = Field(
        default=None,
        description="Shared secret for intake webhook signatures",
    )

    # =========================================================================
    # SERVER CONFIGURATION
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8888, description="Server port")

    @property
    def is_production(self) -> bool:
        """Production switches logs to JSON."""
        return self.ENVIRONMENT == "prod"

    @property
    def uses_postgres(self) -> bool:
        return bool(self.SPLICER_DB_URL)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    The environment is read on first call; later calls return the same object.
    """
    return Settings()


def reset_settings() -> None:
    """Drop the cached Settings so the next get_settings() rereads the environment."""
    get_settings.cache_clear()


def configure_logging(settings: Settings | None = None) -> None:
    """
    Install the splicer log handlers at LOG_LEVEL: JSON records in prod,
    colored console lines elsewhere.
    """
    from splicer.core.logging import configure_structured_logging

    if settings is None:
        settings = get_settings()

    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name="splicer",
    )
