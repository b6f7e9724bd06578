# provisioning/config_models.py
# -*- coding: utf-8 -*-
"""
Pydantic models for application configuration.

This module defines the structured settings shared by every bundle
entrypoint: logging, the dependency wait budget, database connection
parameters and cross-application integration. Component specific settings
(which read the environment variable names used by each bundle) live next
to the component that owns them.
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Default Static Values (can be overridden by config file/env/cli) ---
LOG_PREFIX_DEFAULT: str = "[BUNDLE]"
LOG_LEVEL_DEFAULT: str = "INFO"

WAIT_MAX_ATTEMPTS_DEFAULT: int = 60
WAIT_DELAY_SECONDS_DEFAULT: float = 2.0

MYSQL_PORT_DEFAULT: int = 3306
POSTGRES_PORT_DEFAULT: int = 5432

STATE_DIR_DEFAULT: Path = Path("/var/www/html/clouve/installed")
APACHE_CONFIG_DEFAULT: Path = Path("/etc/apache2/apache2.conf")

SYMBOLS_DEFAULT: Dict[str, str] = {
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
    "step": "➡️",
    "gear": "⚙️",
    "package": "📦",
    "rocket": "🚀",
    "sparkles": "✨",
    "critical": "🔥",
    "debug": "🐛",
}

DatabaseEngine = Literal["mysql", "postgres"]


class DatabaseSettings(BaseModel):
    """Connection parameters for one database server."""

    engine: DatabaseEngine = Field(
        default="mysql", description="Database engine: 'mysql' or 'postgres'."
    )
    host: str = Field(default="localhost", description="Database host.")
    port: int = Field(default=MYSQL_PORT_DEFAULT, description="Database port.")
    name: str = Field(default="", description="Database name.")
    user: str = Field(default="", description="Database username.")
    password: str = Field(
        default="", description="Database password.", exclude=True
    )

    def describe(self) -> str:
        """Human readable target without credentials."""
        return f"{self.engine}://{self.user}@{self.host}:{self.port}/{self.name}"


class WaitSettings(BaseModel):
    """Retry budget for dependency polling."""

    max_attempts: int = Field(
        default=WAIT_MAX_ATTEMPTS_DEFAULT,
        ge=1,
        description="Number of connection attempts before giving up.",
    )
    delay_seconds: float = Field(
        default=WAIT_DELAY_SECONDS_DEFAULT,
        ge=0,
        description="Fixed sleep between attempts, in seconds.",
    )


class IntegrationSettings(BaseModel):
    """
    Cross-application integration driven by numbered SQL fragments.

    ``fragments`` is filled once at process entry by scanning
    ``<sql_prefix>_1``, ``<sql_prefix>_2``, ... in the environment.
    """

    enabled: bool = Field(
        default=False, description="Explicit enable flag for the integration."
    )
    name: str = Field(
        default="integration",
        description="Short name used for the completion marker file.",
    )
    sql_prefix: str = Field(
        default="", description="Environment prefix of the SQL fragments."
    )
    fragments: List[str] = Field(default_factory=list)
    verify_objects: List[str] = Field(
        default_factory=list,
        description="Tables/views that must be queryable after execution.",
    )
    peer_database: Optional[DatabaseSettings] = Field(
        default=None,
        description="Database of the other application, waited for before executing.",
    )
    peer_objects: List[str] = Field(
        default_factory=list,
        description="Objects in the peer database that must exist before executing.",
    )
    peer_wait: WaitSettings = Field(
        default_factory=lambda: WaitSettings(max_attempts=30, delay_seconds=2.0)
    )

    @property
    def marker_name(self) -> str:
        return f".{self.name}-integration-setup"


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BUNDLE_", env_nested_delimiter="__", extra="ignore"
    )

    log_level: str = Field(
        default=LOG_LEVEL_DEFAULT, description="Logging level name."
    )
    log_prefix: str = Field(
        default=LOG_PREFIX_DEFAULT, description="Prefix for console log lines."
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Console log format. JSON is forced inside Kubernetes.",
    )
    wait: WaitSettings = Field(default_factory=WaitSettings)

    symbols: Dict[str, str] = Field(
        default_factory=lambda: dict(SYMBOLS_DEFAULT)
    )
