# bundles/base_component.py
# -*- coding: utf-8 -*-
"""
Base class for all bundle components.

A component describes one application image: how to reach its database,
how to install or upgrade it once per version, how to bring its
configuration in line with the environment on every start, which
integration it may apply and which command the container hands off to.
"""

import contextlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.command_utils import log_message, run_command
from common.db_utils import get_db_connection
from provisioning.config_models import (
    STATE_DIR_DEFAULT,
    SYMBOLS_DEFAULT,
    AppSettings,
    DatabaseSettings,
    IntegrationSettings,
)
from provisioning.config_reconciler import (
    ConfigBinding,
    ConfigFormat,
    reconcile_file,
)
from provisioning.errors import ReconciliationQueryFailed
from provisioning.state_manager import StateStore


class ComponentSettings(BaseSettings):
    """
    Settings shared by every component.

    Subclasses declare their fields with the environment variable names the
    application images already use, through ``validation_alias``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUNDLE_", populate_by_name=True, extra="ignore"
    )

    state_dir: Path = Field(
        default=STATE_DIR_DEFAULT,
        description="Directory holding installation markers (BUNDLE_STATE_DIR).",
    )
    version: str = Field(
        default="0", description="Application version shipped by the image."
    )

    def database(self) -> Optional[DatabaseSettings]:
        return None


class BaseComponent(ABC):
    """
    Base class for all bundle components.

    Args:
        settings: The component settings, read from the environment once.
        app_settings: The entrypoint-wide settings.
        logger: Optional logger instance.
        fragments: Integration SQL fragments collected at process entry.
        connect: Connection factory, replaceable in tests.
    """

    name: str = ""
    metadata: Dict[str, Any] = {
        "description": "",
        "database": None,
    }
    settings_class = ComponentSettings
    integration_sql_prefix: Optional[str] = None

    def __init__(
        self,
        settings: ComponentSettings,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
        fragments: Optional[List[str]] = None,
        connect: Callable[[DatabaseSettings], Optional[Any]] = get_db_connection,
    ):
        self.settings = settings
        self.app_settings = app_settings
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.fragments = list(fragments or [])
        self.connect = connect
        self.symbols = (
            app_settings.symbols
            if app_settings and app_settings.symbols
            else SYMBOLS_DEFAULT
        )
        self.state_store = StateStore(
            settings.state_dir,
            self.name or self.__class__.__name__.lower(),
            settings.version,
            app_settings,
            self.logger,
        )

    @property
    def database(self) -> Optional[DatabaseSettings]:
        return self.settings.database()

    def is_installed(self) -> bool:
        return self.state_store.is_installed()

    def prepare(self) -> None:
        """Runs after the database is reachable and before the installer gate."""

    @abstractmethod
    def install(self) -> bool:
        """
        First-time setup of the application.

        Returns:
            True if the installation was successful, False otherwise.
        """

    def upgrade(self) -> bool:
        """
        Moves an existing installation to the current version.

        Returns:
            True if the upgrade was successful, False otherwise.
        """
        self._log(
            f"No upgrade step for {self.name}; recording version {self.settings.version}."
        )
        return True

    def reconcile(self) -> None:
        """Brings configuration in line with the environment. Runs on every start."""

    def integration_settings(self) -> Optional[IntegrationSettings]:
        return None

    @abstractmethod
    def default_command(self) -> List[str]:
        """Command the container hands off to when none is given."""

    def command_for(self, command: Optional[List[str]] = None) -> List[str]:
        """Final command line for the container arguments ``command``."""
        return list(command) if command else self.default_command()

    def handoff_env(self, base_env: Mapping[str, str]) -> Dict[str, str]:
        """Environment for the wrapped application."""
        return dict(base_env)

    def _log(self, message: str, level: str = "info") -> None:
        log_message(message, level, self.logger, self.app_settings)

    @contextlib.contextmanager
    def database_session(
        self, db: Optional[DatabaseSettings] = None
    ) -> Iterator[Any]:
        """
        Yields an open connection to ``db`` (the component database by
        default) and closes it.

        Raises:
            ReconciliationQueryFailed: No database is configured or it
                cannot be reached.
        """
        db = db if db is not None else self.database
        if db is None:
            raise ReconciliationQueryFailed(f"{self.name} has no database")
        conn = self.connect(db)
        if conn is None:
            raise ReconciliationQueryFailed(
                f"Could not connect to {db.describe()}"
            )
        try:
            yield conn
        finally:
            conn.close()

    def fix_permissions(
        self,
        path: Path,
        owner: str = "www-data:www-data",
        mode: str = "755",
        check: bool = True,
    ) -> None:
        """Recursively sets owner and mode, like the images do after copying files."""
        run_command(
            ["chown", "-R", owner, str(path)],
            self.app_settings,
            check=check,
            current_logger=self.logger,
        )
        run_command(
            ["chmod", "-R", mode, str(path)],
            self.app_settings,
            check=check,
            current_logger=self.logger,
        )

    def set_apache_log_level(
        self, level: Optional[str], config_file: Path, source: str
    ) -> None:
        """Points Apache's ``LogLevel`` directive at ``level`` when one is given."""
        if not level:
            return
        reconcile_file(
            config_file,
            ConfigFormat.DIRECTIVE,
            [ConfigBinding("LogLevel", level, source)],
            self.app_settings,
            self.logger,
        )
