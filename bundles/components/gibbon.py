# bundles/components/gibbon.py
# -*- coding: utf-8 -*-
"""
Gibbon school platform (PHP, MySQL).
"""

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field

from bundles.base_component import BaseComponent, ComponentSettings
from bundles.registry import ComponentRegistry
from common.command_utils import run_command
from common.db_utils import (
    execute_statement,
    fetch_scalar,
    object_is_queryable,
)
from common.file_utils import copy_tree_contents
from provisioning.change_detector import reconcile_tracked_value
from provisioning.config_models import (
    APACHE_CONFIG_DEFAULT,
    MYSQL_PORT_DEFAULT,
    DatabaseSettings,
    IntegrationSettings,
)
from provisioning.config_reconciler import (
    ConfigBinding,
    ConfigFormat,
    reconcile_file,
)
from provisioning.errors import ConfigVariableMissing

SELECT_ABSOLUTE_URL = (
    "SELECT value FROM gibbonSetting WHERE scope = %s AND name = %s"
)
UPSERT_ABSOLUTE_URL = (
    "INSERT INTO gibbonSetting (scope, name, nameDisplay, description, value) "
    "VALUES (%s, %s, %s, %s, %s) "
    "ON DUPLICATE KEY UPDATE value = %s"
)


class GibbonSettings(ComponentSettings):
    version: str = Field(
        default="0", validation_alias=AliasChoices("GIBBON_VERSION")
    )
    package_path: Path = Field(
        default=Path("/clouve/gibbon/package"),
        validation_alias=AliasChoices("GIBBON_PACKAGE_PATH"),
    )
    install_path: Path = Field(
        default=Path("/var/www/html"),
        validation_alias=AliasChoices("GIBBON_INSTALL_PATH"),
    )
    db_host: Optional[str] = Field(default=None, validation_alias=AliasChoices("DB_HOST"))
    db_port: int = Field(
        default=MYSQL_PORT_DEFAULT, validation_alias=AliasChoices("DB_PORT")
    )
    db_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("DB_NAME"))
    db_user: Optional[str] = Field(default=None, validation_alias=AliasChoices("DB_USER"))
    db_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DB_PASSWORD")
    )
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("GIBBON_URL"))
    enable_moodle_integration: bool = Field(
        default=False, validation_alias=AliasChoices("ENABLE_MOODLE_INTEGRATION")
    )
    log_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GIBBON_LOG_LEVEL")
    )
    apache_config_file: Path = Field(
        default=APACHE_CONFIG_DEFAULT,
        validation_alias=AliasChoices("APACHE_CONFIG_FILE"),
    )

    @property
    def config_file(self) -> Path:
        return self.install_path / "config.php"

    @property
    def cache_dir(self) -> Path:
        return self.install_path / "uploads" / "cache"

    def database(self) -> Optional[DatabaseSettings]:
        return DatabaseSettings(
            engine="mysql",
            host=self.db_host or "localhost",
            port=self.db_port,
            name=self.db_name or "",
            user=self.db_user or "",
            password=self.db_password or "",
        )


@ComponentRegistry.register(
    name="gibbon",
    metadata={
        "description": "Gibbon school management platform",
        "database": "mysql",
    },
)
class GibbonComponent(BaseComponent):
    settings_class = GibbonSettings
    integration_sql_prefix = "GIBBON_INTEGRATION_SQL"

    def _copy_package(self) -> None:
        s = self.settings
        copy_tree_contents(s.package_path, s.install_path, self.app_settings, self.logger)
        self.fix_permissions(s.install_path)

    def install(self) -> bool:
        self._copy_package()
        run_command(
            ["php", "auto.php"],
            self.app_settings,
            current_logger=self.logger,
            cwd=str(self.settings.install_path / "installer"),
        )
        return True

    def upgrade(self) -> bool:
        if not self.settings.package_path.is_dir():
            self._log(
                f"{self.symbols.get('warning', '!')} Package {self.settings.package_path} not present; nothing to copy for the upgrade.",
                "warning",
            )
            return True
        self._copy_package()
        return True

    def reconcile(self) -> None:
        s = self.settings
        if s.cache_dir.is_dir():
            self.fix_permissions(s.cache_dir, check=False)
        self.set_apache_log_level(s.log_level, s.apache_config_file, "GIBBON_LOG_LEVEL")
        report = reconcile_file(
            s.config_file,
            ConfigFormat.PHP_VAR,
            [
                ConfigBinding("$databaseServer", s.db_host, "DB_HOST"),
                ConfigBinding("$databaseName", s.db_name, "DB_NAME"),
                ConfigBinding("$databaseUsername", s.db_user, "DB_USER"),
                ConfigBinding("$databasePassword", s.db_password, "DB_PASSWORD"),
            ],
            self.app_settings,
            self.logger,
        )
        if report.file_missing:
            return
        if not s.url:
            self._log(
                f"{self.symbols.get('warning', '!')} {ConfigVariableMissing('absoluteURL', 'GIBBON_URL')}",
                "warning",
            )
            return

        with self.database_session() as conn:
            if not object_is_queryable(conn, "gibbonSetting"):
                self._log(
                    "Gibbon database tables not found - installation not complete yet, skipping URL update"
                )
                return

            def _write(value: str) -> None:
                execute_statement(
                    conn,
                    UPSERT_ABSOLUTE_URL,
                    (
                        "System",
                        "absoluteURL",
                        "Base URL",
                        "The address at which the whole system resides.",
                        value,
                        value,
                    ),
                )

            reconcile_tracked_value(
                lambda: fetch_scalar(conn, SELECT_ABSOLUTE_URL, ("System", "absoluteURL")),
                _write,
                s.url,
                cache_dirs=[s.cache_dir],
                description="absoluteURL",
                app_settings=self.app_settings,
                current_logger=self.logger,
            )

    def integration_settings(self) -> Optional[IntegrationSettings]:
        return IntegrationSettings(
            enabled=self.settings.enable_moodle_integration,
            name="moodle",
            sql_prefix=self.integration_sql_prefix,
            fragments=self.fragments,
            verify_objects=["moodleUser", "moodleCourse", "moodleEnrolment"],
        )

    def default_command(self) -> List[str]:
        return ["apache2-foreground"]
