# bundles/components/limesurvey.py
# -*- coding: utf-8 -*-
"""
LimeSurvey (PHP, MySQL) on top of the official image.

The image's own entrypoint creates ``config.php`` and the schema after the
hand-off, so database-side work here waits for a later start where the
tables exist.
"""

import datetime
import json
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field

from bundles.base_component import BaseComponent, ComponentSettings
from bundles.registry import ComponentRegistry
from common.command_utils import run_command
from common.db_utils import (
    execute_many,
    execute_statement,
    fetch_scalar,
    object_is_queryable,
    validate_identifier,
)
from common.file_utils import copy_tree_contents, write_text_atomic
from provisioning.change_detector import reconcile_tracked_value
from provisioning.config_models import MYSQL_PORT_DEFAULT, DatabaseSettings
from provisioning.config_reconciler import (
    ConfigBinding,
    ConfigFormat,
    read_config_value,
    reconcile_file,
)
from provisioning.errors import InstallationFailed

ORIGINAL_ENTRYPOINT = "/usr/local/bin/entrypoint.sh"
PLUGIN_NAME = "SuiteCRMIntegration"
PLUGIN_VERSION = "2.0.0"
DEMO_DATA_MARKER = ".demo_data_installed"

MAPPINGS_TABLE_DDL = """\
CREATE TABLE IF NOT EXISTS {table} (
    id INT AUTO_INCREMENT PRIMARY KEY,
    survey_id INT NOT NULL,
    question_id INT NOT NULL,
    crm_module VARCHAR(100) NOT NULL COMMENT 'e.g., Leads, Cases',
    crm_field_name VARCHAR(100) NOT NULL COMMENT 'API field name, e.g., first_name',
    crm_field_label VARCHAR(255) NULL COMMENT 'Display label for reference',
    crm_field_type VARCHAR(50) NULL COMMENT 'Field type, e.g., varchar, email',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    UNIQUE KEY unique_question_mapping (question_id),
    INDEX idx_survey (survey_id),
    INDEX idx_module (crm_module)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
"""

SYNC_LOG_TABLE_DDL = """\
CREATE TABLE IF NOT EXISTS {table} (
    id INT AUTO_INCREMENT PRIMARY KEY,
    response_id INT NOT NULL,
    survey_id INT NOT NULL,
    crm_module VARCHAR(100) NOT NULL,
    crm_record_id VARCHAR(100) NULL COMMENT 'SuiteCRM record ID (UUID)',
    sync_status ENUM('success', 'failed', 'partial') NOT NULL,
    request_payload LONGTEXT NULL COMMENT 'JSON payload sent to CRM',
    response_data LONGTEXT NULL COMMENT 'JSON response from CRM',
    error_message TEXT NULL,
    field_mappings_used TEXT NULL COMMENT 'JSON of question->field mappings used',
    synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    INDEX idx_response (response_id),
    INDEX idx_survey (survey_id),
    INDEX idx_status (sync_status),
    INDEX idx_synced_at (synced_at)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
"""


class LimeSurveySettings(ComponentSettings):
    version: str = Field(default="0", validation_alias=AliasChoices("LIMESURVEY_VERSION"))
    package_path: Path = Field(
        default=Path("/clouve/limesurvey/package"),
        validation_alias=AliasChoices("LIMESURVEY_PACKAGE_PATH"),
    )
    install_path: Path = Field(
        default=Path("/var/www/html"),
        validation_alias=AliasChoices("LIMESURVEY_INSTALL_PATH"),
    )
    db_host: str = Field(
        default="limesurvey-mariadb", validation_alias=AliasChoices("DB_HOST")
    )
    db_port: int = Field(default=MYSQL_PORT_DEFAULT, validation_alias=AliasChoices("DB_PORT"))
    db_name: str = Field(default="limesurvey", validation_alias=AliasChoices("DB_NAME"))
    table_prefix: str = Field(default="lime_", validation_alias=AliasChoices("DB_TABLE_PREFIX"))
    db_user: str = Field(default="limesurvey", validation_alias=AliasChoices("DB_USERNAME"))
    db_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DB_PASSWORD")
    )
    admin_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ADMIN_PASSWORD")
    )
    public_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PUBLIC_URL")
    )
    enable_suitecrm_integration: bool = Field(
        default=False, validation_alias=AliasChoices("ENABLE_SUITECRM_INTEGRATION")
    )
    suitecrm_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SUITECRM_URL")
    )
    suitecrm_admin_user: str = Field(
        default="admin", validation_alias=AliasChoices("SUITECRM_ADMIN_USER")
    )
    suitecrm_admin_password: str = Field(
        default="", validation_alias=AliasChoices("SUITECRM_ADMIN_PASSWORD")
    )
    suitecrm_db_host: str = Field(
        default="suitecrm-mariadb", validation_alias=AliasChoices("SUITECRM_DB_HOST")
    )
    suitecrm_db_port: str = Field(
        default=str(MYSQL_PORT_DEFAULT), validation_alias=AliasChoices("SUITECRM_DB_PORT")
    )
    suitecrm_db_name: str = Field(
        default="suitecrm", validation_alias=AliasChoices("SUITECRM_DB_NAME")
    )
    suitecrm_db_user: str = Field(
        default="suitecrm", validation_alias=AliasChoices("SUITECRM_DB_USER")
    )
    suitecrm_db_password: str = Field(
        default="", validation_alias=AliasChoices("SUITECRM_DB_PASSWORD")
    )
    install_demo_data: bool = Field(
        default=False, validation_alias=AliasChoices("INSTALL_DEMO_DATA")
    )
    demo_data_source: Path = Field(
        default=Path("/clouve/limesurvey/installer/demo_data.lss"),
        validation_alias=AliasChoices("DEMO_DATA_SOURCE"),
    )
    demo_data_lang: str = Field(default="en", validation_alias=AliasChoices("DEMO_DATA_LANG"))

    @property
    def config_file(self) -> Path:
        return self.install_path / "application" / "config" / "config.php"

    @property
    def demo_data_marker(self) -> Path:
        return self.install_path / DEMO_DATA_MARKER

    @property
    def assets_cache_dir(self) -> Path:
        return self.install_path / "tmp" / "assets"

    def table(self, name: str) -> str:
        return validate_identifier(f"{self.table_prefix}{name}")

    def database(self) -> Optional[DatabaseSettings]:
        return DatabaseSettings(
            engine="mysql",
            host=self.db_host,
            port=self.db_port,
            name=self.db_name,
            user=self.db_user,
            password=self.db_password or "",
        )


@ComponentRegistry.register(
    name="limesurvey",
    metadata={
        "description": "LimeSurvey online surveys",
        "database": "mysql",
    },
)
class LimeSurveyComponent(BaseComponent):
    settings_class = LimeSurveySettings

    def prepare(self) -> None:
        s = self.settings
        for value, source in ((s.db_password, "DB_PASSWORD"), (s.admin_password, "ADMIN_PASSWORD")):
            if not value:
                raise InstallationFailed(f"Missing {source}")

        if not (s.install_path / "index.php").is_file() or not (
            s.install_path / "application"
        ).is_dir():
            self._log(
                f"{self.symbols.get('package', '📦')} LimeSurvey files not found in {s.install_path}; copying from {s.package_path}"
            )
            copy_tree_contents(s.package_path, s.install_path, self.app_settings, self.logger)
            self.fix_permissions(s.install_path)

        if s.enable_suitecrm_integration:
            self.sync_plugin()

    def sync_plugin(self) -> None:
        """Refreshes the CRM plugin from the image on every start."""
        s = self.settings
        source = s.package_path / "plugins" / PLUGIN_NAME
        destination = s.install_path / "plugins" / PLUGIN_NAME
        if not source.is_dir():
            self._log(
                f"{self.symbols.get('warning', '!')} {PLUGIN_NAME} plugin source not found at {source}",
                "warning",
            )
            return
        copy_tree_contents(source, destination, self.app_settings, self.logger)
        self.fix_permissions(destination)

    def install(self) -> bool:
        self._log(
            "First-time initialization detected. The image entrypoint will create the database schema."
        )
        return True

    def reconcile(self) -> None:
        s = self.settings

        def _write(value: Optional[str]) -> None:
            reconcile_file(
                s.config_file,
                ConfigFormat.PHP_ARRAY,
                [ConfigBinding("publicurl", value, "PUBLIC_URL")],
                self.app_settings,
                self.logger,
            )

        # Without a publicurl entry there is nothing to compare against.
        current = read_config_value(s.config_file, ConfigFormat.PHP_ARRAY, "publicurl")
        if not s.public_url or current is None:
            _write(s.public_url)
        else:
            reconcile_tracked_value(
                lambda: current,
                _write,
                s.public_url,
                cache_dirs=[s.assets_cache_dir],
                description="publicurl",
                app_settings=self.app_settings,
                current_logger=self.logger,
            )
        if s.enable_suitecrm_integration:
            self.register_crm_plugin()
        if s.install_demo_data:
            self.import_demo_data()

    def crm_plugin_settings(self) -> List[tuple]:
        """Setting rows for the CRM plugin. Values are JSON encoded, as the plugin storage expects."""
        s = self.settings
        return [
            ("enabled", "1"),
            ("debug_mode", "1"),
            ("suitecrm_url", json.dumps(s.suitecrm_url)),
            ("suitecrm_admin_user", json.dumps(s.suitecrm_admin_user)),
            ("suitecrm_admin_password", json.dumps(s.suitecrm_admin_password)),
            ("suitecrm_db_host", json.dumps(s.suitecrm_db_host)),
            ("suitecrm_db_port", json.dumps(s.suitecrm_db_port)),
            ("suitecrm_db_name", json.dumps(s.suitecrm_db_name)),
            ("suitecrm_db_user", json.dumps(s.suitecrm_db_user)),
            ("suitecrm_db_password", json.dumps(s.suitecrm_db_password)),
        ]

    def register_crm_plugin(self) -> bool:
        """
        Registers and configures the CRM plugin directly in the database.

        Returns:
            bool: True if settings were written on this start.
        """
        s = self.settings
        plugins = s.table("plugins")
        plugin_settings = s.table("plugin_settings")

        with self.database_session() as conn:
            if not (
                object_is_queryable(conn, plugins)
                and object_is_queryable(conn, plugin_settings)
            ):
                self._log(
                    "LimeSurvey plugin tables not found yet; plugin registration deferred to the next start."
                )
                return False

            execute_statement(conn, MAPPINGS_TABLE_DDL.format(table=s.table("survey_crm_mappings")))
            execute_statement(conn, SYNC_LOG_TABLE_DDL.format(table=s.table("survey_crm_sync_log")))

            select_id = f"SELECT id FROM {plugins} WHERE name = %s"
            plugin_id = fetch_scalar(conn, select_id, (PLUGIN_NAME,))
            if plugin_id is None:
                execute_statement(
                    conn,
                    f"INSERT INTO {plugins} (name, active, version, load_error, plugin_type) "
                    "VALUES (%s, 1, %s, 0, 'user')",
                    (PLUGIN_NAME, PLUGIN_VERSION),
                )
                plugin_id = fetch_scalar(conn, select_id, (PLUGIN_NAME,))
                self._log(f"Plugin {PLUGIN_NAME} registered with ID {plugin_id}")

            configured = fetch_scalar(
                conn,
                f"SELECT COUNT(*) FROM {plugin_settings} WHERE plugin_id = %s AND `key` = %s",
                (plugin_id, "suitecrm_url"),
            )
            if configured:
                self._log(f"{PLUGIN_NAME} plugin already configured.", "debug")
                return False
            if not s.suitecrm_url:
                self._log(
                    f"{self.symbols.get('warning', '!')} SUITECRM_URL is not set; {PLUGIN_NAME} plugin left unconfigured.",
                    "warning",
                )
                return False

            execute_many(
                conn,
                f"INSERT INTO {plugin_settings} (plugin_id, model, model_id, `key`, `value`) "
                "VALUES (%s, NULL, NULL, %s, %s)",
                [(plugin_id, key, value) for key, value in self.crm_plugin_settings()],
            )
        self._log(
            f"{self.symbols.get('success', '✅')} {PLUGIN_NAME} plugin configured.",
            "success",
        )
        return True

    def enable_crm_for_survey(self, survey_id: str) -> bool:
        s = self.settings
        plugins = s.table("plugins")
        plugin_settings = s.table("plugin_settings")
        with self.database_session() as conn:
            plugin_id = fetch_scalar(
                conn, f"SELECT id FROM {plugins} WHERE name = %s", (PLUGIN_NAME,)
            )
            if plugin_id is None:
                self._log(
                    f"{self.symbols.get('warning', '!')} {PLUGIN_NAME} plugin not found, skipping survey configuration",
                    "warning",
                )
                return False
            execute_statement(
                conn,
                f"INSERT INTO {plugin_settings} (plugin_id, model, model_id, `key`, `value`) "
                "VALUES (%s, 'Survey', %s, 'survey_enabled', '1') "
                "ON DUPLICATE KEY UPDATE `value` = '1'",
                (plugin_id, survey_id),
            )
        self._log(f"SuiteCRM integration enabled for survey {survey_id}")
        return True

    def import_demo_data(self) -> bool:
        """
        Imports the bundled demo survey once per installation.

        The import waits for a later start when the survey tables do not exist
        yet. A failed import leaves no marker and is retried on the next start.

        Returns:
            bool: True if a survey was imported on this start.
        """
        s = self.settings
        if s.demo_data_marker.is_file():
            self._log("Demo data already imported (marker file exists).", "debug")
            return False
        if not s.demo_data_source.is_file():
            self._log(
                f"{self.symbols.get('warning', '!')} Demo data file not found at {s.demo_data_source}",
                "warning",
            )
            return False

        with self.database_session() as conn:
            if not object_is_queryable(conn, s.table("surveys")):
                self._log(
                    "LimeSurvey survey tables not found yet; demo data import deferred to the next start."
                )
                return False

        result = run_command(
            [
                "php",
                "application/commands/console.php",
                "importsurvey",
                f"{s.demo_data_source}:{s.demo_data_lang}",
            ],
            self.app_settings,
            check=False,
            capture_output=True,
            current_logger=self.logger,
            cwd=str(s.install_path),
        )
        survey_id = (result.stdout or "").strip()
        if result.returncode != 0 or not survey_id.isdigit():
            self._log(
                f"{self.symbols.get('warning', '!')} Failed to import demo survey: {survey_id or (result.stderr or '').strip()}",
                "warning",
            )
            return False

        self._log(f"Demo survey imported with Survey ID: {survey_id}")
        if s.enable_suitecrm_integration:
            self.enable_crm_for_survey(survey_id)

        imported_at = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).isoformat()
        write_text_atomic(
            s.demo_data_marker,
            f"Survey ID: {survey_id}\nImported: {imported_at}\nSource: {s.demo_data_source}\n",
        )
        run_command(
            ["chown", "www-data:www-data", str(s.demo_data_marker)],
            self.app_settings,
            check=False,
            current_logger=self.logger,
        )
        self._log(
            f"{self.symbols.get('success', '✅')} Demo data installation complete!",
            "success",
        )
        return True

    def default_command(self) -> List[str]:
        return [ORIGINAL_ENTRYPOINT, "apache2-foreground"]

    def command_for(self, command: Optional[List[str]] = None) -> List[str]:
        if not command:
            return self.default_command()
        return [ORIGINAL_ENTRYPOINT] + list(command)
