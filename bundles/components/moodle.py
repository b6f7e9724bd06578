# bundles/components/moodle.py
# -*- coding: utf-8 -*-
"""
Moodle learning platform (PHP, MySQL).

Besides the usual config.php and wwwroot handling, Moodle needs a cron
entry and, behind a TLS terminating proxy, ``$CFG->sslproxy``.
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
from common.file_utils import copy_tree_contents, write_text_atomic
from provisioning.change_detector import Detection, reconcile_tracked_value
from provisioning.config_models import (
    APACHE_CONFIG_DEFAULT,
    MYSQL_PORT_DEFAULT,
    DatabaseSettings,
    IntegrationSettings,
    WaitSettings,
)
from provisioning.config_reconciler import (
    ConfigBinding,
    ConfigFormat,
    insert_line_before,
    reconcile_file,
)

CRON_INTERVAL_DEFAULT = "*/5 * * * *"
SSLPROXY_LINE = "$CFG->sslproxy = true;"
SETUP_ANCHOR = r"require_once.*lib/setup\.php"

SELECT_WWWROOT = "SELECT value FROM mdl_config WHERE name = %s"
UPSERT_WWWROOT = (
    "INSERT INTO mdl_config (name, value) VALUES (%s, %s) "
    "ON DUPLICATE KEY UPDATE value = %s"
)
BUMP_VERSIONS_HASH = (
    "UPDATE mdl_config SET value = CONCAT(value, '1') WHERE name = %s"
)


def normalize_cron_interval(interval: Optional[str]) -> str:
    """Returns ``interval`` if it has five cron fields, else the default."""
    if interval and len(interval.split()) == 5:
        return " ".join(interval.split())
    return CRON_INTERVAL_DEFAULT


class MoodleSettings(ComponentSettings):
    version: str = Field(
        default="0", validation_alias=AliasChoices("MOODLE_RELEASE", "MOODLE_VERSION")
    )
    package_path: Path = Field(
        default=Path("/clouve/moodle/package"),
        validation_alias=AliasChoices("MOODLE_PACKAGE_PATH"),
    )
    install_path: Path = Field(
        default=Path("/var/www/html"),
        validation_alias=AliasChoices("MOODLE_INSTALL_PATH"),
    )
    dataroot: Path = Field(
        default=Path("/var/moodledata"),
        validation_alias=AliasChoices("MOODLE_DATAROOT"),
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
    url: str = Field(
        default="http://localhost", validation_alias=AliasChoices("MOODLE_URL")
    )
    site_name: str = Field(
        default="Moodle Site", validation_alias=AliasChoices("MOODLE_SITE_NAME")
    )
    admin_user: str = Field(
        default="admin", validation_alias=AliasChoices("MOODLE_USERNAME")
    )
    admin_password: str = Field(
        default="Admin@123", validation_alias=AliasChoices("MOODLE_PASSWORD")
    )
    admin_email: str = Field(
        default="admin@example.com", validation_alias=AliasChoices("MOODLE_EMAIL")
    )
    cron_interval: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MOODLE_CRON_INTERVAL")
    )
    cron_file: Path = Field(
        default=Path("/etc/cron.d/moodle-cron"),
        validation_alias=AliasChoices("MOODLE_CRON_FILE"),
    )
    cron_script: str = "/clouve/moodle/installer/moodle-cron.sh"
    log_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MOODLE_LOG_LEVEL")
    )
    apache_config_file: Path = Field(
        default=APACHE_CONFIG_DEFAULT,
        validation_alias=AliasChoices("APACHE_CONFIG_FILE"),
    )
    enable_gibbon_integration: bool = Field(
        default=False, validation_alias=AliasChoices("ENABLE_GIBBON_INTEGRATION")
    )
    gibbon_db_host: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GIBBON_DB_HOST")
    )
    gibbon_db_port: int = Field(
        default=MYSQL_PORT_DEFAULT, validation_alias=AliasChoices("GIBBON_DB_PORT")
    )
    gibbon_db_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GIBBON_DB_NAME")
    )
    gibbon_db_user: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GIBBON_DB_USER")
    )
    gibbon_db_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GIBBON_DB_PASSWORD")
    )

    @property
    def config_file(self) -> Path:
        return self.install_path / "config.php"

    @property
    def cache_dirs(self) -> List[Path]:
        return [self.dataroot / "cache", self.dataroot / "localcache"]

    def database(self) -> Optional[DatabaseSettings]:
        return DatabaseSettings(
            engine="mysql",
            host=self.db_host or "localhost",
            port=self.db_port,
            name=self.db_name or "",
            user=self.db_user or "",
            password=self.db_password or "",
        )

    def peer_database(self) -> Optional[DatabaseSettings]:
        if not self.gibbon_db_host:
            return None
        return DatabaseSettings(
            engine="mysql",
            host=self.gibbon_db_host,
            port=self.gibbon_db_port,
            name=self.gibbon_db_name or "",
            user=self.gibbon_db_user or "",
            password=self.gibbon_db_password or "",
        )


@ComponentRegistry.register(
    name="moodle",
    metadata={
        "description": "Moodle learning management system",
        "database": "mysql",
    },
)
class MoodleComponent(BaseComponent):
    settings_class = MoodleSettings
    integration_sql_prefix = "MOODLE_INTEGRATION_SQL"

    def _copy_package(self) -> None:
        s = self.settings
        copy_tree_contents(s.package_path, s.install_path, self.app_settings, self.logger)
        self.fix_permissions(s.install_path)

    def install_command(self) -> List[str]:
        s = self.settings
        return [
            "php",
            str(s.install_path / "admin" / "cli" / "install.php"),
            "--lang=en",
            f"--wwwroot={s.url}",
            f"--dataroot={s.dataroot}",
            "--dbtype=mysqli",
            f"--dbhost={s.db_host or 'localhost'}",
            f"--dbname={s.db_name or ''}",
            f"--dbuser={s.db_user or ''}",
            f"--dbpass={s.db_password or ''}",
            f"--dbport={s.db_port}",
            "--prefix=mdl_",
            f"--fullname={s.site_name}",
            f"--shortname={s.site_name}",
            "--summary=Moodle Learning Management System",
            f"--adminuser={s.admin_user}",
            f"--adminpass={s.admin_password}",
            f"--adminemail={s.admin_email}",
            "--non-interactive",
            "--agree-license",
        ]

    def prepare(self) -> None:
        self.settings.dataroot.mkdir(parents=True, exist_ok=True)

    def install(self) -> bool:
        self._copy_package()
        run_command(
            self.install_command(),
            self.app_settings,
            current_logger=self.logger,
            cwd=str(self.settings.install_path),
            sensitive=[self.settings.db_password, self.settings.admin_password],
        )
        self.fix_permissions(self.settings.dataroot, mode="777")
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

    def repair_permissions(self) -> None:
        """Restores ownership of the code tree and the writable data root."""
        s = self.settings
        if s.install_path.is_dir():
            self.fix_permissions(s.install_path, check=False)
        if s.dataroot.is_dir():
            self.fix_permissions(s.dataroot, mode="777", check=False)

    def configure_cron(self) -> None:
        s = self.settings
        interval = normalize_cron_interval(s.cron_interval)
        if s.cron_interval and interval != " ".join(s.cron_interval.split()):
            self._log(
                f"{self.symbols.get('warning', '!')} MOODLE_CRON_INTERVAL '{s.cron_interval}' is not a five-field schedule; using '{CRON_INTERVAL_DEFAULT}'.",
                "warning",
            )
        write_text_atomic(
            s.cron_file, f"{interval} root {s.cron_script}\n", mode=0o644
        )
        run_command(
            ["service", "cron", "start"],
            self.app_settings,
            check=False,
            current_logger=self.logger,
        )

    def reconcile(self) -> None:
        s = self.settings
        self.repair_permissions()
        self.set_apache_log_level(s.log_level, s.apache_config_file, "MOODLE_LOG_LEVEL")
        report = reconcile_file(
            s.config_file,
            ConfigFormat.PHP_VAR,
            [
                ConfigBinding("$CFG->dbhost", s.db_host, "DB_HOST"),
                ConfigBinding("$CFG->dbname", s.db_name, "DB_NAME"),
                ConfigBinding("$CFG->dbuser", s.db_user, "DB_USER"),
                ConfigBinding("$CFG->dbpass", s.db_password, "DB_PASSWORD"),
                ConfigBinding("$CFG->wwwroot", s.url, "MOODLE_URL"),
            ],
            self.app_settings,
            self.logger,
        )
        if report.file_missing:
            return
        if s.url.lower().startswith("https://"):
            insert_line_before(
                s.config_file,
                SETUP_ANCHOR,
                SSLPROXY_LINE,
                self.app_settings,
                self.logger,
            )

        self.configure_cron()

        with self.database_session() as conn:
            if not object_is_queryable(conn, "mdl_config"):
                self._log(
                    "Moodle database tables not found - installation not complete yet, skipping URL update"
                )
                return

            def _write(value: str) -> None:
                execute_statement(conn, UPSERT_WWWROOT, ("wwwroot", value, value))

            def _bump_hash(detection: Detection) -> None:
                execute_statement(conn, BUMP_VERSIONS_HASH, ("allversionshash",))

            reconcile_tracked_value(
                lambda: fetch_scalar(conn, SELECT_WWWROOT, ("wwwroot",)),
                _write,
                s.url,
                cache_dirs=s.cache_dirs,
                on_invalidate=_bump_hash,
                description="wwwroot",
                app_settings=self.app_settings,
                current_logger=self.logger,
            )

    def integration_settings(self) -> Optional[IntegrationSettings]:
        peer = self.settings.peer_database()
        return IntegrationSettings(
            enabled=self.settings.enable_gibbon_integration,
            name="gibbon",
            sql_prefix=self.integration_sql_prefix,
            fragments=self.fragments,
            peer_database=peer,
            peer_objects=["moodleUser"] if peer else [],
            peer_wait=WaitSettings(max_attempts=60, delay_seconds=2.0),
        )

    def default_command(self) -> List[str]:
        return ["apache2-foreground"]
