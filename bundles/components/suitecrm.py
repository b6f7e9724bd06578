# bundles/components/suitecrm.py
# -*- coding: utf-8 -*-
"""
SuiteCRM 8 (Symfony front end over the legacy PHP application, MySQL).

The site address lives in three places: ``.env.local``, the legacy
``config.php`` and the ``config`` table. The last address applied is kept
in the state directory because ``.env.local`` may be recreated.
"""

import secrets
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
    validate_identifier,
)
from common.file_utils import copy_tree_contents, write_text_atomic
from provisioning.change_detector import reconcile_tracked_value
from provisioning.config_models import MYSQL_PORT_DEFAULT, DatabaseSettings
from provisioning.config_reconciler import ConfigBinding, ConfigFormat, reconcile_file

URL_STATE_NAME = ".suitecrm_url"
DEMO_DATA_TRUE = ("yes", "true", "1")
WRITABLE_DIRS = (
    "cache",
    "public/legacy/cache",
    "public/legacy/custom",
    "public/legacy/modules",
    "public/legacy/themes",
    "public/legacy/upload",
)

COUNT_TABLES = (
    "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = %s"
)
UPDATE_SITE_URL = (
    "UPDATE config SET value = %s WHERE category = 'site' AND name = 'site_url'"
)

ENV_LOCAL_TEMPLATE = """\
###> doctrine/doctrine-bundle ###
DATABASE_URL={database_url}
###< doctrine/doctrine-bundle ###

###> symfony/framework-bundle ###
APP_ENV=prod
APP_SECRET={app_secret}
###< symfony/framework-bundle ###

###> nelmio/cors-bundle ###
CORS_ALLOW_ORIGIN='^https?://(localhost|127\\.0\\.0\\.1)(:[0-9]+)?$'
###< nelmio/cors-bundle ###

SITE_URL={site_url}
LEGACY_SESSION_NAME=SUITECRM_SESSION_ID
"""


class SuiteCRMSettings(ComponentSettings):
    version: str = Field(default="0", validation_alias=AliasChoices("SUITECRM_VERSION"))
    package_path: Path = Field(
        default=Path("/clouve/suitecrm/app"),
        validation_alias=AliasChoices("SUITECRM_PACKAGE_PATH"),
    )
    install_path: Path = Field(
        default=Path("/var/www/html"),
        validation_alias=AliasChoices("SUITECRM_INSTALL_PATH"),
    )
    db_host: str = Field(
        default="suitecrm-mariadb", validation_alias=AliasChoices("DATABASE_HOST")
    )
    db_port: int = Field(
        default=MYSQL_PORT_DEFAULT, validation_alias=AliasChoices("DATABASE_PORT")
    )
    db_user: str = Field(default="suitecrm", validation_alias=AliasChoices("DATABASE_USER"))
    db_password: str = Field(
        default="suitecrm", validation_alias=AliasChoices("DATABASE_PASSWORD")
    )
    db_name: str = Field(default="suitecrm", validation_alias=AliasChoices("DATABASE_NAME"))
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("SUITECRM_URL"))
    admin_user: str = Field(
        default="admin", validation_alias=AliasChoices("SUITECRM_ADMIN_USER")
    )
    admin_password: str = Field(
        default="Admin@123", validation_alias=AliasChoices("SUITECRM_ADMIN_PASSWORD")
    )
    install_demo_data: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SUITECRM_INSTALL_DEMO_DATA")
    )

    @property
    def demo_data(self) -> bool:
        """yes/true/1 enable demo data; anything else installs a clean system."""
        return (self.install_demo_data or "").strip().lower() in DEMO_DATA_TRUE

    @property
    def env_file(self) -> Path:
        return self.install_path / ".env.local"

    @property
    def legacy_config_file(self) -> Path:
        return self.install_path / "public" / "legacy" / "config.php"

    @property
    def legacy_url_file(self) -> Path:
        return self.install_path / URL_STATE_NAME

    @property
    def oauth2_key_dir(self) -> Path:
        return self.install_path / "public" / "legacy" / "Api" / "V8" / "OAuth2"

    @property
    def cache_dirs(self) -> List[Path]:
        return [
            self.install_path / "cache",
            self.install_path / "public" / "legacy" / "cache",
        ]

    @property
    def database_url(self) -> str:
        return (
            f"mysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}"
            f"/{self.db_name}?serverVersion=mariadb-10.11.0"
        )

    def database(self) -> Optional[DatabaseSettings]:
        """Server connection without a default schema; the schema is created on install."""
        return DatabaseSettings(
            engine="mysql",
            host=self.db_host,
            port=self.db_port,
            name="",
            user=self.db_user,
            password=self.db_password,
        )

    def app_database(self) -> DatabaseSettings:
        return self.database().model_copy(update={"name": self.db_name})


@ComponentRegistry.register(
    name="suitecrm",
    metadata={
        "description": "SuiteCRM customer relationship management",
        "database": "mysql",
    },
)
class SuiteCRMComponent(BaseComponent):
    settings_class = SuiteCRMSettings

    def prepare(self) -> None:
        s = self.settings
        if (s.install_path / "public" / "index.php").is_file():
            self._log("SuiteCRM files already present in web root.")
            return
        copy_tree_contents(s.package_path, s.install_path, self.app_settings, self.logger)
        self.set_permissions()

    def set_permissions(self) -> None:
        s = self.settings
        self.fix_permissions(s.install_path, check=False)
        for relative in WRITABLE_DIRS:
            path = s.install_path / relative
            if path.exists():
                run_command(
                    ["chmod", "-R", "775", str(path)],
                    self.app_settings,
                    check=False,
                    current_logger=self.logger,
                )

    def _schema_has_tables(self) -> bool:
        s = self.settings
        with self.database_session() as conn:
            execute_statement(
                conn,
                f"CREATE DATABASE IF NOT EXISTS `{validate_identifier(s.db_name)}` "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci",
            )
            count = fetch_scalar(conn, COUNT_TABLES, (s.db_name,))
        return bool(count)

    def install_command(self) -> List[str]:
        s = self.settings
        return [
            "php",
            "bin/console",
            "suitecrm:app:install",
            "-U", s.db_user,
            "-P", s.db_password,
            "-H", s.db_host,
            "-N", s.db_name,
            "-u", s.admin_user,
            "-p", s.admin_password,
            "-S", s.url or "http://localhost:8080",
            "-d", "yes" if s.demo_data else "no",
        ]

    def write_env_file(self) -> None:
        s = self.settings
        write_text_atomic(
            s.env_file,
            ENV_LOCAL_TEMPLATE.format(
                database_url=s.database_url,
                app_secret=secrets.token_hex(32),
                site_url=s.url or "http://localhost:8080",
            ),
        )

    def generate_oauth2_keys(self) -> None:
        key_dir = self.settings.oauth2_key_dir
        private_key = key_dir / "private.key"
        public_key = key_dir / "public.key"
        if private_key.is_file() and public_key.is_file():
            self._log("OAuth2 keys already exist.")
            return
        key_dir.mkdir(parents=True, exist_ok=True)
        run_command(
            ["openssl", "genrsa", "-out", str(private_key), "2048"],
            self.app_settings,
            capture_output=True,
            current_logger=self.logger,
        )
        run_command(
            ["openssl", "rsa", "-in", str(private_key), "-pubout", "-out", str(public_key)],
            self.app_settings,
            capture_output=True,
            current_logger=self.logger,
        )
        run_command(
            ["chown", "www-data:www-data", str(private_key), str(public_key)],
            self.app_settings,
            check=False,
            current_logger=self.logger,
        )
        private_key.chmod(0o600)
        public_key.chmod(0o600)

    def install(self) -> bool:
        s = self.settings
        if self._schema_has_tables():
            self._log(
                f"Database '{s.db_name}' already has tables. Skipping installation."
            )
            return True
        self.write_env_file()
        self._log(
            f"{self.symbols.get('package', '📦')} Installing SuiteCRM database schema. This may take a few minutes..."
        )
        run_command(
            self.install_command(),
            self.app_settings,
            current_logger=self.logger,
            cwd=str(s.install_path),
            sensitive=[s.db_password, s.admin_password],
        )
        self.set_permissions()
        self.generate_oauth2_keys()
        return True

    def previous_url(self) -> Optional[str]:
        """
        The URL recorded on the last start. Older images kept it beside the
        application code instead of in the state directory.
        """
        value = self.state_store.read_value(URL_STATE_NAME)
        if value is None and self.settings.legacy_url_file.is_file():
            value = self.settings.legacy_url_file.read_text(encoding="utf-8").strip()
        return value

    def reconcile(self) -> None:
        s = self.settings
        reconcile_file(
            s.env_file,
            ConfigFormat.ENV,
            [
                ConfigBinding("SITE_URL", s.url, "SUITECRM_URL"),
                ConfigBinding("DATABASE_URL", s.database_url, "DATABASE_*"),
            ],
            self.app_settings,
            self.logger,
        )
        reconcile_file(
            s.legacy_config_file,
            ConfigFormat.PHP_ARRAY,
            [ConfigBinding("site_url", s.url, "SUITECRM_URL")],
            self.app_settings,
            self.logger,
        )
        if not s.url:
            self.set_permissions()
            return

        def _write(value: str) -> None:
            with self.database_session(s.app_database()) as conn:
                if object_is_queryable(conn, "config"):
                    execute_statement(conn, UPDATE_SITE_URL, (value,))
            self.state_store.write_value(URL_STATE_NAME, value)

        reconcile_tracked_value(
            self.previous_url,
            _write,
            s.url,
            cache_dirs=s.cache_dirs,
            description="SUITECRM_URL",
            app_settings=self.app_settings,
            current_logger=self.logger,
        )
        self.set_permissions()

    def default_command(self) -> List[str]:
        return ["apache2-foreground"]
