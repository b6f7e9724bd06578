# bundles/components/odoo.py
# -*- coding: utf-8 -*-
"""
Odoo ERP (Python, PostgreSQL).

Odoo keeps its runtime configuration in ``odoo.conf``, which is rendered
on the first start and reconciled with the environment afterwards, and its
public address in the ``ir_config_parameter`` table.
"""

import base64
import os
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field

from bundles.base_component import BaseComponent, ComponentSettings
from bundles.registry import ComponentRegistry
from common.command_utils import run_command
from common.db_utils import execute_statement, fetch_scalar, object_is_queryable
from common.file_utils import write_text_atomic
from provisioning.change_detector import Detection, reconcile_tracked_value
from provisioning.config_models import POSTGRES_PORT_DEFAULT, DatabaseSettings
from provisioning.config_reconciler import (
    ConfigBinding,
    ConfigFormat,
    reconcile_file,
    render_ini,
)

ADDONS_PATH_DEFAULT = "/usr/lib/python3/dist-packages/odoo/addons,/mnt/extra-addons"
ADMIN_CONFIGURED_MARKER = "Admin user configuration completed successfully"

SELECT_DATABASE_EXISTS = "SELECT 1 FROM pg_database WHERE datname = %s"
SELECT_BASE_URL = "SELECT value FROM ir_config_parameter WHERE key = %s"
UPSERT_BASE_URL = (
    "INSERT INTO ir_config_parameter (key, value, create_uid, create_date, write_uid, write_date) "
    "VALUES (%s, %s, 1, NOW(), 1, NOW()) "
    "ON CONFLICT (key) DO UPDATE SET value = %s, write_uid = 1, write_date = NOW()"
)
TOUCH_WEB_PARAMETERS = (
    "UPDATE ir_config_parameter SET write_date = NOW() WHERE key LIKE %s"
)

# Fed to ``odoo shell`` on stdin; runs inside Odoo with ``env`` bound.
ADMIN_SHELL_SCRIPT = """\
import os

admin_email = os.environ.get('ODOO_ADMIN_EMAIL', 'admin@example.com')
admin_password = os.environ.get('ODOO_ADMIN_PASSWORD', 'admin')

admin = env['res.users'].browse(2)
if admin.exists():
    admin.write({'login': admin_email})
    admin.write({'password': admin_password})
    if admin.partner_id:
        admin.partner_id.write({'email': admin_email})
    env.cr.commit()
    print("Admin user configuration completed successfully!")
else:
    print("ERROR: Admin user not found!")
"""


def generate_master_password() -> str:
    return base64.b64encode(os.urandom(24)).decode("ascii")


class OdooSettings(ComponentSettings):
    version: str = Field(default="19.0", validation_alias=AliasChoices("ODOO_VERSION"))
    state_dir: Path = Field(
        default=Path("/var/lib/odoo/.clouve/installed"),
        validation_alias=AliasChoices("BUNDLE_STATE_DIR"),
    )
    db_host: str = Field(default="db", validation_alias=AliasChoices("POSTGRES_DB_HOST"))
    db_port: int = Field(
        default=POSTGRES_PORT_DEFAULT, validation_alias=AliasChoices("DB_PORT")
    )
    db_user: str = Field(default="odoo", validation_alias=AliasChoices("POSTGRES_DB_USER"))
    db_password: str = Field(
        default="odoo", validation_alias=AliasChoices("POSTGRES_DB_PASSWORD")
    )
    db_name: str = Field(default="odoo", validation_alias=AliasChoices("ODOO_DB_NAME"))
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("ODOO_URL"))
    master_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ODOO_MASTER_PASSWORD")
    )
    admin_email: str = Field(
        default="admin@example.com", validation_alias=AliasChoices("ODOO_ADMIN_EMAIL")
    )
    admin_password: str = Field(
        default="admin", validation_alias=AliasChoices("ODOO_ADMIN_PASSWORD")
    )
    config_file: Path = Field(
        default=Path("/etc/odoo/odoo.conf"), validation_alias=AliasChoices("ODOO_CONF")
    )
    data_dir: Path = Path("/var/lib/odoo")
    addons_dir: Path = Path("/mnt/extra-addons")
    addons_path: str = ADDONS_PATH_DEFAULT
    run_as: Optional[str] = Field(
        default="odoo", validation_alias=AliasChoices("ODOO_RUN_AS")
    )

    def database(self) -> Optional[DatabaseSettings]:
        """The server's maintenance database; the application database may not exist yet."""
        return DatabaseSettings(
            engine="postgres",
            host=self.db_host,
            port=self.db_port,
            name="postgres",
            user=self.db_user,
            password=self.db_password,
        )

    def app_database(self) -> DatabaseSettings:
        return self.database().model_copy(update={"name": self.db_name})


@ComponentRegistry.register(
    name="odoo",
    metadata={
        "description": "Odoo ERP",
        "database": "postgres",
    },
)
class OdooComponent(BaseComponent):
    settings_class = OdooSettings

    def _as_service_user(self, command: List[str]) -> List[str]:
        if self.settings.run_as:
            return ["runuser", "-u", self.settings.run_as, "--"] + command
        return command

    def _master_password(self) -> str:
        s = self.settings
        if s.master_password:
            return s.master_password
        self._log(
            f"{self.symbols.get('warning', '!')} No ODOO_MASTER_PASSWORD provided. Generated a random master password; it is stored in {s.config_file}.",
            "warning",
        )
        return generate_master_password()

    def render_config(self) -> str:
        s = self.settings
        return render_ini(
            {
                "options": {
                    "db_host": s.db_host,
                    "db_port": str(s.db_port),
                    "db_user": s.db_user,
                    "db_password": s.db_password,
                    "data_dir": str(s.data_dir),
                    "addons_path": s.addons_path,
                    "admin_passwd": self._master_password(),
                    "db_name": s.db_name,
                }
            }
        )

    def prepare(self) -> None:
        s = self.settings
        if s.config_file.is_file():
            bindings = [
                ConfigBinding("db_host", s.db_host, "POSTGRES_DB_HOST"),
                ConfigBinding("db_port", str(s.db_port), "DB_PORT"),
                ConfigBinding("db_user", s.db_user, "POSTGRES_DB_USER"),
                ConfigBinding("db_password", s.db_password, "POSTGRES_DB_PASSWORD"),
                ConfigBinding("db_name", s.db_name, "ODOO_DB_NAME"),
            ]
            if s.master_password:
                bindings.append(
                    ConfigBinding("admin_passwd", s.master_password, "ODOO_MASTER_PASSWORD")
                )
            reconcile_file(
                s.config_file, ConfigFormat.INI, bindings, self.app_settings, self.logger
            )
            return

        write_text_atomic(s.config_file, self.render_config(), mode=0o640)
        if s.run_as:
            run_command(
                ["chown", f"{s.run_as}:{s.run_as}", str(s.config_file)],
                self.app_settings,
                check=False,
                current_logger=self.logger,
            )
        self._log(f"Odoo configuration written to {s.config_file}")

    def database_exists(self) -> bool:
        with self.database_session() as conn:
            return (
                fetch_scalar(conn, SELECT_DATABASE_EXISTS, (self.settings.db_name,))
                is not None
            )

    def install(self) -> bool:
        s = self.settings
        for directory in (s.data_dir, s.addons_dir):
            directory.mkdir(parents=True, exist_ok=True)
            if s.run_as:
                run_command(
                    ["chown", "-R", f"{s.run_as}:{s.run_as}", str(directory)],
                    self.app_settings,
                    check=False,
                    current_logger=self.logger,
                )

        if self.database_exists():
            self._log(
                f"Database '{s.db_name}' already exists. Skipping database initialization."
            )
            return True

        self._log(
            f"{self.symbols.get('package', '📦')} Initializing Odoo database '{s.db_name}'. This may take a few minutes..."
        )
        run_command(
            self._as_service_user(
                [
                    "odoo",
                    "-c",
                    str(s.config_file),
                    "-d",
                    s.db_name,
                    "-i",
                    "base",
                    "--without-demo=all",
                    "--stop-after-init",
                ]
            ),
            self.app_settings,
            current_logger=self.logger,
        )
        self.configure_admin_user()
        return True

    def configure_admin_user(self) -> bool:
        s = self.settings
        env = dict(os.environ)
        env["ODOO_ADMIN_EMAIL"] = s.admin_email
        env["ODOO_ADMIN_PASSWORD"] = s.admin_password
        result = run_command(
            self._as_service_user(
                [
                    "odoo",
                    "shell",
                    "-c",
                    str(s.config_file),
                    "-d",
                    s.db_name,
                    "--stop-after-init",
                ]
            ),
            self.app_settings,
            check=False,
            capture_output=True,
            cmd_input=ADMIN_SHELL_SCRIPT,
            current_logger=self.logger,
            env=env,
        )
        if ADMIN_CONFIGURED_MARKER in (result.stdout or ""):
            self._log(
                f"{self.symbols.get('success', '✅')} Admin user configured with login {s.admin_email}.",
                "success",
            )
            return True
        self._log(
            f"{self.symbols.get('warning', '!')} Failed to configure admin user.",
            "warning",
        )
        return False

    def reconcile(self) -> None:
        s = self.settings
        if not s.url:
            self._log(
                f"{self.symbols.get('warning', '!')} ODOO_URL is not set; skipping 'web.base.url'",
                "warning",
            )
            return
        if not self.database_exists():
            self._log(
                f"Database '{s.db_name}' does not exist yet. Skipping URL configuration."
            )
            return

        with self.database_session(s.app_database()) as conn:
            if not object_is_queryable(conn, "ir_config_parameter"):
                self._log(
                    "Odoo database tables not found yet. Skipping URL update."
                )
                return

            def _write(value: str) -> None:
                execute_statement(conn, UPSERT_BASE_URL, ("web.base.url", value, value))

            def _touch(detection: Detection) -> None:
                execute_statement(conn, TOUCH_WEB_PARAMETERS, ("web.%",))

            reconcile_tracked_value(
                lambda: fetch_scalar(conn, SELECT_BASE_URL, ("web.base.url",)),
                _write,
                s.url,
                on_invalidate=_touch,
                description="web.base.url",
                app_settings=self.app_settings,
                current_logger=self.logger,
            )

    def default_command(self) -> List[str]:
        return ["/entrypoint-original.sh", "odoo", "-c", str(self.settings.config_file)]

    def command_for(self, command: Optional[List[str]] = None) -> List[str]:
        """Runs container arguments through the image's entrypoint with our config file."""
        if not command:
            return self.default_command()
        return ["/entrypoint-original.sh"] + list(command) + ["-c", str(self.settings.config_file)]
