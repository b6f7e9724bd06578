import configparser
import stat
import subprocess
from unittest.mock import MagicMock

import pytest

from bundles.components.odoo import (
    ADMIN_CONFIGURED_MARKER,
    SELECT_BASE_URL,
    SELECT_DATABASE_EXISTS,
    TOUCH_WEB_PARAMETERS,
    UPSERT_BASE_URL,
    OdooComponent,
    OdooSettings,
    generate_master_password,
)


@pytest.fixture
def run_command(mocker):
    return mocker.patch("bundles.components.odoo.run_command")


def _component(tmp_path, app_settings, conn=None, **overrides):
    values = dict(
        version="19.0",
        state_dir=tmp_path / "installed",
        config_file=tmp_path / "etc" / "odoo.conf",
        data_dir=tmp_path / "data",
        addons_dir=tmp_path / "addons",
        db_host="odoo-postgres",
        db_password="pgpw",
        url="https://erp.example",
    )
    values.update(overrides)
    return OdooComponent(
        OdooSettings(**values),
        app_settings,
        logger=MagicMock(),
        connect=MagicMock(return_value=conn),
    )


def test_waits_on_maintenance_database(tmp_path, app_settings):
    component = _component(tmp_path, app_settings)
    assert component.database.engine == "postgres"
    assert component.database.name == "postgres"
    assert component.settings.app_database().name == "odoo"


def test_generate_master_password():
    first, second = generate_master_password(), generate_master_password()
    assert first != second
    assert len(first) == 32


def test_prepare_renders_missing_config(tmp_path, app_settings, run_command):
    component = _component(tmp_path, app_settings, master_password="master")

    component.prepare()

    conf = component.settings.config_file
    parser = configparser.ConfigParser()
    parser.read(conf)
    assert parser["options"]["db_host"] == "odoo-postgres"
    assert parser["options"]["db_password"] == "pgpw"
    assert parser["options"]["admin_passwd"] == "master"
    assert parser["options"]["db_name"] == "odoo"
    assert stat.S_IMODE(conf.stat().st_mode) == 0o640
    run_command.assert_called_once()
    assert run_command.call_args.args[0][0] == "chown"


def test_prepare_generates_master_password_once(tmp_path, app_settings, run_command):
    component = _component(tmp_path, app_settings)
    component.prepare()
    first = component.settings.config_file.read_text()
    assert "No ODOO_MASTER_PASSWORD provided" in component.logger.warning.call_args.args[0]

    _component(tmp_path, app_settings).prepare()

    assert component.settings.config_file.read_text() == first


def test_prepare_reconciles_existing_config(tmp_path, app_settings, run_command):
    conf = tmp_path / "etc" / "odoo.conf"
    conf.parent.mkdir(parents=True)
    conf.write_text("[options]\n; managed\ndb_host = db\nadmin_passwd = keep\nlimit_time_cpu = 600\n")
    component = _component(tmp_path, app_settings)

    component.prepare()

    assert conf.read_text() == (
        "[options]\n; managed\ndb_host = odoo-postgres\nadmin_passwd = keep\nlimit_time_cpu = 600\n"
    )
    run_command.assert_not_called()


def test_install_skips_existing_database(tmp_path, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = (1,)
    component = _component(tmp_path, app_settings, conn=fake_connection)

    assert component.install() is True

    fake_connection.fake_cursor.execute.assert_called_once_with(SELECT_DATABASE_EXISTS, ("odoo",))
    commands = [c.args[0] for c in run_command.call_args_list]
    assert all(cmd[0] == "chown" for cmd in commands)


def test_install_initializes_database(tmp_path, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = None
    run_command.return_value = subprocess.CompletedProcess([], 0, f"{ADMIN_CONFIGURED_MARKER}!\n", "")
    component = _component(tmp_path, app_settings, conn=fake_connection)

    assert component.install() is True

    commands = [c.args[0] for c in run_command.call_args_list]
    init = next(cmd for cmd in commands if "-i" in cmd)
    assert init[:4] == ["runuser", "-u", "odoo", "--"]
    assert init[init.index("-d") + 1] == "odoo"
    assert "--stop-after-init" in init
    shell = commands[-1]
    assert "shell" in shell
    assert (tmp_path / "data").is_dir()


def test_configure_admin_user(tmp_path, app_settings, run_command):
    run_command.return_value = subprocess.CompletedProcess([], 0, "ERROR: Admin user not found!\n", "")
    component = _component(tmp_path, app_settings, admin_email="boss@example.com", run_as=None)

    assert component.configure_admin_user() is False

    kwargs = run_command.call_args.kwargs
    assert kwargs["env"]["ODOO_ADMIN_EMAIL"] == "boss@example.com"
    assert "env['res.users']" in kwargs["cmd_input"]
    assert run_command.call_args.args[0][0] == "odoo"


def test_reconcile_updates_base_url(tmp_path, app_settings, fake_connection):
    fake_connection.fake_cursor.fetchone.side_effect = [(1,), ("http://localhost:8069",)]
    component = _component(tmp_path, app_settings, conn=fake_connection)

    component.reconcile()

    statements = [c.args for c in fake_connection.fake_cursor.execute.call_args_list]
    assert (SELECT_BASE_URL, ("web.base.url",)) in statements
    assert (UPSERT_BASE_URL, ("web.base.url", "https://erp.example", "https://erp.example")) in statements
    assert (TOUCH_WEB_PARAMETERS, ("web.%",)) in statements
    connected = [c.args[0].name for c in component.connect.call_args_list]
    assert connected == ["postgres", "odoo"]


def test_reconcile_unchanged_base_url(tmp_path, app_settings, fake_connection):
    fake_connection.fake_cursor.fetchone.side_effect = [(1,), ("https://erp.example",)]
    component = _component(tmp_path, app_settings, conn=fake_connection)

    component.reconcile()

    statements = [c.args[0] for c in fake_connection.fake_cursor.execute.call_args_list]
    assert UPSERT_BASE_URL not in statements
    assert TOUCH_WEB_PARAMETERS not in statements


def test_reconcile_without_database(tmp_path, app_settings, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = None
    component = _component(tmp_path, app_settings, conn=fake_connection)

    component.reconcile()

    assert component.connect.call_count == 1


def test_reconcile_without_url(tmp_path, app_settings):
    component = _component(tmp_path, app_settings, url=None)
    component.reconcile()
    component.connect.assert_not_called()


def test_command_for(tmp_path, app_settings):
    component = _component(tmp_path, app_settings)
    conf = str(component.settings.config_file)
    assert component.command_for() == ["/entrypoint-original.sh", "odoo", "-c", conf]
    assert component.command_for(["odoo", "--dev=all"]) == [
        "/entrypoint-original.sh",
        "odoo",
        "--dev=all",
        "-c",
        conf,
    ]
