from unittest.mock import MagicMock

import pytest

from bundles.components.moodle import (
    BUMP_VERSIONS_HASH,
    CRON_INTERVAL_DEFAULT,
    SSLPROXY_LINE,
    UPSERT_WWWROOT,
    MoodleComponent,
    MoodleSettings,
    normalize_cron_interval,
)

CONFIG = """<?php  // Moodle configuration file
unset($CFG);
global $CFG;
$CFG = new stdClass();
$CFG->dbtype    = 'mysqli';
$CFG->dbhost    = 'localhost';
$CFG->dbname    = 'moodle';
$CFG->dbuser    = 'root';
$CFG->dbpass    = '';
$CFG->wwwroot   = 'http://localhost';
$CFG->dataroot  = '/var/moodledata';
require_once(__DIR__ . '/lib/setup.php');
"""


@pytest.fixture
def base_run_command(mocker):
    return mocker.patch("bundles.base_component.run_command")


@pytest.fixture
def run_command(mocker, base_run_command):
    return mocker.patch("bundles.components.moodle.run_command")


@pytest.fixture
def dirs(tmp_path):
    install = tmp_path / "html"
    install.mkdir()
    (install / "config.php").write_text(CONFIG)
    dataroot = tmp_path / "moodledata"
    for name in ("cache", "localcache"):
        (dataroot / name).mkdir(parents=True)
        (dataroot / name / "entry").write_text("x")
    return {"install": install, "dataroot": dataroot, "cron": tmp_path / "cron.d" / "moodle-cron"}


def _component(tmp_path, dirs, app_settings, conn=None, **overrides):
    values = dict(
        version="4.5.1",
        state_dir=tmp_path / "installed",
        package_path=tmp_path / "package",
        install_path=dirs["install"],
        dataroot=dirs["dataroot"],
        cron_file=dirs["cron"],
        db_host="moodle-mariadb",
        db_name="moodle",
        db_user="moodle",
        db_password="dbpw",
        url="https://lms.example",
        admin_password="adminpw",
    )
    values.update(overrides)
    return MoodleComponent(
        MoodleSettings(**values),
        app_settings,
        logger=MagicMock(),
        connect=MagicMock(return_value=conn),
    )


@pytest.mark.parametrize(
    "interval, expected",
    [
        (None, CRON_INTERVAL_DEFAULT),
        ("", CRON_INTERVAL_DEFAULT),
        ("*/15 * * * *", "*/15 * * * *"),
        ("  0   3 * * 1 ", "0 3 * * 1"),
        ("every minute", CRON_INTERVAL_DEFAULT),
    ],
)
def test_normalize_cron_interval(interval, expected):
    assert normalize_cron_interval(interval) == expected


def test_release_alias(monkeypatch):
    monkeypatch.setenv("MOODLE_RELEASE", "4.5.1")
    assert MoodleSettings().version == "4.5.1"


def test_install_hides_passwords(tmp_path, dirs, app_settings, run_command):
    (tmp_path / "package").mkdir()
    (tmp_path / "package" / "index.php").write_text("<?php")
    component = _component(tmp_path, dirs, app_settings)

    assert component.install() is True

    command = run_command.call_args.args[0]
    assert "--dbpass=dbpw" in command
    assert "--adminpass=adminpw" in command
    assert "--wwwroot=https://lms.example" in command
    assert run_command.call_args.kwargs["sensitive"] == ["dbpw", "adminpw"]


def test_prepare_creates_dataroot(tmp_path, dirs, app_settings):
    component = _component(tmp_path, dirs, app_settings, dataroot=tmp_path / "new-data")
    component.prepare()
    assert (tmp_path / "new-data").is_dir()


def test_configure_cron(tmp_path, dirs, app_settings, run_command):
    component = _component(tmp_path, dirs, app_settings, cron_interval="bogus")

    component.configure_cron()

    assert dirs["cron"].read_text() == (
        f"{CRON_INTERVAL_DEFAULT} root /clouve/moodle/installer/moodle-cron.sh\n"
    )
    assert "not a five-field schedule" in component.logger.warning.call_args.args[0]
    run_command.assert_called_once()
    assert run_command.call_args.args[0] == ["service", "cron", "start"]


def test_reconcile_changed_url(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("http://localhost",)
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection)

    component.reconcile()

    config = (dirs["install"] / "config.php").read_text()
    assert "$CFG->dbhost    = 'moodle-mariadb';" in config
    assert "$CFG->dbpass    = 'dbpw';" in config
    assert "$CFG->wwwroot   = 'https://lms.example';" in config
    lines = config.splitlines()
    assert lines.index(SSLPROXY_LINE) == len(lines) - 2

    statements = [c.args for c in fake_connection.fake_cursor.execute.call_args_list]
    assert (UPSERT_WWWROOT, ("wwwroot", "https://lms.example", "https://lms.example")) in statements
    assert (BUMP_VERSIONS_HASH, ("allversionshash",)) in statements
    for name in ("cache", "localcache"):
        assert list((dirs["dataroot"] / name).iterdir()) == []


def test_reconcile_unchanged_url(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://lms.example",)
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection)

    component.reconcile()

    statements = [c.args[0] for c in fake_connection.fake_cursor.execute.call_args_list]
    assert UPSERT_WWWROOT not in statements
    assert BUMP_VERSIONS_HASH not in statements
    assert (dirs["dataroot"] / "cache" / "entry").exists()


def test_reconcile_http_url_has_no_sslproxy(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("http://lms.example",)
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection, url="http://lms.example")

    component.reconcile()

    assert SSLPROXY_LINE not in (dirs["install"] / "config.php").read_text()


def test_reconcile_twice_adds_sslproxy_once(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://lms.example",)
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection)

    component.reconcile()
    component.reconcile()

    assert (dirs["install"] / "config.php").read_text().count(SSLPROXY_LINE) == 1


def test_integration_waits_for_gibbon(tmp_path, dirs, app_settings):
    component = _component(
        tmp_path,
        dirs,
        app_settings,
        enable_gibbon_integration=True,
        gibbon_db_host="gibbon-mariadb",
        gibbon_db_name="gibbon",
    )

    settings = component.integration_settings()

    assert settings.enabled is True
    assert settings.marker_name == ".gibbon-integration-setup"
    assert settings.peer_database.host == "gibbon-mariadb"
    assert settings.peer_objects == ["moodleUser"]
    assert settings.peer_wait.max_attempts == 60


def test_integration_without_peer(tmp_path, dirs, app_settings):
    settings = _component(tmp_path, dirs, app_settings).integration_settings()
    assert settings.enabled is False
    assert settings.peer_database is None
    assert settings.peer_objects == []


def test_reconcile_repairs_permissions(tmp_path, dirs, app_settings, base_run_command, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://lms.example",)
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection)

    component.reconcile()

    commands = [c.args[0] for c in base_run_command.call_args_list]
    assert commands == [
        ["chown", "-R", "www-data:www-data", str(dirs["install"])],
        ["chmod", "-R", "755", str(dirs["install"])],
        ["chown", "-R", "www-data:www-data", str(dirs["dataroot"])],
        ["chmod", "-R", "777", str(dirs["dataroot"])],
    ]
    assert all(c.kwargs["check"] is False for c in base_run_command.call_args_list)


def test_reconcile_sets_apache_log_level(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://lms.example",)
    apache_conf = tmp_path / "apache2.conf"
    apache_conf.write_text("ServerRoot \"/etc/apache2\"\nLogLevel warn\n")
    component = _component(
        tmp_path,
        dirs,
        app_settings,
        conn=fake_connection,
        log_level="debug",
        apache_config_file=apache_conf,
    )

    component.reconcile()
    component.reconcile()

    assert apache_conf.read_text() == "ServerRoot \"/etc/apache2\"\nLogLevel debug\n"


def test_reconcile_without_log_level_leaves_apache_alone(tmp_path, dirs, app_settings, run_command, fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://lms.example",)
    apache_conf = tmp_path / "apache2.conf"
    apache_conf.write_text("LogLevel warn\n")
    component = _component(tmp_path, dirs, app_settings, conn=fake_connection, apache_config_file=apache_conf)

    component.reconcile()

    assert apache_conf.read_text() == "LogLevel warn\n"
