import psycopg
import pymysql
import pytest

from common.db_utils import (
    execute_many,
    execute_script,
    execute_statement,
    fetch_scalar,
    get_db_connection,
    object_is_queryable,
    check_connection,
    validate_identifier,
)
from provisioning.config_models import DatabaseSettings


@pytest.fixture
def mysql_settings():
    return DatabaseSettings(
        engine="mysql", host="db", port=3306, name="app", user="u", password="p"
    )


@pytest.fixture
def postgres_settings():
    return DatabaseSettings(
        engine="postgres", host="pg", port=5432, name="postgres", user="odoo", password="p"
    )


def test_postgres_connection_uses_psycopg(mocker, postgres_settings):
    connect = mocker.patch("psycopg.connect")

    conn = get_db_connection(postgres_settings, connect_timeout=3)

    assert conn is connect.return_value
    connect.assert_called_once_with(
        host="pg",
        port=5432,
        dbname="postgres",
        user="odoo",
        password="p",
        connect_timeout=3,
    )


def test_mysql_connection_enables_multi_statements(mocker, mysql_settings):
    connect = mocker.patch("pymysql.connect")

    get_db_connection(mysql_settings)

    kwargs = connect.call_args.kwargs
    assert kwargs["database"] == "app"
    assert kwargs["client_flag"] & pymysql.constants.CLIENT.MULTI_STATEMENTS


def test_mysql_connection_without_schema(mocker, mysql_settings):
    connect = mocker.patch("pymysql.connect")
    get_db_connection(mysql_settings.model_copy(update={"name": ""}))
    assert connect.call_args.kwargs["database"] is None


def test_unreachable_server_returns_none(mocker, mysql_settings, postgres_settings):
    mocker.patch(
        "pymysql.connect",
        side_effect=pymysql.err.OperationalError(2003, "Can't connect"),
    )
    mocker.patch("psycopg.connect", side_effect=psycopg.OperationalError("refused"))

    assert get_db_connection(mysql_settings) is None
    assert get_db_connection(postgres_settings) is None


def test_check_connection(mocker, mysql_settings, fake_connection):
    mocker.patch("common.db_utils.get_db_connection", return_value=fake_connection)

    assert check_connection(mysql_settings) is True
    fake_connection.fake_cursor.execute.assert_called_once_with("SELECT 1")
    fake_connection.close.assert_called_once()


def test_check_connection_fails_without_connection(mocker, mysql_settings):
    mocker.patch("common.db_utils.get_db_connection", return_value=None)
    assert check_connection(mysql_settings) is False


def test_check_connection_query_error(mocker, mysql_settings, fake_connection):
    fake_connection.fake_cursor.execute.side_effect = pymysql.err.InternalError("gone")
    mocker.patch("common.db_utils.get_db_connection", return_value=fake_connection)

    assert check_connection(mysql_settings) is False
    fake_connection.close.assert_called_once()


def test_fetch_scalar(fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = ("https://a.example",)
    value = fetch_scalar(fake_connection, "SELECT value FROM t WHERE k = %s", ("url",))
    assert value == "https://a.example"
    fake_connection.fake_cursor.execute.assert_called_once_with(
        "SELECT value FROM t WHERE k = %s", ("url",)
    )


def test_fetch_scalar_no_rows(fake_connection):
    fake_connection.fake_cursor.fetchone.return_value = None
    assert fetch_scalar(fake_connection, "SELECT 1") is None
    fake_connection.fake_cursor.execute.assert_called_once_with("SELECT 1", None)


def test_execute_statement_commits(fake_connection):
    fake_connection.fake_cursor.rowcount = 1
    assert execute_statement(fake_connection, "UPDATE t SET v = %s", ("x",)) == 1
    fake_connection.commit.assert_called_once()


def test_execute_statement_rolls_back_on_error(fake_connection):
    fake_connection.fake_cursor.execute.side_effect = psycopg.Error("boom")
    with pytest.raises(psycopg.Error):
        execute_statement(fake_connection, "UPDATE t SET v = 1")
    fake_connection.rollback.assert_called_once()
    fake_connection.commit.assert_not_called()


def test_execute_many_commits_once(fake_connection):
    rows = [(1, "a"), (1, "b")]
    execute_many(fake_connection, "INSERT INTO t (id, k) VALUES (%s, %s)", rows)
    fake_connection.fake_cursor.executemany.assert_called_once_with(
        "INSERT INTO t (id, k) VALUES (%s, %s)", rows
    )
    fake_connection.commit.assert_called_once()


def test_execute_many_rolls_back_every_row(fake_connection):
    fake_connection.fake_cursor.executemany.side_effect = pymysql.err.OperationalError(1213, "deadlock")
    with pytest.raises(pymysql.err.MySQLError):
        execute_many(fake_connection, "INSERT INTO t (k) VALUES (%s)", [("a",), ("b",)])
    fake_connection.rollback.assert_called_once()
    fake_connection.commit.assert_not_called()


def test_execute_script_runs_once_and_commits(fake_connection):
    execute_script(fake_connection, "CREATE VIEW a AS SELECT 1;\n\nCREATE VIEW b AS SELECT 2;")
    fake_connection.fake_cursor.execute.assert_called_once()
    fake_connection.commit.assert_called_once()


def test_execute_script_drains_mysql_result_sets(mocker):
    conn = mocker.MagicMock(spec=pymysql.connections.Connection)
    cursor = mocker.MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    cursor.nextset.side_effect = [True, True, None]

    execute_script(conn, "SELECT 1; SELECT 2; SELECT 3;")

    assert cursor.nextset.call_count == 3
    conn.commit.assert_called_once()


@pytest.mark.parametrize("name", ["gibbonSetting", "lime_plugins", "public.ir_config_parameter"])
def test_validate_identifier_accepts(name):
    assert validate_identifier(name) == name


@pytest.mark.parametrize("name", ["", "1abc", "t; DROP TABLE x", "a.b.c", "name`"])
def test_validate_identifier_rejects(name):
    with pytest.raises(ValueError):
        validate_identifier(name)


def test_object_is_queryable(fake_connection):
    assert object_is_queryable(fake_connection, "moodleUser") is True
    fake_connection.fake_cursor.execute.assert_called_once_with(
        "SELECT 1 FROM moodleUser LIMIT 1"
    )


def test_object_is_queryable_missing_table(fake_connection):
    fake_connection.fake_cursor.execute.side_effect = pymysql.err.ProgrammingError(
        1146, "Table doesn't exist"
    )
    assert object_is_queryable(fake_connection, "mdl_config") is False
    fake_connection.rollback.assert_called_once()
