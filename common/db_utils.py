# common/db_utils.py
# -*- coding: utf-8 -*-
"""
Database helpers shared by all components.

PostgreSQL is reached through Psycopg 3, MySQL/MariaDB through PyMySQL.
Both drivers use the ``%s`` parameter style, so queries written here bind
values the same way regardless of the engine. Values are always passed as
bound parameters; only pre-validated identifiers are interpolated.
"""

import logging
import re
from typing import Any, Optional, Sequence

import psycopg
import pymysql
from pymysql.constants import CLIENT

from provisioning.config_models import DatabaseSettings

module_logger = logging.getLogger(__name__)

DB_ERRORS = (psycopg.Error, pymysql.err.MySQLError)

_IDENTIFIER_RE = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$"
)


def get_db_connection(
    db_settings: DatabaseSettings,
    connect_timeout: int = 5,
    current_logger: Optional[logging.Logger] = None,
) -> Optional[Any]:
    """
    Opens a connection to the configured database server.

    Args:
        db_settings (DatabaseSettings): Engine, host, port, name and
            credentials of the target.
        connect_timeout (int): Seconds before a connection attempt is
            abandoned.
        current_logger (Optional[logging.Logger]): Logger to use.

    Returns:
        A ``psycopg.Connection`` or ``pymysql.connections.Connection`` on
        success, None if the server could not be reached or refused the
        credentials.
    """
    logger_to_use = current_logger if current_logger else module_logger
    try:
        logger_to_use.debug(
            f"Attempting to connect to {db_settings.describe()}"
        )
        if db_settings.engine == "postgres":
            conn = psycopg.connect(
                host=db_settings.host,
                port=db_settings.port,
                dbname=db_settings.name,
                user=db_settings.user,
                password=db_settings.password,
                connect_timeout=connect_timeout,
            )
        else:
            conn = pymysql.connect(
                host=db_settings.host,
                port=db_settings.port,
                user=db_settings.user,
                password=db_settings.password,
                database=db_settings.name or None,
                connect_timeout=connect_timeout,
                charset="utf8mb4",
                client_flag=CLIENT.MULTI_STATEMENTS,
            )
        logger_to_use.debug(f"Connected to {db_settings.describe()}")
        return conn
    except psycopg.OperationalError as e:
        logger_to_use.debug(
            f"PostgreSQL connection to {db_settings.describe()} failed: {e}"
        )
    except pymysql.err.OperationalError as e:
        logger_to_use.debug(
            f"MySQL connection to {db_settings.describe()} failed: {e}"
        )
    except DB_ERRORS as e:
        logger_to_use.error(
            f"Database connection to {db_settings.describe()} failed: {e}"
        )
    return None


def check_connection(
    db_settings: DatabaseSettings,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """Liveness check: connect, run ``SELECT 1`` and close."""
    conn = get_db_connection(db_settings, current_logger=current_logger)
    if conn is None:
        return False
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return True
    except DB_ERRORS as e:
        (current_logger or module_logger).debug(f"Connection check query failed: {e}")
        return False
    finally:
        conn.close()


def fetch_scalar(
    conn: Any, query: str, params: Optional[Sequence[Any]] = None
) -> Optional[Any]:
    """
    Runs a query and returns the first column of the first row.

    Returns None when the query yields no rows. Driver errors propagate.
    """
    with conn.cursor() as cur:
        cur.execute(query, params or None)
        row = cur.fetchone()
    if row is None:
        return None
    return row[0]


def execute_statement(
    conn: Any, query: str, params: Optional[Sequence[Any]] = None
) -> int:
    """Executes one statement with bound parameters and commits it."""
    try:
        with conn.cursor() as cur:
            cur.execute(query, params or None)
            rowcount = cur.rowcount
        conn.commit()
        return rowcount
    except DB_ERRORS:
        conn.rollback()
        raise


def execute_many(
    conn: Any, query: str, rows: Sequence[Sequence[Any]]
) -> None:
    """Executes one statement per parameter row and commits them as one transaction."""
    try:
        with conn.cursor() as cur:
            cur.executemany(query, list(rows))
        conn.commit()
    except DB_ERRORS:
        conn.rollback()
        raise


def execute_script(conn: Any, script: str) -> None:
    """
    Executes a multi-statement SQL script as one unit and commits.

    PostgreSQL accepts several statements in one call when no parameters
    are bound. PyMySQL connections are opened with MULTI_STATEMENTS and
    every result set is drained so that errors in later statements surface.
    """
    try:
        with conn.cursor() as cur:
            cur.execute(script)
            if isinstance(conn, pymysql.connections.Connection):
                while cur.nextset():
                    pass
        conn.commit()
    except DB_ERRORS:
        conn.rollback()
        raise


def validate_identifier(name: str) -> str:
    """Returns ``name`` unchanged if it is a plain (optionally schema-qualified) identifier."""
    if not _IDENTIFIER_RE.match(name or ""):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def object_is_queryable(conn: Any, name: str) -> bool:
    """
    Checks that a table or view can be selected from.

    Args:
        conn: An open connection.
        name (str): Table or view name, optionally ``schema.name``.

    Returns:
        bool: True if ``SELECT 1 FROM name LIMIT 1`` succeeds.
    """
    identifier = validate_identifier(name)
    try:
        with conn.cursor() as cur:
            cur.execute(f"SELECT 1 FROM {identifier} LIMIT 1")
            cur.fetchall()
        return True
    except DB_ERRORS as e:
        module_logger.debug(f"Object '{identifier}' is not queryable: {e}")
        conn.rollback()
        return False
