# common/wait_utils.py
# -*- coding: utf-8 -*-
"""
Bounded polling of dependencies that start concurrently with the application
container, most commonly its database server.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from provisioning.config_models import (
    SYMBOLS_DEFAULT,
    AppSettings,
    DatabaseSettings,
    WaitSettings,
)
from provisioning.errors import DependencyUnavailable

from .command_utils import log_message
from .db_utils import check_connection

module_logger = logging.getLogger(__name__)


@dataclass
class WaitResult:
    ready: bool
    attempts: int
    elapsed: float
    last_error: Optional[str] = None


def wait_until_ready(
    check: Callable[[], bool],
    max_attempts: int,
    delay_seconds: float,
    description: str = "dependency",
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> WaitResult:
    """
    Calls ``check`` until it returns a truthy value or the attempts run out.

    A check that raises counts as a failed attempt. The delay is fixed and is
    slept after every failed attempt, so an unreachable dependency is given
    up on after ``max_attempts * delay_seconds``.

    Args:
        check: Zero-argument liveness test.
        max_attempts: Number of checks, at least 1.
        delay_seconds: Fixed sleep after each failed check.
        description: Name of the dependency for log lines.
        app_settings: Settings used for log symbols.
        current_logger: Logger to use.
        sleep: Sleep function, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.

    Returns:
        WaitResult: Whether the dependency became ready and after how many
        attempts.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = clock()
    last_error: Optional[str] = None
    log_message(
        f"{symbols.get('info', 'ℹ️')} Waiting for {description} (up to {max_attempts} attempts, {delay_seconds}s apart)...",
        "info",
        logger_to_use,
        app_settings,
    )

    for attempt in range(1, max_attempts + 1):
        try:
            if check():
                log_message(
                    f"{symbols.get('success', '✅')} {description} is ready after {attempt} attempt(s).",
                    "success",
                    logger_to_use,
                    app_settings,
                )
                return WaitResult(True, attempt, clock() - started)
            last_error = None
        except Exception as e:
            last_error = str(e)

        log_message(
            f"{description} not ready ({attempt}/{max_attempts})"
            + (f": {last_error}" if last_error else ""),
            "debug",
            logger_to_use,
            app_settings,
        )
        sleep(delay_seconds)

    log_message(
        f"{symbols.get('error', '❌')} {description} not ready after {max_attempts} attempts.",
        "error",
        logger_to_use,
        app_settings,
    )
    return WaitResult(False, max_attempts, clock() - started, last_error)


def wait_for_database(
    db_settings: DatabaseSettings,
    wait_settings: WaitSettings,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> WaitResult:
    """
    Blocks until the database answers ``SELECT 1``.

    Raises:
        DependencyUnavailable: The retry budget was exhausted.
    """
    logger_to_use = current_logger if current_logger else module_logger
    result = wait_until_ready(
        lambda: check_connection(db_settings, current_logger=logger_to_use),
        max_attempts=wait_settings.max_attempts,
        delay_seconds=wait_settings.delay_seconds,
        description=f"database {db_settings.describe()}",
        app_settings=app_settings,
        current_logger=logger_to_use,
        sleep=sleep,
    )
    if not result.ready:
        raise DependencyUnavailable(
            f"Database {db_settings.describe()} did not become available "
            f"after {result.attempts} attempts"
        )
    return result
