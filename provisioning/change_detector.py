# provisioning/change_detector.py
# -*- coding: utf-8 -*-
"""
Detects whether a tracked value (typically the public base URL) differs
from what the application last persisted, and empties caches when it does.
"""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from common.command_utils import log_message
from common.file_utils import clear_directory_contents
from provisioning.config_models import SYMBOLS_DEFAULT, AppSettings
from provisioning.errors import ReconciliationQueryFailed

module_logger = logging.getLogger(__name__)


class ChangeResult(str, enum.Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FIRST_RUN = "first_run"
    UNKNOWN = "unknown"

    @property
    def should_invalidate(self) -> bool:
        return self in (ChangeResult.CHANGED, ChangeResult.FIRST_RUN)


@dataclass
class Detection:
    result: ChangeResult
    previous: Optional[str]
    desired: str


def detect_change(
    read_previous: Callable[[], Optional[str]],
    desired: str,
    description: str = "value",
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> Detection:
    """
    Compares the persisted value with the desired one.

    Args:
        read_previous: Returns the persisted value, or None when nothing has
            been stored yet. Any exception it raises is treated as a failed
            read.
        desired: Value the environment asks for.
        description: Name of the value for log lines.

    Returns:
        Detection: ``FIRST_RUN`` when nothing was stored, ``UNCHANGED`` or
        ``CHANGED`` after an exact string comparison, ``UNKNOWN`` when the
        previous value could not be read. Unknown never triggers
        invalidation.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    try:
        previous = read_previous()
    except Exception as e:
        failure = ReconciliationQueryFailed(
            f"Could not read previous {description}: {e}"
        )
        log_message(
            f"{symbols.get('warning', '!')} {failure}. Assuming unchanged.",
            "warning",
            logger_to_use,
            app_settings,
        )
        return Detection(ChangeResult.UNKNOWN, None, desired)

    if previous is None or previous == "":
        log_message(
            f"No previous {description} recorded; treating '{desired}' as first run.",
            "info",
            logger_to_use,
            app_settings,
        )
        return Detection(ChangeResult.FIRST_RUN, None, desired)

    if previous == desired:
        log_message(
            f"{description} unchanged ({desired}).",
            "info",
            logger_to_use,
            app_settings,
        )
        return Detection(ChangeResult.UNCHANGED, previous, desired)

    log_message(
        f"{symbols.get('step', '➡️')} {description} changed from '{previous}' to '{desired}'.",
        "info",
        logger_to_use,
        app_settings,
    )
    return Detection(ChangeResult.CHANGED, previous, desired)


def invalidate_caches(
    cache_dirs: Iterable[Path],
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> int:
    """Empties each cache directory, keeping the directories. Returns entries removed."""
    removed = 0
    for cache_dir in cache_dirs:
        removed += clear_directory_contents(
            Path(cache_dir), app_settings, current_logger=current_logger
        )
    return removed


def reconcile_tracked_value(
    read_previous: Callable[[], Optional[str]],
    write_value: Callable[[str], None],
    desired: str,
    cache_dirs: Iterable[Path] = (),
    on_invalidate: Optional[Callable[[Detection], None]] = None,
    description: str = "base URL",
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> Detection:
    """
    Detect, persist, then invalidate.

    The desired value is written whenever the comparison did not find it
    unchanged. Caches are emptied only after a successful write and only for
    ``CHANGED`` or ``FIRST_RUN``. ``on_invalidate`` runs application-level
    invalidation after the directories are emptied.
    """
    detection = detect_change(
        read_previous,
        desired,
        description=description,
        app_settings=app_settings,
        current_logger=current_logger,
    )
    if detection.result is ChangeResult.UNCHANGED:
        return detection

    write_value(desired)

    if detection.result.should_invalidate:
        invalidate_caches(cache_dirs, app_settings, current_logger)
        if on_invalidate is not None:
            on_invalidate(detection)
    return detection
