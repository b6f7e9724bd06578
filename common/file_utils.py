# common/file_utils.py
# -*- coding: utf-8 -*-
"""
File system utility functions: atomic writes and emptying cache directories.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from provisioning.config_models import SYMBOLS_DEFAULT, AppSettings

from .command_utils import log_message

module_logger = logging.getLogger(__name__)


def write_text_atomic(
    file_path: Path,
    content: str,
    mode: Optional[int] = None,
    newline: Optional[str] = "",
) -> None:
    """
    Writes ``content`` to ``file_path`` through a temporary file in the same
    directory followed by a rename, so readers never observe a partial file.
    An existing file keeps its owner and group.

    Parameters:
        file_path (Path): Destination file. Parent directories are created.
        content (str): Text to write. Written verbatim (no newline translation).
        mode (Optional[int]): Permission bits applied before the rename.
            When omitted, an existing file keeps its mode.
        newline (Optional[str]): Passed to ``open``; the default disables
            newline translation.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        existing: Optional[os.stat_result] = os.stat(file_path)
    except FileNotFoundError:
        existing = None
    if mode is None and existing is not None:
        mode = existing.st_mode & 0o7777

    fd, temp_path = tempfile.mkstemp(
        dir=str(file_path.parent), prefix=f".{file_path.name}.", suffix=".tmp"
    )
    try:
        temp_stat = os.fstat(fd)
        with os.fdopen(
            fd, "w", encoding="utf-8", errors="surrogateescape", newline=newline
        ) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if existing is not None and (existing.st_uid, existing.st_gid) != (
            temp_stat.st_uid,
            temp_stat.st_gid,
        ):
            os.chown(temp_path, existing.st_uid, existing.st_gid)
        os.chmod(temp_path, mode if mode is not None else 0o644)
        os.replace(temp_path, file_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def clear_directory_contents(
    directory_path: Path,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> int:
    """
    Deletes everything inside ``directory_path`` while keeping the directory.

    Parameters:
        directory_path (Path): Directory to empty. A missing directory is
            not an error.
        app_settings (Optional[AppSettings]): Application settings used for
            log symbols.
        current_logger (Optional[logging.Logger]): Logger to use.

    Returns:
        int: Number of top-level entries removed.

    Raises:
        OSError: An entry could not be removed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    directory_path = Path(directory_path)

    if not directory_path.exists():
        log_message(
            f"{symbols.get('info', 'ℹ️')} Directory {directory_path} does not exist. No cleanup needed.",
            "info",
            logger_to_use,
            app_settings,
        )
        return 0
    if not directory_path.is_dir():
        log_message(
            f"{symbols.get('warning', '!')} Path {directory_path} exists but is not a directory.",
            "warning",
            logger_to_use,
            app_settings,
        )
        return 0

    removed = 0
    for entry in directory_path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1

    log_message(
        f"{symbols.get('success', '✅')} Cleared {removed} entries from {directory_path}",
        "info",
        logger_to_use,
        app_settings,
    )
    return removed


def copy_tree_contents(
    source_dir: Path,
    destination_dir: Path,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """
    Copies every entry of ``source_dir``, hidden files included, into
    ``destination_dir``. Existing files are overwritten; files only present
    in the destination are kept. Modes and timestamps are preserved.

    Raises:
        FileNotFoundError: ``source_dir`` does not exist.
    """
    logger_to_use = current_logger if current_logger else module_logger
    source_dir = Path(source_dir)
    destination_dir = Path(destination_dir)
    if not source_dir.is_dir():
        raise FileNotFoundError(f"Package directory not found: {source_dir}")

    log_message(
        f"Copying {source_dir} to {destination_dir} ...",
        "info",
        logger_to_use,
        app_settings,
    )
    destination_dir.mkdir(parents=True, exist_ok=True)
    for entry in source_dir.iterdir():
        target = destination_dir / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(entry, target, follow_symlinks=False)
