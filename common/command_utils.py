# common/command_utils.py
# -*- coding: utf-8 -*-
"""
Utilities for executing external commands and logging their output.
"""

import logging
import os
import shutil
import subprocess
from typing import Dict, Iterable, List, Mapping, NoReturn, Optional, Union

from provisioning.config_models import SYMBOLS_DEFAULT, AppSettings

module_logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


def redact(text: str, secrets: Iterable[Optional[str]]) -> str:
    """Replaces every non-empty value of ``secrets`` in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _symbols(app_settings: Optional[AppSettings]) -> Dict[str, str]:
    return (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )


def log_message(
    message: str,
    level: str = "info",
    current_logger: Optional[logging.Logger] = None,
    app_settings: Optional[AppSettings] = None,
    exc_info: bool = False,
) -> None:
    """
    Logs a message at a named level.

    Args:
        message (str): The log message to be recorded.
        level (str): "debug", "info", "success", "warning", "error" or
            "critical". "success" is logged at INFO.
        current_logger (Optional[logging.Logger]): Logger to use. Falls back
            to the module logger.
        app_settings (Optional[AppSettings]): Settings carrying the symbol
            table; accepted for signature parity with the other helpers.
        exc_info (bool): Attach exception information to the record.
    """
    effective_logger = current_logger if current_logger else module_logger

    if level == "warning":
        effective_logger.warning(message, exc_info=exc_info)
    elif level == "error":
        effective_logger.error(message, exc_info=exc_info)
    elif level == "critical":
        effective_logger.critical(message, exc_info=exc_info)
    elif level == "debug":
        effective_logger.debug(message, exc_info=exc_info)
    else:
        effective_logger.info(message, exc_info=exc_info)


def run_command(
    command: Union[List[str], str],
    app_settings: Optional[AppSettings],
    check: bool = True,
    shell: bool = False,
    capture_output: bool = False,
    text: bool = True,
    cmd_input: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    sensitive: Iterable[Optional[str]] = (),
) -> subprocess.CompletedProcess:
    """
    Executes an external command and logs the invocation and its result.

    Args:
        command: The command as a list of arguments, or a string when
            ``shell`` is True.
        app_settings: Settings used for log symbols.
        check: Raise ``CalledProcessError`` on a non-zero exit code.
        shell: Run through the shell.
        capture_output: Capture stdout and stderr.
        text: Decode output streams as text.
        cmd_input: Data written to the command's stdin.
        current_logger: Logger to use.
        cwd: Working directory for the command.
        env: Complete environment for the command. Inherits the current
            environment when omitted.
        sensitive: Values (passwords) replaced with [REDACTED] wherever the
            command line or its output is logged.

    Returns:
        subprocess.CompletedProcess: The completed process.

    Raises:
        subprocess.CalledProcessError: The command failed and ``check`` is True.
        FileNotFoundError: The executable does not exist.
    """
    effective_logger = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)

    command_to_run: Union[List[str], str]
    if shell:
        command_to_run = (
            " ".join(command) if isinstance(command, list) else command
        )
        command_to_log_str = str(command_to_run)
    else:
        if isinstance(command, str):
            log_message(
                f"{symbols.get('warning', '!')} Running string command '{command}' without shell=True. Consider list format.",
                "warning",
                effective_logger,
                app_settings,
            )
            command_to_run = command.split()
            command_to_log_str = command
        else:
            command_to_run = list(command)
            command_to_log_str = subprocess.list2cmdline(command_to_run)

    secrets = [s for s in sensitive if s]
    command_to_log_str = redact(command_to_log_str, secrets)

    log_message(
        f"{symbols.get('gear', '⚙️')} Executing: {command_to_log_str} {f'(in {cwd})' if cwd else ''}",
        "info",
        effective_logger,
        app_settings,
    )

    try:
        result = subprocess.run(
            command_to_run,
            check=check,
            shell=shell,
            capture_output=capture_output,
            text=text,
            input=cmd_input,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
        if capture_output:
            if result.stdout and result.stdout.strip():
                log_message(
                    f"   stdout: {redact(result.stdout.strip(), secrets)}",
                    "debug",
                    effective_logger,
                    app_settings,
                )
            if result.stderr and result.stderr.strip():
                log_message(
                    f"   stderr: {redact(result.stderr.strip(), secrets)}",
                    "debug",
                    effective_logger,
                    app_settings,
                )
        return result
    except subprocess.CalledProcessError as e:
        log_message(
            f"{symbols.get('error', '❌')} Command `{command_to_log_str}` failed (rc {e.returncode}).",
            "error",
            effective_logger,
            app_settings,
        )
        if e.stdout and hasattr(e.stdout, "strip") and e.stdout.strip():
            log_message(
                f"   stdout: {redact(e.stdout.strip(), secrets)}",
                "error",
                effective_logger,
                app_settings,
            )
        if e.stderr and hasattr(e.stderr, "strip") and e.stderr.strip():
            log_message(
                f"   stderr: {redact(e.stderr.strip(), secrets)}",
                "error",
                effective_logger,
                app_settings,
            )
        raise
    except FileNotFoundError as e:
        log_message(
            f"{symbols.get('error', '❌')} Command not found: {e.filename}. Ensure it's installed and in PATH.",
            "error",
            effective_logger,
            app_settings,
        )
        raise


def command_exists(command_name: str) -> bool:
    """
    Check if a command exists in the system's PATH.

    Parameters:
        command_name (str): The name of the command to check for existence.

    Returns:
        bool: True if the command is found in the system's PATH, False otherwise.
    """
    return shutil.which(command_name) is not None


def exec_command(
    command: List[str],
    env: Optional[Mapping[str, str]] = None,
    current_logger: Optional[logging.Logger] = None,
    app_settings: Optional[AppSettings] = None,
) -> NoReturn:
    """
    Replaces the current process with ``command``.

    The wrapped application inherits the process id, so its exit code becomes
    the container's exit code. Log handlers are flushed first because nothing
    after ``execvpe`` runs.
    """
    effective_logger = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)
    if not command:
        raise ValueError("No command given to hand off to")

    log_message(
        f"{symbols.get('rocket', '🚀')} Handing off to: {subprocess.list2cmdline(command)}",
        "info",
        effective_logger,
        app_settings,
    )
    logging.shutdown()
    os.execvpe(
        command[0],
        command,
        dict(env) if env is not None else dict(os.environ),
    )
