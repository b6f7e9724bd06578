import logging
import subprocess
from unittest.mock import MagicMock

import pytest

from common.command_utils import (
    REDACTED,
    command_exists,
    exec_command,
    log_message,
    redact,
    run_command,
)


def _logged_messages(mock_logger):
    calls = []
    for method in ("debug", "info", "warning", "error", "critical"):
        calls.extend(c.args[0] for c in getattr(mock_logger, method).call_args_list)
    return calls


def test_redact_replaces_every_secret():
    assert redact("user:pw@host pw", ["pw"]) == f"user:{REDACTED}@host {REDACTED}"


def test_redact_ignores_empty_and_none_values():
    assert redact("nothing to hide", [None, ""]) == "nothing to hide"


@pytest.mark.parametrize(
    "level, method",
    [
        ("warning", "warning"),
        ("error", "error"),
        ("critical", "critical"),
        ("debug", "debug"),
        ("success", "info"),
        ("info", "info"),
    ],
)
def test_log_message_levels(mock_logger, level, method):
    log_message("hello", level, mock_logger)
    getattr(mock_logger, method).assert_called_once_with("hello", exc_info=False)


def test_run_command_success(mocker, app_settings, mock_logger):
    mock_run = mocker.patch(
        "subprocess.run",
        return_value=subprocess.CompletedProcess(["echo", "hi"], 0, "hi\n", ""),
    )

    result = run_command(
        ["echo", "hi"],
        app_settings,
        capture_output=True,
        current_logger=mock_logger,
    )

    assert result.returncode == 0
    mock_run.assert_called_once_with(
        ["echo", "hi"],
        check=True,
        shell=False,
        capture_output=True,
        text=True,
        input=None,
        cwd=None,
        env=None,
    )
    assert any("Executing: echo hi" in m for m in _logged_messages(mock_logger))


def test_run_command_redacts_sensitive_values(mocker, app_settings, mock_logger):
    mocker.patch(
        "subprocess.run",
        return_value=subprocess.CompletedProcess(
            [], 0, "connected with s3cret", ""
        ),
    )

    run_command(
        ["php", "install.php", "--dbpass=s3cret", "--adminpass=hunter2"],
        app_settings,
        capture_output=True,
        current_logger=mock_logger,
        sensitive=["s3cret", "hunter2", None],
    )

    messages = _logged_messages(mock_logger)
    assert messages
    assert not any("s3cret" in m or "hunter2" in m for m in messages)
    assert any(f"--dbpass={REDACTED}" in m for m in messages)


def test_run_command_failure_is_reraised_and_redacted(mocker, app_settings, mock_logger):
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            2, ["tool"], output="", stderr="bad password s3cret"
        ),
    )

    with pytest.raises(subprocess.CalledProcessError):
        run_command(
            ["tool", "s3cret"],
            app_settings,
            capture_output=True,
            current_logger=mock_logger,
            sensitive=["s3cret"],
        )

    errors = [c.args[0] for c in mock_logger.error.call_args_list]
    assert any("failed (rc 2)" in m for m in errors)
    assert not any("s3cret" in m for m in errors)


def test_run_command_not_found(mocker, app_settings, mock_logger):
    error = FileNotFoundError(2, "No such file", "missing-tool")
    mocker.patch("subprocess.run", side_effect=error)

    with pytest.raises(FileNotFoundError):
        run_command(["missing-tool"], app_settings, current_logger=mock_logger)

    assert "missing-tool" in mock_logger.error.call_args.args[0]


def test_run_command_passes_environment_copy(mocker, app_settings):
    mock_run = mocker.patch(
        "subprocess.run", return_value=subprocess.CompletedProcess([], 0)
    )
    env = {"A": "1"}

    run_command(["true"], app_settings, env=env)

    passed = mock_run.call_args.kwargs["env"]
    assert passed == env
    assert passed is not env


def test_command_exists(mocker):
    mocker.patch("shutil.which", side_effect=lambda c: "/bin/ls" if c == "ls" else None)
    assert command_exists("ls") is True
    assert command_exists("nope") is False


def test_exec_command_replaces_process(mocker, mock_logger):
    mock_exec = mocker.patch("os.execvpe")
    mocker.patch("logging.shutdown")

    exec_command(["apache2-foreground"], env={"X": "1"}, current_logger=mock_logger)

    mock_exec.assert_called_once_with(
        "apache2-foreground", ["apache2-foreground"], {"X": "1"}
    )
    assert "Handing off to: apache2-foreground" in mock_logger.info.call_args.args[0]


def test_exec_command_flushes_logging_before_exec(mocker):
    order = MagicMock()
    mocker.patch("logging.shutdown", side_effect=lambda: order("shutdown"))
    mocker.patch("os.execvpe", side_effect=lambda *a: order("exec"))

    exec_command(["true"], env={}, current_logger=MagicMock(spec=logging.Logger))

    assert [c.args[0] for c in order.call_args_list] == ["shutdown", "exec"]


def test_exec_command_rejects_empty_command():
    with pytest.raises(ValueError):
        exec_command([])
