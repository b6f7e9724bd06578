# provisioning/config_reconciler.py
# -*- coding: utf-8 -*-
"""
Rewrites individual settings in an application's native configuration file
so they match the container environment.

Only lines that assign one of the recognised keys are touched. Every other
byte of the file, including comments, ordering and line endings, is written
back unchanged. Keys that do not occur in the file are reported and left
out; the reconciler never appends.
"""

import enum
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Sequence

from common.command_utils import log_message
from common.file_utils import write_text_atomic
from provisioning.config_models import SYMBOLS_DEFAULT, AppSettings
from provisioning.errors import ConfigVariableMissing

module_logger = logging.getLogger(__name__)


class ConfigFormat(str, enum.Enum):
    PHP_VAR = "php_var"  # $databaseServer = '...';  $CFG->dbhost = '...';
    PHP_ARRAY = "php_array"  # 'publicurl' => '...',
    INI = "ini"  # db_host = ...
    ENV = "env"  # SITE_URL=...
    DIRECTIVE = "directive"  # LogLevel warn


@dataclass
class ConfigBinding:
    """A configuration key and the value it should hold.

    ``source`` names where the value comes from (usually an environment
    variable) and is used when the value is missing.
    """

    key: str
    value: Optional[str]
    source: str


@dataclass
class ReconcileReport:
    path: Path
    file_missing: bool = False
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updated)


def escape_php_single_quoted(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _quoted_php(value: str) -> str:
    return "'" + escape_php_single_quoted(value) + "'"


_PHP_VALUE = r"""(?P<value>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*"|[^;,\)\]]*?)"""


def _line_pattern(fmt: ConfigFormat, key: str) -> Pattern[str]:
    k = re.escape(key)
    if fmt is ConfigFormat.PHP_VAR:
        return re.compile(
            rf"^(?P<head>\s*{k}\s*=\s*){_PHP_VALUE}(?P<tail>\s*;.*)$"
        )
    if fmt is ConfigFormat.PHP_ARRAY:
        return re.compile(
            rf"""^(?P<head>.*?(?P<q>['"]){k}(?P=q)\s*=>\s*){_PHP_VALUE}(?P<tail>\s*(?:[,\)\]].*)?)$"""
        )
    if fmt is ConfigFormat.DIRECTIVE:
        return re.compile(
            rf"^(?P<head>\s*{k}[ \t]+)(?P<value>\S.*?)(?P<tail>\s*)$"
        )
    if fmt is ConfigFormat.INI:
        return re.compile(
            rf"^(?P<head>\s*{k}\s*[=:][ \t]*)(?P<value>.*?)(?P<tail>\s*)$"
        )
    return re.compile(
        rf"^(?P<head>\s*(?:export\s+)?{k}=)(?P<value>.*?)(?P<tail>\s*)$"
    )


def _render_value(fmt: ConfigFormat, new_value: str, old_value: str) -> str:
    if fmt in (ConfigFormat.PHP_VAR, ConfigFormat.PHP_ARRAY):
        return _quoted_php(new_value)
    if fmt is ConfigFormat.ENV and len(old_value) >= 2:
        quote = old_value[0]
        if quote in ("'", '"') and old_value[-1] == quote:
            return f"{quote}{new_value}{quote}"
    return new_value


def _decode_value(fmt: ConfigFormat, raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] in ("'", '"') and raw[-1] == raw[0]:
        inner = raw[1:-1]
        if fmt in (ConfigFormat.PHP_VAR, ConfigFormat.PHP_ARRAY):
            return re.sub(r"\\(.)", r"\1", inner)
        return inner
    return raw


def _split_lines(content: str) -> List[str]:
    return content.split("\n")


def _split_eol(line: str):
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


def read_file(path: Path) -> str:
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


def read_config_value(
    path: Path, fmt: ConfigFormat, key: str
) -> Optional[str]:
    """Returns the current value of ``key`` in ``path``, or None if absent."""
    path = Path(path)
    if not path.is_file():
        return None
    pattern = _line_pattern(fmt, key)
    for line in _split_lines(read_file(path)):
        body, _ = _split_eol(line)
        match = pattern.match(body)
        if match:
            return _decode_value(fmt, match.group("value"))
    return None


def reconcile_file(
    path: Path,
    fmt: ConfigFormat,
    bindings: Sequence[ConfigBinding],
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> ReconcileReport:
    """
    Applies ``bindings`` to the configuration file at ``path``.

    Args:
        path (Path): Native configuration file of the application.
        fmt (ConfigFormat): Syntax of the assignments in the file.
        bindings (Sequence[ConfigBinding]): Keys and desired values.
        app_settings (Optional[AppSettings]): Settings used for log symbols.
        current_logger (Optional[logging.Logger]): Logger to use.

    Returns:
        ReconcileReport: Which keys were updated, already correct, skipped
        for lack of a value, or not present in the file. The file is only
        rewritten when at least one key changed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    path = Path(path)
    report = ReconcileReport(path=path)

    if not path.is_file():
        report.file_missing = True
        log_message(
            f"{symbols.get('info', 'ℹ️')} {path} does not exist yet. Skipping configuration update.",
            "info",
            logger_to_use,
            app_settings,
        )
        return report

    lines = _split_lines(read_file(path))

    for binding in bindings:
        if binding.value is None or binding.value == "":
            missing = ConfigVariableMissing(binding.key, binding.source)
            log_message(
                f"{symbols.get('warning', '!')} {missing}",
                "warning",
                logger_to_use,
                app_settings,
            )
            report.skipped.append(binding.key)
            continue

        pattern = _line_pattern(fmt, binding.key)
        found = False
        changed = False
        for index, line in enumerate(lines):
            body, eol = _split_eol(line)
            match = pattern.match(body)
            if not match:
                continue
            found = True
            rendered = _render_value(fmt, binding.value, match.group("value"))
            new_body = match.group("head") + rendered + match.group("tail")
            if new_body != body:
                lines[index] = new_body + eol
                changed = True

        if not found:
            report.not_found.append(binding.key)
            log_message(
                f"{symbols.get('warning', '!')} '{binding.key}' not found in {path}; left unchanged.",
                "warning",
                logger_to_use,
                app_settings,
            )
        elif changed:
            report.updated.append(binding.key)
        else:
            report.unchanged.append(binding.key)

    if report.changed:
        write_text_atomic(path, "\n".join(lines))
        log_message(
            f"{symbols.get('success', '✅')} Updated {', '.join(report.updated)} in {path}",
            "success",
            logger_to_use,
            app_settings,
        )
    else:
        log_message(
            f"{path} already up to date.",
            "debug",
            logger_to_use,
            app_settings,
        )
    return report


def insert_line_before(
    path: Path,
    anchor: str,
    new_line: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Inserts ``new_line`` directly above the first line matching the regular
    expression ``anchor``, unless a line with the same content already exists.

    Returns:
        bool: True if the file was modified.
    """
    logger_to_use = current_logger if current_logger else module_logger
    path = Path(path)
    if not path.is_file():
        return False

    lines = _split_lines(read_file(path))
    wanted = new_line.strip()
    if any(_split_eol(line)[0].strip() == wanted for line in lines):
        return False

    anchor_re = re.compile(anchor)
    for index, line in enumerate(lines):
        body, eol = _split_eol(line)
        if anchor_re.search(body):
            lines.insert(index, new_line + eol)
            write_text_atomic(path, "\n".join(lines))
            log_message(
                f"Inserted '{wanted}' into {path}",
                "info",
                logger_to_use,
                app_settings,
            )
            return True

    log_message(
        f"Anchor /{anchor}/ not found in {path}; '{wanted}' not inserted.",
        "warning",
        logger_to_use,
        app_settings,
    )
    return False


def render_ini(sections: Dict[str, Dict[str, str]]) -> str:
    """Renders a fresh INI document, used when an application ships no config file."""
    out: List[str] = []
    for section, values in sections.items():
        out.append(f"[{section}]")
        out.extend(f"{key} = {value}" for key, value in values.items())
        out.append("")
    return "\n".join(out)

