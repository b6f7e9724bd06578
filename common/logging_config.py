# common/logging_config.py
# -*- coding: utf-8 -*-
"""
Logging configuration for the bundle entrypoints.

Console output is human readable with a level symbol and an optional
prefix when run locally. Inside Kubernetes (``KUBERNETES_SERVICE_HOST``
set) or when JSON output is requested, every record is emitted as one
JSON object per line so the log collector can parse it.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from provisioning.config_models import SYMBOLS_DEFAULT

SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER = "{log_prefix}%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
SIMPLE_LOG_FORMAT_NO_PREFIX = (
    "%(asctime)s - %(levelname)s - %(symbol)s %(name)s - %(message)s"
)

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "symbol",
        "message",
        "asctime",
    }
)


class SymbolFormatter(logging.Formatter):
    """
    A custom formatter that adds symbols to log messages based on the log level.
    """

    def __init__(
        self, fmt=None, datefmt=None, style="%", validate=True, symbols=None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.symbols = symbols or SYMBOLS_DEFAULT

    def format(self, record):
        if record.levelno == logging.DEBUG:
            record.symbol = self.symbols.get("debug", "🐛")
        elif record.levelno == logging.INFO:
            record.symbol = self.symbols.get("info", "ℹ️")
        elif record.levelno == logging.WARNING:
            record.symbol = self.symbols.get("warning", "⚠️")
        elif record.levelno == logging.ERROR:
            record.symbol = self.symbols.get("error", "❌")
        elif record.levelno == logging.CRITICAL:
            record.symbol = self.symbols.get("critical", "🔥")
        else:
            record.symbol = ""

        return super().format(record)


class JSONFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON documents.

    Every entry carries timestamp, level, service, logger, message and
    source location. Values passed through ``extra=`` are nested under
    ``"extra"``.
    """

    def __init__(self, service_name: str = "bundle-entrypoint"):
        super().__init__()
        self.service_name = service_name
        self.hostname = os.environ.get("HOSTNAME", "unknown")
        self.pod_name = os.environ.get("POD_NAME", "unknown")
        self.namespace = os.environ.get("POD_NAMESPACE", "default")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, object] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            )
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
            "hostname": self.hostname,
            "pod_name": self.pod_name,
            "namespace": self.namespace,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def _resolve_level(log_level: Union[int, str]) -> int:
    if isinstance(log_level, int):
        return log_level
    numeric_level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(numeric_level, int):
        return logging.INFO
    return numeric_level


def setup_logging(
    log_level: Union[int, str] = logging.INFO,
    log_prefix: Optional[str] = None,
    json_output: Optional[bool] = None,
    service_name: str = "bundle-entrypoint",
    symbols: Optional[Dict[str, str]] = None,
) -> None:
    """
    Configures the root logger with a single stdout handler.

    Args:
        log_level: Level as a number or a name such as "DEBUG". Unknown
            names fall back to INFO.
        log_prefix: Optional prefix for every human readable line.
        json_output: Force JSON (True) or text (False). When None, JSON is
            used only inside Kubernetes.
        service_name: Value of the ``service`` field in JSON output.
        symbols: Level symbols for the text formatter.
    """
    numeric_level = _resolve_level(log_level)

    if json_output is None:
        json_output = bool(os.environ.get("KUBERNETES_SERVICE_HOST"))

    actual_prefix = (
        (log_prefix.strip() + " ")
        if log_prefix and log_prefix.strip()
        else ""
    )
    if actual_prefix:
        final_format_str = SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER.format(
            log_prefix=actual_prefix
        )
    else:
        final_format_str = SIMPLE_LOG_FORMAT_NO_PREFIX

    formatter: logging.Formatter
    if json_output:
        formatter = JSONFormatter(service_name)
    else:
        formatter = SymbolFormatter(
            fmt=final_format_str,
            datefmt="%Y-%m-%d %H:%M:%S",
            symbols=symbols,
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    logging.getLogger(__name__).debug(
        f"Logging configured. Level: {logging.getLevelName(numeric_level)}. JSON: {json_output}"
    )
