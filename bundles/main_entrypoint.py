# bundles/main_entrypoint.py
# -*- coding: utf-8 -*-
"""
Container entrypoint for the application bundles.

    bundle-entrypoint list
    bundle-entrypoint status moodle
    bundle-entrypoint run moodle [-- command ...]

``run`` waits for the database, installs or upgrades once per version,
reconciles configuration, applies the integration and then replaces itself
with the application command.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

import bundles.components  # noqa: F401
from bundles.base_component import BaseComponent
from bundles.cli_handler import view_components, view_status
from bundles.orchestrator import LifecycleOrchestrator
from bundles.registry import ComponentRegistry
from common.logging_config import setup_logging
from provisioning.config_loader import load_app_settings, load_component_settings
from provisioning.config_models import AppSettings
from provisioning.integration import collect_fragments

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bundle-entrypoint",
        description="Provisioning entrypoint for the application bundles",
        epilog="Example: bundle-entrypoint run moodle -- apache2-foreground",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    parser.add_argument(
        "--config",
        dest="config_file",
        default=None,
        help="Path to YAML configuration file (default: $BUNDLE_CONFIG_FILE).",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Console log format. JSON is always used inside Kubernetes.",
    )
    parser.add_argument(
        "--log-prefix", default=None, help="Prefix for console log lines."
    )

    subparsers = parser.add_subparsers(dest="action", metavar="ACTION")
    subparsers.add_parser("list", help="List the registered components.")
    status_parser = subparsers.add_parser(
        "status", help="Show the installation state of a component."
    )
    status_parser.add_argument("component", help="Component name.")
    run_parser = subparsers.add_parser(
        "run",
        help="Provision a component and hand off to its command.",
    )
    run_parser.add_argument("component", help="Component name.")
    run_parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run instead of the component default.",
    )
    return parser


def create_component(
    name: str,
    app_settings: AppSettings,
    config_file: Optional[str] = None,
) -> BaseComponent:
    """
    Reads the settings of component ``name`` and builds it.

    Raises:
        KeyError: No component is registered under ``name``.
        SystemExit: The component settings are invalid.
    """
    component_cls = ComponentRegistry.get_component(name)
    settings = load_component_settings(
        component_cls.settings_class, name, config_file, logger
    )
    fragments: List[str] = []
    if component_cls.integration_sql_prefix:
        fragments = collect_fragments(
            os.environ, component_cls.integration_sql_prefix, logger
        )
    return component_cls(
        settings,
        app_settings,
        logger=logging.getLogger(f"bundles.{name}"),
        fragments=fragments,
    )


def main_entry(cli_args_list: Optional[List[str]] = None) -> int:
    parser = build_parser()
    parsed_cli_args = parser.parse_args(cli_args_list)

    try:
        app_settings = load_app_settings(
            parsed_cli_args, parsed_cli_args.config_file
        )
    except SystemExit as e:
        print(
            f"CRITICAL: Failed to load or validate application configuration: {e}",
            file=sys.stderr,
        )
        return 1

    setup_logging(
        log_level=app_settings.log_level,
        log_prefix=app_settings.log_prefix,
        json_output=True if app_settings.log_format == "json" else None,
        symbols=app_settings.symbols,
    )

    if parsed_cli_args.action is None:
        parser.print_help(sys.stderr)
        return 2

    if parsed_cli_args.action == "list":
        view_components(app_settings, logger)
        return 0

    try:
        component = create_component(
            parsed_cli_args.component, app_settings, parsed_cli_args.config_file
        )
    except KeyError as e:
        logger.critical(
            f"{app_settings.symbols.get('critical', '🔥')} {e.args[0]}. Known components: {', '.join(sorted(ComponentRegistry.get_all_components()))}"
        )
        return 2
    except (SystemExit, ValueError) as e:
        logger.critical(
            f"{app_settings.symbols.get('critical', '🔥')} Invalid settings for {parsed_cli_args.component}: {e}"
        )
        return 1

    if parsed_cli_args.action == "status":
        view_status(component, app_settings, logger)
        return 0

    command = list(parsed_cli_args.command or [])
    if command and command[0] == "--":
        command = command[1:]

    lifecycle = LifecycleOrchestrator(component, app_settings, logger)
    lifecycle.run()
    lifecycle.handoff(command or None)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main_entry())
