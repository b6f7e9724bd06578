# bundles/cli_handler.py
# -*- coding: utf-8 -*-
"""
Read-only views for the command line: the registered components and the
installation state of one of them.
"""

import logging
from typing import Dict, List, Optional

from bundles.base_component import BaseComponent
from bundles.registry import ComponentRegistry
from common.command_utils import log_message
from provisioning.config_models import AppSettings

module_logger = logging.getLogger(__name__)


def view_components(
    app_settings: AppSettings, current_logger: Optional[logging.Logger] = None
) -> List[str]:
    """
    Logs every registered component with its description and database engine.

    Returns:
        List[str]: The component names, sorted.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    components = ComponentRegistry.get_all_components()
    if not components:
        log_message(
            f"{symbols.get('warning', '!')} No components registered.",
            "warning",
            logger_to_use,
            app_settings,
        )
        return []

    text = f"{symbols.get('info', 'ℹ️')} Registered components:\n"
    for name in sorted(components):
        metadata = components[name].metadata or {}
        text += (
            f"  {name:<12} {metadata.get('description', ''):<45} "
            f"database: {metadata.get('database') or 'none'}\n"
        )
    log_message(text.rstrip(), "info", logger_to_use, app_settings)
    return sorted(components)


def component_status(component: BaseComponent) -> Dict[str, object]:
    store = component.state_store
    integration = component.integration_settings()
    marker_name = integration.marker_name if integration else None
    return {
        "component": component.name,
        "version": store.version,
        "state_dir": str(store.state_dir),
        "state": store.state(marker_name).value,
        "installed_versions": store.list_markers(),
        "integration_enabled": bool(integration and integration.enabled),
    }


def view_status(
    component: BaseComponent,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> Dict[str, object]:
    """Logs the installation state of ``component`` and returns it."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    status = component_status(component)
    text = f"{symbols.get('info', 'ℹ️')} Status of {component.name}:\n"
    text += f"  Version:             {status['version']}\n"
    text += f"  State:               {status['state']}\n"
    text += f"  State directory:     {status['state_dir']}\n"
    installed = status["installed_versions"] or ["none"]
    text += f"  Installed versions:  {', '.join(installed)}\n"
    text += f"  Integration enabled: {status['integration_enabled']}\n"
    log_message(text.rstrip(), "info", logger_to_use, app_settings)
    return status
