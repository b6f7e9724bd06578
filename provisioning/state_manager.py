# provisioning/state_manager.py
# -*- coding: utf-8 -*-
"""
Installation state persisted as marker files in a per-component directory.

Each successful installation or upgrade writes one marker named after the
application version. Markers are never rewritten; a new version adds a new
file next to the old ones. Integration completion is tracked with its own
marker so that it can be retried independently of installation.
"""

import datetime
import enum
import json
import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from common.command_utils import log_message
from common.file_utils import write_text_atomic
from provisioning.config_models import SYMBOLS_DEFAULT, AppSettings

module_logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


class InstallationState(str, enum.Enum):
    NOT_INSTALLED = "not_installed"
    INSTALLED = "installed"
    INTEGRATION_COMPLETE = "integration_complete"


@dataclass(frozen=True)
class InstallationMarker:
    component: str
    version: str
    installed_at: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2) + "\n"


class StateStore:
    """
    Reads and writes the marker files of one component.

    Args:
        state_dir (Path): Directory holding the markers. Created on first write.
        component (str): Component name recorded in every marker.
        version (str): Application version this container ships.
        app_settings (Optional[AppSettings]): Settings used for log symbols.
        current_logger (Optional[logging.Logger]): Logger to use.
    """

    def __init__(
        self,
        state_dir: Path,
        component: str,
        version: str,
        app_settings: Optional[AppSettings] = None,
        current_logger: Optional[logging.Logger] = None,
    ):
        if not _VERSION_RE.match(version or ""):
            raise ValueError(f"Invalid version string for marker: {version!r}")
        self.state_dir = Path(state_dir)
        self.component = component
        self.version = version
        self.app_settings = app_settings
        self.logger = current_logger if current_logger else module_logger
        self.symbols = (
            app_settings.symbols
            if app_settings and app_settings.symbols
            else SYMBOLS_DEFAULT
        )

    @property
    def marker_path(self) -> Path:
        return self.state_dir / self.version

    def list_markers(self) -> List[str]:
        """Versions that have a marker, sorted by name. Hidden files are ignored."""
        if not self.state_dir.is_dir():
            return []
        return sorted(
            p.name
            for p in self.state_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def has_any_marker(self) -> bool:
        return bool(self.list_markers())

    def is_installed(self) -> bool:
        return self.marker_path.is_file()

    def read_marker(self) -> Optional[InstallationMarker]:
        """
        Loads the marker of the current version.

        Markers written by older entrypoints contain only a timestamp; those
        are returned with the timestamp as ``installed_at``.
        """
        if not self.is_installed():
            return None
        raw = self.marker_path.read_text(encoding="utf-8").strip()
        try:
            data = json.loads(raw)
            return InstallationMarker(
                component=data.get("component", self.component),
                version=data.get("version", self.version),
                installed_at=data.get("installed_at", ""),
            )
        except (json.JSONDecodeError, AttributeError):
            return InstallationMarker(self.component, self.version, raw)

    def mark_installed(self) -> InstallationMarker:
        """Writes the marker for the current version. An existing marker is left untouched."""
        existing = self.read_marker()
        if existing is not None:
            return existing
        marker = InstallationMarker(
            component=self.component,
            version=self.version,
            installed_at=datetime.datetime.now(datetime.timezone.utc)
            .replace(microsecond=0)
            .isoformat(),
        )
        write_text_atomic(self.marker_path, marker.to_json())
        log_message(
            f"{self.symbols.get('success', '✅')} Recorded installation of {self.component} {self.version} in {self.marker_path}",
            "success",
            self.logger,
            self.app_settings,
        )
        return marker

    def integration_marker_path(self, marker_name: str) -> Path:
        return self.state_dir / marker_name

    def is_integration_complete(self, marker_name: str) -> bool:
        return self.integration_marker_path(marker_name).is_file()

    def mark_integration_complete(self, marker_name: str) -> None:
        """
        Records that the integration unit ran and verified.

        Raises:
            RuntimeError: The current version has no installation marker.
        """
        if not self.is_installed():
            raise RuntimeError(
                f"Cannot record integration '{marker_name}' before {self.component} {self.version} is installed"
            )
        write_text_atomic(
            self.integration_marker_path(marker_name),
            datetime.datetime.now(datetime.timezone.utc)
            .replace(microsecond=0)
            .isoformat()
            + "\n",
        )
        log_message(
            f"{self.symbols.get('success', '✅')} Recorded integration marker {marker_name}",
            "success",
            self.logger,
            self.app_settings,
        )

    def state(self, marker_name: Optional[str] = None) -> InstallationState:
        if not self.is_installed():
            return InstallationState.NOT_INSTALLED
        if marker_name and self.is_integration_complete(marker_name):
            return InstallationState.INTEGRATION_COMPLETE
        return InstallationState.INSTALLED

    def read_value(self, name: str) -> Optional[str]:
        """Returns a stored value, or None if it was never written."""
        path = self.state_dir / name
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8").strip()

    def write_value(self, name: str, value: str) -> None:
        write_text_atomic(self.state_dir / name, value + "\n")
