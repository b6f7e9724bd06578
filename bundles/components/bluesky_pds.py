# bundles/components/bluesky_pds.py
# -*- coding: utf-8 -*-
"""
Bluesky Personal Data Server (Node.js, SQLite on the data volume).

The PDS has no database server to wait for. Each deployment needs its own
secrets; they are generated once, kept in ``<data dir>/.secrets`` and
passed to the server through its environment.
"""

import datetime
import secrets
import string
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from pydantic import AliasChoices, Field

from bundles.base_component import BaseComponent, ComponentSettings
from bundles.registry import ComponentRegistry
from common.file_utils import write_text_atomic
from provisioning.config_reconciler import ConfigFormat, read_config_value

SECRET_KEYS = (
    "PDS_ADMIN_PASSWORD",
    "PDS_JWT_SECRET",
    "PDS_PLC_ROTATION_KEY_K256_PRIVATE_KEY_HEX",
    "PDS_DPOP_SECRET",
)
_ALPHANUMERIC = string.ascii_letters + string.digits


def generate_password(length: int = 24) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def generate_hex_secret() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)


_GENERATORS = {
    "PDS_ADMIN_PASSWORD": generate_password,
    "PDS_JWT_SECRET": generate_hex_secret,
    "PDS_PLC_ROTATION_KEY_K256_PRIVATE_KEY_HEX": generate_hex_secret,
    "PDS_DPOP_SECRET": generate_hex_secret,
}


class BlueskyPDSSettings(ComponentSettings):
    version: str = Field(default="0", validation_alias=AliasChoices("PDS_VERSION"))
    data_directory: Path = Field(
        default=Path("/pds"), validation_alias=AliasChoices("PDS_DATA_DIRECTORY")
    )
    state_dir: Path = Field(
        default=Path("/pds/.clouve/installed"),
        validation_alias=AliasChoices("BUNDLE_STATE_DIR"),
    )
    hostname: Optional[str] = Field(default=None, validation_alias=AliasChoices("PDS_HOSTNAME"))
    invite_required: str = Field(
        default="0", validation_alias=AliasChoices("PDS_INVITE_REQUIRED")
    )
    admin_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PDS_ADMIN_PASSWORD")
    )
    jwt_secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PDS_JWT_SECRET")
    )
    plc_rotation_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PDS_PLC_ROTATION_KEY_K256_PRIVATE_KEY_HEX"),
    )
    dpop_secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PDS_DPOP_SECRET")
    )

    @property
    def secrets_file(self) -> Path:
        return self.data_directory / ".secrets"

    def provided_secrets(self) -> Dict[str, Optional[str]]:
        return {
            "PDS_ADMIN_PASSWORD": self.admin_password,
            "PDS_JWT_SECRET": self.jwt_secret,
            "PDS_PLC_ROTATION_KEY_K256_PRIVATE_KEY_HEX": self.plc_rotation_key,
            "PDS_DPOP_SECRET": self.dpop_secret,
        }


@ComponentRegistry.register(
    name="bluesky-pds",
    metadata={
        "description": "Bluesky Personal Data Server",
        "database": None,
    },
)
class BlueskyPDSComponent(BaseComponent):
    settings_class = BlueskyPDSSettings

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.secrets: Dict[str, str] = {}

    def resolve_secrets(self) -> Dict[str, str]:
        """
        Environment first, then the saved secrets file, then a new value.

        Returns:
            Dict[str, str]: One value for every key in ``SECRET_KEYS``.
        """
        s = self.settings
        resolved: Dict[str, str] = {}
        for key, provided in s.provided_secrets().items():
            if provided:
                self._log(f"Using {key} from the environment.", "debug")
                resolved[key] = provided
                continue
            saved = read_config_value(s.secrets_file, ConfigFormat.ENV, key)
            if saved:
                self._log(f"Using {key} from {s.secrets_file}.", "debug")
                resolved[key] = saved
                continue
            resolved[key] = _GENERATORS[key]()
            self._log(f"{self.symbols.get('gear', '⚙️')} Generated {key}.")
        return resolved

    def save_secrets(self, values: Mapping[str, str]) -> bool:
        """Writes the secrets file once, mode 0600. Returns True if it was written."""
        path = self.settings.secrets_file
        if path.is_file():
            self._log(f"Secrets file already exists at {path}")
            return False
        generated_on = datetime.datetime.now(datetime.timezone.utc).isoformat()
        lines = [
            "# Bluesky PDS Auto-Generated Secrets",
            f"# Generated on: {generated_on}",
            "# DO NOT SHARE THESE VALUES",
            "",
        ]
        lines.extend(f"{key}={values[key]}" for key in SECRET_KEYS)
        write_text_atomic(path, "\n".join(lines) + "\n", mode=0o600)
        self._log(
            f"{self.symbols.get('success', '✅')} Secrets saved to {path}. Back this file up for disaster recovery.",
            "success",
        )
        return True

    def prepare(self) -> None:
        self.secrets = self.resolve_secrets()
        self.save_secrets(self.secrets)
        s = self.settings
        self._log(
            f"Hostname: {s.hostname or 'not set'}, data directory: {s.data_directory}, invite required: {s.invite_required}"
        )

    def install(self) -> bool:
        self.settings.data_directory.mkdir(parents=True, exist_ok=True)
        return True

    def handoff_env(self, base_env: Mapping[str, str]) -> Dict[str, str]:
        env = dict(base_env)
        if not self.secrets:
            self.secrets = self.resolve_secrets()
        env.update(self.secrets)
        return env

    def default_command(self) -> List[str]:
        return ["node", "--enable-source-maps", "index.js"]
