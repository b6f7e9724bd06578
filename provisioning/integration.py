# provisioning/integration.py
# -*- coding: utf-8 -*-
"""
Cross-application integration from numbered SQL fragments.

Deployments provide the SQL as environment variables ``<PREFIX>_1``,
``<PREFIX>_2``, ... because a single variable is too small for the whole
script. The fragments are joined in order and executed once per
installation as one unit.
"""

import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence

from common.command_utils import log_message
from common.db_utils import (
    DB_ERRORS,
    execute_script,
    get_db_connection,
    object_is_queryable,
)
from common.wait_utils import wait_until_ready
from provisioning.config_models import (
    SYMBOLS_DEFAULT,
    AppSettings,
    DatabaseSettings,
    IntegrationSettings,
)
from provisioning.errors import IntegrationFailed
from provisioning.state_manager import StateStore

module_logger = logging.getLogger(__name__)


def collect_fragments(
    environ: Mapping[str, str],
    prefix: str,
    current_logger: Optional[logging.Logger] = None,
) -> List[str]:
    """
    Reads ``<prefix>_1``, ``<prefix>_2``, ... until the first index that is
    missing or empty.

    Fragments with a higher index than the gap are not used; a warning lists
    them so a misnumbered deployment is noticed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    fragments: List[str] = []
    index = 1
    while environ.get(f"{prefix}_{index}"):
        fragments.append(environ[f"{prefix}_{index}"])
        index += 1

    stranded = sorted(
        (
            name
            for name, value in environ.items()
            if value
            and name.startswith(f"{prefix}_")
            and name[len(prefix) + 1 :].isdigit()
            and int(name[len(prefix) + 1 :]) > index
        ),
        key=lambda name: int(name[len(prefix) + 1 :]),
    )
    if stranded:
        logger_to_use.warning(
            f"{prefix}_{index} is not set; ignoring later fragments: {', '.join(stranded)}"
        )
    return fragments


def compose_fragments(fragments: Sequence[str]) -> str:
    """Joins fragments in order, separated by a blank line."""
    return "\n\n".join(fragments)


class IntegrationComposer:
    """
    Runs one integration unit against the component's database.

    Args:
        settings (IntegrationSettings): Enable flag, fragments, objects to
            verify and optional peer database.
        target_db (DatabaseSettings): Database the script runs on.
        state_store (StateStore): Holds the installation and completion
            markers.
        app_settings (Optional[AppSettings]): Settings used for log symbols.
        current_logger (Optional[logging.Logger]): Logger to use.
        connect (Callable): Connection factory, replaceable in tests.
        sleep (Callable): Sleep used by the peer wait.
    """

    def __init__(
        self,
        settings: IntegrationSettings,
        target_db: DatabaseSettings,
        state_store: StateStore,
        app_settings: Optional[AppSettings] = None,
        current_logger: Optional[logging.Logger] = None,
        connect: Callable[[DatabaseSettings], Optional[Any]] = get_db_connection,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings
        self.target_db = target_db
        self.state_store = state_store
        self.app_settings = app_settings
        self.logger = current_logger if current_logger else module_logger
        self.connect = connect
        self.sleep = sleep
        self.symbols = (
            app_settings.symbols
            if app_settings and app_settings.symbols
            else SYMBOLS_DEFAULT
        )

    def _log(self, message: str, level: str = "info") -> None:
        log_message(message, level, self.logger, self.app_settings)

    def should_run(self) -> bool:
        name = self.settings.name
        if not self.settings.enabled:
            self._log(f"Integration '{name}' is disabled.", "debug")
            return False
        if not self.settings.fragments:
            self._log(
                f"{self.symbols.get('info', 'ℹ️')} Integration '{name}' is enabled but no {self.settings.sql_prefix}_1 is set. Skipping."
            )
            return False
        if self.state_store.is_integration_complete(self.settings.marker_name):
            self._log(f"Integration '{name}' already completed.")
            return False
        if not self.state_store.is_installed():
            self._log(
                f"{self.symbols.get('warning', '!')} {self.state_store.component} {self.state_store.version} is not installed; integration '{name}' deferred.",
                "warning",
            )
            return False
        return True

    def _wait_for_peer(self) -> None:
        peer = self.settings.peer_database
        if peer is None:
            return
        wait = self.settings.peer_wait
        kwargs = {"sleep": self.sleep} if self.sleep else {}

        def _peer_ready() -> bool:
            conn = self.connect(peer)
            if conn is None:
                return False
            try:
                return all(
                    object_is_queryable(conn, obj)
                    for obj in self.settings.peer_objects
                )
            finally:
                conn.close()

        result = wait_until_ready(
            _peer_ready,
            max_attempts=wait.max_attempts,
            delay_seconds=wait.delay_seconds,
            description=f"peer database {peer.describe()}",
            app_settings=self.app_settings,
            current_logger=self.logger,
            **kwargs,
        )
        if not result.ready:
            raise IntegrationFailed(
                f"Peer database {peer.describe()} or objects "
                f"{', '.join(self.settings.peer_objects) or '(none)'} not available"
            )

    def run(self) -> bool:
        """
        Executes the integration unit if it is due.

        Returns:
            bool: True if the unit ran and was verified, False if it was not
            due.

        Raises:
            IntegrationFailed: Peer wait, execution or verification failed.
                The completion marker is not written.
        """
        if not self.should_run():
            return False

        self._wait_for_peer()

        script = compose_fragments(self.settings.fragments)
        self._log(
            f"{self.symbols.get('gear', '⚙️')} Applying integration '{self.settings.name}' "
            f"({len(self.settings.fragments)} fragment(s)) to {self.target_db.describe()}"
        )
        conn = self.connect(self.target_db)
        if conn is None:
            raise IntegrationFailed(
                f"Could not connect to {self.target_db.describe()}"
            )
        try:
            execute_script(conn, script)
            missing = [
                obj
                for obj in self.settings.verify_objects
                if not object_is_queryable(conn, obj)
            ]
        except DB_ERRORS as e:
            raise IntegrationFailed(
                f"Integration '{self.settings.name}' SQL failed: {e}"
            ) from e
        finally:
            conn.close()

        if missing:
            raise IntegrationFailed(
                f"Integration '{self.settings.name}' did not create: {', '.join(missing)}"
            )

        self.state_store.mark_integration_complete(self.settings.marker_name)
        self._log(
            f"{self.symbols.get('success', '✅')} Integration '{self.settings.name}' completed.",
            "success",
        )
        return True
