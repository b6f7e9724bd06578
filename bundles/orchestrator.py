# bundles/orchestrator.py
# -*- coding: utf-8 -*-
"""
Container start-up lifecycle for one component.

Every start walks the same stages:

    WAITING_FOR_DEPENDENCY -> INSTALLING -> INSTALLED -> RECONCILING
        -> INTEGRATING -> READY

Installing is skipped once the current version carries a marker. Waiting
and installing are fatal on failure; reconciling and integrating are not.
After READY the process replaces itself with the application command.
"""

import enum
import logging
import os
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from bundles.base_component import BaseComponent
from common.command_utils import exec_command
from common.orchestrator import Orchestrator
from common.wait_utils import wait_for_database
from provisioning.config_models import AppSettings
from provisioning.errors import InstallationFailed
from provisioning.integration import IntegrationComposer


class Stage(str, enum.Enum):
    WAITING_FOR_DEPENDENCY = "waiting_for_dependency"
    INSTALLING = "installing"
    INSTALLED = "installed"
    RECONCILING = "reconciling"
    INTEGRATING = "integrating"
    READY = "ready"


class LifecycleOrchestrator:
    """
    Drives one component through its start-up stages.

    Args:
        component: The component to provision.
        app_settings: The entrypoint-wide settings.
        logger: Optional logger instance.
        sleep: Sleep used while waiting for dependencies.
    """

    def __init__(
        self,
        component: BaseComponent,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.component = component
        self.app_settings = app_settings
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.sleep = sleep
        self.stage = Stage.WAITING_FOR_DEPENDENCY
        self.history: List[Stage] = [self.stage]

    def _enter(self, stage: Stage) -> None:
        if stage is not self.stage:
            self.stage = stage
            self.history.append(stage)
            self.logger.debug(f"{self.component.name}: entering {stage.value}")

    def wait_for_dependency(self, **kwargs: Any) -> bool:
        self._enter(Stage.WAITING_FOR_DEPENDENCY)
        db = self.component.database
        if db is None:
            self.logger.info(f"{self.component.name} has no database to wait for.")
            return True
        wait_for_database(
            db,
            self.app_settings.wait,
            app_settings=self.app_settings,
            current_logger=self.logger,
            sleep=self.sleep,
        )
        return True

    def prepare(self, **kwargs: Any) -> None:
        self.component.prepare()

    def install_gate(self, **kwargs: Any) -> str:
        """
        Installs or upgrades exactly once per version.

        Returns:
            "skipped", "installed" or "upgraded".

        Raises:
            InstallationFailed: The install or upgrade step reported failure
                or raised. No marker is written, so the next start retries.
        """
        store = self.component.state_store
        if store.is_installed():
            self.logger.info(
                f"{self.component.name} {store.version} already installed. Skipping installation."
            )
            self._enter(Stage.INSTALLED)
            return "skipped"

        self._enter(Stage.INSTALLING)
        fresh = not store.has_any_marker()
        action = "installation" if fresh else "upgrade"
        self.logger.info(
            f"{'Initializing' if fresh else 'Upgrading'} {self.component.name} {store.version} ..."
        )
        try:
            succeeded = (
                self.component.install() if fresh else self.component.upgrade()
            )
        except InstallationFailed:
            raise
        except Exception as e:
            raise InstallationFailed(
                f"{self.component.name} {action} failed: {e}"
            ) from e
        if not succeeded:
            raise InstallationFailed(
                f"{self.component.name} {action} reported failure"
            )

        store.mark_installed()
        self._enter(Stage.INSTALLED)
        return "installed" if fresh else "upgraded"

    def reconcile(self, **kwargs: Any) -> None:
        self._enter(Stage.RECONCILING)
        self.component.reconcile()

    def integrate(self, **kwargs: Any) -> bool:
        self._enter(Stage.INTEGRATING)
        settings = self.component.integration_settings()
        if settings is None:
            return False
        db = self.component.database
        if db is None:
            return False
        composer = IntegrationComposer(
            settings,
            db,
            self.component.state_store,
            app_settings=self.app_settings,
            current_logger=self.logger,
            connect=self.component.connect,
            sleep=self.sleep,
        )
        return composer.run()

    def build(self) -> Orchestrator:
        orchestrator = Orchestrator(self.app_settings, self.logger)
        orchestrator.add_task("Wait for dependency", self.wait_for_dependency)
        orchestrator.add_task("Prepare", self.prepare)
        orchestrator.add_task("Install", self.install_gate)
        orchestrator.add_task("Reconcile configuration", self.reconcile, fatal=False)
        orchestrator.add_task("Integration", self.integrate, fatal=False)
        return orchestrator

    def run(self) -> bool:
        """
        Runs every stage. A fatal failure exits the process with status 1.

        Returns:
            True if all stages succeeded, False if a non-fatal stage failed.
        """
        succeeded = self.build().run()
        self._enter(Stage.READY)
        self.logger.info(f"✨ {self.component.name} is ready.")
        return succeeded

    def handoff(
        self,
        command: Optional[List[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Replaces the process with ``command``, or the component default."""
        final_command = self.component.command_for(command)
        env: Dict[str, str] = self.component.handoff_env(
            os.environ if environ is None else environ
        )
        exec_command(
            final_command,
            env=env,
            current_logger=self.logger,
            app_settings=self.app_settings,
        )
