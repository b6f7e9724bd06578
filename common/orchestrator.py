# common/orchestrator.py
# -*- coding: utf-8 -*-
"""
Centralized orchestrator for managing and executing sequences of tasks.
"""

import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from provisioning.errors import ProvisioningError


class Orchestrator:
    """A centralized orchestrator to run a series of defined tasks."""

    def __init__(
        self,
        app_settings: Any,
        orchestrator_logger: Optional[logging.Logger] = None,
    ):
        """
        Initializes the Orchestrator.

        Args:
            app_settings: The application settings object.
            orchestrator_logger: An optional logger instance.
        """
        self.app_settings = app_settings
        self.logger = orchestrator_logger or logging.getLogger(__name__)
        self.tasks: List[Dict[str, Any]] = []
        self.failed_tasks: List[str] = []
        # Shared context for tasks to pass state between each other
        self.context: Dict[str, Any] = {}

    def add_task(
        self,
        name: str,
        func: Callable,
        args: Optional[List[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        fatal: bool = True,
    ):
        """
        Adds a task to the execution list.

        Args:
            name: A human-readable name for the task.
            func: The function to execute for this task.
            args: A list of positional arguments to pass to the function.
            kwargs: A dictionary of keyword arguments to pass to the function.
            fatal: If True, a failure in this task halts the orchestration
                and exits the process with status 1.
        """
        self.tasks.append({
            "name": name,
            "func": func,
            "args": args or [],
            "kwargs": kwargs or {},
            "fatal": fatal,
        })
        self.logger.debug(f"Task '{name}' added to the queue.")

    def run(self) -> bool:
        """
        Executes all added tasks in sequence.

        Returns:
            True if all tasks completed successfully, False if a non-fatal
            task failed. A fatal failure never returns: it exits with status 1.
        """
        self.logger.info("Orchestration started.")
        self.failed_tasks = []
        for i, task in enumerate(self.tasks):
            task_name = task["name"]
            self.logger.info(
                f"--- Stage {i + 1}: Running task '{task_name}' ---"
            )

            try:
                # Pass the shared context to every function
                task["kwargs"]["context"] = self.context
                task["kwargs"]["app_settings"] = self.app_settings

                result = task["func"](*task["args"], **task["kwargs"])

                self.context[f"{task_name}_result"] = result

                self.logger.info(
                    f"✅ Task '{task_name}' completed successfully."
                )

            except Exception as e:
                self.failed_tasks.append(task_name)
                if task.get("fatal", True):
                    self.logger.critical(
                        f"🔥 Task '{task_name}' failed: {e}", exc_info=True
                    )
                    self.logger.error(
                        "A fatal error occurred. Halting orchestration and exiting application."
                    )
                    sys.exit(1)
                # Expected non-fatal failures carry their own message.
                self.logger.warning(
                    f"⚠️ Task '{task_name}' failed: {e}",
                    exc_info=not isinstance(e, ProvisioningError),
                )
                self.logger.warning(
                    f"Task '{task_name}' was non-fatal. Continuing orchestration."
                )

        if self.failed_tasks:
            self.logger.warning(
                f"Orchestration finished with non-fatal failures: {', '.join(self.failed_tasks)}"
            )
            return False
        self.logger.info("✨ Orchestration finished successfully.")
        return True
