# tests/common/test_orchestrator.py
# -*- coding: utf-8 -*-
"""
Tests for the centralized orchestrator module.
"""

from unittest.mock import MagicMock

import pytest

from common.orchestrator import Orchestrator
from provisioning.errors import ReconciliationQueryFailed


class TestOrchestrator:
    """Tests for the Orchestrator class."""

    def test_init(self):
        app_settings = MagicMock()
        logger = MagicMock()

        orchestrator = Orchestrator(app_settings, logger)

        assert orchestrator.app_settings == app_settings
        assert orchestrator.logger == logger
        assert orchestrator.tasks == []
        assert orchestrator.context == {}

    def test_add_task(self):
        orchestrator = Orchestrator(MagicMock(), MagicMock())
        task_func = MagicMock()

        orchestrator.add_task(
            "Test Task", task_func, ["arg1"], {"kwarg1": "value1"}, False
        )

        task = orchestrator.tasks[0]
        assert task["name"] == "Test Task"
        assert task["func"] == task_func
        assert task["args"] == ["arg1"]
        assert task["kwargs"] == {"kwarg1": "value1"}
        assert task["fatal"] is False

    def test_run_success(self):
        """Results are stored in the shared context."""
        orchestrator = Orchestrator(MagicMock(), MagicMock())
        task1 = MagicMock(return_value="result1")
        task2 = MagicMock(return_value="result2")
        orchestrator.add_task("Task 1", task1)
        orchestrator.add_task("Task 2", task2)

        assert orchestrator.run() is True

        task1.assert_called_once()
        task2.assert_called_once()
        assert orchestrator.context["Task 1_result"] == "result1"
        assert orchestrator.context["Task 2_result"] == "result2"

    def test_tasks_receive_context_and_settings(self):
        app_settings = MagicMock()
        orchestrator = Orchestrator(app_settings, MagicMock())
        task = MagicMock()
        orchestrator.add_task("Task", task)

        orchestrator.run()

        kwargs = task.call_args.kwargs
        assert kwargs["app_settings"] is app_settings
        assert kwargs["context"] is orchestrator.context

    def test_run_failure_fatal_exits_with_status_1(self):
        orchestrator = Orchestrator(MagicMock(), MagicMock())
        task1 = MagicMock(side_effect=Exception("Task 1 failed"))
        task2 = MagicMock()
        orchestrator.add_task("Task 1", task1)
        orchestrator.add_task("Task 2", task2)

        with pytest.raises(SystemExit) as excinfo:
            orchestrator.run()

        assert excinfo.value.code == 1
        task2.assert_not_called()

    def test_run_failure_non_fatal_continues(self):
        logger = MagicMock()
        orchestrator = Orchestrator(MagicMock(), logger)
        task1 = MagicMock(side_effect=ReconciliationQueryFailed("db gone"))
        task2 = MagicMock(return_value="ok")
        orchestrator.add_task("Task 1", task1, fatal=False)
        orchestrator.add_task("Task 2", task2)

        assert orchestrator.run() is False

        task2.assert_called_once()
        assert orchestrator.failed_tasks == ["Task 1"]
        logger.critical.assert_not_called()
