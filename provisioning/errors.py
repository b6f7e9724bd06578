# provisioning/errors.py
# -*- coding: utf-8 -*-
"""
Exception taxonomy for the provisioning lifecycle.

Failures that would leave the application unable to serve traffic are
fatal and end the entrypoint with a non-zero exit. Failures confined to
auxiliary configuration or cross-application integration are logged and
startup continues.
"""


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""

    fatal: bool = True


class DependencyUnavailable(ProvisioningError):
    """A dependency never answered its liveness check within the retry budget."""

    fatal = True


class InstallationFailed(ProvisioningError):
    """One-time setup or upgrade failed; the version marker was not written."""

    fatal = True


class ConfigVariableMissing(ProvisioningError):
    """A recognised configuration value is not set; that key is skipped."""

    fatal = False

    def __init__(self, key: str, source: str):
        super().__init__(f"{source} is not set; skipping '{key}'")
        self.key = key
        self.source = source


class ReconciliationQueryFailed(ProvisioningError):
    """Reading the previously persisted value failed."""

    fatal = False


class IntegrationFailed(ProvisioningError):
    """Integration fragments could not be applied or verified."""

    fatal = False
