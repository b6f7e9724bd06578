"""
Bundle component framework.

This package provides the per-application components of the bundle
entrypoint and the lifecycle that drives them on every container start.
"""

from bundles.base_component import BaseComponent
from bundles.orchestrator import LifecycleOrchestrator
from bundles.registry import ComponentRegistry

__all__ = ["BaseComponent", "ComponentRegistry", "LifecycleOrchestrator"]
