# bundles/registry.py
# -*- coding: utf-8 -*-
"""
Registry for bundle components.

Each component module registers its class with the decorator below when it
is imported; ``bundles.components`` imports all of them.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional, Type

if TYPE_CHECKING:
    from bundles.base_component import BaseComponent


class ComponentRegistry:
    """
    Registry for bundle components.

    Components are looked up by the name given on the command line, for
    example ``bundle-entrypoint run moodle``.
    """

    _registry: Dict[str, Type["BaseComponent"]] = {}

    @classmethod
    def register(cls, name: str, metadata: Optional[Dict[str, Any]] = None):
        """
        Decorator for registering component classes.

        Args:
            name: The name of the component.
            metadata: Optional metadata such as the description and the
                database engine the component depends on.

        Returns:
            A decorator function that registers the component class.
        """

        def decorator(
            component_class: Type["BaseComponent"],
        ) -> Type["BaseComponent"]:
            if name in cls._registry:
                raise ValueError(
                    f"Component with name '{name}' already registered"
                )

            if metadata:
                component_class.metadata = metadata
            component_class.name = name

            cls._registry[name] = component_class
            return component_class

        return decorator

    @classmethod
    def get_component(cls, name: str) -> Type["BaseComponent"]:
        """
        Get a component class by name.

        Raises:
            KeyError: If no component with the given name is registered.
        """
        if name not in cls._registry:
            raise KeyError(f"No component registered with name '{name}'")

        return cls._registry[name]

    @classmethod
    def get_all_components(cls) -> Dict[str, Type["BaseComponent"]]:
        """
        Get all registered components.

        Returns:
            A dictionary mapping component names to component classes.
        """
        return cls._registry.copy()
