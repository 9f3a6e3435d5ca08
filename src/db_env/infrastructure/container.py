"""Dependency injection container."""

from __future__ import annotations

import threading
from typing import Any, Callable, TypeVar

T = TypeVar("T")


class Container:
    """
    Process-wide registry of shared services.

    Factories run lazily on first resolve and their result is kept, so
    every caller resolving the same interface shares one instance.
    """

    def __init__(self) -> None:
        """Initialize the container."""
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}
        self._lock = threading.RLock()

    def register_instance(self, interface: type[T], instance: T) -> None:
        """
        Register an already built instance.

        Args:
            interface: The interface/type to register
            instance: The shared instance
        """
        with self._lock:
            self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory for lazy instantiation.

        Args:
            interface: The interface/type to register
            factory: Factory taking the container and returning an instance
        """
        with self._lock:
            self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a dependency, building it on first use.

        Raises:
            KeyError: If no registration exists for the interface
        """
        with self._lock:
            if interface in self._instances:
                return self._instances[interface]
            if interface not in self._factories:
                raise KeyError(f"No registration found for {interface}")
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        with self._lock:
            return interface in self._factories or interface in self._instances

    def clear(self) -> None:
        """Drop all registrations and instances."""
        with self._lock:
            self._factories.clear()
            self._instances.clear()


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container() -> None:
    """Reset the global container (useful for testing)."""
    global _container
    if _container is not None:
        _container.clear()
    _container = None
