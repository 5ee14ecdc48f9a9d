"""
Factory for creating bulk loader instances.

Loaders register themselves by name with the ``register_loader``
decorator; the orchestrator asks the factory for the one named in
the configuration.
"""

from typing import Dict, List, Type
import logging

from cln_migrator.core.exceptions import ConfigurationError
from cln_migrator.models.config import LoaderConfig

from .base import Loader

logger = logging.getLogger(__name__)


class LoaderFactory:
    """Registry and factory for bulk loaders."""

    _loaders: Dict[str, Type[Loader]] = {}

    @classmethod
    def register_loader(cls, name: str, loader_class: Type[Loader]) -> None:
        """
        Register a loader class with the factory.

        Args:
            name: Name identifier for the loader
            loader_class: Loader class to register
        """
        cls._loaders[name.lower()] = loader_class
        logger.debug(f"Registered loader: {name}")

    @classmethod
    def get_available_loaders(cls) -> List[str]:
        """Get list of registered loader names."""
        return sorted(cls._loaders.keys())

    @classmethod
    def create_loader(cls, config: LoaderConfig) -> Loader:
        """
        Create the loader named in the configuration.

        Args:
            config: Loader configuration

        Returns:
            Configured loader instance

        Raises:
            ConfigurationError: If no loader is registered under that name
        """
        name = config.name.lower()
        if name not in cls._loaders:
            available = ", ".join(cls.get_available_loaders())
            raise ConfigurationError(
                f"Unsupported loader: {config.name}. Available loaders: {available}"
            )
        return cls._loaders[name](config)


def register_loader(name: str):
    """
    Decorator to register loaders with the factory.

    Args:
        name: Name identifier for the loader
    """
    def decorator(cls: Type[Loader]) -> Type[Loader]:
        cls.name = name
        LoaderFactory.register_loader(name, cls)
        return cls
    return decorator
