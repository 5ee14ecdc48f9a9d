"""External tool installation."""

from .installer import INSTALL_HINTS, PACKAGE_MANAGERS, PackageManager, ToolInstaller

__all__ = ["INSTALL_HINTS", "PACKAGE_MANAGERS", "PackageManager", "ToolInstaller"]
