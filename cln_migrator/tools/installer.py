"""
Installation of the external programs the migrator shells out to.

Only pgloader is needed on the migrating host; the PostgreSQL side is
reached through psycopg2. Installation is attempted only when the
operator asks for it, through the first package manager found.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from cln_migrator.core.exceptions import ToolMissing

logger = logging.getLogger(__name__)


INSTALL_HINTS: Dict[str, List[str]] = {
    "pgloader": [
        "Ubuntu/Debian: sudo apt-get install pgloader",
        "CentOS/RHEL: sudo yum install epel-release && sudo yum install pgloader",
        "Fedora: sudo dnf install pgloader",
        "Arch Linux: yay -S pgloader (AUR)",
        "macOS: brew install pgloader",
        "Build from source: https://pgloader.readthedocs.io/en/latest/install.html",
    ],
}


@dataclass
class PackageManager:
    """A system package manager and the commands that install one package."""
    name: str
    executable: str
    install_steps: List[List[str]]
    needs_root: bool = True
    package_names: Dict[str, str] = field(default_factory=dict)

    def commands_for(self, tool: str) -> List[List[str]]:
        package = self.package_names.get(tool, tool)
        return [
            [part.format(package=package) for part in step]
            for step in self.install_steps
        ]


PACKAGE_MANAGERS: List[PackageManager] = [
    PackageManager(
        name="apt",
        executable="apt-get",
        install_steps=[
            ["apt-get", "update"],
            ["apt-get", "install", "-y", "{package}"],
        ],
    ),
    PackageManager(
        name="yum",
        executable="yum",
        install_steps=[
            ["yum", "install", "-y", "epel-release"],
            ["yum", "install", "-y", "{package}"],
        ],
    ),
    PackageManager(
        name="dnf",
        executable="dnf",
        install_steps=[["dnf", "install", "-y", "{package}"]],
    ),
    PackageManager(
        name="brew",
        executable="brew",
        install_steps=[["brew", "install", "{package}"]],
        needs_root=False,
    ),
]


Runner = Callable[..., subprocess.CompletedProcess]


class ToolInstaller:
    """Installs missing tools with the host's package manager."""

    def __init__(
        self,
        managers: Optional[List[PackageManager]] = None,
        runner: Optional[Runner] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        timeout: int = 900
    ):
        self.managers = managers if managers is not None else PACKAGE_MANAGERS
        self._run = runner or subprocess.run
        self._which = which
        self.timeout = timeout

    @staticmethod
    def install_hints(tool: str) -> List[str]:
        """Manual installation instructions for a tool."""
        return list(INSTALL_HINTS.get(tool, [f"Install {tool} with your system package manager"]))

    def missing(self, tool: str) -> ToolMissing:
        """Build the error reported when a tool is absent."""
        return ToolMissing(
            f"{tool} is not installed",
            tool=tool,
            install_hints=self.install_hints(tool),
        )

    def detect_package_manager(self) -> Optional[PackageManager]:
        for manager in self.managers:
            if self._which(manager.executable):
                return manager
        return None

    def _privileged(self, manager: PackageManager, command: List[str]) -> List[str]:
        if not manager.needs_root or os.geteuid() == 0:
            return command
        if self._which("sudo") is None:
            return command
        return ["sudo"] + command

    def install(self, tool: str) -> str:
        """
        Install a tool and return the path of its executable.

        Raises:
            ToolMissing: If no package manager is found or installation fails
        """
        existing = self._which(tool)
        if existing:
            return existing

        manager = self.detect_package_manager()
        if manager is None:
            logger.error("No supported package manager found")
            raise self.missing(tool)

        logger.info(f"Installing {tool} using {manager.name}")
        for command in manager.commands_for(tool):
            command = self._privileged(manager, command)
            logger.debug(f"Running: {' '.join(command)}")
            try:
                result = self._run(
                    command,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"Failed to install {tool} via {manager.name}: {e}")
                raise self.missing(tool) from e

            if result.returncode != 0:
                logger.error(
                    f"Failed to install {tool} via {manager.name}: "
                    f"{(result.stderr or '').strip()}"
                )
                raise self.missing(tool)

        installed = self._which(tool)
        if installed is None:
            raise self.missing(tool)

        logger.info(f"{tool} installed successfully via {manager.name}")
        return installed
