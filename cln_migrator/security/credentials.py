"""Credential brokering for the administrative and application roles.

Two distinct secrets are involved in a migration: the administrative
password used for setup and grants, and the password of the new
least-privilege application role. Neither is ever written to disk or
to the parent process environment; a broker keeps them in memory for
the lifetime of the run and hands them out only when a step asks.
"""

import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Mapping, Optional

import keyring
from keyring.errors import KeyringError
from rich.console import Console
from rich.prompt import Prompt

from ..core.exceptions import CredentialError

logger = logging.getLogger(__name__)

ADMIN_PASSWORD_ENV = "CLN_MIGRATE_ADMIN_PASSWORD"
APP_PASSWORD_ENV = "CLN_MIGRATE_APP_PASSWORD"

PasswordPrompt = Callable[[str], str]


@contextmanager
def scoped_pgpassword(password: Optional[str]) -> Iterator[Dict[str, str]]:
    """Yield a child-process environment carrying PGPASSWORD.

    The parent environment is never modified; the copy is cleared when
    the block exits.
    """
    env = dict(os.environ)
    env.pop("PGPASSWORD", None)
    if password:
        env["PGPASSWORD"] = password
    try:
        yield env
    finally:
        env.pop("PGPASSWORD", None)


class CredentialBroker(ABC):
    """Hands out secrets on demand and caches them for the current run."""

    def __init__(self):
        self._admin_cache: Dict[str, Optional[str]] = {}
        self._application_cache: Dict[str, str] = {}

    def admin_password(self, user: str) -> Optional[str]:
        """Password for the administrative user, None for peer or trust auth."""
        if user not in self._admin_cache:
            self._admin_cache[user] = self._obtain_admin_password(user)
        return self._admin_cache[user]

    def application_password(self, role: str) -> str:
        """Password for the application role. Never empty.

        Raises:
            CredentialError: If no usable password can be obtained
        """
        if role not in self._application_cache:
            password = self._obtain_application_password(role)
            if not password:
                raise CredentialError(f"Empty password for application role '{role}'")
            self._application_cache[role] = password
        return self._application_cache[role]

    def forget(self) -> None:
        """Drop every cached secret."""
        self._admin_cache.clear()
        self._application_cache.clear()

    @abstractmethod
    def _obtain_admin_password(self, user: str) -> Optional[str]:
        pass

    @abstractmethod
    def _obtain_application_password(self, role: str) -> str:
        pass


class StaticCredentialBroker(CredentialBroker):
    """Broker for scripted runs: secrets are injected up front."""

    def __init__(self, admin_password: Optional[str] = None,
                 application_password: Optional[str] = None):
        super().__init__()
        self._admin_password = admin_password or None
        self._application_password = application_password or None

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None,
                         admin_password: Optional[str] = None) -> "StaticCredentialBroker":
        """Build a broker from CLN_MIGRATE_* environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            admin_password=admin_password or environ.get(ADMIN_PASSWORD_ENV),
            application_password=environ.get(APP_PASSWORD_ENV),
        )

    def _obtain_admin_password(self, user: str) -> Optional[str]:
        return self._admin_password

    def _obtain_application_password(self, role: str) -> str:
        if not self._application_password:
            raise CredentialError(
                f"No password supplied for application role '{role}'",
                details={"env_var": APP_PASSWORD_ENV},
            )
        return self._application_password


class InteractiveCredentialBroker(CredentialBroker):
    """Broker that asks the operator on the terminal.

    The application password is asked twice; an empty or mismatched
    entry is rejected and asked again, up to ``max_attempts`` times.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        prompt: Optional[PasswordPrompt] = None,
        admin_password: Optional[str] = None,
        prompt_for_admin: bool = True,
        max_attempts: int = 5
    ):
        super().__init__()
        self.console = console or Console()
        self._prompt = prompt or self._rich_prompt
        self._admin_password = admin_password or None
        self.prompt_for_admin = prompt_for_admin
        self.max_attempts = max_attempts

    def _rich_prompt(self, text: str) -> str:
        return Prompt.ask(text, password=True, console=self.console)

    def _obtain_admin_password(self, user: str) -> Optional[str]:
        if self._admin_password or not self.prompt_for_admin:
            return self._admin_password
        return self._prompt(f"Enter PostgreSQL password for superuser '{user}'") or None

    def _obtain_application_password(self, role: str) -> str:
        self.console.print(
            f"[blue]Application user '{role}' will be created/used for the database.[/blue]"
        )
        for _ in range(self.max_attempts):
            first = self._prompt(f"Enter password for application user '{role}'")
            second = self._prompt("Confirm password")

            if not first:
                self.console.print("[red]Password cannot be empty. Please try again.[/red]")
                continue
            if first != second:
                self.console.print("[red]Passwords do not match. Please try again.[/red]")
                continue

            self.console.print("[green]Application user password set[/green]")
            return first

        raise CredentialError(
            f"No matching password entered for application role '{role}' "
            f"after {self.max_attempts} attempts"
        )


class KeyringCredentialBroker(CredentialBroker):
    """Broker that looks secrets up in the system keyring, read-only.

    Anything not found is delegated to ``fallback``.
    """

    def __init__(self, fallback: Optional[CredentialBroker] = None,
                 service_prefix: str = "cln_migrator"):
        super().__init__()
        self.fallback = fallback
        self.service_prefix = service_prefix

    def _lookup(self, service: str, username: str) -> Optional[str]:
        service_name = f"{self.service_prefix}.{service}"
        try:
            return keyring.get_password(service_name, username)
        except KeyringError as e:
            logger.warning(f"Keyring lookup failed for {service_name}/{username}: {e}")
            return None

    def _obtain_admin_password(self, user: str) -> Optional[str]:
        password = self._lookup("admin", user)
        if password is None and self.fallback is not None:
            return self.fallback.admin_password(user)
        return password

    def _obtain_application_password(self, role: str) -> str:
        password = self._lookup("application", role)
        if password:
            return password
        if self.fallback is not None:
            return self.fallback.application_password(role)
        raise CredentialError(f"No keyring entry for application role '{role}'")

    def forget(self) -> None:
        super().forget()
        if self.fallback is not None:
            self.fallback.forget()
