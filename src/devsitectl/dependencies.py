"""Precondition checks that run before anything on the host is mutated."""
from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig
from .errors import MissingDependency, PrivilegeUnavailable, ProvisioningError
from .request import ProvisioningRequest, ResolvedPaths
from .system import CommandRunner


@dataclass(frozen=True, slots=True)
class DependencyResult:
    """Outcome of a single dependency check."""

    id: str
    ok: bool
    message: str
    error: ProvisioningError | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"id": self.id, "ok": self.ok, "message": self.message}
        if self.error is not None and self.error.remediation:
            payload["remediation"] = self.error.remediation
        return payload


@dataclass(frozen=True, slots=True)
class DependencyCheck:
    """Metadata + callable for a check."""

    id: str
    run: Callable[[], DependencyResult]


def command_exists(command: str) -> bool:
    """Return ``True`` when *command* resolves to an executable."""
    path = Path(command)
    if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
        return path.exists() and os.access(path, os.X_OK)
    resolved = shutil.which(command)
    return resolved is not None and os.access(resolved, os.X_OK)


class DependencyValidator:
    """Confirm required tools, the PHP-FPM socket, and privilege escalation."""

    def __init__(
        self,
        config: AppConfig,
        runner: CommandRunner,
        *,
        which: Callable[[str], bool] = command_exists,
    ) -> None:
        """Bind the validator to the configuration and command runner."""
        self._config = config
        self._runner = runner
        self._which = which

    def checks(self, request: ProvisioningRequest, paths: ResolvedPaths) -> Sequence[DependencyCheck]:
        """Return the ordered checks for *request*."""
        config = self._config
        return (
            DependencyCheck(
                "nginx",
                self._binary_check("nginx", config.nginx.nginx_bin, "Install nginx."),
            ),
            DependencyCheck(
                "composer",
                self._binary_check(
                    "composer",
                    config.scaffold.composer_bin,
                    "Install Composer from https://getcomposer.org/.",
                ),
            ),
            DependencyCheck(
                "mysql",
                self._binary_check(
                    "mysql",
                    config.database.client_bin,
                    "Install the MySQL or MariaDB client.",
                ),
            ),
            DependencyCheck("php-fpm", lambda: self._check_socket(request, paths.fpm_socket)),
            DependencyCheck("privilege", self._check_privilege),
        )

    def validate(self, request: ProvisioningRequest, paths: ResolvedPaths) -> None:
        """Raise the error of the first failing check, if any."""
        for check in self.checks(request, paths):
            result = check.run()
            if not result.ok and result.error is not None:
                raise result.error

    def report(
        self,
        request: ProvisioningRequest,
        paths: ResolvedPaths,
    ) -> list[DependencyResult]:
        """Run every check without stopping at the first failure."""
        return [check.run() for check in self.checks(request, paths)]

    # ------------------------------------------------------------------
    def _binary_check(
        self,
        check_id: str,
        binary: str,
        remediation: str,
    ) -> Callable[[], DependencyResult]:
        def _run() -> DependencyResult:
            if self._which(binary):
                return DependencyResult(check_id, True, f"Binary '{binary}' available.")
            error = MissingDependency(
                binary,
                f"Required binary '{binary}' not found on PATH.",
                remediation=remediation,
            )
            return DependencyResult(check_id, False, error.message, error)

        return _run

    def _check_socket(self, request: ProvisioningRequest, socket: Path) -> DependencyResult:
        if socket.exists():
            return DependencyResult("php-fpm", True, f"PHP-FPM socket present at {socket}.")
        error = MissingDependency(
            f"php{request.php_version}-fpm",
            f"PHP-FPM socket for PHP {request.php_version} not found at {socket}.",
            remediation=(
                f"Install and start php{request.php_version}-fpm, or pass --php "
                "with an installed version."
            ),
        )
        return DependencyResult("php-fpm", False, error.message, error)

    def _check_privilege(self) -> DependencyResult:
        if not self._runner.escalate:
            return DependencyResult("privilege", True, "Privileged operations run directly.")
        sudo_bin = self._runner.sudo_bin
        if not self._which(sudo_bin):
            error = PrivilegeUnavailable(
                f"'{sudo_bin}' is required for privileged steps but was not found.",
                remediation="Run as root or install sudo.",
            )
            return DependencyResult("privilege", False, error.message, error)
        result = self._runner.run([sudo_bin, "-v"])
        if result.returncode != 0:
            error = PrivilegeUnavailable(
                f"Unable to obtain privileges via '{sudo_bin}'.",
                remediation="Ensure your account may use sudo, or run as root.",
            )
            return DependencyResult("privilege", False, error.message, error)
        return DependencyResult("privilege", True, f"Privileges available via '{sudo_bin}'.")


__all__ = [
    "DependencyCheck",
    "DependencyResult",
    "DependencyValidator",
    "command_exists",
]
