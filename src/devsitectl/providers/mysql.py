"""MySQL/MariaDB provider driven through the ``mysql`` command-line client."""
from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass

from ..config import DatabaseConfig
from ..system import CommandRunner, describe_failure

_IDENTIFIER = re.compile(r"[A-Za-z0-9_]{1,64}")


class MySQLError(RuntimeError):
    """Raised when the database client reports an error."""


@dataclass(slots=True)
class MySQLProvider:
    """Inspect and create databases on the local server."""

    runner: CommandRunner
    settings: DatabaseConfig

    def database_exists(self, name: str) -> bool:
        """Return ``True`` when database *name* already exists."""
        _require_identifier(name)
        result = self._execute(f"SHOW DATABASES LIKE '{name}';")
        return any(line.strip() == name for line in (result.stdout or "").splitlines())

    def create_database(self, name: str) -> subprocess.CompletedProcess[str]:
        """Create database *name* unless it already exists."""
        _require_identifier(name)
        _require_identifier(self.settings.charset)
        _require_identifier(self.settings.collation)
        statement = (
            f"CREATE DATABASE IF NOT EXISTS `{name}` "
            f"CHARACTER SET {self.settings.charset} "
            f"COLLATE {self.settings.collation};"
        )
        return self._execute(statement)

    def _execute(self, statement: str) -> subprocess.CompletedProcess[str]:
        args = [
            self.settings.client_bin,
            "--batch",
            "--skip-column-names",
            "-h",
            self.settings.host,
            "-P",
            str(self.settings.port),
            "-u",
            self.settings.username,
            "-e",
            statement,
        ]
        env = {"MYSQL_PWD": self.settings.password} if self.settings.password else None
        result = self.runner.run(args, privileged=self.settings.privileged, env=env)
        if result.returncode != 0:
            raise MySQLError(describe_failure(result))
        return result


def _require_identifier(value: str) -> None:
    if not _IDENTIFIER.fullmatch(value):
        raise MySQLError(f"Refusing to use unsafe SQL identifier {value!r}.")


__all__ = ["MySQLError", "MySQLProvider"]
