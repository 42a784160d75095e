"""Composer provider for scaffolding framework projects."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..system import CommandRunner, describe_failure


class ComposerError(RuntimeError):
    """Raised when composer fails to create a project."""


@dataclass(slots=True)
class ComposerProvider:
    """Create projects from a package skeleton with ``composer create-project``."""

    runner: CommandRunner
    composer_bin: str = "composer"
    package: str = "laravel/laravel"

    def create_project_command(self, target: Path) -> list[str]:
        """Return the argv used to scaffold into *target*.

        Package scripts are disabled so post-install hooks (which would write
        ``.env`` and generate keys) never run behind the pipeline's back.
        """
        return [
            self.composer_bin,
            "create-project",
            "--no-interaction",
            "--no-scripts",
            "--prefer-dist",
            self.package,
            str(target),
        ]

    def create_project(self, target: Path) -> subprocess.CompletedProcess[str]:
        """Scaffold the configured package into *target*."""
        result = self.runner.run(
            self.create_project_command(target),
            env={"COMPOSER_NO_INTERACTION": "1"},
        )
        if result.returncode != 0:
            raise ComposerError(describe_failure(result))
        return result


__all__ = ["ComposerError", "ComposerProvider"]
