"""Process execution and privileged filesystem access.

Provisioning touches files owned by root (the hosts file, nginx site
directories, the certificate directory). :class:`CommandRunner` prefixes
privileged commands with ``sudo`` when escalation is enabled, and
:class:`SystemFiles` routes writes through the runner in that case so the
pipeline itself never needs to know whether it is running as root.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import PrivilegeConfig

LOGGER = logging.getLogger(__name__)

# Conventional shell exit status for "command not found".
COMMAND_NOT_FOUND = 127


def escalation_required(privilege: PrivilegeConfig) -> bool:
    """Return ``True`` when privileged work must be wrapped in sudo."""
    if privilege.mode == "none":
        return False
    if privilege.mode == "sudo":
        return True
    return os.geteuid() != 0


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return a one-line description of a failed command."""
    args = result.args
    command = " ".join(str(item) for item in args) if isinstance(args, (list, tuple)) else str(args)
    message = ((result.stderr or "") or (result.stdout or "") or "no output").strip()
    return f"{command} failed (exit {result.returncode}): {message}"


@dataclass(slots=True)
class CommandRunner:
    """Run external commands synchronously, optionally through sudo."""

    escalate: bool = False
    sudo_bin: str = "sudo"
    base_env: Mapping[str, str] | None = None

    @classmethod
    def from_config(cls, privilege: PrivilegeConfig) -> CommandRunner:
        """Build a runner honouring the configured privilege mode."""
        return cls(escalate=escalation_required(privilege), sudo_bin=privilege.sudo_bin)

    def command_for(self, args: Sequence[str], *, privileged: bool = False) -> list[str]:
        """Return the argv that will actually be executed."""
        command = [str(item) for item in args]
        if privileged and self.escalate:
            return [self.sudo_bin, *command]
        return command

    def run(
        self,
        args: Sequence[str],
        *,
        privileged: bool = False,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process without raising.

        A missing executable is reported as exit status 127 rather than an
        exception so callers handle every failure through the return code.
        """
        command = self.command_for(args, privileged=privileged)
        merged_env: dict[str, str] | None = None
        if env or self.base_env:
            merged_env = dict(os.environ)
            merged_env.update(self.base_env or {})
            merged_env.update(env or {})
        if privileged and self.escalate and env:
            # sudo resets the environment; keep values out of argv.
            preserved = ",".join(sorted(env))
            command = [self.sudo_bin, f"--preserve-env={preserved}", *command[1:]]
        LOGGER.debug("running %s", " ".join(command))
        try:
            return subprocess.run(  # noqa: S603
                command,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                env=merged_env,
            )
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(
                command,
                returncode=COMMAND_NOT_FOUND,
                stdout="",
                stderr=f"{command[0]} not found: {exc}",
            )


class FileOperationError(RuntimeError):
    """Raised when a filesystem mutation fails."""


@dataclass(slots=True)
class SystemFiles:
    """Filesystem operations that escalate through the runner when required."""

    runner: CommandRunner
    _direct: bool = field(init=False)

    def __post_init__(self) -> None:
        """Decide once whether operations run in-process."""
        self._direct = not self.runner.escalate

    def read_text(self, path: Path) -> str | None:
        """Return the contents of *path*, or ``None`` when it does not exist."""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise FileOperationError(f"Unable to read {path}: {exc}") from exc

    def write_text(self, path: Path, content: str, *, mode: int = 0o644) -> None:
        """Replace *path* with *content* and apply *mode*."""
        if self._direct:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(content)
                    os.chmod(temp_name, mode)
                    os.replace(temp_name, path)
                except BaseException:
                    Path(temp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise FileOperationError(f"Unable to write {path}: {exc}") from exc
            return
        # Create the file with its final mode before any content lands in it.
        self._privileged(["mkdir", "-p", str(path.parent)])
        self._privileged(["install", "-m", f"{mode:04o}", "/dev/null", str(path)])
        self._privileged(["tee", str(path)], input_text=content)

    def append_text(self, path: Path, content: str) -> None:
        """Append *content* to *path*."""
        if self._direct:
            try:
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(content)
            except OSError as exc:
                raise FileOperationError(f"Unable to append to {path}: {exc}") from exc
            return
        self._privileged(["tee", "-a", str(path)], input_text=content)

    def symlink(self, source: Path, target: Path) -> None:
        """Point *target* at *source*, replacing any existing link or file."""
        if self._direct:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.exists() or target.is_symlink():
                    target.unlink()
                target.symlink_to(source)
            except OSError as exc:
                raise FileOperationError(f"Unable to link {target} -> {source}: {exc}") from exc
            return
        self._privileged(["mkdir", "-p", str(target.parent)])
        self._privileged(["ln", "-sfn", str(source), str(target)])

    def _privileged(self, args: Sequence[str], *, input_text: str | None = None) -> None:
        result = self.runner.run(args, privileged=True, input_text=input_text)
        if result.returncode != 0:
            raise FileOperationError(describe_failure(result))


__all__ = [
    "COMMAND_NOT_FOUND",
    "CommandRunner",
    "FileOperationError",
    "SystemFiles",
    "describe_failure",
    "escalation_required",
]
