"""Hosts file provider for local name resolution."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..system import FileOperationError, SystemFiles


class HostsFileError(RuntimeError):
    """Raised when the hosts file cannot be read or updated."""


def hostnames_in(line: str) -> list[str]:
    """Return the hostnames declared by one hosts-file *line*."""
    content = line.split("#", 1)[0].strip()
    if not content:
        return []
    fields = content.split()
    return fields[1:]


@dataclass(slots=True)
class HostsFile:
    """Line-oriented ``<address> <hostname...>`` records, append-only."""

    files: SystemFiles
    path: Path = Path("/etc/hosts")

    def read(self) -> str:
        """Return the current file contents (empty when missing)."""
        try:
            return self.files.read_text(self.path) or ""
        except FileOperationError as exc:
            raise HostsFileError(str(exc)) from exc

    def add(self, address: str, hostname: str) -> bool:
        """Append ``address hostname`` unless *hostname* is already mapped.

        Returns ``True`` when a line was appended.
        """
        current = self.read()
        target = hostname.lower()
        for line in current.splitlines():
            if any(name.lower() == target for name in hostnames_in(line)):
                return False
        separator = "" if not current or current.endswith("\n") else "\n"
        try:
            self.files.append_text(self.path, f"{separator}{address} {hostname}\n")
        except FileOperationError as exc:
            raise HostsFileError(str(exc)) from exc
        return True


__all__ = ["HostsFile", "HostsFileError", "hostnames_in"]
