"""Best-effort browser launcher."""
from __future__ import annotations

import shutil
from dataclasses import dataclass

from ..system import CommandRunner, describe_failure


@dataclass(slots=True)
class BrowserLauncher:
    """Open URLs with the desktop launcher when one is installed."""

    runner: CommandRunner
    launcher_bin: str = "xdg-open"

    def open(self, url: str) -> str | None:
        """Open *url*; return a warning message instead of raising on failure."""
        if shutil.which(self.launcher_bin) is None:
            return f"Browser launcher '{self.launcher_bin}' not found; open {url} manually."
        result = self.runner.run([self.launcher_bin, url])
        if result.returncode != 0:
            return describe_failure(result)
        return None


__all__ = ["BrowserLauncher"]
