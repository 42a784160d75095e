"""Nginx provider for publishing development site definitions."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..system import CommandRunner, FileOperationError, SystemFiles, describe_failure
from ..templates import TemplateEngine, TemplateRenderError


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxPublishResult:
    """Outcome of publishing a site definition."""

    path: Path
    enabled_path: Path
    changed: bool
    validation: subprocess.CompletedProcess[str] | None = None


@dataclass(slots=True)
class NginxProvider:
    """Render, publish and validate nginx site configurations."""

    templates: TemplateEngine
    runner: CommandRunner
    files: SystemFiles
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    template_name: str = "nginx/site.conf.j2"

    def site_name(self, domain: str) -> str:
        """Return the canonical site file name for *domain*."""
        safe = domain.replace("/", "-")
        return f"{safe}.conf"

    def site_path(self, domain: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.sites_available / self.site_name(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.sites_enabled / self.site_name(domain)

    def render_site(self, context: Mapping[str, object]) -> str:
        """Return the site definition text for *context*."""
        try:
            return self.templates.render_to_string(self.template_name, context)
        except TemplateRenderError as exc:
            raise NginxError(str(exc)) from exc

    def publish(self, domain: str, context: Mapping[str, object]) -> NginxPublishResult:
        """Write the site for *domain*, enable it, and validate the configuration.

        The definition is always rewritten because it is fully derived from
        *context*. A failed ``nginx -t`` raises :class:`NginxError`; nothing is
        restored, and the running daemon keeps its previous configuration
        because no reload is requested.
        """
        content = self.render_site(context)
        destination = self.site_path(domain)
        try:
            previous = self.files.read_text(destination)
            self.files.write_text(destination, content, mode=0o644)
            self.enable(domain)
        except FileOperationError as exc:
            raise NginxError(str(exc)) from exc
        validation = self.test_config()
        return NginxPublishResult(
            path=destination,
            enabled_path=self.enabled_path(domain),
            changed=previous != content,
            validation=validation,
        )

    def enable(self, domain: str) -> None:
        """Enable the site by (re)creating its symlink in sites-enabled."""
        source = self.site_path(domain)
        target = self.enabled_path(domain)
        if target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return
            except (FileNotFoundError, RuntimeError):
                # Broken or looping symlink; replace it with a fresh one.
                pass
        self.files.symlink(source, target)

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return self._run_nginx(["-t"])

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        result = self.runner.run([self.nginx_bin, *args], privileged=True)
        if result.returncode != 0:
            raise NginxError(describe_failure(result))
        return result


__all__ = ["NginxError", "NginxProvider", "NginxPublishResult"]
