"""Step executors: one idempotent unit of system mutation each."""

from __future__ import annotations

import base64
import getpass
import logging
import secrets
import tempfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..config import AppConfig
from ..envfile import EnvironmentDocument
from ..errors import (
    CertificateGenerationFailed,
    DatabaseProvisioningFailed,
    DirectoryConflict,
    EnvConfigFailed,
    HostsUpdateFailed,
    InvalidProxyConfig,
    PermissionFixFailed,
    ReloadFailed,
    ScaffoldFailed,
)
from ..providers import (
    ComposerError,
    ComposerProvider,
    HostsFile,
    HostsFileError,
    MySQLError,
    MySQLProvider,
    NginxError,
    NginxProvider,
)
from ..request import ProvisioningRequest
from ..system import CommandRunner, FileOperationError, SystemFiles, describe_failure
from ..templates import TemplateEngine
from ..tls import (
    CertificateIssuer,
    MkcertIssuer,
    SelfSignedIssuer,
    TLSIssueError,
    TLSMaterial,
    material_matches,
)
from .models import PipelineState, StepContext, StepExecutor, StepOutcome

LOGGER = logging.getLogger(__name__)


def generate_app_key() -> str:
    """Return a framework application key (32 random bytes, base64 encoded)."""
    return "base64:" + base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _current_user() -> str:
    return getpass.getuser()


# ---------------------------------------------------------------------------
# Scaffolding and permissions
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ProjectScaffolder:
    """Create the project skeleton; refuses to touch an existing directory."""

    composer: ComposerProvider
    name: str = "scaffold"
    state: PipelineState = PipelineState.SCAFFOLDING

    def execute(self, context: StepContext) -> StepOutcome:
        """Scaffold into the project directory unless it already exists."""
        target = context.paths.project_dir
        if target.exists() or target.is_symlink():
            raise DirectoryConflict(target)
        try:
            self.composer.create_project(target)
        except ComposerError as exc:
            raise ScaffoldFailed(
                f"Scaffolding {self.composer.package} failed: {exc}",
                remediation=f"Check that {target.parent} is writable and Composer can reach "
                "its package repository.",
            ) from exc
        if not target.is_dir():
            raise ScaffoldFailed(f"Scaffolding finished but {target} was not created.")
        return StepOutcome.applied(self.name, f"Created {self.composer.package} project in {target}")


@dataclass(slots=True)
class PermissionFixer:
    """Give the web server group write access to the framework's writable dirs."""

    runner: CommandRunner
    web_group: str = "www-data"
    web_user: str | None = None
    writable_dirs: Sequence[str] = ("storage", "bootstrap/cache")
    mode: int = 0o775
    name: str = "permissions"
    state: PipelineState = PipelineState.PERMISSION_FIXING

    def execute(self, context: StepContext) -> StepOutcome:
        """Apply ownership and mode recursively to the writable directories."""
        project_dir = context.paths.project_dir
        targets = [project_dir / entry for entry in self.writable_dirs]
        present = [str(path) for path in targets if path.is_dir()]
        if not present:
            return StepOutcome.skipped(self.name, "No writable directories present.")
        owner = f"{self.web_user or _current_user()}:{self.web_group}"
        for command in (
            ["chown", "-R", owner, *present],
            ["chmod", "-R", f"{self.mode:04o}", *present],
        ):
            result = self.runner.run(command, privileged=True)
            if result.returncode != 0:
                raise PermissionFixFailed(
                    describe_failure(result),
                    remediation=f"Ensure the '{self.web_group}' group exists.",
                )
        return StepOutcome.applied(self.name, f"{owner} {self.mode:04o} on {len(present)} dir(s)")


# ---------------------------------------------------------------------------
# Environment document
# ---------------------------------------------------------------------------


def desired_environment(request: ProvisioningRequest, config: AppConfig) -> dict[str, str]:
    """Return the keys the environment document must hold for *request*."""
    database = config.database
    return {
        "APP_NAME": request.project_name,
        "APP_ENV": "local",
        "APP_DEBUG": "true",
        "APP_URL": request.url,
        "DB_CONNECTION": "mysql",
        "DB_HOST": database.host,
        "DB_PORT": str(database.port),
        "DB_DATABASE": request.database_name,
        "DB_USERNAME": database.username,
        "DB_PASSWORD": database.password,
        "SESSION_DRIVER": "file",
        "CACHE_STORE": "file",
        "QUEUE_CONNECTION": "sync",
    }


@dataclass(slots=True)
class EnvironmentConfigurator:
    """Seed ``.env`` from the template and pin the request-derived keys.

    Keys are rewritten in place when present and appended when absent, so
    running twice yields the same document as running once.
    """

    key_generator: Callable[[], str] = generate_app_key
    name: str = "environment"
    state: PipelineState = PipelineState.ENV_CONFIGURING

    def execute(self, context: StepContext) -> StepOutcome:
        """Write the environment document when it differs from the desired state."""
        paths = context.paths
        try:
            if paths.env_file.exists():
                original: str | None = paths.env_file.read_text(encoding="utf-8")
                seed = original or ""
            else:
                original = None
                seed = (
                    paths.env_template.read_text(encoding="utf-8")
                    if paths.env_template.exists()
                    else ""
                )
        except (OSError, UnicodeDecodeError) as exc:
            raise EnvConfigFailed(
                f"Unable to read environment document: {exc}",
                remediation=f"Make sure {paths.project_dir} holds a UTF-8 .env or .env.example.",
            ) from exc

        document = EnvironmentDocument.parse(seed)
        values = self.values_for(context.request, context.config, document)
        changed = document.update(values)
        rendered = document.render()
        if original is not None and rendered == original:
            return StepOutcome.skipped(self.name, "Environment already configured.")

        try:
            paths.env_file.write_text(rendered, encoding="utf-8")
        except OSError as exc:
            raise EnvConfigFailed(
                f"Unable to write {paths.env_file}: {exc}",
            ) from exc
        source = "existing document" if original is not None else "template"
        return StepOutcome.applied(
            self.name,
            f"Updated {len(changed)} key(s) from {source}",
        )

    def values_for(
        self,
        request: ProvisioningRequest,
        config: AppConfig,
        document: EnvironmentDocument,
    ) -> Mapping[str, str]:
        """Return every key/value to apply to *document*."""
        values = desired_environment(request, config)
        if "CACHE_DRIVER" in document:
            # Pre-11 framework releases read the cache backend from this key.
            values["CACHE_DRIVER"] = values["CACHE_STORE"]
        if not document.get("APP_KEY"):
            values["APP_KEY"] = self.key_generator()
        return values


# ---------------------------------------------------------------------------
# Database and name resolution
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DatabaseProvisioner:
    """Create the project database if it does not exist yet."""

    mysql: MySQLProvider
    name: str = "database"
    state: PipelineState = PipelineState.DATABASE_PROVISIONING

    def execute(self, context: StepContext) -> StepOutcome:
        """Create the database unless it is already present."""
        database = context.request.database_name
        try:
            if self.mysql.database_exists(database):
                return StepOutcome.skipped(self.name, f"Database '{database}' already exists.")
            self.mysql.create_database(database)
        except MySQLError as exc:
            raise DatabaseProvisioningFailed(
                f"Unable to provision database '{database}': {exc}",
                remediation="Check that the database server is running and the configured "
                "credentials may create databases.",
            ) from exc
        return StepOutcome.applied(self.name, f"Created database '{database}'")


@dataclass(slots=True)
class HostsFileUpdater:
    """Map the domain to the loopback address in the hosts file."""

    hosts: HostsFile
    address: str = "127.0.0.1"
    name: str = "hosts"
    state: PipelineState = PipelineState.HOSTS_UPDATING

    def execute(self, context: StepContext) -> StepOutcome:
        """Append the host record unless the domain is already mapped."""
        domain = context.request.domain
        try:
            added = self.hosts.add(self.address, domain)
        except HostsFileError as exc:
            raise HostsUpdateFailed(
                f"Unable to update {self.hosts.path}: {exc}",
            ) from exc
        if not added:
            return StepOutcome.skipped(self.name, f"{domain} already present in {self.hosts.path}.")
        return StepOutcome.applied(self.name, f"Added {self.address} {domain}")


# ---------------------------------------------------------------------------
# TLS, proxy site and reload
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CertificateProvisioner:
    """Issue a certificate/key pair unless both already exist.

    Issuers are tried in order (trusted local CA first, self-signed last).
    The pair is generated in a private temporary directory, checked to
    belong together, then installed with a ``0600`` key and ``0644``
    certificate.
    """

    files: SystemFiles
    issuers: Sequence[CertificateIssuer] = field(default_factory=tuple)
    name: str = "certificate"
    state: PipelineState = PipelineState.CERT_PROVISIONING

    def execute(self, context: StepContext) -> StepOutcome:
        """Generate and install the certificate for the request domain."""
        domain = context.request.domain
        material = TLSMaterial(
            certificate=context.paths.certificate,
            key=context.paths.certificate_key,
        )
        if material.exists():
            return StepOutcome.skipped(self.name, "Certificate and key already exist.")

        failures: list[str] = []
        for issuer in self.issuers:
            if not issuer.available():
                LOGGER.debug("issuer %s unavailable", issuer.name)
                continue
            try:
                self._issue_and_install(issuer, domain, material)
            except (TLSIssueError, FileOperationError, OSError, UnicodeDecodeError) as exc:
                LOGGER.debug("issuer %s failed: %s", issuer.name, exc)
                failures.append(f"{issuer.name}: {exc}")
                continue
            if material.exists():
                return StepOutcome.applied(self.name, f"Issued for {domain} via {issuer.name}")
            failures.append(f"{issuer.name}: files missing after install")

        detail = "; ".join(failures) if failures else "no certificate issuer available"
        raise CertificateGenerationFailed(
            f"Unable to produce a certificate for {domain} ({detail}).",
            remediation=f"Check that {material.certificate.parent} is writable.",
        )

    def _issue_and_install(
        self,
        issuer: CertificateIssuer,
        domain: str,
        material: TLSMaterial,
    ) -> None:
        with tempfile.TemporaryDirectory(prefix="devsitectl-tls-") as staging:
            staged = TLSMaterial(
                certificate=Path(staging) / "cert.pem",
                key=Path(staging) / "key.pem",
            )
            issuer.issue(domain, staged)
            if not staged.exists():
                raise TLSIssueError(f"{issuer.name} did not produce both files.")
            if not material_matches(staged):
                raise TLSIssueError("Certificate does not match the generated key.")
            self.files.write_text(
                material.key,
                staged.key.read_text(encoding="ascii"),
                mode=0o600,
            )
            self.files.write_text(
                material.certificate,
                staged.certificate.read_text(encoding="ascii"),
                mode=0o644,
            )


def build_vhost_context(context: StepContext) -> dict[str, object]:
    """Return the nginx template context for *context*."""
    request = context.request
    paths = context.paths
    nginx = context.config.nginx
    return {
        "server_name": request.domain,
        "document_root": str(paths.public_dir),
        "fastcgi_socket": str(paths.fpm_socket),
        "http_listen_port": nginx.http_port,
        "https_listen_port": nginx.https_port,
        "access_log": f"/var/log/nginx/{request.domain}.access.log",
        "error_log": f"/var/log/nginx/{request.domain}.error.log",
        "tls": {
            "certificate": str(paths.certificate),
            "certificate_key": str(paths.certificate_key),
        },
    }


@dataclass(slots=True)
class VhostPublisher:
    """Rewrite the site definition, enable it, and check nginx accepts it."""

    nginx: NginxProvider
    name: str = "vhost"
    state: PipelineState = PipelineState.VHOST_PUBLISHING

    def execute(self, context: StepContext) -> StepOutcome:
        """Publish the site for the request domain."""
        domain = context.request.domain
        try:
            result = self.nginx.publish(domain, build_vhost_context(context))
        except NginxError as exc:
            raise InvalidProxyConfig(
                f"nginx rejected the site for {domain}: {exc}",
                remediation=f"Inspect {self.nginx.site_path(domain)}; nginx was not reloaded.",
            ) from exc
        note = "" if result.changed else " (unchanged)"
        return StepOutcome.applied(self.name, f"Published {result.path}{note}")


@dataclass(slots=True)
class ServiceReloader:
    """Ask nginx to pick up the published configuration."""

    nginx: NginxProvider
    name: str = "reload"
    state: PipelineState = PipelineState.SERVICE_RELOADING

    def execute(self, context: StepContext) -> StepOutcome:
        """Reload nginx."""
        try:
            self.nginx.reload()
        except NginxError as exc:
            raise ReloadFailed(
                f"Unable to reload nginx: {exc}",
                remediation="Check `systemctl status nginx`.",
            ) from exc
        return StepOutcome.applied(self.name, "nginx reloaded")


def build_executors(
    config: AppConfig,
    runner: CommandRunner,
    files: SystemFiles,
    templates: TemplateEngine,
) -> list[StepExecutor]:
    """Return the production step executors in pipeline order."""
    nginx = NginxProvider(
        templates=templates,
        runner=runner,
        files=files,
        sites_available=config.nginx.sites_available,
        sites_enabled=config.nginx.sites_enabled,
        nginx_bin=config.nginx.nginx_bin,
    )
    scaffold = config.scaffold
    return [
        ProjectScaffolder(
            composer=ComposerProvider(
                runner=runner,
                composer_bin=scaffold.composer_bin,
                package=scaffold.package,
            )
        ),
        PermissionFixer(
            runner=runner,
            web_group=scaffold.web_group,
            web_user=scaffold.web_user,
            writable_dirs=scaffold.writable_dirs,
            mode=scaffold.writable_mode,
        ),
        EnvironmentConfigurator(),
        DatabaseProvisioner(mysql=MySQLProvider(runner=runner, settings=config.database)),
        HostsFileUpdater(
            hosts=HostsFile(files=files, path=config.hosts.path),
            address=config.hosts.address,
        ),
        CertificateProvisioner(
            files=files,
            issuers=(
                MkcertIssuer(runner=runner, mkcert_bin=config.tls.mkcert_bin),
                SelfSignedIssuer(
                    validity_days=config.tls.validity_days,
                    key_size=config.tls.key_size,
                ),
            ),
        ),
        VhostPublisher(nginx=nginx),
        ServiceReloader(nginx=nginx),
    ]


__all__ = [
    "CertificateProvisioner",
    "DatabaseProvisioner",
    "EnvironmentConfigurator",
    "HostsFileUpdater",
    "PermissionFixer",
    "ProjectScaffolder",
    "ServiceReloader",
    "VhostPublisher",
    "build_executors",
    "build_vhost_context",
    "desired_environment",
    "generate_app_key",
]
