"""Invocation options, the provisioning request, and the paths derived from it."""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .config import AppConfig
from .errors import InvalidArgument

RECOGNISED_OPTIONS = frozenset({"name", "domain", "phpVersion"})
DEFAULT_PHP_VERSION = "8.3"
DEFAULT_DOMAIN_SUFFIX = ".local"

# MySQL limits database identifiers to 64 characters.
MAX_NAME_LENGTH = 64
_NAME_PATTERN = re.compile(r"[a-z0-9][a-z0-9_-]*")
_DOMAIN_PATTERN = re.compile(r"[a-z0-9.-]+")
_IDENTIFIER_DISALLOWED = re.compile(r"[^a-z0-9_]")


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """What to provision: one project, its domain, and its PHP runtime."""

    project_name: str
    domain: str
    php_version: str

    @property
    def database_name(self) -> str:
        """Return the database identifier derived from the project name."""
        return database_identifier(self.project_name)

    @property
    def url(self) -> str:
        """Return the HTTPS URL the project is served on."""
        return f"https://{self.domain}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.project_name,
            "domain": self.domain,
            "php_version": self.php_version,
            "database": self.database_name,
        }


@dataclass(frozen=True, slots=True)
class ResolvedPaths:
    """Filesystem locations derived from a request and the configuration."""

    project_dir: Path
    public_dir: Path
    env_file: Path
    env_template: Path
    certificate: Path
    certificate_key: Path
    vhost_available: Path
    vhost_enabled: Path
    fpm_socket: Path

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {
            "project_dir": str(self.project_dir),
            "public_dir": str(self.public_dir),
            "env_file": str(self.env_file),
            "env_template": str(self.env_template),
            "certificate": str(self.certificate),
            "certificate_key": str(self.certificate_key),
            "vhost_available": str(self.vhost_available),
            "vhost_enabled": str(self.vhost_enabled),
            "fpm_socket": str(self.fpm_socket),
        }


def resolve_request(
    options: Mapping[str, str | None],
    *,
    default_php_version: str = DEFAULT_PHP_VERSION,
    domain_suffix: str = DEFAULT_DOMAIN_SUFFIX,
) -> ProvisioningRequest:
    """Validate raw invocation *options* and apply defaults.

    Recognised options are ``name`` (required), ``domain`` and
    ``phpVersion``. Any other key is rejected. Empty strings for the optional
    values count as unset.
    """
    unknown = set(options) - RECOGNISED_OPTIONS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise InvalidArgument(
            f"Unrecognised option(s): {joined}.",
            remediation="Supported options are --name, --domain and --php.",
        )

    name = validate_project_name(options.get("name"))

    raw_domain = (options.get("domain") or "").strip()
    domain = validate_domain(raw_domain) if raw_domain else f"{name}{domain_suffix}"

    raw_php = (options.get("phpVersion") or "").strip()
    php_version = validate_php_version(raw_php or default_php_version)

    return ProvisioningRequest(project_name=name, domain=domain, php_version=php_version)


def validate_project_name(value: str | None) -> str:
    """Return a normalised project name or raise :class:`InvalidArgument`."""
    normalised = (value or "").strip()
    if not normalised:
        raise InvalidArgument(
            "A project name is required.",
            remediation="Pass --name=<project>, e.g. --name=blog-app.",
        )
    if len(normalised) > MAX_NAME_LENGTH:
        raise InvalidArgument(
            f"Project name must be {MAX_NAME_LENGTH} characters or fewer."
        )
    if not _NAME_PATTERN.fullmatch(normalised):
        raise InvalidArgument(
            "Project name must start with a lowercase letter or digit and contain only "
            "lowercase letters, digits, hyphens and underscores."
        )
    return normalised


def validate_domain(value: str) -> str:
    """Validate and normalise a domain/FQDN."""
    normalised = value.strip().lower()
    if not normalised:
        raise InvalidArgument("Domain must be a non-empty string.")
    if len(normalised) > 253:
        raise InvalidArgument("Domain must be 253 characters or fewer.")
    if not _DOMAIN_PATTERN.fullmatch(normalised):
        raise InvalidArgument("Domain may contain letters, numbers, dots, and hyphens.")
    for label in normalised.split("."):
        if not label:
            raise InvalidArgument(f"Domain '{normalised}' contains an empty label.")
        if label.startswith("-") or label.endswith("-"):
            raise InvalidArgument("Domain labels cannot start or end with a hyphen.")
    return normalised


def validate_php_version(value: str) -> str:
    """Return *value* when it is a plain ``major.minor`` style version."""
    try:
        parsed = Version(value)
    except InvalidVersion as exc:
        raise InvalidArgument(f"Invalid PHP version '{value}'.") from exc
    if parsed.is_prerelease or parsed.local is not None or parsed.epoch:
        raise InvalidArgument(f"Invalid PHP version '{value}'; expected e.g. 8.3.")
    return value


def database_identifier(project_name: str) -> str:
    """Return a MySQL-safe identifier for *project_name*.

    Hyphens (and anything else outside ``[a-z0-9_]``) become underscores.
    """
    identifier = _IDENTIFIER_DISALLOWED.sub("_", project_name.lower())
    return identifier[:MAX_NAME_LENGTH]


def resolve_paths(request: ProvisioningRequest, config: AppConfig) -> ResolvedPaths:
    """Derive every filesystem path the pipeline touches for *request*."""
    project_dir = config.base_dir / request.project_name
    site_file = f"{request.domain}.conf"
    return ResolvedPaths(
        project_dir=project_dir,
        public_dir=project_dir / "public",
        env_file=project_dir / ".env",
        env_template=project_dir / ".env.example",
        certificate=config.tls.cert_dir / f"{request.domain}.pem",
        certificate_key=config.tls.cert_dir / f"{request.domain}-key.pem",
        vhost_available=config.nginx.sites_available / site_file,
        vhost_enabled=config.nginx.sites_enabled / site_file,
        fpm_socket=config.php.socket_for(request.php_version),
    )


__all__ = [
    "DEFAULT_PHP_VERSION",
    "ProvisioningRequest",
    "RECOGNISED_OPTIONS",
    "ResolvedPaths",
    "database_identifier",
    "resolve_paths",
    "resolve_request",
    "validate_domain",
    "validate_php_version",
    "validate_project_name",
]
