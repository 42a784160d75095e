"""Error taxonomy for provisioning runs.

Every error is fatal to the run: the pipeline stops at the first failure and
nothing is reverted. Each error carries a human-readable message and, where
one exists, a remediation hint shown beneath it.
"""
from __future__ import annotations

from pathlib import Path


class ProvisioningError(RuntimeError):
    """Base class for failures that abort a provisioning run."""

    kind = "provisioning-error"

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        """Capture the failure message and optional remediation hint."""
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "kind": self.kind,
            "message": self.message,
            "remediation": self.remediation,
        }


class InvalidArgument(ProvisioningError):
    """Raised when invocation options are missing, unknown, or malformed."""

    kind = "invalid-argument"


class MissingDependency(ProvisioningError):
    """Raised when a required external tool or runtime socket is absent."""

    kind = "missing-dependency"

    def __init__(
        self,
        tool: str,
        message: str | None = None,
        *,
        remediation: str | None = None,
    ) -> None:
        """Record which *tool* is missing."""
        super().__init__(
            message or f"Required dependency '{tool}' was not found.",
            remediation=remediation,
        )
        self.tool = tool


class PrivilegeUnavailable(ProvisioningError):
    """Raised when elevated-privilege execution cannot be obtained."""

    kind = "privilege-unavailable"


class DirectoryConflict(ProvisioningError):
    """Raised when the project directory already exists."""

    kind = "directory-conflict"

    def __init__(self, path: Path) -> None:
        """Record the conflicting *path*."""
        super().__init__(
            f"Project directory already exists: {path}",
            remediation="Remove or rename the directory, or choose another --name.",
        )
        self.path = path


class ScaffoldFailed(ProvisioningError):
    """Raised when the scaffolding tool fails to create the project."""

    kind = "scaffold-failed"


class PermissionFixFailed(ProvisioningError):
    """Raised when ownership or mode changes on writable directories fail."""

    kind = "permission-fix-failed"


class EnvConfigFailed(ProvisioningError):
    """Raised when the environment document cannot be read or written."""

    kind = "env-config-failed"


class DatabaseProvisioningFailed(ProvisioningError):
    """Raised when the database cannot be inspected or created."""

    kind = "database-provisioning-failed"


class HostsUpdateFailed(ProvisioningError):
    """Raised when the hosts file cannot be read or appended."""

    kind = "hosts-update-failed"


class CertificateGenerationFailed(ProvisioningError):
    """Raised when no usable certificate/key pair exists after generation."""

    kind = "certificate-generation-failed"


class InvalidProxyConfig(ProvisioningError):
    """Raised when the reverse proxy rejects the published configuration."""

    kind = "invalid-proxy-config"


class ReloadFailed(ProvisioningError):
    """Raised when the reverse proxy cannot be reloaded."""

    kind = "reload-failed"


__all__ = [
    "CertificateGenerationFailed",
    "DatabaseProvisioningFailed",
    "DirectoryConflict",
    "EnvConfigFailed",
    "HostsUpdateFailed",
    "InvalidArgument",
    "InvalidProxyConfig",
    "MissingDependency",
    "PermissionFixFailed",
    "PrivilegeUnavailable",
    "ProvisioningError",
    "ReloadFailed",
    "ScaffoldFailed",
]
