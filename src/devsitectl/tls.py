"""Certificate issuance and verification for local HTTPS sites.

Two issuers produce a certificate/key pair at caller-specified paths:
:class:`MkcertIssuer` delegates to ``mkcert`` so the certificate chains to the
developer's locally trusted CA, and :class:`SelfSignedIssuer` generates a
self-signed pair with ``cryptography`` when mkcert is unavailable.
"""
from __future__ import annotations

import ipaddress
import logging
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .system import CommandRunner, describe_failure

LOGGER = logging.getLogger(__name__)


class TLSIssueError(RuntimeError):
    """Raised when an issuer cannot produce a certificate/key pair."""


@dataclass(frozen=True)
class TLSMaterial:
    """Concrete TLS assets (certificate and private key)."""

    certificate: Path
    key: Path

    def exists(self) -> bool:
        """Return ``True`` when both files are present."""
        return self.certificate.is_file() and self.key.is_file()

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {"certificate": str(self.certificate), "key": str(self.key)}


class CertificateIssuer(Protocol):
    """Anything able to write a certificate/key pair for a domain."""

    name: str

    def available(self) -> bool:
        """Return ``True`` when the issuer can be used on this host."""

    def issue(self, domain: str, material: TLSMaterial) -> None:
        """Write a certificate and key for *domain* to *material*."""


@dataclass(slots=True)
class MkcertIssuer:
    """Issue certificates signed by the local mkcert CA."""

    runner: CommandRunner
    mkcert_bin: str = "mkcert"
    name: str = "mkcert"

    def available(self) -> bool:
        """Return ``True`` when the mkcert binary can be found."""
        return shutil.which(self.mkcert_bin) is not None

    def issue(self, domain: str, material: TLSMaterial) -> None:
        """Run mkcert for *domain*, writing to *material*."""
        result = self.runner.run(
            [
                self.mkcert_bin,
                "-cert-file",
                str(material.certificate),
                "-key-file",
                str(material.key),
                domain,
            ]
        )
        if result.returncode != 0:
            raise TLSIssueError(describe_failure(result))


@dataclass(slots=True)
class SelfSignedIssuer:
    """Generate a self-signed certificate with a fixed validity window."""

    validity_days: int = 365
    key_size: int = 2048
    name: str = "self-signed"

    def available(self) -> bool:
        """Self-signed generation is always possible."""
        return True

    def issue(self, domain: str, material: TLSMaterial) -> None:
        """Generate a key and certificate for *domain* at *material*."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        certificate = build_self_signed_certificate(
            domain,
            key,
            validity_days=self.validity_days,
        )
        material.key.write_bytes(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        material.certificate.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))


def build_self_signed_certificate(
    domain: str,
    key: rsa.RSAPrivateKey,
    *,
    validity_days: int,
    now: datetime | None = None,
) -> x509.Certificate:
    """Return a self-signed server certificate for *domain*."""
    now = now or datetime.now(UTC)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "devsitectl local development"),
        ]
    )
    alt_names: list[x509.GeneralName] = [x509.DNSName(domain)]
    try:
        alt_names.append(x509.IPAddress(ipaddress.ip_address(domain)))
    except ValueError:
        pass
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


def material_matches(material: TLSMaterial) -> bool:
    """Return ``True`` when the certificate and key in *material* belong together."""
    try:
        certificate = _load_certificate(material.certificate)
        key = _load_private_key(material.key)
    except (OSError, ValueError, TypeError) as exc:
        LOGGER.debug("unable to load TLS material: %s", exc)
        return False
    return _public_keys_match(certificate, key)


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_key = cert.public_key()
    try:
        key_public = private_key.public_key()
    except AttributeError:  # pragma: no cover
        return False
    cert_bytes = cert_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = key_public.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


__all__ = [
    "CertificateIssuer",
    "MkcertIssuer",
    "SelfSignedIssuer",
    "TLSIssueError",
    "TLSMaterial",
    "build_self_signed_certificate",
    "material_matches",
]
