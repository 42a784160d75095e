"""Configuration loader for devsitectl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``~/.config/devsitectl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DEVSITECTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DEVSITECTL_BASE_DIR=/srv/www
    export DEVSITECTL_DATABASE__PORT=3307
    export DEVSITECTL_PRIVILEGE__MODE=none

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml


ENV_PREFIX = "DEVSITECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PrivilegeConfig:
    """How privileged commands and file writes are escalated."""

    mode: str = "auto"
    sudo_bin: str = "sudo"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"mode": self.mode, "sudo_bin": self.sudo_bin}


@dataclass(frozen=True)
class ScaffoldConfig:
    """Project scaffolding and filesystem permission settings."""

    composer_bin: str = "composer"
    package: str = "laravel/laravel"
    web_user: str | None = None
    web_group: str = "www-data"
    writable_dirs: tuple[str, ...] = ("storage", "bootstrap/cache")
    writable_mode: int = 0o775

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "composer_bin": self.composer_bin,
            "package": self.package,
            "web_user": self.web_user,
            "web_group": self.web_group,
            "writable_dirs": list(self.writable_dirs),
            "writable_mode": f"{self.writable_mode:04o}",
        }


@dataclass(frozen=True)
class PHPConfig:
    """PHP-FPM runtime settings."""

    fpm_socket: str = "/run/php/php{version}-fpm.sock"

    def socket_for(self, version: str) -> Path:
        """Return the FastCGI socket path for PHP *version*."""
        return Path(self.fpm_socket.format(version=version))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"fpm_socket": self.fpm_socket}


@dataclass(frozen=True)
class DatabaseConfig:
    """Database server connection and creation settings."""

    client_bin: str = "mysql"
    host: str = "127.0.0.1"
    port: int = 3306
    username: str = "root"
    password: str = ""
    charset: str = "utf8mb4"
    collation: str = "utf8mb4_unicode_ci"
    privileged: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (password redacted)."""
        return {
            "client_bin": self.client_bin,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": "***" if self.password else "",
            "charset": self.charset,
            "collation": self.collation,
            "privileged": self.privileged,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Reverse proxy binary and site directory settings."""

    nginx_bin: str = "nginx"
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    http_port: int = 80
    https_port: int = 443

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "nginx_bin": self.nginx_bin,
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "http_port": self.http_port,
            "https_port": self.https_port,
        }


@dataclass(frozen=True)
class HostsConfig:
    """Local name resolution settings."""

    path: Path = Path("/etc/hosts")
    address: str = "127.0.0.1"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"path": str(self.path), "address": self.address}


@dataclass(frozen=True)
class TLSConfig:
    """Certificate generation settings."""

    cert_dir: Path = Path("/etc/nginx/ssl")
    mkcert_bin: str = "mkcert"
    validity_days: int = 365
    key_size: int = 2048

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "cert_dir": str(self.cert_dir),
            "mkcert_bin": self.mkcert_bin,
            "validity_days": self.validity_days,
            "key_size": self.key_size,
        }


@dataclass(frozen=True)
class BrowserConfig:
    """Browser launcher settings."""

    launcher_bin: str = "xdg-open"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"launcher_bin": self.launcher_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for devsitectl."""

    config_file: Path
    base_dir: Path
    logs_dir: Path
    templates_dir: Path
    default_php_version: str
    domain_suffix: str
    open_browser: bool
    privilege: PrivilegeConfig
    scaffold: ScaffoldConfig
    php: PHPConfig
    database: DatabaseConfig
    nginx: NginxConfig
    hosts: HostsConfig
    tls: TLSConfig
    browser: BrowserConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "base_dir": str(self.base_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "default_php_version": self.default_php_version,
            "domain_suffix": self.domain_suffix,
            "open_browser": self.open_browser,
            "privilege": self.privilege.to_dict(),
            "scaffold": self.scaffold.to_dict(),
            "php": self.php.to_dict(),
            "database": self.database.to_dict(),
            "nginx": self.nginx.to_dict(),
            "hosts": self.hosts.to_dict(),
            "tls": self.tls.to_dict(),
            "browser": self.browser.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/devsitectl/config.yml",
    "base_dir": "/var/www",
    "logs_dir": "~/.local/state/devsitectl",
    "templates_dir": "~/.config/devsitectl/templates",
    "default_php_version": "8.3",
    "domain_suffix": ".local",
    "open_browser": True,
    "privilege": {
        "mode": "auto",
        "sudo_bin": "sudo",
    },
    "scaffold": {
        "composer_bin": "composer",
        "package": "laravel/laravel",
        "web_user": None,
        "web_group": "www-data",
        "writable_dirs": ["storage", "bootstrap/cache"],
        "writable_mode": "0775",
    },
    "php": {
        "fpm_socket": "/run/php/php{version}-fpm.sock",
    },
    "database": {
        "client_bin": "mysql",
        "host": "127.0.0.1",
        "port": 3306,
        "username": "root",
        "password": "",
        "charset": "utf8mb4",
        "collation": "utf8mb4_unicode_ci",
        "privileged": True,
    },
    "nginx": {
        "nginx_bin": "nginx",
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "http_port": 80,
        "https_port": 443,
    },
    "hosts": {
        "path": "/etc/hosts",
        "address": "127.0.0.1",
    },
    "tls": {
        "cert_dir": "/etc/nginx/ssl",
        "mkcert_bin": "mkcert",
        "validity_days": 365,
        "key_size": 2048,
    },
    "browser": {
        "launcher_bin": "xdg-open",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_PRIVILEGE_MODES = {"auto", "sudo", "none"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    privilege = _as_dict(raw.get("privilege"), "privilege")
    mode = str(privilege.get("mode", "auto")).strip().lower()
    if mode not in ALLOWED_PRIVILEGE_MODES:
        allowed_modes = ", ".join(sorted(ALLOWED_PRIVILEGE_MODES))
        raise ConfigError(f"Unsupported privilege mode '{mode}'. Allowed: {allowed_modes}.")

    php = _as_dict(raw.get("php"), "php")
    socket_pattern = php.get("fpm_socket")
    if socket_pattern is not None and "{version}" not in str(socket_pattern):
        raise ConfigError("php.fpm_socket must contain a '{version}' placeholder.")

    suffix = raw.get("domain_suffix")
    if suffix is not None and not str(suffix).startswith("."):
        raise ConfigError("domain_suffix must start with a dot, e.g. '.local'.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    privilege_mapping = _as_dict(raw.get("privilege"), "privilege")
    privilege = PrivilegeConfig(
        mode=str(privilege_mapping.get("mode", "auto")).strip().lower(),
        sudo_bin=str(privilege_mapping.get("sudo_bin", "sudo")),
    )

    scaffold_mapping = _as_dict(raw.get("scaffold"), "scaffold")
    web_user_value = scaffold_mapping.get("web_user")
    writable_dirs = tuple(
        str(item)
        for item in _as_sequence(
            scaffold_mapping.get("writable_dirs", ["storage", "bootstrap/cache"]),
            "scaffold.writable_dirs",
        )
    )
    scaffold = ScaffoldConfig(
        composer_bin=str(scaffold_mapping.get("composer_bin", "composer")),
        package=str(scaffold_mapping.get("package", "laravel/laravel")),
        web_user=str(web_user_value) if web_user_value else None,
        web_group=str(scaffold_mapping.get("web_group", "www-data")),
        writable_dirs=writable_dirs,
        writable_mode=_parse_permission_mode(
            scaffold_mapping.get("writable_mode", "0775"),
            "scaffold.writable_mode",
        ),
    )

    php_mapping = _as_dict(raw.get("php"), "php")
    php = PHPConfig(fpm_socket=str(php_mapping.get("fpm_socket", PHPConfig.fpm_socket)))

    db_mapping = _as_dict(raw.get("database"), "database")
    password_value = db_mapping.get("password")
    database = DatabaseConfig(
        client_bin=str(db_mapping.get("client_bin", "mysql")),
        host=str(db_mapping.get("host", "127.0.0.1")),
        port=_expect_int(db_mapping.get("port"), "database.port", default=3306),
        username=str(db_mapping.get("username", "root")),
        password="" if password_value is None else str(password_value),
        charset=str(db_mapping.get("charset", "utf8mb4")),
        collation=str(db_mapping.get("collation", "utf8mb4_unicode_ci")),
        privileged=_expect_bool(db_mapping.get("privileged"), "database.privileged", default=True),
    )

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        nginx_bin=str(nginx_mapping.get("nginx_bin", "nginx")),
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        http_port=_expect_int(nginx_mapping.get("http_port"), "nginx.http_port", default=80),
        https_port=_expect_int(nginx_mapping.get("https_port"), "nginx.https_port", default=443),
    )

    hosts_mapping = _as_dict(raw.get("hosts"), "hosts")
    hosts = HostsConfig(
        path=_to_path(hosts_mapping.get("path", "/etc/hosts")),
        address=str(hosts_mapping.get("address", "127.0.0.1")),
    )

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    validity_days = _expect_int(tls_mapping.get("validity_days"), "tls.validity_days", default=365)
    if validity_days <= 0:
        raise ConfigError("tls.validity_days must be greater than zero.")
    key_size = _expect_int(tls_mapping.get("key_size"), "tls.key_size", default=2048)
    if key_size < 2048:
        raise ConfigError("tls.key_size must be at least 2048 bits.")
    tls = TLSConfig(
        cert_dir=_to_path(tls_mapping.get("cert_dir", "/etc/nginx/ssl")),
        mkcert_bin=str(tls_mapping.get("mkcert_bin", "mkcert")),
        validity_days=validity_days,
        key_size=key_size,
    )

    browser_mapping = _as_dict(raw.get("browser"), "browser")
    browser = BrowserConfig(launcher_bin=str(browser_mapping.get("launcher_bin", "xdg-open")))

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        base_dir=_to_path(raw.get("base_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        default_php_version=str(raw.get("default_php_version", "8.3")),
        domain_suffix=str(raw.get("domain_suffix", ".local")),
        open_browser=_expect_bool(raw.get("open_browser"), "open_browser", default=True),
        privilege=privilege,
        scaffold=scaffold,
        php=php,
        database=database,
        nginx=nginx,
        hosts=hosts,
        tls=tls,
        browser=browser,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _parse_permission_mode(value: object, label: str) -> int:
    if value is None:
        raise ConfigError(f"{label} must be specified.")
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be an octal integer string. Got boolean {value!r}.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower()
        if not text:
            raise ConfigError(f"{label} must be an octal integer string.")
        if text.startswith("0o"):
            text = text[2:]
        try:
            mode = int(text, 8)
        except ValueError as exc:
            raise ConfigError(f"{label} must be an octal integer string.") from exc
    else:
        raise ConfigError(f"{label} must be an octal integer or string.")
    if mode < 0 or mode > 0o777:
        raise ConfigError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BrowserConfig",
    "ConfigError",
    "DatabaseConfig",
    "HostsConfig",
    "NginxConfig",
    "PHPConfig",
    "PrivilegeConfig",
    "ScaffoldConfig",
    "TLSConfig",
    "load_config",
]
