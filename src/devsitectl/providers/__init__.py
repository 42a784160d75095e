"""Adapters for the external tools devsitectl drives."""
from __future__ import annotations

from .browser import BrowserLauncher
from .composer import ComposerError, ComposerProvider
from .hosts import HostsFile, HostsFileError
from .mysql import MySQLError, MySQLProvider
from .nginx import NginxError, NginxProvider, NginxPublishResult

__all__ = [
    "BrowserLauncher",
    "ComposerError",
    "ComposerProvider",
    "HostsFile",
    "HostsFileError",
    "MySQLError",
    "MySQLProvider",
    "NginxError",
    "NginxProvider",
    "NginxPublishResult",
]
