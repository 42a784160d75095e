"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from devsitectl.config import AppConfig, load_config
from devsitectl.pipeline import StepContext
from devsitectl.request import ProvisioningRequest, resolve_paths

Handler = Callable[[list[str]], "subprocess.CompletedProcess[str]"]


def completed(
    argv: Sequence[str],
    returncode: int = 0,
    stdout: str = "",
    stderr: str = "",
) -> subprocess.CompletedProcess[str]:
    """Build a ``CompletedProcess`` for a fake command."""
    return subprocess.CompletedProcess(list(argv), returncode, stdout=stdout, stderr=stderr)


@dataclass
class RecordedCall:
    """One invocation captured by :class:`FakeRunner`."""

    argv: list[str]
    privileged: bool
    env: dict[str, str]
    input_text: str | None


@dataclass
class FakeRunner:
    """Command runner that records argv instead of executing tools.

    Handlers are keyed by program basename; unhandled commands succeed
    with empty output.
    """

    escalate: bool = False
    sudo_bin: str = "sudo"
    handlers: dict[str, Handler] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def on(self, program: str, handler: Handler) -> None:
        self.handlers[program] = handler

    def fail(self, program: str, *, returncode: int = 1, stderr: str = "boom") -> None:
        self.on(program, lambda argv: completed(argv, returncode, stderr=stderr))

    def run(
        self,
        args: Sequence[str],
        *,
        privileged: bool = False,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        argv = [str(item) for item in args]
        self.calls.append(RecordedCall(argv, privileged, dict(env or {}), input_text))
        handler = self.handlers.get(Path(argv[0]).name)
        if handler is None:
            return completed(argv)
        return handler(argv)

    def commands(self, program: str) -> list[list[str]]:
        return [call.argv for call in self.calls if Path(call.argv[0]).name == program]


def current_user() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


def current_group() -> str:
    return grp.getgrgid(os.getgid()).gr_name


def config_overrides(tmp_path: Path) -> dict[str, object]:
    """Return settings that keep every path under *tmp_path*."""
    return {
        "base_dir": str(tmp_path / "www"),
        "logs_dir": str(tmp_path / "logs"),
        "templates_dir": str(tmp_path / "templates"),
        "open_browser": False,
        "privilege": {"mode": "none"},
        "scaffold": {"web_user": current_user(), "web_group": current_group()},
        "php": {"fpm_socket": str(tmp_path / "run" / "php{version}-fpm.sock")},
        "database": {"privileged": False},
        "nginx": {
            "sites_available": str(tmp_path / "nginx" / "sites-available"),
            "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
        },
        "hosts": {"path": str(tmp_path / "hosts")},
        "tls": {"cert_dir": str(tmp_path / "ssl"), "mkcert_bin": str(tmp_path / "no-mkcert")},
    }


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration confined to the temporary directory."""
    return load_config(
        config_file=tmp_path / "absent.yml",
        env={},
        overrides=config_overrides(tmp_path),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def blog_request() -> ProvisioningRequest:
    return ProvisioningRequest(project_name="blog-app", domain="blog-app.local", php_version="8.3")


@pytest.fixture
def step_context(app_config: AppConfig, blog_request: ProvisioningRequest) -> StepContext:
    return StepContext(
        request=blog_request,
        paths=resolve_paths(blog_request, app_config),
        config=app_config,
    )
