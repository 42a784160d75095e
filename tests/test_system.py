"""Tests for command execution and privileged file operations."""
from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import FakeRunner, completed
from devsitectl import system
from devsitectl.config import PrivilegeConfig
from devsitectl.system import (
    COMMAND_NOT_FOUND,
    CommandRunner,
    FileOperationError,
    SystemFiles,
    describe_failure,
    escalation_required,
)


@pytest.mark.parametrize(
    ("mode", "euid", "expected"),
    [
        ("none", 1000, False),
        ("sudo", 0, True),
        ("auto", 0, False),
        ("auto", 1000, True),
    ],
)
def test_escalation_required(
    monkeypatch: pytest.MonkeyPatch,
    mode: str,
    euid: int,
    expected: bool,
) -> None:
    monkeypatch.setattr(system.os, "geteuid", lambda: euid)

    assert escalation_required(PrivilegeConfig(mode=mode)) is expected


def test_command_for_prefixes_sudo_only_for_privileged_commands() -> None:
    runner = CommandRunner(escalate=True, sudo_bin="/usr/bin/sudo")

    assert runner.command_for(["nginx", "-t"], privileged=True) == ["/usr/bin/sudo", "nginx", "-t"]
    assert runner.command_for(["composer", "--version"]) == ["composer", "--version"]
    assert CommandRunner().command_for(["nginx", "-t"], privileged=True) == ["nginx", "-t"]


def test_run_captures_output_and_env() -> None:
    runner = CommandRunner()

    result = runner.run(["sh", "-c", 'printf "%s" "$DEVSITE_TEST"'], env={"DEVSITE_TEST": "hi"})

    assert result.returncode == 0
    assert result.stdout == "hi"


def test_run_reports_missing_binary_as_127(tmp_path: Path) -> None:
    runner = CommandRunner()

    result = runner.run([str(tmp_path / "nope"), "--version"])

    assert result.returncode == COMMAND_NOT_FOUND
    assert "not found" in result.stderr


def test_escalated_env_is_preserved_not_placed_in_argv(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        captured["command"] = command
        captured["env"] = kwargs["env"]
        return completed(command)

    monkeypatch.setattr(system.subprocess, "run", fake_run)
    runner = CommandRunner(escalate=True)

    runner.run(["mysql", "-e", "SELECT 1"], privileged=True, env={"MYSQL_PWD": "secret"})

    assert captured["command"] == ["sudo", "--preserve-env=MYSQL_PWD", "mysql", "-e", "SELECT 1"]
    assert "secret" not in " ".join(captured["command"])  # type: ignore[arg-type]
    assert captured["env"]["MYSQL_PWD"] == "secret"  # type: ignore[index]


def test_describe_failure_prefers_stderr() -> None:
    result = completed(["nginx", "-t"], 1, stdout="out", stderr="emerg: bad directive\n")

    assert describe_failure(result) == "nginx -t failed (exit 1): emerg: bad directive"
    assert describe_failure(completed(["x"], 2)) == "x failed (exit 2): no output"


def test_direct_write_text_applies_mode(tmp_path: Path) -> None:
    files = SystemFiles(CommandRunner())
    target = tmp_path / "nested" / "key.pem"

    files.write_text(target, "secret\n", mode=0o600)

    assert target.read_text() == "secret\n"
    assert target.stat().st_mode & 0o777 == 0o600
    assert list(target.parent.iterdir()) == [target]


def test_direct_append_symlink_and_read(tmp_path: Path) -> None:
    files = SystemFiles(CommandRunner())
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost\n")

    files.append_text(hosts, "127.0.0.1 blog.local\n")
    source = tmp_path / "available" / "site.conf"
    source.parent.mkdir()
    source.write_text("server {}\n")
    link = tmp_path / "enabled" / "site.conf"
    files.symlink(source, link)
    files.symlink(source, link)

    assert hosts.read_text().splitlines() == ["127.0.0.1 localhost", "127.0.0.1 blog.local"]
    assert link.is_symlink() and link.resolve() == source
    assert files.read_text(tmp_path / "missing") is None


def test_read_text_rejects_undecodable_content(tmp_path: Path) -> None:
    target = tmp_path / "hosts"
    target.write_bytes(b"127.0.0.1 caf\xe9\n")

    with pytest.raises(FileOperationError, match="Unable to read"):
        SystemFiles(CommandRunner()).read_text(target)


def test_escalated_write_goes_through_runner(tmp_path: Path) -> None:
    runner = FakeRunner(escalate=True)
    files = SystemFiles(runner)  # type: ignore[arg-type]
    target = tmp_path / "ssl" / "key.pem"

    files.write_text(target, "secret\n", mode=0o600)

    assert [call.argv for call in runner.calls] == [
        ["mkdir", "-p", str(target.parent)],
        ["install", "-m", "0600", "/dev/null", str(target)],
        ["tee", str(target)],
    ]
    assert all(call.privileged for call in runner.calls)
    assert runner.calls[-1].input_text == "secret\n"
    assert not target.exists()


def test_escalated_append_and_symlink(tmp_path: Path) -> None:
    runner = FakeRunner(escalate=True)
    files = SystemFiles(runner)  # type: ignore[arg-type]

    files.append_text(Path("/etc/hosts"), "127.0.0.1 blog.local\n")
    files.symlink(Path("/etc/nginx/sites-available/a.conf"), Path("/etc/nginx/sites-enabled/a.conf"))

    assert runner.commands("tee") == [["tee", "-a", "/etc/hosts"]]
    assert runner.commands("ln") == [
        ["ln", "-sfn", "/etc/nginx/sites-available/a.conf", "/etc/nginx/sites-enabled/a.conf"]
    ]


def test_escalated_failure_raises(tmp_path: Path) -> None:
    runner = FakeRunner(escalate=True)
    runner.fail("tee", stderr="permission denied")
    files = SystemFiles(runner)  # type: ignore[arg-type]

    with pytest.raises(FileOperationError, match="permission denied"):
        files.append_text(Path("/etc/hosts"), "x\n")
