"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from devsitectl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("run", args={"name": "blog"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("run") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    # Later operations must not raise while the logger is disabled.
    with logger.operation("check") as op:
        op.success("done", changed=0)


def test_operation_records_steps_and_result(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "run",
        args={"name": "blog-app"},
        target={"kind": "site", "name": "blog-app"},
    ) as op:
        op.add_step("scaffold", "applied", state="scaffolding", detail="created")
        op.add_step("hosts", "skipped", state="hosts-updating", detail=None)
        op.success("Site provisioned.", changed=1, context={"dir": Path("/var/www/blog-app")})

    (record,) = _records(logger)
    assert record["command"] == "run"
    assert record["args"] == {"name": "blog-app"}
    assert record["target"] == {"kind": "site", "name": "blog-app"}
    assert str(record["op_id"]).startswith("op-")
    assert [step["name"] for step in record["steps"]] == ["scaffold", "hosts"]
    assert record["steps"][0]["state"] == "scaffolding"
    assert record["result"]["status"] == "success"
    assert record["result"]["changed"] == 1
    assert record["result"]["context"] == {"dir": "/var/www/blog-app"}


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("run", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("browser missing",),
            errors=("err",),
            changed=1,
            context={"path": Path("/var/www"), "obj": Custom()},
        )

    (record,) = _records(logger)
    result = record["result"]
    assert record["args"] == {"path": "foo"}
    assert result["status"] == "warning"
    assert result["warnings"] == ["browser missing"]
    assert result["errors"] == ["err"]
    assert result["context"] == {"path": "/var/www", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("run") as op:
        op.error("boom", errors=None, rc=1, context={"value": {1, 2}})

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 1
    assert result["context"] == {"value": "{1, 2}"}


def test_unhandled_exception_is_logged_and_reraised(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError, match="kaput"):
        with logger.operation("run"):
            raise ValueError("kaput")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert "ValueError" in record["result"]["message"]


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("check"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"
