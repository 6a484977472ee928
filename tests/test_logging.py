"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
from conftest import FakeHost, ScriptedPrompter

from sshalert.converge import Provisioner
from sshalert.converge.steps import EnsureGroup, EnsurePackage
from sshalert.errors import PackageManagerError
from sshalert.logging import StructuredLogger


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
    assert logger.enabled is False

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.add_step("ensure-group:msmtp", status="applied")
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger.enabled is False

    # Later operations must not raise even though the logger is disabled.
    with logger.operation("demo-2") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("status", args={"path": Path("foo")}) as op:
        op.warning(
            "pending",
            warnings=("ensure-group:msmtp",),
            errors=("err",),
            context={"path": Path("/etc/msmtprc"), "obj": Custom()},
        )

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    assert record["args"] == {"path": "foo"}
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["ensure-group:msmtp"]
    assert result["errors"] == ["err"]
    assert result["context"] == {"path": "/etc/msmtprc", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo") as op:
        op.error("boom", errors=None, context={"value": {1, 2}})

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["context"] == {"value": "{1, 2}"}


def test_unhandled_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """An exception escaping the scope still produces an error record."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("demo"):
            raise RuntimeError("kaput")

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    assert record["result"]["errors"] == ["RuntimeError: kaput"]


def test_run_log_has_one_line_per_attempted_step(
    tmp_path: Path,
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
) -> None:
    """The run log lists exactly the steps attempted, failing one included."""
    logger = StructuredLogger(tmp_path / "logs")
    logger.write_run_line("earlier run")
    fake_host.fail_on["install_package"] = PackageManagerError("apt-get failed (exit 100)")
    steps = [EnsureGroup("msmtp"), EnsurePackage("msmtp"), EnsureGroup("never")]

    with logger.operation("provision") as op:
        result = Provisioner(fake_host, prompter, recorder=op).run(steps)
        op.error(result.reason or "failed")

    lines = logger.run_log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert lines[0].endswith("earlier run")
    assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} provision ensure-group:msmtp: applied", lines[1])
    assert lines[2].endswith("ensure-package:msmtp: failed - apt-get failed (exit 100)")
    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    assert [step["id"] for step in record["steps"]] == [
        "ensure-group:msmtp",
        "ensure-package:msmtp",
    ]


def test_truncate_run_log_empties_file(tmp_path: Path) -> None:
    """Deprovisioning can reset the run log."""
    logger = StructuredLogger(tmp_path / "logs")
    logger.write_run_line("provision ensure-group:msmtp: applied")

    logger.truncate_run_log()

    assert logger.run_log_path.read_text(encoding="utf-8") == ""
