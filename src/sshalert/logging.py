"""Structured operation logging for sshalert.

Every CLI command runs inside an :class:`OperationScope`. The scope collects
the steps attempted during the command and, when it closes, appends a single
JSON record to ``operations.jsonl``. Step outcomes are additionally written
to ``run.log`` the moment they are recorded, one timestamped line each, so the
run log always reflects exactly the steps attempted even if the process dies
before the operation record is flushed.

Logging must never break provisioning: if the log directory cannot be
created, or a write fails, the logger disables itself and later writes become
no-ops.
"""
from __future__ import annotations

import json
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG = "operations.jsonl"
RUN_LOG = "run.log"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _utc_timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _local_timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class StructuredLogger:
    """Append-only JSON operation log plus a human readable run log."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling logging if it is unusable."""
        self.logs_dir = logs_dir.expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._run_log_path = self.logs_dir / RUN_LOG
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return ``True`` while log writes are still attempted."""
        return self._enabled

    @property
    def run_log_path(self) -> Path:
        """Return the path of the timestamped run log."""
        return self._run_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope that records the outcome of operation *name*."""
        scope = OperationScope(self, name, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__)
            raise
        finally:
            self._write_json(scope.to_record())

    # ------------------------------------------------------------------
    def write_run_line(self, line: str) -> None:
        """Append a timestamped *line* to the run log."""
        self._append(self._run_log_path, f"{_local_timestamp()} {line}\n")

    def truncate_run_log(self) -> None:
        """Empty the run log. Only deprovisioning calls this."""
        if not self._enabled:
            return
        try:
            self._run_log_path.write_text("", encoding="utf-8")
        except OSError:
            self._enabled = False

    def _write_json(self, record: Mapping[str, object]) -> None:
        payload = json.dumps(_sanitize(record), sort_keys=False)
        self._append(self._operations_log_path, payload + "\n")

    def _append(self, path: Path, text: str) -> None:
        if not self._enabled:
            return
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(text)
        except OSError:
            self._enabled = False


class OperationScope:
    """Collects steps and the final result of a single operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start timing operation *name*."""
        self._logger = logger
        self.name = name
        self.op_id = uuid.uuid4().hex
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started_at = _utc_timestamp()
        self._start = time.perf_counter()

    def add_step(self, step_id: str, *, status: str, detail: str | None = None) -> None:
        """Record a step outcome and append it to the run log immediately."""
        entry: dict[str, object] = {
            "id": step_id,
            "status": status,
            "timestamp": _utc_timestamp(),
        }
        if detail:
            entry["detail"] = detail
        self.steps.append(entry)
        line = f"{self.name} {step_id}: {status}"
        if detail:
            line += f" - {detail}"
        self._logger.write_run_line(line)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
            rc=0,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            changed=changed,
            errors=list(errors) if errors else [message],
            context=context,
            rc=rc,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        return {
            "op_id": self.op_id,
            "operation": self.name,
            "started_at": self._started_at,
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "pid": os.getpid(),
            "args": self.args,
            "target": self.target,
            "steps": self.steps,
            "result": self.result or {"status": "unknown", "message": "No result recorded."},
        }

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        rc: int,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "rc": rc,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
        }
        if context:
            result["context"] = _sanitize(context)
        self.result = result


__all__ = ["OperationScope", "StructuredLogger"]
