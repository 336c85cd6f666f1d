"""Structured operation journal for pullstrap.

Every reconcile step and health pass is recorded as a single JSON line in
``<logs_dir>/operations.jsonl``. The journal is best effort: when the log
directory cannot be created, or a write fails, the logger disables itself and
the run continues. Records are mirrored to the standard ``logging`` logger
named ``pullstrap`` at debug level.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

_LOG = logging.getLogger("pullstrap")


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class StructuredLogger:
    """Append operation records to a JSONL journal."""

    def __init__(self, log_dir: Path, *, filename: str = "operations.jsonl") -> None:
        """Prepare the journal under *log_dir*, disabling it when unavailable."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / filename
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.debug("operation journal disabled: %s", exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the journal location."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open a scope for *command*; the scope records exactly one result."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if not scope.finished:
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        if not scope.finished:
            scope.success("Operation completed.")

    def _write(self, record: Mapping[str, object]) -> None:
        _LOG.debug("operation %s", record.get("command"), extra={"record": record})
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=False)
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            _LOG.debug("operation journal disabled after write failure: %s", exc)
            self._enabled = False


class OperationScope:
    """A single journalled operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Record the operation metadata and start the clock."""
        self._logger = logger
        self.command = command
        self.op_id = uuid.uuid4().hex
        self._args = dict(args or {})
        self._target = dict(target or {})
        self._started_at = _timestamp()
        self._start = time.perf_counter()
        self.finished = False

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._finish("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        backups: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; *errors* defaults to ``[message]``."""
        self._finish(
            "error",
            message,
            changed=changed,
            errors=[message] if errors is None else errors,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        backups: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        if self.finished:
            return
        self.finished = True
        duration_ms = int((time.perf_counter() - self._start) * 1000)
        result: dict[str, Any] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
        }
        backups_list = list(backups)
        if backups_list:
            result["backups"] = backups_list
        if context:
            result["context"] = _sanitize(context)
        record: dict[str, object] = {
            "op_id": self.op_id,
            "command": self.command,
            "args": _sanitize(self._args),
            "target": _sanitize(self._target),
            "started_at": self._started_at,
            "finished_at": _timestamp(),
            "duration_ms": duration_ms,
            "result": result,
        }
        self._logger._write(record)


__all__ = ["OperationScope", "StructuredLogger"]
