"""
ESG Reporting — Structured Logging with Trace IDs

Emits JSON log lines for every reporting-cycle event. Each cycle run
gets its own trace_id so a single orchestration pass (steps, exception
discovery, artifact preparation, verification, reprocessing) can be
reconstructed from the log stream alone.

Design decisions:
  - Transport: Python logging with a JSON formatter
  - Schema: OTel-compatible field names (trace_id, service.name)
  - Level: DEBUG (full payloads), INFO (state changes), WARNING (failures)

Usage:
    from infra.logging import CycleEventLogger, configure_logging

    configure_logging(level="INFO")
    events = CycleEventLogger(cycle_id="cycle-2026-02")
    events.on_step_completed("Validate", timestamp=...)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "esg_reporting"


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter (OTel-compatible)
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON lines.

    Structured fields attached via ``record.structured`` are merged into
    the top-level object.
    """

    def __init__(self, service_name: str = ROOT_LOGGER):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("ESG_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the esg_reporting logger with JSON output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        stream: Output stream (default: sys.stderr)
        service_name: Service name in log entries

    Returns:
        The configured root logger for esg_reporting
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on reconfigure
    logger.handlers.clear()
    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith(ROOT_LOGGER + "."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the esg_reporting namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


def generate_trace_id() -> str:
    """Generate an OTel-compatible trace ID (32 hex chars)."""
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════
# Cycle Event Logger
# ═══════════════════════════════════════════════════════════════════

class CycleEventLogger:
    """
    Structured logger bound to one reporting cycle run.

    A new trace_id is minted every time a cycle is started; verification
    and reprocessing events for the same cycle reuse it.
    """

    def __init__(self, cycle_id: str, trace_id: str | None = None):
        self.cycle_id = cycle_id
        self.trace_id = trace_id or generate_trace_id()
        self._logger = get_logger("events")

    def _emit(self, level: int, action: str, **fields):
        if not self._logger.isEnabledFor(level):
            return
        structured = {
            "trace_id": self.trace_id,
            "cycle_id": self.cycle_id,
            "action": action,
            **fields,
        }
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(), exc_info=None,
        )
        record.structured = structured
        self._logger.handle(record)

    def on_cycle_started(self, actor: str, steps: list[str]) -> None:
        self._emit(logging.INFO, "cycle_started", actor=actor, steps=steps)

    def on_step_completed(self, step: str, timestamp: float) -> None:
        self._emit(logging.INFO, "step_completed", step=step, timestamp=timestamp)

    def on_exceptions_generated(self, count: int, by_type: dict[str, int]) -> None:
        self._emit(logging.INFO, "exceptions_generated", count=count, by_type=by_type)

    def on_artifact_prepared(
        self,
        attempt_number: int,
        artifact_id: str,
        total_entries: int,
        failed_entries: int,
    ) -> None:
        self._emit(
            logging.INFO, "artifact_prepared",
            attempt_number=attempt_number,
            artifact_id=artifact_id,
            total_entries=total_entries,
            failed_entries=failed_entries,
        )

    def on_verification_attempt(
        self,
        attempt: int,
        actor: str,
        success: bool,
        outcome: str,
    ) -> None:
        self._emit(
            logging.INFO, "verification_attempt",
            attempt=attempt, actor=actor, success=success, outcome=outcome,
        )

    def on_reprocess_complete(self, attempt_number: int, failed_entries: int) -> None:
        self._emit(
            logging.INFO, "reprocess_complete",
            attempt_number=attempt_number, failed_entries=failed_entries,
        )

    def on_deferred_failure(self, label: str, attempt: int, error: str, final: bool) -> None:
        self._emit(
            logging.ERROR if final else logging.WARNING, "deferred_failure",
            label=label, attempt=attempt, error=error[:500], final=final,
        )

    def on_cycle_end(self, status: str, elapsed_s: float) -> None:
        self._emit(
            logging.INFO, "cycle_end",
            status=status, elapsed_s=round(elapsed_s, 2),
        )
