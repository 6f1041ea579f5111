"""
ESG Reporting — Error Hierarchy

Typed errors so callers can tell apart:
- Unknown ids            → surfaced directly, never retried
- Broken preconditions   → caller must act first (resolve exceptions,
                           wait for the cycle to reach the right state)
- Transient failures     → deferred work retries with backoff

Each error carries a severity, a retryable flag, and free-form detail.
"""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReportingError(Exception):
    """Base exception for all reporting engine errors."""
    severity: Severity = Severity.MEDIUM
    retryable: bool = False

    def __init__(self, message: str = "", **kwargs):
        self.detail = kwargs
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# Not Found
# ═══════════════════════════════════════════════════════════════

class NotFound(ReportingError):
    """A cycle or exception id is unknown."""
    severity = Severity.LOW


class CycleNotFound(NotFound):
    def __init__(self, cycle_id: str):
        super().__init__(f"Cycle not found: {cycle_id}", cycle_id=cycle_id)
        self.cycle_id = cycle_id


class ExceptionNotFound(NotFound):
    def __init__(self, exception_id: str):
        super().__init__(f"Exception not found: {exception_id}", exception_id=exception_id)
        self.exception_id = exception_id


# ═══════════════════════════════════════════════════════════════
# Preconditions
# ═══════════════════════════════════════════════════════════════

class PreconditionFailed(ReportingError):
    """The operation is not allowed in the current state."""


class ExceptionsOutstanding(PreconditionFailed):
    """Verification attempted while meter or data exceptions are still open."""

    def __init__(self, cycle_id: str, meter: int, data: int):
        super().__init__(
            f"Cycle {cycle_id} has {meter} open meter and {data} open data "
            f"exception(s); resolve them before verifying",
            cycle_id=cycle_id, meter=meter, data=data,
        )
        self.meter = meter
        self.data = data


class InvalidCycleState(PreconditionFailed):
    """The cycle is not in a state that permits the operation."""


class InvalidUpdate(PreconditionFailed):
    """An update or fix carried unknown or malformed fields."""


# ═══════════════════════════════════════════════════════════════
# Transient
# ═══════════════════════════════════════════════════════════════

class TransientSchedulingFailure(ReportingError):
    """A deferred continuation failed to complete; safe to retry."""
    severity = Severity.HIGH
    retryable = True
