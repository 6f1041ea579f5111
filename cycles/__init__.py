"""
ESG Reporting — Reporting-Cycle Orchestration & Exception Resolution

Drives periodic utility-meter reporting cycles through ingest,
validation and registry upload, tracks the data-quality exceptions
validation discovers, and gates archiving on human verification.

Phase 1: In-process implementation. State lives in one repository
object for the process lifetime; deferred work runs on an injectable
scheduler (virtual clock for tests and demos, timer threads otherwise).

Usage:
    from cycles import ReportingService, VirtualScheduler

    scheduler = VirtualScheduler()
    service = ReportingService(scheduler=scheduler)
    service.run_cycle("cycle-2026-02")
    scheduler.run_until_idle()
"""

from cycles.types import (
    ActivityLogEntry,
    ArtifactRef,
    CycleStatus,
    DataFreshness,
    ExceptionCounts,
    ExceptionItem,
    ExceptionStatus,
    ExceptionType,
    FixKind,
    FreshnessStatus,
    OrchestrationStep,
    ReportSummary,
    ReportingCycle,
    UL360Status,
    ViolationType,
)
from cycles.errors import (
    CycleNotFound,
    ExceptionNotFound,
    ExceptionsOutstanding,
    InvalidCycleState,
    InvalidUpdate,
    NotFound,
    PreconditionFailed,
    ReportingError,
    TransientSchedulingFailure,
)
from cycles.scheduler import Scheduler, ThreadingScheduler, VirtualScheduler
from cycles.exception_engine import BulkResolveResult
from cycles.verification import VerificationResult
from cycles.service import ReportingService

__all__ = [
    "ReportingService",
    "Scheduler",
    "VirtualScheduler",
    "ThreadingScheduler",
    "ActivityLogEntry",
    "ArtifactRef",
    "BulkResolveResult",
    "CycleStatus",
    "DataFreshness",
    "ExceptionCounts",
    "ExceptionItem",
    "ExceptionStatus",
    "ExceptionType",
    "FixKind",
    "FreshnessStatus",
    "OrchestrationStep",
    "ReportSummary",
    "ReportingCycle",
    "UL360Status",
    "VerificationResult",
    "ViolationType",
    "ReportingError",
    "NotFound",
    "CycleNotFound",
    "ExceptionNotFound",
    "PreconditionFailed",
    "ExceptionsOutstanding",
    "InvalidCycleState",
    "InvalidUpdate",
    "TransientSchedulingFailure",
]
