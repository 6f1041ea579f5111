"""
ESG Reporting — Type Definitions

All data structures for reporting cycles, data-quality exceptions,
report summaries, upload artifacts and the activity ledger.
Timestamps are epoch seconds taken from the scheduler clock.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any

from cycles.errors import InvalidCycleState


# ─── Enumerations ───────────────────────────────────────────────────

class Market(str, enum.Enum):
    UK = "UK"
    CZ = "CZ"
    EU = "EU"


class UtilityType(str, enum.Enum):
    ELECTRICITY = "Electricity"
    GAS = "Gas"
    WATER = "Water"


class OrchestrationStep(str, enum.Enum):
    """Pipeline steps, in order."""
    INGEST = "Ingest"
    NORMALIZE = "Normalize"
    APPLY_RULES = "Apply Rules"
    VALIDATE = "Validate"
    PREPARE_UL360 = "Prepare UL 360"
    AWAIT_VERIFICATION = "Await Verification"
    ARCHIVE = "Archive"


# Steps the orchestrator iterates. The last two are terminal markers
# set by the verification coordinator.
STEP_SEQUENCE: tuple[OrchestrationStep, ...] = (
    OrchestrationStep.INGEST,
    OrchestrationStep.NORMALIZE,
    OrchestrationStep.APPLY_RULES,
    OrchestrationStep.VALIDATE,
    OrchestrationStep.PREPARE_UL360,
)
ALL_STEPS: tuple[OrchestrationStep, ...] = tuple(OrchestrationStep)


class CycleStatus(str, enum.Enum):
    """Lifecycle states for a reporting cycle."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    AWAITING_VERIFICATION = "awaiting_verification"
    COMPLETED = "completed"
    FAILED = "failed"


class UL360Status(str, enum.Enum):
    """Lifecycle of the registry upload artifact."""
    PENDING = "pending"
    PREPARED = "prepared"
    UPLOADED = "uploaded"
    VERIFIED = "verified"
    FAILED = "failed"


class ExceptionType(str, enum.Enum):
    REGISTRY = "Registry"
    READING = "Reading"
    UPLOAD_FAILURE = "UploadFailure"


class ExceptionStatus(str, enum.Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


OPEN_STATUSES = frozenset({ExceptionStatus.OPEN, ExceptionStatus.IN_REVIEW})


class ViolationType(str, enum.Enum):
    MISSING_FIELD = "missing_field"
    DATE_RANGE_INVALID = "date_range_invalid"
    NEGATIVE_VALUE = "negative_value"
    UNIT_MISMATCH = "unit_mismatch"
    MISSING_REGION_SID = "missing_region_sid"
    UNUSUAL_VALUE = "unusual_value"
    DUPLICATE_PERIOD = "duplicate_period"
    OVERLAPPING_PERIOD = "overlapping_period"


# A fix applied to an exception carrying any of these resolves it.
HARD_VIOLATIONS = frozenset({
    ViolationType.NEGATIVE_VALUE,
    ViolationType.DATE_RANGE_INVALID,
    ViolationType.UNIT_MISMATCH,
    ViolationType.MISSING_FIELD,
})


class FixKind(str, enum.Enum):
    VALUE = "value"
    UNITS = "units"
    VALUE_AND_UNITS = "valueAndUnits"
    DATES = "dates"
    REGION_SID = "regionSID"


class FreshnessStatus(str, enum.Enum):
    CURRENT = "current"
    STALE = "stale"
    OUTDATED = "outdated"


# ─── Lifecycle State Machine ────────────────────────────────────────

_CYCLE_TRANSITIONS: dict[CycleStatus, set[CycleStatus]] = {
    CycleStatus.SCHEDULED: {CycleStatus.IN_PROGRESS},
    CycleStatus.IN_PROGRESS: {CycleStatus.AWAITING_VERIFICATION},
    CycleStatus.AWAITING_VERIFICATION: {CycleStatus.COMPLETED, CycleStatus.FAILED},
}

TERMINAL_STATUSES = frozenset({CycleStatus.COMPLETED, CycleStatus.FAILED})


# ─── Exceptions ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class Violation:
    """A single diagnostic reason an exception exists. Never removed."""
    type: ViolationType
    message: str
    field: str | None = None
    expected_value: Any = None
    actual_value: Any = None


@dataclass(frozen=True)
class Suggestion:
    """A recommended remedial action."""
    action: str
    description: str
    auto_fix_available: bool = False


@dataclass
class MeterMetadata:
    name: str
    meter_id: str
    site: str
    market: Market
    utility_type: UtilityType
    region_sid: str | None = None


@dataclass
class ReadingPeriod:
    start_date: str
    end_date: str


@dataclass
class Comment:
    id: str
    author: str
    text: str
    timestamp: float


@dataclass
class ExceptionItem:
    """A data-quality or registry problem blocking upload verification."""
    id: str
    cycle_id: str
    type: ExceptionType
    meter: MeterMetadata
    violations: list[Violation] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    status: ExceptionStatus = ExceptionStatus.OPEN
    period: ReadingPeriod | None = None
    value: float | None = None
    units: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    comments: list[Comment] = field(default_factory=list)
    lineage_source: str = ""
    assigned_to: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_meter(self) -> bool:
        """Registry exceptions count as meter issues; everything else is data."""
        return self.type == ExceptionType.REGISTRY

    @property
    def has_hard_violation(self) -> bool:
        return any(v.type in HARD_VIOLATIONS for v in self.violations)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ─── Cycle Records ──────────────────────────────────────────────────

@dataclass
class ExceptionCounts:
    """Projection of the exception store for one cycle. Never hand-edited."""
    meter: int = 0
    data: int = 0
    meter_resolved: int = 0
    data_resolved: int = 0

    @property
    def open_total(self) -> int:
        return self.meter + self.data


@dataclass
class ReportSummary:
    """Outcome of one artifact-generation attempt."""
    attempt_number: int
    total_entries: int
    successful_entries: int
    failed_entries: int
    artifact_id: str
    timestamp: float

    @staticmethod
    def build(
        attempt_number: int,
        total_entries: int,
        failed_entries: int,
        artifact_id: str,
        timestamp: float,
    ) -> ReportSummary:
        if failed_entries > total_entries:
            raise ValueError(
                f"Summary attempt {attempt_number}: {failed_entries} failed "
                f"entries exceed {total_entries} total"
            )
        return ReportSummary(
            attempt_number=attempt_number,
            total_entries=total_entries,
            successful_entries=total_entries - failed_entries,
            failed_entries=failed_entries,
            artifact_id=artifact_id,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class ActivityLogEntry:
    """Append-only ledger record. Never edited or removed."""
    id: str
    timestamp: float
    actor: str
    action: str
    target: str
    details: str
    cycle_id: str | None = None
    exception_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ArtifactRef:
    """Opaque reference to a generated registry upload file."""
    id: str
    cycle_id: str
    filename: str
    market: Market
    generated_at: float
    record_count: int
    status: UL360Status = UL360Status.UPLOADED


@dataclass
class User:
    id: str
    name: str
    email: str
    role: str  # admin, analyst, reviewer


@dataclass
class DataFreshness:
    """How recent the ingested source data is for one market."""
    market: Market
    last_update_time: float
    record_count: int
    status: FreshnessStatus


@dataclass
class ReportingCycle:
    """
    One periodic run of the reporting pipeline.
    Mutated only by the orchestrator and verification coordinator.
    """
    id: str
    name: str
    markets: list[Market]
    status: CycleStatus = CycleStatus.SCHEDULED
    current_step: OrchestrationStep = OrchestrationStep.INGEST
    ul360_status: UL360Status = UL360Status.PENDING
    scheduled_start: float | None = None
    actual_start: float | None = None
    completed_date: float | None = None
    step_timestamps: dict[OrchestrationStep, float | None] = field(
        default_factory=lambda: {step: None for step in ALL_STEPS}
    )
    report_summaries: list[ReportSummary] = field(default_factory=list)
    verification_attempts: int = 0
    exception_counts: ExceptionCounts = field(default_factory=ExceptionCounts)
    # Newest first; mirrors ledger entries that reference this cycle
    activity_log: list[ActivityLogEntry] = field(default_factory=list)
    # Set when deferred work gives up; cleared when it next succeeds
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def reporting_period(self) -> str:
        return self.name.replace(" Reporting", "")

    def transition(self, to: CycleStatus) -> None:
        """
        Enforce the cycle lifecycle.
        Raises InvalidCycleState if the transition is not allowed.
        """
        allowed = _CYCLE_TRANSITIONS.get(self.status, set())
        if to not in allowed:
            raise InvalidCycleState(
                f"Cycle {self.id}: {self.status.value} → {to.value} is not allowed. "
                f"Valid transitions: {sorted(s.value for s in allowed)}",
                cycle_id=self.id, status=self.status.value, requested=to.value,
            )
        self.status = to

    def stamp_step(self, step: OrchestrationStep, at: float) -> None:
        self.current_step = step
        self.step_timestamps[step] = at

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["step_timestamps"] = {
            step.value: ts for step, ts in self.step_timestamps.items()
        }
        return d
