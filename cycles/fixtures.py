"""
ESG Reporting — Baseline Fixture

The fixed state resetAll() restores: three cycles at different points
in their lifecycle, the exceptions of the cycle awaiting verification,
a curated exception set for the scheduled cycle, upload artifacts and
users. build_baseline() returns fresh objects on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from cycles.exception_engine import build_exceptions, suggestions_for
from cycles.types import (
    ALL_STEPS,
    ArtifactRef,
    CycleStatus,
    DataFreshness,
    ExceptionItem,
    ExceptionType,
    Market,
    FreshnessStatus,
    MeterMetadata,
    OrchestrationStep,
    ReadingPeriod,
    ReportSummary,
    ReportingCycle,
    UL360Status,
    User,
    UtilityType,
    Violation,
    ViolationType,
)

BASELINE_SEED = 42


@dataclass
class Fixture:
    cycles: list[ReportingCycle] = field(default_factory=list)
    exceptions: dict[str, list[ExceptionItem]] = field(default_factory=dict)
    artifacts: list[ArtifactRef] = field(default_factory=list)
    users: list[User] = field(default_factory=list)
    scenarios: dict[str, list[ExceptionItem]] = field(default_factory=dict)


def ts(iso: str) -> float:
    """UTC ISO-8601 string → epoch seconds."""
    return datetime.fromisoformat(iso).replace(tzinfo=timezone.utc).timestamp()


def _stamps(*pairs: tuple[OrchestrationStep, str]) -> dict[OrchestrationStep, float | None]:
    stamps: dict[OrchestrationStep, float | None] = {step: None for step in ALL_STEPS}
    for step, iso in pairs:
        stamps[step] = ts(iso)
    return stamps


def _item(
    exc_id: str,
    cycle_id: str,
    exc_type: ExceptionType,
    meter: MeterMetadata,
    violation: Violation,
    created: str,
    lineage: str,
    period: ReadingPeriod | None = None,
    value: float | None = None,
    units: str | None = None,
) -> ExceptionItem:
    return ExceptionItem(
        id=exc_id,
        cycle_id=cycle_id,
        type=exc_type,
        meter=meter,
        violations=[violation],
        suggestions=suggestions_for(exc_type, [violation]),
        period=period,
        value=value,
        units=units,
        created_at=ts(created),
        updated_at=ts(created),
        lineage_source=lineage,
    )


# ─── Users ───────────────────────────────────────────────────────────

def baseline_users() -> list[User]:
    return [
        User("u1", "Sarah Mitchell", "sarah.mitchell@company.com", "admin"),
        User("u2", "James Chen", "james.chen@company.com", "analyst"),
        User("u3", "Emma Rodriguez", "emma.rodriguez@company.com", "reviewer"),
        User("u4", "Thomas Weber", "thomas.weber@company.com", "analyst"),
    ]


# ─── Data Freshness ──────────────────────────────────────────────────

FRESHNESS_STEP_SECONDS = 2 * 3600
FRESHNESS_BASE_RECORDS = 1000
FRESHNESS_RECORDS_STEP = 200
CURRENT_MARKETS = 2


def data_freshness(now: float) -> list[DataFreshness]:
    """
    Per-market source freshness relative to ``now``.

    Each market in declaration order is two hours older and 200 records
    larger than the one before; only the first two count as current.
    """
    return [
        DataFreshness(
            market=market,
            last_update_time=now - idx * FRESHNESS_STEP_SECONDS,
            record_count=FRESHNESS_BASE_RECORDS + idx * FRESHNESS_RECORDS_STEP,
            status=FreshnessStatus.CURRENT if idx < CURRENT_MARKETS else FreshnessStatus.STALE,
        )
        for idx, market in enumerate(Market)
    ]


# ─── Exceptions ──────────────────────────────────────────────────────

def january_curated() -> list[ExceptionItem]:
    """Hand-written exceptions layered on top of the seeded January set."""
    cycle_id = "cycle-2026-01"
    january = ReadingPeriod("2026-01-01", "2026-01-31")
    return [
        _item(
            "exc-registry-demo", cycle_id, ExceptionType.REGISTRY,
            MeterMetadata("Berlin West - Electricity Meter 7", "MEU9234", "Berlin West",
                          Market.EU, UtilityType.ELECTRICITY, "REU221"),
            Violation(ViolationType.MISSING_FIELD, "Meter ID not found in registry",
                      field="meterId", actual_value="MEU9234"),
            "2026-02-03T10:20:00", "SFTP Upload",
        ),
        _item(
            "exc-unit-mismatch", cycle_id, ExceptionType.READING,
            MeterMetadata("Prague Central - Gas Meter 3", "MCZ2678", "Prague Central",
                          Market.CZ, UtilityType.GAS, "RCZ118"),
            Violation(ViolationType.UNIT_MISMATCH, "CZ market requires kWh for gas",
                      field="units", expected_value="kWh", actual_value="m³"),
            "2026-02-03T10:21:00", "Email Ingestion",
            period=january, value=1250, units="m³",
        ),
        _item(
            "exc-missing-enddate", cycle_id, ExceptionType.READING,
            MeterMetadata("Amsterdam South - Water Meter 2", "MEU3812", "Amsterdam South",
                          Market.EU, UtilityType.WATER, "REU305"),
            Violation(ViolationType.MISSING_FIELD, "Required field is missing: endDate",
                      field="endDate"),
            "2026-02-03T10:22:00", "API Import",
            period=ReadingPeriod("2026-01-01", ""), value=18420, units="kWh",
        ),
        _item(
            "exc-date-error", cycle_id, ExceptionType.READING,
            MeterMetadata("Berlin West - Gas Meter 5", "MEU5678", "Berlin West",
                          Market.EU, UtilityType.GAS, "REU221"),
            Violation(ViolationType.DATE_RANGE_INVALID, "Start date must be before end date",
                      field="period", expected_value="2026-01-01 < 2026-01-31",
                      actual_value="2026-01-31 >= 2026-01-01"),
            "2026-02-03T10:23:00", "SFTP Upload",
            period=ReadingPeriod("2026-01-31", "2026-01-01"), value=22150, units="kWh",
        ),
    ]


def february_scenario() -> list[ExceptionItem]:
    """Curated set the February cycle discovers at Validate instead of a seeded one."""
    cycle_id = "cycle-2026-02"
    february = ReadingPeriod("2026-02-01", "2026-02-28")
    return [
        _item(
            f"exc-{cycle_id}-registry-1", cycle_id, ExceptionType.REGISTRY,
            MeterMetadata("Manchester East - Electricity Meter 4", "MUK8765", "Manchester East",
                          Market.UK, UtilityType.ELECTRICITY, "RUK142"),
            Violation(ViolationType.MISSING_FIELD, "Meter ID not found in registry",
                      field="meterId", actual_value="MUK8765"),
            "2026-03-01T00:00:00", "SFTP Upload",
        ),
        _item(
            f"exc-{cycle_id}-dates-1", cycle_id, ExceptionType.READING,
            MeterMetadata("Tilbury - Electricity Meter 9", "MUK4410", "Tilbury",
                          Market.UK, UtilityType.ELECTRICITY, "RUK151"),
            Violation(ViolationType.DATE_RANGE_INVALID, "Start date must be before end date",
                      field="period", expected_value="2026-02-01 < 2026-02-28",
                      actual_value="2026-02-28 >= 2026-02-01"),
            "2026-03-01T00:00:00", "Email Ingestion",
            period=ReadingPeriod("2026-02-28", "2026-02-01"), value=16780, units="kWh",
        ),
        _item(
            f"exc-{cycle_id}-units-1", cycle_id, ExceptionType.READING,
            MeterMetadata("Heathrow - Gas Meter 2", "MUK3321", "Heathrow",
                          Market.UK, UtilityType.GAS, "RUK139"),
            Violation(ViolationType.UNIT_MISMATCH, "Unit mismatch for utility type",
                      field="units", expected_value="kWh", actual_value="m³"),
            "2026-03-01T00:00:00", "API Import",
            period=february, value=8950, units="m³",
        ),
        _item(
            f"exc-{cycle_id}-negative-1", cycle_id, ExceptionType.READING,
            MeterMetadata("Park Royal - Electricity Meter 1", "MUK1187", "Park Royal",
                          Market.UK, UtilityType.ELECTRICITY, "RUK140"),
            Violation(ViolationType.NEGATIVE_VALUE, "Reading value cannot be negative",
                      field="value", expected_value=">= 0", actual_value=-450),
            "2026-03-01T00:00:00", "SFTP Upload",
            period=february, value=-450, units="kWh",
        ),
    ]


# ─── Cycles ──────────────────────────────────────────────────────────

def build_baseline() -> Fixture:
    december = ReportingCycle(
        id="cycle-2025-12",
        name="December 2025 Reporting",
        markets=[Market.UK, Market.CZ, Market.EU],
        status=CycleStatus.COMPLETED,
        current_step=OrchestrationStep.ARCHIVE,
        ul360_status=UL360Status.VERIFIED,
        scheduled_start=ts("2026-01-05T06:00:00"),
        actual_start=ts("2026-01-05T06:00:12"),
        completed_date=ts("2026-01-08T15:42:00"),
        step_timestamps=_stamps(
            (OrchestrationStep.INGEST, "2026-01-05T06:02:00"),
            (OrchestrationStep.NORMALIZE, "2026-01-05T06:15:00"),
            (OrchestrationStep.APPLY_RULES, "2026-01-05T06:31:00"),
            (OrchestrationStep.VALIDATE, "2026-01-05T06:48:00"),
            (OrchestrationStep.PREPARE_UL360, "2026-01-05T07:05:00"),
            (OrchestrationStep.AWAIT_VERIFICATION, "2026-01-05T07:06:00"),
            (OrchestrationStep.ARCHIVE, "2026-01-08T15:42:00"),
        ),
        report_summaries=[
            ReportSummary.build(1, 1247, 3, "art-2025-12-1", ts("2026-01-05T07:05:00")),
            ReportSummary.build(2, 3, 0, "art-2025-12-2", ts("2026-01-07T11:30:00")),
        ],
        verification_attempts=2,
    )

    january_open = build_exceptions(
        "cycle-2026-01", BASELINE_SEED, ts("2026-02-03T10:15:00"),
    ) + january_curated()
    january = ReportingCycle(
        id="cycle-2026-01",
        name="January 2026 Reporting",
        markets=[Market.UK, Market.CZ, Market.EU],
        status=CycleStatus.AWAITING_VERIFICATION,
        current_step=OrchestrationStep.AWAIT_VERIFICATION,
        ul360_status=UL360Status.UPLOADED,
        scheduled_start=ts("2026-02-03T06:00:00"),
        actual_start=ts("2026-02-03T06:00:09"),
        step_timestamps=_stamps(
            (OrchestrationStep.INGEST, "2026-02-03T06:02:00"),
            (OrchestrationStep.NORMALIZE, "2026-02-03T06:14:00"),
            (OrchestrationStep.APPLY_RULES, "2026-02-03T06:29:00"),
            (OrchestrationStep.VALIDATE, "2026-02-03T10:15:00"),
            (OrchestrationStep.PREPARE_UL360, "2026-02-03T10:40:00"),
            (OrchestrationStep.AWAIT_VERIFICATION, "2026-02-03T10:41:00"),
        ),
        report_summaries=[
            ReportSummary.build(1, 1189, len(january_open), "art-2026-01-1",
                                ts("2026-02-03T10:40:00")),
        ],
    )

    february = ReportingCycle(
        id="cycle-2026-02",
        name="February 2026 Reporting",
        markets=[Market.UK, Market.CZ, Market.EU],
        scheduled_start=ts("2026-03-01T00:00:00"),
    )

    artifacts = [
        ArtifactRef("art-2025-12-1", "cycle-2025-12", "UK Upload File - December 2025.xlsx",
                    Market.UK, ts("2026-01-05T07:05:00"), 1247),
        ArtifactRef("art-2025-12-2", "cycle-2025-12",
                    "UK Upload File - December 2025 (Attempt 2).xlsx",
                    Market.UK, ts("2026-01-07T11:30:00"), 3, UL360Status.VERIFIED),
        ArtifactRef("art-2026-01-1", "cycle-2026-01", "UK Upload File - January 2026.xlsx",
                    Market.UK, ts("2026-02-03T10:40:00"), 1189),
    ]

    return Fixture(
        cycles=[december, january, february],
        exceptions={"cycle-2026-01": january_open},
        artifacts=artifacts,
        users=baseline_users(),
        scenarios={"cycle-2026-02": february_scenario()},
    )
