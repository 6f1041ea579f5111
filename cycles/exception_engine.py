"""
ESG Reporting — Exception Engine

Discovers, classifies and remediates data-quality exceptions.

  generate_exceptions   seeded, reproducible discovery at the Validate step
  inject_late_defects   the two defects surfaced by a failed verification
  apply_fix             field correction; auto-resolves hard violations
  resolve_exception     explicit resolution with a note
  bulk_resolve          resolve every open meter exception in one call
  add_comment           discussion thread, status untouched
  update_exception      generic partial update

Violations are never removed when a fix is applied; resolution is
signalled by the exception's status so the diagnostic history survives.
Every mutation recomputes the cycle's counts before returning.
"""

from __future__ import annotations

import calendar
import copy
import logging
import random
import re
import uuid
import zlib
from dataclasses import dataclass, field, fields as dc_fields
from typing import Any, Iterable, Mapping

from cycles.counts import CountsProjector
from cycles.errors import InvalidUpdate
from cycles.types import (
    Comment,
    ExceptionItem,
    ExceptionStatus,
    ExceptionType,
    FixKind,
    Market,
    MeterMetadata,
    ReadingPeriod,
    Suggestion,
    UtilityType,
    Violation,
    ViolationType,
)

logger = logging.getLogger("esg_reporting.exceptions")

GAS_CONVERSION_FACTOR = 10.55  # kWh per m³
REPORTING_UNIT = "kWh"
BULK_RESOLVE_NOTE = "Bulk resolved - All meter exceptions manually verified and corrected"

SITES_BY_MARKET: dict[Market, list[str]] = {
    Market.UK: ["Park Royal", "Heathrow"],
    Market.CZ: ["Prague Central"],
    Market.EU: ["Berlin West", "Amsterdam South"],
}
LINEAGE_SOURCES = ["SFTP Upload", "Email Ingestion", "API Import", "Manual Entry"]

# Share of generated exceptions per type: first bucket whose bound exceeds the roll
_TYPE_SPLIT: tuple[tuple[float, ExceptionType], ...] = (
    (0.30, ExceptionType.REGISTRY),
    (0.40, ExceptionType.UPLOAD_FAILURE),
    (1.00, ExceptionType.READING),
)


# ─── Suggestion Catalogue ────────────────────────────────────────────

REGISTRY_SUGGESTION = Suggestion(
    action="Update Meter Registry",
    description="Add this meter to the central registry",
    auto_fix_available=False,
)

SUGGESTIONS: dict[ViolationType, Suggestion] = {
    ViolationType.MISSING_FIELD: Suggestion(
        "Fill Missing Field", "Enter the missing value", False),
    ViolationType.DATE_RANGE_INVALID: Suggestion(
        "Correct Date Range", "Swap start and end dates", True),
    ViolationType.NEGATIVE_VALUE: Suggestion(
        "Use Absolute Value", "Convert to positive value", True),
    ViolationType.UNIT_MISMATCH: Suggestion(
        "Convert Units",
        f"Convert from m³ to kWh (1 m³ = {GAS_CONVERSION_FACTOR} kWh)", True),
    ViolationType.MISSING_REGION_SID: Suggestion(
        "Infer Region SID", "Auto-populate from the meter's market", True),
    ViolationType.UNUSUAL_VALUE: Suggestion(
        "Review with Site Manager", "Confirm reading is accurate", False),
    ViolationType.DUPLICATE_PERIOD: Suggestion(
        "Keep Latest Reading", "Discard older duplicate", False),
    ViolationType.OVERLAPPING_PERIOD: Suggestion(
        "Adjust Period Boundaries", "Align the period with the previous reading", False),
}


# Fix kind that carries out each auto-fix suggestion
AUTO_FIXES: dict[ViolationType, FixKind] = {
    ViolationType.NEGATIVE_VALUE: FixKind.VALUE,
    ViolationType.DATE_RANGE_INVALID: FixKind.DATES,
    ViolationType.UNIT_MISMATCH: FixKind.VALUE_AND_UNITS,
    ViolationType.MISSING_REGION_SID: FixKind.REGION_SID,
}


def suggestions_for(
    exception_type: ExceptionType,
    violations: Iterable[Violation],
) -> list[Suggestion]:
    """Deterministic mapping from violations to remedial suggestions."""
    suggestions = []
    if exception_type == ExceptionType.REGISTRY:
        suggestions.append(REGISTRY_SUGGESTION)
    for violation in violations:
        suggestion = SUGGESTIONS[violation.type]
        if violation.type == ViolationType.MISSING_FIELD and violation.field:
            suggestion = Suggestion(
                suggestion.action, f"Enter value for {violation.field}",
                suggestion.auto_fix_available,
            )
        suggestions.append(suggestion)
    return suggestions


def infer_region_sid(market: Market | str, meter_id: str) -> str:
    """Synthesize a region identifier from the market code, stable per meter."""
    market_code = market.value if isinstance(market, Market) else str(market)
    return f"R{market_code}{zlib.crc32(meter_id.encode('utf-8')) % 900 + 100}"


def reading_period_for(cycle_id: str) -> ReadingPeriod:
    """Calendar month encoded in ids like cycle-2026-02; January 2026 otherwise."""
    match = re.search(r"(\d{4})-(\d{2})$", cycle_id)
    year, month = (int(match.group(1)), int(match.group(2))) if match else (2026, 1)
    if not 1 <= month <= 12:
        year, month = 2026, 1
    last_day = calendar.monthrange(year, month)[1]
    return ReadingPeriod(f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{last_day:02d}")


@dataclass
class BulkResolveResult:
    """Outcome of bulk_resolve: what was resolved and what was refused, with reasons."""
    cycle_id: str
    resolved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# camelCase aliases accepted from external callers
_UPDATE_ALIASES = {
    "meterMetadata": "meter",
    "assignedTo": "assigned_to",
    "lineageSource": "lineage_source",
}
_UPDATABLE = {"status", "value", "units", "period", "meter", "assigned_to", "lineage_source"}
_METER_ALIASES = {"meterId": "meter_id", "regionSID": "region_sid", "utilityType": "utility_type"}
_PERIOD_ALIASES = {"startDate": "start_date", "endDate": "end_date"}


# ─── Generation ──────────────────────────────────────────────────────

def build_exceptions(
    cycle_id: str,
    seed: int,
    at: float,
    start_index: int = 1,
    min_count: int = 3,
    max_count: int = 8,
) -> list[ExceptionItem]:
    """
    Seeded exception set for a cycle. Pure: nothing is stored.

    The same (cycle_id, seed) always yields the same items.
    """
    rng = random.Random(seed)
    count = rng.randint(min_count, max_count)
    base_period = reading_period_for(cycle_id)
    items = []
    for offset in range(count):
        index = start_index + offset
        market = rng.choice(list(Market))
        site = rng.choice(SITES_BY_MARKET[market])
        utility = rng.choice(list(UtilityType))
        meter_id = f"M{market.value}{rng.randint(1000, 9999)}"
        meter = MeterMetadata(
            name=f"{site} - {utility.value} Meter {index}",
            meter_id=meter_id,
            site=site,
            market=market,
            utility_type=utility,
            region_sid=f"R{market.value}{rng.randint(100, 999)}",
        )
        roll = rng.random()
        exc_type = next(t for bound, t in _TYPE_SPLIT if roll < bound)

        period: ReadingPeriod | None = None
        value: float | None = None
        units: str | None = None
        if exc_type == ExceptionType.REGISTRY:
            violation = Violation(
                ViolationType.MISSING_FIELD, "Meter ID not found in registry",
                field="meterId", actual_value=meter_id,
            )
        elif exc_type == ExceptionType.UPLOAD_FAILURE:
            value, units = rng.randint(1000, 9000), "m³"
            violation = Violation(
                ViolationType.UNIT_MISMATCH,
                "UL 360 upload rejected due to unit mismatch",
                field="units", expected_value=REPORTING_UNIT, actual_value=units,
            )
        else:
            period = copy.copy(base_period)
            value, units = rng.randint(10000, 30000), REPORTING_UNIT
            violation, period, value, units = _reading_violation(
                rng.choice(list(ViolationType)), rng, meter, period, value, units,
            )

        violations = [violation]
        items.append(ExceptionItem(
            id=f"exc-{cycle_id}-{index}",
            cycle_id=cycle_id,
            type=exc_type,
            meter=meter,
            violations=violations,
            suggestions=suggestions_for(exc_type, violations),
            period=period,
            value=value,
            units=units,
            created_at=at,
            updated_at=at,
            lineage_source=rng.choice(LINEAGE_SOURCES),
        ))
    return items


def _reading_violation(vtype, rng, meter, period, value, units):
    """Build one violation and make the reading's fields actually exhibit it."""
    if vtype == ViolationType.MISSING_FIELD:
        missing = rng.choice(["startDate", "endDate", "value"])
        if missing == "value":
            value = None
        elif missing == "startDate":
            period.start_date = ""
        else:
            period.end_date = ""
        violation = Violation(vtype, f"Required field is missing: {missing}", field=missing)
    elif vtype == ViolationType.DATE_RANGE_INVALID:
        period = ReadingPeriod(period.end_date, period.start_date)
        violation = Violation(
            vtype, "Start date must be before end date", field="period",
            expected_value=f"{period.end_date} < {period.start_date}",
            actual_value=f"{period.start_date} >= {period.end_date}",
        )
    elif vtype == ViolationType.NEGATIVE_VALUE:
        value = -rng.randint(100, 5000)
        violation = Violation(
            vtype, "Reading value cannot be negative", field="value",
            expected_value=">= 0", actual_value=value,
        )
    elif vtype == ViolationType.UNIT_MISMATCH:
        units = "m³"
        message = ("CZ market requires kWh for gas" if meter.market == Market.CZ
                   else "Unit mismatch for utility type")
        violation = Violation(vtype, message, field="units",
                              expected_value=REPORTING_UNIT, actual_value=units)
    elif vtype == ViolationType.MISSING_REGION_SID:
        meter.region_sid = None
        violation = Violation(vtype, "Region SID is missing but can be inferred",
                              field="regionSID")
    elif vtype == ViolationType.UNUSUAL_VALUE:
        value = rng.randint(25000, 45000)
        violation = Violation(
            vtype, "Value deviates significantly from historical average",
            field="value", expected_value="15000 ± 2000", actual_value=value,
        )
    elif vtype == ViolationType.DUPLICATE_PERIOD:
        violation = Violation(vtype, "Duplicate reading for this period", field="period")
    else:
        start = period.start_date[:8] + "15"
        violation = Violation(
            ViolationType.OVERLAPPING_PERIOD,
            "Reading period overlaps the previous reading", field="period",
            actual_value=f"{start} → {period.end_date}",
        )
        period = ReadingPeriod(start, period.end_date)
    return violation, period, value, units


class ExceptionEngine:
    """
    Owns every mutation of exception records.

    Args:
        repo:         ReportingRepository
        projector:    CountsProjector bound to the same repository
        clock:        Zero-arg callable returning epoch seconds
        config:       Loaded config dict (``exceptions`` and ``resolution`` sections)
    """

    def __init__(self, repo, projector: CountsProjector, clock, config: dict[str, Any] | None = None):
        self.repo = repo
        self.projector = projector
        self.clock = clock
        config = config or {}
        exc_cfg = config.get("exceptions") or {}
        self.min_count = int(exc_cfg.get("min_count", 3))
        self.max_count = int(exc_cfg.get("max_count", 8))
        self.default_seed = exc_cfg.get("seed")
        self.conversion_factor = float(exc_cfg.get("gas_conversion_factor", GAS_CONVERSION_FACTOR))
        res_cfg = config.get("resolution") or {}
        self.log_repeat_resolutions = bool(res_cfg.get("log_repeat_resolutions", True))

    # ─── Discovery ───────────────────────────────────────────────────

    def generate_exceptions(self, cycle_id: str, seed: int | None = None) -> list[ExceptionItem]:
        """
        Discover exceptions for a cycle and add them to the store.

        A curated scenario registered for the cycle wins over generation.
        Otherwise the seed is, in order: the argument, ``exceptions.seed``
        from config, or a stable hash of the cycle id.
        """
        self.repo.require_cycle(cycle_id)
        now = self.clock()
        existing = len(self.repo.exceptions.for_cycle(cycle_id))

        scenario = self.repo.scenarios.get(cycle_id)
        if scenario is not None:
            items = copy.deepcopy(scenario)
            for item in items:
                item.created_at = item.updated_at = now
        else:
            if seed is None:
                seed = self.default_seed
            if seed is None:
                seed = zlib.crc32(cycle_id.encode("utf-8"))
            items = build_exceptions(
                cycle_id, int(seed), now, start_index=existing + 1,
                min_count=self.min_count, max_count=self.max_count,
            )

        self.repo.exceptions.add(cycle_id, items)
        self.projector.recompute(cycle_id)
        logger.info("Generated %d exception(s) for %s", len(items), cycle_id)
        return items

    def inject_late_defects(self, cycle_id: str, attempt: int) -> list[ExceptionItem]:
        """The two defects a failed verification surfaces: one meter, one data."""
        self.repo.require_cycle(cycle_id)
        now = self.clock()
        period = reading_period_for(cycle_id)
        meter_violation = Violation(
            ViolationType.MISSING_REGION_SID, "Region SID missing in upload file",
            field="regionSID",
        )
        data_violation = Violation(
            ViolationType.UNUSUAL_VALUE,
            "Reading value significantly higher than historical average",
            field="value", expected_value="< 30000", actual_value=45000,
        )
        items = [
            ExceptionItem(
                id=f"exc-{cycle_id}-verification-meter-{attempt}",
                cycle_id=cycle_id,
                type=ExceptionType.REGISTRY,
                meter=MeterMetadata(
                    name="Manchester West - Gas Meter 12", meter_id="MUK9871",
                    site="Manchester West", market=Market.UK,
                    utility_type=UtilityType.GAS,
                ),
                violations=[meter_violation],
                suggestions=suggestions_for(ExceptionType.REGISTRY, [meter_violation]),
                created_at=now, updated_at=now,
                lineage_source="UL 360 Verification",
            ),
            ExceptionItem(
                id=f"exc-{cycle_id}-verification-data-{attempt}",
                cycle_id=cycle_id,
                type=ExceptionType.READING,
                meter=MeterMetadata(
                    name="Leeds North - Electricity Meter 8", meter_id="MUK6543",
                    site="Leeds North", market=Market.UK,
                    utility_type=UtilityType.ELECTRICITY, region_sid="RUK145",
                ),
                period=period,
                value=45000,
                units=REPORTING_UNIT,
                violations=[data_violation],
                suggestions=suggestions_for(ExceptionType.READING, [data_violation]),
                created_at=now, updated_at=now,
                lineage_source="UL 360 Verification",
            ),
        ]
        self.repo.exceptions.add(cycle_id, items)
        self.projector.recompute(cycle_id)
        return items

    # ─── Remediation ─────────────────────────────────────────────────

    def apply_fix(
        self,
        exception_id: str,
        fix_kind: FixKind | str,
        value: Any = None,
        actor: str = "",
    ) -> ExceptionItem:
        """
        Apply a field correction.

        If the exception carries a hard violation (negative value, bad
        date range, unit mismatch, missing field) the fix resolves it.
        Soft violations stay open until resolve_exception is called.
        """
        item = self.repo.exceptions.require(exception_id)
        try:
            kind = FixKind(fix_kind)
        except ValueError:
            raise InvalidUpdate(
                f"Unknown fix kind: {fix_kind!r}",
                valid=[k.value for k in FixKind],
            ) from None

        # Compute everything first; nothing is written if validation fails
        changes, message = self._plan_fix(item, kind, value)

        for attr, new_value in changes.items():
            if attr == "region_sid":
                item.meter.region_sid = new_value
            else:
                setattr(item, attr, new_value)
        now = self.clock()
        item.updated_at = now

        auto_resolve = item.has_hard_violation and item.is_open
        if auto_resolve:
            item.status = ExceptionStatus.RESOLVED
        self.repo.ledger.record(
            actor=actor,
            action="Resolved Exception" if auto_resolve else "Applied Fix",
            target=f"Exception: {item.id}",
            details=message,
            at=now,
            cycle_id=item.cycle_id,
            exception_id=item.id,
        )
        self.projector.recompute(item.cycle_id)
        logger.info("Fix %s applied to %s (auto_resolved=%s)", kind.value, item.id, auto_resolve)
        return item

    def _plan_fix(self, item: ExceptionItem, kind: FixKind, value: Any) -> tuple[dict[str, Any], str]:
        if kind == FixKind.VALUE:
            raw = item.value if value is None else value
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise InvalidUpdate(f"Value fix needs a number, got {raw!r}")
            fixed = abs(raw)
            return {"value": fixed}, f"Negative value corrected to positive: {fixed}"

        if kind == FixKind.UNITS:
            units = value or REPORTING_UNIT
            if not isinstance(units, str):
                raise InvalidUpdate(f"Units fix needs a unit label, got {units!r}")
            return {"units": units}, f"Units converted to {units}"

        if kind == FixKind.VALUE_AND_UNITS:
            given = value or {}
            if not isinstance(given, Mapping):
                raise InvalidUpdate("valueAndUnits fix needs a mapping with value/units")
            new_value = given.get("value")
            if new_value is None:
                if item.value is None:
                    raise InvalidUpdate(f"Exception {item.id} has no value to convert")
                new_value = round(item.value * self.conversion_factor, 2)
            if isinstance(new_value, bool) or not isinstance(new_value, (int, float)):
                raise InvalidUpdate(f"Converted value must be a number, got {new_value!r}")
            units = given.get("units") or REPORTING_UNIT
            return (
                {"value": new_value, "units": units},
                f"Value converted from {item.units} to {units}: {new_value:.2f} {units}",
            )

        if kind == FixKind.DATES:
            if value is None:
                if item.period is None:
                    raise InvalidUpdate(f"Exception {item.id} has no period to correct")
                if not (item.period.start_date and item.period.end_date):
                    raise InvalidUpdate("dates fix needs explicit start/end when a date is missing")
                start, end = item.period.end_date, item.period.start_date
            else:
                if not isinstance(value, Mapping):
                    raise InvalidUpdate("dates fix needs a mapping with start/end dates")
                given = {_PERIOD_ALIASES.get(k, k): v for k, v in value.items()}
                current = item.period or ReadingPeriod("", "")
                start = given.get("start_date") or current.start_date
                end = given.get("end_date") or current.end_date
            if start and end and start > end:
                raise InvalidUpdate(f"Start date {start} is after end date {end}")
            period = ReadingPeriod(start, end)
            return {"period": period}, f"Date range corrected: {start} to {end}"

        region_sid = value or infer_region_sid(item.meter.market, item.meter.meter_id)
        if not isinstance(region_sid, str):
            raise InvalidUpdate(f"Region SID must be a string, got {region_sid!r}")
        return {"region_sid": region_sid}, f"Region SID populated: {region_sid}"

    def resolve_exception(self, exception_id: str, actor: str, note: str = "") -> ExceptionItem:
        """
        Mark an exception resolved. Resolving twice leaves the same state;
        whether the repeat is logged follows ``resolution.log_repeat_resolutions``.
        """
        item = self.repo.exceptions.require(exception_id)
        already = item.status == ExceptionStatus.RESOLVED
        if already and not self.log_repeat_resolutions:
            return item

        now = self.clock()
        item.status = ExceptionStatus.RESOLVED
        item.updated_at = now
        self.repo.ledger.record(
            actor=actor,
            action="Resolved Exception",
            target=f"Exception: {item.id}",
            details=note or "Resolved",
            at=now,
            cycle_id=item.cycle_id,
            exception_id=item.id,
        )
        self.projector.recompute(item.cycle_id)
        return item

    def bulk_resolve(
        self,
        cycle_id: str,
        actor: str,
        note: str = BULK_RESOLVE_NOTE,
        exception_ids: Iterable[str] | None = None,
    ) -> BulkResolveResult:
        """
        Resolve every open or in-review Registry exception in the cycle.

        ``exception_ids`` narrows the call to the caller's filtered view;
        requested ids that are unknown, belong elsewhere, or are not open
        meter exceptions are reported in ``failed``. Counts are recomputed
        once, after every item is written.
        """
        self.repo.require_cycle(cycle_id)
        result = BulkResolveResult(cycle_id=cycle_id)

        with self.repo.transaction():
            candidates = [
                e for e in self.repo.exceptions.for_cycle(cycle_id)
                if e.is_meter and e.is_open
            ]
            if exception_ids is not None:
                wanted = list(dict.fromkeys(exception_ids))
                eligible = {e.id: e for e in candidates}
                candidates = []
                for exc_id in wanted:
                    if exc_id in eligible:
                        candidates.append(eligible[exc_id])
                        continue
                    item = self.repo.exceptions.get(exc_id)
                    if item is None:
                        result.failed[exc_id] = "not found"
                    elif item.cycle_id != cycle_id:
                        result.failed[exc_id] = f"belongs to {item.cycle_id}"
                    elif not item.is_meter:
                        result.failed[exc_id] = f"{item.type.value} exception is not a meter exception"
                    else:
                        result.failed[exc_id] = f"status is {item.status.value}"

            now = self.clock()
            for item in candidates:
                item.status = ExceptionStatus.RESOLVED
                item.updated_at = now
                result.resolved.append(item.id)

            if result.resolved:
                self.repo.ledger.record(
                    actor=actor,
                    action="Bulk Resolved Exceptions",
                    target=f"Cycle: {self.repo.cycles[cycle_id].name}",
                    details=f"{note} ({len(result.resolved)}: {', '.join(result.resolved)})",
                    at=now,
                    cycle_id=cycle_id,
                )
            self.projector.recompute(cycle_id)

        logger.info("Bulk resolved %d meter exception(s) in %s (%d refused)",
                    len(result.resolved), cycle_id, len(result.failed))
        return result

    def add_comment(self, exception_id: str, author: str, text: str) -> ExceptionItem:
        item = self.repo.exceptions.require(exception_id)
        if not text or not text.strip():
            raise InvalidUpdate("Comment text is empty")
        now = self.clock()
        item.comments.append(Comment(
            id=f"cmt_{uuid.uuid4().hex[:12]}",
            author=author,
            text=text,
            timestamp=now,
        ))
        item.updated_at = now
        preview = text if len(text) <= 50 else text[:50] + "..."
        self.repo.ledger.record(
            actor=author,
            action="Added Comment",
            target=f"Exception: {item.id}",
            details=f"Comment: {preview}",
            at=now,
            cycle_id=item.cycle_id,
            exception_id=item.id,
        )
        return item

    def update_exception(self, exception_id: str, updates: Mapping[str, Any], actor: str) -> ExceptionItem:
        """Partial update of editable fields. Unknown fields reject the whole update."""
        item = self.repo.exceptions.require(exception_id)
        if not updates:
            raise InvalidUpdate("No fields to update")

        normalized = {_UPDATE_ALIASES.get(k, k): v for k, v in updates.items()}
        unknown = sorted(set(normalized) - _UPDATABLE)
        if unknown:
            raise InvalidUpdate(f"Fields not updatable: {unknown}", fields=unknown)

        staged: dict[str, Any] = {}
        for key, new_value in normalized.items():
            if key == "status":
                try:
                    staged[key] = ExceptionStatus(new_value)
                except ValueError:
                    raise InvalidUpdate(f"Unknown status: {new_value!r}") from None
            elif key == "period":
                staged[key] = self._coerce_period(new_value)
            elif key == "meter":
                staged[key] = self._coerce_meter(item.meter, new_value)
            elif key == "value":
                if new_value is not None and (
                        isinstance(new_value, bool) or not isinstance(new_value, (int, float))):
                    raise InvalidUpdate(f"Value must be a number, got {new_value!r}")
                staged[key] = new_value
            else:
                staged[key] = new_value

        for key, new_value in staged.items():
            setattr(item, key, new_value)
        now = self.clock()
        item.updated_at = now
        self.repo.ledger.record(
            actor=actor,
            action="Updated Exception",
            target=f"Exception: {item.id}",
            details=f"Modified {', '.join(updates)}",
            at=now,
            cycle_id=item.cycle_id,
            exception_id=item.id,
        )
        self.projector.recompute(item.cycle_id)
        return item

    @staticmethod
    def _coerce_period(value: Any) -> ReadingPeriod | None:
        if value is None or isinstance(value, ReadingPeriod):
            return value
        if not isinstance(value, Mapping):
            raise InvalidUpdate("period must be a mapping with start/end dates")
        given = {_PERIOD_ALIASES.get(k, k): v for k, v in value.items()}
        extra = set(given) - {"start_date", "end_date"}
        if extra:
            raise InvalidUpdate(f"Unknown period fields: {sorted(extra)}")
        return ReadingPeriod(given.get("start_date", ""), given.get("end_date", ""))

    @staticmethod
    def _coerce_meter(current: MeterMetadata, value: Any) -> MeterMetadata:
        if isinstance(value, MeterMetadata):
            return value
        if not isinstance(value, Mapping):
            raise InvalidUpdate("meter must be a mapping of metadata fields")
        given = {_METER_ALIASES.get(k, k): v for k, v in value.items()}
        known = {f.name for f in dc_fields(MeterMetadata)}
        extra = set(given) - known
        if extra:
            raise InvalidUpdate(f"Unknown meter fields: {sorted(extra)}")
        merged = copy.copy(current)
        try:
            for key, v in given.items():
                if key == "market":
                    v = Market(v)
                elif key == "utility_type":
                    v = UtilityType(v)
                setattr(merged, key, v)
        except ValueError as e:
            raise InvalidUpdate(str(e)) from None
        return merged
