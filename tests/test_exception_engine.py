"""
ESG Reporting — Exception Engine Test Suite

Covers:
  1. Suggestion catalogue
  2. Seeded generation (determinism, bounds, type split, data matches violation)
  3. Discovery into the store (scenarios, seeds, counts)
  4. applyFix (every fix kind, auto-resolve vs manual, validation)
  5. resolveException (idempotence, repeat logging policy)
  6. bulkResolve (all-in-one, filtered view, rollback, single recompute)
  7. Comments and generic updates
  8. Late-defect injection

The counts invariant (open + resolved == ever created, per type split)
is asserted after every mutation.
"""

import os
import sys
import unittest
from collections import Counter
from unittest.mock import patch

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _base not in sys.path:
    sys.path.insert(0, _base)

from cycles.counts import CountsProjector
from cycles.errors import CycleNotFound, ExceptionNotFound, InvalidUpdate
from cycles.exception_engine import (
    AUTO_FIXES,
    BULK_RESOLVE_NOTE,
    ExceptionEngine,
    REGISTRY_SUGGESTION,
    SUGGESTIONS,
    build_exceptions,
    infer_region_sid,
    reading_period_for,
    suggestions_for,
)
from cycles.fixtures import build_baseline
from cycles.scheduler import VirtualScheduler
from cycles.store import ReportingRepository
from cycles.types import (
    ExceptionItem,
    ExceptionStatus,
    ExceptionType,
    FixKind,
    Market,
    ReadingPeriod,
    Violation,
    ViolationType,
)

JAN = "cycle-2026-01"
FEB = "cycle-2026-02"


class EngineTestCase(unittest.TestCase):
    """Baseline repository with a virtual clock."""

    config = {}

    def setUp(self):
        self.scheduler = VirtualScheduler()
        self.repo = ReportingRepository(build_baseline())
        self.projector = CountsProjector(self.repo)
        self.projector.recompute_all()
        self.engine = ExceptionEngine(self.repo, self.projector, self.scheduler.now, self.config)

    def assertCountsInvariant(self, cycle_id):
        counts = self.repo.cycles[cycle_id].exception_counts
        created = self.repo.exceptions.created_totals(cycle_id)
        self.assertEqual(counts.meter + counts.meter_resolved, created["meter"])
        self.assertEqual(counts.data + counts.data_resolved, created["data"])

    def open_registry(self, cycle_id):
        return [e for e in self.repo.exceptions.for_cycle(cycle_id) if e.is_meter and e.is_open]


# ═══════════════════════════════════════════════════════════════════
# 1. SUGGESTION CATALOGUE
# ═══════════════════════════════════════════════════════════════════

class TestSuggestions(unittest.TestCase):

    def test_every_violation_type_has_a_suggestion(self):
        self.assertEqual(set(SUGGESTIONS), set(ViolationType))

    def test_auto_fix_flags(self):
        self.assertTrue(SUGGESTIONS[ViolationType.DATE_RANGE_INVALID].auto_fix_available)
        self.assertTrue(SUGGESTIONS[ViolationType.NEGATIVE_VALUE].auto_fix_available)
        self.assertTrue(SUGGESTIONS[ViolationType.UNIT_MISMATCH].auto_fix_available)
        self.assertTrue(SUGGESTIONS[ViolationType.MISSING_REGION_SID].auto_fix_available)
        self.assertFalse(SUGGESTIONS[ViolationType.MISSING_FIELD].auto_fix_available)
        self.assertFalse(SUGGESTIONS[ViolationType.UNUSUAL_VALUE].auto_fix_available)

    def test_auto_fixes_match_flags(self):
        for vtype, suggestion in SUGGESTIONS.items():
            self.assertEqual(vtype in AUTO_FIXES, suggestion.auto_fix_available, vtype)

    def test_registry_gets_registry_update_first(self):
        violation = Violation(ViolationType.MISSING_FIELD, "Meter ID not found", field="meterId")
        suggestions = suggestions_for(ExceptionType.REGISTRY, [violation])
        self.assertEqual(suggestions[0], REGISTRY_SUGGESTION)
        self.assertEqual(suggestions[1].action, "Fill Missing Field")
        self.assertEqual(suggestions[1].description, "Enter value for meterId")

    def test_deterministic(self):
        violation = Violation(ViolationType.NEGATIVE_VALUE, "neg")
        self.assertEqual(suggestions_for(ExceptionType.READING, [violation]),
                         suggestions_for(ExceptionType.READING, [violation]))

    def test_infer_region_sid_stable(self):
        sid = infer_region_sid(Market.UK, "MUK9871")
        self.assertTrue(sid.startswith("RUK"))
        self.assertEqual(sid, infer_region_sid("UK", "MUK9871"))
        self.assertTrue(100 <= int(sid[3:]) <= 999)

    def test_reading_period_for(self):
        self.assertEqual(reading_period_for("cycle-2026-02"), ReadingPeriod("2026-02-01", "2026-02-28"))
        self.assertEqual(reading_period_for("cycle-2024-02"), ReadingPeriod("2024-02-01", "2024-02-29"))
        self.assertEqual(reading_period_for("C1"), ReadingPeriod("2026-01-01", "2026-01-31"))


# ═══════════════════════════════════════════════════════════════════
# 2. SEEDED GENERATION
# ═══════════════════════════════════════════════════════════════════

class TestBuildExceptions(unittest.TestCase):

    def test_same_seed_same_items(self):
        a = build_exceptions("C1", 42, 0.0)
        b = build_exceptions("C1", 42, 0.0)
        self.assertEqual([e.to_dict() for e in a], [e.to_dict() for e in b])

    def test_different_seed_differs(self):
        a = build_exceptions("C1", 1, 0.0)
        b = build_exceptions("C1", 2, 0.0)
        self.assertNotEqual([e.to_dict() for e in a], [e.to_dict() for e in b])

    def test_size_bounds(self):
        sizes = {len(build_exceptions("C1", seed, 0.0)) for seed in range(200)}
        self.assertTrue(sizes <= set(range(3, 9)))
        self.assertIn(3, sizes)
        self.assertIn(8, sizes)

    def test_custom_bounds(self):
        for seed in range(20):
            self.assertEqual(len(build_exceptions("C1", seed, 0.0, min_count=2, max_count=2)), 2)

    def test_type_split(self):
        types = Counter()
        for seed in range(300):
            types.update(e.type for e in build_exceptions("C1", seed, 0.0))
        total = sum(types.values())
        self.assertAlmostEqual(types[ExceptionType.REGISTRY] / total, 0.30, delta=0.06)
        self.assertAlmostEqual(types[ExceptionType.UPLOAD_FAILURE] / total, 0.10, delta=0.04)
        self.assertAlmostEqual(types[ExceptionType.READING] / total, 0.60, delta=0.06)

    def test_each_item_has_exactly_one_violation(self):
        for seed in range(50):
            for item in build_exceptions("C1", seed, 0.0):
                self.assertEqual(len(item.violations), 1)
                self.assertTrue(item.suggestions)
                self.assertEqual(item.status, ExceptionStatus.OPEN)

    def test_readings_cover_taxonomy(self):
        seen = set()
        for seed in range(200):
            seen.update(e.violations[0].type for e in build_exceptions("C1", seed, 0.0)
                        if e.type == ExceptionType.READING)
        self.assertEqual(seen, set(ViolationType))

    def test_data_exhibits_violation(self):
        for seed in range(200):
            for item in build_exceptions("C1", seed, 0.0):
                if item.type != ExceptionType.READING:
                    continue
                vtype = item.violations[0].type
                if vtype == ViolationType.NEGATIVE_VALUE:
                    self.assertLess(item.value, 0)
                elif vtype == ViolationType.DATE_RANGE_INVALID:
                    self.assertGreater(item.period.start_date, item.period.end_date)
                elif vtype == ViolationType.UNIT_MISMATCH:
                    self.assertEqual(item.units, "m³")
                elif vtype == ViolationType.MISSING_REGION_SID:
                    self.assertIsNone(item.meter.region_sid)
                elif vtype == ViolationType.UNUSUAL_VALUE:
                    self.assertGreaterEqual(item.value, 25000)

    def test_ids_and_timestamps(self):
        items = build_exceptions("C1", 5, 123.0, start_index=10)
        self.assertEqual(items[0].id, "exc-C1-10")
        self.assertTrue(all(e.created_at == e.updated_at == 123.0 for e in items))
        self.assertTrue(all(e.cycle_id == "C1" for e in items))


# ═══════════════════════════════════════════════════════════════════
# 3. DISCOVERY INTO THE STORE
# ═══════════════════════════════════════════════════════════════════

class TestGenerateExceptions(EngineTestCase):

    def test_curated_scenario_used(self):
        items = self.engine.generate_exceptions(FEB)
        self.assertEqual(len(items), 4)
        self.assertEqual(sum(e.type == ExceptionType.REGISTRY for e in items), 1)
        self.assertTrue(all(e.created_at == self.scheduler.now() for e in items))
        counts = self.repo.cycles[FEB].exception_counts
        self.assertEqual((counts.meter, counts.data), (1, 3))
        self.assertCountsInvariant(FEB)

    def test_scenario_left_intact_for_next_run(self):
        self.engine.generate_exceptions(FEB)
        self.assertEqual(len(self.repo.scenarios[FEB]), 4)
        self.assertEqual(self.repo.scenarios[FEB][0].created_at,
                         build_baseline().scenarios[FEB][0].created_at)

    def test_seeded_generation_reproducible_across_repositories(self):
        self.repo.scenarios.clear()
        first = [e.to_dict() for e in self.engine.generate_exceptions(FEB, seed=7)]
        other = EngineTestCase()
        other.setUp()
        other.repo.scenarios.clear()
        second = [e.to_dict() for e in other.engine.generate_exceptions(FEB, seed=7)]
        self.assertEqual(first, second)

    def test_seed_derived_from_cycle_id(self):
        self.repo.scenarios.clear()
        a = self.engine.generate_exceptions(FEB)
        self.assertTrue(3 <= len(a) <= 8)
        self.assertCountsInvariant(FEB)

    def test_second_generation_does_not_collide(self):
        before = len(self.repo.exceptions.for_cycle(JAN))
        items = self.engine.generate_exceptions(JAN, seed=1)
        self.assertEqual(len(self.repo.exceptions.for_cycle(JAN)), before + len(items))
        self.assertCountsInvariant(JAN)

    def test_unknown_cycle(self):
        with self.assertRaises(CycleNotFound):
            self.engine.generate_exceptions("nope")


class TestConfiguredSeed(EngineTestCase):
    config = {"exceptions": {"seed": 99, "min_count": 4, "max_count": 4}}

    def test_config_seed_and_bounds(self):
        self.repo.scenarios.clear()
        items = self.engine.generate_exceptions(FEB)
        self.assertEqual(len(items), 4)
        expected = build_exceptions(FEB, 99, self.scheduler.now(), min_count=4, max_count=4)
        self.assertEqual([e.to_dict() for e in items], [e.to_dict() for e in expected])


# ═══════════════════════════════════════════════════════════════════
# 4. APPLY FIX
# ═══════════════════════════════════════════════════════════════════

class TestApplyFix(EngineTestCase):

    def setUp(self):
        super().setUp()
        self.engine.generate_exceptions(FEB)
        self.scheduler.advance(60.0)

    def _ledger_for(self, exception_id):
        return [e for e in self.repo.ledger.entries() if e.exception_id == exception_id]

    def test_negative_value_auto_resolves(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-negative-1", FixKind.VALUE, -450, "Sarah Mitchell")
        self.assertEqual(item.value, 450)
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        self.assertEqual(item.updated_at, self.scheduler.now())
        self.assertEqual(len(item.violations), 1)
        entries = self._ledger_for(item.id)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, "Resolved Exception")
        self.assertEqual(self.repo.cycles[FEB].exception_counts.data_resolved, 1)
        self.assertCountsInvariant(FEB)

    def test_value_defaults_to_current(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-negative-1", "value")
        self.assertEqual(item.value, 450)

    def test_value_and_units_converts_gas(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-units-1", FixKind.VALUE_AND_UNITS)
        self.assertAlmostEqual(item.value, 94422.5)
        self.assertEqual(item.units, "kWh")
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)

    def test_value_and_units_explicit(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-units-1", "valueAndUnits",
                                     {"value": 100.0, "units": "MWh"})
        self.assertEqual((item.value, item.units), (100.0, "MWh"))

    def test_units_relabel(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-units-1", FixKind.UNITS)
        self.assertEqual(item.units, "kWh")
        self.assertEqual(item.value, 8950)

    def test_dates_swapped(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-dates-1", FixKind.DATES)
        self.assertEqual(item.period, ReadingPeriod("2026-02-01", "2026-02-28"))
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)

    def test_dates_explicit_camel_case(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-dates-1", FixKind.DATES,
                                     {"startDate": "2026-02-02", "endDate": "2026-02-27"})
        self.assertEqual(item.period, ReadingPeriod("2026-02-02", "2026-02-27"))

    def test_dates_still_inverted_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-cycle-2026-02-dates-1", FixKind.DATES,
                                  {"start_date": "2026-03-01", "end_date": "2026-02-01"})
        item = self.repo.exceptions.require("exc-cycle-2026-02-dates-1")
        self.assertEqual(item.status, ExceptionStatus.OPEN)

    def test_dates_swap_refused_when_a_date_is_missing(self):
        violation = Violation(ViolationType.MISSING_FIELD, "Required field is missing: startDate",
                              field="startDate")
        self.repo.exceptions.add(FEB, [ExceptionItem(
            id="exc-no-start", cycle_id=FEB, type=ExceptionType.READING,
            meter=self.repo.exceptions.require("exc-cycle-2026-02-negative-1").meter,
            violations=[violation], period=ReadingPeriod("", "2026-02-28"),
            value=14200, units="kWh",
        )])
        before = len(self.repo.ledger)
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-no-start", FixKind.DATES)
        item = self.repo.exceptions.require("exc-no-start")
        self.assertEqual(item.period, ReadingPeriod("", "2026-02-28"))
        self.assertEqual(item.status, ExceptionStatus.OPEN)
        self.assertEqual(len(self.repo.ledger), before)

    def test_missing_date_filled_explicitly(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-missing-enddate", FixKind.DATES)
        item = self.engine.apply_fix("exc-missing-enddate", FixKind.DATES, {"endDate": "2026-01-31"})
        self.assertEqual(item.period, ReadingPeriod("2026-01-01", "2026-01-31"))
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        self.assertCountsInvariant(JAN)

    def test_region_sid_soft_violation_stays_open(self):
        meter, _ = self.engine.inject_late_defects(FEB, 1)
        item = self.engine.apply_fix(meter.id, FixKind.REGION_SID, actor="James Chen")
        self.assertEqual(item.meter.region_sid, infer_region_sid(Market.UK, "MUK9871"))
        self.assertEqual(item.status, ExceptionStatus.OPEN)
        entries = self._ledger_for(item.id)
        self.assertEqual([e.action for e in entries], ["Applied Fix"])
        self.assertCountsInvariant(FEB)

    def test_region_sid_explicit(self):
        meter, _ = self.engine.inject_late_defects(FEB, 1)
        item = self.engine.apply_fix(meter.id, FixKind.REGION_SID, "RUK777")
        self.assertEqual(item.meter.region_sid, "RUK777")

    def test_fix_on_resolved_does_not_resolve_again(self):
        self.engine.apply_fix("exc-cycle-2026-02-negative-1", FixKind.VALUE)
        item = self.engine.apply_fix("exc-cycle-2026-02-negative-1", FixKind.VALUE, 500)
        self.assertEqual(item.value, 500)
        actions = [e.action for e in self._ledger_for(item.id)]
        self.assertEqual(actions, ["Applied Fix", "Resolved Exception"])

    def test_unknown_kind_rejected_without_writes(self):
        before = len(self.repo.ledger)
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-cycle-2026-02-negative-1", "teleport", 1)
        item = self.repo.exceptions.require("exc-cycle-2026-02-negative-1")
        self.assertEqual((item.value, item.status), (-450, ExceptionStatus.OPEN))
        self.assertEqual(len(self.repo.ledger), before)

    def test_non_numeric_value_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-cycle-2026-02-negative-1", FixKind.VALUE, "lots")
        with self.assertRaises(InvalidUpdate):
            self.engine.apply_fix("exc-cycle-2026-02-negative-1", FixKind.VALUE, True)

    def test_missing_exception(self):
        with self.assertRaises(ExceptionNotFound):
            self.engine.apply_fix("nope", FixKind.VALUE, 1)

    def test_registry_missing_field_resolves_on_fix(self):
        item = self.engine.apply_fix("exc-cycle-2026-02-registry-1", FixKind.REGION_SID, "RUK142")
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        self.assertEqual(self.repo.cycles[FEB].exception_counts.meter, 0)
        self.assertCountsInvariant(FEB)


# ═══════════════════════════════════════════════════════════════════
# 5. RESOLVE
# ═══════════════════════════════════════════════════════════════════

class TestResolveException(EngineTestCase):

    def test_resolve(self):
        item = self.engine.resolve_exception("exc-unit-mismatch", "Emma Rodriguez", "Converted manually")
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        entry = self.repo.ledger.entries()[0]
        self.assertEqual(entry.action, "Resolved Exception")
        self.assertEqual(entry.details, "Converted manually")
        self.assertEqual(entry.cycle_id, JAN)
        self.assertEqual(self.repo.cycles[JAN].activity_log[0], entry)
        self.assertCountsInvariant(JAN)

    def test_idempotent_state_repeat_logged(self):
        first = self.engine.resolve_exception("exc-unit-mismatch", "Emma Rodriguez", "ok")
        counts_after_first = self.repo.cycles[JAN].exception_counts
        before = len(self.repo.ledger)
        second = self.engine.resolve_exception("exc-unit-mismatch", "Emma Rodriguez", "ok again")
        self.assertEqual(first.status, second.status)
        self.assertEqual(self.repo.cycles[JAN].exception_counts, counts_after_first)
        self.assertEqual(len(self.repo.ledger), before + 1)

    def test_dismissed_can_be_resolved(self):
        self.engine.update_exception("exc-unit-mismatch", {"status": "dismissed"}, "u")
        item = self.engine.resolve_exception("exc-unit-mismatch", "u")
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        self.assertCountsInvariant(JAN)

    def test_missing(self):
        with self.assertRaises(ExceptionNotFound):
            self.engine.resolve_exception("nope", "u", "")


class TestResolveWithoutRepeatLogging(EngineTestCase):
    config = {"resolution": {"log_repeat_resolutions": False}}

    def test_repeat_is_silent(self):
        self.engine.resolve_exception("exc-unit-mismatch", "u", "ok")
        before = len(self.repo.ledger)
        item = self.engine.resolve_exception("exc-unit-mismatch", "u", "again")
        self.assertEqual(item.status, ExceptionStatus.RESOLVED)
        self.assertEqual(len(self.repo.ledger), before)


# ═══════════════════════════════════════════════════════════════════
# 6. BULK RESOLVE
# ═══════════════════════════════════════════════════════════════════

class TestBulkResolve(EngineTestCase):

    def test_resolves_all_open_registry(self):
        open_before = self.open_registry(JAN)
        n = len(open_before)
        self.assertGreaterEqual(n, 1)
        counts_before = self.repo.cycles[JAN].exception_counts
        data_before = counts_before.data

        result = self.engine.bulk_resolve(JAN, "Sarah Mitchell")

        self.assertEqual(sorted(result.resolved), sorted(e.id for e in open_before))
        self.assertTrue(result.ok)
        counts = self.repo.cycles[JAN].exception_counts
        self.assertEqual(counts.meter, 0)
        self.assertEqual(counts.meter_resolved, counts_before.meter_resolved + n)
        self.assertEqual(counts.data, data_before)
        self.assertCountsInvariant(JAN)

    def test_single_ledger_entry(self):
        before = len(self.repo.ledger)
        result = self.engine.bulk_resolve(JAN, "Sarah Mitchell")
        self.assertEqual(len(self.repo.ledger), before + 1)
        entry = self.repo.ledger.entries()[0]
        self.assertEqual(entry.action, "Bulk Resolved Exceptions")
        self.assertIn(BULK_RESOLVE_NOTE, entry.details)
        for exc_id in result.resolved:
            self.assertIn(exc_id, entry.details)

    def test_recomputes_once(self):
        with patch.object(self.projector, "recompute", wraps=self.projector.recompute) as spy:
            self.engine.bulk_resolve(JAN, "Sarah Mitchell")
        self.assertEqual(spy.call_count, 1)

    def test_includes_in_review(self):
        target = self.open_registry(JAN)[0]
        self.engine.update_exception(target.id, {"status": "in_review"}, "u")
        result = self.engine.bulk_resolve(JAN, "u")
        self.assertIn(target.id, result.resolved)

    def test_nothing_open_writes_no_entry(self):
        self.engine.bulk_resolve(JAN, "u")
        before = len(self.repo.ledger)
        result = self.engine.bulk_resolve(JAN, "u")
        self.assertEqual(result.resolved, [])
        self.assertEqual(len(self.repo.ledger), before)

    def test_filtered_view_reports_failures(self):
        target = self.open_registry(JAN)[0]
        result = self.engine.bulk_resolve(
            JAN, "u", exception_ids=[target.id, "exc-unit-mismatch", "ghost"],
        )
        self.assertEqual(result.resolved, [target.id])
        self.assertFalse(result.ok)
        self.assertIn("ghost", result.failed)
        self.assertIn("exc-unit-mismatch", result.failed)
        self.assertEqual(self.repo.exceptions.require("exc-unit-mismatch").status, ExceptionStatus.OPEN)

    def test_filtered_view_other_cycle_and_closed(self):
        target = self.open_registry(JAN)[0]
        self.engine.resolve_exception(target.id, "u")
        self.engine.generate_exceptions(FEB)
        result = self.engine.bulk_resolve(
            JAN, "u", exception_ids=[target.id, "exc-cycle-2026-02-registry-1"],
        )
        self.assertEqual(result.resolved, [])
        self.assertIn("resolved", result.failed[target.id])
        self.assertIn(FEB, result.failed["exc-cycle-2026-02-registry-1"])

    def test_rollback_on_failure(self):
        ids = [e.id for e in self.open_registry(JAN)]
        with patch.object(self.repo.ledger, "record", side_effect=RuntimeError("ledger down")):
            with self.assertRaises(RuntimeError):
                self.engine.bulk_resolve(JAN, "u")
        for exc_id in ids:
            self.assertEqual(self.repo.exceptions.require(exc_id).status, ExceptionStatus.OPEN)
        self.assertEqual(self.repo.cycles[JAN].exception_counts.meter, len(ids))

    def test_unknown_cycle(self):
        with self.assertRaises(CycleNotFound):
            self.engine.bulk_resolve("nope", "u")


# ═══════════════════════════════════════════════════════════════════
# 7. COMMENTS AND UPDATES
# ═══════════════════════════════════════════════════════════════════

class TestComments(EngineTestCase):

    def test_add_comment(self):
        self.scheduler.advance(5.0)
        item = self.engine.add_comment("exc-date-error", "Thomas Weber", "Checking with the site")
        self.assertEqual(len(item.comments), 1)
        self.assertEqual(item.comments[0].author, "Thomas Weber")
        self.assertEqual(item.comments[0].timestamp, self.scheduler.now())
        self.assertEqual(item.updated_at, self.scheduler.now())
        self.assertEqual(item.status, ExceptionStatus.OPEN)
        self.assertEqual(self.repo.ledger.entries()[0].action, "Added Comment")

    def test_long_comment_truncated_in_ledger(self):
        self.engine.add_comment("exc-date-error", "u", "x" * 80)
        self.assertEqual(self.repo.ledger.entries()[0].details, "Comment: " + "x" * 50 + "...")

    def test_empty_comment_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.add_comment("exc-date-error", "u", "   ")
        self.assertEqual(self.repo.exceptions.require("exc-date-error").comments, [])

    def test_missing(self):
        with self.assertRaises(ExceptionNotFound):
            self.engine.add_comment("nope", "u", "hi")


class TestUpdateException(EngineTestCase):

    def test_partial_update(self):
        item = self.engine.update_exception(
            "exc-missing-enddate",
            {"period": {"startDate": "2026-01-01", "endDate": "2026-01-31"}, "assignedTo": "u2"},
            "James Chen",
        )
        self.assertEqual(item.period, ReadingPeriod("2026-01-01", "2026-01-31"))
        self.assertEqual(item.assigned_to, "u2")
        entry = self.repo.ledger.entries()[0]
        self.assertEqual(entry.action, "Updated Exception")
        self.assertEqual(entry.details, "Modified period, assignedTo")

    def test_meter_patch_merges(self):
        item = self.engine.update_exception("exc-registry-demo", {"meter": {"regionSID": "REU999"}}, "u")
        self.assertEqual(item.meter.region_sid, "REU999")
        self.assertEqual(item.meter.meter_id, "MEU9234")

    def test_status_change_recomputes(self):
        self.engine.update_exception("exc-registry-demo", {"status": "resolved"}, "u")
        self.assertCountsInvariant(JAN)
        self.assertEqual(self.repo.cycles[JAN].exception_counts.meter_resolved, 1)

    def test_unknown_field_rejected_before_mutation(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.update_exception("exc-registry-demo", {"status": "resolved", "colour": "red"}, "u")
        self.assertEqual(self.repo.exceptions.require("exc-registry-demo").status, ExceptionStatus.OPEN)

    def test_bad_status_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.update_exception("exc-registry-demo", {"status": "closed"}, "u")

    def test_bad_meter_field_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.update_exception("exc-registry-demo", {"meter": {"colour": "red"}}, "u")
        with self.assertRaises(InvalidUpdate):
            self.engine.update_exception("exc-registry-demo", {"meter": {"market": "US"}}, "u")

    def test_empty_update_rejected(self):
        with self.assertRaises(InvalidUpdate):
            self.engine.update_exception("exc-registry-demo", {}, "u")


# ═══════════════════════════════════════════════════════════════════
# 8. LATE DEFECTS
# ═══════════════════════════════════════════════════════════════════

class TestLateDefects(EngineTestCase):

    def test_two_defects_one_meter_one_data(self):
        before = self.repo.cycles[JAN].exception_counts
        meter, data = self.engine.inject_late_defects(JAN, 1)
        self.assertEqual(meter.type, ExceptionType.REGISTRY)
        self.assertEqual(meter.violations[0].type, ViolationType.MISSING_REGION_SID)
        self.assertEqual(data.type, ExceptionType.READING)
        self.assertEqual(data.violations[0].type, ViolationType.UNUSUAL_VALUE)
        self.assertEqual(data.value, 45000)
        self.assertEqual(meter.lineage_source, "UL 360 Verification")
        counts = self.repo.cycles[JAN].exception_counts
        self.assertEqual(counts.meter, before.meter + 1)
        self.assertEqual(counts.data, before.data + 1)
        self.assertCountsInvariant(JAN)

    def test_ids_per_attempt(self):
        a = self.engine.inject_late_defects(JAN, 1)
        b = self.engine.inject_late_defects(JAN, 3)
        self.assertNotEqual({e.id for e in a}, {e.id for e in b})


if __name__ == "__main__":
    unittest.main()
