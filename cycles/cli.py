"""
ESG Reporting — CLI

State lives for the process lifetime only, so every invocation starts
from the baseline fixture on a virtual clock.

Usage:
    # Run the full reporting scenario for the scheduled cycle
    python -m cycles.cli demo [--cycle cycle-2026-02] [--actor "Sarah Mitchell"]

    # List cycles
    python -m cycles.cli cycles [--json]

    # List a cycle's exceptions
    python -m cycles.cli exceptions cycle-2026-01 [--open] [--json]

    # Show the activity log
    python -m cycles.cli log [--cycle <id>] [--limit 20] [--json]
"""

import argparse
import json
import random
import sys
from dataclasses import asdict
from datetime import datetime, timezone

from cycles.errors import ReportingError
from cycles.exception_engine import AUTO_FIXES
from cycles.scheduler import VirtualScheduler
from cycles.service import ReportingService, load_service_config
from cycles.types import ReportingCycle
from infra.config import get_config_value
from infra.logging import configure_logging


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "—"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _print_cycle(cycle: ReportingCycle) -> None:
    counts = cycle.exception_counts
    print(f"  {cycle.id}")
    print(f"    name:          {cycle.name}")
    print(f"    status:        {cycle.status.value}")
    print(f"    step:          {cycle.current_step.value}")
    print(f"    ul360:         {cycle.ul360_status.value}")
    print(f"    exceptions:    meter {counts.meter} open / {counts.meter_resolved} resolved, "
          f"data {counts.data} open / {counts.data_resolved} resolved")
    print(f"    attempts:      {len(cycle.report_summaries)} summary, "
          f"{cycle.verification_attempts} verification")
    if cycle.last_error:
        print(f"    last error:    {cycle.last_error}")


# ─── Demo ────────────────────────────────────────────────────────────

def run_demo(service: ReportingService, scheduler: VirtualScheduler,
             cycle_id: str, actor: str) -> ReportingCycle:
    """
    Drive one cycle from scheduled to completed: run, fix and resolve
    what Validate found, verify (which surfaces two late defects),
    wait for reprocessing, resolve those, verify again.
    """
    service.run_cycle(cycle_id, actor)
    scheduler.run_until_idle()

    _remediate(service, cycle_id, actor)
    result = service.verify(cycle_id, actor, success=True)
    print(f"  verify #1: verification_failed={result.verification_failed} "
          f"new_exceptions={result.new_exceptions_count}", file=sys.stderr)
    scheduler.run_until_idle()

    _remediate(service, cycle_id, actor)
    result = service.verify(cycle_id, actor, success=True)
    print(f"  verify #2: status={result.cycle.status.value}", file=sys.stderr)
    return result.cycle


def _remediate(service: ReportingService, cycle_id: str, actor: str) -> None:
    """Apply every available auto-fix, confirm the rest, bulk-resolve meter issues."""
    for item in service.get_exceptions(cycle_id):
        if not item.is_open:
            continue
        fix = next((AUTO_FIXES[v.type] for v in item.violations if v.type in AUTO_FIXES), None)
        if fix is not None:
            item = service.apply_fix(item.id, fix, actor=actor)
        if item.is_open and not item.is_meter:
            service.resolve_exception(item.id, actor, "Confirmed with site manager")
    service.bulk_resolve(cycle_id, actor)


def cmd_demo(args, service: ReportingService, scheduler: VirtualScheduler):
    print(f"\n{'═' * 70}", file=sys.stderr)
    print(f"  DEMO: {args.cycle}", file=sys.stderr)
    print(f"{'═' * 70}", file=sys.stderr, flush=True)

    cycle = run_demo(service, scheduler, args.cycle, args.actor)

    if args.json:
        print(json.dumps({
            "cycle": cycle.to_dict(),
            "activity": [e.to_dict() for e in service.get_activity_log(args.cycle)],
        }, indent=2, default=str))
        return

    print(f"\n  CYCLE SUMMARY")
    print(f"{'─' * 70}")
    _print_cycle(cycle)
    print(f"\n  STEPS")
    for step, ts in cycle.step_timestamps.items():
        print(f"    {step.value:20s} {_fmt_ts(ts)}")
    print(f"\n  REPORT SUMMARIES")
    for s in cycle.report_summaries:
        print(f"    #{s.attempt_number}: {s.successful_entries}/{s.total_entries} ok, "
              f"{s.failed_entries} failed ({s.artifact_id})")
    _print_log(service.get_activity_log(args.cycle))


# ─── Queries ─────────────────────────────────────────────────────────

def cmd_cycles(args, service: ReportingService):
    cycles = service.get_cycles()
    if args.json:
        print(json.dumps([c.to_dict() for c in cycles], indent=2, default=str))
        return
    print(f"\nReporting Cycles ({len(cycles)})")
    print(f"{'─' * 70}")
    for cycle in cycles:
        _print_cycle(cycle)
        print()


def cmd_exceptions(args, service: ReportingService):
    if service.get_cycle(args.cycle_id) is None:
        print(f"Cycle not found: {args.cycle_id}", file=sys.stderr)
        sys.exit(1)
    items = service.get_exceptions(args.cycle_id)
    if args.open:
        items = [e for e in items if e.is_open]
    if args.json:
        print(json.dumps([e.to_dict() for e in items], indent=2, default=str))
        return
    print(f"\nExceptions for {args.cycle_id} ({len(items)})")
    print(f"{'─' * 70}")
    for item in items:
        marker = "○" if item.is_open else "✓"
        violations = ", ".join(v.type.value for v in item.violations)
        print(f"  {marker} {item.id:36s} {item.type.value:14s} {item.meter.meter_id:8s} {violations}")


def _print_log(entries, limit: int = 0):
    shown = entries[:limit] if limit else entries
    print(f"\n  ACTIVITY LOG ({len(entries)} entries, newest first)")
    print(f"{'─' * 70}")
    for e in shown:
        print(f"  {_fmt_ts(e.timestamp)}  {e.actor:28s} {e.action}")
        if e.details:
            print(f"  {'':19s}  {'':28s} {e.details}")


def cmd_log(args, service: ReportingService):
    entries = service.get_activity_log(args.cycle)
    if args.json:
        shown = entries[:args.limit] if args.limit else entries
        print(json.dumps([asdict(e) for e in shown], indent=2, default=str))
        return
    _print_log(entries, args.limit)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="ESG reporting cycle engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None,
                        help="JSON log level on stderr (default: logging.level from config)")
    parser.add_argument("--seed", type=int, default=7, help="Seed for step latency jitter")
    subs = parser.add_subparsers(dest="command")

    # demo
    demo_p = subs.add_parser("demo", help="Run a cycle end to end on a virtual clock")
    demo_p.add_argument("--cycle", default="cycle-2026-02")
    demo_p.add_argument("--actor", default="Sarah Mitchell")
    demo_p.add_argument("--json", action="store_true")

    # cycles
    cycles_p = subs.add_parser("cycles", help="List reporting cycles")
    cycles_p.add_argument("--json", action="store_true")

    # exceptions
    exc_p = subs.add_parser("exceptions", help="List a cycle's exceptions")
    exc_p.add_argument("cycle_id")
    exc_p.add_argument("--open", action="store_true", help="Only open or in-review")
    exc_p.add_argument("--json", action="store_true")

    # log
    log_p = subs.add_parser("log", help="Show the activity log")
    log_p.add_argument("--cycle", help="Filter by cycle ID")
    log_p.add_argument("--limit", type=int, default=0)
    log_p.add_argument("--json", action="store_true")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = load_service_config()
    configure_logging(level=args.log_level or get_config_value("logging.level", config, "WARNING"))

    scheduler = VirtualScheduler()
    service = ReportingService(scheduler=scheduler, config=config, rng=random.Random(args.seed))

    try:
        if args.command == "demo":
            cmd_demo(args, service, scheduler)
        elif args.command == "cycles":
            cmd_cycles(args, service)
        elif args.command == "exceptions":
            cmd_exceptions(args, service)
        elif args.command == "log":
            cmd_log(args, service)
    except ReportingError as e:
        print(f"\n  ✗ FAILED: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        service.dispose()


if __name__ == "__main__":
    main()
