"""
ESG Reporting — Cycle Orchestrator

Drives a reporting cycle through its step sequence:

  Ingest → Normalize → Apply Rules → Validate → Prepare UL 360
        → (handoff) Await Verification

run_cycle() returns as soon as the cycle is in progress. Each step runs
as its own deferred continuation after a jittered latency; progress is
observed by re-reading the cycle. Validate discovers exceptions,
Prepare UL 360 writes a report summary and artifact reference, and the
handoff parks the cycle in awaiting_verification for a human.

A continuation that raises is retried with backoff. Step state is
written inside a repository transaction, so a step either completes
fully or leaves the cycle exactly where it was.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Callable

from cycles.counts import CountsProjector
from cycles.deferred import DeferredWork, record_artifact
from cycles.errors import InvalidCycleState
from cycles.exception_engine import ExceptionEngine
from cycles.types import (
    CycleStatus,
    OrchestrationStep,
    ReportSummary,
    ReportingCycle,
    STEP_SEQUENCE,
    UL360Status,
)

logger = logging.getLogger("esg_reporting.orchestrator")

# Hook run at the start of a step, before any state is written.
# Raising TransientSchedulingFailure makes the step retry.
StepHandler = Callable[[ReportingCycle], None]

MIN_STEP_DELAY = 0.01


class CycleOrchestrator:
    """
    Args:
        repo:          ReportingRepository
        engine:        ExceptionEngine used at Validate
        projector:     CountsProjector
        deferred:      DeferredWork (scheduler, retry policy, system actor)
        config:        Loaded config (``pipeline`` section)
        step_handlers: Optional per-step hooks
    """

    def __init__(
        self,
        repo,
        engine: ExceptionEngine,
        projector: CountsProjector,
        deferred: DeferredWork,
        config: dict[str, Any] | None = None,
        step_handlers: dict[OrchestrationStep, StepHandler] | None = None,
    ):
        self.repo = repo
        self.engine = engine
        self.projector = projector
        self.deferred = deferred
        self.scheduler = deferred.scheduler
        self.step_handlers = dict(step_handlers or {})

        pipeline = (config or {}).get("pipeline") or {}
        self.step_delay = float(pipeline.get("step_delay_seconds", 2.0))
        self.step_jitter = float(pipeline.get("step_jitter_seconds", 1.0))
        self.handoff_delay = float(pipeline.get("handoff_delay_seconds", 0.5))
        self.nominal_total = int(pipeline.get("nominal_total_entries", 1000))
        self.nominal_jitter = int(pipeline.get("nominal_entries_jitter", 500))

    @property
    def system_actor(self) -> str:
        return self.deferred.system_actor

    # ─── Start ───────────────────────────────────────────────────────

    def run_cycle(self, cycle_id: str, actor: str | None = None) -> ReportingCycle:
        """
        Start a scheduled cycle. Raises CycleNotFound for unknown ids and
        InvalidCycleState if the cycle is not scheduled.
        """
        with self.repo.lock:
            cycle = self.repo.require_cycle(cycle_id)
            if cycle.status != CycleStatus.SCHEDULED:
                raise InvalidCycleState(
                    f"Cycle {cycle_id} is {cycle.status.value}; only scheduled cycles can be run",
                    cycle_id=cycle_id, status=cycle.status.value,
                )

            now = self.scheduler.now()
            cycle.transition(CycleStatus.IN_PROGRESS)
            cycle.actual_start = now
            cycle.current_step = OrchestrationStep.INGEST
            cycle.last_error = None
            self.repo.ledger.record(
                actor=actor or self.system_actor,
                action="Started Reporting Cycle",
                target=f"Cycle: {cycle.name}",
                details="Manual trigger initiated orchestration",
                at=now,
                cycle_id=cycle_id,
            )

            events = self.deferred.start_trace(cycle_id)
            events.on_cycle_started(actor or self.system_actor, [s.value for s in STEP_SEQUENCE])
            logger.info("Cycle %s started (trace=%s)", cycle_id, events.trace_id)

            self._schedule_step(cycle_id, 0)
            return cycle

    # ─── Steps ───────────────────────────────────────────────────────

    def _step_delay(self) -> float:
        jitter = self.deferred.rng.uniform(0.0, self.step_jitter) if self.step_jitter > 0 else 0.0
        return max(MIN_STEP_DELAY, self.step_delay + jitter)

    def _schedule_step(self, cycle_id: str, index: int) -> None:
        step = STEP_SEQUENCE[index]
        self.deferred.run_later(
            cycle_id,
            self._step_delay(),
            lambda: self._run_step(cycle_id, index),
            label=f"{cycle_id}:{step.value}",
        )

    def _run_step(self, cycle_id: str, index: int) -> None:
        step = STEP_SEQUENCE[index]
        with self.repo.lock:
            cycle = self.repo.cycles.get(cycle_id)
            if cycle is None or cycle.status != CycleStatus.IN_PROGRESS:
                logger.info("Dropping step %s for %s: cycle no longer in progress",
                            step.value, cycle_id)
                return

            handler = self.step_handlers.get(step)
            if handler is not None:
                handler(cycle)

            with self.repo.transaction():
                # The transaction may swap in restored objects; re-read
                cycle = self.repo.cycles[cycle_id]
                now = self.scheduler.now()
                if step == OrchestrationStep.VALIDATE:
                    self._validate(cycle, now)
                elif step == OrchestrationStep.PREPARE_UL360:
                    self._prepare_upload(cycle, now)
                cycle.stamp_step(step, now)
                cycle.last_error = None
                self.repo.ledger.record(
                    actor=self.system_actor,
                    action=f"Completed Step: {step.value}",
                    target=f"Cycle: {cycle.name}",
                    details=f"{step.value} completed successfully",
                    at=now,
                    cycle_id=cycle_id,
                )

            self.deferred.events_for(cycle_id).on_step_completed(step.value, now)

            if index + 1 < len(STEP_SEQUENCE):
                self._schedule_step(cycle_id, index + 1)
            else:
                self.deferred.run_later(
                    cycle_id, max(MIN_STEP_DELAY, self.handoff_delay),
                    lambda: self._await_verification(cycle_id),
                    label=f"{cycle_id}:{OrchestrationStep.AWAIT_VERIFICATION.value}",
                )

    def _validate(self, cycle: ReportingCycle, now: float) -> None:
        items = self.engine.generate_exceptions(cycle.id)
        by_type = Counter(item.type.value for item in items)
        self.repo.ledger.record(
            actor=self.system_actor,
            action="Generated Exceptions",
            target=f"Cycle: {cycle.name}",
            details=f"Found {len(items)} exceptions during validation",
            at=now,
            cycle_id=cycle.id,
        )
        self.deferred.events_for(cycle.id).on_exceptions_generated(len(items), dict(by_type))

    def _prepare_upload(self, cycle: ReportingCycle, now: float) -> None:
        attempt = len(cycle.report_summaries) + 1
        total = self.nominal_total
        if self.nominal_jitter > 0:
            total += self.deferred.rng.randint(0, self.nominal_jitter)
        failed = self.projector.recompute(cycle.id).open_total
        if failed > total:
            logger.warning(
                "Preparing %s: %d open exceptions exceed %d entries; widening total",
                cycle.id, failed, total,
            )
            total = failed

        artifact = record_artifact(self.repo, cycle, attempt, total, now)
        summary = ReportSummary.build(attempt, total, failed, artifact.id, now)
        cycle.report_summaries.append(summary)
        cycle.ul360_status = UL360Status.PREPARED

        self.repo.ledger.record(
            actor=self.system_actor,
            action="Prepared UL 360 Files",
            target=f"Cycle: {cycle.name}",
            details=(f"Generated {artifact.filename}: {summary.successful_entries} of "
                     f"{summary.total_entries} entries ready, {summary.failed_entries} failed"),
            at=now,
            cycle_id=cycle.id,
        )
        self.deferred.events_for(cycle.id).on_artifact_prepared(
            attempt, artifact.id, summary.total_entries, summary.failed_entries,
        )

    # ─── Handoff ─────────────────────────────────────────────────────

    def _await_verification(self, cycle_id: str) -> None:
        with self.repo.lock:
            cycle = self.repo.cycles.get(cycle_id)
            if cycle is None or cycle.status != CycleStatus.IN_PROGRESS:
                return
            now = self.scheduler.now()
            cycle.transition(CycleStatus.AWAITING_VERIFICATION)
            cycle.ul360_status = UL360Status.UPLOADED
            cycle.stamp_step(OrchestrationStep.AWAIT_VERIFICATION, now)
            self.repo.ledger.record(
                actor=self.system_actor,
                action="Awaiting Verification",
                target=f"Cycle: {cycle.name}",
                details="Files uploaded to UL 360, awaiting human verification",
                at=now,
                cycle_id=cycle_id,
            )
            elapsed = now - (cycle.actual_start or now)
        self.deferred.events_for(cycle_id).on_cycle_end(cycle.status.value, elapsed)
        logger.info("Cycle %s awaiting verification after %.1fs", cycle_id, elapsed)
