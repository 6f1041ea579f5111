"""
ESG Reporting — Verification Coordinator

The human gate between an uploaded artifact and an archived cycle.

  verify(success=True), first attempt   registry check surfaces two
                                        late defects; reprocessing is
                                        scheduled, cycle stays awaiting
  verify(success=True), later attempts  cycle completes and is archived
  verify(success=False)                 upload marked failed; caller
                                        regenerates via upload_failure_file
  upload_failure_file                   prepared now, uploaded after a delay
  reject_upload                         artifact rejected outright → failed

verify(success=True) is refused with ExceptionsOutstanding while any
meter or data exception is open, and with InvalidCycleState unless the
upload is in the uploaded state (a failed upload must be regenerated
first, and a pending regeneration must land).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from cycles.counts import CountsProjector
from cycles.deferred import DeferredWork, record_artifact
from cycles.errors import ExceptionsOutstanding, InvalidCycleState, InvalidUpdate
from cycles.exception_engine import ExceptionEngine
from cycles.types import (
    CycleStatus,
    OrchestrationStep,
    ReportSummary,
    ReportingCycle,
    UL360Status,
)

logger = logging.getLogger("esg_reporting.verification")


@dataclass
class VerificationResult:
    cycle: ReportingCycle
    verification_failed: bool = False
    new_exceptions_count: int = 0


class VerificationCoordinator:
    """
    Args:
        repo:           ReportingRepository
        engine:         ExceptionEngine, for late-defect injection
        projector:      CountsProjector, consulted by the gate
        deferred:       DeferredWork shared with the orchestrator
        config:         Loaded config (``verification`` section)
        reprocess_hook: Optional callable run before reprocessing writes
                        anything; raising makes the pass retry
    """

    def __init__(
        self,
        repo,
        engine: ExceptionEngine,
        projector: CountsProjector,
        deferred: DeferredWork,
        config: dict[str, Any] | None = None,
        reprocess_hook: Callable[[ReportingCycle], None] | None = None,
    ):
        self.repo = repo
        self.engine = engine
        self.projector = projector
        self.deferred = deferred
        self.scheduler = deferred.scheduler
        self.reprocess_hook = reprocess_hook

        verification = (config or {}).get("verification") or {}
        self.reprocess_delay = float(verification.get("reprocess_delay_seconds", 3.0))
        self.regeneration_delay = float(verification.get("regeneration_delay_seconds", 2.0))

    @property
    def system_actor(self) -> str:
        return self.deferred.system_actor

    def _require_awaiting(self, cycle_id: str, operation: str) -> ReportingCycle:
        cycle = self.repo.require_cycle(cycle_id)
        if cycle.status != CycleStatus.AWAITING_VERIFICATION:
            raise InvalidCycleState(
                f"Cannot {operation} cycle {cycle_id} in status {cycle.status.value}",
                cycle_id=cycle_id, status=cycle.status.value,
            )
        return cycle

    # ─── Verify ──────────────────────────────────────────────────────

    def verify(self, cycle_id: str, actor: str, success: bool = True) -> VerificationResult:
        with self.repo.lock:
            cycle = self._require_awaiting(cycle_id, "verify")
            if success:
                if cycle.ul360_status != UL360Status.UPLOADED:
                    raise InvalidCycleState(
                        f"Cannot verify cycle {cycle_id}: upload is {cycle.ul360_status.value}; "
                        f"regenerate it via a failure file first",
                        cycle_id=cycle_id, ul360_status=cycle.ul360_status.value,
                    )
                counts = self.projector.recompute(cycle_id)
                if counts.open_total:
                    raise ExceptionsOutstanding(cycle_id, counts.meter, counts.data)

            cycle.verification_attempts += 1
            attempt = cycle.verification_attempts
            now = self.scheduler.now()
            events = self.deferred.events_for(cycle_id)

            if not success:
                cycle.ul360_status = UL360Status.FAILED
                self.repo.ledger.record(
                    actor=actor,
                    action="Rejected UL 360 Upload",
                    target=f"Cycle: {cycle.name}",
                    details=f"Verification attempt {attempt} failed; upload a failure file to regenerate",
                    at=now,
                    cycle_id=cycle_id,
                )
                events.on_verification_attempt(attempt, actor, False, "upload_failed")
                return VerificationResult(cycle)

            if attempt == 1:
                return self._late_defects(cycle, actor, attempt, now)

            cycle.ul360_status = UL360Status.VERIFIED
            cycle.transition(CycleStatus.COMPLETED)
            cycle.stamp_step(OrchestrationStep.ARCHIVE, now)
            cycle.completed_date = now
            self.repo.ledger.record(
                actor=actor,
                action="Verified UL 360 Upload",
                target=f"Cycle: {cycle.name}",
                details=f"Verification attempt {attempt} succeeded; cycle archived",
                at=now,
                cycle_id=cycle_id,
            )
            events.on_verification_attempt(attempt, actor, True, "completed")
            events.on_cycle_end(cycle.status.value, now - (cycle.actual_start or now))
            logger.info("Cycle %s completed on verification attempt %d", cycle_id, attempt)
            return VerificationResult(cycle)

    def _late_defects(self, cycle: ReportingCycle, actor: str, attempt: int, now: float) -> VerificationResult:
        items = self.engine.inject_late_defects(cycle.id, attempt)
        self.repo.ledger.record(
            actor=actor,
            action="Verification Failed - New Exceptions Found",
            target=f"Cycle: {cycle.name}",
            details=(f"UL 360 verification found {len(items)} new exceptions; "
                     f"reprocessing failed entries"),
            at=now,
            cycle_id=cycle.id,
        )
        self.deferred.events_for(cycle.id).on_verification_attempt(
            attempt, actor, True, "late_defects",
        )
        self.deferred.run_later(
            cycle.id, self.reprocess_delay,
            lambda: self._reprocess(cycle.id, len(items)),
            label=f"{cycle.id}:reprocess",
        )
        logger.info("Verification of %s surfaced %d late defect(s); reprocessing in %.1fs",
                    cycle.id, len(items), self.reprocess_delay)
        return VerificationResult(cycle, verification_failed=True, new_exceptions_count=len(items))

    def _reprocess(self, cycle_id: str, new_defects: int) -> None:
        with self.repo.lock:
            cycle = self.repo.cycles.get(cycle_id)
            if cycle is None or cycle.is_terminal:
                logger.info("Skipping reprocessing for %s: cycle gone or closed", cycle_id)
                return
            if self.reprocess_hook is not None:
                self.reprocess_hook(cycle)

            with self.repo.transaction():
                cycle = self.repo.cycles[cycle_id]
                now = self.scheduler.now()
                previous = cycle.report_summaries[-1] if cycle.report_summaries else None
                attempt_number = len(cycle.report_summaries) + 1
                total = (previous.failed_entries if previous else 0) + new_defects
                failed = self.projector.recompute(cycle_id).open_total
                if failed > total:
                    logger.warning(
                        "Reprocessing %s: %d open exceptions exceed %d entries; widening total",
                        cycle_id, failed, total,
                    )
                    total = failed

                artifact = record_artifact(self.repo, cycle, attempt_number, total, now)
                summary = ReportSummary.build(attempt_number, total, failed, artifact.id, now)
                cycle.report_summaries.append(summary)
                cycle.last_error = None
                self.repo.ledger.record(
                    actor=self.system_actor,
                    action=f"Reprocessed Failed Entries (Attempt {attempt_number})",
                    target=f"Cycle: {cycle.name}",
                    details=(f"Regenerated upload file with {summary.total_entries} entries, "
                             f"{summary.failed_entries} still failing"),
                    at=now,
                    cycle_id=cycle_id,
                )
        self.deferred.events_for(cycle_id).on_reprocess_complete(attempt_number, summary.failed_entries)

    # ─── Failure File ────────────────────────────────────────────────

    def upload_failure_file(self, cycle_id: str, actor: str, file_ref: str) -> ReportingCycle:
        """Accept an external failure description and regenerate the upload after a delay."""
        with self.repo.lock:
            cycle = self._require_awaiting(cycle_id, "upload a failure file for")
            if not file_ref:
                raise InvalidUpdate("A failure file reference is required")

            now = self.scheduler.now()
            cycle.ul360_status = UL360Status.PREPARED
            cycle.current_step = OrchestrationStep.PREPARE_UL360
            self.repo.ledger.record(
                actor=actor,
                action="Uploaded Failure File",
                target=f"Cycle: {cycle.name}",
                details=f"Uploaded failure file: {file_ref}",
                at=now,
                cycle_id=cycle_id,
            )
            self.deferred.run_later(
                cycle_id, self.regeneration_delay,
                lambda: self._regenerate(cycle_id, file_ref),
                label=f"{cycle_id}:regenerate",
            )
            return cycle

    def _regenerate(self, cycle_id: str, file_ref: str) -> None:
        with self.repo.lock:
            cycle = self.repo.cycles.get(cycle_id)
            if cycle is None or cycle.status != CycleStatus.AWAITING_VERIFICATION:
                return
            with self.repo.transaction():
                cycle = self.repo.cycles[cycle_id]
                now = self.scheduler.now()
                latest = cycle.report_summaries[-1] if cycle.report_summaries else None
                artifact = record_artifact(
                    self.repo, cycle, len(cycle.report_summaries),
                    latest.total_entries if latest else 0, now, suffix=" (Regenerated)",
                )
                cycle.ul360_status = UL360Status.UPLOADED
                cycle.current_step = OrchestrationStep.AWAIT_VERIFICATION
                cycle.last_error = None
                self.repo.ledger.record(
                    actor=self.system_actor,
                    action="Regenerated UL 360 Files",
                    target=f"Cycle: {cycle.name}",
                    details=f"Regenerated {artifact.filename} from {file_ref}",
                    at=now,
                    cycle_id=cycle_id,
                )

    # ─── Outright Rejection ──────────────────────────────────────────

    def reject_upload(self, cycle_id: str, actor: str, reason: str = "") -> ReportingCycle:
        with self.repo.lock:
            cycle = self._require_awaiting(cycle_id, "reject the upload of")
            now = self.scheduler.now()
            cycle.transition(CycleStatus.FAILED)
            cycle.ul360_status = UL360Status.FAILED
            self.repo.ledger.record(
                actor=actor,
                action="Rejected Upload Artifact",
                target=f"Cycle: {cycle.name}",
                details=reason or "Upload artifact rejected",
                at=now,
                cycle_id=cycle_id,
            )
            events = self.deferred.events_for(cycle_id)
            events.on_cycle_end(cycle.status.value, now - (cycle.actual_start or now))
            return cycle
