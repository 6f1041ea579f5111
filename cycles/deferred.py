"""
ESG Reporting — Deferred Work

Shared plumbing for continuations the orchestrator and verification
coordinator leave running after a request returns. Each continuation
is scheduled with retry; when retries are exhausted the cycle keeps its
current step, records ``last_error`` and the ledger gets a
"Deferred Work Failed" entry, so a failed pass is always inspectable.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable

from cycles.types import ArtifactRef, Market, ReportingCycle
from infra.logging import CycleEventLogger
from infra.retry import RetryPolicy, policy_from_config, schedule_with_retry

logger = logging.getLogger("esg_reporting.deferred")

DEFAULT_SYSTEM_ACTOR = "HCL Universal Orchestrator"


def record_artifact(
    repo,
    cycle: ReportingCycle,
    attempt_number: int,
    record_count: int,
    at: float,
    suffix: str = "",
) -> ArtifactRef:
    """Register an opaque upload-file reference for the cycle."""
    market = cycle.markets[0] if cycle.markets else Market.UK
    label = suffix or (f" (Attempt {attempt_number})" if attempt_number > 1 else "")
    artifact = ArtifactRef(
        id=f"art-{cycle.id.removeprefix('cycle-')}-{len(repo.artifacts_for(cycle.id)) + 1}",
        cycle_id=cycle.id,
        filename=f"{market.value} Upload File - {cycle.reporting_period}{label}.xlsx",
        market=market,
        generated_at=at,
        record_count=record_count,
    )
    repo.artifacts.append(artifact)
    return artifact


class DeferredWork:
    """
    Runs cycle continuations on a scheduler with retry and a per-cycle
    structured event logger.
    """

    def __init__(
        self,
        repo,
        scheduler,
        policy: RetryPolicy | None = None,
        system_actor: str = DEFAULT_SYSTEM_ACTOR,
        rng: random.Random | None = None,
    ):
        self.repo = repo
        self.scheduler = scheduler
        self.policy = policy or policy_from_config(None)
        self.system_actor = system_actor
        self.rng = rng or random.Random()
        self._events: dict[str, CycleEventLogger] = {}

    @classmethod
    def from_config(cls, repo, scheduler, config: dict[str, Any], rng=None) -> DeferredWork:
        return cls(
            repo, scheduler,
            policy=policy_from_config(config),
            system_actor=config.get("system_actor") or DEFAULT_SYSTEM_ACTOR,
            rng=rng,
        )

    # ─── Event Loggers ───────────────────────────────────────────────

    def start_trace(self, cycle_id: str) -> CycleEventLogger:
        """New trace for a fresh cycle run."""
        events = CycleEventLogger(cycle_id)
        self._events[cycle_id] = events
        return events

    def events_for(self, cycle_id: str) -> CycleEventLogger:
        """The cycle's current trace; started on demand for cycles loaded from a fixture."""
        events = self._events.get(cycle_id)
        if events is None:
            events = self.start_trace(cycle_id)
        return events

    # ─── Scheduling ──────────────────────────────────────────────────

    def run_later(self, cycle_id: str, delay: float, fn: Callable[[], None], label: str):
        events = self.events_for(cycle_id)

        def on_retry(error: Exception, attempt: int, backoff: float) -> None:
            events.on_deferred_failure(label, attempt, str(error), final=False)

        def on_exhausted(error: Exception, attempts: int) -> None:
            events.on_deferred_failure(label, attempts, str(error), final=True)
            with self.repo.lock:
                cycle = self.repo.cycles.get(cycle_id)
                if cycle is None:
                    return
                cycle.last_error = f"{label}: {error}"
                self.repo.ledger.record(
                    actor=self.system_actor,
                    action="Deferred Work Failed",
                    target=f"Cycle: {cycle.name}",
                    details=f"{label} failed after {attempts} attempt(s): {error}",
                    at=self.scheduler.now(),
                    cycle_id=cycle_id,
                )

        return schedule_with_retry(
            self.scheduler, delay, fn, self.policy,
            label=label, on_retry=on_retry, on_exhausted=on_exhausted, rng=self.rng,
        )
