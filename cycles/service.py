"""
ESG Reporting — Service Facade

The operation set consumers call. Wires the repository, exception
engine, counts projector, orchestrator and verification coordinator
together around one scheduler.

Every operation runs under the repository lock. Reads return deep
copies, so a caller can hold a cycle across continuations without
seeing it change underneath them; re-query to observe progress.

Usage:
    from cycles import ReportingService, VirtualScheduler

    scheduler = VirtualScheduler()
    service = ReportingService(scheduler=scheduler)
    service.run_cycle("cycle-2026-02")
    scheduler.run_until_idle()
    service.get_cycle("cycle-2026-02").status   # awaiting_verification
"""

from __future__ import annotations

import copy
import logging
import random
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from cycles.counts import CountsProjector
from cycles.deferred import DeferredWork
from cycles.exception_engine import BULK_RESOLVE_NOTE, BulkResolveResult, ExceptionEngine
from cycles.fixtures import Fixture, build_baseline, data_freshness
from cycles.orchestrator import CycleOrchestrator, StepHandler
from cycles.scheduler import Scheduler, ThreadingScheduler
from cycles.store import ReportingRepository
from cycles.types import (
    ActivityLogEntry,
    ArtifactRef,
    DataFreshness,
    ExceptionItem,
    FixKind,
    OrchestrationStep,
    ReportingCycle,
    User,
)
from cycles.verification import VerificationCoordinator, VerificationResult
from infra.config import deep_merge, load_config

logger = logging.getLogger("esg_reporting.service")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def load_service_config(
    overrides: Mapping[str, Any] | None = None,
    env: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """Shipped defaults, environment overlay and ESG_* variables, then ``overrides``."""
    config = load_config(DEFAULT_CONFIG_PATH, env=env, include_env_vars=include_env_vars)
    if overrides:
        config = deep_merge(config, dict(overrides))
    return config


class ReportingService:
    """
    Args:
        scheduler:       Scheduler for deferred work (ThreadingScheduler if omitted)
        config:          Overrides merged over the shipped config
        fixture_factory: Builds the baseline state; called on init and reset_all
        step_handlers:   Optional per-step hooks for the orchestrator
        reprocess_hook:  Optional hook run before each reprocessing pass
        rng:             Source of step latency and entry-count jitter
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        config: Mapping[str, Any] | None = None,
        fixture_factory: Callable[[], Fixture] = build_baseline,
        step_handlers: dict[OrchestrationStep, StepHandler] | None = None,
        reprocess_hook: Callable[[ReportingCycle], None] | None = None,
        rng: random.Random | None = None,
        include_env_vars: bool = True,
    ):
        self.config = load_service_config(config, include_env_vars=include_env_vars)
        self.scheduler = scheduler or ThreadingScheduler()
        self.fixture_factory = fixture_factory

        self.repo = ReportingRepository(fixture_factory())
        self.projector = CountsProjector(self.repo)
        self.projector.recompute_all()

        self.deferred = DeferredWork.from_config(self.repo, self.scheduler, self.config, rng=rng)
        self.engine = ExceptionEngine(self.repo, self.projector, self.scheduler.now, self.config)
        self.orchestrator = CycleOrchestrator(
            self.repo, self.engine, self.projector, self.deferred,
            config=self.config, step_handlers=step_handlers,
        )
        self.verification = VerificationCoordinator(
            self.repo, self.engine, self.projector, self.deferred,
            config=self.config, reprocess_hook=reprocess_hook,
        )

    @property
    def system_actor(self) -> str:
        return self.deferred.system_actor

    def _read(self, value):
        with self.repo.lock:
            return copy.deepcopy(value)

    # ─── Cycles ──────────────────────────────────────────────────────

    def run_cycle(self, cycle_id: str, actor: str | None = None) -> ReportingCycle:
        with self.repo.lock:
            return copy.deepcopy(self.orchestrator.run_cycle(cycle_id, actor))

    def get_cycles(self) -> list[ReportingCycle]:
        with self.repo.lock:
            return copy.deepcopy(list(self.repo.cycles.values()))

    def get_cycle(self, cycle_id: str) -> ReportingCycle | None:
        with self.repo.lock:
            return copy.deepcopy(self.repo.cycles.get(cycle_id))

    # ─── Exceptions ──────────────────────────────────────────────────

    def get_exceptions(self, cycle_id: str | None = None) -> list[ExceptionItem]:
        with self.repo.lock:
            if cycle_id:
                items = self.repo.exceptions.for_cycle(cycle_id)
            else:
                items = [e for cid in self.repo.exceptions.cycle_ids()
                         for e in self.repo.exceptions.for_cycle(cid)]
            return copy.deepcopy(items)

    def get_exception(self, exception_id: str) -> ExceptionItem | None:
        with self.repo.lock:
            return copy.deepcopy(self.repo.exceptions.get(exception_id))

    def update_exception(self, exception_id: str, updates: Mapping[str, Any], actor: str) -> ExceptionItem:
        with self.repo.lock:
            return copy.deepcopy(self.engine.update_exception(exception_id, updates, actor))

    def resolve_exception(self, exception_id: str, actor: str, note: str = "") -> ExceptionItem:
        with self.repo.lock:
            return copy.deepcopy(self.engine.resolve_exception(exception_id, actor, note))

    def add_comment(self, exception_id: str, actor: str, text: str) -> ExceptionItem:
        with self.repo.lock:
            return copy.deepcopy(self.engine.add_comment(exception_id, actor, text))

    def apply_fix(
        self,
        exception_id: str,
        fix_kind: FixKind | str,
        value: Any = None,
        actor: str = "",
    ) -> ExceptionItem:
        with self.repo.lock:
            return copy.deepcopy(self.engine.apply_fix(exception_id, fix_kind, value, actor))

    def bulk_resolve(
        self,
        cycle_id: str,
        actor: str,
        note: str = BULK_RESOLVE_NOTE,
        exception_ids: Iterable[str] | None = None,
    ) -> BulkResolveResult:
        with self.repo.lock:
            return self.engine.bulk_resolve(cycle_id, actor, note, exception_ids)

    # ─── Verification ────────────────────────────────────────────────

    def verify(self, cycle_id: str, actor: str, success: bool = True) -> VerificationResult:
        with self.repo.lock:
            result = self.verification.verify(cycle_id, actor, success)
            return VerificationResult(
                cycle=copy.deepcopy(result.cycle),
                verification_failed=result.verification_failed,
                new_exceptions_count=result.new_exceptions_count,
            )

    def upload_failure_file(self, cycle_id: str, actor: str, file_ref: str) -> ReportingCycle:
        with self.repo.lock:
            return copy.deepcopy(self.verification.upload_failure_file(cycle_id, actor, file_ref))

    def reject_upload(self, cycle_id: str, actor: str, reason: str = "") -> ReportingCycle:
        with self.repo.lock:
            return copy.deepcopy(self.verification.reject_upload(cycle_id, actor, reason))

    # ─── Ledger, Artifacts, Users ────────────────────────────────────

    def get_activity_log(self, cycle_id: str | None = None) -> list[ActivityLogEntry]:
        with self.repo.lock:
            return self.repo.ledger.entries(cycle_id)

    def subscribe(self, listener: Callable[[ActivityLogEntry], None]) -> Callable[[], None]:
        return self.repo.ledger.subscribe(listener)

    def get_artifacts(self, cycle_id: str | None = None) -> list[ArtifactRef]:
        return self._read(self.repo.artifacts_for(cycle_id))

    def get_users(self) -> list[User]:
        return self._read(self.repo.users)

    def get_data_freshness(self) -> list[DataFreshness]:
        """Source-data freshness per market, aged against the scheduler clock."""
        return data_freshness(self.scheduler.now())

    # ─── Lifecycle ───────────────────────────────────────────────────

    def reset_all(self) -> None:
        """Cancel outstanding continuations and reload the baseline fixture."""
        with self.repo.lock:
            cancelled = self.scheduler.dispose()
            self.repo.reset(self.fixture_factory())
            self.projector.recompute_all()
        logger.info("Reset to baseline (%d pending continuation(s) cancelled)", cancelled)

    def dispose(self) -> None:
        with self.repo.lock:
            self.scheduler.dispose()
            self.repo.dispose()
