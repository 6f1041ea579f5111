"""
ESG Reporting — Repository

In-memory state for the reporting engine: the cycle table, the
exception store, upload artifact references, users, curated exception
scenarios, and the activity ledger. Replaces module-level tables with
one object that has an explicit lifecycle (init / reset / dispose) and
is injected into the orchestrator and verification coordinator.

State lives for the process lifetime only.
"""

from __future__ import annotations

import copy
import threading
from collections import Counter
from typing import Any

from cycles.errors import CycleNotFound, ExceptionNotFound
from cycles.ledger import ActivityLedger
from cycles.types import (
    ArtifactRef,
    ExceptionItem,
    ExceptionType,
    ReportingCycle,
    User,
)


class ExceptionStore:
    """Exception records keyed by cycle. Pure data plus mutation primitives."""

    def __init__(self):
        self._by_cycle: dict[str, list[ExceptionItem]] = {}
        self._index: dict[str, ExceptionItem] = {}
        # Every exception ever created, by cycle and type
        self._created: dict[str, Counter] = {}

    def add(self, cycle_id: str, items: list[ExceptionItem]) -> None:
        for item in items:
            if item.id in self._index:
                raise ValueError(f"Duplicate exception id: {item.id}")
        bucket = self._by_cycle.setdefault(cycle_id, [])
        created = self._created.setdefault(cycle_id, Counter())
        for item in items:
            item.cycle_id = cycle_id
            bucket.append(item)
            self._index[item.id] = item
            created[item.type] += 1

    def get(self, exception_id: str) -> ExceptionItem | None:
        return self._index.get(exception_id)

    def require(self, exception_id: str) -> ExceptionItem:
        item = self._index.get(exception_id)
        if item is None:
            raise ExceptionNotFound(exception_id)
        return item

    def for_cycle(self, cycle_id: str) -> list[ExceptionItem]:
        return list(self._by_cycle.get(cycle_id, []))

    def cycle_ids(self) -> list[str]:
        return list(self._by_cycle)

    def created_totals(self, cycle_id: str) -> dict[str, int]:
        """Totals ever created for a cycle, split meter (Registry) vs data."""
        created = self._created.get(cycle_id, Counter())
        meter = created[ExceptionType.REGISTRY]
        return {"meter": meter, "data": sum(created.values()) - meter}

    def clear(self) -> None:
        self._by_cycle.clear()
        self._index.clear()
        self._created.clear()


class _Transaction:
    """
    Repository transaction context manager.

    Snapshots every table on entry and restores the snapshot if the
    block raises. Nested blocks join the outermost transaction. Ledger
    listeners hear about entries only once the outermost block commits.
    """

    def __init__(self, repo: ReportingRepository):
        self.repo = repo
        self._snapshot: dict[str, Any] | None = None

    def __enter__(self):
        self.repo.lock.acquire()
        if self.repo._tx_depth == 0:
            self._snapshot = self.repo._snapshot()
            self.repo.ledger.hold()
        self.repo._tx_depth += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.repo._tx_depth -= 1
            if self._snapshot is not None:
                if exc_type is not None:
                    self.repo._restore(self._snapshot)
                self.repo.ledger.release(deliver=exc_type is None)
        finally:
            self.repo.lock.release()
        return False


class ReportingRepository:
    """
    Single owner of all mutable reporting state.

    A re-entrant lock serializes operations so a reader never observes
    a multi-field mutation half-applied, even when continuations run on
    timer threads.
    """

    def __init__(self, fixture: Any = None):
        self.lock = threading.RLock()
        self.cycles: dict[str, ReportingCycle] = {}
        self.exceptions = ExceptionStore()
        self.artifacts: list[ArtifactRef] = []
        self.users: list[User] = []
        # cycle id → curated exceptions used at Validate instead of generation
        self.scenarios: dict[str, list[ExceptionItem]] = {}
        self.ledger = ActivityLedger(cycle_lookup=self.cycles.get)
        self._tx_depth = 0
        self._initialized = False
        if fixture is not None:
            self.init(fixture)

    # ─── Lifecycle ───────────────────────────────────────────────────

    def init(self, fixture: Any) -> None:
        """Load a baseline fixture into an empty repository."""
        with self.lock:
            if self._initialized:
                raise RuntimeError("Repository already initialized; use reset()")
            fixture = copy.deepcopy(fixture)
            for cycle in fixture.cycles:
                self.cycles[cycle.id] = cycle
            for cycle_id, items in fixture.exceptions.items():
                self.exceptions.add(cycle_id, items)
            self.artifacts.extend(fixture.artifacts)
            self.users.extend(fixture.users)
            self.scenarios.update(fixture.scenarios)
            self._initialized = True

    def reset(self, fixture: Any) -> None:
        """Discard all state and reload the fixture."""
        with self.lock:
            self.dispose()
            self.init(fixture)

    def dispose(self) -> None:
        with self.lock:
            self.cycles.clear()
            self.exceptions.clear()
            self.artifacts.clear()
            self.users.clear()
            self.scenarios.clear()
            self.ledger.clear()
            self._initialized = False

    # ─── Lookups ─────────────────────────────────────────────────────

    def require_cycle(self, cycle_id: str) -> ReportingCycle:
        cycle = self.cycles.get(cycle_id)
        if cycle is None:
            raise CycleNotFound(cycle_id)
        return cycle

    def artifacts_for(self, cycle_id: str | None = None) -> list[ArtifactRef]:
        if cycle_id:
            return [a for a in self.artifacts if a.cycle_id == cycle_id]
        return list(self.artifacts)

    # ─── Transactions ────────────────────────────────────────────────

    def transaction(self):
        """
        Context manager for all-or-nothing mutations.

        Usage:
            with repo.transaction():
                ...mutate several exceptions...
                # Any raise restores every table to its entry state
        """
        return _Transaction(self)

    def _snapshot(self) -> dict[str, Any]:
        return copy.deepcopy({
            "cycles": self.cycles,
            "exceptions": self.exceptions,
            "artifacts": self.artifacts,
            "ledger": self.ledger.entries(),
        })

    def _restore(self, snapshot: dict[str, Any]) -> None:
        # Mutate in place so the ledger's cycle lookup stays bound
        self.cycles.clear()
        self.cycles.update(snapshot["cycles"])
        self.exceptions = snapshot["exceptions"]
        self.artifacts[:] = snapshot["artifacts"]
        self.ledger.restore(snapshot["ledger"])
