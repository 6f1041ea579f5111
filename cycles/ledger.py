"""
ESG Reporting — Activity Ledger

Append-only, reverse-chronological log of every state change. Each
entry names the actor (a user or the orchestrator's system identity),
the action, the target, and free-text detail. Entries that reference a
cycle are mirrored into that cycle's own activity slice.

No entry is ever edited or removed; the only writes are record() and
the repository-level reset. While a repository transaction is open,
listener notifications are held and delivered only if it commits.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from cycles.types import ActivityLogEntry, ReportingCycle

logger = logging.getLogger("esg_reporting.ledger")

Listener = Callable[[ActivityLogEntry], None]


class ActivityLedger:
    """Append-only activity log, read newest first."""

    def __init__(self, cycle_lookup: Callable[[str], ReportingCycle | None] | None = None):
        self._cycle_lookup = cycle_lookup
        self._entries: list[ActivityLogEntry] = []  # oldest first internally
        self._listeners: list[Listener] = []
        # Entries awaiting notification while a transaction is open
        self._held: list[ActivityLogEntry] | None = None

    def record(
        self,
        actor: str,
        action: str,
        target: str,
        details: str,
        at: float,
        cycle_id: str | None = None,
        exception_id: str | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=f"act_{uuid.uuid4().hex[:12]}",
            timestamp=at,
            actor=actor,
            action=action,
            target=target,
            details=details,
            cycle_id=cycle_id,
            exception_id=exception_id,
        )
        self._entries.append(entry)

        if cycle_id and self._cycle_lookup is not None:
            cycle = self._cycle_lookup(cycle_id)
            if cycle is not None:
                cycle.activity_log.insert(0, entry)

        logger.debug("ledger: %s | %s | %s", actor, action, target)

        if self._held is not None:
            self._held.append(entry)
        else:
            self._notify(entry)
        return entry

    def _notify(self, entry: ActivityLogEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.warning("Activity listener failed: %s", e)

    def hold(self) -> None:
        """Queue notifications until release(). Repository use only."""
        if self._held is None:
            self._held = []

    def release(self, deliver: bool = True) -> None:
        """Deliver (commit) or drop (rollback) notifications queued since hold()."""
        held, self._held = self._held or [], None
        if deliver:
            for entry in held:
                self._notify(entry)

    def entries(self, cycle_id: str | None = None) -> list[ActivityLogEntry]:
        """Entries newest first, optionally restricted to one cycle."""
        ordered = list(reversed(self._entries))
        if cycle_id:
            return [e for e in ordered if e.cycle_id == cycle_id]
        return ordered

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback for every new entry. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def __len__(self) -> int:
        return len(self._entries)

    def restore(self, newest_first: list[ActivityLogEntry]) -> None:
        """Roll back to a snapshot taken with entries(). Repository use only."""
        self._entries = list(reversed(newest_first))

    def clear(self) -> None:
        self._entries.clear()
