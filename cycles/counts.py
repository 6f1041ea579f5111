"""
ESG Reporting — Exception Counts Projection

Aggregate open/resolved counts per cycle, derived purely from the
exception store. Recomputed after every exception mutation, before any
caller can observe the cycle.

  meter          open or in_review Registry exceptions
  data           open or in_review Reading / UploadFailure exceptions
  meter_resolved closed Registry exceptions
  data_resolved  closed Reading / UploadFailure exceptions

Dismissed exceptions count as closed, so meter + meter_resolved always
equals every Registry exception ever created for the cycle.
"""

from __future__ import annotations

from typing import Iterable

from cycles.types import ExceptionCounts, ExceptionItem


def project_counts(items: Iterable[ExceptionItem]) -> ExceptionCounts:
    counts = ExceptionCounts()
    for item in items:
        if item.is_meter:
            if item.is_open:
                counts.meter += 1
            else:
                counts.meter_resolved += 1
        elif item.is_open:
            counts.data += 1
        else:
            counts.data_resolved += 1
    return counts


class CountsProjector:
    """Writes the projection onto each cycle record."""

    def __init__(self, repo):
        self.repo = repo

    def recompute(self, cycle_id: str) -> ExceptionCounts:
        counts = project_counts(self.repo.exceptions.for_cycle(cycle_id))
        cycle = self.repo.cycles.get(cycle_id)
        if cycle is not None:
            cycle.exception_counts = counts
        return counts

    def recompute_all(self) -> None:
        for cycle_id in self.repo.cycles:
            self.recompute(cycle_id)
