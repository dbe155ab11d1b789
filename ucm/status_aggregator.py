"""
Status Aggregation
==================

A use case's status is derived from its scenarios:

- the minimum rank among non-deprecated scenario statuses
  (planned < in_progress < implemented < tested < deployed)
- deprecated scenarios are ignored unless every scenario is deprecated,
  in which case the use case is deprecated
- a use case without scenarios is planned

The result depends only on the multiset of child statuses, so it is
order-independent and recomputing it without a mutation is a no-op.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from ucm.models import Status


def aggregate(child_statuses: Iterable[Status | str]) -> Status:
    """
    Compute the aggregate status of a parent from its children's statuses.

    Example:
        >>> aggregate([Status.IMPLEMENTED, Status.TESTED, Status.IN_PROGRESS])
        <Status.IN_PROGRESS: 'in_progress'>
        >>> aggregate([])
        <Status.PLANNED: 'planned'>
    """
    statuses = [Status.parse(s) for s in child_statuses]
    if not statuses:
        return Status.PLANNED
    active = [s for s in statuses if not s.is_terminal]
    if not active:
        return Status.DEPRECATED
    return min(active, key=lambda s: s.rank)


@dataclass
class StatusSummary:
    """Per-status counts of a set of scenarios, with the aggregate."""

    counts: dict[Status, int] = field(default_factory=dict)
    aggregate: Status = Status.PLANNED

    @classmethod
    def from_statuses(cls, child_statuses: Iterable[Status | str]) -> "StatusSummary":
        statuses = [Status.parse(s) for s in child_statuses]
        return cls(counts=dict(Counter(statuses)), aggregate=aggregate(statuses))

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def completion_ratio(self) -> float:
        """Share of non-deprecated children that reached tested or beyond."""
        active = {s: n for s, n in self.counts.items() if not s.is_terminal}
        total = sum(active.values())
        if total == 0:
            return 0.0
        done = sum(n for s, n in active.items() if s.rank >= Status.TESTED.rank)
        return done / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": {s.value: n for s, n in self.counts.items()},
            "aggregate": self.aggregate.value,
            "total": self.total,
            "completion_ratio": self.completion_ratio,
        }
