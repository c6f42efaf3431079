"""
Reading vs Chronological Order

Reading order is page order. Chronological order uses explicit
``chronological_order`` values when both events carry one, otherwise puts
flashbacks first, otherwise falls back to page order.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import cmp_to_key

from storyline_kg.types.entities import TimelineEvent
from storyline_kg.types.timeline import OrderedTimeline, OrderingDiscrepancy


def _chronological_cmp(a: TimelineEvent, b: TimelineEvent) -> int:
    if a.chronological_order is not None and b.chronological_order is not None:
        return a.chronological_order - b.chronological_order
    if a.is_flashback != b.is_flashback:
        return -1 if a.is_flashback else 1
    return a.page_number - b.page_number


def order_timeline(events: Sequence[TimelineEvent], tolerance: int = 2) -> OrderedTimeline:
    """
    Order events both ways and report where they disagree.

    A discrepancy is a non-flashback event whose reading and chronological
    positions differ by more than ``tolerance``. Discrepancies are sorted
    by gap, largest first.
    """
    reading = sorted(events, key=lambda e: (e.page_number, e.id))
    chronological = sorted(reading, key=cmp_to_key(_chronological_cmp))

    chrono_position = {e.id: i for i, e in enumerate(chronological)}
    discrepancies = []
    for position, event in enumerate(reading):
        gap = abs(position - chrono_position[event.id])
        if gap > tolerance and not event.is_flashback:
            discrepancies.append(
                OrderingDiscrepancy(
                    event_id=event.id,
                    reading_position=position,
                    chronological_position=chrono_position[event.id],
                    gap=gap,
                )
            )
    discrepancies.sort(key=lambda d: d.gap, reverse=True)

    return OrderedTimeline(
        reading_order=[e.id for e in reading],
        chronological_order=[e.id for e in chronological],
        discrepancies=discrepancies,
        flashback_count=sum(1 for e in events if e.is_flashback),
    )
