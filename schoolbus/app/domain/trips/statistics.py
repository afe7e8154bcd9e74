"""
Trip completion statistics.

Pure function: no I/O, no side effects.
"""

from typing import List, Sequence
from pydantic import BaseModel


class TripStatistics(BaseModel):
    total_children: int
    checked_in_children: int
    missed_children: List[str]


def calculate_trip_statistics(children_ids: Sequence[str], checked_in_children: Sequence[str]) -> TripStatistics:
    """
    Derive completion counts for a trip.

    ``missed_children`` is ``children_ids - checked_in_children`` in
    ``children_ids`` order. Only distinct ids that belong to the trip are
    counted as checked in, so
    ``total_children == checked_in_children + len(missed_children)``.
    """
    expected = list(dict.fromkeys(children_ids))
    arrived = set(checked_in_children)

    missed = [child_id for child_id in expected if child_id not in arrived]

    return TripStatistics(
        total_children=len(expected),
        checked_in_children=len(expected) - len(missed),
        missed_children=missed,
    )
