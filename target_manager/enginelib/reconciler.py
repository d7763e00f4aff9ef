"""Merge an imported batch into the current marker list."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from .marker_record import Marker, coordinates_valid

log = logging.getLogger(__name__)


@dataclass
class MergeResult:
    markers: List[Marker] = field(default_factory=list)
    accepted: int = 0
    skipped: int = 0
    invalid: int = 0
    duplicates: int = 0

    def summary(self) -> Dict[str, object]:
        return {
            "count": len(self.markers),
            "accepted": self.accepted,
            "skipped": self.skipped,
            "invalid": self.invalid,
            "duplicates": self.duplicates,
        }


def merge(existing: Iterable[Marker], incoming: Iterable[Marker]) -> MergeResult:
    """Append new, valid records from ``incoming`` after ``existing``.

    Existing records keep their position and content. Incoming records with
    bad coordinates or an id that is already present are skipped, so merging
    the same batch twice accepts nothing the second time.
    """

    merged = list(existing)
    seen: Set[str] = {marker.id for marker in merged}
    result = MergeResult()
    for marker in incoming:
        if not coordinates_valid(marker.lat, marker.lng):
            log.debug("Rejecting %s: coordinates out of range (%r, %r)", marker.id, marker.lat, marker.lng)
            result.invalid += 1
            continue
        if marker.id in seen:
            result.duplicates += 1
            continue
        seen.add(marker.id)
        merged.append(marker)
        result.accepted += 1
    result.skipped = result.invalid + result.duplicates
    result.markers = merged
    return result
