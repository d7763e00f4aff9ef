"""Order-preserving predicate views over the marker list."""
from __future__ import annotations

from typing import Iterable, List, Optional

from .marker_record import Marker


def filter_markers(
    markers: Iterable[Marker],
    rank: Optional[int] = None,
    region: Optional[str] = None,
) -> List[Marker]:
    result = []
    for marker in markers:
        if rank is not None and marker.effective_rank != rank:
            continue
        if region is not None and marker.effective_region != region:
            continue
        result.append(marker)
    return result


def unique_regions(markers: Iterable[Marker]) -> List[str]:
    return sorted({marker.effective_region for marker in markers})
