"""Authoritative ordered marker collection bound to a storage collaborator."""
from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Iterable, List, Optional, Protocol, Tuple

from . import codec
from .errors import DuplicateIdError, PersistenceError, ValidationError
from .marker_record import RANKS, UNKNOWN_REGION, Marker, new_id
from .reconciler import merge

log = logging.getLogger(__name__)

DEFAULT_KEY = "markedLocations"
EDITABLE_FIELDS = ("name", "note", "rank", "region")


class Storage(Protocol):
    def load(self, key: str) -> Optional[str]:
        ...

    def save(self, key: str, text: str) -> None:
        ...


class RecordStore:
    """Hold markers in insertion order and write them back after each change.

    Mutations build a new list and swap it in, so ``list()`` never sees a
    half-applied change. Storage failures are logged and kept in
    ``last_error``; the in-memory list stays authoritative.
    """

    def __init__(self, storage: Storage, key: str = DEFAULT_KEY):
        self.storage = storage
        self.key = key
        self.last_error: Optional[str] = None
        self._markers: List[Marker] = []
        self._lock = threading.Lock()

    # ----------------------- lifecycle -----------------------
    def load(self) -> int:
        try:
            text = self.storage.load(self.key)
        except PersistenceError as exc:
            log.error("Loading %s failed: %s", self.key, exc)
            self.last_error = str(exc)
            text = None
        if not text:
            self._markers = []
            return 0
        decoded = codec.decode_structured(text)
        result = merge([], decoded.markers)
        if decoded.skipped or result.skipped:
            log.warning(
                "Dropped %d stored records while loading %s",
                decoded.skipped + result.skipped,
                self.key,
            )
        self._markers = result.markers
        return len(self._markers)

    # ----------------------- queries -----------------------
    def list(self) -> Tuple[Marker, ...]:
        return tuple(self._markers)

    def get(self, marker_id: str) -> Optional[Marker]:
        for marker in self._markers:
            if marker.id == marker_id:
                return marker
        return None

    def __len__(self) -> int:
        return len(self._markers)

    # ----------------------- mutations -----------------------
    def add(self, marker: Marker) -> Marker:
        with self._lock:
            if not marker.id:
                marker = dataclasses.replace(marker, id=new_id())
            if any(existing.id == marker.id for existing in self._markers):
                raise DuplicateIdError(f"Marker id already present: {marker.id}")
            self._commit(self._markers + [marker])
        return marker

    def update(self, marker_id: str, **fields: Any) -> Optional[Marker]:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "rank" in fields:
            fields["rank"] = _checked_rank(fields["rank"])
        if "region" in fields and not fields["region"]:
            fields["region"] = UNKNOWN_REGION
        with self._lock:
            updated: Optional[Marker] = None
            markers = []
            for marker in self._markers:
                if marker.id == marker_id:
                    marker = dataclasses.replace(marker, **fields)
                    updated = marker
                markers.append(marker)
            if updated is None:
                return None
            self._commit(markers)
        return updated

    def remove(self, marker_id: str) -> bool:
        with self._lock:
            markers = [marker for marker in self._markers if marker.id != marker_id]
            if len(markers) == len(self._markers):
                return False
            self._commit(markers)
        return True

    def replace_all(self, markers: Iterable[Marker]) -> None:
        with self._lock:
            self._commit(list(markers))

    # ----------------------- persistence -----------------------
    def _commit(self, markers: List[Marker]):
        self._markers = markers
        try:
            self.storage.save(self.key, codec.encode_structured(markers))
        except PersistenceError as exc:
            log.error("Saving %s failed: %s", self.key, exc)
            self.last_error = str(exc)
        else:
            self.last_error = None


def _checked_rank(value: Any) -> int:
    try:
        rank = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Rank must be an integer, got {value!r}") from exc
    if rank not in RANKS:
        raise ValidationError(f"Rank must be one of {RANKS}, got {rank}")
    return rank
