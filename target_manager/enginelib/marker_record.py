"""Marker record shape, defaults and coordinate checks."""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

DEFAULT_NAME = "Marked Location"
UNKNOWN_NAME = "Unknown Location"
UNKNOWN_REGION = "Unknown"
DEFAULT_RANK = 1
RANKS = (1, 2, 3, 4)
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

RANK_COLORS: Dict[int, Dict[str, str]] = {
    1: {"label": "RED", "color": "#ff0055"},
    2: {"label": "ORANGE", "color": "#ffaa00"},
    3: {"label": "GREEN", "color": "#00ff00"},
    4: {"label": "BLUE", "color": "#0088ff"},
}

# Wire names in the order the tabular codec writes them.
FIELDS = ("id", "name", "lat", "lng", "capturedAt", "note", "rank", "region")

# Keys written by older exports.
LEGACY_ALIASES = {"timestamp": "capturedAt", "prefecture": "region"}


@dataclass(frozen=True)
class Marker:
    id: str
    lat: float
    lng: float
    captured_at: str
    name: Optional[str] = None
    note: str = ""
    rank: int = DEFAULT_RANK
    region: str = UNKNOWN_REGION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "capturedAt": self.captured_at,
            "note": self.note,
            "rank": self.rank,
            "region": self.region,
        }

    @property
    def display_name(self) -> str:
        return self.name or UNKNOWN_NAME

    @property
    def effective_rank(self) -> int:
        return self.rank or DEFAULT_RANK

    @property
    def effective_region(self) -> str:
        return self.region or UNKNOWN_REGION


def new_id() -> str:
    return str(uuid.uuid4())


def now_timestamp() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def coordinates_valid(lat: Any, lng: Any) -> bool:
    """Return True when both values are finite and inside the WGS84 range."""

    if not (is_finite_number(lat) and is_finite_number(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def coerce_rank(value: Any) -> int:
    """Parse a rank, falling back to the default on anything outside 1..4."""

    if isinstance(value, bool) or value is None:
        return DEFAULT_RANK
    text = str(value).strip()
    try:
        rank = int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return DEFAULT_RANK
        if not number.is_integer():
            return DEFAULT_RANK
        rank = int(number)
    return rank if rank in RANKS else DEFAULT_RANK


def create_marker(
    lat: float,
    lng: float,
    name: Optional[str] = DEFAULT_NAME,
    note: str = "",
    rank: int = DEFAULT_RANK,
    region: str = UNKNOWN_REGION,
) -> Marker:
    return Marker(
        id=new_id(),
        lat=float(lat),
        lng=float(lng),
        captured_at=now_timestamp(),
        name=name,
        note=note,
        rank=coerce_rank(rank),
        region=region or UNKNOWN_REGION,
    )
