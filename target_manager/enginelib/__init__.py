"""Engine layer modules for the target manager."""

from .codec import DecodeResult, decode, encode
from .geocoding import NominatimGeocoder, SearchHit
from .marker_record import Marker, create_marker
from .query_filter import filter_markers, unique_regions
from .reconciler import MergeResult, merge
from .record_store import RecordStore
from .state_store import JsonFileStorage
from .tracking import Position, PushGeolocation, TrackingSession, WatchOptions

__all__ = [
    "DecodeResult",
    "decode",
    "encode",
    "NominatimGeocoder",
    "SearchHit",
    "Marker",
    "create_marker",
    "filter_markers",
    "unique_regions",
    "MergeResult",
    "merge",
    "RecordStore",
    "JsonFileStorage",
    "Position",
    "PushGeolocation",
    "TrackingSession",
    "WatchOptions",
]
