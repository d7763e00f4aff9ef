"""Continuous position sampling and path accumulation."""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .errors import GeolocationError

log = logging.getLogger(__name__)

IDLE = "idle"
ACTIVE = "active"


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


DEFAULT_POSITION = Position(35.6812, 139.7671)


@dataclass(frozen=True)
class WatchOptions:
    high_accuracy: bool = True
    timeout_ms: int = 5000
    max_age_ms: int = 0


SampleCallback = Callable[[Position], None]
ErrorCallback = Callable[[Exception], None]


class Geolocation(Protocol):
    def get_once(self) -> Position:
        ...

    def watch(self, on_sample: SampleCallback, on_error: ErrorCallback, options: WatchOptions) -> Any:
        ...

    def cancel(self, handle: Any) -> None:
        ...


class PushGeolocation:
    """Geolocation source fed from outside, e.g. a browser posting fixes.

    Every pushed position or error is fanned out to the live watches. The
    last pushed position answers ``get_once``.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.last_position: Optional[Position] = None
        self._watches: Dict[int, tuple] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def get_once(self) -> Position:
        if not self.enabled:
            raise GeolocationError("Geolocation is not available")
        if self.last_position is None:
            raise GeolocationError("No position fix received yet")
        return self.last_position

    def watch(self, on_sample: SampleCallback, on_error: ErrorCallback, options: WatchOptions) -> int:
        if not self.enabled:
            raise GeolocationError("Geolocation is not available")
        with self._lock:
            handle = next(self._ids)
            self._watches[handle] = (on_sample, on_error, options)
        return handle

    def cancel(self, handle: Any) -> None:
        with self._lock:
            self._watches.pop(handle, None)

    @property
    def watch_count(self) -> int:
        return len(self._watches)

    def push(self, position: Position) -> None:
        self.last_position = position
        with self._lock:
            callbacks = [entry[0] for entry in self._watches.values()]
        for callback in callbacks:
            callback(position)

    def push_error(self, error: Exception) -> None:
        with self._lock:
            callbacks = [entry[1] for entry in self._watches.values()]
        for callback in callbacks:
            callback(error)


class TrackingSession:
    """Idle/active state machine around one geolocation watch.

    ``start`` and ``stop`` are idempotent. ``stop`` drops the handle before
    cancelling it, and samples arriving for a dropped handle are ignored, so
    nothing lands in ``path`` once ``stop`` has been called.
    """

    def __init__(
        self,
        geolocation: Geolocation,
        initial_position: Position = DEFAULT_POSITION,
        options: Optional[WatchOptions] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.geolocation = geolocation
        self.options = options or WatchOptions()
        self.on_error = on_error
        self.current_position = initial_position
        self.path: List[Position] = []
        self.handle: Any = None
        self._token: Optional[object] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> str:
        return ACTIVE if self._token is not None else IDLE

    @property
    def is_active(self) -> bool:
        return self.state == ACTIVE

    # ----------------------- transitions -----------------------
    def start(self) -> bool:
        with self._lock:
            if self._token is not None:
                return False
            token = object()
            self._token = token
            try:
                handle = self.geolocation.watch(
                    lambda position: self._on_sample(token, position),
                    lambda error: self._on_error(token, error),
                    self.options,
                )
            except Exception:
                self._token = None
                raise
            self.handle = handle
        log.info("Tracking started")
        return True

    def stop(self) -> bool:
        with self._lock:
            if self._token is None:
                return False
            handle = self.handle
            self._token = None
            self.handle = None
        self.geolocation.cancel(handle)
        log.info("Tracking stopped after %d samples", len(self.path))
        return True

    close = stop

    def clear_path(self) -> None:
        with self._lock:
            self.path = []

    def refresh_once(self) -> Position:
        try:
            position = self.geolocation.get_once()
        except GeolocationError as exc:
            log.warning("Position refresh failed, keeping last known position: %s", exc)
            return self.current_position
        self.current_position = position
        return position

    # ----------------------- callbacks -----------------------
    def _on_sample(self, token: object, position: Position):
        with self._lock:
            if token is not self._token:
                return
            self.current_position = position
            self.path = self.path + [position]

    def _on_error(self, token: object, error: Exception):
        if token is not self._token:
            return
        log.warning("Tracking error: %s", error)
        if self.on_error is not None:
            self.on_error(error)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "current_position": self.current_position.to_dict(),
            "path": [position.to_dict() for position in self.path],
        }
