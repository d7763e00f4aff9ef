"""High-level service orchestration for the target manager."""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import jsonpatch
import yaml

from .enginelib import codec
from .enginelib.errors import EmptyExportError, GeolocationError, ValidationError
from .enginelib.geocoding import NominatimGeocoder
from .enginelib.marker_record import DEFAULT_NAME, RANKS, Marker, coordinates_valid, create_marker
from .enginelib.query_filter import filter_markers, unique_regions
from .enginelib.reconciler import merge
from .enginelib.record_store import DEFAULT_KEY, RecordStore
from .enginelib.state_store import JsonFileStorage
from .enginelib.tracking import (
    DEFAULT_POSITION,
    Position,
    PushGeolocation,
    TrackingSession,
    WatchOptions,
)

log = logging.getLogger(__name__)

IMPORT_SUFFIXES = {".json", ".csv"}


@dataclass
class ManagerConfig:
    storage_dir: Path
    backup_dir: Optional[Path] = None
    inbox_dir: Optional[Path] = None
    storage_key: str = DEFAULT_KEY
    atomic_writes: bool = True
    default_center: Position = DEFAULT_POSITION
    geolocation_enabled: bool = True
    geocoder_enabled: bool = True
    geocoder_url: str = NominatimGeocoder.DEFAULT_URL
    geocoder_timeout: float = NominatimGeocoder.DEFAULT_TIMEOUT
    geocoder_user_agent: str = NominatimGeocoder.DEFAULT_USER_AGENT
    watch_options: WatchOptions = field(default_factory=WatchOptions)

    @staticmethod
    def from_mapping(
        mapping: Dict[str, Any],
        base_dir: Optional[Path] = None,
    ) -> "ManagerConfig":
        def resolve(value: str) -> Path:
            path = Path(value)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            return path

        def optional_path(key: str) -> Optional[Path]:
            value = mapping.get(key)
            return resolve(value) if value else None

        center = mapping.get("default_center") or {}
        geocoder = mapping.get("geocoder") or {}
        tracking = mapping.get("tracking") or {}
        return ManagerConfig(
            storage_dir=resolve(mapping["storage_dir"]),
            backup_dir=optional_path("backup_dir"),
            inbox_dir=optional_path("inbox_dir"),
            storage_key=str(mapping.get("storage_key", DEFAULT_KEY)),
            atomic_writes=bool(mapping.get("atomic_writes", True)),
            default_center=Position(
                float(center.get("lat", DEFAULT_POSITION.lat)),
                float(center.get("lng", DEFAULT_POSITION.lng)),
            ),
            geolocation_enabled=bool(mapping.get("geolocation_enabled", True)),
            geocoder_enabled=bool(geocoder.get("enabled", True)),
            geocoder_url=str(geocoder.get("base_url", NominatimGeocoder.DEFAULT_URL)),
            geocoder_timeout=float(geocoder.get("timeout", NominatimGeocoder.DEFAULT_TIMEOUT)),
            geocoder_user_agent=str(
                geocoder.get("user_agent", NominatimGeocoder.DEFAULT_USER_AGENT)
            ),
            watch_options=WatchOptions(
                high_accuracy=bool(tracking.get("high_accuracy", True)),
                timeout_ms=int(tracking.get("timeout_ms", 5000)),
                max_age_ms=int(tracking.get("max_age_ms", 0)),
            ),
        )


@dataclass
class ExportPayload:
    filename: str
    mime_type: str
    content: str


@dataclass
class ImportReport:
    format: str
    total_rows: int
    decoded: int
    accepted: int
    skipped: int
    errors: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, object]:
        return {
            "format": self.format,
            "total_rows": self.total_rows,
            "decoded": self.decoded,
            "accepted": self.accepted,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class TargetManagerService:
    """Coordinate the record store, codec, tracking session and inbox watcher."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.config = load_config(self.config_path)
        self.storage = JsonFileStorage(
            self.config.storage_dir,
            backup_dir=self.config.backup_dir,
            atomic_writes=self.config.atomic_writes,
        )
        self.store = RecordStore(self.storage, key=self.config.storage_key)
        self.geocoder = NominatimGeocoder(
            base_url=self.config.geocoder_url,
            timeout=self.config.geocoder_timeout,
            user_agent=self.config.geocoder_user_agent,
            enabled=self.config.geocoder_enabled,
        )
        self.geolocation = PushGeolocation(enabled=self.config.geolocation_enabled)
        self.session = TrackingSession(
            self.geolocation,
            initial_position=self.config.default_center,
            options=self.config.watch_options,
            on_error=self._on_tracking_error,
        )
        self.recent_events: List[Dict[str, Any]] = []
        self._watch_thread: Optional[threading.Thread] = None
        self._watch_stop = threading.Event()
        self._lock = threading.Lock()

        loaded = self.store.load()
        self._record_event("load", {"count": loaded, "key": self.config.storage_key})

    # ----------------------- targets -----------------------
    def list_targets(self, rank: Optional[int] = None, region: Optional[str] = None) -> List[Marker]:
        return filter_markers(self.store.list(), rank=rank, region=region)

    def regions(self) -> List[str]:
        return unique_regions(self.store.list())

    def add_current(self) -> Marker:
        position = self.session.current_position
        return self.add_at(position.lat, position.lng)

    def add_at(
        self,
        lat: float,
        lng: float,
        name: Optional[str] = DEFAULT_NAME,
        note: str = "",
        rank: int = 1,
        region: Optional[str] = None,
    ) -> Marker:
        if not coordinates_valid(lat, lng):
            raise ValidationError(f"Coordinates out of range: ({lat}, {lng})")
        if rank not in RANKS:
            raise ValidationError(f"Rank must be one of {RANKS}, got {rank}")
        if region is None:
            region = self.geocoder.resolve_region(lat, lng)
        marker = self._store_mutation(
            lambda: self.store.add(
                create_marker(lat, lng, name=name, note=note, rank=rank, region=region)
            )
        )
        self._record_event("add", {"id": marker.id, "name": marker.name, "region": marker.region})
        return marker

    def add_from_search(self, query: str) -> Optional[Marker]:
        hit = self.geocoder.search(query)
        if hit is None:
            self._record_event("search_miss", {"query": query})
            return None
        region = hit.region or self.geocoder.resolve_region(hit.lat, hit.lng)
        return self.add_at(hit.lat, hit.lng, name=hit.name, region=region)

    def update_target(self, marker_id: str, **fields: Any) -> Optional[Marker]:
        updated = self._store_mutation(lambda: self.store.update(marker_id, **fields))
        if updated is not None:
            self._record_event("update", {"id": marker_id, "fields": sorted(fields)})
        return updated

    def remove_target(self, marker_id: str) -> bool:
        removed = self._store_mutation(lambda: self.store.remove(marker_id))
        if removed:
            self._record_event("remove", {"id": marker_id})
        return removed

    def _store_mutation(self, operation):
        with self._lock:
            result = operation()
        if self.store.last_error:
            self._record_event("persistence_error", {"error": self.store.last_error})
        return result

    # ----------------------- import / export -----------------------
    def export(self, fmt: str) -> ExportPayload:
        markers = self.store.list()
        if not markers:
            raise EmptyExportError("There are no targets to export")
        payload = ExportPayload(
            filename=codec.export_filename(fmt),
            mime_type=codec.MIME_TYPES[fmt],
            content=codec.encode(markers, fmt),
        )
        self._record_event("export", {"format": fmt, "count": len(markers)})
        return payload

    def import_content(self, source: str, content: str) -> ImportReport:
        """Decode ``content`` and merge it into the store.

        ``source`` is either a format name or a filename whose extension
        selects the format.
        """
        fmt = source if source in codec.FORMATS else codec.format_from_filename(source)
        decoded = codec.decode(content, fmt)
        with self._lock:
            result = merge(self.store.list(), decoded.markers)
            if result.accepted:
                self.store.replace_all(result.markers)
        if self.store.last_error:
            self._record_event("persistence_error", {"error": self.store.last_error})
        report = ImportReport(
            format=fmt,
            total_rows=decoded.total,
            decoded=len(decoded.markers),
            accepted=result.accepted,
            skipped=decoded.skipped + result.skipped,
            errors=decoded.errors,
        )
        log.info(
            "Imported %s from %s: %d accepted, %d skipped",
            fmt,
            source,
            report.accepted,
            report.skipped,
        )
        self._record_event("import", report.summary())
        return report

    def import_files(self, paths: Iterable[Path]) -> List[ImportReport]:
        reports = []
        for path in sorted({Path(p) for p in paths}):
            if path.suffix.lower() not in IMPORT_SUFFIXES or not path.exists():
                continue
            with open(path, "r", encoding="utf-8") as handle:
                content = handle.read()
            reports.append(self.import_content(path.name, content))
        return reports

    def diff_last(self) -> Dict[str, Any]:
        backups = self.storage.backups_for(self.config.storage_key)
        current_path = self.storage.path_for(self.config.storage_key)
        if not backups or not current_path.exists():
            return {"patch": [], "has_previous": False}
        with open(backups[-1], "r", encoding="utf-8") as handle:
            previous = json.load(handle)
        with open(current_path, "r", encoding="utf-8") as handle:
            current = json.load(handle)
        patch = jsonpatch.make_patch(previous, current)
        return {"patch": patch.to_string(), "has_previous": True}

    # ----------------------- tracking -----------------------
    def start_tracking(self) -> bool:
        try:
            started = self.session.start()
        except GeolocationError as exc:
            log.warning("Tracking could not start: %s", exc)
            self._record_event("geolocation_error", {"error": str(exc)})
            return False
        if started:
            self._record_event("tracking_start", {})
        return started

    def stop_tracking(self) -> bool:
        stopped = self.session.stop()
        if stopped:
            self._record_event("tracking_stop", {"samples": len(self.session.path)})
        return stopped

    def clear_path(self):
        self.session.clear_path()
        self._record_event("path_clear", {})

    def refresh_position(self) -> Position:
        return self.session.refresh_once()

    def push_position(self, lat: float, lng: float):
        if not coordinates_valid(lat, lng):
            raise ValidationError(f"Coordinates out of range: ({lat}, {lng})")
        self.geolocation.push(Position(float(lat), float(lng)))

    def push_position_error(self, message: str):
        self.geolocation.push_error(GeolocationError(message))

    def tracking_payload(self) -> Dict[str, Any]:
        return self.session.snapshot()

    def _on_tracking_error(self, error: Exception):
        self._record_event("tracking_error", {"error": str(error)})

    # ----------------------- status & logs -----------------------
    def status_payload(self) -> Dict[str, Any]:
        markers = self.store.list()
        return {
            "count": len(markers),
            "regions": unique_regions(markers),
            "storage_key": self.config.storage_key,
            "last_error": self.store.last_error,
            "tracking": {
                "state": self.session.state,
                "samples": len(self.session.path),
                "current_position": self.session.current_position.to_dict(),
            },
            "geocoder": self.geocoder.stats(),
            "watching": bool(self._watch_thread and self._watch_thread.is_alive()),
        }

    def recent_logs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self.recent_events[-limit:])

    def _record_event(self, event_type: str, payload: Dict[str, Any]):
        event = {"type": event_type, "timestamp": time.time(), "payload": payload}
        self.recent_events.append(event)

    # ----------------------- watcher -----------------------
    def start_watcher(
        self,
        debounce_seconds: float = 0.5,
        observer_factory=None,
        timer_factory=None,
    ):
        if self.config.inbox_dir is None:
            raise ValueError("inbox_dir is not configured")
        if self._watch_thread and self._watch_thread.is_alive():
            return

        self._watch_stop.clear()
        inbox_dir = self.config.inbox_dir

        def loop():
            from watchdog.events import FileSystemEventHandler
            from watchdog.observers import Observer

            class Handler(FileSystemEventHandler):
                def __init__(self, service: "TargetManagerService"):
                    self.service = service
                    self.pending: Set[Path] = set()
                    self._timer: Optional[threading.Timer] = None

                def on_any_event(self, event):  # type: ignore[override]
                    if event.is_directory:
                        return
                    path = Path(str(getattr(event, "dest_path", "") or event.src_path))
                    if path.suffix.lower() not in IMPORT_SUFFIXES:
                        return
                    self.pending.add(path)
                    if self._timer:
                        self._timer.cancel()
                    factory = timer_factory or threading.Timer
                    self._timer = factory(debounce_seconds, self._run)
                    self._timer.start()

                def _run(self):
                    paths, self.pending = self.pending, set()
                    try:
                        self.service.import_files(paths)
                    except (OSError, ValueError) as error:
                        log.error("Inbox import failed: %s", error)
                        self.service._record_event("watch_error", {"error": str(error)})

            observer_cls = observer_factory or Observer
            observer = observer_cls()
            handler = Handler(self)
            inbox_dir.mkdir(parents=True, exist_ok=True)
            observer.schedule(handler, str(inbox_dir), recursive=False)
            observer.start()
            try:
                while not self._watch_stop.is_set():
                    time.sleep(0.1)
            finally:
                observer.stop()
                observer.join()

        self._watch_thread = threading.Thread(target=loop, daemon=True)
        self._watch_thread.start()
        self._record_event("watch_start", {"inbox": str(inbox_dir)})

    def stop_watcher(self):
        if not self._watch_thread:
            return
        self._watch_stop.set()
        self._watch_thread.join(timeout=2)
        self._watch_thread = None
        self._record_event("watch_stop", {})

    def close(self):
        self.stop_watcher()
        self.stop_tracking()


def load_config(path: Path) -> ManagerConfig:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return ManagerConfig.from_mapping(data, Path(path).parent)
