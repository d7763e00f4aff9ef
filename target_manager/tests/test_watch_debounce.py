import time
from pathlib import Path
from types import MethodType

import pytest
import yaml

from target_manager.service import TargetManagerService


class FakeObserver:
    def __init__(self):
        self.handler = None
        self.path = None

    def schedule(self, handler, path, recursive):
        self.handler = handler
        self.path = path

    def start(self):
        return None

    def stop(self):
        return None

    def join(self):
        return None


class FakeTimer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    def start(self):
        return None

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


def write_config(tmp_path: Path, **overrides) -> Path:
    payload = {
        "storage_dir": "data",
        "backup_dir": "data/backups",
        "inbox_dir": "inbox",
        "geocoder": {"enabled": False},
    }
    payload.update(overrides)
    config_path = tmp_path / "config.yaml"
    with open(config_path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle)
    return config_path


def event(path, is_directory=False):
    return type("Evt", (), {"is_directory": is_directory, "src_path": str(path)})


def start(service, observer, timers):
    def timer_factory(interval, callback):
        timer = FakeTimer(interval, callback)
        timers.append(timer)
        return timer

    service.start_watcher(debounce_seconds=0.01, observer_factory=lambda: observer, timer_factory=timer_factory)
    for _ in range(50):
        if observer.handler is not None:
            break
        time.sleep(0.01)
    assert observer.handler is not None


def test_watch_debounces_multiple_events(tmp_path):
    service = TargetManagerService(write_config(tmp_path))
    observer = FakeObserver()
    timers = []
    calls = []

    def fake_import(self, paths):
        calls.append(sorted(Path(p).name for p in paths))
        return []

    service.import_files = MethodType(fake_import, service)
    start(service, observer, timers)
    inbox = service.config.inbox_dir
    assert observer.path == str(inbox)

    observer.handler.on_any_event(event(inbox / "a.csv"))
    observer.handler.on_any_event(event(inbox / "b.json"))
    observer.handler.on_any_event(event(inbox / "notes.txt"))
    observer.handler.on_any_event(event(inbox / "sub", is_directory=True))

    assert len(timers) == 2
    assert timers[0].cancelled
    timers[-1].fire()
    service.stop_watcher()

    assert calls == [["a.csv", "b.json"]]


def test_dropped_file_is_imported(tmp_path):
    service = TargetManagerService(write_config(tmp_path))
    observer = FakeObserver()
    timers = []
    start(service, observer, timers)
    dropped = service.config.inbox_dir / "drop.csv"
    dropped.write_text("id,lat,lng,name\nd1,35.0,139.0,Dropped\n", encoding="utf-8")

    observer.handler.on_any_event(event(dropped))
    timers[-1].fire()
    observer.handler.on_any_event(event(dropped))
    timers[-1].fire()
    service.stop_watcher()

    assert [marker.name for marker in service.list_targets()] == ["Dropped"]
    imports = [entry for entry in service.recent_logs() if entry["type"] == "import"]
    assert len(imports) == 2


def test_watcher_requires_inbox(tmp_path):
    service = TargetManagerService(write_config(tmp_path, inbox_dir=None))
    with pytest.raises(ValueError):
        service.start_watcher()
