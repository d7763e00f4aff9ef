"""Key/value text storage backed by JSON files on disk."""
from __future__ import annotations

import os
import re
import shutil
import threading
import time
from pathlib import Path
from typing import List, Optional

from .errors import PersistenceError

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStorage:
    """Persist one text document per key with atomic replacement."""

    def __init__(
        self,
        directory: Path | str,
        backup_dir: Path | str | None = None,
        atomic_writes: bool = True,
    ):
        self.directory = Path(directory)
        self.backup_dir = Path(backup_dir) if backup_dir is not None else None
        self.atomic_writes = atomic_writes
        self._lock = threading.Lock()

    # ----------------------- helpers -----------------------
    def path_for(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def backups_for(self, key: str) -> List[Path]:
        if self.backup_dir is None or not self.backup_dir.exists():
            return []
        stem = self.path_for(key).stem
        return sorted(self.backup_dir.glob(f"{stem}_*.json"))

    # ----------------------- public api -----------------------
    def load(self, key: str) -> Optional[str]:
        """Return the stored text for ``key`` or None when nothing is stored."""

        try:
            with open(self.path_for(key), "r", encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Cannot read {key}: {exc}") from exc

    def save(self, key: str, text: str) -> None:
        target = self.path_for(key)
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                if not self.atomic_writes:
                    with open(target, "w", encoding="utf-8") as handle:
                        handle.write(text)
                    return
                tmp_path = Path(f"{target}.tmp")
                with open(tmp_path, "w", encoding="utf-8") as handle:
                    handle.write(text)
                    handle.flush()
                    os.fsync(handle.fileno())
                if self.backup_dir is not None and target.exists():
                    self._backup(target)
                os.replace(tmp_path, target)
            except OSError as exc:
                raise PersistenceError(f"Cannot write {key}: {exc}") from exc

    def _backup(self, target: Path):
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%d_%H%M%S")
        backup_path = self.backup_dir / f"{target.stem}_{stamp}.json"
        counter = 1
        while backup_path.exists():
            backup_path = self.backup_dir / f"{target.stem}_{stamp}_{counter:03d}.json"
            counter += 1
        shutil.copy2(target, backup_path)
