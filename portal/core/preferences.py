"""Durable per-user view-mode preference storage."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional

from ..config import CONFIG
from ..db.models import ViewMode


logger = logging.getLogger(__name__)


class ViewModeStore:
    """Interface for view-mode persistence. Reads must observe prior writes."""

    def get(self, user_id: str) -> Optional[ViewMode]:  # pragma: no cover - interface
        raise NotImplementedError

    def set(self, user_id: str, mode: ViewMode) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryViewModeStore(ViewModeStore):
    def __init__(self, initial: Optional[Dict[str, ViewMode]] = None) -> None:
        self._values: Dict[str, ViewMode] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[ViewMode]:
        with self._lock:
            return self._values.get(user_id)

    def set(self, user_id: str, mode: ViewMode) -> None:
        with self._lock:
            self._values[user_id] = mode


class JsonFileViewModeStore(ViewModeStore):
    """
    Stores ``{user_id: mode}`` in a JSON file.

    Writes go straight to disk before returning so a reload in the same
    session sees the new value. Unknown or corrupt values read as ``None``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read view-mode store %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, user_id: str) -> Optional[ViewMode]:
        with self._lock:
            return ViewMode.parse(self._load().get(user_id))

    def set(self, user_id: str, mode: ViewMode) -> None:
        with self._lock:
            data = self._load()
            data[user_id] = mode.value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self.path)


_view_mode_store: Optional[ViewModeStore] = None


def get_view_mode_store() -> ViewModeStore:
    """Get the process-wide view-mode store."""
    global _view_mode_store
    if _view_mode_store is None:
        _view_mode_store = JsonFileViewModeStore(Path(CONFIG.view_mode_store_path))
    return _view_mode_store
