from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from emuident import config


class Session:
    """Paths and selections of the current run, shared by the workflows."""

    def __init__(self, base_path: Path | str | None = None):
        self._lock = threading.Lock()
        self._base_path: Optional[Path] = None
        self._selected_system: Optional[str] = None
        self._context: dict[str, Any] = {}

        if base_path:
            self.base_path = Path(base_path)

    @property
    def base_path(self) -> Path:
        if self._base_path is None:
            raise ValueError("No base path configured for this session")
        return self._base_path

    @base_path.setter
    def base_path(self, path: Path):
        resolved = Path(path).expanduser().resolve()
        with self._lock:
            self._base_path = resolved

    @property
    def db_path(self) -> Path:
        return self.base_path / config.DB_FILENAME

    @property
    def settings_path(self) -> Path:
        return self.base_path / config.SETTINGS_FILENAME

    @property
    def selected_system(self) -> Optional[str]:
        return self._selected_system

    @selected_system.setter
    def selected_system(self, system: str | None):
        with self._lock:
            self._selected_system = system.lower() if system else None

    def set_context(self, key: str, value: Any):
        with self._lock:
            self._context[key] = value

    def get_context(self, key: str, default: Any = None) -> Any:
        return self._context.get(key, default)
