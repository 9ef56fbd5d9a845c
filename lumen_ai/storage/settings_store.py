"""
Settings Store

Persists AI settings and the usage ledger as a single JSON document.
Writes go to a temporary file that replaces the original, so a crash
never leaves a half-written document behind.

update() is the only way to read-modify-write the document. It holds
a threading.Lock for the whole cycle, which serializes concurrent
ledger updates and settings saves.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, TypeVar

from pydantic import ValidationError

from lumen_ai.schemas.chat import StoredConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SettingsStore:
    """
    JSON-file backed store for StoredConfig.

    Example:
        store = SettingsStore(Path(".lumen/settings.json"))
        store.update(lambda config: setattr(config.settings, "model", "gpt-4o"))
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._cached: StoredConfig | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> StoredConfig:
        if self._cached is not None:
            return self._cached

        if not self._path.exists():
            self._cached = StoredConfig()
            return self._cached

        try:
            self._cached = StoredConfig.model_validate_json(
                self._path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(f"Settings file {self._path} unreadable, using defaults: {e}")
            self._cached = StoredConfig()
        return self._cached

    def _save(self, config: StoredConfig) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)
        self._cached = config

    def read(self) -> StoredConfig:
        """
        Get a snapshot of the stored document.

        Returns:
            A deep copy, safe to use outside the lock
        """
        with self._lock:
            return self._load().model_copy(deep=True)

    def write(self, config: StoredConfig) -> None:
        """Replace the stored document."""
        with self._lock:
            self._save(config.model_copy(deep=True))

    def update(self, mutate: Callable[[StoredConfig], T]) -> T:
        """
        Atomically read, modify and write the document.

        The mutation runs on a private copy. If it raises, nothing
        is written.

        Args:
            mutate: Function that edits the config in place

        Returns:
            Whatever mutate returns
        """
        with self._lock:
            config = self._load().model_copy(deep=True)
            result = mutate(config)
            self._save(config)
            return result
