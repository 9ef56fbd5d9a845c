"""
Secret Store

Holds one API key per provider in a JSON file next to the settings.
Keys from the environment (see Settings) are used when nothing was saved.
"""

import json
import logging
import os
import threading
from pathlib import Path

from lumen_ai.registry.models import AIProvider

logger = logging.getLogger(__name__)


class SecretStore:
    """Per-provider API key storage with environment fallback."""

    def __init__(self, path: Path, fallback_keys: dict[str, str] | None = None):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._fallback = {k: v for k, v in (fallback_keys or {}).items() if v}
        self._keys: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._keys is not None:
            return self._keys

        self._keys = {}
        if self._path.exists():
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    self._keys = {str(k): str(v) for k, v in data.items() if v}
            except (OSError, ValueError) as e:
                logger.warning(f"Secrets file {self._path} unreadable, ignoring: {e}")
        return self._keys

    def get_api_key(self, provider: AIProvider | str) -> str | None:
        """Saved key for the provider, else the environment key, else None."""
        name = AIProvider(provider).value
        with self._lock:
            return self._load().get(name) or self._fallback.get(name)

    def has_api_key(self, provider: AIProvider | str) -> bool:
        return self.get_api_key(provider) is not None

    def set_api_key(self, provider: AIProvider | str, api_key: str | None) -> None:
        """
        Save or clear the key for a provider.

        Args:
            provider: Provider the key belongs to
            api_key: New key; None or blank removes the saved key
        """
        name = AIProvider(provider).value
        with self._lock:
            keys = dict(self._load())
            value = (api_key or "").strip()
            if value:
                keys[name] = value
            else:
                keys.pop(name, None)

            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(keys, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
            self._keys = keys

        logger.info(f"API key for {name} {'saved' if value else 'cleared'}")
