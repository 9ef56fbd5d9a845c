"""
Storage module: Local persistence for settings, usage and API keys.

This module contains:
- settings_store.py: JSON document with settings and the usage ledger
- secret_store.py: Per-provider API keys with environment fallback
"""

from lumen_ai.storage.secret_store import SecretStore
from lumen_ai.storage.settings_store import SettingsStore

__all__ = [
    "SecretStore",
    "SettingsStore",
]
