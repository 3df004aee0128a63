"""
Shared plumbing for the kWh ledger bot: settings, logging and keyed locks.
"""

from .config import Settings, get_settings
from .locks import KeyedLock

__all__ = [
    "Settings",
    "get_settings",
    "KeyedLock",
]
