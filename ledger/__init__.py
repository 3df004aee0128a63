"""
Balance Ledger for kWh Accounts

This module provides:
- Append-only ledger entries carrying previous and new balance
- Immediate-apply recharges and deferred-apply usages
- Usage lifecycle: pending → approved / rejected
- Conditional (compare-and-set) balance and status writes
- Accounts, actors and invite codes
"""

from .models import (
    Account,
    AccountStatus,
    Actor,
    EntryKind,
    EntryStatus,
    Invite,
    LedgerEntry,
    Role,
)
from .accounts import AccountDirectory
from .approvals import ApprovalCoordinator
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "Account",
    "AccountStatus",
    "Actor",
    "EntryKind",
    "EntryStatus",
    "Invite",
    "LedgerEntry",
    "Role",
    "AccountDirectory",
    "ApprovalCoordinator",
    "LedgerService",
    "InMemoryStorage",
]
