"""
Two-phase approval of usage entries.

A usage entry is created ``pending`` by :meth:`LedgerService.request_usage` and
leaves that state exactly once, to ``approved`` or ``rejected``. The transition is
a conditional write on the stored status, so two approvers racing on the same
entry cannot both win. Approval writes the balance computed at request time and
refuses to do so if the account balance moved in the meantime.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from common.logging import log_context

from .errors import BalanceConflictError, EntryAlreadyProcessedError, StateError
from .models import EntryKind, EntryStatus, LedgerEntry
from .notifications import Notifier, deliver
from .service import LedgerService
from .storage import ACCOUNTS, ENTRIES


class ApprovalCoordinator:
    def __init__(self, ledger: LedgerService, notifier: Optional[Notifier] = None):
        self.ledger = ledger
        self.notifier = notifier or ledger.notifier
        self.logger = logging.getLogger("kwh.approvals")

    def _load_pending(self, entry_id: UUID) -> LedgerEntry:
        entry = self.ledger.get_entry(entry_id)
        if entry.kind != EntryKind.USAGE:
            raise StateError(f"Entry {entry_id} is a {entry.kind.value}, not a usage", prompt="Invalid transaction.")
        if not entry.can_process():
            raise EntryAlreadyProcessedError(
                f"Entry {entry_id} is already {entry.status.value}",
                prompt=f"This transaction was already {entry.status.value}.",
            )
        return entry

    def _transition(self, entry: LedgerEntry, status: EntryStatus, approver_id: int) -> LedgerEntry:
        processed_at = datetime.now(timezone.utc)
        claimed = self.ledger.storage.compare_and_set(
            ENTRIES,
            entry.id,
            {"status": EntryStatus.PENDING},
            {"status": status, "counterparty_actor_id": approver_id, "processed_at": processed_at},
        )
        if not claimed:
            raise EntryAlreadyProcessedError(
                f"Entry {entry.id} was processed concurrently",
                prompt="This transaction was already processed by another administrator.",
            )
        return entry.model_copy(update={
            "status": status,
            "counterparty_actor_id": approver_id,
            "processed_at": processed_at,
        })

    def approve(self, entry_id: UUID, approver_id: int) -> LedgerEntry:
        with log_context(entry_id=entry_id):
            entry = self._load_pending(entry_id)

            with self.ledger.account_locks.hold(entry.account_id):
                entry = self._load_pending(entry_id)
                account = self.ledger.get_account(entry.account_id)
                if account.balance != entry.previous_balance:
                    self.logger.warning(
                        "approval_balance_conflict",
                        extra={"extra_fields": {
                            "expected_balance": str(entry.previous_balance),
                            "current_balance": str(account.balance),
                        }},
                    )
                    raise BalanceConflictError(
                        f"Balance of {account.id} moved from {entry.previous_balance} to {account.balance}",
                        prompt="The account balance changed since this request was made. "
                               "Reject it and ask the user to register the usage again.",
                    )

                approved = self._transition(entry, EntryStatus.APPROVED, approver_id)
                if not self.ledger.write_balance(account, entry.new_balance, expected_balance=entry.previous_balance):
                    # Compensate: the entry must not stay approved without its balance write.
                    self.ledger.storage.compare_and_set(
                        ENTRIES,
                        entry.id,
                        {"status": EntryStatus.APPROVED},
                        {"status": EntryStatus.PENDING, "counterparty_actor_id": None, "processed_at": None},
                    )
                    raise BalanceConflictError(
                        f"Balance of {account.id} changed during approval of {entry.id}",
                        prompt="The account balance changed during approval. Please try again.",
                    )

            self.logger.info(
                "usage_approved",
                extra={"extra_fields": {"approver_id": approver_id, "new_balance": str(entry.new_balance)}},
            )
            deliver(
                self.notifier,
                account.actor_id,
                f"Your usage of {entry.amount} kWh was approved. "
                f"Previous balance {entry.previous_balance:.2f} kWh, new balance {entry.new_balance:.2f} kWh.",
            )
            threshold = self.ledger.settings.low_balance_threshold
            if entry.new_balance < threshold:
                self.logger.warning(
                    "low_balance",
                    extra={"extra_fields": {"balance": str(entry.new_balance), "threshold": str(threshold)}},
                )
                deliver(
                    self.notifier,
                    account.actor_id,
                    f"Warning: your balance is low ({entry.new_balance:.2f} kWh). "
                    "Please contact an administrator for a recharge.",
                )
            return approved

    def reject(self, entry_id: UUID, approver_id: int) -> LedgerEntry:
        with log_context(entry_id=entry_id):
            entry = self._load_pending(entry_id)
            with self.ledger.account_locks.hold(entry.account_id):
                rejected = self._transition(entry, EntryStatus.REJECTED, approver_id)

            self.logger.info("usage_rejected", extra={"extra_fields": {"approver_id": approver_id}})
            account_doc = self.ledger.storage.find_by_id(ACCOUNTS, entry.account_id)
            if account_doc:
                deliver(
                    self.notifier,
                    account_doc["actor_id"],
                    f"Your usage of {entry.amount} kWh was rejected. "
                    f"Your balance is unchanged at {account_doc['balance']:.2f} kWh.",
                )
            return rejected
