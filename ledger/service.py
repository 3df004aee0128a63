import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID, uuid4

from common.config import Settings
from common.locks import KeyedLock

from .errors import (
    AccountNotFoundError,
    AccountStatusError,
    ConcurrencyConflictError,
    EntryNotFoundError,
    InsufficientBalanceError,
    ValidationError,
)
from .models import (
    Account,
    AccountBalance,
    AccountStatus,
    EntryKind,
    EntryStatus,
    EntryTotals,
    LedgerEntry,
    LedgerHistoryResponse,
)
from .notifications import NullNotifier, Notifier, deliver
from .storage import ACCOUNTS, ENTRIES, InMemoryStorage


CENT = Decimal("0.01")
DEFAULT_CHARGE_NOTES = "Manual recharge by administrator"

STATUS_REASONS = {
    AccountStatus.PENDING: "waiting for administrator approval",
    AccountStatus.BLOCKED: "blocked",
    AccountStatus.DISABLED: "disabled",
}


def validate_amount(amount: Decimal, ceiling: Decimal) -> Decimal:
    prompt = f"Please enter a valid positive amount (max {ceiling} kWh):"
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise ValidationError(f"Amount {amount} is not a number", prompt=prompt)
    if amount <= 0:
        raise ValidationError(f"Amount {amount} must be positive", prompt=prompt)
    if amount > ceiling:
        raise ValidationError(f"Amount {amount} exceeds the {ceiling} ceiling", prompt=prompt)
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError(f"Amount {amount} exceeds the decimal precision", prompt=prompt)
    if cents != amount:
        raise ValidationError(
            f"Amount {amount} has more than two decimal places",
            prompt=f"Please enter an amount with at most two decimal places (max {ceiling} kWh):",
        )
    return cents


def parse_amount(raw: str, ceiling: Decimal) -> Decimal:
    try:
        amount = Decimal(str(raw).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"Amount {raw!r} is not numeric",
            prompt=f"Please enter a valid positive amount (max {ceiling} kWh):",
        )
    return validate_amount(amount, ceiling)


def ensure_active(account: Account) -> None:
    if account.status == AccountStatus.ACTIVE:
        return
    reason = STATUS_REASONS.get(account.status, account.status.value)
    raise AccountStatusError(
        f"Account {account.id} is {account.status.value}",
        prompt=f"This account is {reason}; the operation is not allowed.",
    )


class LedgerService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or Settings()
        self.notifier = notifier or NullNotifier()
        self.account_locks = KeyedLock()
        self.logger = logging.getLogger("kwh.ledger")

    def get_account(self, account_id: UUID) -> Account:
        doc = self.storage.find_by_id(ACCOUNTS, account_id)
        if not doc:
            raise AccountNotFoundError(f"Account {account_id} not found", prompt="Account not found.")
        return Account(**doc)

    def get_entry(self, entry_id: UUID) -> LedgerEntry:
        doc = self.storage.find_by_id(ENTRIES, entry_id)
        if not doc:
            raise EntryNotFoundError(f"Entry {entry_id} not found", prompt="Transaction not found.")
        return LedgerEntry(**doc)

    def write_balance(
        self,
        account: Account,
        new_balance: Decimal,
        expected_balance: Optional[Decimal] = None,
    ) -> bool:
        """Conditional balance write: the stored version (and balance, if given) must still match."""
        expected: dict = {"version": account.version}
        if expected_balance is not None:
            expected["balance"] = expected_balance
        return self.storage.compare_and_set(
            ACCOUNTS,
            account.id,
            expected,
            {"balance": new_balance, "version": account.version + 1},
        )

    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        self.storage.insert(ENTRIES, entry.id, entry.model_dump())
        return entry

    def apply_charge(
        self,
        account_id: UUID,
        amount: Decimal,
        actor_id: int,
        notes: str = DEFAULT_CHARGE_NOTES,
    ) -> LedgerEntry:
        amount = validate_amount(amount, self.settings.max_amount)

        with self.account_locks.hold(account_id):
            for attempt in range(1, self.settings.write_retries + 1):
                account = self.get_account(account_id)
                ensure_active(account)
                previous_balance = account.balance
                new_balance = previous_balance + amount
                if self.write_balance(account, new_balance):
                    break
                self.logger.warning(
                    "balance_write_conflict",
                    extra={"extra_fields": {"account_id": str(account_id), "attempt": attempt}},
                )
            else:
                raise ConcurrencyConflictError(
                    f"Could not apply charge to {account_id} after {self.settings.write_retries} attempts"
                )

            now = datetime.now(timezone.utc)
            entry = self.insert_entry(LedgerEntry(
                id=uuid4(),
                account_id=account_id,
                kind=EntryKind.CHARGE,
                amount=amount,
                previous_balance=previous_balance,
                new_balance=new_balance,
                status=EntryStatus.APPROVED,
                counterparty_actor_id=actor_id,
                requested_by=actor_id,
                notes=notes,
                created_at=now,
                processed_at=now,
            ))

        self.logger.info(
            "charge_applied",
            extra={"extra_fields": {
                "account_id": str(account_id),
                "entry_id": str(entry.id),
                "amount": str(amount),
                "new_balance": str(new_balance),
            }},
        )
        deliver(
            self.notifier,
            account.actor_id,
            f"Recharge completed: +{amount} kWh. "
            f"Previous balance {previous_balance:.2f} kWh, new balance {new_balance:.2f} kWh.",
        )
        return entry

    def check_usage(self, account_id: UUID, amount: Decimal) -> Account:
        amount = validate_amount(amount, self.settings.max_amount)
        account = self.get_account(account_id)
        ensure_active(account)
        if account.balance - amount < 0:
            raise InsufficientBalanceError(
                f"Usage of {amount} exceeds balance {account.balance} of {account_id}",
                prompt=f"Insufficient balance: your current balance is {account.balance:.2f} kWh. "
                       "Please enter a smaller amount:",
            )
        return account

    def request_usage(
        self,
        account_id: UUID,
        amount: Decimal,
        actor_id: int,
        notes: str = "",
        photo_file_id: Optional[str] = None,
    ) -> LedgerEntry:
        amount = validate_amount(amount, self.settings.max_amount)
        account = self.check_usage(account_id, amount)

        entry = self.insert_entry(LedgerEntry(
            id=uuid4(),
            account_id=account_id,
            kind=EntryKind.USAGE,
            amount=amount,
            previous_balance=account.balance,
            new_balance=account.balance - amount,
            status=EntryStatus.PENDING,
            requested_by=actor_id,
            notes=notes,
            photo_file_id=photo_file_id,
            created_at=datetime.now(timezone.utc),
        ))
        self.logger.info(
            "usage_requested",
            extra={"extra_fields": {
                "account_id": str(account_id),
                "entry_id": str(entry.id),
                "amount": str(amount),
            }},
        )
        return entry

    def get_balance(self, account_id: UUID) -> AccountBalance:
        account = self.get_account(account_id)
        entries = self.storage.find(ENTRIES, {"account_id": account_id})
        last_entry = max(entries, key=lambda e: e["created_at"]) if entries else None

        return AccountBalance(
            account_id=account.id,
            actor_id=account.actor_id,
            status=account.status,
            current_balance=account.balance,
            total_entries=len(entries),
            last_transaction_at=last_entry["created_at"] if last_entry else None,
        )

    def get_ledger_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self.get_account(account_id)
        all_entries = [LedgerEntry(**e) for e in self.storage.find(ENTRIES, {"account_id": account_id})]
        all_entries.sort(key=lambda e: e.created_at, reverse=True)

        return LedgerHistoryResponse(
            account_id=account_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=account.balance,
        )

    def find_entries(
        self,
        kind: EntryKind,
        status: EntryStatus = EntryStatus.APPROVED,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        def in_range(doc: dict) -> bool:
            if start is not None and doc["created_at"] < start:
                return False
            return end is None or doc["created_at"] <= end

        entries = [
            LedgerEntry(**e)
            for e in self.storage.find(ENTRIES, {"kind": kind, "status": status}, predicate=in_range)
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]

    def list_pending_usage(self) -> list[LedgerEntry]:
        entries = [
            LedgerEntry(**e)
            for e in self.storage.find(ENTRIES, {"kind": EntryKind.USAGE, "status": EntryStatus.PENDING})
        ]
        return sorted(entries, key=lambda e: e.created_at)

    def find_low_balance(self, threshold: Decimal) -> list[Account]:
        accounts = [
            Account(**doc)
            for doc in self.storage.find(
                ACCOUNTS,
                {"status": AccountStatus.ACTIVE},
                predicate=lambda doc: doc["balance"] < threshold,
            )
        ]
        return sorted(accounts, key=lambda a: a.balance)

    def entry_totals(self, account_id: Optional[UUID] = None) -> EntryTotals:
        """Counts per status; kWh sums only cover approved entries."""
        filters = {"account_id": account_id} if account_id is not None else {}
        totals = EntryTotals()
        for doc in self.storage.find(ENTRIES, filters):
            if doc["status"] == EntryStatus.PENDING:
                totals.pending += 1
            elif doc["status"] == EntryStatus.REJECTED:
                totals.rejected += 1
            elif doc["kind"] == EntryKind.CHARGE:
                totals.charges += 1
                totals.kwh_charged += doc["amount"]
            else:
                totals.usages += 1
                totals.kwh_used += doc["amount"]
        return totals

    def total_balance(self) -> Decimal:
        return sum((doc["balance"] for doc in self.storage.find(ACCOUNTS)), Decimal("0.00"))
