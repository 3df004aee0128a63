from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class EntryKind(str, Enum):
    CHARGE = "charge"
    USAGE = "usage"


class EntryStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AccountStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    BLOCKED = "blocked"
    DISABLED = "disabled"


class Role(str, Enum):
    ORDINARY = "ordinary"
    ADMIN = "admin"


class Actor(BaseModel):
    id: int
    role: Role = Role.ORDINARY
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or (f"@{self.username}" if self.username else str(self.id))


class Account(BaseModel):
    id: UUID
    actor_id: int
    card_id: Optional[str] = None
    balance: Decimal = Decimal("0.00")
    status: AccountStatus = AccountStatus.PENDING
    version: int = 0
    invite_code_used: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


class LedgerEntry(BaseModel):
    id: UUID
    account_id: UUID
    kind: EntryKind
    amount: Decimal = Field(..., gt=0)
    previous_balance: Decimal
    new_balance: Decimal
    status: EntryStatus = EntryStatus.PENDING
    counterparty_actor_id: Optional[int] = None
    requested_by: Optional[int] = None
    notes: str = ""
    photo_file_id: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind == EntryKind.CHARGE else -self.amount

    def is_consistent(self) -> bool:
        return self.new_balance == self.previous_balance + self.signed_amount

    def can_process(self) -> bool:
        return self.status == EntryStatus.PENDING


class Invite(BaseModel):
    code: str
    created_by: int
    expires_at: datetime
    is_used: bool = False
    used_by: Optional[int] = None
    used_at: Optional[datetime] = None
    notes: str = ""
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if self.is_used or not self.is_active:
            return False
        return (now or datetime.now(timezone.utc)) <= self.expires_at

    @classmethod
    def expiring_in(cls, days: int, **data) -> "Invite":
        now = datetime.now(timezone.utc)
        return cls(expires_at=now + timedelta(days=days), created_at=now, **data)


class LedgerHistoryResponse(BaseModel):
    account_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class AccountBalance(BaseModel):
    account_id: UUID
    actor_id: int
    status: AccountStatus
    current_balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class EntryTotals(BaseModel):
    """Approved counts and kWh sums, plus entries still pending or rejected."""

    charges: int = 0
    usages: int = 0
    pending: int = 0
    rejected: int = 0
    kwh_charged: Decimal = Decimal("0.00")
    kwh_used: Decimal = Decimal("0.00")

    @property
    def total(self) -> int:
        return self.charges + self.usages + self.pending + self.rejected
