import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from common.config import Settings

from .errors import AccountNotFoundError, AccountStatusError, StateError, ValidationError
from .models import Account, AccountStatus, Actor, Invite, Role
from .service import STATUS_REASONS
from .storage import ACCOUNTS, ACTORS, INVITES, InMemoryStorage


INVITE_CODE_LENGTH = 6
INVITE_ALPHABET = string.ascii_uppercase + string.digits


def sanitize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[<>]", "", str(value)).strip()


def sanitize_card_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = re.sub(r"[^\w\-:]", "", str(value)).strip()
    return cleaned if len(cleaned) >= 3 else None


def sanitize_invite_code(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = re.sub(r"[^A-Z0-9]", "", str(value).upper())
    return cleaned if len(cleaned) == INVITE_CODE_LENGTH else None


class AccountDirectory:
    """Actors, their accounts and the invite codes that gate registration."""

    def __init__(self, storage: InMemoryStorage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or Settings()
        self.logger = logging.getLogger("kwh.accounts")

    def get_actor(self, actor_id: int) -> Optional[Actor]:
        doc = self.storage.find_by_id(ACTORS, actor_id)
        return Actor(**doc) if doc else None

    def is_admin(self, actor_id: int) -> bool:
        if actor_id in self.settings.admin_ids:
            return True
        actor = self.get_actor(actor_id)
        return bool(actor and actor.is_admin)

    def admin_ids(self) -> list[int]:
        stored = [doc["id"] for doc in self.storage.find(ACTORS, {"role": Role.ADMIN})]
        return sorted(set(stored) | set(self.settings.admin_ids))

    def get_account_by_actor(self, actor_id: int) -> Optional[Account]:
        doc = self.storage.find_one(ACCOUNTS, actor_id=actor_id)
        return Account(**doc) if doc else None

    def require_account(self, actor_id: int) -> Account:
        account = self.get_account_by_actor(actor_id)
        if account is None:
            raise AccountStatusError(
                f"Actor {actor_id} is not registered",
                prompt="You are not registered. Use /start to register.",
            )
        return account

    def require_active_account(self, actor_id: int) -> Account:
        account = self.require_account(actor_id)
        if account.status != AccountStatus.ACTIVE:
            reason = STATUS_REASONS.get(account.status, account.status.value)
            raise AccountStatusError(
                f"Account of {actor_id} is {account.status.value}",
                prompt=f"Your account is {reason}.",
            )
        return account

    def require_admin(self, actor_id: int) -> None:
        if not self.is_admin(actor_id):
            raise AccountStatusError(
                f"Actor {actor_id} is not an administrator",
                prompt="Access denied: this command is reserved for administrators.",
            )

    def find_account(self, query: str) -> Account:
        """Resolve ``123``, ``@username`` or ``card:ID`` to an account."""
        query = sanitize_text(query)
        doc = None
        if query.startswith("@"):
            actor = self.storage.find_one(ACTORS, username=query[1:])
            if actor:
                doc = self.storage.find_one(ACCOUNTS, actor_id=actor["id"])
        elif query.lower().startswith("card:"):
            card_id = sanitize_card_id(query[5:])
            if not card_id:
                raise ValidationError(f"Invalid card id in {query!r}", prompt="Invalid card format.")
            doc = self.storage.find_one(ACCOUNTS, card_id=card_id)
        else:
            try:
                actor_id = int(query)
            except ValueError:
                raise ValidationError(
                    f"Invalid account query {query!r}",
                    prompt="Invalid parameter. Use a numeric id, an @username or card:ID.",
                )
            doc = self.storage.find_one(ACCOUNTS, actor_id=actor_id)

        if not doc:
            raise AccountNotFoundError(f"No account matches {query!r}", prompt="User not found.")
        return Account(**doc)

    def register(
        self,
        actor_id: int,
        card_id: str,
        first_name: str = "",
        last_name: str = "",
        username: str = "",
        invite_code: Optional[str] = None,
    ) -> Account:
        if self.storage.find_one(ACCOUNTS, card_id=card_id):
            raise ValidationError(
                f"Card {card_id} already registered",
                prompt="This card is already registered. Please enter another card number:",
            )

        now = datetime.now(timezone.utc)
        if self.get_actor(actor_id) is None:
            role = Role.ADMIN if actor_id in self.settings.admin_ids else Role.ORDINARY
            actor = Actor(
                id=actor_id,
                role=role,
                first_name=sanitize_text(first_name),
                last_name=sanitize_text(last_name),
                username=sanitize_text(username),
                created_at=now,
            )
            self.storage.insert(ACTORS, actor.id, actor.model_dump())

        account = Account(
            id=uuid4(),
            actor_id=actor_id,
            card_id=card_id,
            status=AccountStatus.PENDING,
            invite_code_used=invite_code,
            created_at=now,
        )
        self.storage.insert(ACCOUNTS, account.id, account.model_dump())

        if invite_code:
            self.storage.update(INVITES, invite_code, {"is_used": True, "used_by": actor_id, "used_at": now})

        self.logger.info("actor_registered", extra={"extra_fields": {"registered_actor_id": actor_id}})
        return account

    def transition_status(
        self,
        actor_id: int,
        new_status: AccountStatus,
        expected: Optional[AccountStatus] = None,
    ) -> Account:
        account = self.require_account(actor_id)
        guard = {"status": expected} if expected is not None else {}
        if not self.storage.compare_and_set(ACCOUNTS, account.id, guard, {"status": new_status}):
            raise StateError(
                f"Account of {actor_id} is no longer {expected.value if expected else account.status.value}",
                prompt="This request was already processed.",
            )
        self.logger.info(
            "account_status_changed",
            extra={"extra_fields": {
                "target_actor_id": actor_id,
                "from": account.status.value,
                "to": new_status.value,
            }},
        )
        return account.model_copy(update={"status": new_status})

    def list_accounts(self, status: Optional[AccountStatus] = None) -> list[Account]:
        filters = {"status": status} if status is not None else {}
        accounts = [Account(**doc) for doc in self.storage.find(ACCOUNTS, filters)]
        return sorted(accounts, key=lambda a: a.created_at, reverse=True)

    def count_by_status(self) -> dict[AccountStatus, int]:
        counts = {status: 0 for status in AccountStatus}
        for doc in self.storage.find(ACCOUNTS):
            counts[doc["status"]] += 1
        return counts

    def make_admin(self, actor_id: int) -> Actor:
        actor = self.get_actor(actor_id)
        if actor is None:
            raise AccountNotFoundError(f"Actor {actor_id} not found", prompt="User not found.")
        if not self.storage.compare_and_set(ACTORS, actor_id, {"role": Role.ORDINARY}, {"role": Role.ADMIN}):
            raise StateError(
                f"Actor {actor_id} is already an administrator",
                prompt=f"User {actor_id} is already an administrator.",
            )
        self.logger.info("actor_promoted", extra={"extra_fields": {"target_actor_id": actor_id}})
        return actor.model_copy(update={"role": Role.ADMIN})

    def delete_actor(self, actor_id: int) -> bool:
        """Remove the actor and its account; ledger entries stay as the audit trail."""
        account = self.get_account_by_actor(actor_id)
        if account:
            self.storage.delete(ACCOUNTS, account.id)
        removed = self.storage.delete(ACTORS, actor_id)
        if account or removed:
            self.logger.info("actor_deleted", extra={"extra_fields": {"target_actor_id": actor_id}})
        return bool(account) or removed

    def generate_invite_code(self) -> str:
        while True:
            code = "".join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
            if self.storage.find_by_id(INVITES, code) is None:
                return code

    def issue_invite(self, code: str, created_by: int, notes: str = "") -> Invite:
        invite = Invite.expiring_in(
            self.settings.invite_code_expiry_days,
            code=code,
            created_by=created_by,
            notes=sanitize_text(notes),
        )
        self.storage.insert(INVITES, invite.code, invite.model_dump())
        self.logger.info("invite_issued", extra={"extra_fields": {"code": code}})
        return invite

    def validate_invite(self, raw_code: str) -> Invite:
        code = sanitize_invite_code(raw_code)
        if not code:
            raise ValidationError(
                f"Malformed invite code {raw_code!r}",
                prompt="Invalid invite code format: it must be 6 alphanumeric characters. "
                       "Please enter a valid invite code:",
            )
        doc = self.storage.find_by_id(INVITES, code)
        if not doc or not Invite(**doc).is_valid():
            raise ValidationError(
                f"Invite code {code} is unknown, used or expired",
                prompt="Invalid or expired invite code. Please enter a valid invite code:",
            )
        return Invite(**doc)

    def list_invites(self) -> list[Invite]:
        invites = [Invite(**doc) for doc in self.storage.find(INVITES)]
        return sorted(invites, key=lambda i: i.created_at, reverse=True)
